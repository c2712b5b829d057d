from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


Scalar = Union[str, int, float, bool]


class SignalType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    LONG = "LONG"
    SHORT = "SHORT"
    CLOSE = "CLOSE"
    UNKNOWN = "UNKNOWN"

    @property
    def opens_long(self) -> bool:
        return self in (SignalType.BUY, SignalType.LONG)

    @property
    def opens_short(self) -> bool:
        return self in (SignalType.SELL, SignalType.SHORT)


class SignalSource(str, Enum):
    WEBHOOK = "webhook"
    API_KEY = "api_key"
    MANUAL = "manual"


class Direction(str, Enum):
    LONG = "long"
    SHORT = "short"


class TradeStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class MappingConfig(BaseModel):
    """Per-credential payload mapping.

    Paths are dot-paths into the inbound JSON body. An empty string means the
    field is not mapped; ``defaults`` fills fields that do not resolve.
    """

    model_config = ConfigDict(frozen=True)

    signal_path: str = "signal"
    symbol_path: str = "symbol"
    price_path: str = "price"
    time_path: str = "time"
    interval_path: str = "interval"
    alert_id_path: str = "alertId"
    defaults: Dict[str, str] = Field(default_factory=dict)
    rate_limit_per_minute: int = 60
    active: bool = True


class RawCandidate(BaseModel):
    signal_raw: Optional[Scalar] = None
    symbol_raw: Optional[Scalar] = None
    price_raw: Optional[Scalar] = None
    time_raw: Optional[Scalar] = None
    interval_raw: Optional[Scalar] = None
    alert_id_raw: Optional[Scalar] = None


class Signal(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    credential_id: str
    strategy_id: str
    symbol: str
    signal_type: SignalType
    price: Decimal
    signal_time: datetime
    received_at: datetime
    source: SignalSource
    possible_duplicate_of: Optional[str] = None
    interval: Optional[str] = None
    dedup_key: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.strategy_id, self.symbol)


class Trade(BaseModel):
    id: str
    strategy_id: str
    symbol: str
    direction: Direction
    status: TradeStatus = TradeStatus.OPEN
    entry_price: Decimal
    entry_time: datetime
    exit_price: Optional[Decimal] = None
    exit_time: Optional[datetime] = None
    pnl_percent: Optional[float] = None
    opening_signal_id: str
    closing_signal_id: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.strategy_id, self.symbol)


class AppendResult(BaseModel):
    signal_id: str
    created: bool = True


class PriceQuote(BaseModel):
    price: Optional[Decimal] = None
    as_of: Optional[datetime] = None
    ok: bool = False
