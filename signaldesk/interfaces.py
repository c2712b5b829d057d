"""Collaborators the engine consumes but does not implement."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol

from .plans import PlanLimits
from .schemas import AppendResult, PriceQuote, Signal, Trade


class PlanResolver(Protocol):
    async def get_plan(self, account_id: str) -> PlanLimits: ...


class Store(Protocol):
    async def append_signal(self, signal: Signal, raw_payload: dict | None = None) -> AppendResult: ...

    async def upsert_trade(self, trade: Trade) -> None: ...

    async def list_recent_signals(self, strategy_id: str, since: datetime) -> List[Signal]: ...

    async def list_open_trades(self) -> List[Trade]: ...

    async def get_signal(self, signal_id: str) -> Optional[Signal]: ...

    async def get_trade(self, trade_id: str) -> Optional[Trade]: ...


class PriceSource(Protocol):
    async def get_price(self, symbol: str, timeout: float) -> PriceQuote: ...
