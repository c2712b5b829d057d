from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import (
    Integer,
    String,
    DateTime,
    JSON,
    Boolean,
    Float,
    Numeric,
    UniqueConstraint,
    Index,
)
from decimal import Decimal
import datetime as dt


Base = declarative_base()


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Profile(Base):
    __tablename__ = "profiles"
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    plan: Mapped[str] = mapped_column(String(16), default="FREE")  # FREE|PRO|ELITE
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_now)


class Strategy(Base):
    __tablename__ = "strategies"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # uuid string
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    secret_token: Mapped[str] = mapped_column(String(128), index=True)
    # webhook-level settings; mapping uses the conventional field names
    rate_limit_per_minute: Mapped[int | None] = mapped_column(Integer, default=None)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_now)


class ApiKey(Base):
    __tablename__ = "api_keys"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    strategy_id: Mapped[str | None] = mapped_column(String(64), default=None)
    name: Mapped[str] = mapped_column(String(255), default="")
    api_key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    payload_mapping: Mapped[dict] = mapped_column(JSON, default=dict)  # {signal, symbol, price, time, interval, alertId}
    default_values: Mapped[dict] = mapped_column(JSON, default=dict)
    rate_limit_per_minute: Mapped[int] = mapped_column(Integer, default=60)  # clamped to plan at write time
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_used_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    request_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_now)


class SignalRow(Base):
    __tablename__ = "signals"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    strategy_id: Mapped[str] = mapped_column(String(64), index=True)
    credential_id: Mapped[str] = mapped_column(String(64), index=True)
    symbol: Mapped[str] = mapped_column(String(32), index=True)
    signal_type: Mapped[str] = mapped_column(String(16))  # BUY|SELL|LONG|SHORT|CLOSE|UNKNOWN
    price: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    signal_time: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))
    received_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), index=True)
    source: Mapped[str] = mapped_column(String(16), default="api_key")  # webhook|api_key|manual
    possible_duplicate_of: Mapped[str | None] = mapped_column(String(64), default=None)
    interval: Mapped[str | None] = mapped_column(String(16), default=None)
    alert_id: Mapped[str | None] = mapped_column(String(128), default=None)
    raw_payload: Mapped[dict | None] = mapped_column(JSON, default=None)
    __table_args__ = (
        UniqueConstraint("strategy_id", "alert_id", name="uniq_strategy_alert"),
        Index("ix_signals_strategy_received", "strategy_id", "received_at"),
    )


class TradeRow(Base):
    __tablename__ = "trades"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    strategy_id: Mapped[str] = mapped_column(String(64), index=True)
    symbol: Mapped[str] = mapped_column(String(32), index=True)
    direction: Mapped[str] = mapped_column(String(8))  # long|short
    status: Mapped[str] = mapped_column(String(16), default="open", index=True)  # open|closed|cancelled
    entry_price: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    entry_time: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))
    exit_price: Mapped[Decimal | None] = mapped_column(Numeric(28, 10), default=None)
    exit_time: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    pnl_pct: Mapped[float | None] = mapped_column(Float, default=None)
    opening_signal_id: Mapped[str] = mapped_column(String(64))
    closing_signal_id: Mapped[str | None] = mapped_column(String(64), default=None)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_now, onupdate=_now)
