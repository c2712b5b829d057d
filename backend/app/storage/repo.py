from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signaldesk.schemas import (
    AppendResult,
    Direction,
    MappingConfig,
    Signal,
    SignalSource,
    SignalType,
    Trade,
    TradeStatus,
)
from signaldesk.utils.time import ensure_utc

from ..models import ApiKey, SignalRow, Strategy, TradeRow


def _aware(v: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC
    return ensure_utc(v) if v is not None else None


def signal_from_row(r: SignalRow) -> Signal:
    return Signal(
        id=r.id,
        credential_id=r.credential_id,
        strategy_id=r.strategy_id,
        symbol=r.symbol,
        signal_type=SignalType(r.signal_type),
        price=r.price,
        signal_time=_aware(r.signal_time),
        received_at=_aware(r.received_at),
        source=SignalSource(r.source),
        possible_duplicate_of=r.possible_duplicate_of,
        interval=r.interval,
        dedup_key=r.alert_id,
    )


def trade_from_row(r: TradeRow) -> Trade:
    return Trade(
        id=r.id,
        strategy_id=r.strategy_id,
        symbol=r.symbol,
        direction=Direction(r.direction),
        status=TradeStatus(r.status),
        entry_price=r.entry_price,
        entry_time=_aware(r.entry_time),
        exit_price=r.exit_price,
        exit_time=_aware(r.exit_time),
        pnl_percent=r.pnl_pct,
        opening_signal_id=r.opening_signal_id,
        closing_signal_id=r.closing_signal_id,
    )


def mapping_from_key(k: ApiKey) -> MappingConfig:
    m = k.payload_mapping or {}
    base = MappingConfig()
    return MappingConfig(
        signal_path=m.get("signal", base.signal_path),
        symbol_path=m.get("symbol", base.symbol_path),
        price_path=m.get("price", base.price_path),
        time_path=m.get("time", base.time_path),
        interval_path=m.get("interval", base.interval_path),
        alert_id_path=m.get("alertId", base.alert_id_path),
        defaults={str(k2): str(v) for k2, v in (k.default_values or {}).items() if v is not None},
        rate_limit_per_minute=int(k.rate_limit_per_minute or 1),
        active=bool(k.is_active),
    )


class SqlStore:
    """Store backed by the service database. Each call runs in its own session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.sessions = session_factory

    async def append_signal(self, signal: Signal, raw_payload: dict | None = None) -> AppendResult:
        async with self.sessions() as s:
            if signal.dedup_key:
                existing = await self._by_alert(s, signal.strategy_id, signal.dedup_key)
                if existing is not None:
                    return AppendResult(signal_id=existing, created=False)
            s.add(
                SignalRow(
                    id=signal.id,
                    strategy_id=signal.strategy_id,
                    credential_id=signal.credential_id,
                    symbol=signal.symbol,
                    signal_type=signal.signal_type.value,
                    price=signal.price,
                    signal_time=signal.signal_time,
                    received_at=signal.received_at,
                    source=signal.source.value,
                    possible_duplicate_of=signal.possible_duplicate_of,
                    interval=signal.interval,
                    alert_id=signal.dedup_key,
                    raw_payload=raw_payload,
                )
            )
            try:
                await s.commit()
            except IntegrityError:
                # lost a race on (strategy_id, alert_id)
                await s.rollback()
                if signal.dedup_key:
                    existing = await self._by_alert(s, signal.strategy_id, signal.dedup_key)
                    if existing is not None:
                        return AppendResult(signal_id=existing, created=False)
                raise
            return AppendResult(signal_id=signal.id, created=True)

    @staticmethod
    async def _by_alert(s: AsyncSession, strategy_id: str, alert_id: str) -> Optional[str]:
        q = await s.execute(
            select(SignalRow.id).where(SignalRow.strategy_id == strategy_id, SignalRow.alert_id == alert_id)
        )
        return q.scalar_one_or_none()

    async def upsert_trade(self, trade: Trade) -> None:
        async with self.sessions() as s:
            row = await s.get(TradeRow, trade.id)
            if row is None:
                row = TradeRow(id=trade.id)
                s.add(row)
            row.strategy_id = trade.strategy_id
            row.symbol = trade.symbol
            row.direction = trade.direction.value
            row.status = trade.status.value
            row.entry_price = trade.entry_price
            row.entry_time = trade.entry_time
            row.exit_price = trade.exit_price
            row.exit_time = trade.exit_time
            row.pnl_pct = trade.pnl_percent
            row.opening_signal_id = trade.opening_signal_id
            row.closing_signal_id = trade.closing_signal_id
            await s.commit()

    async def list_recent_signals(self, strategy_id: str, since: datetime) -> List[Signal]:
        async with self.sessions() as s:
            q = await s.execute(
                select(SignalRow)
                .where(SignalRow.strategy_id == strategy_id, SignalRow.received_at >= since)
                .order_by(SignalRow.received_at.asc())
            )
            return [signal_from_row(r) for r in q.scalars().all()]

    async def list_open_trades(self) -> List[Trade]:
        async with self.sessions() as s:
            q = await s.execute(select(TradeRow).where(TradeRow.status == TradeStatus.OPEN.value))
            return [trade_from_row(r) for r in q.scalars().all()]

    async def list_latest_closed_trades(self) -> List[Trade]:
        """Most recently exited trade per (strategy, symbol); seeds lifecycle watermarks."""
        async with self.sessions() as s:
            latest = (
                select(TradeRow.strategy_id, TradeRow.symbol, func.max(TradeRow.exit_time).label("mx"))
                .where(TradeRow.status == TradeStatus.CLOSED.value)
                .group_by(TradeRow.strategy_id, TradeRow.symbol)
                .subquery()
            )
            q = await s.execute(
                select(TradeRow).join(
                    latest,
                    (TradeRow.strategy_id == latest.c.strategy_id)
                    & (TradeRow.symbol == latest.c.symbol)
                    & (TradeRow.exit_time == latest.c.mx),
                )
            )
            return [trade_from_row(r) for r in q.scalars().all()]

    async def get_signal(self, signal_id: str) -> Optional[Signal]:
        async with self.sessions() as s:
            r = await s.get(SignalRow, signal_id)
            return signal_from_row(r) if r else None

    async def get_trade(self, trade_id: str) -> Optional[Trade]:
        async with self.sessions() as s:
            r = await s.get(TradeRow, trade_id)
            return trade_from_row(r) if r else None


# --- credential & read helpers used by the routers ---


async def get_api_key(db: AsyncSession, api_key: str) -> ApiKey | None:
    q = await db.execute(select(ApiKey).where(ApiKey.api_key == api_key))
    return q.scalar_one_or_none()


async def get_strategy(db: AsyncSession, strategy_id: str) -> Strategy | None:
    return await db.get(Strategy, strategy_id)


async def first_active_strategy(db: AsyncSession, user_id: str) -> Strategy | None:
    q = await db.execute(
        select(Strategy)
        .where(Strategy.user_id == user_id, Strategy.is_active.is_(True), Strategy.is_deleted.is_(False))
        .order_by(Strategy.created_at.asc())
        .limit(1)
    )
    return q.scalar_one_or_none()


async def touch_api_key(db: AsyncSession, key_id: str, when: datetime) -> None:
    await db.execute(
        update(ApiKey)
        .where(ApiKey.id == key_id)
        .values(last_used_at=when, request_count=func.coalesce(ApiKey.request_count, 0) + 1)
    )
    await db.commit()


async def list_signals(db: AsyncSession, strategy_id: str, since: datetime | None, limit: int, offset: int) -> List[Signal]:
    conds = [SignalRow.strategy_id == strategy_id]
    if since is not None:
        conds.append(SignalRow.received_at >= since)
    q = await db.execute(
        select(SignalRow).where(*conds).order_by(SignalRow.signal_time.desc()).limit(limit).offset(offset)
    )
    return [signal_from_row(r) for r in q.scalars().all()]


async def list_trades(
    db: AsyncSession, strategy_id: str, since: datetime | None, status: str | None = None
) -> List[Trade]:
    conds = [TradeRow.strategy_id == strategy_id]
    if since is not None:
        conds.append(TradeRow.entry_time >= since)
    if status:
        conds.append(TradeRow.status == status.lower())
    q = await db.execute(select(TradeRow).where(*conds).order_by(TradeRow.entry_time.desc()))
    return [trade_from_row(r) for r in q.scalars().all()]
