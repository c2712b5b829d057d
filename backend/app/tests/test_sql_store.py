from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.models import ApiKey, Base
from app.storage.repo import SqlStore, mapping_from_key
from signaldesk.rules.lifecycle import TradeLifecycleEngine
from signaldesk.schemas import Signal, SignalSource, SignalType, TradeStatus

T0 = datetime(2024, 2, 1, 10, 0, tzinfo=timezone.utc)


async def _store():
    eng = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return SqlStore(async_sessionmaker(eng, expire_on_commit=False)), eng


def _signal(kind="BUY", price="100", at=0, alert=None, symbol="BTCUSDT"):
    ts = T0 + timedelta(seconds=at)
    return Signal(
        id=str(uuid4()),
        credential_id="key-1",
        strategy_id="strat-1",
        symbol=symbol,
        signal_type=SignalType(kind),
        price=Decimal(price),
        signal_time=ts,
        received_at=ts,
        source=SignalSource.API_KEY,
        dedup_key=alert,
    )


@pytest.mark.asyncio
async def test_append_is_idempotent_on_alert_id():
    store, eng = await _store()
    first = _signal(alert="a-1")
    r1 = await store.append_signal(first, raw_payload={"alertId": "a-1"})
    r2 = await store.append_signal(_signal(alert="a-1"))
    assert r1.created and not r2.created
    assert r2.signal_id == first.id
    assert (await store.append_signal(_signal())).created
    await eng.dispose()


@pytest.mark.asyncio
async def test_round_trip_and_recent_window():
    store, eng = await _store()
    old = _signal(at=0)
    new = _signal("SELL", at=300)
    await store.append_signal(old)
    await store.append_signal(new)
    got = await store.get_signal(new.id)
    assert got.signal_type == SignalType.SELL
    assert got.price == Decimal("100")
    assert got.signal_time == new.signal_time
    recent = await store.list_recent_signals("strat-1", T0 + timedelta(seconds=200))
    assert [s.id for s in recent] == [new.id]
    await eng.dispose()


@pytest.mark.asyncio
async def test_trades_persist_and_hydrate():
    store, eng = await _store()
    lifecycle = TradeLifecycleEngine(persist=store.upsert_trade, reorder_window=0)
    await lifecycle.submit(_signal("BUY", "100", at=0))
    closed = await lifecycle.submit(_signal("SELL", "90", at=60))
    opened = await lifecycle.submit(_signal("SHORT", "90", at=120, symbol="ETHUSDT"))

    t = await store.get_trade(closed.trade.id)
    assert t.status == TradeStatus.CLOSED
    assert t.pnl_percent == pytest.approx(-10.0)
    assert [x.id for x in await store.list_open_trades()] == [opened.trade.id]

    latest = await store.list_latest_closed_trades()
    restarted = TradeLifecycleEngine(persist=store.upsert_trade, reorder_window=0)
    restarted.hydrate(latest + await store.list_open_trades())
    assert restarted.get_open("strat-1", "ETHUSDT").id == opened.trade.id
    late = await restarted.submit(_signal("BUY", "80", at=30))
    assert late.reason == "out_of_order"
    await eng.dispose()


def test_mapping_from_key_defaults_and_overrides():
    k = ApiKey(
        payload_mapping={"symbol": "ticker", "time": ""},
        default_values={"signal": "BUY"},
        rate_limit_per_minute=30,
        is_active=True,
    )
    m = mapping_from_key(k)
    assert m.symbol_path == "ticker"
    assert m.time_path == ""
    assert m.price_path == "price"
    assert m.defaults == {"signal": "BUY"}
    assert m.rate_limit_per_minute == 30
