import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from signaldesk.errors import StoreUnavailable
from signaldesk.rules.lifecycle import DEFAULT_REORDER_WINDOW, TradeAction, TradeLifecycleEngine, transition
from signaldesk.schemas import Direction, TradeStatus
from signaldesk.store import MemoryStore


@pytest.mark.asyncio
async def test_long_round_trip_pnl(make_signal):
    store = MemoryStore()
    eng = TradeLifecycleEngine(persist=store.upsert_trade, reorder_window=0)
    opened = await eng.submit(make_signal("BUY", "100", at=0))
    closed = await eng.submit(make_signal("SELL", "110", at=60))
    assert opened.action == TradeAction.OPENED
    assert closed.action == TradeAction.CLOSED
    assert closed.trade.id == opened.trade.id
    assert closed.trade.pnl_percent == pytest.approx(10.0)
    assert store.trades[opened.trade.id].status == TradeStatus.CLOSED
    assert eng.get_open("strat-1", "BTCUSDT") is None


@pytest.mark.asyncio
async def test_short_closed_lower_is_a_gain(make_signal):
    eng = TradeLifecycleEngine(reorder_window=0)
    d = await eng.submit(make_signal("SHORT", "100", at=0))
    assert d.trade.direction == Direction.SHORT
    closed = await eng.submit(make_signal("CLOSE", "90", at=30))
    assert closed.trade.pnl_percent == pytest.approx(10.0)


@pytest.mark.asyncio
async def test_long_closed_lower_is_a_loss(make_signal):
    eng = TradeLifecycleEngine(reorder_window=0)
    await eng.submit(make_signal("BUY", "100", at=0))
    closed = await eng.submit(make_signal("CLOSE", "90", at=30))
    assert closed.trade.pnl_percent == pytest.approx(-10.0)


@pytest.mark.asyncio
async def test_same_direction_is_no_op(make_signal):
    eng = TradeLifecycleEngine(reorder_window=0)
    first = await eng.submit(make_signal("BUY", "100", at=0))
    again = await eng.submit(make_signal("LONG", "105", at=30))
    assert again.action == TradeAction.IGNORED
    assert again.reason == "same_direction"
    assert eng.get_open("strat-1", "BTCUSDT").id == first.trade.id
    assert eng.get_open("strat-1", "BTCUSDT").entry_price == first.trade.entry_price


@pytest.mark.asyncio
async def test_close_without_open_trade_is_ignored(make_signal):
    eng = TradeLifecycleEngine(reorder_window=0)
    d = await eng.submit(make_signal("CLOSE", "100", at=0))
    assert d.action == TradeAction.IGNORED and d.reason == "no_open_trade"
    assert eng.open_trades() == []


def test_unknown_never_transitions(make_signal):
    d = transition(None, make_signal("UNKNOWN", "100"))
    assert d.action == TradeAction.IGNORED
    assert d.trade is None


@pytest.mark.asyncio
async def test_reapplying_a_signal_is_idempotent(make_signal):
    store = MemoryStore()
    eng = TradeLifecycleEngine(persist=store.upsert_trade, reorder_window=0)
    buy = make_signal("BUY", "100", at=0)
    sell = make_signal("SELL", "120", at=10)
    await eng.submit(buy)
    await eng.submit(sell)
    again = await eng.submit(sell)
    assert again.action == TradeAction.IGNORED and again.reason == "already_applied"
    assert len(store.trades) == 1
    assert eng.open_trades() == []


@pytest.mark.asyncio
async def test_late_signal_does_not_rewrite_history(make_signal):
    eng = TradeLifecycleEngine(reorder_window=0)
    await eng.submit(make_signal("BUY", "100", at=10))
    late = await eng.submit(make_signal("SELL", "90", at=5))
    assert late.reason == "out_of_order"
    assert eng.get_open("strat-1", "BTCUSDT") is not None


@pytest.mark.asyncio
async def test_reorder_window_drains_in_signal_time_order(make_signal):
    eng = TradeLifecycleEngine(reorder_window=0.02)
    close = make_signal("CLOSE", "110", at=20)
    buy = make_signal("BUY", "100", at=0)
    d_close, d_buy = await asyncio.gather(eng.submit(close), eng.submit(buy))
    assert d_buy.action == TradeAction.OPENED
    assert d_close.action == TradeAction.CLOSED
    assert d_close.trade.pnl_percent == pytest.approx(10.0)


@pytest.mark.asyncio
async def test_keys_are_independent_under_concurrency(make_signal):
    eng = TradeLifecycleEngine(reorder_window=0)
    symbols = [f"SYM{i}USDT" for i in range(20)]
    deltas = await asyncio.gather(*(eng.submit(make_signal("BUY", "10", symbol=s)) for s in symbols))
    assert all(d.action == TradeAction.OPENED for d in deltas)
    assert eng.open_symbols() == set(symbols)


@pytest.mark.asyncio
async def test_concurrent_same_key_opens_once(make_signal):
    eng = TradeLifecycleEngine(reorder_window=0)
    deltas = await asyncio.gather(*(eng.submit(make_signal("BUY", "10", at=i)) for i in range(10)))
    assert sum(1 for d in deltas if d.action == TradeAction.OPENED) == 1
    assert len(eng.open_trades()) == 1


@pytest.mark.asyncio
async def test_persist_failure_leaves_state_untouched(make_signal):
    async def broken(trade):
        raise RuntimeError("disk full")

    eng = TradeLifecycleEngine(persist=broken, reorder_window=0)
    with pytest.raises(StoreUnavailable):
        await eng.submit(make_signal("BUY", "100", at=0))
    assert eng.open_trades() == []


@pytest.mark.asyncio
async def test_hydrate_and_cancel(make_signal):
    store = MemoryStore()
    first = TradeLifecycleEngine(persist=store.upsert_trade, reorder_window=0)
    buy = make_signal("BUY", "100", at=0)
    opened = await first.submit(buy)

    restarted = TradeLifecycleEngine(persist=store.upsert_trade, reorder_window=0)
    restarted.hydrate(await store.list_open_trades())
    assert (await restarted.submit(buy)).reason == "already_applied"

    cancelled = await restarted.cancel("strat-1", "BTCUSDT", trade_id=opened.trade.id)
    assert cancelled.status == TradeStatus.CANCELLED
    assert store.trades[opened.trade.id].status == TradeStatus.CANCELLED
    assert await restarted.cancel("strat-1", "BTCUSDT") is None


@pytest.mark.asyncio
async def test_unknown_does_not_push_later_signals_out(make_signal):
    eng = TradeLifecycleEngine(reorder_window=0)
    noise = await eng.submit(make_signal("UNKNOWN", "100", at=100))
    buy = await eng.submit(make_signal("BUY", "100", at=50))
    assert noise.reason == "unknown_type"
    assert buy.action == TradeAction.OPENED
    assert eng.get_open("strat-1", "BTCUSDT") is not None


@pytest.mark.asyncio
async def test_default_engine_sorts_concurrent_arrivals(make_signal):
    eng = TradeLifecycleEngine()
    assert eng.reorder_window == DEFAULT_REORDER_WINDOW > 0
    d_close, d_buy = await asyncio.gather(
        eng.submit(make_signal("CLOSE", "110", at=20)),
        eng.submit(make_signal("BUY", "100", at=0)),
    )
    assert d_buy.action == TradeAction.OPENED
    assert d_close.action == TradeAction.CLOSED


@pytest.mark.asyncio
async def test_cancelled_drainer_releases_other_submitter(make_signal):
    gate = asyncio.Event()
    calls = []

    async def slow_persist(trade):
        calls.append(trade)
        if len(calls) == 1:
            await gate.wait()

    eng = TradeLifecycleEngine(persist=slow_persist, reorder_window=0.02)
    # the first submitter wakes first and drains the earlier, second signal
    drainer = asyncio.create_task(eng.submit(make_signal("BUY", "100", at=10)))
    await asyncio.sleep(0)
    other = asyncio.create_task(eng.submit(make_signal("SELL", "100", at=0)))
    while not calls:
        await asyncio.sleep(0.005)
    drainer.cancel()
    with pytest.raises(StoreUnavailable):
        await asyncio.wait_for(other, 1.0)
    with pytest.raises(asyncio.CancelledError):
        await drainer


@pytest.mark.asyncio
async def test_sweep_drops_idle_keys_only(make_signal):
    base = datetime(2024, 1, 2, 9, 30, tzinfo=timezone.utc)
    now = {"t": base}
    eng = TradeLifecycleEngine(reorder_window=0, retention=timedelta(hours=1), clock=lambda: now["t"])
    await eng.submit(make_signal("BUY", "100", at=0))
    eth_buy = make_signal("BUY", "10", at=0, symbol="ETHUSDT")
    await eng.submit(eth_buy)
    await eng.submit(make_signal("CLOSE", "11", at=30, symbol="ETHUSDT"))

    now["t"] = base + timedelta(hours=2)
    assert eng.sweep() == 1
    assert eng.get_open("strat-1", "BTCUSDT") is not None
    # an evicted key's old signals cannot reopen a trade
    replay = await eng.submit(eth_buy)
    assert replay.reason == "stale"
    assert eng.get_open("strat-1", "ETHUSDT") is None
