import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from signaldesk.pnl.live import LivePnLTracker
from signaldesk.rules.lifecycle import TradeLifecycleEngine
from signaldesk.schemas import PriceQuote

# matches the signal factory base time
T0 = datetime(2024, 1, 2, 9, 30, tzinfo=timezone.utc)


class FakePrices:
    def __init__(self, prices, slow=(), as_of=T0):
        self.prices = prices
        self.slow = set(slow)
        self.as_of = as_of
        self.calls = []

    async def get_price(self, symbol, timeout):
        self.calls.append(symbol)
        if symbol in self.slow:
            await asyncio.sleep(10)
        p = self.prices.get(symbol)
        return PriceQuote(price=Decimal(p) if p else None, as_of=self.as_of, ok=p is not None)


async def _engine_with(make_signal, *opens):
    eng = TradeLifecycleEngine(reorder_window=0)
    for sym, side, price in opens:
        await eng.submit(make_signal(side, price, symbol=sym))
    return eng


@pytest.mark.asyncio
async def test_unrealized_pnl_per_direction(make_signal):
    eng = await _engine_with(make_signal, ("BTCUSDT", "BUY", "100"), ("ETHUSDT", "SHORT", "200"))
    src = FakePrices({"BTCUSDT": "105", "ETHUSDT": "180"})
    tr = LivePnLTracker(src, eng.open_trades, clock=lambda: T0 + timedelta(seconds=5))
    await tr.poll_once()
    by_sym = {p.symbol: p for p in tr.snapshot()}
    assert by_sym["BTCUSDT"].pnl_percent == pytest.approx(5.0)
    assert by_sym["ETHUSDT"].pnl_percent == pytest.approx(10.0)
    assert all(p.available for p in by_sym.values())


@pytest.mark.asyncio
async def test_one_slow_symbol_only_degrades_itself(make_signal):
    eng = await _engine_with(make_signal, ("BTCUSDT", "BUY", "100"), ("ETHUSDT", "BUY", "100"))
    src = FakePrices({"BTCUSDT": "110", "ETHUSDT": "120"}, slow={"ETHUSDT"})
    tr = LivePnLTracker(src, eng.open_trades, fetch_timeout=0.05, clock=lambda: T0)
    await tr.poll_once()
    by_sym = {p.symbol: p for p in tr.snapshot()}
    assert by_sym["BTCUSDT"].available is True
    assert by_sym["BTCUSDT"].pnl_percent == pytest.approx(10.0)
    assert by_sym["ETHUSDT"].available is False
    assert by_sym["ETHUSDT"].pnl_percent is None


@pytest.mark.asyncio
async def test_stale_quote_reported_unavailable(make_signal):
    eng = await _engine_with(make_signal, ("BTCUSDT", "BUY", "100"))
    src = FakePrices({"BTCUSDT": "110"}, as_of=T0)
    now = {"t": T0 + timedelta(seconds=10)}
    tr = LivePnLTracker(src, eng.open_trades, stale_after=60, clock=lambda: now["t"])
    await tr.poll_once()
    assert tr.snapshot()[0].available is True
    now["t"] = T0 + timedelta(minutes=5)
    assert tr.snapshot()[0].available is False
    assert tr.snapshot()[0].current_price is None


@pytest.mark.asyncio
async def test_closed_symbols_leave_the_cache(make_signal):
    eng = await _engine_with(make_signal, ("BTCUSDT", "BUY", "100"))
    src = FakePrices({"BTCUSDT": "101"})
    tr = LivePnLTracker(src, eng.open_trades, clock=lambda: T0)
    await tr.poll_once()
    assert "BTCUSDT" in tr.cache
    await eng.submit(make_signal("CLOSE", "102", at=30))
    await tr.poll_once()
    assert tr.cache == {}
    assert tr.snapshot() == []


@pytest.mark.asyncio
async def test_failed_fetch_is_unavailable(make_signal):
    eng = await _engine_with(make_signal, ("DOGEUSDT", "BUY", "0.1"))
    tr = LivePnLTracker(FakePrices({}), eng.open_trades, clock=lambda: T0)
    await tr.poll_once()
    snap = tr.snapshot()
    assert len(snap) == 1 and snap[0].available is False
