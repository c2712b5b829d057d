from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel

from ..interfaces import PriceSource
from ..schemas import Trade
from ..utils.time import ensure_utc, utcnow
from .calc import calc_pnl_pct

logger = logging.getLogger(__name__)


class LivePrice(BaseModel):
    symbol: str
    price: Optional[Decimal] = None
    as_of: Optional[datetime] = None
    fetched_at: datetime
    available: bool = False


class LivePnL(BaseModel):
    trade_id: str
    strategy_id: str
    symbol: str
    direction: str
    entry_price: Decimal
    current_price: Optional[Decimal] = None
    pnl_percent: Optional[float] = None
    as_of: Optional[datetime] = None
    available: bool = False


class LivePnLTracker:
    """Polls prices for symbols with open trades and serves unrealized P&L.

    Each symbol is fetched with its own timeout, so one slow symbol degrades
    only itself. Quotes older than ``stale_after`` are reported unavailable.
    Symbols drop out of the cache once no open trade references them.
    """

    def __init__(
        self,
        source: PriceSource,
        open_trades: Callable[[], Iterable[Trade]],
        interval: float = 30.0,
        fetch_timeout: float = 5.0,
        stale_after: float = 300.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.source = source
        self.open_trades = open_trades
        self.interval = interval
        self.fetch_timeout = fetch_timeout
        self.stale_after = timedelta(seconds=stale_after)
        self.clock = clock
        self.cache: Dict[str, LivePrice] = {}
        self.running = False
        self._task: Optional[asyncio.Task] = None

    def _fresh(self, as_of: Optional[datetime], now: datetime) -> bool:
        return as_of is not None and now - ensure_utc(as_of) <= self.stale_after

    async def _refresh(self, symbol: str) -> LivePrice:
        now = self.clock()
        try:
            quote = await asyncio.wait_for(self.source.get_price(symbol, self.fetch_timeout), self.fetch_timeout)
        except asyncio.TimeoutError:
            logger.warning("Price fetch timed out", extra={"symbol": symbol, "timeout_s": self.fetch_timeout})
            return LivePrice(symbol=symbol, fetched_at=now)
        except Exception as exc:
            logger.warning("Price fetch failed", extra={"symbol": symbol, "error": str(exc)})
            return LivePrice(symbol=symbol, fetched_at=now)
        if not quote.ok or quote.price is None or quote.price <= 0:
            return LivePrice(symbol=symbol, fetched_at=now)
        as_of = ensure_utc(quote.as_of) if quote.as_of else now
        if not self._fresh(as_of, now):
            logger.warning("Stale price ignored", extra={"symbol": symbol, "as_of": as_of.isoformat()})
            return LivePrice(symbol=symbol, price=quote.price, as_of=as_of, fetched_at=now)
        return LivePrice(symbol=symbol, price=quote.price, as_of=as_of, fetched_at=now, available=True)

    async def poll_once(self) -> Dict[str, LivePrice]:
        symbols = sorted({t.symbol for t in self.open_trades()})
        for sym in list(self.cache):
            if sym not in symbols:
                del self.cache[sym]
        if not symbols:
            return {}
        results = await asyncio.gather(*(self._refresh(s) for s in symbols))
        for lp in results:
            self.cache[lp.symbol] = lp
        return dict(self.cache)

    def snapshot(self) -> List[LivePnL]:
        now = self.clock()
        out: List[LivePnL] = []
        for t in self.open_trades():
            lp = self.cache.get(t.symbol)
            usable = lp is not None and lp.available and self._fresh(lp.as_of, now)
            out.append(
                LivePnL(
                    trade_id=t.id,
                    strategy_id=t.strategy_id,
                    symbol=t.symbol,
                    direction=t.direction.value,
                    entry_price=t.entry_price,
                    current_price=lp.price if usable else None,
                    pnl_percent=calc_pnl_pct(t.direction, t.entry_price, lp.price) if usable else None,
                    as_of=lp.as_of if usable else None,
                    available=usable,
                )
            )
        return out

    async def run(self) -> None:
        self.running = True
        try:
            while self.running:
                try:
                    await self.poll_once()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("Live P&L poll cycle failed")
                await asyncio.sleep(self.interval)
        finally:
            self.running = False

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        self.running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
