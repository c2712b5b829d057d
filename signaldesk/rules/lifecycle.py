from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from collections import deque
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, Deque, Dict, Iterable, List, Optional, Set, Tuple
from uuid import uuid4

from pydantic import BaseModel

from ..errors import StoreUnavailable
from ..pnl.calc import calc_pnl_pct
from ..schemas import Direction, Signal, SignalType, Trade, TradeStatus
from ..utils.time import utcnow

logger = logging.getLogger(__name__)

Key = Tuple[str, str]
PersistFn = Callable[[Trade], Awaitable[None]]

# signal ids remembered per key for replay detection
APPLIED_MEMORY = 512
# hold before draining so near-simultaneous arrivals sort by signal_time
DEFAULT_REORDER_WINDOW = 0.25
# idle keys are swept every this many submissions
SWEEP_EVERY = 256


class TradeAction(str, Enum):
    OPENED = "opened"
    CLOSED = "closed"
    IGNORED = "ignored"
    CANCELLED = "cancelled"


class TradeDelta(BaseModel):
    signal_id: str
    action: TradeAction
    trade: Optional[Trade] = None
    reason: Optional[str] = None


def transition(open_trade: Optional[Trade], signal: Signal) -> TradeDelta:
    """Pure state-machine step for one (strategy, symbol) key."""
    st = signal.signal_type
    if st == SignalType.UNKNOWN:
        return TradeDelta(signal_id=signal.id, action=TradeAction.IGNORED, trade=open_trade, reason="unknown_type")

    if open_trade is None:
        if st == SignalType.CLOSE:
            return TradeDelta(signal_id=signal.id, action=TradeAction.IGNORED, reason="no_open_trade")
        trade = Trade(
            id=str(uuid4()),
            strategy_id=signal.strategy_id,
            symbol=signal.symbol,
            direction=Direction.LONG if st.opens_long else Direction.SHORT,
            status=TradeStatus.OPEN,
            entry_price=signal.price,
            entry_time=signal.signal_time,
            opening_signal_id=signal.id,
        )
        return TradeDelta(signal_id=signal.id, action=TradeAction.OPENED, trade=trade)

    same_direction = (open_trade.direction == Direction.LONG and st.opens_long) or (
        open_trade.direction == Direction.SHORT and st.opens_short
    )
    if same_direction:
        return TradeDelta(signal_id=signal.id, action=TradeAction.IGNORED, trade=open_trade, reason="same_direction")

    closed = open_trade.model_copy(
        update={
            "status": TradeStatus.CLOSED,
            "exit_price": signal.price,
            "exit_time": signal.signal_time,
            "pnl_percent": calc_pnl_pct(open_trade.direction, open_trade.entry_price, signal.price),
            "closing_signal_id": signal.id,
        }
    )
    return TradeDelta(signal_id=signal.id, action=TradeAction.CLOSED, trade=closed)


class _KeyState:
    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.pending: List[tuple] = []
        self.open_trade: Optional[Trade] = None
        self.watermark: Optional[datetime] = None
        self.applied: Deque[str] = deque(maxlen=APPLIED_MEMORY)
        self.applied_set: Set[str] = set()

    def remember(self, signal_id: str) -> None:
        if signal_id in self.applied_set:
            return
        if len(self.applied) == self.applied.maxlen:
            self.applied_set.discard(self.applied[0])
        self.applied.append(signal_id)
        self.applied_set.add(signal_id)

    def advance(self, ts: datetime) -> None:
        if self.watermark is None or ts > self.watermark:
            self.watermark = ts


class TradeLifecycleEngine:
    """Folds signals into trades, one writer per (strategy, symbol).

    Signals for a key are queued in ``signal_time`` order and drained under
    that key's lock; different keys never wait on each other. A signal older
    than the latest one already applied for its key is stored but does not
    drive a transition. ``reorder_window`` holds each submission briefly so
    concurrent arrivals are drained in logical order.

    With ``retention`` set, signals whose ``signal_time`` is older than that
    horizon never transition, and keys with no open trade whose watermark has
    passed the horizon are dropped from memory.
    """

    def __init__(
        self,
        persist: Optional[PersistFn] = None,
        reorder_window: float = DEFAULT_REORDER_WINDOW,
        retention: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.persist = persist
        self.reorder_window = reorder_window
        self.retention = retention
        self.clock = clock
        self._keys: Dict[Key, _KeyState] = {}
        self._seq = itertools.count()
        self._submitted = 0

    def _state(self, key: Key) -> _KeyState:
        st = self._keys.get(key)
        if st is None:
            st = self._keys[key] = _KeyState()
        return st

    def hydrate(self, trades: Iterable[Trade]) -> None:
        """Seed per-key state from persisted trades (open ones plus recent closed ones)."""
        for t in trades:
            st = self._state(t.key)
            st.remember(t.opening_signal_id)
            st.advance(t.entry_time)
            if t.closing_signal_id:
                st.remember(t.closing_signal_id)
            if t.exit_time:
                st.advance(t.exit_time)
            if t.status == TradeStatus.OPEN:
                if st.open_trade is not None and st.open_trade.id != t.id:
                    logger.warning(
                        "Multiple open trades for one key, keeping the latest",
                        extra={"strategy_id": t.strategy_id, "symbol": t.symbol, "trade_id": t.id},
                    )
                    if st.open_trade.entry_time > t.entry_time:
                        continue
                st.open_trade = t

    async def submit(self, signal: Signal) -> TradeDelta:
        st = self._state(signal.key)
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        heapq.heappush(st.pending, (signal.signal_time, next(self._seq), signal, fut))
        if self.reorder_window > 0:
            await asyncio.sleep(self.reorder_window)
        async with st.lock:
            await self._drain(st)
        self._submitted += 1
        if self._submitted % SWEEP_EVERY == 0:
            self.sweep()
        return await fut

    async def _drain(self, st: _KeyState) -> None:
        while st.pending:
            _, _, signal, fut = heapq.heappop(st.pending)
            try:
                delta = await self._apply(st, signal)
            except StoreUnavailable as exc:
                if not fut.done():
                    fut.set_exception(exc)
                continue
            except Exception as exc:
                logger.exception("Lifecycle step failed", extra={"signal_id": signal.id, "symbol": signal.symbol})
                if not fut.done():
                    fut.set_exception(exc)
                continue
            except BaseException:
                # drainer cancelled mid-step; release the waiting submitter
                if not fut.done():
                    fut.set_exception(StoreUnavailable(f"signal {signal.id} not applied"))
                raise
            if not fut.done():
                fut.set_result(delta)

    def _stale(self, signal: Signal) -> bool:
        return self.retention is not None and signal.signal_time < self.clock() - self.retention

    async def _apply(self, st: _KeyState, signal: Signal) -> TradeDelta:
        if signal.id in st.applied_set:
            return TradeDelta(signal_id=signal.id, action=TradeAction.IGNORED, trade=st.open_trade, reason="already_applied")
        if signal.signal_type == SignalType.UNKNOWN:
            # stored only; must not move the watermark
            st.remember(signal.id)
            return TradeDelta(signal_id=signal.id, action=TradeAction.IGNORED, trade=st.open_trade, reason="unknown_type")
        if self._stale(signal):
            logger.info(
                "Signal older than retention horizon, not applied",
                extra={"signal_id": signal.id, "strategy_id": signal.strategy_id, "symbol": signal.symbol},
            )
            return TradeDelta(signal_id=signal.id, action=TradeAction.IGNORED, trade=st.open_trade, reason="stale")
        if st.watermark is not None and signal.signal_time < st.watermark:
            logger.info(
                "Signal older than key watermark, not applied",
                extra={"signal_id": signal.id, "strategy_id": signal.strategy_id, "symbol": signal.symbol},
            )
            st.remember(signal.id)
            return TradeDelta(signal_id=signal.id, action=TradeAction.IGNORED, trade=st.open_trade, reason="out_of_order")

        delta = transition(st.open_trade, signal)
        if delta.action in (TradeAction.OPENED, TradeAction.CLOSED):
            await self._persist(delta.trade)
            st.open_trade = delta.trade if delta.action == TradeAction.OPENED else None
        st.advance(signal.signal_time)
        st.remember(signal.id)
        return delta

    def sweep(self) -> int:
        """Drop idle keys whose watermark is past the retention horizon. Returns how many."""
        if self.retention is None:
            return 0
        horizon = self.clock() - self.retention
        idle = [
            k
            for k, st in self._keys.items()
            if st.open_trade is None
            and not st.pending
            and not st.lock.locked()
            and (st.watermark is None or st.watermark < horizon)
        ]
        for k in idle:
            del self._keys[k]
        return len(idle)

    async def _persist(self, trade: Trade) -> None:
        if self.persist is None:
            return
        try:
            await self.persist(trade)
        except StoreUnavailable:
            raise
        except Exception as exc:
            logger.exception("Trade upsert failed", extra={"trade_id": trade.id, "symbol": trade.symbol})
            raise StoreUnavailable(f"trade {trade.id} not persisted") from exc

    async def cancel(self, strategy_id: str, symbol: str, trade_id: str | None = None) -> Optional[Trade]:
        """Administrative cancel of the key's open trade. None if nothing matches."""
        st = self._keys.get((strategy_id, symbol))
        if st is None:
            return None
        async with st.lock:
            t = st.open_trade
            if t is None or (trade_id is not None and t.id != trade_id):
                return None
            cancelled = t.model_copy(update={"status": TradeStatus.CANCELLED})
            await self._persist(cancelled)
            st.open_trade = None
            return cancelled

    def get_open(self, strategy_id: str, symbol: str) -> Optional[Trade]:
        st = self._keys.get((strategy_id, symbol))
        return st.open_trade if st else None

    def open_trades(self) -> List[Trade]:
        return [st.open_trade for st in self._keys.values() if st.open_trade is not None]

    def open_symbols(self) -> Set[str]:
        return {t.symbol for t in self.open_trades()}
