from __future__ import annotations

from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Dict, Iterable, Optional

from ..schemas import Signal, SignalType

DEFAULT_WINDOW = timedelta(seconds=60)
# idle strategies are swept every this many annotations
SWEEP_EVERY = 256

_INTENT: dict[SignalType, str] = {
    SignalType.BUY: "long",
    SignalType.LONG: "long",
    SignalType.SELL: "short",
    SignalType.SHORT: "short",
    SignalType.CLOSE: "close",
}


def same_intent(a: SignalType, b: SignalType) -> bool:
    ia = _INTENT.get(a)
    return ia is not None and ia == _INTENT.get(b)


def find_duplicate(signal: Signal, recent: Iterable[Signal], window: timedelta = DEFAULT_WINDOW) -> Optional[str]:
    """Id of the closest earlier-accepted signal this one probably re-sends.

    Same strategy and symbol, equivalent type, ``signal_time`` gap strictly
    under ``window``. UNKNOWN signals are never flagged.
    """
    best: Optional[Signal] = None
    best_gap: Optional[timedelta] = None
    for other in recent:
        if other.id == signal.id or other.strategy_id != signal.strategy_id or other.symbol != signal.symbol:
            continue
        if not same_intent(signal.signal_type, other.signal_type):
            continue
        gap = abs(signal.signal_time - other.signal_time)
        if gap >= window:
            continue
        if best_gap is None or gap < best_gap or (gap == best_gap and other.received_at < best.received_at):
            best, best_gap = other, gap
    return best.id if best is not None else None


class DuplicateDetector:
    """Annotates signals against the Store's recent window plus an in-process index.

    The index covers signals still in flight (checked but not yet listed by
    the Store) so two concurrent re-sends still see each other. ``observe`` and
    the check run without an await in between.
    """

    def __init__(self, window: timedelta = DEFAULT_WINDOW):
        self.window = window
        self._recent: Dict[str, Deque[Signal]] = {}
        self._seen = 0

    def annotate(self, signal: Signal, recent: Iterable[Signal]) -> Signal:
        pool = {s.id: s for s in recent}
        for s in self._recent.get(signal.strategy_id, ()):
            pool.setdefault(s.id, s)
        dup = find_duplicate(signal, pool.values(), self.window)
        annotated = signal.model_copy(update={"possible_duplicate_of": dup}) if dup else signal
        self._observe(annotated)
        return annotated

    def _observe(self, signal: Signal) -> None:
        q = self._recent.setdefault(signal.strategy_id, deque())
        q.append(signal)
        self._prune(q, signal.received_at)
        self._seen += 1
        if self._seen % SWEEP_EVERY == 0:
            self.sweep(signal.received_at)

    def sweep(self, now: datetime) -> None:
        """Prune every strategy and drop the ones left empty."""
        for sid in list(self._recent):
            q = self._recent[sid]
            self._prune(q, now)
            if not q:
                del self._recent[sid]

    def _prune(self, q: Deque[Signal], now: datetime) -> None:
        # keep twice the window of arrivals; signal_time can lag received_at
        cutoff = now - self.window * 2
        while q and q[0].received_at < cutoff:
            q.popleft()

    def forget(self, strategy_id: str, signal_id: str) -> None:
        q = self._recent.get(strategy_id)
        if not q:
            return
        kept = deque(s for s in q if s.id != signal_id)
        if kept:
            self._recent[strategy_id] = kept
        else:
            self._recent.pop(strategy_id, None)
