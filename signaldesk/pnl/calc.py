from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional

from pydantic import BaseModel

from ..schemas import Direction, Trade, TradeStatus


def calc_pnl_pct(direction: Direction, entry: Decimal | None, exit: Decimal | None) -> Optional[float]:
    if entry is None or exit is None or entry == 0:
        return None
    if direction == Direction.SHORT:
        return float((entry - exit) / entry * 100)
    return float((exit - entry) / entry * 100)


class PerformanceSummary(BaseModel):
    total_pnl_pct: float = 0.0
    closed_trades: int = 0
    open_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    avg_gain_pct: float = 0.0
    avg_loss_pct: float = 0.0


def summarize(trades: Iterable[Trade]) -> PerformanceSummary:
    """Realized performance over closed trades. Average loss is reported as a magnitude."""
    closed: list[float] = []
    open_cnt = 0
    for t in trades:
        if t.status == TradeStatus.OPEN:
            open_cnt += 1
        elif t.status == TradeStatus.CLOSED and t.pnl_percent is not None:
            closed.append(t.pnl_percent)
    wins = [p for p in closed if p > 0]
    losses = [p for p in closed if p < 0]
    return PerformanceSummary(
        total_pnl_pct=sum(closed),
        closed_trades=len(closed),
        open_trades=open_cnt,
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=(len(wins) / len(closed) * 100.0) if closed else 0.0,
        avg_gain_pct=(sum(wins) / len(wins)) if wins else 0.0,
        avg_loss_pct=abs(sum(losses) / len(losses)) if losses else 0.0,
    )
