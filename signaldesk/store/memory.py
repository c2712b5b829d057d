from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from ..schemas import AppendResult, Signal, Trade, TradeStatus


class MemoryStore:
    """Process-local Store. Appends are idempotent on (strategy_id, dedup_key)."""

    def __init__(self) -> None:
        self.signals: Dict[str, Signal] = {}
        self.raw_payloads: Dict[str, dict] = {}
        self.trades: Dict[str, Trade] = {}
        self._dedup: Dict[Tuple[str, str], str] = {}
        self._lock = asyncio.Lock()

    async def append_signal(self, signal: Signal, raw_payload: dict | None = None) -> AppendResult:
        async with self._lock:
            if signal.dedup_key:
                existing = self._dedup.get((signal.strategy_id, signal.dedup_key))
                if existing is not None:
                    return AppendResult(signal_id=existing, created=False)
                self._dedup[(signal.strategy_id, signal.dedup_key)] = signal.id
            self.signals[signal.id] = signal
            if raw_payload is not None:
                self.raw_payloads[signal.id] = raw_payload
            return AppendResult(signal_id=signal.id, created=True)

    async def upsert_trade(self, trade: Trade) -> None:
        self.trades[trade.id] = trade

    async def list_recent_signals(self, strategy_id: str, since: datetime) -> List[Signal]:
        return [s for s in self.signals.values() if s.strategy_id == strategy_id and s.received_at >= since]

    async def list_open_trades(self) -> List[Trade]:
        return [t for t in self.trades.values() if t.status == TradeStatus.OPEN]

    async def get_signal(self, signal_id: str) -> Optional[Signal]:
        return self.signals.get(signal_id)

    async def get_trade(self, trade_id: str) -> Optional[Trade]:
        return self.trades.get(trade_id)
