from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import BaseModel

from .errors import RejectReason, Rejection, StoreUnavailable
from .interfaces import Store
from .payload import map_payload
from .rules.admission import Admission, AdmissionController, RedisAdmissionController
from .rules.duplicates import DuplicateDetector
from .rules.lifecycle import TradeDelta, TradeLifecycleEngine
from .rules.normalize import normalize
from .schemas import MappingConfig, Signal, SignalSource
from .utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

Limiter = Union[AdmissionController, RedisAdmissionController]


class Credential(BaseModel):
    """An ingestion source: an API key or a strategy webhook secret."""

    id: str
    account_id: str
    strategy_id: Optional[str] = None
    mapping: MappingConfig = MappingConfig()
    source: SignalSource = SignalSource.API_KEY


class IngestResult(BaseModel):
    accepted: bool = True
    signal_id: str
    possible_duplicate_of: Optional[str] = None
    replayed: bool = False
    trade_action: Optional[str] = None
    trade_id: Optional[str] = None


class IngestionOrchestrator:
    """admit -> map -> normalize -> annotate duplicates -> append -> lifecycle.

    Acceptance is only reported after the Store has appended the signal.
    """

    def __init__(
        self,
        store: Store,
        engine: TradeLifecycleEngine,
        admission: Limiter | None = None,
        detector: DuplicateDetector | None = None,
        clock: Callable[[], datetime] = utcnow,
        on_accepted: Optional[Callable[[Signal], Awaitable[None]]] = None,
    ):
        self.store = store
        self.engine = engine
        self.admission = admission or AdmissionController()
        self.detector = detector or DuplicateDetector()
        self.clock = clock
        self.on_accepted = on_accepted

    async def ingest(
        self,
        credential: Credential,
        doc: Any,
        *,
        strategy_id: str | None = None,
        received_at: datetime | None = None,
    ) -> IngestResult:
        verdict = await self.admission.admit(credential.id, credential.mapping)
        if verdict == Admission.DISABLED:
            raise Rejection(RejectReason.DISABLED)
        if verdict == Admission.THROTTLED:
            raise Rejection(RejectReason.THROTTLED)

        sid = strategy_id or credential.strategy_id
        if not sid:
            raise Rejection(RejectReason.NO_STRATEGY)

        received_at = ensure_utc(received_at or self.clock())
        candidate = map_payload(doc, credential.mapping)
        signal = normalize(candidate, credential.id, sid, received_at=received_at, source=credential.source)

        try:
            recent = await self.store.list_recent_signals(sid, received_at - self.detector.window * 2)
        except Exception as exc:
            logger.exception("Recent signal lookup failed", extra={"strategy_id": sid})
            raise StoreUnavailable("recent signals unavailable") from exc
        signal = self.detector.annotate(signal, recent)

        try:
            appended = await self.store.append_signal(signal, raw_payload=doc if isinstance(doc, dict) else None)
        except Exception as exc:
            self.detector.forget(sid, signal.id)
            logger.exception("Signal append failed", extra={"strategy_id": sid, "symbol": signal.symbol})
            raise StoreUnavailable("signal not stored") from exc

        if not appended.created:
            self.detector.forget(sid, signal.id)
            original = await self.store.get_signal(appended.signal_id)
            logger.info(
                "Replayed alert id, returning original signal",
                extra={"strategy_id": sid, "signal_id": appended.signal_id, "dedup_key": signal.dedup_key},
            )
            delta = await self.engine.submit(original) if original is not None else None
            return self._result(appended.signal_id, original, delta, replayed=True)

        if signal.possible_duplicate_of:
            logger.info(
                "Probable duplicate signal stored",
                extra={"signal_id": signal.id, "duplicate_of": signal.possible_duplicate_of, "symbol": signal.symbol},
            )
        delta = await self.engine.submit(signal)
        if self.on_accepted is not None:
            await self.on_accepted(signal)
        return self._result(signal.id, signal, delta)

    @staticmethod
    def _result(
        signal_id: str, signal: Optional[Signal], delta: Optional[TradeDelta], replayed: bool = False
    ) -> IngestResult:
        return IngestResult(
            signal_id=signal_id,
            possible_duplicate_of=signal.possible_duplicate_of if signal else None,
            replayed=replayed,
            trade_action=delta.action.value if delta else None,
            trade_id=delta.trade.id if delta and delta.trade else None,
        )
