from __future__ import annotations

import logging
from datetime import timedelta

from redis.asyncio import Redis

from signaldesk.ingest import IngestionOrchestrator
from signaldesk.pnl.live import LivePnLTracker
from signaldesk.rules.admission import AdmissionController, RedisAdmissionController
from signaldesk.rules.duplicates import DuplicateDetector
from signaldesk.rules.lifecycle import TradeLifecycleEngine

from ..config import settings
from ..storage.db import SessionLocal
from ..storage.repo import SqlStore
from .market import build_price_source
from .plans import DbPlanResolver

logger = logging.getLogger(__name__)


class Runtime:
    """Process-wide engine components shared by every request."""

    def __init__(self, session_factory=SessionLocal, price_source=None, redis_client: Redis | None = None):
        self.store = SqlStore(session_factory)
        self.plans = DbPlanResolver(session_factory)
        self.engine = TradeLifecycleEngine(
            persist=self.store.upsert_trade,
            reorder_window=settings.REORDER_WINDOW_MS / 1000.0,
            retention=timedelta(hours=settings.KEY_RETENTION_H),
        )
        local = AdmissionController()
        if settings.RATE_LIMIT_BACKEND.strip().lower() == "redis":
            self.admission = RedisAdmissionController(redis_client or Redis.from_url(settings.REDIS_URL), fallback=local)
        else:
            self.admission = local
        self.detector = DuplicateDetector(window=timedelta(seconds=settings.DUPLICATE_WINDOW_S))
        self.orchestrator = IngestionOrchestrator(
            self.store, self.engine, admission=self.admission, detector=self.detector
        )
        self.tracker = LivePnLTracker(
            price_source or build_price_source(settings.PRICE_PROVIDER),
            self.engine.open_trades,
            interval=settings.PRICE_POLL_INTERVAL_S,
            fetch_timeout=settings.PRICE_FETCH_TIMEOUT_S,
            stale_after=settings.PRICE_STALE_AFTER_S,
        )

    async def startup(self) -> None:
        trades = await self.store.list_latest_closed_trades()
        trades += await self.store.list_open_trades()
        self.engine.hydrate(trades)
        logger.info("Lifecycle engine hydrated", extra={"open_trades": len(self.engine.open_trades())})
        if settings.LIVE_PNL_ENABLED:
            self.tracker.start()

    async def shutdown(self) -> None:
        await self.tracker.stop()


runtime = Runtime()
