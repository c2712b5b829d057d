import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .log import setup_logging
from .services.runtime import runtime
from .storage.db import init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL)
    await init_db()
    await runtime.startup()
    logger.info("Signal desk started", extra={"env": settings.APP_ENV, "price_provider": settings.PRICE_PROVIDER})
    yield
    await runtime.shutdown()


app = FastAPI(title="Signal Desk", lifespan=lifespan)
# CORS: explicit origins outside local, otherwise allow all (dev)
cors_origins = ["*"]
if settings.APP_ENV != "local" and settings.CORS_ORIGINS and settings.CORS_ORIGINS.strip() != "*":
    cors_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/health")
async def health():
    return {"ok": True, "open_trades": len(runtime.engine.open_trades())}


from .routers import ingest as ingest_router
from .routers import keys as keys_router
from .routers import strategies as strategies_router
from .routers import trades as trades_router

app.include_router(ingest_router.router)
app.include_router(keys_router.router)
app.include_router(strategies_router.router)
app.include_router(trades_router.router)
