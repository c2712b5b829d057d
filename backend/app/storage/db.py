from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from typing import Any
import logging

from .. import models
from ..config import settings

logger = logging.getLogger(__name__)


def _make_engine():
    url = settings.DATABASE_URL or settings.SQLITE_URL
    # For SQLite, set connect timeout to reduce "database is locked" errors under load
    kwargs: dict[str, Any] = {"echo": False, "future": True}
    if url.startswith("sqlite+"):
        kwargs["connect_args"] = {"timeout": 15}
    else:
        # For MySQL/Postgres, enable pre_ping and modest recycle to avoid stale connections
        kwargs["pool_pre_ping"] = True
        kwargs["pool_recycle"] = 1800
    return create_async_engine(url, **kwargs)


engine = _make_engine()
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def init_db():
    async with engine.begin() as conn:
        if engine.url.get_backend_name().startswith("sqlite") and engine.url.database not in (None, "", ":memory:"):
            try:
                await conn.execute(text("PRAGMA journal_mode=WAL"))
                await conn.execute(text("PRAGMA synchronous=NORMAL"))
                await conn.execute(text("PRAGMA busy_timeout=5000"))
            except OperationalError as exc:
                logger.warning("SQLite pragmas not applied: %s", exc)
        await conn.run_sync(models.Base.metadata.create_all)
