import asyncio
import os
import secrets
import sys
import uuid

import pytest

# 'app' lives in backend/, 'signaldesk' at the repo root
THIS_DIR = os.path.dirname(__file__)
BACKEND_DIR = os.path.abspath(os.path.join(THIS_DIR, "..", ".."))
ROOT_DIR = os.path.abspath(os.path.join(BACKEND_DIR, ".."))
for p in (BACKEND_DIR, ROOT_DIR):
    if p not in sys.path:
        sys.path.insert(0, p)

# Set before importing the DB module; keep the poller and network out of tests
os.environ.setdefault("SQLITE_URL", "sqlite+aiosqlite:///./test_signaldesk.db")
os.environ["LIVE_PNL_ENABLED"] = "0"
os.environ["PRICE_PROVIDER"] = "offline"
os.environ["RATE_LIMIT_BACKEND"] = "local"

from app.models import ApiKey, Profile, Strategy
from app.storage.db import SessionLocal, engine, init_db


@pytest.fixture(scope="session", autouse=True)
def _init_db_session():
    async def _go():
        await init_db()
        await engine.dispose()

    asyncio.run(_go())


@pytest.fixture
def seed():
    """Create an account with one strategy and one API key; returns their ids."""

    async def _seed(plan="FREE", mapping=None, defaults=None, rate=60, bind_strategy=True, key_active=True):
        account_id = f"acct-{uuid.uuid4().hex[:8]}"
        strategy_id = str(uuid.uuid4())
        key = "sp_" + secrets.token_hex(12)
        async with SessionLocal() as s:
            s.add(Profile(user_id=account_id, plan=plan))
            s.add(Strategy(id=strategy_id, user_id=account_id, name="trend", secret_token="tok-" + strategy_id[:8]))
            s.add(
                ApiKey(
                    id=str(uuid.uuid4()),
                    user_id=account_id,
                    strategy_id=strategy_id if bind_strategy else None,
                    api_key=key,
                    payload_mapping=mapping or {},
                    default_values=defaults or {},
                    rate_limit_per_minute=rate,
                    is_active=key_active,
                )
            )
            await s.commit()
        return {"account_id": account_id, "strategy_id": strategy_id, "api_key": key, "token": "tok-" + strategy_id[:8]}

    return _seed
