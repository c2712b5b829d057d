from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signaldesk.plans import PlanLimits, get_plan_limits

from ..models import Profile


class DbPlanResolver:
    """Reads the account's tier from the profiles table; unknown accounts are FREE."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.sessions = session_factory

    async def get_plan(self, account_id: str) -> PlanLimits:
        async with self.sessions() as s:
            p = await s.get(Profile, account_id)
            return get_plan_limits(p.plan if p else None)
