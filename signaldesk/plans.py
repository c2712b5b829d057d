from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel, ConfigDict


class PlanLimits(BaseModel):
    model_config = ConfigDict(frozen=True)

    tier: str
    rate_limit_ceiling_per_minute: int
    history_window_days: Optional[int]  # None = unlimited
    max_strategies: Optional[int]  # None = unlimited
    csv_export: bool


PLAN_LIMITS: dict[str, PlanLimits] = {
    "FREE": PlanLimits(tier="FREE", rate_limit_ceiling_per_minute=60, history_window_days=7, max_strategies=1, csv_export=False),
    "PRO": PlanLimits(tier="PRO", rate_limit_ceiling_per_minute=300, history_window_days=90, max_strategies=10, csv_export=True),
    "ELITE": PlanLimits(tier="ELITE", rate_limit_ceiling_per_minute=1200, history_window_days=None, max_strategies=None, csv_export=True),
}


def get_plan_limits(tier: str | None) -> PlanLimits:
    return PLAN_LIMITS.get(str(tier or "").strip().upper(), PLAN_LIMITS["FREE"])


def clamp_rate_limit(requested: int | None, plan: PlanLimits) -> int:
    """Clamp a credential's configured rate to the plan ceiling (write time only)."""
    ceiling = plan.rate_limit_ceiling_per_minute
    if requested is None:
        return ceiling
    return max(1, min(int(requested), ceiling))


def history_cutoff(plan: PlanLimits, now: datetime) -> Optional[datetime]:
    if plan.history_window_days is None:
        return None
    return now - timedelta(days=plan.history_window_days)


class StaticPlanResolver:
    """Resolves every account to a fixed tier, or per-account overrides."""

    def __init__(self, default_tier: str = "FREE", overrides: dict[str, str] | None = None):
        self.default_tier = default_tier
        self.overrides = dict(overrides or {})

    async def get_plan(self, account_id: str) -> PlanLimits:
        return get_plan_limits(self.overrides.get(account_id, self.default_tier))
