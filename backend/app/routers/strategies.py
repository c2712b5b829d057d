from __future__ import annotations

import secrets
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from signaldesk.pnl.calc import summarize
from signaldesk.plans import clamp_rate_limit, history_cutoff
from signaldesk.schemas import Trade
from signaldesk.utils.time import utcnow

from app.deps import get_db, require_account
from app.models import Strategy
from app.schemas import WebhookSettingsIn
from app.services.runtime import runtime
from app.storage import repo


router = APIRouter(prefix="/api/strategies", tags=["strategies"])

CSV_COLUMNS = [
    "id", "symbol", "direction", "status", "entry_price", "entry_time", "exit_price", "exit_time",
    "pnl_percent", "opening_signal_id", "closing_signal_id",
]


class StrategyIn(BaseModel):
    name: str = ""
    rate_limit_per_minute: Optional[int] = None


def _serialize(st: Strategy) -> dict:
    return {
        "id": st.id,
        "name": st.name,
        "secret_token": st.secret_token,
        "rate_limit_per_minute": st.rate_limit_per_minute,
        "is_active": bool(st.is_active),
        "webhook_path": f"/api/webhook/{st.id}",
        "created_at": st.created_at.isoformat() if st.created_at else None,
    }


async def _own_strategy(db: AsyncSession, account_id: str, strategy_id: str) -> Strategy:
    st = await repo.get_strategy(db, strategy_id)
    if st is None or st.user_id != account_id:
        raise HTTPException(404, "Strategy not found")
    if st.is_deleted:
        raise HTTPException(410, "Strategy has been deleted")
    return st


@router.get("")
async def list_strategies(db: AsyncSession = Depends(get_db), account_id: str = Depends(require_account)):
    q = await db.execute(
        select(Strategy)
        .where(Strategy.user_id == account_id, Strategy.is_deleted.is_(False))
        .order_by(Strategy.created_at.asc())
    )
    return [_serialize(st) for st in q.scalars().all()]


@router.post("", status_code=201)
async def create_strategy(
    body: StrategyIn, db: AsyncSession = Depends(get_db), account_id: str = Depends(require_account)
):
    plan = await runtime.plans.get_plan(account_id)
    if plan.max_strategies is not None:
        q = await db.execute(
            select(func.count(Strategy.id)).where(Strategy.user_id == account_id, Strategy.is_deleted.is_(False))
        )
        if int(q.scalar() or 0) >= plan.max_strategies:
            raise HTTPException(403, f"Plan {plan.tier} allows {plan.max_strategies} strategies")
    st = Strategy(
        id=str(uuid.uuid4()),
        user_id=account_id,
        name=body.name,
        secret_token=secrets.token_urlsafe(24),
        rate_limit_per_minute=clamp_rate_limit(body.rate_limit_per_minute, plan),
        is_active=True,
        is_deleted=False,
    )
    db.add(st)
    await db.commit()
    await db.refresh(st)
    return _serialize(st)


@router.delete("/{strategy_id}")
async def delete_strategy(
    strategy_id: str, db: AsyncSession = Depends(get_db), account_id: str = Depends(require_account)
):
    st = await _own_strategy(db, account_id, strategy_id)
    st.is_deleted = True
    st.is_active = False
    await db.commit()
    return {"ok": True}


@router.put("/{strategy_id}/webhook")
async def update_webhook(
    strategy_id: str,
    body: WebhookSettingsIn,
    db: AsyncSession = Depends(get_db),
    account_id: str = Depends(require_account),
):
    st = await _own_strategy(db, account_id, strategy_id)
    plan = await runtime.plans.get_plan(account_id)
    st.rate_limit_per_minute = clamp_rate_limit(body.rate_limit_per_minute, plan)
    await db.commit()
    runtime.admission.forget(f"strategy:{st.id}")
    return _serialize(st)


@router.get("/{strategy_id}/signals")
async def list_signals(
    strategy_id: str,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    account_id: str = Depends(require_account),
):
    await _own_strategy(db, account_id, strategy_id)
    plan = await runtime.plans.get_plan(account_id)
    rows = await repo.list_signals(db, strategy_id, history_cutoff(plan, utcnow()), limit, offset)
    return [s.model_dump(mode="json") for s in rows]


async def _visible_trades(db: AsyncSession, account_id: str, strategy_id: str, status: Optional[str]) -> list[Trade]:
    await _own_strategy(db, account_id, strategy_id)
    plan = await runtime.plans.get_plan(account_id)
    return await repo.list_trades(db, strategy_id, history_cutoff(plan, utcnow()), status)


@router.get("/{strategy_id}/trades")
async def list_trades(
    strategy_id: str,
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    account_id: str = Depends(require_account),
):
    trades = await _visible_trades(db, account_id, strategy_id, status)
    return [t.model_dump(mode="json") for t in trades]


@router.get("/{strategy_id}/trades/export")
async def export_trades(
    strategy_id: str,
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    account_id: str = Depends(require_account),
):
    plan = await runtime.plans.get_plan(account_id)
    if not plan.csv_export:
        raise HTTPException(403, f"CSV export is not available on the {plan.tier} plan")
    trades = await _visible_trades(db, account_id, strategy_id, status)

    def row_to_csv(t: Trade) -> str:
        vals = t.model_dump(mode="json")
        out = []
        for c in CSV_COLUMNS:
            v = vals.get(c)
            s = "" if v is None else str(v).replace("\n", " ").replace("\r", " ")
            if "," in s or '"' in s:
                s = '"' + s.replace('"', '""') + '"'
            out.append(s)
        return ",".join(out)

    content = ",".join(CSV_COLUMNS) + "\n" + "\n".join(row_to_csv(t) for t in trades)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=trades_{strategy_id}.csv"},
    )


@router.get("/{strategy_id}/performance")
async def performance(
    strategy_id: str, db: AsyncSession = Depends(get_db), account_id: str = Depends(require_account)
):
    trades = await _visible_trades(db, account_id, strategy_id, None)
    return summarize(trades).model_dump()
