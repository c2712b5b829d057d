from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from signaldesk.errors import StoreUnavailable
from signaldesk.schemas import TradeStatus

from app.deps import get_db, require_account
from app.models import Strategy
from app.services.runtime import runtime
from app.storage import repo


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["trades"])


@router.post("/trades/{trade_id}/cancel")
async def cancel_trade(trade_id: str, db: AsyncSession = Depends(get_db), account_id: str = Depends(require_account)):
    t = await runtime.store.get_trade(trade_id)
    if t is None:
        raise HTTPException(404, "Not found")
    st = await repo.get_strategy(db, t.strategy_id)
    if st is None or st.user_id != account_id:
        raise HTTPException(404, "Not found")
    if t.status != TradeStatus.OPEN:
        raise HTTPException(409, f"Trade is {t.status.value}")
    try:
        cancelled = await runtime.engine.cancel(t.strategy_id, t.symbol, trade_id=t.id)
    except StoreUnavailable:
        raise HTTPException(503, "Trade store unavailable")
    if cancelled is None:
        raise HTTPException(409, "Trade is no longer open")
    logger.info("Trade cancelled", extra={"trade_id": t.id, "strategy_id": t.strategy_id, "symbol": t.symbol})
    return cancelled.model_dump(mode="json")


@router.get("/live-pnl")
async def live_pnl(
    strategy_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    account_id: str = Depends(require_account),
):
    q = await db.execute(select(Strategy.id).where(Strategy.user_id == account_id))
    owned = set(q.scalars().all())
    if strategy_id is not None:
        if strategy_id not in owned:
            raise HTTPException(404, "Strategy not found")
        owned = {strategy_id}
    return [p.model_dump(mode="json") for p in runtime.tracker.snapshot() if p.strategy_id in owned]
