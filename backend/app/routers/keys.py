from __future__ import annotations

import secrets
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from signaldesk.plans import clamp_rate_limit

from app.deps import get_db, require_account
from app.models import ApiKey
from app.schemas import ApiKeyIn, ApiKeyOut, ApiKeyPatch
from app.services.runtime import runtime
from app.storage import repo


router = APIRouter(prefix="/api/keys", tags=["keys"])


def _to_iso(dtobj: Optional[datetime]) -> Optional[str]:
    return dtobj.isoformat() if dtobj else None


def _serialize(k: ApiKey) -> ApiKeyOut:
    return ApiKeyOut(
        id=k.id,
        name=k.name or "",
        api_key=k.api_key,
        strategy_id=k.strategy_id,
        payload_mapping=dict(k.payload_mapping or {}),
        default_values={str(a): str(b) for a, b in (k.default_values or {}).items()},
        rate_limit_per_minute=int(k.rate_limit_per_minute or 0),
        is_active=bool(k.is_active),
        request_count=int(k.request_count or 0),
        last_used_at=_to_iso(k.last_used_at),
    )


async def _check_strategy(db: AsyncSession, account_id: str, strategy_id: Optional[str]) -> None:
    if not strategy_id:
        return
    st = await repo.get_strategy(db, strategy_id)
    if st is None or st.user_id != account_id or st.is_deleted:
        raise HTTPException(404, "Strategy not found")


async def _own_key(db: AsyncSession, account_id: str, key_id: str) -> ApiKey:
    k = await db.get(ApiKey, key_id)
    if k is None or k.user_id != account_id:
        raise HTTPException(404, "Not found")
    return k


@router.get("", response_model=list[ApiKeyOut])
async def list_keys(db: AsyncSession = Depends(get_db), account_id: str = Depends(require_account)):
    q = await db.execute(select(ApiKey).where(ApiKey.user_id == account_id).order_by(ApiKey.created_at.asc()))
    return [_serialize(k) for k in q.scalars().all()]


@router.post("", response_model=ApiKeyOut, status_code=201)
async def create_key(
    body: ApiKeyIn, db: AsyncSession = Depends(get_db), account_id: str = Depends(require_account)
):
    await _check_strategy(db, account_id, body.strategy_id)
    plan = await runtime.plans.get_plan(account_id)
    k = ApiKey(
        id=str(uuid.uuid4()),
        user_id=account_id,
        strategy_id=body.strategy_id,
        name=body.name,
        api_key="sp_" + secrets.token_hex(24),
        payload_mapping=body.payload_mapping.model_dump(exclude_none=True),
        default_values=dict(body.default_values),
        rate_limit_per_minute=clamp_rate_limit(body.rate_limit_per_minute, plan),
        is_active=body.is_active,
        request_count=0,
    )
    db.add(k)
    await db.commit()
    await db.refresh(k)
    return _serialize(k)


@router.patch("/{key_id}", response_model=ApiKeyOut)
async def update_key(
    key_id: str,
    body: ApiKeyPatch,
    db: AsyncSession = Depends(get_db),
    account_id: str = Depends(require_account),
):
    k = await _own_key(db, account_id, key_id)
    fields = body.model_dump(exclude_unset=True)
    if "strategy_id" in fields:
        await _check_strategy(db, account_id, body.strategy_id)
        k.strategy_id = body.strategy_id
    if body.name is not None:
        k.name = body.name
    if body.payload_mapping is not None:
        k.payload_mapping = body.payload_mapping.model_dump(exclude_none=True)
    if body.default_values is not None:
        k.default_values = dict(body.default_values)
    if "rate_limit_per_minute" in fields:
        plan = await runtime.plans.get_plan(account_id)
        k.rate_limit_per_minute = clamp_rate_limit(body.rate_limit_per_minute, plan)
    if body.is_active is not None:
        k.is_active = body.is_active
    await db.commit()
    await db.refresh(k)
    return _serialize(k)


@router.delete("/{key_id}")
async def delete_key(key_id: str, db: AsyncSession = Depends(get_db), account_id: str = Depends(require_account)):
    k = await _own_key(db, account_id, key_id)
    await db.delete(k)
    await db.commit()
    runtime.admission.forget(k.id)
    return {"ok": True}
