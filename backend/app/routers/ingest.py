from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from signaldesk.errors import RejectReason, Rejection, StoreUnavailable
from signaldesk.ingest import Credential
from signaldesk.schemas import MappingConfig, SignalSource
from signaldesk.utils.time import utcnow

from app.auth import get_api_key_from_request, get_webhook_token
from app.deps import get_db
from app.schemas import IngestAccepted, IngestRejected
from app.services.runtime import runtime
from app.storage import repo
from app.storage.repo import mapping_from_key


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["ingest"])

async def _read_body(req: Request) -> Any:
    ctype = (req.headers.get("content-type") or "").lower()
    raw = await req.body()
    if "application/json" in ctype or "text/plain" in ctype or not ctype:
        try:
            return json.loads(raw or b"{}")
        except ValueError:
            raise HTTPException(400, "Invalid payload format")
    if "application/x-www-form-urlencoded" in ctype:
        return dict(parse_qsl(raw.decode("utf-8", errors="replace"), keep_blank_values=True))
    raise HTTPException(415, "Use application/json, application/x-www-form-urlencoded, or text/plain")


def _rejected(exc: Rejection) -> JSONResponse:
    headers = {"Retry-After": "60"} if exc.reason == RejectReason.THROTTLED else None
    body = IngestRejected(reason=exc.reason.value, message=exc.detail)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(), headers=headers)


def _unavailable() -> JSONResponse:
    body = IngestRejected(reason="StoreUnavailable", message="Signal not stored, retry with backoff")
    return JSONResponse(status_code=503, content=body.model_dump())


async def _run(credential: Credential, doc: Any, strategy_id: str | None) -> tuple[int, Any]:
    try:
        result = await runtime.orchestrator.ingest(credential, doc, strategy_id=strategy_id)
    except Rejection as exc:
        logger.info(
            "Signal rejected",
            extra={"credential_id": credential.id, "reason": exc.reason.value},
        )
        return exc.status_code, _rejected(exc)
    except StoreUnavailable:
        return 503, _unavailable()
    return 202, JSONResponse(status_code=202, content=IngestAccepted(**result.model_dump()).model_dump())


@router.post("/signal")
async def ingest_signal(req: Request, db: AsyncSession = Depends(get_db)):
    key = get_api_key_from_request(req)
    if not key:
        raise HTTPException(401, "API key required: x-api-key header, Authorization: Bearer <key>, or api_key query param")
    k = await repo.get_api_key(db, key)
    if k is None:
        raise HTTPException(401, "Invalid API key")

    doc = await _read_body(req)

    mapping = mapping_from_key(k)
    strategy_id = k.strategy_id
    if strategy_id:
        st = await repo.get_strategy(db, strategy_id)
        if st is None or st.is_deleted:
            raise HTTPException(410, "Strategy has been deleted")
        if not st.is_active:
            mapping = mapping.model_copy(update={"active": False})
    elif k.is_active:
        st = await repo.first_active_strategy(db, k.user_id)
        strategy_id = st.id if st else None

    credential = Credential(id=k.id, account_id=k.user_id, strategy_id=strategy_id, mapping=mapping)
    status, response = await _run(credential, doc, strategy_id)
    if status == 202:
        try:
            await repo.touch_api_key(db, k.id, utcnow())
        except SQLAlchemyError as exc:
            # the signal is already stored; usage stats are best effort
            logger.warning("API key usage not recorded", extra={"credential_id": k.id, "error": str(exc)})
            await db.rollback()
    return response


@router.post("/webhook/{strategy_id}")
async def ingest_webhook(strategy_id: str, req: Request, db: AsyncSession = Depends(get_db)):
    doc = await _read_body(req)
    st = await repo.get_strategy(db, strategy_id)
    if st is None:
        raise HTTPException(404, "Strategy not found")
    token = get_webhook_token(req, doc)
    if not token or token != st.secret_token:
        raise HTTPException(401, "Invalid token")
    if st.is_deleted:
        raise HTTPException(410, "Strategy has been deleted")

    plan = await runtime.plans.get_plan(st.user_id)
    mapping = MappingConfig(
        rate_limit_per_minute=st.rate_limit_per_minute or plan.rate_limit_ceiling_per_minute,
        active=bool(st.is_active),
    )
    credential = Credential(
        id=f"strategy:{st.id}",
        account_id=st.user_id,
        strategy_id=st.id,
        mapping=mapping,
        source=SignalSource.WEBHOOK,
    )
    _, response = await _run(credential, doc, st.id)
    return response
