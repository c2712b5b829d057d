from fastapi import Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from .storage.db import SessionLocal


async def get_db() -> AsyncSession:
    async with SessionLocal() as session:
        try:
            yield session
        except Exception:
            # roll back so the session is not left in PendingRollback
            await session.rollback()
            raise


async def require_account(x_account_id: str | None = Header(None)) -> str:
    """Account id forwarded by the upstream auth gateway."""
    if not x_account_id or not x_account_id.strip():
        raise HTTPException(401, "Missing account")
    return x_account_id.strip()
