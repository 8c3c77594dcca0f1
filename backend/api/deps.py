"""
PracticeOps API Dependencies

Dependency injection for DB sessions, auth, and practice (tenant) context.
"""

import uuid
from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.context import ROLE_PRIORITY, RequestContext
from db.session import TENANT_INFO_KEY, TENANT_SETTING, AsyncSessionLocal

settings = get_settings()
security = HTTPBearer(auto_error=not settings.debug)

# Dev practice_id must match the local seed data
DEV_PRACTICE_ID = "00000000-0000-0000-0000-000000000001"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """Decode JWT and return user payload. Bypassed in debug mode."""
    if settings.debug:
        return {
            "sub": "dev-user",
            "email": "dev@practiceops.app",
            "practice_id": DEV_PRACTICE_ID,
            "role": "ADMIN",
        }

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    from core.security import decode_access_token

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return payload


def get_request_context(user: dict = Depends(get_current_user)) -> RequestContext:
    """Acting user, practice and role from the token claims."""
    practice_id = user.get("practice_id")
    if not practice_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No practice context",
        )
    try:
        practice_uuid = uuid.UUID(str(practice_id))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid practice context",
        )

    role = str(user.get("role") or "VIEWER").upper()
    if role not in ROLE_PRIORITY:
        role = "VIEWER"
    return RequestContext(practice_id=practice_uuid, user_id=str(user.get("sub") or "unknown"), role=role)


async def get_tenant_db(
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> AsyncSession:
    """
    Get a DB session with tenant context set.
    Sets the PostgreSQL RLS variable now and again on every later
    transaction of this session (see db.session.apply_tenant_setting).
    """
    db.info[TENANT_INFO_KEY] = str(ctx.practice_id)
    if db.in_transaction():
        await db.execute(
            text("SELECT set_config(:name, :practice_id, true)"),
            {"name": TENANT_SETTING, "practice_id": str(ctx.practice_id)},
        )
    else:
        await db.connection()
    return db
