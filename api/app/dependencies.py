# api/app/dependencies.py
from __future__ import annotations

import hmac
from collections.abc import AsyncGenerator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.app.config import Settings, get_settings
from db.session import get_db


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_db():
        yield session


async def verify_api_key(
    x_api_key: str = Header(..., alias="X-Api-Key"),
    settings: Settings = Depends(get_settings),
) -> None:
    """Service-to-service check; end-user auth happens upstream."""
    if not hmac.compare_digest(x_api_key.encode(), settings.api_secret_key.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )


async def get_current_owner(
    x_owner_id: str = Header(..., alias="X-Owner-Id", min_length=1, max_length=128),
    _: None = Depends(verify_api_key),
) -> str:
    """The principal the upstream gateway authenticated."""
    return x_owner_id
