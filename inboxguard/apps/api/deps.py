from __future__ import annotations

import hmac
from typing import AsyncGenerator

from fastapi import Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from inboxguard.core.config import get_settings
from inboxguard.persistence.db import get_session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error("Missing or invalid bearer token")
    return parts[1]


async def require_ops_token(authorization: str | None = Header(default=None)) -> None:
    """Guard ops routes with ``OPS_API_TOKEN`` when one is configured.

    With no token configured the ops surface is open, which suits local runs
    and deployments that restrict it at the network edge.
    """
    expected = get_settings().ops_api_token
    if not expected:
        return
    token = _parse_bearer_token(authorization)
    if token is None or not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        raise _auth_error("Missing or invalid bearer token")
