from __future__ import annotations

from datetime import datetime, timezone
import logging
import time
from typing import Literal

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from inboxguard.apps.api.deps import get_db
from inboxguard.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from inboxguard.apps.api.response import SuccessEnvelope, success_response
from inboxguard.core.config import get_settings
from inboxguard.services.notifications.health import get_notification_delivery_health

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)

_STARTED_AT = time.monotonic()


class HealthCheck(BaseModel):
    name: str
    status: Literal["pass", "fail", "warn"]
    latency_ms: int | None = None
    message: str | None = None


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    timestamp: datetime
    uptime_s: int
    version: str
    checks: list[HealthCheck]


async def _reset_session(db: AsyncSession) -> None:
    try:
        await db.rollback()
    except Exception:  # noqa: BLE001 - the connection may already be gone
        logger.debug("health_session_rollback_failed")


async def _database_check(db: AsyncSession) -> HealthCheck:
    started = time.monotonic()
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:  # noqa: BLE001 - reported as a failed check, not a 500
        logger.warning("health_database_check_failed error=%s", exc)
        await _reset_session(db)
        return HealthCheck(name="database", status="fail", message="Connection failed")
    return HealthCheck(
        name="database",
        status="pass",
        latency_ms=int((time.monotonic() - started) * 1000),
    )


async def _delivery_check(db: AsyncSession) -> HealthCheck:
    try:
        health = await get_notification_delivery_health(session=db)
    except Exception as exc:  # noqa: BLE001 - delivery stats are advisory for liveness
        logger.warning("health_delivery_check_failed error=%s", exc)
        await _reset_session(db)
        return HealthCheck(name="notification_delivery", status="warn", message="Delivery stats unavailable")
    if health.degraded:
        return HealthCheck(name="notification_delivery", status="warn", message="; ".join(health.reasons))
    return HealthCheck(name="notification_delivery", status="pass")


@router.get(
    "/health",
    response_model=SuccessEnvelope[HealthResponse],
    responses={503: {"model": SuccessEnvelope[HealthResponse], "description": "Database unreachable"}},
)
async def health(request: Request, db: AsyncSession = Depends(get_db)) -> JSONResponse:
    # Database failure is unhealthy (503); degraded delivery still serves 200.
    settings = get_settings()
    checks = [await _database_check(db)]
    if checks[0].status == "pass":
        checks.append(await _delivery_check(db))

    if any(check.status == "fail" for check in checks):
        overall = "unhealthy"
    elif any(check.status == "warn" for check in checks):
        overall = "degraded"
    else:
        overall = "healthy"

    payload = HealthResponse(
        status=overall,
        timestamp=datetime.now(timezone.utc),
        uptime_s=int(time.monotonic() - _STARTED_AT),
        version=settings.app_version,
        checks=checks,
    )
    return JSONResponse(
        content=success_response(request=request, data=payload),
        status_code=503 if overall == "unhealthy" else 200,
    )
