from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from inboxguard.apps.api.deps import get_db
from inboxguard.apps.api.openapi import NOTIFICATION_ERROR_RESPONSES
from inboxguard.apps.api.response import SuccessEnvelope, success_response
from inboxguard.services.notifications.delivery import (
    INVALID_PAYLOAD_ERROR,
    deliver_in_app_notification,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"], responses=NOTIFICATION_ERROR_RESPONSES)

DEFAULT_SOURCE = "api.notifications.post"


class NotificationCreateRequest(BaseModel):
    # Fields stay optional here; emptiness and length are enforced by the payload normalizer.
    model_config = ConfigDict(populate_by_name=True)

    user_id: str | None = Field(default=None, alias="userId")
    title: str | None = None
    message: str | None = None
    type: str | None = None
    related_id: str | None = Field(default=None, alias="relatedId")
    sender_id: str | None = Field(default=None, alias="senderId")
    source: str | None = Field(default=None, max_length=64)


class NotificationDeliveryResponse(BaseModel):
    delivered: bool
    queued: bool
    attempts: int
    notification_id: str | None = None
    queue_id: str | None = None
    error: str | None = None


@router.post(
    "",
    response_model=SuccessEnvelope[NotificationDeliveryResponse],
    responses={202: {"model": SuccessEnvelope[NotificationDeliveryResponse], "description": "Queued for retry"}},
)
async def create_notification(
    request: Request,
    body: NotificationCreateRequest,
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Record an in-app notification for a business event.

    200 when the notification was written, 202 when it was handed to the
    retry queue, 503 when it could be neither written nor queued.
    """
    payload: dict[str, Any] = body.model_dump(exclude={"source"})
    result = await deliver_in_app_notification(
        payload,
        session=db,
        source=(body.source or "").strip() or DEFAULT_SOURCE,
    )
    if result.error == INVALID_PAYLOAD_ERROR:
        raise HTTPException(
            status_code=422,
            detail={"code": "INVALID_NOTIFICATION_PAYLOAD", "message": INVALID_PAYLOAD_ERROR},
        )
    data = NotificationDeliveryResponse(
        delivered=result.delivered,
        queued=result.queued,
        attempts=result.attempts,
        notification_id=result.notification_id,
        queue_id=result.queue_id,
        error=None if result.delivered else result.error,
    )
    if result.delivered:
        return JSONResponse(content=success_response(request=request, data=data), status_code=200)
    if result.queued:
        return JSONResponse(content=success_response(request=request, data=data), status_code=202)
    logger.error(
        "notification_delivery_dropped user_id=%s attempts=%s error=%s",
        payload.get("user_id"),
        result.attempts,
        result.error,
    )
    raise HTTPException(
        status_code=503,
        detail={
            "code": "NOTIFICATION_DELIVERY_FAILED",
            "message": result.error or "Notification delivery failed",
            "attempts": result.attempts,
            "queued": False,
        },
    )
