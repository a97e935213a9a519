from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from inboxguard.apps.api.deps import get_db, require_ops_token
from inboxguard.apps.api.openapi import OPS_ERROR_RESPONSES
from inboxguard.apps.api.response import SuccessEnvelope, success_response
from inboxguard.services.notifications.health import (
    get_notification_delivery_health,
    get_notification_delivery_stats,
)
from inboxguard.services.notifications.retry_queue import process_notification_retry_queue
from inboxguard.services.notifications.scheduling import enqueue_retry_queue_run


router = APIRouter(
    prefix="/ops/notifications",
    tags=["ops"],
    responses=OPS_ERROR_RESPONSES,
    dependencies=[Depends(require_ops_token)],
)

OPS_PROCESSOR_SOURCE = "api.ops.retry-queue"


class RetryQueueProcessResponse(BaseModel):
    processed: int
    delivered: int
    retried: int
    dead_letter: int


class RetryQueueEnqueueResponse(BaseModel):
    enqueued: bool


class DeliveryStatsResponse(BaseModel):
    pending_queue: int
    stale_pending: int
    dead_letter: int
    processed_last_hour: int
    delivered_last_hour: int
    queued_last_hour: int
    retried_last_hour: int
    dead_letter_last_hour: int


class DeliveryThresholdsResponse(BaseModel):
    dead_letter_threshold: int
    stale_pending_threshold: int
    pending_queue_warning_threshold: int


class DeliveryHealthResponse(BaseModel):
    status: Literal["healthy", "degraded"]
    degraded: bool
    reasons: list[str]
    thresholds: DeliveryThresholdsResponse
    stats: DeliveryStatsResponse


@router.post(
    "/retry-queue/process",
    response_model=SuccessEnvelope[RetryQueueProcessResponse],
    responses={202: {"model": SuccessEnvelope[RetryQueueEnqueueResponse], "description": "Handed to the worker"}},
)
async def process_retry_queue(
    request: Request,
    limit: int | None = Query(default=None, ge=1, le=500),
    defer: bool = Query(default=False, description="Enqueue the batch on the arq worker instead of running it inline."),
    db: AsyncSession = Depends(get_db),
):
    # Entry point for external cron triggers.
    if defer:
        if not await enqueue_retry_queue_run(limit=limit, source=OPS_PROCESSOR_SOURCE):
            raise HTTPException(
                status_code=503,
                detail={"code": "WORKER_QUEUE_UNAVAILABLE", "message": "Retry worker queue unavailable"},
            )
        payload = RetryQueueEnqueueResponse(enqueued=True)
        return JSONResponse(content=success_response(request=request, data=payload), status_code=202)
    result = await process_notification_retry_queue(session=db, limit=limit, source=OPS_PROCESSOR_SOURCE)
    return success_response(request=request, data=RetryQueueProcessResponse(**result.as_dict()))


@router.get("/delivery-stats", response_model=SuccessEnvelope[DeliveryStatsResponse])
async def delivery_stats(
    request: Request,
    stale_minutes: int | None = Query(default=None, ge=1),
    db: AsyncSession = Depends(get_db),
) -> dict:
    stats = await get_notification_delivery_stats(session=db, stale_minutes=stale_minutes)
    return success_response(request=request, data=DeliveryStatsResponse(**stats.as_dict()))


@router.get("/delivery-health", response_model=SuccessEnvelope[DeliveryHealthResponse])
async def delivery_health(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    # Always 200; "degraded" is the signal, so dashboards can read reasons.
    health = await get_notification_delivery_health(session=db)
    return success_response(request=request, data=DeliveryHealthResponse(**health.as_dict()))
