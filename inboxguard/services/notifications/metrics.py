from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from inboxguard.domain.models import NotificationDeliveryMetric
from inboxguard.persistence.db import SessionLocal


logger = logging.getLogger(__name__)

EVENT_IMMEDIATE_DELIVERED = "immediate_delivered"
EVENT_IMMEDIATE_FAILED = "immediate_failed"
EVENT_QUEUED = "queued"
EVENT_QUEUE_PROCESS = "queue_process"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def record_delivery_metric(
    *,
    session: AsyncSession | None = None,
    event: str,
    source: str,
    processed: int = 0,
    delivered: int = 0,
    queued: int = 0,
    retried: int = 0,
    dead_letter: int = 0,
    extra: dict[str, Any] | None = None,
) -> None:
    # Best-effort append: a failed metric write is logged and never reaches the caller.
    row = NotificationDeliveryMetric(
        event=event,
        source=source,
        processed=int(processed),
        delivered=int(delivered),
        queued=int(queued),
        retried=int(retried),
        dead_letter=int(dead_letter),
        extra_json=dict(extra or {}),
        created_at=_utc_now(),
    )
    if session is None:
        async with SessionLocal() as metric_session:
            await _write_metric(metric_session, row)
        return
    await _write_metric(session, row)


async def _write_metric(session: AsyncSession, row: NotificationDeliveryMetric) -> None:
    try:
        session.add(row)
        await session.commit()
    except Exception as exc:  # noqa: BLE001 - metrics never fail delivery
        try:
            await session.rollback()
        except Exception:  # noqa: BLE001 - connection may already be gone
            logger.debug("notification_metric_rollback_failed event=%s", row.event)
        logger.warning(
            "notification_metric_write_failed event=%s source=%s error=%s",
            row.event,
            row.source,
            exc,
        )
