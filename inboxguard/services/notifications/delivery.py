from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any, Mapping
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from inboxguard.core.config import get_settings
from inboxguard.domain.models import Notification, NotificationRetryQueueEntry
from inboxguard.services.notifications.metrics import (
    EVENT_IMMEDIATE_DELIVERED,
    EVENT_IMMEDIATE_FAILED,
    EVENT_QUEUED,
    record_delivery_metric,
)
from inboxguard.services.notifications.payload import NotificationPayload, normalize_payload
from inboxguard.services.resilience import call_with_timeout, immediate_backoff_policy


logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_DELIVERED = "delivered"
STATUS_DEAD_LETTER = "dead_letter"

INVALID_PAYLOAD_ERROR = "Invalid notification payload"
DEFAULT_DELIVERY_ERROR = "Notification delivery failed"


@dataclass(slots=True)
class DeliverNotificationResult:
    delivered: bool
    queued: bool
    attempts: int
    notification_id: str | None = None
    queue_id: str | None = None
    error: str | None = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def _sleep_ms(delay_ms: int) -> None:
    await asyncio.sleep(max(0, delay_ms) / 1000.0)


def error_message(exc: BaseException) -> str:
    # Store and surface the message only; tracebacks stay in logs.
    message = str(exc).strip()
    return message or exc.__class__.__name__


async def _insert_notification(session: AsyncSession, payload: NotificationPayload) -> str:
    notification_id = uuid4().hex
    session.add(
        Notification(
            id=notification_id,
            user_id=payload.user_id,
            title=payload.title,
            message=payload.message,
            type=payload.type,
            related_id=payload.related_id,
            sender_id=payload.sender_id,
            is_read=False,
            created_at=_utc_now(),
        )
    )
    await session.commit()
    return notification_id


async def _insert_retry_entry(session: AsyncSession, entry: NotificationRetryQueueEntry) -> None:
    session.add(entry)
    await session.commit()


async def persist_notification(*, session: AsyncSession, payload: NotificationPayload) -> str:
    """Write one notification row and return its id.

    The write is bounded by the store timeout; on any failure the session is
    rolled back so the caller can retry on the same session.
    """
    try:
        return await call_with_timeout(
            lambda: _insert_notification(session, payload),
            operation="notification write",
        )
    except Exception:
        await session.rollback()
        raise


async def enqueue_notification_retry(
    *,
    session: AsyncSession,
    payload: NotificationPayload,
    source: str,
    last_error: str,
    max_attempts: int,
) -> str | None:
    # Hand an undeliverable payload to the durable queue; returns None when the queue write itself fails.
    queue_id = uuid4().hex
    now = _utc_now()
    entry = NotificationRetryQueueEntry(
        id=queue_id,
        user_id=payload.user_id,
        title=payload.title,
        message=payload.message,
        type=payload.type,
        related_id=payload.related_id,
        sender_id=payload.sender_id,
        source=source,
        status=STATUS_PENDING,
        attempts=0,
        max_attempts=max(1, int(max_attempts)),
        next_attempt_at=now,
        last_error=last_error,
        created_at=now,
        updated_at=now,
    )

    try:
        await call_with_timeout(
            lambda: _insert_retry_entry(session, entry),
            operation="retry queue write",
        )
    except Exception as exc:  # noqa: BLE001 - caller reports queued=False instead of raising
        try:
            await session.rollback()
        except Exception:  # noqa: BLE001 - connection may already be gone
            logger.debug("notification_retry_enqueue_rollback_failed source=%s", source)
        logger.error(
            "notification_retry_enqueue_failed source=%s user_id=%s type=%s related_id=%s "
            "sender_id=%s title=%r error=%s original_error=%s",
            source,
            payload.user_id,
            payload.type,
            payload.related_id,
            payload.sender_id,
            payload.title,
            error_message(exc),
            last_error,
        )
        return None

    await record_delivery_metric(
        session=session,
        event=EVENT_QUEUED,
        source=source,
        queued=1,
        extra={"queue_id": queue_id, "reason": last_error},
    )
    logger.info("notification_retry_enqueued source=%s queue_id=%s", source, queue_id)
    return queue_id


async def deliver_in_app_notification(
    payload: Mapping[str, Any] | NotificationPayload | None,
    *,
    session: AsyncSession,
    source: str = "unknown",
    max_immediate_attempts: int | None = None,
    queue_on_failure: bool = True,
    max_queue_attempts: int | None = None,
) -> DeliverNotificationResult:
    """Deliver a notification now, falling back to the retry queue.

    Invalid payloads are rejected with ``attempts=0`` and nothing is written.
    Otherwise the notification write is tried up to ``max_immediate_attempts``
    times with a short capped backoff between tries. When every try fails and
    ``queue_on_failure`` is set, the payload is handed to the retry queue and
    the result reports ``queued=True`` if that hand-off succeeded.
    """
    settings = get_settings()
    normalized = normalize_payload(payload)
    if normalized is None:
        return DeliverNotificationResult(
            delivered=False,
            queued=False,
            attempts=0,
            error=INVALID_PAYLOAD_ERROR,
        )

    if max_immediate_attempts is None:
        max_immediate_attempts = settings.notify_immediate_max_attempts
    if max_queue_attempts is None:
        max_queue_attempts = settings.notify_queue_max_attempts
    attempts_allowed = max(1, int(max_immediate_attempts))
    queue_attempts = max(1, int(max_queue_attempts))
    backoff = immediate_backoff_policy()

    last_error = ""
    for attempt in range(1, attempts_allowed + 1):
        try:
            notification_id = await persist_notification(session=session, payload=normalized)
        except Exception as exc:  # noqa: BLE001 - every write failure is retryable here
            last_error = error_message(exc)
            logger.warning(
                "notification_immediate_attempt_failed source=%s user_id=%s attempt=%s/%s error=%s",
                source,
                normalized.user_id,
                attempt,
                attempts_allowed,
                last_error,
            )
            if attempt < attempts_allowed:
                await _sleep_ms(backoff.delay_ms(attempt))
            continue

        await record_delivery_metric(
            session=session,
            event=EVENT_IMMEDIATE_DELIVERED,
            source=source,
            processed=1,
            delivered=1,
            extra={"attempt": attempt, "notification_id": notification_id},
        )
        return DeliverNotificationResult(
            delivered=True,
            queued=False,
            attempts=attempt,
            notification_id=notification_id,
        )

    if not queue_on_failure:
        await record_delivery_metric(
            session=session,
            event=EVENT_IMMEDIATE_FAILED,
            source=source,
            processed=1,
            extra={"attempts": attempts_allowed, "error": last_error},
        )
        return DeliverNotificationResult(
            delivered=False,
            queued=False,
            attempts=attempts_allowed,
            error=last_error,
        )

    queue_id = await enqueue_notification_retry(
        session=session,
        payload=normalized,
        source=source,
        last_error=last_error,
        max_attempts=queue_attempts,
    )
    if queue_id is None:
        # Dropped outright; keep it visible in the last-hour counters.
        await record_delivery_metric(
            session=session,
            event=EVENT_IMMEDIATE_FAILED,
            source=source,
            processed=1,
            extra={"attempts": attempts_allowed, "error": last_error, "queue_failed": True},
        )
    return DeliverNotificationResult(
        delivered=False,
        queued=queue_id is not None,
        attempts=attempts_allowed,
        queue_id=queue_id,
        error=last_error or DEFAULT_DELIVERY_ERROR,
    )
