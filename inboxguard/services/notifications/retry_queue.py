from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from inboxguard.core.config import get_settings
from inboxguard.domain.models import NotificationRetryQueueEntry
from inboxguard.services.notifications.delivery import (
    STATUS_DEAD_LETTER,
    STATUS_DELIVERED,
    STATUS_PENDING,
    error_message,
    persist_notification,
)
from inboxguard.services.notifications.metrics import EVENT_QUEUE_PROCESS, record_delivery_metric
from inboxguard.services.notifications.payload import normalize_payload
from inboxguard.services.resilience import queue_backoff_ms


logger = logging.getLogger(__name__)

INVALID_QUEUED_PAYLOAD_ERROR = "Invalid payload"
DEFAULT_PROCESSOR_SOURCE = "internal.retry-processor"

_Entry = NotificationRetryQueueEntry


@dataclass(slots=True)
class ProcessNotificationRetryResult:
    processed: int = 0
    delivered: int = 0
    retried: int = 0
    dead_letter: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "delivered": self.delivered,
            "retried": self.retried,
            "dead_letter": self.dead_letter,
        }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def _select_due_entries(*, session: AsyncSession, now: datetime, limit: int) -> list[Any]:
    # Plain rows, not ORM instances: a failed notification write rolls the session back and would expire them.
    rows = (
        await session.execute(
            select(
                _Entry.id,
                _Entry.user_id,
                _Entry.title,
                _Entry.message,
                _Entry.type,
                _Entry.related_id,
                _Entry.sender_id,
                _Entry.attempts,
                _Entry.max_attempts,
            )
            .where(_Entry.status == STATUS_PENDING, _Entry.next_attempt_at <= now)
            .order_by(_Entry.next_attempt_at.asc(), _Entry.created_at.asc())
            .limit(limit)
        )
    ).all()
    # Release the read transaction before per-entry writes start.
    await session.commit()
    return list(rows)


async def _transition_entry(
    *,
    session: AsyncSession,
    entry_id: str,
    read_attempts: int,
    values: dict[str, Any],
) -> bool:
    # Compare-and-set on (pending, attempts) so terminal entries and newer attempt counts are never overwritten.
    result = await session.execute(
        update(_Entry)
        .where(
            _Entry.id == entry_id,
            _Entry.status == STATUS_PENDING,
            _Entry.attempts == read_attempts,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return (result.rowcount or 0) > 0


async def _process_entry(*, session: AsyncSession, row: Any) -> str | None:
    """Attempt one due entry and return the outcome recorded for it.

    Returns ``"delivered"``, ``"retried"`` or ``"dead_letter"``, or ``None``
    when another run already moved the entry on.
    """
    attempts = int(row.attempts or 0)
    max_attempts = max(1, int(row.max_attempts or get_settings().notify_queue_max_attempts))
    payload = normalize_payload(
        {
            "user_id": row.user_id,
            "title": row.title,
            "message": row.message,
            "type": row.type,
            "related_id": row.related_id,
            "sender_id": row.sender_id,
        }
    )

    if payload is None:
        now = _utc_now()
        applied = await _transition_entry(
            session=session,
            entry_id=row.id,
            read_attempts=attempts,
            values={
                "status": STATUS_DEAD_LETTER,
                "attempts": attempts + 1,
                "last_error": INVALID_QUEUED_PAYLOAD_ERROR,
                "dead_letter_at": now,
                "updated_at": now,
            },
        )
        return STATUS_DEAD_LETTER if applied else None

    try:
        notification_id = await persist_notification(session=session, payload=payload)
    except Exception as exc:  # noqa: BLE001 - failure feeds the backoff schedule
        next_attempts = attempts + 1
        message = error_message(exc)
        now = _utc_now()
        if next_attempts >= max_attempts:
            applied = await _transition_entry(
                session=session,
                entry_id=row.id,
                read_attempts=attempts,
                values={
                    "status": STATUS_DEAD_LETTER,
                    "attempts": next_attempts,
                    "last_error": message,
                    "dead_letter_at": now,
                    "updated_at": now,
                },
            )
            if applied:
                logger.warning(
                    "notification_retry_dead_lettered queue_id=%s user_id=%s attempts=%s error=%s",
                    row.id,
                    row.user_id,
                    next_attempts,
                    message,
                )
            return STATUS_DEAD_LETTER if applied else None
        applied = await _transition_entry(
            session=session,
            entry_id=row.id,
            read_attempts=attempts,
            values={
                "status": STATUS_PENDING,
                "attempts": next_attempts,
                "last_error": message,
                "next_attempt_at": now + timedelta(milliseconds=queue_backoff_ms(next_attempts)),
                "updated_at": now,
            },
        )
        return "retried" if applied else None

    now = _utc_now()
    applied = await _transition_entry(
        session=session,
        entry_id=row.id,
        read_attempts=attempts,
        values={
            "status": STATUS_DELIVERED,
            "notification_id": notification_id,
            "delivered_at": now,
            "updated_at": now,
        },
    )
    if not applied:
        # The notification row already exists; a concurrent run may have delivered it too.
        logger.info(
            "notification_retry_delivered_after_race queue_id=%s notification_id=%s",
            row.id,
            notification_id,
        )
    return STATUS_DELIVERED if applied else None


async def process_notification_retry_queue(
    *,
    session: AsyncSession,
    limit: int | None = None,
    source: str = DEFAULT_PROCESSOR_SOURCE,
) -> ProcessNotificationRetryResult:
    """Run one batch over pending entries whose next attempt is due.

    Entries are visited oldest-due first. Each one ends the pass delivered,
    rescheduled with a longer backoff, or dead-lettered once its attempts
    reach ``max_attempts``. One ``queue_process`` metric summarizes the batch.
    """
    if limit is None:
        limit = get_settings().notify_retry_batch_size
    limit = max(1, int(limit))
    result = ProcessNotificationRetryResult()

    rows = await _select_due_entries(session=session, now=_utc_now(), limit=limit)
    for row in rows:
        result.processed += 1
        try:
            outcome = await _process_entry(session=session, row=row)
        except Exception:  # noqa: BLE001 - one bad entry must not stall the batch
            logger.exception("notification_retry_entry_update_failed queue_id=%s", row.id)
            await session.rollback()
            continue
        if outcome is None:
            logger.info("notification_retry_entry_skipped queue_id=%s reason=concurrent_update", row.id)
        elif outcome == STATUS_DELIVERED:
            result.delivered += 1
        elif outcome == STATUS_DEAD_LETTER:
            result.dead_letter += 1
        else:
            result.retried += 1

    if result.processed > 0:
        await record_delivery_metric(
            session=session,
            event=EVENT_QUEUE_PROCESS,
            source=source,
            processed=result.processed,
            delivered=result.delivered,
            retried=result.retried,
            dead_letter=result.dead_letter,
            extra={"limit": limit},
        )
        logger.info(
            "notification_retry_batch_processed source=%s processed=%s delivered=%s retried=%s dead_letter=%s",
            source,
            result.processed,
            result.delivered,
            result.retried,
            result.dead_letter,
        )
    return result
