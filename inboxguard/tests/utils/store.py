from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import select

from inboxguard.domain.models import (
    Notification,
    NotificationDeliveryMetric,
    NotificationRetryQueueEntry,
)
from inboxguard.persistence.db import SessionLocal
from inboxguard.services.notifications import delivery as delivery_module


def as_utc(value: datetime | None) -> datetime | None:
    # sqlite hands back naive datetimes; everything is stored in UTC.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def fail_notification_writes(monkeypatch, *, failures: int | None = None, message: str = "store unavailable") -> dict[str, int]:
    """Make notification writes raise; ``failures=None`` fails every call.

    Returns a counter dict whose ``calls`` key tracks every attempted write.
    """
    original = delivery_module._insert_notification
    state = {"calls": 0}

    async def _flaky(session, payload):  # noqa: ANN001
        state["calls"] += 1
        if failures is None or state["calls"] <= failures:
            raise RuntimeError(message)
        return await original(session, payload)

    monkeypatch.setattr(delivery_module, "_insert_notification", _flaky)
    return state


def fail_retry_queue_writes(monkeypatch, *, message: str = "queue store unavailable") -> None:
    async def _broken(session, entry):  # noqa: ANN001
        raise RuntimeError(message)

    monkeypatch.setattr(delivery_module, "_insert_retry_entry", _broken)


async def add_queue_entry(
    *,
    next_attempt_at: datetime,
    status: str = "pending",
    attempts: int = 0,
    max_attempts: int = 8,
    title: str = "New exchange request",
    user_id: str = "user-1",
) -> str:
    entry_id = uuid4().hex
    async with SessionLocal() as session:
        session.add(
            NotificationRetryQueueEntry(
                id=entry_id,
                user_id=user_id,
                title=title,
                message="Someone wants to swap items with you.",
                type="exchange",
                related_id="exchange-42",
                sender_id="user-2",
                source="tests",
                status=status,
                attempts=attempts,
                max_attempts=max_attempts,
                next_attempt_at=next_attempt_at,
                last_error="store unavailable",
                created_at=next_attempt_at,
                updated_at=next_attempt_at,
            )
        )
        await session.commit()
    return entry_id


async def add_metric(*, event: str, created_at: datetime, **counters: Any) -> None:
    async with SessionLocal() as session:
        session.add(
            NotificationDeliveryMetric(
                event=event,
                source="tests",
                created_at=created_at,
                extra_json={},
                **counters,
            )
        )
        await session.commit()


async def get_queue_entry(entry_id: str) -> NotificationRetryQueueEntry | None:
    async with SessionLocal() as session:
        return await session.get(NotificationRetryQueueEntry, entry_id)


async def list_queue_entries() -> list[NotificationRetryQueueEntry]:
    async with SessionLocal() as session:
        return list((await session.execute(select(NotificationRetryQueueEntry))).scalars().all())


async def list_notifications() -> list[Notification]:
    async with SessionLocal() as session:
        return list((await session.execute(select(Notification))).scalars().all())


async def list_metrics(event: str | None = None) -> list[NotificationDeliveryMetric]:
    async with SessionLocal() as session:
        query = select(NotificationDeliveryMetric).order_by(NotificationDeliveryMetric.id.asc())
        if event is not None:
            query = query.where(NotificationDeliveryMetric.event == event)
        return list((await session.execute(query)).scalars().all())
