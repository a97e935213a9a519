from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
import logging

import pytest

from inboxguard.core.config import get_settings
from inboxguard.services.notifications import delivery as delivery_module
from inboxguard.services.notifications.delivery import (
    INVALID_PAYLOAD_ERROR,
    deliver_in_app_notification,
)
from inboxguard.tests.utils.store import (
    as_utc,
    fail_notification_writes,
    fail_retry_queue_writes,
    list_metrics,
    list_notifications,
    list_queue_entries,
)


PAYLOAD = {
    "user_id": "user-1",
    "title": "New exchange request",
    "message": "Someone wants to swap items with you.",
    "type": "exchange",
    "related_id": "exchange-42",
    "sender_id": "user-2",
}


@pytest.mark.asyncio
async def test_delivers_on_first_attempt(session) -> None:
    result = await deliver_in_app_notification(PAYLOAD, session=session, source="tests.exchange")

    assert result.delivered is True
    assert result.queued is False
    assert result.attempts == 1
    assert result.error is None
    rows = await list_notifications()
    assert [row.id for row in rows] == [result.notification_id]
    assert rows[0].is_read is False
    assert rows[0].related_id == "exchange-42"
    metrics = await list_metrics()
    assert [m.event for m in metrics] == ["immediate_delivered"]
    assert metrics[0].processed == 1 and metrics[0].delivered == 1
    assert metrics[0].extra_json == {"attempt": 1, "notification_id": result.notification_id}
    assert await list_queue_entries() == []


@pytest.mark.asyncio
async def test_delivers_after_transient_failures(session, monkeypatch, no_immediate_backoff_sleep) -> None:
    calls = fail_notification_writes(monkeypatch, failures=2)

    result = await deliver_in_app_notification(PAYLOAD, session=session)

    assert result.delivered is True
    assert result.attempts == 3
    assert calls["calls"] == 3
    assert no_immediate_backoff_sleep == [150, 300]
    assert len(await list_notifications()) == 1
    assert await list_queue_entries() == []


@pytest.mark.asyncio
async def test_invalid_payload_is_rejected_without_writes(session, monkeypatch) -> None:
    calls = fail_notification_writes(monkeypatch)

    result = await deliver_in_app_notification({**PAYLOAD, "title": "   "}, session=session)

    assert result.delivered is False
    assert result.queued is False
    assert result.attempts == 0
    assert result.error == INVALID_PAYLOAD_ERROR
    assert calls["calls"] == 0
    assert await list_queue_entries() == []
    assert await list_metrics() == []


@pytest.mark.asyncio
async def test_exhausted_attempts_enqueue_one_retry_entry(session, monkeypatch, no_immediate_backoff_sleep) -> None:
    fail_notification_writes(monkeypatch, message="primary store down")
    before = datetime.now(timezone.utc)

    result = await deliver_in_app_notification(PAYLOAD, session=session, source="tests.exchange")

    assert result.delivered is False
    assert result.queued is True
    assert result.attempts == 3
    assert result.error == "primary store down"
    assert no_immediate_backoff_sleep == [150, 300]
    entries = await list_queue_entries()
    assert len(entries) == 1
    entry = entries[0]
    assert entry.id == result.queue_id
    assert entry.status == "pending"
    assert entry.attempts == 0
    assert entry.max_attempts == 8
    assert entry.last_error == "primary store down"
    assert entry.source == "tests.exchange"
    assert before - timedelta(seconds=1) <= as_utc(entry.next_attempt_at) <= datetime.now(timezone.utc)
    assert await list_notifications() == []
    metrics = await list_metrics()
    assert [m.event for m in metrics] == ["queued"]
    assert metrics[0].queued == 1
    assert metrics[0].extra_json == {"queue_id": result.queue_id, "reason": "primary store down"}


@pytest.mark.asyncio
async def test_attempt_options_are_clamped_to_one(session, monkeypatch, no_immediate_backoff_sleep) -> None:
    calls = fail_notification_writes(monkeypatch)

    result = await deliver_in_app_notification(
        PAYLOAD,
        session=session,
        max_immediate_attempts=0,
        max_queue_attempts=-3,
    )

    assert calls["calls"] == 1
    assert no_immediate_backoff_sleep == []
    assert result.attempts == 1
    entries = await list_queue_entries()
    assert entries[0].max_attempts == 1


@pytest.mark.asyncio
async def test_queue_disabled_records_immediate_failure(session, monkeypatch) -> None:
    fail_notification_writes(monkeypatch)

    result = await deliver_in_app_notification(
        PAYLOAD,
        session=session,
        queue_on_failure=False,
        max_immediate_attempts=2,
    )

    assert result.delivered is False
    assert result.queued is False
    assert result.attempts == 2
    assert result.error == "store unavailable"
    assert await list_queue_entries() == []
    metrics = await list_metrics()
    assert [m.event for m in metrics] == ["immediate_failed"]
    assert metrics[0].processed == 1
    assert metrics[0].extra_json == {"attempts": 2, "error": "store unavailable"}


@pytest.mark.asyncio
async def test_queue_write_failure_is_logged_and_metered(session, monkeypatch, caplog) -> None:
    fail_notification_writes(monkeypatch)
    fail_retry_queue_writes(monkeypatch)
    caplog.set_level(logging.ERROR, logger="inboxguard.services.notifications.delivery")

    result = await deliver_in_app_notification(PAYLOAD, session=session, source="tests.exchange")

    assert result.delivered is False
    assert result.queued is False
    assert result.queue_id is None
    assert result.error == "store unavailable"
    assert await list_queue_entries() == []
    records = [r for r in caplog.records if "notification_retry_enqueue_failed" in r.getMessage()]
    assert len(records) == 1
    message = records[0].getMessage()
    assert "user_id=user-1" in message
    assert "queue store unavailable" in message
    assert "original_error=store unavailable" in message
    metrics = await list_metrics()
    assert [m.event for m in metrics] == ["immediate_failed"]
    assert metrics[0].extra_json["queue_failed"] is True


@pytest.mark.asyncio
async def test_blank_exception_message_reports_class_name(session, monkeypatch) -> None:
    fail_notification_writes(monkeypatch, message="")

    result = await deliver_in_app_notification(PAYLOAD, session=session, max_immediate_attempts=1)

    assert result.error == "RuntimeError"
    assert result.queued is True


@pytest.mark.asyncio
async def test_hanging_store_write_times_out_and_is_queued(session, monkeypatch, no_immediate_backoff_sleep) -> None:
    monkeypatch.setenv("NOTIFY_STORE_TIMEOUT_MS", "100")
    get_settings.cache_clear()

    async def _hang(session, payload):  # noqa: ANN001
        await asyncio.sleep(5)
        return "never"

    monkeypatch.setattr(delivery_module, "_insert_notification", _hang)

    result = await deliver_in_app_notification(PAYLOAD, session=session, source="tests.exchange")

    assert result.delivered is False
    assert result.queued is True
    assert result.attempts == 3
    assert result.error == "notification write timed out after 100ms"
    assert no_immediate_backoff_sleep == [150, 300]
    assert await list_notifications() == []
    entries = await list_queue_entries()
    assert len(entries) == 1
    assert entries[0].id == result.queue_id
    assert entries[0].last_error == "notification write timed out after 100ms"
