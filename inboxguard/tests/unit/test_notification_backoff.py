from __future__ import annotations

import asyncio

import pytest

from inboxguard.core.errors import InboxGuardError, StoreTimeoutError
from inboxguard.services.resilience import (
    BackoffPolicy,
    call_with_timeout,
    immediate_backoff_policy,
    queue_backoff_ms,
)


def test_immediate_backoff_doubles_until_cap() -> None:
    policy = immediate_backoff_policy()
    assert [policy.delay_ms(n) for n in range(1, 6)] == [150, 300, 600, 1000, 1000]


def test_queue_backoff_doubles_until_thirty_minutes() -> None:
    assert queue_backoff_ms(1) == 30_000
    assert queue_backoff_ms(2) == 60_000
    assert queue_backoff_ms(6) == 960_000
    assert queue_backoff_ms(7) == 1_800_000
    assert queue_backoff_ms(500) == 1_800_000


def test_backoff_policy_clamps_degenerate_input() -> None:
    policy = BackoffPolicy(base_ms=100, max_ms=50)
    # Cap never drops below base.
    assert policy.delay_ms(0) == 100
    assert policy.delay_ms(3) == 100


def test_queue_backoff_reads_settings(monkeypatch) -> None:
    from inboxguard.core.config import get_settings

    monkeypatch.setenv("NOTIFY_QUEUE_BACKOFF_MS", "1000")
    monkeypatch.setenv("NOTIFY_QUEUE_BACKOFF_MAX_MS", "4000")
    get_settings.cache_clear()
    assert [queue_backoff_ms(n) for n in range(1, 5)] == [1000, 2000, 4000, 4000]


@pytest.mark.asyncio
async def test_call_with_timeout_raises_store_timeout() -> None:
    async def slow() -> str:
        await asyncio.sleep(1)
        return "late"

    with pytest.raises(StoreTimeoutError) as excinfo:
        await call_with_timeout(slow, timeout_ms=10, operation="notification write")
    assert isinstance(excinfo.value, InboxGuardError)
    assert "notification write timed out after 10ms" in str(excinfo.value)


@pytest.mark.asyncio
async def test_call_with_timeout_disabled_when_zero() -> None:
    async def quick() -> str:
        return "ok"

    assert await call_with_timeout(quick, timeout_ms=0) == "ok"
