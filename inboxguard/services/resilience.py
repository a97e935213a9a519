from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from inboxguard.core.config import get_settings
from inboxguard.core.errors import StoreTimeoutError


@dataclass(frozen=True)
class BackoffPolicy:
    # Capped exponential backoff: base * 2^(attempt-1), never above cap.
    base_ms: int
    max_ms: int

    def delay_ms(self, attempt: int) -> int:
        base = max(1, int(self.base_ms))
        cap = max(base, int(self.max_ms))
        exponent = max(0, int(attempt) - 1)
        # Large exponents would only be clamped anyway; stop before overflowing.
        if exponent >= 63:
            return cap
        return min(cap, base * (2**exponent))


def immediate_backoff_policy() -> BackoffPolicy:
    settings = get_settings()
    return BackoffPolicy(
        base_ms=settings.notify_immediate_backoff_ms,
        max_ms=settings.notify_immediate_backoff_max_ms,
    )


def queue_backoff_policy() -> BackoffPolicy:
    settings = get_settings()
    return BackoffPolicy(
        base_ms=settings.notify_queue_backoff_ms,
        max_ms=settings.notify_queue_backoff_max_ms,
    )


def queue_backoff_ms(attempts: int) -> int:
    """Delay before the next queued redelivery after ``attempts`` failures."""
    return queue_backoff_policy().delay_ms(attempts)


async def call_with_timeout(
    func: Callable[[], Awaitable[Any]],
    *,
    timeout_ms: int | None = None,
    operation: str = "store operation",
) -> Any:
    # A timed-out call is reported like any other store failure.
    if timeout_ms is None:
        timeout_ms = get_settings().notify_store_timeout_ms
    if timeout_ms <= 0:
        return await func()
    try:
        return await asyncio.wait_for(func(), timeout=timeout_ms / 1000.0)
    except asyncio.TimeoutError as exc:
        raise StoreTimeoutError(f"{operation} timed out after {int(timeout_ms)}ms") from exc
