from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from inboxguard.core.config import get_settings
from inboxguard.domain.models import NotificationDeliveryMetric, NotificationRetryQueueEntry
from inboxguard.services.notifications.delivery import STATUS_DEAD_LETTER, STATUS_PENDING


METRICS_WINDOW = timedelta(hours=1)


@dataclass(slots=True)
class NotificationDeliveryStats:
    pending_queue: int = 0
    stale_pending: int = 0
    dead_letter: int = 0
    processed_last_hour: int = 0
    delivered_last_hour: int = 0
    queued_last_hour: int = 0
    retried_last_hour: int = 0
    dead_letter_last_hour: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class HealthThresholds:
    dead_letter_threshold: int = 0
    stale_pending_threshold: int = 0
    pending_queue_warning_threshold: int = 200

    def clamped(self) -> "HealthThresholds":
        return HealthThresholds(
            dead_letter_threshold=max(0, int(self.dead_letter_threshold)),
            stale_pending_threshold=max(0, int(self.stale_pending_threshold)),
            pending_queue_warning_threshold=max(1, int(self.pending_queue_warning_threshold)),
        )

    @classmethod
    def from_settings(cls) -> "HealthThresholds":
        settings = get_settings()
        return cls(
            dead_letter_threshold=settings.notification_dead_letter_threshold,
            stale_pending_threshold=settings.notification_stale_pending_threshold,
            pending_queue_warning_threshold=settings.notification_pending_queue_warning_threshold,
        ).clamped()

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


HealthStatus = Literal["healthy", "degraded"]


@dataclass(slots=True)
class NotificationDeliveryHealth:
    status: HealthStatus
    reasons: list[str] = field(default_factory=list)
    thresholds: HealthThresholds = field(default_factory=HealthThresholds)
    stats: NotificationDeliveryStats = field(default_factory=NotificationDeliveryStats)

    @property
    def degraded(self) -> bool:
        return self.status == "degraded"

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "degraded": self.degraded,
            "reasons": list(self.reasons),
            "thresholds": self.thresholds.as_dict(),
            "stats": self.stats.as_dict(),
        }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _stale_minutes(value: int | None) -> int:
    if value is None:
        value = get_settings().notification_stale_minutes
    return max(1, int(value))


async def _count_entries(session: AsyncSession, *conditions: Any) -> int:
    value = await session.scalar(
        select(func.count()).select_from(NotificationRetryQueueEntry).where(*conditions)
    )
    return int(value or 0)


async def get_notification_delivery_stats(
    *,
    session: AsyncSession,
    stale_minutes: int | None = None,
) -> NotificationDeliveryStats:
    # Read-only snapshot: queue depth by status plus metric sums over the last hour.
    now = _utc_now()
    stale_before = now - timedelta(minutes=_stale_minutes(stale_minutes))
    window_start = now - METRICS_WINDOW
    entry = NotificationRetryQueueEntry
    metric = NotificationDeliveryMetric

    pending_queue = await _count_entries(session, entry.status == STATUS_PENDING)
    stale_pending = await _count_entries(
        session,
        entry.status == STATUS_PENDING,
        entry.next_attempt_at <= stale_before,
    )
    dead_letter = await _count_entries(session, entry.status == STATUS_DEAD_LETTER)

    sums = (
        await session.execute(
            select(
                func.coalesce(func.sum(metric.processed), 0),
                func.coalesce(func.sum(metric.delivered), 0),
                func.coalesce(func.sum(metric.queued), 0),
                func.coalesce(func.sum(metric.retried), 0),
                func.coalesce(func.sum(metric.dead_letter), 0),
            ).where(metric.created_at >= window_start)
        )
    ).one()

    return NotificationDeliveryStats(
        pending_queue=pending_queue,
        stale_pending=stale_pending,
        dead_letter=dead_letter,
        processed_last_hour=int(sums[0] or 0),
        delivered_last_hour=int(sums[1] or 0),
        queued_last_hour=int(sums[2] or 0),
        retried_last_hour=int(sums[3] or 0),
        dead_letter_last_hour=int(sums[4] or 0),
    )


def evaluate_delivery_health(
    stats: NotificationDeliveryStats,
    thresholds: HealthThresholds | None = None,
) -> NotificationDeliveryHealth:
    """Compare ``stats`` against ``thresholds``; ``status`` is "degraded" iff any limit is exceeded.

    Each exceeded limit contributes exactly one reason, in the order
    dead-letter, stale-pending, pending-queue.
    """
    limits = (thresholds or HealthThresholds()).clamped()
    reasons: list[str] = []
    if stats.dead_letter > limits.dead_letter_threshold:
        reasons.append(f"dead-letter={stats.dead_letter} > {limits.dead_letter_threshold}")
    if stats.stale_pending > limits.stale_pending_threshold:
        reasons.append(f"stale-pending={stats.stale_pending} > {limits.stale_pending_threshold}")
    if stats.pending_queue > limits.pending_queue_warning_threshold:
        reasons.append(
            f"pending-queue={stats.pending_queue} > {limits.pending_queue_warning_threshold}"
        )
    return NotificationDeliveryHealth(
        status="degraded" if reasons else "healthy",
        reasons=reasons,
        thresholds=limits,
        stats=stats,
    )


async def get_notification_delivery_health(
    *,
    session: AsyncSession,
    thresholds: HealthThresholds | None = None,
    stale_minutes: int | None = None,
) -> NotificationDeliveryHealth:
    stats = await get_notification_delivery_stats(session=session, stale_minutes=stale_minutes)
    return evaluate_delivery_health(stats, thresholds or HealthThresholds.from_settings())
