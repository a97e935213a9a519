from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from inboxguard.core.config import get_settings
from inboxguard.core.logging import configure_logging
from inboxguard.services.notifications.scheduling import PROCESS_RETRY_QUEUE_JOB
from inboxguard.services.notifications.worker import run_retry_queue_cycle

logger = logging.getLogger(__name__)


async def process_retry_queue(ctx, limit: int | None = None, source: str = "worker.retry-processor") -> dict:
    # Run one processor batch; triggered by cron or enqueued from the ops API.
    result = await run_retry_queue_cycle(limit=limit, source=source)
    logger.info("notification_retry_job_finished job_id=%s status=%s", ctx.get("job_id"), result["status"])
    return result


async def scheduled_retry_queue(ctx) -> dict:
    return await process_retry_queue(ctx, source="worker.retry-cron")


def _cron_minutes(every: int) -> set[int]:
    step = min(60, max(1, int(every)))
    return set(range(0, 60, step))


async def _startup(ctx) -> None:
    configure_logging()


class WorkerSettings:
    # Keep worker settings as class attributes for ARQ CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.notify_worker_queue_name
    functions = [process_retry_queue]
    cron_jobs = [
        cron(
            scheduled_retry_queue,
            name=f"{PROCESS_RETRY_QUEUE_JOB}_cron",
            minute=_cron_minutes(settings.notify_retry_cron_minutes),
            run_at_startup=True,
        )
    ]
    on_startup = _startup
