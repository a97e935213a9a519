from __future__ import annotations

import asyncio
import logging

from arq import create_pool
from arq.connections import RedisSettings

from inboxguard.core.config import get_settings


logger = logging.getLogger(__name__)

PROCESS_RETRY_QUEUE_JOB = "process_retry_queue"

_retry_queue_pool = None
_retry_queue_pool_loop = None
_retry_queue_lock = asyncio.Lock()


async def get_retry_queue_pool():
    # Cache the ARQ pool per event loop; loop-bound pools break across test loops.
    global _retry_queue_pool, _retry_queue_pool_loop
    current_loop = asyncio.get_running_loop()
    if _retry_queue_pool is not None and _retry_queue_pool_loop == current_loop:
        return _retry_queue_pool
    if _retry_queue_pool is not None and _retry_queue_pool_loop != current_loop:
        _retry_queue_pool = None
    async with _retry_queue_lock:
        if _retry_queue_pool is None:
            settings = get_settings()
            _retry_queue_pool = await create_pool(
                RedisSettings.from_dsn(settings.redis_url),
                default_queue_name=settings.notify_worker_queue_name,
            )
            _retry_queue_pool_loop = current_loop
    return _retry_queue_pool


async def enqueue_retry_queue_run(*, limit: int | None = None, source: str = "api.ops.retry-queue") -> bool:
    # Hand one processor batch to the worker; False means the caller should run it inline or try later.
    settings = get_settings()
    try:
        redis = await get_retry_queue_pool()
        await redis.enqueue_job(
            PROCESS_RETRY_QUEUE_JOB,
            limit,
            source,
            _queue_name=settings.notify_worker_queue_name,
        )
        return True
    except Exception as exc:  # noqa: BLE001 - the durable queue table is unaffected by a lost trigger.
        logger.warning("notification_retry_trigger_enqueue_failed source=%s error=%s", source, exc)
        return False
