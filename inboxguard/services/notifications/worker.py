from __future__ import annotations

import asyncio
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from inboxguard.core.config import get_settings
from inboxguard.persistence.db import SessionLocal
from inboxguard.services.notifications.retry_queue import process_notification_retry_queue


logger = logging.getLogger(__name__)


def _is_missing_table_error(exc: Exception) -> bool:
    # Workers may start before migrations; a missing queue table is a wait state, not a crash.
    message = str(exc).lower()
    return "undefinedtableerror" in message or "does not exist" in message or "no such table" in message


async def run_retry_queue_cycle(*, limit: int | None = None, source: str = "worker.retry-processor") -> dict[str, Any]:
    # One bounded batch on a fresh session so each cycle reads current queue state.
    try:
        async with SessionLocal() as session:
            result = await process_notification_retry_queue(session=session, limit=limit, source=source)
    except SQLAlchemyError as exc:
        if _is_missing_table_error(exc):
            logger.warning("notification_retry_cycle_waiting_for_migrations")
            return {"status": "waiting_for_migrations", "processed": 0, "delivered": 0, "retried": 0, "dead_letter": 0}
        raise
    return {"status": "ok", **result.as_dict()}


async def run_retry_queue_loop(*, poll_interval_s: int | None = None) -> None:
    # Poll on a fixed cadence and keep going after failures; the queue is durable so a skipped cycle loses nothing.
    if poll_interval_s is None:
        poll_interval_s = get_settings().notify_retry_poll_interval_s
    interval = max(1, int(poll_interval_s))
    while True:
        try:
            await run_retry_queue_cycle()
        except Exception:  # noqa: BLE001 - keep loop alive while surfacing errors in logs.
            logger.exception("notification retry cycle failed")
        await asyncio.sleep(interval)
