from __future__ import annotations

import argparse
import asyncio
import json

from inboxguard.core.logging import configure_logging
from inboxguard.services.notifications.worker import run_retry_queue_cycle


async def _main(limit: int | None) -> None:
    # One batch per invocation, for system cron.
    configure_logging()
    result = await run_retry_queue_cycle(limit=limit, source="script.retry-processor")
    print(json.dumps(result, sort_keys=True))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Process due notification retry queue entries once.")
    parser.add_argument("--limit", type=int, default=None, help="Maximum entries to process (default from settings).")
    args = parser.parse_args()
    asyncio.run(_main(args.limit))
