from __future__ import annotations

import asyncio

from inboxguard.core.logging import configure_logging
from inboxguard.services.notifications.worker import run_retry_queue_loop


async def _main() -> None:
    # Poll the retry queue without Redis; use the arq worker when Redis is available.
    configure_logging()
    await run_retry_queue_loop()


if __name__ == "__main__":
    asyncio.run(_main())
