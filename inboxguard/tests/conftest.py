from __future__ import annotations

import os
import tempfile

# Point settings at a throwaway sqlite file before any inboxguard module builds the engine.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="inboxguard-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB_DIR}/inboxguard.db"
os.environ.pop("OPS_API_TOKEN", None)

import pytest  # noqa: E402
from sqlalchemy import delete  # noqa: E402

from inboxguard.core.config import get_settings  # noqa: E402
from inboxguard.domain.models import (  # noqa: E402
    Base,
    Notification,
    NotificationDeliveryMetric,
    NotificationRetryQueueEntry,
)
from inboxguard.persistence.db import SessionLocal, engine  # noqa: E402
from inboxguard.services.notifications import delivery as delivery_module  # noqa: E402


@pytest.fixture(autouse=True)
async def reset_notification_tables() -> None:
    # Fresh schema and empty tables per test; dispose afterwards so no connection outlives its loop.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with SessionLocal() as session:
        await session.execute(delete(Notification))
        await session.execute(delete(NotificationRetryQueueEntry))
        await session.execute(delete(NotificationDeliveryMetric))
        await session.commit()
    yield
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> None:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def no_immediate_backoff_sleep(monkeypatch) -> list[int]:
    # Record requested backoff delays instead of sleeping through them.
    delays: list[int] = []

    async def _record(delay_ms: int) -> None:
        delays.append(delay_ms)

    monkeypatch.setattr(delivery_module, "_sleep_ms", _record)
    return delays


@pytest.fixture
async def session():
    async with SessionLocal() as db_session:
        yield db_session
