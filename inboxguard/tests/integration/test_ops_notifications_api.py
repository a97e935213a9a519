from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from inboxguard.apps.api.main import create_app
from inboxguard.apps.api.routes import ops as ops_routes
from inboxguard.core.config import get_settings
from inboxguard.tests.utils.store import add_queue_entry, get_queue_entry, list_metrics


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test")


@pytest.mark.asyncio
async def test_process_retry_queue_inline() -> None:
    entry_id = await add_queue_entry(next_attempt_at=datetime.now(timezone.utc) - timedelta(minutes=1))

    async with _client() as client:
        response = await client.post("/v1/ops/notifications/retry-queue/process", params={"limit": 5})

    assert response.status_code == 200
    assert response.json()["data"] == {"processed": 1, "delivered": 1, "retried": 0, "dead_letter": 0}
    assert (await get_queue_entry(entry_id)).status == "delivered"
    metrics = await list_metrics("queue_process")
    assert metrics[0].source == "api.ops.retry-queue"
    assert metrics[0].extra_json == {"limit": 5}


@pytest.mark.asyncio
async def test_process_retry_queue_deferred_to_worker(monkeypatch) -> None:
    calls: list[dict] = []

    async def _enqueue(**kwargs):  # noqa: ANN003
        calls.append(kwargs)
        return True

    monkeypatch.setattr(ops_routes, "enqueue_retry_queue_run", _enqueue)

    async with _client() as client:
        response = await client.post("/v1/ops/notifications/retry-queue/process", params={"defer": "true"})

    assert response.status_code == 202
    assert response.json()["data"] == {"enqueued": True}
    assert calls == [{"limit": None, "source": "api.ops.retry-queue"}]


@pytest.mark.asyncio
async def test_process_retry_queue_deferred_without_redis(monkeypatch) -> None:
    async def _enqueue(**kwargs):  # noqa: ANN003
        return False

    monkeypatch.setattr(ops_routes, "enqueue_retry_queue_run", _enqueue)

    async with _client() as client:
        response = await client.post("/v1/ops/notifications/retry-queue/process", params={"defer": "true"})

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "WORKER_QUEUE_UNAVAILABLE"


@pytest.mark.asyncio
async def test_delivery_stats_and_health() -> None:
    now = datetime.now(timezone.utc)
    await add_queue_entry(next_attempt_at=now - timedelta(minutes=30))
    await add_queue_entry(next_attempt_at=now + timedelta(minutes=5))

    async with _client() as client:
        stats = await client.get("/v1/ops/notifications/delivery-stats")
        health = await client.get("/v1/ops/notifications/delivery-health")

    assert stats.status_code == 200
    assert stats.json()["data"]["pending_queue"] == 2
    assert stats.json()["data"]["stale_pending"] == 1
    assert health.status_code == 200
    data = health.json()["data"]
    assert data["status"] == "degraded"
    assert data["degraded"] is True
    assert data["reasons"] == ["stale-pending=1 > 0"]
    assert data["thresholds"]["pending_queue_warning_threshold"] == 200


@pytest.mark.asyncio
async def test_ops_routes_require_token_when_configured(monkeypatch) -> None:
    monkeypatch.setenv("OPS_API_TOKEN", "ops-secret")
    get_settings.cache_clear()

    async with _client() as client:
        missing = await client.get("/v1/ops/notifications/delivery-stats")
        wrong = await client.get(
            "/v1/ops/notifications/delivery-stats",
            headers={"Authorization": "Bearer nope"},
        )
        ok = await client.get(
            "/v1/ops/notifications/delivery-stats",
            headers={"Authorization": "Bearer ops-secret"},
        )

    assert missing.status_code == 401
    assert missing.json()["error"]["code"] == "AUTH_UNAUTHORIZED"
    assert wrong.status_code == 401
    assert ok.status_code == 200
