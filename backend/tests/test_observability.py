"""Tests for the Observability router."""
import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_observability_health(client: AsyncClient):
    resp = await client.get("/api/v1/observability/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "logging" in data
    assert "events_handled" in data["socket"]


@pytest.mark.asyncio
async def test_logs_filtered_by_correlation_id(client: AsyncClient):
    await client.post(
        "/api/v1/ai/boards/generate",
        json={"prompt": "Launch our online store"},
        headers={"X-Correlation-ID": "corr-logs-1"},
    )
    await client.get("/", headers={"X-Correlation-ID": "corr-other"})

    resp = await client.get("/api/v1/observability/logs", params={"correlation_id": "corr-logs-1"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["count"] >= 2
    assert all(log["correlation_id"] == "corr-logs-1" for log in data["logs"])
    assert data["filters"]["correlation_id"] == "corr-logs-1"


@pytest.mark.asyncio
async def test_logs_filtered_by_category(client: AsyncClient):
    await client.post("/api/v1/ai/boards/generate", json={"prompt": "Plan a marketing campaign"})
    resp = await client.get("/api/v1/observability/logs", params={"category": "fallback"})
    logs = resp.json()["logs"]
    assert logs
    assert all(log["category"] == "fallback" for log in logs)


@pytest.mark.asyncio
async def test_invalid_filters_are_rejected(client: AsyncClient):
    assert (await client.get("/api/v1/observability/logs?level=loud")).status_code == 400
    assert (await client.get("/api/v1/observability/logs?category=nope")).status_code == 400


@pytest.mark.asyncio
async def test_log_stats_count_fallback_templates(client: AsyncClient):
    await client.post("/api/v1/ai/boards/generate", json={"prompt": "Launch our online store"})
    await client.post("/api/v1/ai/boards/generate", json={"prompt": "Build an e-commerce checkout"})

    resp = await client.get("/api/v1/observability/logs/stats")
    assert resp.status_code == 200
    data = resp.json()
    assert data["fallback_templates"] == {"ecommerce": 2}
    assert "level_distribution" in data
    assert data["category_distribution"]["pipeline"] > 0


@pytest.mark.asyncio
async def test_clear_logs(client: AsyncClient):
    await client.get("/")
    resp = await client.delete("/api/v1/observability/logs")
    assert resp.status_code == 200
    assert resp.json()["cleared"] >= 1


@pytest.mark.asyncio
async def test_get_log_levels(client: AsyncClient):
    data = (await client.get("/api/v1/observability/logs/levels")).json()
    assert "info" in data["levels"]
    assert "error" in data["levels"]


@pytest.mark.asyncio
async def test_get_log_categories(client: AsyncClient):
    data = (await client.get("/api/v1/observability/logs/categories")).json()
    for category in ("ai", "pipeline", "fallback", "socket"):
        assert category in data["categories"]


@pytest.mark.asyncio
async def test_usage(client: AsyncClient):
    await client.post("/api/v1/ai/boards/generate", json={"prompt": "Build a mobile app"})
    data = (await client.get("/api/v1/observability/usage")).json()
    assert data["fallback_templates"] == {"software": 1}
    assert "total_connections" in data["socket"]
    assert isinstance(data["environment_credentials"], dict)
