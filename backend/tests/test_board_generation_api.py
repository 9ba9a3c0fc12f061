# tests/test_board_generation_api.py — HTTP surface: generation, status, health
import pytest

from board_pipeline import BoardGenerationPipeline, get_pipeline
from main import app

BOARD_TEXT = '{"board": {"name": "Move House"}, "columns": [{"name": "Pack"}, {"name": "Moved"}], "tasks": [{"title": "Boxes", "column": "Pack"}]}'


@pytest.mark.asyncio
async def test_generate_returns_fallback_board_in_camel_case(client):
    resp = await client.post("/api/v1/ai/boards/generate", json={"prompt": "Launch our online store"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is False
    assert body["metadata"]["source"] == "fallback"
    assert body["data"]["board"]["name"] == "E-commerce Store Launch"
    column = body["data"]["columns"][0]
    assert column["id"] == "col_1"
    assert "backgroundColor" in column
    assert "estimatedHours" in body["data"]["tasks"][0]
    assert any("not configured" in e for e in body["errors"])


@pytest.mark.asyncio
async def test_generate_accepts_camel_case_options(client):
    resp = await client.post(
        "/api/v1/ai/boards/generate",
        json={"prompt": "Launch our online store", "options": {"includeTags": False, "includeChecklists": False}},
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["tags"] == []
    assert data["checklists"] == []


@pytest.mark.asyncio
async def test_generate_ai_path(client, make_backend, scripted_backend):
    script = scripted_backend(BOARD_TEXT)
    pipeline = BoardGenerationPipeline(backend=make_backend(script), enabled=True)
    app.dependency_overrides[get_pipeline] = lambda: pipeline

    resp = await client.post("/api/v1/ai/boards/generate", json={"prompt": "Plan our move"})
    body = resp.json()
    assert body["success"] is True
    assert body["metadata"]["source"] == "ai"
    assert [c["name"] for c in body["data"]["columns"]] == ["Pack", "Moved"]
    assert [c["position"] for c in body["data"]["columns"]] == [0, 1]


@pytest.mark.asyncio
async def test_empty_prompt_is_rejected(client):
    resp = await client.post("/api/v1/ai/boards/generate", json={"prompt": ""})
    assert resp.status_code == 422
    assert resp.json()["detail"][0]["loc"] == ["body", "prompt"]


@pytest.mark.asyncio
async def test_blank_prompt_is_rejected(client):
    resp = await client.post("/api/v1/ai/boards/generate", json={"prompt": "   "})
    assert resp.status_code == 422
    assert resp.json()["detail"] == {"field": "prompt", "message": "Prompt cannot be empty"}


@pytest.mark.asyncio
async def test_invalid_options_are_rejected(client):
    resp = await client.post("/api/v1/ai/boards/generate", json={"prompt": "x", "options": {"maxTokens": 1}})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_status(client):
    resp = await client.get("/api/v1/ai/boards/status")
    assert resp.status_code == 200
    status = resp.json()
    assert status["available"] is False
    assert status["steps"][0] == "validate_input"
    assert status["steps"][-1] == "finalize_output"


@pytest.mark.asyncio
async def test_model_info(client):
    info = (await client.get("/api/v1/ai/boards/model-info")).json()
    assert info["provider"] == "google"
    assert info["available"] is False
    assert "board_generation" in info["features"]


@pytest.mark.asyncio
async def test_health_reports_fallback_mode(client):
    resp = await client.get("/health", headers={"X-Request-ID": "req-123"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["services"]["ai"] == "fallback"
    assert body["database"] == "connected"
    assert body["pipeline_version"]
    assert resp.headers["X-Request-ID"] == "req-123"
    assert resp.headers["X-Correlation-ID"] == "req-123"
    assert resp.headers["X-Response-Time"].endswith("s")


@pytest.mark.asyncio
async def test_root(client):
    body = (await client.get("/")).json()
    assert body["name"] == "BoardForge"
    assert body["websocket"] == "/ws/ai"
