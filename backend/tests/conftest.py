# tests/conftest.py — Shared test fixtures
import os
import json

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["ENVIRONMENT"] = "test"
os.environ["STRUCTURED_LOG_ECHO"] = "false"
for _key in ("GOOGLE_API_KEY", "OPENAI_API_KEY", "GROQ_API_KEY", "BOARD_AI_PROVIDER", "BOARD_AI_MODEL"):
    os.environ.pop(_key, None)

from ai_tokens import TokenStore
from board_ai_client import BackendConfig, BackoffPolicy, GenerativeBackend, get_backend
from board_pipeline import BoardGenerationPipeline, get_pipeline
from logging_system import get_logger
from models import Base
from main import app


class SleepRecorder:
    """Stands in for asyncio.sleep; remembers every requested delay."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class ScriptedBackend:
    """Routes each backend prompt to a canned reply by its leading text."""

    def __init__(self, board_text, analysis=None, moderation=None):
        self.board_text = board_text
        self.analysis = analysis or {"goals": ["Ship"], "keyFeatures": ["Boards"], "targetUsers": ["Teams"]}
        self.moderation = moderation or {"flagged": False, "reason": "", "categories": []}
        self.prompts = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        prompt = body["contents"][0]["parts"][0]["text"]
        self.prompts.append(prompt)
        if prompt.startswith("Analyze this project request"):
            text = json.dumps(self.analysis)
        elif prompt.startswith("Analyze the following text for safety"):
            text = json.dumps(self.moderation)
        else:
            text = self.board_text
        return httpx.Response(200, json=gemini_body(text))


def gemini_body(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


@pytest.fixture(autouse=True)
def clear_structured_logs():
    get_logger().buffer.clear()
    yield


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def gemini_reply():
    """Build a Gemini generateContent response carrying ``text``."""
    return gemini_body


@pytest.fixture
def scripted_backend():
    return ScriptedBackend


@pytest.fixture
def make_backend(sleep_recorder):
    """Backend wired to an httpx.MockTransport handler and an in-memory credential."""

    def _make(handler, provider="google", environ=None, policy=None, token_store=None):
        if environ is None:
            environ = {"GOOGLE_API_KEY": "test-key", "OPENAI_API_KEY": "test-key", "GROQ_API_KEY": "test-key"}
        return GenerativeBackend(
            config=BackendConfig(provider=provider),
            token_store=token_store or TokenStore(environ=environ),
            policy=policy or BackoffPolicy(),
            transport=httpx.MockTransport(handler),
            sleep=sleep_recorder,
        )

    return _make


@pytest.fixture
def offline_backend(make_backend):
    """A backend with no credential: every call is unavailable."""

    def _unreachable(request):
        raise AssertionError(f"unexpected backend call to {request.url}")

    return make_backend(_unreachable, environ={})


@pytest.fixture
def app_backend(offline_backend):
    """Backend the HTTP and socket routes run against; override per module."""
    return offline_backend


@pytest.fixture
def app_overrides(app_backend):
    pipeline = BoardGenerationPipeline(backend=app_backend, enabled=True)
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_backend] = lambda: app_backend
    yield pipeline
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def client(app_overrides):
    """HTTP test client with the pipeline and backend overridden"""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
