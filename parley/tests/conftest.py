"""
Pytest configuration and fixtures for Parley tests.

Tests run against SQLite in memory; the environment is pointed there before
any parley module is imported so the module-level engine is SQLite too.
"""

import os

os.environ["PARLEY_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["PARLEY_OPENAI_API_KEY"] = ""
os.environ["PARLEY_COMPLETION_API_KEY"] = ""

from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from parley.config import Settings  # noqa: E402
from parley.db import get_session  # noqa: E402
from parley.errors import CompletionError, EmbeddingError  # noqa: E402
from parley.models import EMBEDDING_DIMENSIONS, Base  # noqa: E402
from parley.services import conversation  # noqa: E402
from parley.services.completion import CompletionResult, CompletionService  # noqa: E402
from parley.services.embeddings import EmbeddingService, get_embedding_service  # noqa: E402
from parley.services.storage import LocalBlobStorage, get_storage  # noqa: E402

IDENTITY = "alice@example.com"


# ---------------------------------------------------------------------------
# Fake providers
# ---------------------------------------------------------------------------


class FakeEmbeddingService(EmbeddingService):
    """
    One-hot embeddings: each distinct text gets its own axis, so equal texts
    score 1.0 against each other and different texts score 0.0.
    """

    dimensions = EMBEDDING_DIMENSIONS

    def __init__(self):
        self.axes: dict[str, int] = {}
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        axis = self.axes.setdefault(text, len(self.axes) % EMBEDDING_DIMENSIONS)
        vector = [0.0] * EMBEDDING_DIMENSIONS
        vector[axis] = 1.0
        return vector


class FakeCompletionService(CompletionService):
    model = "fake-model"

    def __init__(self, reply: str = "Here is what I found."):
        self.reply = reply
        self.calls: list[list[dict[str, str]]] = []

    async def complete(self, messages, model=None) -> CompletionResult:
        self.calls.append(messages)
        return CompletionResult(
            content=self.reply,
            model=model or self.model,
            prompt_tokens=42,
            completion_tokens=7,
        )


@pytest.fixture
def embedder() -> FakeEmbeddingService:
    return FakeEmbeddingService()


@pytest.fixture
def completion() -> FakeCompletionService:
    return FakeCompletionService()


@pytest.fixture
def empty_completion() -> FakeCompletionService:
    return FakeCompletionService(reply="   ")


@pytest.fixture
def failing_embedder() -> EmbeddingService:
    """Embedding service whose every call fails."""
    mock = MagicMock(spec=EmbeddingService)
    mock.dimensions = EMBEDDING_DIMENSIONS
    mock.embed = AsyncMock(side_effect=EmbeddingError("Embedding request failed: rate limited"))
    return mock


@pytest.fixture
def failing_completion() -> CompletionService:
    """Completion service whose every call fails."""
    mock = MagicMock(spec=CompletionService)
    mock.model = "fake-model"
    mock.complete = AsyncMock(side_effect=CompletionError("Completion timed out after 60.0s"))
    return mock


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine():
    """A fresh in-memory database per test, shared by all its sessions."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@pytest.fixture
def storage(tmp_path) -> LocalBlobStorage:
    return LocalBlobStorage(Settings(storage_dir=str(tmp_path / "blobs")))


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------


@pytest.fixture
async def channel(session):
    return await conversation.ensure_default_channel(session)


@pytest.fixture
async def user(session):
    return await conversation.get_or_create_user(session, IDENTITY)


@pytest.fixture
async def thread(session, channel):
    return await conversation.create_thread(session, channel.id)


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


@pytest.fixture
async def api_client(session_factory, storage, embedder):
    """HTTP client bound to the app, with database, storage and embeddings overridden."""
    from parley.main import app

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_embedding_service] = lambda: embedder

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-Auth-Request-Email": IDENTITY},
    ) as client:
        yield client

    app.dependency_overrides.clear()
