import os
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from unittest.mock import AsyncMock

# Override settings for tests, before any ai_gateway import reads them
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from ai_gateway.core.config import settings  # noqa: E402
from ai_gateway.core.dependencies import get_session_factory  # noqa: E402
from ai_gateway.db.base import Base  # noqa: E402
from ai_gateway.db.session import get_db  # noqa: E402
from ai_gateway.gateway.types import Backend, GenerationResponse, TokenUsage  # noqa: E402
from ai_gateway.main import app  # noqa: E402

import ai_gateway.models  # noqa: E402, F401

settings.app_env = "development"
settings.admin_api_token = ""

# Wednesday 2025-01-15 12:00 JST
FIXED_NOW = datetime(2025, 1, 15, 3, 0, tzinfo=timezone.utc)


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh in-memory database per test. StaticPool keeps the single connection alive."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


def make_response(content="Hello world", model="gemini-2.5-flash", backend=Backend.GEMINI, usage=(10, 20)):
    return GenerationResponse(
        content=content,
        model=model,
        backend=backend,
        usage=TokenUsage(*usage) if usage else None,
        latency_ms=5,
    )


class FakeAdapter:
    """Stands in for a vendor adapter: records calls, replays scripted outcomes."""

    def __init__(self, backend: Backend, outcome=None):
        self.backend = backend
        self.model = ""
        self.generate = AsyncMock(side_effect=self._generate)
        self.outcome = outcome
        self.requests = []

    def is_available(self) -> bool:
        return True

    def with_model(self, model: str) -> "FakeAdapter":
        self.model = model
        return self

    async def _generate(self, request, timeout=None):
        self.requests.append(request)
        outcome = self.outcome
        if callable(outcome) and not isinstance(outcome, type):
            outcome = await outcome(request, timeout)
        if isinstance(outcome, BaseException):
            raise outcome
        return make_response(content=outcome or "Hello world", model=self.model, backend=self.backend)


@pytest.fixture
def fake_adapters():
    return {backend: FakeAdapter(backend) for backend in Backend}


def _factory(adapter):
    return lambda **kwargs: adapter


@pytest.fixture
def registry(fake_adapters):
    from ai_gateway.gateway.registry import AdapterRegistry

    return AdapterRegistry(
        api_keys={backend: "test-key" for backend in Backend},
        adapter_factories={backend: _factory(adapter) for backend, adapter in fake_adapters.items()},
    )
