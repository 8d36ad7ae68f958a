"""
Pytest configuration and fixtures for Parley tests.
"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from parley.config import Settings
from parley.domain.chat.router import ProviderRouter
from parley.domain.models.catalog import MODELS, ModelDescriptor
from parley.domain.streams import CancellationChannel, StreamBuffer, StreamLifecycleManager
from parley.infrastructure.database.connection import build_session_factory
from parley.infrastructure.database.models.base import Base
from parley.infrastructure.database.repositories import ChatRepository, StreamRepository
from tests.fakes import FakeRedis, FakeStrategy


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the developer's .env, with fast stream polling."""
    return Settings(
        _env_file=None,
        app_env="development",
        auth_provider="dev",
        openai_api_key="test-openai-key",
        stream_read_block_ms=20,
        stream_idle_timeout_seconds=2.0,
    )


@pytest.fixture
async def async_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite so the request and the generation task share data."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'parley.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(async_engine)


@pytest.fixture
def chats(session_factory: async_sessionmaker[AsyncSession]) -> ChatRepository:
    return ChatRepository(session_factory)


@pytest.fixture
def streams(session_factory: async_sessionmaker[AsyncSession]) -> StreamRepository:
    return StreamRepository(session_factory)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def buffer(fake_redis: FakeRedis) -> StreamBuffer:
    return StreamBuffer(fake_redis, ttl_seconds=60, block_ms=20, idle_timeout_seconds=2.0)  # type: ignore[arg-type]


@pytest.fixture
def channel(fake_redis: FakeRedis) -> CancellationChannel:
    return CancellationChannel(fake_redis)  # type: ignore[arg-type]


@pytest.fixture
def lifecycle(
    streams: StreamRepository,
    chats: ChatRepository,
    channel: CancellationChannel,
    buffer: StreamBuffer,
) -> StreamLifecycleManager:
    return StreamLifecycleManager(streams, chats, channel, buffer, records_kept_per_chat=3)


@pytest.fixture
def strategies() -> dict[str, FakeStrategy]:
    return {
        name: FakeStrategy(name)
        for name in ("google", "openai", "anthropic", "xai", "groq", "deepseek", "openrouter")
    }


@pytest.fixture
def provider_router(strategies: dict[str, FakeStrategy]) -> ProviderRouter:
    return ProviderRouter(strategies)


@pytest.fixture
def gemini_flash() -> ModelDescriptor:
    return MODELS["gemini-2.5-flash"]


@pytest.fixture
def claude_sonnet() -> ModelDescriptor:
    return MODELS["claude-4-sonnet"]


@pytest.fixture
def image_model() -> ModelDescriptor:
    return MODELS["gpt-image-1"]
