"""Process-wide runtime state.

Built once in the FastAPI lifespan from settings and closed at shutdown. Holds
the shared clients (database engine, Redis, provider SDKs, HTTP, S3) and the
chat service wired on top of them.
"""

from dataclasses import dataclass

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncEngine

from parley.config import Settings, get_settings
from parley.domain.chat.finalizer import ResponseFinalizer
from parley.domain.chat.router import ProviderRouter, build_provider_router
from parley.domain.chat.service import ChatService
from parley.domain.chat.titles import TitleDeriver
from parley.domain.chat.tools import ChatToolbox
from parley.domain.streams import CancellationChannel, StreamBuffer, StreamLifecycleManager
from parley.infrastructure.ai.client import OpenAIUtilityClient
from parley.infrastructure.ai.cost_tracker import CostTracker
from parley.infrastructure.ai.factory import build_utility_client, get_cost_tracker
from parley.infrastructure.database.connection import build_session_factory, get_engine
from parley.infrastructure.database.repositories import ChatRepository, StreamRepository
from parley.infrastructure.external import AttachmentFetcher, Mem0Client, TavilySearchClient
from parley.infrastructure.storage.s3 import S3Storage
from parley.shared.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ChatRuntime:
    settings: Settings
    engine: AsyncEngine
    redis: Redis
    router: ProviderRouter
    chats: ChatRepository
    streams: StreamRepository
    lifecycle: StreamLifecycleManager
    attachments: AttachmentFetcher
    storage: S3Storage
    utility_client: OpenAIUtilityClient | None
    cost_tracker: CostTracker
    toolbox: ChatToolbox
    service: ChatService

    async def close(self) -> None:
        await self.service.shutdown()
        await self.router.close()
        await self.attachments.close()
        await self.toolbox.close()
        if self.utility_client is not None:
            await self.utility_client.close()
        await self.redis.aclose()
        await self.engine.dispose()
        logger.info("runtime_closed")


def build_runtime(
    settings: Settings | None = None,
    *,
    engine: AsyncEngine | None = None,
    redis: Redis | None = None,
    router: ProviderRouter | None = None,
    storage: S3Storage | None = None,
    utility_client: OpenAIUtilityClient | None = None,
    attachments: AttachmentFetcher | None = None,
    toolbox: ChatToolbox | None = None,
) -> ChatRuntime:
    """Wire the chat service from settings; any collaborator can be injected."""
    settings = settings or get_settings()
    engine = engine or get_engine(settings)
    redis = redis or Redis.from_url(str(settings.redis_url), decode_responses=True)
    router = router or build_provider_router(settings)
    storage = storage or S3Storage(settings)
    cost_tracker = get_cost_tracker()
    if utility_client is None:
        utility_client = build_utility_client(settings, cost_tracker)
    attachments = attachments or AttachmentFetcher(
        settings.attachment_allowed_origins,
        timeout=settings.attachment_fetch_timeout,
        max_bytes=settings.attachment_max_bytes,
        concurrency=settings.attachment_fetch_concurrency,
    )
    toolbox = toolbox or build_toolbox(settings)

    session_factory = build_session_factory(engine)
    chats = ChatRepository(session_factory)
    streams = StreamRepository(session_factory)
    buffer = StreamBuffer(
        redis,
        ttl_seconds=settings.stream_buffer_ttl_seconds,
        block_ms=settings.stream_read_block_ms,
        idle_timeout_seconds=settings.stream_idle_timeout_seconds,
    )
    channel = CancellationChannel(redis)
    lifecycle = StreamLifecycleManager(
        streams,
        chats,
        channel,
        buffer,
        records_kept_per_chat=settings.stream_records_kept_per_chat,
    )
    finalizer = ResponseFinalizer(
        chats,
        lifecycle,
        TitleDeriver(utility_client, settings.title_model, settings.title_max_length),
        images=utility_client,
        storage=storage,
    )
    service = ChatService(
        router=router,
        chats=chats,
        lifecycle=lifecycle,
        buffer=buffer,
        channel=channel,
        attachments=attachments,
        finalizer=finalizer,
        cost_tracker=cost_tracker,
        toolbox=toolbox,
    )
    logger.info("runtime_built", env=settings.app_env)
    return ChatRuntime(
        settings=settings,
        engine=engine,
        redis=redis,
        router=router,
        chats=chats,
        streams=streams,
        lifecycle=lifecycle,
        attachments=attachments,
        storage=storage,
        utility_client=utility_client,
        cost_tracker=cost_tracker,
        toolbox=toolbox,
        service=service,
    )


def build_toolbox(settings: Settings) -> ChatToolbox:
    """Tool backends with a configured key; the others are never offered."""
    search = (
        TavilySearchClient(settings.tavily_api_key, timeout=settings.tool_timeout_seconds)
        if settings.tavily_api_key
        else None
    )
    memory = (
        Mem0Client(settings.mem0_api_key, timeout=settings.tool_timeout_seconds)
        if settings.mem0_api_key
        else None
    )
    return ChatToolbox(
        search=search,
        memory=memory,
        concurrency=settings.tool_concurrency,
        max_steps=settings.max_tool_steps,
    )
