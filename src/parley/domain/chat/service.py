"""Chat turn orchestration.

A turn is validated and prepared inside the request (model resolution,
session, outbound history, user message persistence), then generated by a
background task that writes frames into the stream buffer. The HTTP response
is just one reader of that buffer; a reconnecting client is another.

Flow per turn:
1. Resolve the model and fail fast on anything unsupported
2. Build the canonical provider history (attachments fetched concurrently)
3. Persist the user message, register a stream id
4. Generate while watching the cancel channel
5. Finalize: persist, title, annotations, finish frame
"""

import asyncio
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Any
from uuid import UUID, uuid4

from parley.domain.chat.annotations import AnnotationEmitter
from parley.domain.chat.finalizer import GenerationResult, ResponseFinalizer, TurnContext
from parley.domain.chat.protocol import (
    data_frame,
    finish_frame,
    reasoning_frame,
    text_frame,
    tool_call_frame,
    tool_result_frame,
)
from parley.domain.chat.router import ProviderRouter
from parley.domain.chat.tools import ChatToolbox, ToolExecutor
from parley.domain.chat.types import (
    GenerationFinished,
    GenerationHandle,
    ReasoningDelta,
    TextDelta,
    ToolCallCompleted,
    ToolCallRequested,
    Unsupported,
)
from parley.domain.messages.outbound import AttachmentSource, build_outbound_turn, find_last_user_index
from parley.domain.messages.persisted import to_ui_message
from parley.domain.messages.types import CanonicalMessage, ClientMessage, ToolCallPart, ToolResultPart
from parley.domain.models.catalog import ReasoningLevel
from parley.domain.streams.buffer import StreamBuffer
from parley.domain.streams.channel import CancellationChannel
from parley.domain.streams.lifecycle import StreamLifecycleManager
from parley.infrastructure.ai.cost_tracker import CostTracker
from parley.infrastructure.database.models.chat import ChatSession
from parley.infrastructure.database.repositories.chat import ChatRepository
from parley.observability.metrics import (
    ACTIVE_GENERATIONS,
    CHAT_STREAMS_FINISHED,
    CHAT_STREAMS_STARTED,
    PROVIDER_ERRORS,
)
from parley.shared.exceptions import BadRequestError, NotFoundError, ParleyError, UnsupportedModelError
from parley.shared.logging import bind_chat_context, get_logger

logger = get_logger(__name__)

UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred while generating the response."


@dataclass(frozen=True)
class ChatTurnRequest:
    user_id: str
    messages: Sequence[ClientMessage]
    model_id: str
    reasoning_level: ReasoningLevel | None = None
    search_enabled: bool = False
    memory_enabled: bool = True
    session_id: UUID | None = None
    api_key: str | None = None
    user_traits: str | None = None
    assistant_name: str | None = None


@dataclass(frozen=True)
class StartedTurn:
    stream_id: str
    session_id: UUID
    frames: AsyncIterator[str]


@dataclass(frozen=True)
class _PreparedGeneration:
    turn: TurnContext
    handle: GenerationHandle
    backend_name: str
    messages: tuple[CanonicalMessage, ...]
    system_prompt: str
    options: dict[str, dict[str, Any]]
    tools: ToolExecutor | None = None


class ChatService:
    """Starts, cancels and resumes chat turns."""

    def __init__(
        self,
        router: ProviderRouter,
        chats: ChatRepository,
        lifecycle: StreamLifecycleManager,
        buffer: StreamBuffer,
        channel: CancellationChannel,
        attachments: AttachmentSource,
        finalizer: ResponseFinalizer,
        cost_tracker: CostTracker,
        toolbox: ChatToolbox | None = None,
    ):
        self.router = router
        self.chats = chats
        self.lifecycle = lifecycle
        self.buffer = buffer
        self.channel = channel
        self.attachments = attachments
        self.finalizer = finalizer
        self.cost_tracker = cost_tracker
        self.toolbox = toolbox or ChatToolbox()
        self._tasks: set[asyncio.Task[None]] = set()

    # ----- Request-scoped steps -----

    async def start_turn(self, request: ChatTurnRequest) -> StartedTurn:
        """Validate and prepare a turn, then hand generation to a background task.

        Raises:
            UnsupportedModelError: Unknown, unsupported or unconfigured model
            BadRequestError: No user message in the history, or its id belongs to
                another conversation
            NotFoundError: ``session_id`` belongs to another user
            PersistenceError: The user message could not be saved
        """
        descriptor = self.router.descriptor(request.model_id)
        mapping = self.router.resolve(request.model_id, request.api_key)
        if descriptor is None or isinstance(mapping, Unsupported):
            reason = mapping.reason if isinstance(mapping, Unsupported) else "not found"
            raise UnsupportedModelError(request.model_id, reason)

        last_user = find_last_user_index(request.messages)
        if last_user is None:
            raise BadRequestError("Messages must contain at least one user message")

        session, is_new_session = await self._session_for(request)
        bind_chat_context(user_id=request.user_id, session_id=session.id)

        outbound = await build_outbound_turn(request.messages, descriptor, self.attachments)
        model_config = {
            "reasoningLevel": request.reasoning_level,
            "searchEnabled": request.search_enabled,
        }
        if outbound.user_message is not None:
            await self.chats.save_message(
                outbound.user_message,
                session_id=session.id,
                user_id=request.user_id,
                model_used=descriptor.id,
                model_provider=descriptor.provider_name,
                model_config=model_config,
            )

        options = self.router.build_generation_options(
            descriptor, request.reasoning_level, request.api_key
        )
        handle = self.router.instantiate(descriptor, mapping, request.search_enabled)
        # Prompt clauses only describe tools the model can actually use
        available = self.toolbox.availability(descriptor, request.search_enabled, request.memory_enabled)
        tools = self.toolbox.for_turn(
            request.user_id, str(session.id), descriptor, request.search_enabled, request.memory_enabled
        )
        system_prompt = "\n\n".join(
            self.router.build_system_prompt(
                descriptor,
                request.search_enabled and (descriptor.has("search") or available.web_search),
                available.memory,
                request.user_traits,
                request.assistant_name,
            )
        )

        stream_id = await self.lifecycle.begin(session.id)
        bind_chat_context(stream_id=stream_id)
        await self.buffer.append(
            stream_id, data_frame([{"streamId": stream_id, "sessionId": str(session.id)}])
        )

        prepared = _PreparedGeneration(
            turn=TurnContext(
                user_id=request.user_id,
                session_id=session.id,
                stream_id=stream_id,
                assistant_message_id=str(uuid4()),
                descriptor=descriptor,
                reasoning_level=request.reasoning_level,
                search_enabled=request.search_enabled,
                is_new_session=is_new_session,
                user_text=outbound.user_text,
            ),
            handle=handle,
            backend_name=mapping.backend_name,
            messages=outbound.messages,
            system_prompt=system_prompt,
            options=options,
            tools=tools,
        )
        task = asyncio.create_task(self._run(prepared), name=f"chat-turn-{stream_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(
            "chat_turn_started",
            model=descriptor.id,
            backend=mapping.backend_name,
            history=len(outbound.messages),
            tools=tools.names if tools is not None else [],
            new_session=is_new_session,
        )
        return StartedTurn(stream_id=stream_id, session_id=session.id, frames=self.buffer.read(stream_id))

    async def _session_for(self, request: ChatTurnRequest) -> tuple[ChatSession, bool]:
        if request.session_id is not None:
            session = await self.chats.get_session(request.session_id, request.user_id)
            if session is not None:
                return session, False
            if await self.chats.get_by_id(request.session_id) is not None:
                raise NotFoundError("Chat session", str(request.session_id))
        session = await self.chats.create_session(request.user_id, session_id=request.session_id)
        logger.info("chat_session_created", session_id=str(session.id))
        return session, True

    async def cancel(self, user_id: str, chat_id: UUID, stream_id: str) -> bool:
        """Cancel a stream of one of the user's chats.

        Raises:
            NotFoundError: Unknown chat, or the stream is not part of it
        """
        await self._owned_session(user_id, chat_id)
        record = await self.lifecycle.get(stream_id)
        if record is None or record.chat_id != chat_id:
            raise NotFoundError("Stream", stream_id)
        return await self.lifecycle.cancel(stream_id)

    async def history(self, user_id: str, chat_id: UUID) -> list[dict[str, Any]]:
        """Stored messages of one of the user's chats in UI form, oldest first.

        Raises:
            NotFoundError: Unknown chat, or it belongs to another user
        """
        await self._owned_session(user_id, chat_id)
        return [to_ui_message(row) for row in await self.chats.list_messages(chat_id)]

    async def resume(self, user_id: str, chat_id: UUID) -> AsyncIterator[str] | None:
        await self._owned_session(user_id, chat_id)
        return await self.lifecycle.resume(chat_id)

    async def _owned_session(self, user_id: str, chat_id: UUID) -> ChatSession:
        session = await self.chats.get_session(chat_id, user_id)
        if session is None:
            raise NotFoundError("Chat session", str(chat_id))
        return session

    # ----- Background generation -----

    async def _run(self, prepared: _PreparedGeneration) -> None:
        turn = prepared.turn
        stream_id = turn.stream_id

        async def sink(frame: str) -> None:
            await self.buffer.append(stream_id, frame)

        emitter = AnnotationEmitter(sink)
        outcome = "failed"
        ACTIVE_GENERATIONS.inc()
        CHAT_STREAMS_STARTED.labels(backend=prepared.backend_name).inc()
        try:
            await self.lifecycle.mark_streaming(stream_id)
            result = await self._generate_until_cancelled(prepared)
            if result is None:
                outcome = "cancelled"
                logger.info("generation_cancelled")
                await sink(finish_frame("cancelled"))
                return

            self._record_usage(prepared, result)
            finalized = await self.finalizer.finalize(turn, result, emitter)
            if finalized.discarded:
                outcome = "discarded"
                await sink(finish_frame("cancelled"))
                return

            await emitter.flush()
            await sink(
                finish_frame(result.finish_reason, result.usage.input_tokens, result.usage.output_tokens)
            )
            outcome = "completed"
        except ParleyError as e:
            PROVIDER_ERRORS.labels(backend=prepared.backend_name, code=e.code).inc()
            logger.warning("generation_failed", error=e.message, code=e.code)
            emitter.error(e.message, e.code)
            await emitter.flush()
            await sink(finish_frame("error"))
        except Exception:
            logger.exception("generation_crashed")
            emitter.error(UNEXPECTED_ERROR_MESSAGE, "INTERNAL_ERROR")
            await emitter.flush()
            await sink(finish_frame("error"))
        finally:
            await self.buffer.close(stream_id)
            ACTIVE_GENERATIONS.dec()
            CHAT_STREAMS_FINISHED.labels(outcome=outcome).inc()
            logger.info("chat_turn_finished", outcome=outcome)

    async def _generate_until_cancelled(self, prepared: _PreparedGeneration) -> GenerationResult | None:
        """Race generation against the cancel channel. None means cancelled.

        Losing the subscription is not a cancel: generation carries on and the
        finalizer's check of the stream record still catches a cancel.
        """
        turn = prepared.turn
        async with self.channel.subscribe(turn.stream_id) as watch:
            # A cancel published before the subscription only shows in the registry
            if await self.lifecycle.is_cancelled(turn.session_id, turn.stream_id):
                return None
            generation = asyncio.create_task(self._generate(prepared))
            watcher = asyncio.create_task(watch.wait())
            try:
                await asyncio.wait({generation, watcher}, return_when=asyncio.FIRST_COMPLETED)
                if not generation.done() and not self._cancel_received(watcher):
                    await asyncio.wait({generation})
            finally:
                for task in (generation, watcher):
                    if not task.done():
                        task.cancel()
                await asyncio.gather(generation, watcher, return_exceptions=True)

            if generation.done() and not generation.cancelled():
                return generation.result()
            return None

    @staticmethod
    def _cancel_received(watcher: asyncio.Task[bool]) -> bool:
        """Whether a finished watcher saw a cancel; a failed one is logged and ignored."""
        if watcher.cancelled():
            return False
        error = watcher.exception()
        if error is not None:
            logger.warning("cancel_watch_lost", error=str(error) or type(error).__name__)
            return False
        if not watcher.result():
            logger.warning("cancel_watch_lost", error="subscription ended")
            return False
        return True

    async def _generate(self, prepared: _PreparedGeneration) -> GenerationResult:
        stream_id = prepared.turn.stream_id
        result = GenerationResult()
        text: list[str] = []
        reasoning: list[str] = []

        events = prepared.handle.stream(
            prepared.messages, prepared.system_prompt, prepared.options, tools=prepared.tools
        )
        async for event in events:
            if isinstance(event, TextDelta):
                text.append(event.text)
                await self.buffer.append(stream_id, text_frame(event.text))
            elif isinstance(event, ReasoningDelta):
                reasoning.append(event.text)
                await self.buffer.append(stream_id, reasoning_frame(event.text))
            elif isinstance(event, ToolCallRequested):
                result.tool_parts.append(ToolCallPart(event.call_id, event.tool_name, event.args))
                await self.buffer.append(stream_id, tool_call_frame(event.call_id, event.tool_name, event.args))
            elif isinstance(event, ToolCallCompleted):
                result.tool_parts.append(ToolResultPart(event.call_id, event.tool_name, event.result))
                await self.buffer.append(stream_id, tool_result_frame(event.call_id, event.result))
            elif isinstance(event, GenerationFinished):
                result.finish_reason = event.finish_reason
                result.usage = event.usage
                result.grounding = event.grounding

        result.text = "".join(text)
        result.reasoning = "".join(reasoning)
        return result

    def _record_usage(self, prepared: _PreparedGeneration, result: GenerationResult) -> None:
        record = self.cost_tracker.record(
            model=prepared.handle.model,
            input_tokens=result.usage.input_tokens,
            output_tokens=result.usage.output_tokens,
            action="chat_turn",
            resource_id=prepared.turn.assistant_message_id,
        )
        result.cost_cents = record.cost_cents

    async def shutdown(self) -> None:
        """Cancel generation tasks still running in this process."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("chat_tasks_cancelled", count=len(tasks))
