"""Tools offered to models during a chat turn.

``webSearch`` (Tavily) is offered when search is on and the model has no
native grounding; ``memorySave`` and ``memoryRetrieve`` (Mem0) when memory is
on. The caller's identity is bound into the memory tools and never taken from
model arguments. Turns with native search grounding get no function tools,
since Gemini does not combine ``google_search`` with function declarations.

Handlers run the loop with ``stream_with_tools``: stream a round, execute the
calls it requested, append the assistant step and its results to the history
and stream again.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from parley.domain.chat.types import (
    GenerationFinished,
    StreamEvent,
    ToolCallCompleted,
    ToolCallRequested,
    Usage,
)
from parley.domain.messages.types import CanonicalMessage, Part, ToolCallPart, ToolResultPart
from parley.domain.models.catalog import ModelDescriptor
from parley.infrastructure.external.memory import Mem0Client
from parley.infrastructure.external.web_search import TavilySearchClient
from parley.observability.metrics import TOOL_CALLS
from parley.shared.concurrency import gather_limited
from parley.shared.exceptions import ToolError
from parley.shared.logging import get_logger

logger = get_logger(__name__)

WEB_SEARCH = "webSearch"
MEMORY_SAVE = "memorySave"
MEMORY_RETRIEVE = "memoryRetrieve"


# ----- Tool inputs -----


class _ToolInput(BaseModel):
    model_config = ConfigDict(extra="ignore")


class WebSearchInput(_ToolInput):
    query: str = Field(
        min_length=1,
        description="The search query or question. Compound questions are split into focused queries.",
    )
    topic: Literal["general", "news"] = Field(
        default="general", description="'news' for current events, 'general' otherwise."
    )
    search_depth: Literal["basic", "advanced"] = Field(
        default="advanced", description="'advanced' returns richer snippets; 'basic' is faster."
    )
    max_results: int = Field(default=5, ge=1, le=10, description="Results per query (1-10).")


class MemorySaveInput(_ToolInput):
    content: str = Field(min_length=1, description="The information to remember. Clear and specific.")
    category: str = Field(default="general", description="Short label such as 'preference' or 'goal'.")


class MemoryRetrieveInput(_ToolInput):
    query: str = Field(min_length=1, description="What kind of information you are looking for.")
    limit: int = Field(default=5, ge=1, le=10, description="Maximum number of memories (1-10).")


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_model: type[BaseModel]

    @property
    def parameters(self) -> dict[str, Any]:
        """JSON schema of the input, without pydantic's titles."""
        schema = self.input_model.model_json_schema()
        schema.pop("title", None)
        for prop in schema.get("properties", {}).values():
            prop.pop("title", None)
        return schema


WEB_SEARCH_TOOL = ToolDefinition(
    name=WEB_SEARCH,
    description=(
        "Search the web for current information. Returns JSON whose 'searchResults' array holds "
        "one entry per query, each with a 'results' list of sources. Use these results to answer "
        "and cite every source inline, numbered sequentially across all results: [1], [2], [3]."
    ),
    input_model=WebSearchInput,
)
MEMORY_SAVE_TOOL = ToolDefinition(
    name=MEMORY_SAVE,
    description=(
        "Save important user information for personalized future interactions. Use when users "
        "share personal info, preferences, goals, constraints, or important context. Don't save "
        "generic responses or temporary information."
    ),
    input_model=MemorySaveInput,
)
MEMORY_RETRIEVE_TOOL = ToolDefinition(
    name=MEMORY_RETRIEVE,
    description=(
        "Retrieve relevant user memories to provide personalized responses. Use when you need "
        "context about user preferences, background, or past conversations."
    ),
    input_model=MemoryRetrieveInput,
)


# ----- Execution -----


@dataclass
class ToolExecution:
    """Result of executing a tool."""

    call_id: str
    tool_name: str
    tool_input: dict[str, Any]
    result: Any = None
    error: str | None = None

    @property
    def content(self) -> Any:
        """What the model sees: the result, or the error."""
        if self.error is not None:
            return {"error": self.error}
        return self.result


ToolHandler = Callable[[Any], Awaitable[Any]]


class ToolExecutor:
    """Executes the tools registered for one turn.

    Failures never abort the turn: unknown tools, invalid input and backend
    errors come back as a ``ToolExecution`` with ``error`` set, which the
    model receives as the tool result.
    """

    def __init__(self, concurrency: int = 4, max_steps: int = 5):
        self.concurrency = concurrency
        self.max_steps = max_steps
        self._tools: dict[str, tuple[ToolDefinition, ToolHandler]] = {}

    def register(self, definition: ToolDefinition, handler: ToolHandler) -> None:
        self._tools[definition.name] = (definition, handler)

    @property
    def definitions(self) -> list[ToolDefinition]:
        return [definition for definition, _ in self._tools.values()]

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    async def execute(self, call: ToolCallPart) -> ToolExecution:
        execution = ToolExecution(call_id=call.call_id, tool_name=call.tool_name, tool_input=call.args)
        entry = self._tools.get(call.tool_name)
        if entry is None:
            execution.error = f"Unknown tool: {call.tool_name}. Available tools: {', '.join(self._tools)}"
            TOOL_CALLS.labels(tool="unknown", outcome="error").inc()
            return execution

        definition, handler = entry
        try:
            params = definition.input_model.model_validate(call.args)
            execution.result = await handler(params)
        except ValidationError as e:
            execution.error = f"Invalid input for {call.tool_name}: {e.error_count()} error(s). Check the parameters."
        except ToolError as e:
            logger.warning("tool_failed", tool=call.tool_name, error=e.message)
            execution.error = e.message

        outcome = "error" if execution.error is not None else "ok"
        TOOL_CALLS.labels(tool=call.tool_name, outcome=outcome).inc()
        logger.info("tool_executed", tool=call.tool_name, call_id=call.call_id, outcome=outcome)
        return execution

    async def execute_all(self, calls: Sequence[ToolCallPart]) -> list[ToolExecution]:
        """Run the calls of one step concurrently; results keep call order."""
        return await gather_limited(
            [lambda c=call: self.execute(c) for call in calls],
            limit=self.concurrency,
        )


# ----- Per-turn tool selection -----


@dataclass(frozen=True)
class ToolAvailability:
    web_search: bool = False
    memory: bool = False

    @property
    def any(self) -> bool:
        return self.web_search or self.memory


class ChatToolbox:
    """Process-wide tool backends; builds the executor for each turn."""

    def __init__(
        self,
        search: TavilySearchClient | None = None,
        memory: Mem0Client | None = None,
        concurrency: int = 4,
        max_steps: int = 5,
    ):
        self.search = search
        self.memory = memory
        self.concurrency = concurrency
        self.max_steps = max_steps

    def availability(
        self,
        descriptor: ModelDescriptor,
        search_enabled: bool,
        memory_enabled: bool,
    ) -> ToolAvailability:
        if search_enabled and descriptor.has("search"):
            return ToolAvailability()
        return ToolAvailability(
            web_search=search_enabled and self.search is not None,
            memory=memory_enabled and self.memory is not None,
        )

    def for_turn(
        self,
        user_id: str,
        session_id: str,
        descriptor: ModelDescriptor,
        search_enabled: bool,
        memory_enabled: bool,
    ) -> ToolExecutor | None:
        """The executor for one turn, or None when no tool applies."""
        available = self.availability(descriptor, search_enabled, memory_enabled)
        if not available.any:
            return None

        executor = ToolExecutor(concurrency=self.concurrency, max_steps=self.max_steps)
        search, memory = self.search, self.memory
        if available.web_search and search is not None:

            async def web_search(params: WebSearchInput) -> dict[str, Any]:
                options = {
                    "topic": params.topic,
                    "search_depth": params.search_depth,
                    "max_results": params.max_results,
                }
                return await search.search_question(params.query, options)

            executor.register(WEB_SEARCH_TOOL, web_search)

        if available.memory and memory is not None:

            async def memory_save(params: MemorySaveInput) -> dict[str, Any]:
                saved = await memory.save(
                    params.content, user_id, session_id, metadata={"category": params.category}
                )
                return {"success": True, "message": "Memory saved.", **saved}

            async def memory_retrieve(params: MemoryRetrieveInput) -> dict[str, Any]:
                # All of the user's conversations, not just this one
                memories = await memory.search(params.query, user_id, limit=params.limit)
                return {"success": True, "memories": memories, "totalFound": len(memories)}

            executor.register(MEMORY_SAVE_TOOL, memory_save)
            executor.register(MEMORY_RETRIEVE_TOOL, memory_retrieve)

        logger.debug("turn_tools_selected", tools=executor.names)
        return executor

    async def close(self) -> None:
        if self.search is not None:
            await self.search.close()
        if self.memory is not None:
            await self.memory.close()


# ----- Multi-step loop -----


@dataclass
class RoundOutcome:
    """What one backend round produced besides its streamed deltas.

    ``assistant_parts`` keeps the backend's own order (signed reasoning, text,
    tool calls) so the step can be replayed verbatim on the next round.
    """

    finish_reason: str = "stop"
    usage: Usage = field(default_factory=Usage)
    assistant_parts: list[Part] = field(default_factory=list)
    grounding: dict[str, Any] | None = None

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        return [part for part in self.assistant_parts if isinstance(part, ToolCallPart)]


RoundRunner = Callable[[Sequence[CanonicalMessage], RoundOutcome], AsyncIterator[StreamEvent]]


async def stream_with_tools(
    run_round: RoundRunner,
    messages: Sequence[CanonicalMessage],
    tools: ToolExecutor | None,
) -> AsyncIterator[StreamEvent]:
    """Stream rounds until the model stops calling tools or the step limit is hit.

    Usage is summed over all rounds; the finish reason and grounding are the
    last round's.
    """
    history = list(messages)
    usage = Usage()
    outcome = RoundOutcome()
    steps = tools.max_steps if tools is not None else 1

    for step in range(steps):
        outcome = RoundOutcome()
        async for event in run_round(history, outcome):
            yield event
        usage = usage + outcome.usage

        calls = outcome.tool_calls
        if tools is None or not calls:
            break

        for call in calls:
            yield ToolCallRequested(call_id=call.call_id, tool_name=call.tool_name, args=call.args)
        executions = await tools.execute_all(calls)
        results = [
            ToolResultPart(call_id=e.call_id, tool_name=e.tool_name, result=e.content) for e in executions
        ]
        for result in results:
            yield ToolCallCompleted(call_id=result.call_id, tool_name=result.tool_name, result=result.result)

        history.append(
            CanonicalMessage(id=f"step-{step}", role="assistant", parts=tuple(outcome.assistant_parts))
        )
        history.append(CanonicalMessage(id=f"step-{step}:tool", role="tool", parts=tuple(results)))
    else:
        logger.warning("tool_step_limit_reached", steps=steps)

    yield GenerationFinished(finish_reason=outcome.finish_reason, usage=usage, grounding=outcome.grounding)
