"""OpenAI-compatible backends.

OpenAI itself plus xAI, Groq, DeepSeek and OpenRouter, which all speak the
Chat Completions API behind a different base URL.
"""

import json
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

import openai
from openai import AsyncOpenAI

from parley.domain.chat.tools import RoundOutcome, ToolExecutor, stream_with_tools
from parley.domain.chat.types import (
    ProviderStrategy,
    ReasoningDelta,
    StreamEvent,
    TextDelta,
    Usage,
    looks_like_context_overflow,
)
from parley.domain.messages.types import CanonicalMessage, TextPart, ToolCallPart
from parley.domain.messages.wire import to_openai_messages, to_openai_tools
from parley.domain.models.catalog import ModelDescriptor, ReasoningLevel
from parley.shared.exceptions import (
    ContextTooLargeError,
    ParleyError,
    ProviderError,
    ProviderRateLimitError,
)
from parley.shared.logging import get_logger

logger = get_logger(__name__)

# Backends that accept ``reasoning_effort``
REASONING_EFFORT_BACKENDS = frozenset({"openai", "xai"})


def classify_openai_error(e: openai.APIError, backend_name: str) -> ParleyError:
    details = {"backend": backend_name}
    if isinstance(e, openai.RateLimitError):
        return ProviderRateLimitError(f"{backend_name} rate limit exceeded", details=details)
    if isinstance(e, openai.BadRequestError) and looks_like_context_overflow(str(e)):
        return ContextTooLargeError("Conversation is too long for this model", details=details)
    return ProviderError(f"{backend_name} request failed: {e}", details=details)


class OpenAICompatibleGeneration:
    """One Chat Completions model bound to a client."""

    def __init__(self, strategy: "OpenAICompatibleStrategy", model: str, max_tokens: int):
        self.strategy = strategy
        self.model = model
        self.max_tokens = max_tokens

    async def stream(
        self,
        messages: Sequence[CanonicalMessage],
        system_prompt: str,
        options: dict[str, dict[str, Any]],
        tools: ToolExecutor | None = None,
    ) -> AsyncIterator[StreamEvent]:
        backend = self.strategy.backend_name
        bag = dict(options.get(backend, {}))
        api_key = bag.pop("api_key", None)

        # o-series models reject max_tokens
        token_param = "max_completion_tokens" if backend == "openai" else "max_tokens"
        params: dict[str, Any] = {
            "model": self.model,
            "stream": True,
            "stream_options": {"include_usage": True},
            token_param: self.max_tokens,
            **bag,
        }
        if tools is not None:
            params["tools"] = to_openai_tools(tools.definitions)

        async with self.strategy.open_client(api_key) as client:
            rounds = stream_with_tools(
                lambda history, outcome: self._round(client, params, history, system_prompt, outcome),
                messages,
                tools,
            )
            async for event in rounds:
                yield event

    async def _round(
        self,
        client: AsyncOpenAI,
        params: dict[str, Any],
        history: Sequence[CanonicalMessage],
        system_prompt: str,
        outcome: RoundOutcome,
    ) -> AsyncIterator[StreamEvent]:
        backend = self.strategy.backend_name
        text: list[str] = []
        calls: dict[int, _PendingCall] = {}
        try:
            stream = await client.chat.completions.create(
                messages=to_openai_messages(history, system_prompt), **params
            )
            async for chunk in stream:
                if chunk.usage is not None:
                    outcome.usage = Usage(chunk.usage.prompt_tokens, chunk.usage.completion_tokens)
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                if choice.finish_reason:
                    outcome.finish_reason = choice.finish_reason
                delta = choice.delta
                # DeepSeek and OpenRouter stream reasoning as non-standard fields
                reasoning = getattr(delta, "reasoning_content", None) or getattr(delta, "reasoning", None)
                if reasoning:
                    yield ReasoningDelta(reasoning)
                if delta.content:
                    text.append(delta.content)
                    yield TextDelta(delta.content)
                # Tool calls arrive as fragments keyed by index
                for fragment in getattr(delta, "tool_calls", None) or []:
                    pending = calls.setdefault(fragment.index, _PendingCall())
                    pending.add(fragment)
        except openai.APIError as e:
            raise classify_openai_error(e, backend) from e

        if text:
            outcome.assistant_parts.append(TextPart(text="".join(text)))
        outcome.assistant_parts.extend(calls[index].part() for index in sorted(calls))


@dataclass
class _PendingCall:
    id: str = ""
    name: str = ""
    arguments: list[str] = field(default_factory=list)

    def add(self, fragment: Any) -> None:
        if fragment.id:
            self.id = fragment.id
        function = fragment.function
        if function is None:
            return
        if function.name:
            self.name = function.name
        if function.arguments:
            self.arguments.append(function.arguments)

    def part(self) -> ToolCallPart:
        try:
            args = json.loads("".join(self.arguments) or "{}")
        except json.JSONDecodeError:
            args = {}
        return ToolCallPart(
            call_id=self.id or f"call_{uuid4().hex[:24]}",
            tool_name=self.name,
            args=args if isinstance(args, dict) else {},
        )


class OpenAICompatibleStrategy(ProviderStrategy):
    def __init__(self, backend_name: str, api_key: str = "", base_url: str | None = None):
        self.backend_name = backend_name
        self.base_url = base_url
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url) if api_key else None

    def is_available(self, credential: str | None = None) -> bool:
        return bool(credential) or self._client is not None

    def client_for(self, api_key: str | None) -> AsyncOpenAI:
        if api_key:
            if self._client is not None:
                # Shares the connection pool of the process-wide client
                return self._client.with_options(api_key=api_key)
            return AsyncOpenAI(api_key=api_key, base_url=self.base_url)
        if self._client is None:
            raise ProviderError(f"{self.backend_name} is not configured", details={"backend": self.backend_name})
        return self._client

    @asynccontextmanager
    async def open_client(self, api_key: str | None) -> AsyncIterator[AsyncOpenAI]:
        """The client for one request; one built only for a caller key is closed afterwards."""
        client = self.client_for(api_key)
        try:
            yield client
        finally:
            if api_key and self._client is None:
                await client.close()

    def reasoning_options(self, level: ReasoningLevel) -> dict[str, Any]:
        if self.backend_name not in REASONING_EFFORT_BACKENDS:
            return {}
        return {"reasoning_effort": level}

    def instantiate(self, descriptor: ModelDescriptor, search_enabled: bool) -> OpenAICompatibleGeneration:
        _ = search_enabled  # no native grounding
        return OpenAICompatibleGeneration(
            self, descriptor.api_model_name or descriptor.id, descriptor.max_output_tokens
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
