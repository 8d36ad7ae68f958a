"""Anthropic/Claude backend.

Streams a turn through the Messages API; extended thinking is enabled through
the ``thinking`` option with a token budget.
"""

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

import anthropic

from parley.domain.chat.tools import RoundOutcome, ToolExecutor, stream_with_tools
from parley.domain.chat.types import (
    REASONING_BUDGETS,
    ProviderStrategy,
    ReasoningDelta,
    StreamEvent,
    TextDelta,
    Usage,
    looks_like_context_overflow,
)
from parley.domain.messages.types import CanonicalMessage, ReasoningPart, TextPart, ToolCallPart
from parley.domain.messages.wire import to_anthropic_messages, to_anthropic_tools
from parley.domain.models.catalog import ModelDescriptor, ReasoningLevel
from parley.shared.exceptions import (
    ContextTooLargeError,
    ParleyError,
    ProviderError,
    ProviderRateLimitError,
)
from parley.shared.logging import get_logger

logger = get_logger(__name__)

# Room for visible output on top of the thinking budget
THINKING_HEADROOM_TOKENS = 1024


def classify_anthropic_error(e: anthropic.APIError) -> ParleyError:
    details = {"backend": "anthropic"}
    if isinstance(e, anthropic.RateLimitError):
        return ProviderRateLimitError("Anthropic rate limit exceeded", details=details)
    if isinstance(e, anthropic.BadRequestError) and looks_like_context_overflow(str(e)):
        return ContextTooLargeError("Conversation is too long for this model", details=details)
    return ProviderError(f"Anthropic request failed: {e}", details=details)


class AnthropicGeneration:
    """One Claude model bound to a client."""

    def __init__(self, strategy: "AnthropicStrategy", model: str, max_tokens: int):
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
        bag = dict(options.get(self.strategy.backend_name, {}))
        api_key = bag.pop("api_key", None)

        max_tokens = self.max_tokens
        thinking = bag.get("thinking")
        if thinking:
            max_tokens = max(max_tokens, thinking["budget_tokens"] + THINKING_HEADROOM_TOKENS)

        params: dict[str, Any] = {"model": self.model, "max_tokens": max_tokens, **bag}
        if system_prompt:
            params["system"] = system_prompt
        if tools is not None:
            params["tools"] = to_anthropic_tools(tools.definitions)

        async with self.strategy.open_client(api_key) as client:
            rounds = stream_with_tools(
                lambda history, outcome: self._round(client, params, history, outcome),
                messages,
                tools,
            )
            async for event in rounds:
                yield event

    async def _round(
        self,
        client: anthropic.AsyncAnthropic,
        params: dict[str, Any],
        history: Sequence[CanonicalMessage],
        outcome: RoundOutcome,
    ) -> AsyncIterator[StreamEvent]:
        try:
            async with client.messages.stream(messages=to_anthropic_messages(history), **params) as stream:
                async for event in stream:
                    if event.type != "content_block_delta":
                        continue
                    if event.delta.type == "text_delta":
                        yield TextDelta(event.delta.text)
                    elif event.delta.type == "thinking_delta":
                        yield ReasoningDelta(event.delta.thinking)
                final = await stream.get_final_message()
        except anthropic.APIError as e:
            raise classify_anthropic_error(e) from e

        outcome.finish_reason = final.stop_reason or "stop"
        outcome.usage = Usage(final.usage.input_tokens, final.usage.output_tokens)
        for block in getattr(final, "content", None) or []:
            if block.type == "thinking":
                outcome.assistant_parts.append(ReasoningPart(text=block.thinking, signature=block.signature))
            elif block.type == "text" and block.text:
                outcome.assistant_parts.append(TextPart(text=block.text))
            elif block.type == "tool_use":
                args = block.input if isinstance(block.input, dict) else {}
                outcome.assistant_parts.append(ToolCallPart(call_id=block.id, tool_name=block.name, args=args))


class AnthropicStrategy(ProviderStrategy):
    backend_name = "anthropic"

    def __init__(self, api_key: str = ""):
        self._client = anthropic.AsyncAnthropic(api_key=api_key) if api_key else None

    def is_available(self, credential: str | None = None) -> bool:
        return bool(credential) or self._client is not None

    def client_for(self, api_key: str | None) -> anthropic.AsyncAnthropic:
        if api_key:
            if self._client is not None:
                # Shares the connection pool of the process-wide client
                return self._client.with_options(api_key=api_key)
            return anthropic.AsyncAnthropic(api_key=api_key)
        if self._client is None:
            raise ProviderError("Anthropic is not configured", details={"backend": self.backend_name})
        return self._client

    @asynccontextmanager
    async def open_client(self, api_key: str | None) -> AsyncIterator[anthropic.AsyncAnthropic]:
        """The client for one request; one built only for a caller key is closed afterwards."""
        client = self.client_for(api_key)
        try:
            yield client
        finally:
            if api_key and self._client is None:
                await client.close()

    def reasoning_options(self, level: ReasoningLevel) -> dict[str, Any]:
        return {"thinking": {"type": "enabled", "budget_tokens": REASONING_BUDGETS[level]}}

    def instantiate(self, descriptor: ModelDescriptor, search_enabled: bool) -> AnthropicGeneration:
        _ = search_enabled  # no native grounding
        return AnthropicGeneration(self, descriptor.api_model_name or descriptor.id, descriptor.max_output_tokens)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
