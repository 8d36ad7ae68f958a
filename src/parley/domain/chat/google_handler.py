"""Google Gemini backend.

Gemini is the only backend with native search grounding: when search is on
the ``google_search`` tool is attached and grounding metadata is surfaced on
the finish event.
"""

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any
from uuid import uuid4

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

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
from parley.domain.messages.types import CanonicalMessage, TextPart, ToolCallPart
from parley.domain.messages.wire import to_google_contents, to_google_tools
from parley.domain.models.catalog import ModelDescriptor, ReasoningLevel
from parley.shared.exceptions import (
    ContextTooLargeError,
    ParleyError,
    ProviderError,
    ProviderRateLimitError,
)
from parley.shared.logging import get_logger

logger = get_logger(__name__)


def classify_google_error(e: genai_errors.APIError) -> ParleyError:
    details = {"backend": "google", "status": e.code}
    if e.code == 429:
        return ProviderRateLimitError("Google rate limit exceeded", details=details)
    if e.code == 400 and looks_like_context_overflow(str(e)):
        return ContextTooLargeError("Conversation is too long for this model", details=details)
    return ProviderError(f"Google request failed: {e}", details=details)


def _finish_reason(candidate: genai_types.Candidate) -> str | None:
    reason = candidate.finish_reason
    if reason is None:
        return None
    return str(getattr(reason, "value", reason)).lower()


class GoogleGeneration:
    """One Gemini model bound to a client."""

    def __init__(self, strategy: "GoogleStrategy", model: str, max_tokens: int, search: bool):
        self.strategy = strategy
        self.model = model
        self.max_tokens = max_tokens
        self.search = search

    def _config(
        self,
        system_prompt: str,
        bag: dict[str, Any],
        tools: ToolExecutor | None = None,
    ) -> genai_types.GenerateContentConfig:
        config: dict[str, Any] = {"max_output_tokens": self.max_tokens}
        if system_prompt:
            config["system_instruction"] = system_prompt
        if "thinking_config" in bag:
            config["thinking_config"] = genai_types.ThinkingConfig(**bag["thinking_config"])
        # Native grounding and function declarations are never combined
        if self.search:
            config["tools"] = [genai_types.Tool(google_search=genai_types.GoogleSearch())]
        elif tools is not None:
            config["tools"] = to_google_tools(tools.definitions)
            config["automatic_function_calling"] = genai_types.AutomaticFunctionCallingConfig(disable=True)
        return genai_types.GenerateContentConfig(**config)

    async def stream(
        self,
        messages: Sequence[CanonicalMessage],
        system_prompt: str,
        options: dict[str, dict[str, Any]],
        tools: ToolExecutor | None = None,
    ) -> AsyncIterator[StreamEvent]:
        bag = dict(options.get(self.strategy.backend_name, {}))
        api_key = bag.pop("api_key", None)
        if self.search:
            tools = None
        config = self._config(system_prompt, bag, tools)

        async with self.strategy.open_client(api_key) as client:
            rounds = stream_with_tools(
                lambda history, outcome: self._round(client, config, history, outcome),
                messages,
                tools,
            )
            async for event in rounds:
                yield event

    async def _round(
        self,
        client: genai.Client,
        config: genai_types.GenerateContentConfig,
        history: Sequence[CanonicalMessage],
        outcome: RoundOutcome,
    ) -> AsyncIterator[StreamEvent]:
        text: list[str] = []
        calls: list[ToolCallPart] = []
        try:
            stream = await client.aio.models.generate_content_stream(
                model=self.model,
                contents=to_google_contents(history),
                config=config,
            )
            async for chunk in stream:
                if chunk.usage_metadata is not None:
                    outcome.usage = Usage(
                        chunk.usage_metadata.prompt_token_count or 0,
                        chunk.usage_metadata.candidates_token_count or 0,
                    )
                if not chunk.candidates:
                    continue
                candidate = chunk.candidates[0]
                outcome.finish_reason = _finish_reason(candidate) or outcome.finish_reason
                if candidate.grounding_metadata is not None:
                    dumped = candidate.grounding_metadata.model_dump(mode="json", exclude_none=True)
                    if dumped:
                        outcome.grounding = dumped
                if candidate.content is None or not candidate.content.parts:
                    continue
                for part in candidate.content.parts:
                    if part.function_call is not None:
                        call = part.function_call
                        calls.append(
                            ToolCallPart(
                                call_id=call.id or f"call_{uuid4().hex[:24]}",
                                tool_name=call.name or "",
                                args=dict(call.args or {}),
                            )
                        )
                    elif not part.text:
                        continue
                    elif part.thought:
                        yield ReasoningDelta(part.text)
                    else:
                        text.append(part.text)
                        yield TextDelta(part.text)
        except genai_errors.APIError as e:
            raise classify_google_error(e) from e

        if text:
            outcome.assistant_parts.append(TextPart(text="".join(text)))
        outcome.assistant_parts.extend(calls)


class GoogleStrategy(ProviderStrategy):
    backend_name = "google"

    def __init__(self, api_key: str = ""):
        self._client = genai.Client(api_key=api_key) if api_key else None

    def is_available(self, credential: str | None = None) -> bool:
        return bool(credential) or self._client is not None

    def client_for(self, api_key: str | None) -> genai.Client:
        if api_key:
            return genai.Client(api_key=api_key)
        if self._client is None:
            raise ProviderError("Google is not configured", details={"backend": self.backend_name})
        return self._client

    @asynccontextmanager
    async def open_client(self, api_key: str | None) -> AsyncIterator[genai.Client]:
        """The client for one request; one built for a caller key is closed afterwards."""
        client = self.client_for(api_key)
        try:
            yield client
        finally:
            if api_key:
                await client.aio.aclose()

    def reasoning_options(self, level: ReasoningLevel) -> dict[str, Any]:
        return {"thinking_config": {"thinking_budget": REASONING_BUDGETS[level], "include_thoughts": True}}

    def instantiate(self, descriptor: ModelDescriptor, search_enabled: bool) -> GoogleGeneration:
        return GoogleGeneration(
            self,
            descriptor.api_model_name or descriptor.id,
            descriptor.max_output_tokens,
            search=search_enabled and descriptor.has("search"),
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aio.aclose()
