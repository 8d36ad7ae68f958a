"""Shared chat domain types.

Keep these types small and provider-agnostic so the Anthropic, OpenAI-compatible
and Google handlers can reuse them without circular imports.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from parley.domain.messages.types import CanonicalMessage
from parley.domain.models.catalog import ModelDescriptor, ReasoningLevel

if TYPE_CHECKING:
    from parley.domain.chat.tools import ToolExecutor

# Thinking-token budgets per reasoning level
REASONING_BUDGETS: dict[ReasoningLevel, int] = {
    "low": 1024,
    "medium": 4096,
    "high": 8192,
}


@dataclass(frozen=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: Usage) -> Usage:
        return Usage(self.input_tokens + other.input_tokens, self.output_tokens + other.output_tokens)

    def as_dict(self) -> dict[str, int]:
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ReasoningDelta:
    text: str


@dataclass(frozen=True)
class ToolCallRequested:
    call_id: str
    tool_name: str
    args: dict[str, Any]


@dataclass(frozen=True)
class ToolCallCompleted:
    call_id: str
    tool_name: str
    result: Any


@dataclass(frozen=True)
class GenerationFinished:
    finish_reason: str = "stop"
    usage: Usage = Usage()
    grounding: dict[str, Any] | None = None


StreamEvent = TextDelta | ReasoningDelta | ToolCallRequested | ToolCallCompleted | GenerationFinished


class GenerationHandle(Protocol):
    """A model bound to a backend, ready to stream one turn.

    With ``tools`` the handle runs the tool loop itself: it executes requested
    calls, feeds the results back and keeps streaming until the model answers
    without calling a tool or the step limit is reached.
    """

    model: str

    def stream(
        self,
        messages: Sequence[CanonicalMessage],
        system_prompt: str,
        options: dict[str, dict[str, Any]],
        tools: ToolExecutor | None = None,
    ) -> AsyncIterator[StreamEvent]: ...


@dataclass(frozen=True)
class Supported:
    handle: ProviderStrategy
    backend_name: str


@dataclass(frozen=True)
class Unsupported:
    reason: str


ProviderMapping = Supported | Unsupported


class ProviderStrategy(ABC):
    """One model backend: availability, option building and instantiation."""

    backend_name: str

    @abstractmethod
    def is_available(self, credential: str | None = None) -> bool:
        """Whether a request with this (optional) caller credential can be served."""

    def build_options(
        self,
        descriptor: ModelDescriptor,
        reasoning_level: ReasoningLevel | None,
        credential: str | None = None,
    ) -> dict[str, Any]:
        """Backend-specific generation options.

        Reasoning options are only emitted for levels the descriptor lists.
        """
        options: dict[str, Any] = {}
        if reasoning_level and reasoning_level in descriptor.reasoning_levels:
            options.update(self.reasoning_options(reasoning_level))
        if credential:
            options["api_key"] = credential
        return options

    @abstractmethod
    def reasoning_options(self, level: ReasoningLevel) -> dict[str, Any]:
        """Option fragment that enables reasoning at ``level``."""

    @abstractmethod
    def instantiate(self, descriptor: ModelDescriptor, search_enabled: bool) -> GenerationHandle:
        """Bind a model to this backend."""

    async def close(self) -> None:
        """Release the process-wide client, if any."""
        return None


_CONTEXT_OVERFLOW_MARKERS = (
    "prompt is too long",
    "context length",
    "context_length_exceeded",
    "maximum context",
    "too many tokens",
    "exceeds the maximum number of tokens",
)


def looks_like_context_overflow(message: str) -> bool:
    """Backends report context overflow as a generic 400; match on the message."""
    lowered = message.lower()
    return any(marker in lowered for marker in _CONTEXT_OVERFLOW_MARKERS)
