"""AI cost tracking for monitoring."""

from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime

from parley.shared.logging import get_logger

logger = get_logger(__name__)


# USD per 1M tokens, keyed by backend model name
MODEL_PRICING = {
    # Google
    "gemini-2.0-flash": {"input": 0.10, "output": 0.40},
    "gemini-2.5-flash": {"input": 0.30, "output": 2.50},
    "gemini-2.5-pro": {"input": 1.25, "output": 10.00},
    # OpenAI
    "gpt-4o-2024-11-20": {"input": 2.50, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "o3-mini": {"input": 1.10, "output": 4.40},
    "o4-mini-2025-04-16": {"input": 1.10, "output": 4.40},
    "gpt-4.1": {"input": 2.00, "output": 8.00},
    "gpt-4.1-mini": {"input": 0.40, "output": 1.60},
    "gpt-4.1-nano": {"input": 0.10, "output": 0.40},
    # Anthropic
    "claude-3-5-sonnet-20241022": {"input": 3.00, "output": 15.00},
    "claude-3-7-sonnet-20250219": {"input": 3.00, "output": 15.00},
    "claude-sonnet-4-20250514": {"input": 3.00, "output": 15.00},
    "claude-opus-4-20250514": {"input": 15.00, "output": 75.00},
    # DeepSeek
    "deepseek-chat": {"input": 0.27, "output": 1.10},
    "deepseek-reasoner": {"input": 0.55, "output": 2.19},
    # xAI
    "grok-3": {"input": 3.00, "output": 15.00},
    "grok-3-mini": {"input": 0.30, "output": 0.50},
}

DEFAULT_PRICING = {"input": 1.00, "output": 4.00}


@dataclass
class UsageRecord:
    """Record of AI usage for one call."""

    model: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    cost_cents: float
    action: str
    resource_id: str | None
    timestamp: datetime


class CostTracker:
    """Tracks AI usage and costs.

    Keeps a bounded in-memory window of recent records; every record is also
    logged, which is what monitoring consumes.
    """

    def __init__(self) -> None:
        self._buffer: deque[UsageRecord] = deque(maxlen=1_000)

    def calculate_cost(
        self,
        model: str,
        input_tokens: int,
        output_tokens: int,
    ) -> float:
        """Calculate cost in cents for token usage."""
        pricing = MODEL_PRICING.get(model)
        if not pricing:
            logger.debug("unknown_model_pricing", model=model)
            pricing = DEFAULT_PRICING

        input_cost = (input_tokens / 1_000_000) * pricing["input"]
        output_cost = (output_tokens / 1_000_000) * pricing["output"]
        return (input_cost + output_cost) * 100

    def record(
        self,
        model: str,
        input_tokens: int,
        output_tokens: int,
        action: str,
        resource_id: str | None = None,
    ) -> UsageRecord:
        """Record AI usage.

        Args:
            model: Backend model name
            input_tokens: Number of input tokens
            output_tokens: Number of output tokens
            action: Type of action (e.g., "chat_turn", "chat_title")
            resource_id: Optional id of the session or message concerned
        """
        cost_cents = self.calculate_cost(model, input_tokens, output_tokens)
        record = UsageRecord(
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            cost_cents=cost_cents,
            action=action,
            resource_id=resource_id,
            timestamp=datetime.now(UTC),
        )

        logger.info(
            "ai_usage_recorded",
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_cents=round(cost_cents, 4),
            action=action,
            resource_id=resource_id,
        )

        self._buffer.append(record)
        return record

    def recent(self, limit: int = 100) -> list[UsageRecord]:
        return list(self._buffer)[-limit:]
