"""AI infrastructure for titles, images and usage accounting."""

from parley.infrastructure.ai.client import AIResponse, OpenAIUtilityClient
from parley.infrastructure.ai.cost_tracker import CostTracker, UsageRecord
from parley.infrastructure.ai.factory import build_utility_client, get_cost_tracker

__all__ = [
    "AIResponse",
    "CostTracker",
    "OpenAIUtilityClient",
    "UsageRecord",
    "build_utility_client",
    "get_cost_tracker",
]
