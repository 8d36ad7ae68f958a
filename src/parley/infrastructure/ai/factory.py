"""AI utility client factory."""

from functools import lru_cache

from parley.config import Settings, get_settings
from parley.infrastructure.ai.client import OpenAIUtilityClient
from parley.infrastructure.ai.cost_tracker import CostTracker
from parley.shared.logging import get_logger

logger = get_logger(__name__)


@lru_cache(maxsize=1)
def get_cost_tracker() -> CostTracker:
    """Get a shared CostTracker instance."""
    return CostTracker()


def build_utility_client(
    settings: Settings | None = None,
    cost_tracker: CostTracker | None = None,
) -> OpenAIUtilityClient | None:
    """Build the title/image client, or None when no OpenAI key is configured.

    Without it, titles fall back to truncated user text and image requests
    fail with an apology.
    """
    settings = settings or get_settings()
    if not settings.openai_api_key:
        logger.warning("utility_client_disabled", reason="OPENAI_API_KEY not configured")
        return None
    logger.info(
        "utility_client_ready",
        title_model=settings.title_model,
        image_model=settings.image_model,
    )
    return OpenAIUtilityClient(
        api_key=settings.openai_api_key,
        cost_tracker=cost_tracker or get_cost_tracker(),
        image_model=settings.image_model,
        image_size=settings.image_size,
    )
