"""Provider routing.

Maps a model id to a live backend, builds backend-keyed generation options
and the system prompt. Resolution fails closed: every reason a model cannot
be served becomes an ``Unsupported`` with a readable message.
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from parley.config import Settings
from parley.domain.chat.anthropic_handler import AnthropicStrategy
from parley.domain.chat.google_handler import GoogleStrategy
from parley.domain.chat.openai_handler import OpenAICompatibleStrategy
from parley.domain.chat.types import (
    GenerationHandle,
    ProviderMapping,
    ProviderStrategy,
    Supported,
    Unsupported,
)
from parley.domain.models.catalog import MODELS, PROVIDERS, ModelDescriptor, ProviderInfo, ReasoningLevel
from parley.infrastructure.ai.prompts import ChatSystemPromptV1
from parley.shared.exceptions import UnsupportedModelError
from parley.shared.logging import get_logger

logger = get_logger(__name__)


class ProviderRouter:
    """Lookup table of backend strategies keyed by backend name."""

    def __init__(
        self,
        strategies: Mapping[str, ProviderStrategy],
        catalog: Mapping[str, ModelDescriptor] = MODELS,
        providers: Mapping[str, ProviderInfo] = PROVIDERS,
    ):
        self.strategies = dict(strategies)
        self.catalog = catalog
        self.providers = providers
        self.system_prompt = ChatSystemPromptV1()

    def descriptor(self, model_id: str) -> ModelDescriptor | None:
        return self.catalog.get(model_id)

    def _not_supported(self, descriptor: ModelDescriptor) -> Unsupported:
        available = ", ".join(
            name
            for name, info in self.providers.items()
            if info.supported and info.backend_name in self.strategies
        )
        return Unsupported(
            f"{descriptor.name} ({descriptor.provider_name}) not supported. Available: {available}."
        )

    def resolve(self, model_id: str, credential: str | None = None) -> ProviderMapping:
        """Resolve a model id to a backend. Never raises."""
        descriptor = self.descriptor(model_id)
        if descriptor is None:
            return Unsupported(f"Model {model_id} not found")

        info = self.providers.get(descriptor.provider_name)
        if info is None or not info.supported or not descriptor.api_model_name:
            return self._not_supported(descriptor)

        strategy = self.strategies.get(info.backend_name)
        if strategy is None:
            return self._not_supported(descriptor)

        if not strategy.is_available(credential):
            return Unsupported(
                f"{descriptor.name} ({descriptor.provider_name}) is not configured: no API key available."
            )

        return Supported(handle=strategy, backend_name=info.backend_name)

    def build_generation_options(
        self,
        descriptor: ModelDescriptor,
        reasoning_level: ReasoningLevel | None,
        credential: str | None = None,
    ) -> dict[str, dict[str, Any]]:
        """Backend-keyed option bags; empty when there is nothing to set."""
        info = self.providers.get(descriptor.provider_name)
        strategy = self.strategies.get(info.backend_name) if info else None
        if info is None or strategy is None:
            return {}
        bag = strategy.build_options(descriptor, reasoning_level, credential)
        return {info.backend_name: bag} if bag else {}

    def instantiate(
        self,
        descriptor: ModelDescriptor,
        mapping: ProviderMapping,
        search_enabled: bool,
    ) -> GenerationHandle:
        if isinstance(mapping, Unsupported):
            raise UnsupportedModelError(descriptor.id, mapping.reason)
        return mapping.handle.instantiate(descriptor, search_enabled)

    def build_system_prompt(
        self,
        descriptor: ModelDescriptor,
        search_enabled: bool,
        memory_enabled: bool = True,
        user_traits: str | None = None,
        assistant_name: str | None = None,
        now: datetime | None = None,
    ) -> list[str]:
        return self.system_prompt.render_clauses(
            descriptor, search_enabled, memory_enabled, user_traits, assistant_name, now
        )

    async def close(self) -> None:
        for strategy in self.strategies.values():
            await strategy.close()


def build_provider_router(settings: Settings) -> ProviderRouter:
    """Build one strategy per backend from server-side configuration.

    Backends without a server key are still registered so callers can bring
    their own key.
    """
    strategies: dict[str, ProviderStrategy] = {
        "google": GoogleStrategy(settings.google_api_key),
        "anthropic": AnthropicStrategy(settings.anthropic_api_key),
    }
    for backend_name in ("openai", "xai", "groq", "deepseek", "openrouter"):
        strategies[backend_name] = OpenAICompatibleStrategy(
            backend_name,
            api_key=settings.backend_api_key(backend_name),
            base_url=settings.backend_base_url(backend_name),
        )
    configured = sorted(name for name in strategies if settings.backend_api_key(name))
    logger.info("provider_router_ready", configured_backends=configured)
    return ProviderRouter(strategies)
