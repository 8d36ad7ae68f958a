"""Static model catalog."""

from parley.domain.models.catalog import (
    MODELS,
    PROVIDERS,
    Capability,
    ModelDescriptor,
    ProviderInfo,
    ReasoningLevel,
    get_model,
)

__all__ = [
    "MODELS",
    "PROVIDERS",
    "Capability",
    "ModelDescriptor",
    "ProviderInfo",
    "ReasoningLevel",
    "get_model",
]
