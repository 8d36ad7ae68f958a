"""Chat domain module.

- router: model id -> backend strategy, generation options, system prompt
- anthropic_handler / openai_handler / google_handler: backend strategies
- annotations, protocol: side-channel events and data stream framing
- finalizer: persistence, titles and annotations once a turn ends
- service: turn orchestration (import it directly, it depends on streams)
"""

from parley.domain.chat.annotations import Annotation, AnnotationEmitter, latest_by_type
from parley.domain.chat.router import ProviderRouter, build_provider_router
from parley.domain.chat.types import (
    GenerationFinished,
    GenerationHandle,
    ProviderMapping,
    ProviderStrategy,
    ReasoningDelta,
    Supported,
    TextDelta,
    Unsupported,
    Usage,
)

__all__ = [
    "Annotation",
    "AnnotationEmitter",
    "GenerationFinished",
    "GenerationHandle",
    "ProviderMapping",
    "ProviderRouter",
    "ProviderStrategy",
    "ReasoningDelta",
    "Supported",
    "TextDelta",
    "Unsupported",
    "Usage",
    "build_provider_router",
    "latest_by_type",
]
