"""Model catalog.

Descriptors are static configuration looked up by id only. Provider display
names map to backend names; a provider can be listed but switched off.
"""

from dataclasses import dataclass
from typing import Literal

Capability = Literal["image", "pdf", "search", "reasoning", "image_generation"]
ReasoningLevel = Literal["low", "medium", "high"]


@dataclass(frozen=True)
class ProviderInfo:
    backend_name: str
    supported: bool = True


PROVIDERS: dict[str, ProviderInfo] = {
    "Google": ProviderInfo("google"),
    "OpenAI": ProviderInfo("openai"),
    "Anthropic": ProviderInfo("anthropic"),
    "xAI": ProviderInfo("xai"),
    "Groq": ProviderInfo("groq"),
    "DeepSeek": ProviderInfo("deepseek"),
    "OpenRouter": ProviderInfo("openrouter"),
}


@dataclass(frozen=True)
class ModelDescriptor:
    """Static description of a selectable model."""

    id: str
    name: str
    provider_name: str
    api_model_name: str | None
    capabilities: frozenset[Capability] = frozenset()
    reasoning_levels: tuple[ReasoningLevel, ...] = ()
    max_output_tokens: int = 8192

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities


def _model(
    id: str,
    name: str,
    provider_name: str,
    api_model_name: str,
    capabilities: tuple[Capability, ...] = (),
    reasoning_levels: tuple[ReasoningLevel, ...] = (),
    max_output_tokens: int = 8192,
) -> ModelDescriptor:
    return ModelDescriptor(
        id=id,
        name=name,
        provider_name=provider_name,
        api_model_name=api_model_name,
        capabilities=frozenset(capabilities),
        reasoning_levels=reasoning_levels,
        max_output_tokens=max_output_tokens,
    )


_ALL_LEVELS: tuple[ReasoningLevel, ...] = ("low", "medium", "high")

MODELS: dict[str, ModelDescriptor] = {
    m.id: m
    for m in [
        # Google
        _model("gemini-2.0-flash", "Gemini 2.0 Flash", "Google", "gemini-2.0-flash", ("image", "search")),
        _model("gemini-2.5-flash", "Gemini 2.5 Flash", "Google", "gemini-2.5-flash", ("image", "search")),
        _model(
            "gemini-2.5-pro",
            "Gemini 2.5 Pro",
            "Google",
            "gemini-2.5-pro",
            ("image", "pdf", "search", "reasoning"),
            _ALL_LEVELS,
        ),
        # OpenAI
        _model("gpt-4o", "GPT-4o", "OpenAI", "gpt-4o-2024-11-20", ("image",), max_output_tokens=4096),
        _model("gpt-4o-mini", "GPT-4o Mini", "OpenAI", "gpt-4o-mini", ("image",), max_output_tokens=4096),
        _model("o3-mini", "o3-mini", "OpenAI", "o3-mini", ("reasoning",), _ALL_LEVELS, 4096),
        _model("o4-mini", "o4-mini", "OpenAI", "o4-mini-2025-04-16", ("reasoning", "image"), _ALL_LEVELS, 4096),
        _model("gpt-4.1", "GPT-4.1", "OpenAI", "gpt-4.1", ("image",), max_output_tokens=32768),
        _model("gpt-4.1-mini", "GPT-4.1 Mini", "OpenAI", "gpt-4.1-mini", ("image",), max_output_tokens=32768),
        _model("gpt-4.1-nano", "GPT-4.1 Nano", "OpenAI", "gpt-4.1-nano", ("image",), max_output_tokens=32768),
        _model(
            "gpt-image-1",
            "GPT Image 1",
            "OpenAI",
            "gpt-4.1-mini",
            ("image_generation", "image"),
            max_output_tokens=4096,
        ),
        # Anthropic
        _model("claude-3.5-sonnet", "Claude 3.5 Sonnet", "Anthropic", "claude-3-5-sonnet-20241022", ("image", "pdf")),
        _model("claude-3.7-sonnet", "Claude 3.7 Sonnet", "Anthropic", "claude-3-7-sonnet-20250219", ("image", "pdf")),
        _model(
            "claude-3.7-sonnet-reasoning",
            "Claude 3.7 Sonnet (Reasoning)",
            "Anthropic",
            "claude-3-7-sonnet-20250219",
            ("image", "pdf", "reasoning"),
            _ALL_LEVELS,
        ),
        _model("claude-4-sonnet", "Claude 4 Sonnet", "Anthropic", "claude-sonnet-4-20250514", ("image", "pdf")),
        _model(
            "claude-4-sonnet-reasoning",
            "Claude 4 Sonnet (Reasoning)",
            "Anthropic",
            "claude-sonnet-4-20250514",
            ("image", "pdf", "reasoning"),
            _ALL_LEVELS,
        ),
        _model("claude-4-opus", "Claude 4 Opus", "Anthropic", "claude-opus-4-20250514", ("image", "pdf", "reasoning")),
        # Groq
        _model("llama-3.3-70b-groq", "Llama 3.3 70B (Groq)", "Groq", "llama-3.3-70b-versatile"),
        _model(
            "llama-4-scout-groq",
            "Llama 4 Scout (Groq)",
            "Groq",
            "meta-llama/llama-4-scout-17b-16e-instruct",
            ("image",),
        ),
        # DeepSeek
        _model("deepseek-v3-chat", "DeepSeek V3 Chat", "DeepSeek", "deepseek-chat"),
        _model("deepseek-r1-preview", "DeepSeek R1 Preview", "DeepSeek", "deepseek-reasoner", ("reasoning",)),
        # xAI
        _model("grok-3", "Grok 3", "xAI", "grok-3"),
        _model("grok-3-mini", "Grok 3 Mini", "xAI", "grok-3-mini", ("reasoning",), ("low", "high"), 4096),
        # OpenRouter
        _model(
            "qwen3-30b-a3b-free",
            "Qwen3 30B A3B (Free)",
            "OpenRouter",
            "qwen/qwen3-30b-a3b:free",
            ("reasoning",),
            max_output_tokens=40960,
        ),
    ]
}


def get_model(model_id: str) -> ModelDescriptor | None:
    """Look up a descriptor by id."""
    return MODELS.get(model_id)
