"""Provider family adapters."""

from __future__ import annotations

from typing import Iterable

from toolstream.errors import ConfigurationError
from toolstream.llm.adapters.anthropic import AnthropicAdapter
from toolstream.llm.adapters.base import (
    StreamAccumulator,
    StreamingConfig,
    StreamingProtocolAdapter,
)
from toolstream.llm.adapters.ollama import OllamaAdapter
from toolstream.llm.adapters.openai import (
    MistralAdapter,
    OpenAICompatibleAdapter,
    TextToolAdapter,
)
from toolstream.llm.extractor import ToolCallExtractor
from toolstream.tools.capabilities import ModelCapabilityCache

ADAPTERS: dict[str, type[StreamingProtocolAdapter]] = {
    "openai": OpenAICompatibleAdapter,
    "mistral": MistralAdapter,
    "text": TextToolAdapter,
    "ollama": OllamaAdapter,
    "anthropic": AnthropicAdapter,
}


def create_adapter(
    family: str,
    capabilities: ModelCapabilityCache | None = None,
    extractor: ToolCallExtractor | None = None,
    ollama_native_models: Iterable[str] = (),
) -> StreamingProtocolAdapter:
    """Instantiate the adapter for a provider family."""
    try:
        cls = ADAPTERS[family]
    except KeyError:
        raise ConfigurationError(
            f"Unknown provider family: {family}. "
            f"Available: {', '.join(sorted(ADAPTERS))}"
        ) from None
    if cls is OllamaAdapter:
        return OllamaAdapter(capabilities, extractor, ollama_native_models)
    return cls(capabilities, extractor)


__all__ = [
    "ADAPTERS",
    "AnthropicAdapter",
    "MistralAdapter",
    "OllamaAdapter",
    "OpenAICompatibleAdapter",
    "StreamAccumulator",
    "StreamingConfig",
    "StreamingProtocolAdapter",
    "TextToolAdapter",
    "create_adapter",
]
