"""Provider streaming: decoding, tool call extraction, adapters, transport."""

from toolstream.llm.client import AsyncLLMClient
from toolstream.llm.decoder import ChunkDecoder
from toolstream.llm.extractor import NativeToolCallAccumulator, ToolCallExtractor

__all__ = [
    "AsyncLLMClient",
    "ChunkDecoder",
    "NativeToolCallAccumulator",
    "ToolCallExtractor",
]
