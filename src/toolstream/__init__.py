"""toolstream - multi-provider LLM streaming and agentic tool execution."""

from toolstream.config import ToolstreamConfig, load_config
from toolstream.core.cancellation import CancelToken
from toolstream.core.orchestrator import AgenticOrchestrator
from toolstream.errors import (
    ConfigurationError,
    ProtocolViolationError,
    ProviderError,
    RequestCancelled,
    ToolstreamError,
)
from toolstream.types import (
    ConversationTurn,
    LLMResponse,
    LLMSettings,
    ProviderInfo,
    ToolCall,
    ToolResult,
    Usage,
)

__version__ = "0.1.0"

__all__ = [
    "AgenticOrchestrator",
    "CancelToken",
    "ConfigurationError",
    "ConversationTurn",
    "LLMResponse",
    "LLMSettings",
    "ProtocolViolationError",
    "ProviderError",
    "ProviderInfo",
    "RequestCancelled",
    "ToolCall",
    "ToolResult",
    "ToolstreamError",
    "Usage",
    "load_config",
]
