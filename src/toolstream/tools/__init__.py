"""Tool system for toolstream."""

from toolstream.tools.base import Tool, ToolParameter, ToolProvider
from toolstream.tools.capabilities import ModelCapabilityCache
from toolstream.tools.registry import CallbackToolProvider, ToolRegistry
from toolstream.tools.spec import FunctionShape, MCPShape, ToolSpec, normalize_tool

__all__ = [
    "CallbackToolProvider",
    "FunctionShape",
    "MCPShape",
    "ModelCapabilityCache",
    "Tool",
    "ToolParameter",
    "ToolProvider",
    "ToolRegistry",
    "ToolSpec",
    "normalize_tool",
]
