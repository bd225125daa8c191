"""Tool registries implementing :class:`ToolProvider`."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable

from toolstream.errors import ToolNotFoundError
from toolstream.tools.base import Tool, ToolOutput
from toolstream.tools.spec import RawTool, ToolSpec, normalize_tool

_logger = logging.getLogger(__name__)


def _smart_truncate(text: str, max_length: int) -> str:
    """Keep head and tail with a marker for the omitted middle.

    Keeps the first 25% and last 75% so trailing errors stay visible.
    """
    if len(text) <= max_length:
        return text
    head_size = max_length // 4
    tail_size = max_length - head_size
    omitted = len(text) - max_length
    return (
        text[:head_size]
        + f"\n\n... [{omitted} chars truncated] ...\n\n"
        + text[-tail_size:]
    )


class ToolRegistry:
    """Registry of :class:`Tool` instances."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool instance."""
        if tool.name in self._tools:
            _logger.warning("Replacing registered tool %s", tool.name)
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def list_tools(self) -> list[ToolSpec]:
        return [t.to_spec() for t in self._tools.values()]

    async def execute(self, name: str, arguments: dict[str, Any]) -> str:
        """Execute a tool by name with the given arguments.

        Applies per-tool output truncation.  Raises
        :class:`ToolNotFoundError` for unknown tools; tool exceptions
        propagate to the caller.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name, self.tool_names())
        output = await tool.execute(**arguments)
        output = "" if output is None else str(output)
        if tool.max_output > 0:
            output = _smart_truncate(output, tool.max_output)
        return output


class CallbackToolProvider:
    """Adapts an externally supplied tool list and execute callback.

    Used for tools served by an external registry (e.g. MCP servers),
    whose specs may come in either MCP or function shape.
    """

    def __init__(
        self,
        tools: list[RawTool],
        execute: Callable[[str, dict[str, Any]], ToolOutput],
    ) -> None:
        self._specs = [normalize_tool(t) for t in tools]
        self._execute = execute

    def list_tools(self) -> list[ToolSpec]:
        return list(self._specs)

    async def execute(self, name: str, arguments: dict[str, Any]) -> str:
        if name not in {s.name for s in self._specs}:
            raise ToolNotFoundError(name, [s.name for s in self._specs])
        if inspect.iscoroutinefunction(self._execute):
            result = await self._execute(name, arguments)
        else:
            result = await asyncio.to_thread(self._execute, name, arguments)
            if inspect.isawaitable(result):
                result = await result
        return "" if result is None else str(result)
