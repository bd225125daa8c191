"""Tool base class and the tool provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Protocol, Union, runtime_checkable

from toolstream.tools.spec import ToolSpec


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    type: str  # string, integer, number, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None


class Tool(ABC):
    """Base class for locally implemented tools.

    Subclasses set ``name``, ``description``, ``parameters`` as class
    attributes and implement ``execute()``, which returns the result text
    or raises.
    """

    name: str
    description: str
    parameters: list[ToolParameter] = []
    max_output: int = 5000  # Per-tool output limit (chars). Override in subclasses.

    @abstractmethod
    async def execute(self, **kwargs: Any) -> str:
        """Execute the tool asynchronously."""

    def to_spec(self) -> ToolSpec:
        properties: dict[str, Any] = {}
        required: list[str] = []
        for p in self.parameters:
            prop: dict[str, Any] = {"type": p.type, "description": p.description}
            if p.enum:
                prop["enum"] = p.enum
            if p.default is not None:
                prop["default"] = p.default
            properties[p.name] = prop
            if p.required:
                required.append(p.name)
        return ToolSpec(
            name=self.name,
            description=self.description,
            parameters={"type": "object", "properties": properties, "required": required},
        )


ToolOutput = Union[str, Awaitable[str]]


@runtime_checkable
class ToolProvider(Protocol):
    """Capability interface the orchestrator depends on.

    ``execute`` returns the result text (or an awaitable of it) and
    raises on failure.
    """

    def list_tools(self) -> list[Any]:
        ...

    def execute(self, name: str, arguments: dict[str, Any]) -> ToolOutput:
        ...
