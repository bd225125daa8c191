"""Tool descriptions and their provider-specific schemas.

Tools reach the engine in one of two shapes:

* :class:`MCPShape` -- ``{name, description, inputSchema}`` as listed by
  an MCP server;
* :class:`FunctionShape` -- ``{type: "function", function: {...}}`` as
  used by OpenAI-style APIs.

:func:`normalize_tool` turns either into one canonical :class:`ToolSpec`
before any adapter sees it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

_EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


@dataclass(frozen=True)
class MCPShape:
    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)
    server_id: str | None = None


@dataclass(frozen=True)
class FunctionShape:
    name: str
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)


RawTool = Union[MCPShape, FunctionShape, dict]


@dataclass(frozen=True)
class ToolSpec:
    """Canonical tool description."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=lambda: dict(_EMPTY_SCHEMA))
    server_id: str | None = None

    def to_openai_schema(self) -> dict[str, Any]:
        """Convert to OpenAI function calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def to_anthropic_schema(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }

    def to_prompt_description(self) -> str:
        """Describe the tool and its XML call form for text-based prompting."""
        props: dict[str, Any] = self.parameters.get("properties", {}) or {}
        required = set(self.parameters.get("required", []) or [])
        lines = [f"### {self.name}", self.description or "(no description)"]
        if props:
            lines.append("Parameters:")
            for pname, pschema in props.items():
                req = "required" if pname in required else "optional"
                ptype = pschema.get("type", "string") if isinstance(pschema, dict) else "string"
                desc = pschema.get("description", "") if isinstance(pschema, dict) else ""
                lines.append(f"  - {pname} ({ptype}, {req}): {desc}".rstrip(": "))
            example = "".join(f"<{p}>...</{p}>" for p in props)
        else:
            lines.append("Parameters: (none)")
            example = ""
        lines.append(f"Usage: <{self.name}>{example}</{self.name}>")
        return "\n".join(lines)


def _schema(value: Any) -> dict[str, Any]:
    if isinstance(value, dict) and value:
        schema = dict(value)
        schema.setdefault("type", "object")
        return schema
    return dict(_EMPTY_SCHEMA)


def normalize_tool(tool: RawTool | ToolSpec) -> ToolSpec:
    """Convert any accepted tool shape into a :class:`ToolSpec`.

    Raises
    ------
    ValueError
        If *tool* has no usable name.
    """
    if isinstance(tool, ToolSpec):
        return tool
    if isinstance(tool, MCPShape):
        spec = ToolSpec(tool.name, tool.description, _schema(tool.input_schema), tool.server_id)
    elif isinstance(tool, FunctionShape):
        spec = ToolSpec(tool.name, tool.description, _schema(tool.parameters))
    elif isinstance(tool, dict):
        if tool.get("type") == "function" and isinstance(tool.get("function"), dict):
            fn = tool["function"]
            spec = ToolSpec(
                fn.get("name", ""), fn.get("description", ""),
                _schema(fn.get("parameters")),
            )
        else:
            spec = ToolSpec(
                tool.get("name", ""),
                tool.get("description", ""),
                _schema(tool.get("inputSchema", tool.get("input_schema", tool.get("parameters")))),
                tool.get("serverId", tool.get("server_id")),
            )
    else:
        raise ValueError(f"Unsupported tool shape: {type(tool).__name__}")
    if not spec.name:
        raise ValueError(f"Tool has no name: {tool!r}")
    return spec


def normalize_tools(tools: list[Any]) -> list[ToolSpec]:
    """Normalize and drop duplicate names, keeping the first occurrence."""
    seen: set[str] = set()
    specs: list[ToolSpec] = []
    for tool in tools:
        spec = normalize_tool(tool)
        if spec.name in seen:
            continue
        seen.add(spec.name)
        specs.append(spec)
    return specs
