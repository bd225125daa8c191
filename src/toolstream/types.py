"""Shared data types for toolstream."""

from __future__ import annotations

import enum
import json
import math
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable


# ---------------------------------------------------------------------------
# Tool types
# ---------------------------------------------------------------------------

def canonical_json(value: Any) -> str:
    """Serialize *value* with sorted keys and compact separators."""
    return json.dumps(
        value, sort_keys=True, separators=(",", ":"), ensure_ascii=False,
        default=str,
    )


def new_call_id() -> str:
    """Synthesize a tool call id for providers that do not supply one."""
    return f"call_{uuid.uuid4().hex[:24]}"


@dataclass
class ToolCall:
    """Normalized tool call, provider-agnostic.

    ``raw`` keeps the arguments string exactly as the provider sent it so
    the follow-up assistant turn can echo it back unchanged.
    """

    name: str
    arguments: dict[str, Any]
    id: str | None = None
    raw: str = ""

    @property
    def key(self) -> tuple[str, str]:
        """Deduplication key: name plus canonical arguments."""
        return self.name, canonical_json(self.arguments)

    def arguments_json(self) -> str:
        if self.raw:
            return self.raw
        return json.dumps(self.arguments, ensure_ascii=False)

    def to_dict(self) -> dict[str, Any]:
        """OpenAI wire shape used in assistant ``tool_calls``."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments_json()},
        }


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one executed tool call.  Immutable once created."""

    name: str
    result: str
    success: bool
    execution_ms: float = 0.0
    id: str | None = None

    def to_message(self) -> str:
        if self.success:
            return self.result
        return f"[Tool Error] {self.result}"


# ---------------------------------------------------------------------------
# Usage / cost
# ---------------------------------------------------------------------------

@dataclass
class Usage:
    """Token usage for one or more round trips."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated: bool = False

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            estimated=self.estimated or other.estimated,
        )

    @classmethod
    def from_counts(cls, prompt: int, completion: int) -> Usage:
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=prompt + completion,
        )

    @classmethod
    def from_openai(cls, data: dict[str, Any] | None) -> Usage | None:
        if not isinstance(data, dict) or not data:
            return None
        prompt = int(data.get("prompt_tokens", 0) or 0)
        completion = int(data.get("completion_tokens", 0) or 0)
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=int(data.get("total_tokens") or prompt + completion),
        )


def estimate_tokens(text: str) -> int:
    """Rough token estimate used when a provider reports no usage."""
    if not text:
        return 0
    words = len(text.split())
    return math.ceil(words * 0.75 + len(text) * 0.25 / 4)


@dataclass
class Cost:
    input_cost: float = 0.0
    output_cost: float = 0.0
    total_cost: float = 0.0
    currency: str = "USD"
    provider: str = ""
    model: str = ""


# Pricing is an external pure function of (provider, model, usage).
PricingFn = Callable[[str, str, Usage], "Cost | None"]


# ---------------------------------------------------------------------------
# Conversation types
# ---------------------------------------------------------------------------

@dataclass
class ConversationTurn:
    """One message in a conversation, in canonical (OpenAI-like) form.

    ``content`` is either plain text or a list of content items such as
    ``{"type": "text", "text": ...}``.
    """

    role: str  # system | user | assistant | tool
    content: str | list[dict[str, Any]] | None = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None

    @property
    def text(self) -> str:
        if isinstance(self.content, list):
            return "".join(
                item.get("text", "") for item in self.content
                if isinstance(item, dict)
            )
        return self.content or ""

    def to_message(self) -> dict[str, Any]:
        msg: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            msg["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            msg["tool_call_id"] = self.tool_call_id
        return msg

    @classmethod
    def from_message(cls, data: dict[str, Any]) -> ConversationTurn:
        calls: list[ToolCall] = []
        for tc in data.get("tool_calls") or []:
            func = tc.get("function", {})
            raw_args = func.get("arguments", "")
            if isinstance(raw_args, dict):
                args, raw = raw_args, ""
            else:
                try:
                    args = json.loads(raw_args) if raw_args else {}
                except json.JSONDecodeError:
                    args = {}
                raw = raw_args or ""
            calls.append(ToolCall(
                name=func.get("name", ""), arguments=args,
                id=tc.get("id"), raw=raw,
            ))
        return cls(
            role=data.get("role", "user"),
            content=data.get("content", ""),
            tool_calls=calls,
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
        )


# ---------------------------------------------------------------------------
# Provider / settings
# ---------------------------------------------------------------------------

@dataclass
class LLMSettings:
    """Per-request model settings supplied by the caller."""

    provider: str = "ollama"
    model: str = ""
    api_key: str = ""
    base_url: str = ""
    temperature: float = 0.7
    max_tokens: int = 4096
    system_prompt: str = ""
    tool_calling_enabled: bool = True


@dataclass
class ProviderInfo:
    """Catalog entry describing one provider endpoint."""

    id: str
    name: str = ""
    base_url: str = ""
    requires_api_key: bool = True
    family: str = "openai"  # openai | mistral | text | ollama | anthropic
    extra_headers: dict[str, str] = field(default_factory=dict)

    def resolve_base_url(self, settings: LLMSettings) -> str:
        return (settings.base_url or self.base_url).rstrip("/")


class ToolMode(enum.Enum):
    NATIVE = "native"
    TEXT = "text"
    NONE = "none"


# ---------------------------------------------------------------------------
# LLM types
# ---------------------------------------------------------------------------

@dataclass
class RoundResult:
    """Outcome of one network round trip."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Usage | None = None
    finish_reason: str = ""
    model: str = ""

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


@dataclass
class LLMResponse:
    """Result of one ``send_message`` call, possibly spanning several rounds."""

    content: str = ""
    usage: Usage | None = None
    cost: Cost | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    rounds: int = 0
    finish_reason: str = ""
    model: str = ""

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


class OrchestratorState(enum.Enum):
    AWAITING_MODEL = "awaiting_model"
    TOOLS_FOUND = "tools_found"
    EXECUTING_TOOLS = "executing_tools"
    BUILDING_FOLLOWUP = "building_followup"
    DONE = "done"
    CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Event types emitted during a run."""

    # Run lifecycle
    RUN_STARTED = "run.started"
    RUN_DONE = "run.done"
    RUN_ERROR = "run.error"
    RUN_CANCELLED = "run.cancelled"
    STATE_CHANGED = "run.state"

    # LLM events
    LLM_REQUEST = "llm.request"
    LLM_RESPONSE = "llm.response"
    FRAME_DROPPED = "llm.frame_dropped"

    # Tool events
    TOOL_EXECUTING = "tool.executing"
    TOOL_EXECUTED = "tool.executed"
    TOOL_ERROR = "tool.error"


@dataclass
class AgentEvent:
    """Event emitted via the EventBus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    conversation_id: str | None = None
    timestamp: float = field(default_factory=time.time)
