"""OpenAI-compatible SSE adapters.

Covers OpenAI itself and the providers speaking its chat-completions
dialect (OpenRouter, DeepSeek, DeepInfra, Requesty, Jan), the strict
Mistral variant, and local servers that are driven with text-based tool
calling (LM Studio, llama.cpp).
"""

from __future__ import annotations

import json
import logging
from typing import Any

from toolstream.llm.adapters.base import (
    StreamAccumulator,
    StreamingProtocolAdapter,
    _error_detail,
)
from toolstream.llm.extractor import NativeToolCallAccumulator, parse_openai_tool_calls
from toolstream.tools.spec import ToolSpec
from toolstream.types import (
    ConversationTurn,
    LLMSettings,
    ProviderInfo,
    RoundResult,
    ToolCall,
    ToolMode,
    ToolResult,
    Usage,
)

_logger = logging.getLogger(__name__)

_DONE = "[DONE]"


def sse_data(frame: str) -> str | None:
    """Payload of a ``data:`` line, or ``None`` for other SSE fields."""
    line = frame.strip()
    if not line.startswith("data:"):
        return None
    return line[5:].strip()


class SSEAccumulator(StreamAccumulator):
    """Collects ``delta.tool_calls`` fragments, usage and finish reason."""

    def __init__(self) -> None:
        super().__init__()
        self._native = NativeToolCallAccumulator()

    def feed(self, payload: dict[str, Any]) -> None:
        if payload.get("error"):
            self.error = _error_detail(json.dumps(payload))
        choices = payload.get("choices") or []
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            choice = choices[0]
            delta = choice.get("delta") or {}
            if isinstance(delta, dict):
                self._native.feed(delta)
            if choice.get("finish_reason"):
                self.finish_reason = choice["finish_reason"]
        usage = Usage.from_openai(payload.get("usage"))
        if usage is not None:
            self.usage = usage
        if payload.get("model"):
            self.model = payload["model"]

    def tool_calls(self) -> list[ToolCall]:
        return self._native.finalize()


class OpenAICompatibleAdapter(StreamingProtocolAdapter):
    """Native tool calling over ``/chat/completions`` with SSE streaming."""

    family = "openai"
    requires_id_correlation = True

    def endpoint(self, settings: LLMSettings, provider: ProviderInfo) -> str:
        return f"{provider.resolve_base_url(settings)}/chat/completions"

    def build_body(
        self,
        transcript: list[ConversationTurn],
        settings: LLMSettings,
        tools: list[ToolSpec],
        mode: ToolMode,
        stream: bool,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": settings.model,
            "messages": self.prepare_messages(transcript),
            "temperature": settings.temperature,
            "max_tokens": settings.max_tokens,
        }
        if stream:
            body["stream"] = True
        if mode is ToolMode.NATIVE:
            body["tools"] = [t.to_openai_schema() for t in tools]
            body["tool_choice"] = "auto"
        return body

    def new_accumulator(self) -> StreamAccumulator:
        return SSEAccumulator()

    def is_terminal(self, frame: str) -> bool:
        return sse_data(frame) == _DONE

    def decode_frame(self, frame: str) -> dict[str, Any] | None:
        data = sse_data(frame)
        if not data or data == _DONE:
            return None
        payload = json.loads(data)
        if not isinstance(payload, dict):
            raise ValueError(f"Expected a JSON object, got {type(payload).__name__}")
        return payload

    def extract_text(self, payload: dict[str, Any]) -> str | None:
        choices = payload.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return None
        content = (choices[0].get("delta") or {}).get("content")
        return content if isinstance(content, str) and content else None

    def parse_response(self, data: dict[str, Any], mode: ToolMode) -> RoundResult:
        choices = data.get("choices") or [{}]
        choice = choices[0] or {}
        message = choice.get("message") or {}
        return RoundResult(
            content=message.get("content") or "",
            tool_calls=parse_openai_tool_calls(message) if mode is ToolMode.NATIVE else [],
            usage=Usage.from_openai(data.get("usage")),
            finish_reason=choice.get("finish_reason") or "",
            model=data.get("model", ""),
        )


class MistralAdapter(OpenAICompatibleAdapter):
    """Mistral rejects assistant turns carrying both text and tool calls.

    Tool result content must be a JSON string, and follow-ups are sent as
    system prompt, last user turn, then the tool exchange.
    """

    family = "mistral"

    def prepare_messages(self, transcript: list[ConversationTurn]) -> list[dict[str, Any]]:
        messages = []
        for turn in transcript:
            msg = turn.to_message()
            if turn.role == "assistant" and turn.tool_calls:
                msg["content"] = ""
            if turn.role == "tool" and turn.name:
                msg["name"] = turn.name
            messages.append(msg)
        return messages

    def format_tool_content(self, result: ToolResult) -> str:
        text = result.to_message()
        try:
            json.loads(text)
        except json.JSONDecodeError:
            return json.dumps({"content": text})
        return text

    def followup_transcript(
        self, transcript: list[ConversationTurn],
    ) -> list[ConversationTurn]:
        system = [t for t in transcript if t.role == "system"][:1]
        last_user = max(
            (i for i, t in enumerate(transcript) if t.role == "user"), default=None,
        )
        if last_user is None:
            rest = [t for t in transcript if t.role != "system"]
            return system + [ConversationTurn(
                "user", "Please provide a response based on the tool results.",
            )] + rest
        return system + transcript[last_user:]


class TextToolAdapter(OpenAICompatibleAdapter):
    """OpenAI-compatible local servers driven with text-based tool calls."""

    family = "text"
    requires_id_correlation = False

    def tool_mode(
        self,
        settings: LLMSettings,
        provider: ProviderInfo,
        tools: list[ToolSpec],
    ) -> ToolMode:
        if not tools or not settings.tool_calling_enabled:
            return ToolMode.NONE
        return ToolMode.TEXT
