"""Ollama native ``/api/chat`` adapter (newline-delimited JSON).

Whether a model gets native tool calling or the text-based XML protocol
is decided once per ``(model, base_url)`` and stored in the shared
capability cache.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from toolstream.llm.adapters.base import StreamAccumulator, StreamingProtocolAdapter
from toolstream.llm.extractor import ToolCallExtractor, parse_ollama_tool_calls
from toolstream.tools.capabilities import ModelCapabilityCache
from toolstream.tools.spec import ToolSpec
from toolstream.types import (
    ConversationTurn,
    LLMSettings,
    ProviderInfo,
    RoundResult,
    ToolCall,
    ToolMode,
    Usage,
)

_logger = logging.getLogger(__name__)


def _usage_from(data: dict[str, Any]) -> Usage | None:
    if "prompt_eval_count" not in data and "eval_count" not in data:
        return None
    return Usage.from_counts(
        int(data.get("prompt_eval_count", 0) or 0),
        int(data.get("eval_count", 0) or 0),
    )


class NDJSONAccumulator(StreamAccumulator):
    """Tool calls arrive whole; usage arrives on the ``done`` object."""

    def __init__(self) -> None:
        super().__init__()
        self._calls: list[ToolCall] = []

    def feed(self, payload: dict[str, Any]) -> None:
        if payload.get("error"):
            self.error = str(payload["error"])
        message = payload.get("message") or {}
        if isinstance(message, dict):
            self._calls.extend(parse_ollama_tool_calls(message))
        if payload.get("model"):
            self.model = payload["model"]
        if payload.get("done"):
            usage = _usage_from(payload)
            if usage is not None:
                self.usage = usage if self.usage is None else self.usage + usage
            self.finish_reason = payload.get("done_reason", "stop")
            self.done = True

    def tool_calls(self) -> list[ToolCall]:
        return list(self._calls)


class OllamaAdapter(StreamingProtocolAdapter):
    family = "ollama"
    requires_id_correlation = False

    def __init__(
        self,
        capabilities: ModelCapabilityCache | None = None,
        extractor: ToolCallExtractor | None = None,
        native_tool_models: Iterable[str] = (),
    ) -> None:
        super().__init__(capabilities, extractor)
        self.native_tool_models = {m.lower() for m in native_tool_models}

    @staticmethod
    def _base_url(settings: LLMSettings, provider: ProviderInfo) -> str:
        return provider.resolve_base_url(settings).removesuffix("/v1")

    def supports_native_tools(self, model: str) -> bool:
        """Configured model names match with or without a ``:tag`` suffix."""
        name = model.lower()
        return name in self.native_tool_models or name.split(":")[0] in self.native_tool_models

    def tool_mode(
        self,
        settings: LLMSettings,
        provider: ProviderInfo,
        tools: list[ToolSpec],
    ) -> ToolMode:
        if not tools or not settings.tool_calling_enabled:
            return ToolMode.NONE
        base_url = self._base_url(settings, provider)
        native = self.capabilities.get(settings.model, base_url)
        if native is None:
            native = self.capabilities.set_if_absent(
                settings.model, base_url, self.supports_native_tools(settings.model),
            )
        return ToolMode.NATIVE if native else ToolMode.TEXT

    def endpoint(self, settings: LLMSettings, provider: ProviderInfo) -> str:
        return f"{self._base_url(settings, provider)}/api/chat"

    def headers(self, settings: LLMSettings, provider: ProviderInfo) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if settings.api_key:
            headers["Authorization"] = f"Bearer {settings.api_key}"
        return headers

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
            "stream": stream,
            "options": {
                "temperature": settings.temperature,
                "num_predict": settings.max_tokens,
            },
        }
        if mode is ToolMode.NATIVE:
            body["tools"] = [t.to_openai_schema() for t in tools]
        return body

    def prepare_messages(self, transcript: list[ConversationTurn]) -> list[dict[str, Any]]:
        """Ollama takes tool arguments as objects and has no call ids."""
        messages = []
        for turn in transcript:
            msg: dict[str, Any] = {"role": turn.role, "content": turn.text}
            images = [
                item["image_url"]["url"].split(",", 1)[-1]
                for item in (turn.content if isinstance(turn.content, list) else [])
                if item.get("type") == "image_url" and isinstance(item.get("image_url"), dict)
            ]
            if images:
                msg["images"] = images
            if turn.tool_calls:
                msg["tool_calls"] = [
                    {"function": {"name": tc.name, "arguments": tc.arguments}}
                    for tc in turn.tool_calls
                ]
            if turn.role == "tool" and turn.name:
                msg["tool_name"] = turn.name
            messages.append(msg)
        return messages

    def new_accumulator(self) -> StreamAccumulator:
        return NDJSONAccumulator()

    def decode_frame(self, frame: str) -> dict[str, Any] | None:
        line = frame.strip()
        if not line:
            return None
        payload = json.loads(line)
        if not isinstance(payload, dict):
            raise ValueError(f"Expected a JSON object, got {type(payload).__name__}")
        return payload

    def extract_text(self, payload: dict[str, Any]) -> str | None:
        message = payload.get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        return content if isinstance(content, str) and content else None

    def parse_response(self, data: dict[str, Any], mode: ToolMode) -> RoundResult:
        message = data.get("message") or {}
        return RoundResult(
            content=message.get("content") or "",
            tool_calls=parse_ollama_tool_calls(message) if mode is ToolMode.NATIVE else [],
            usage=_usage_from(data),
            finish_reason=data.get("done_reason", "stop"),
            model=data.get("model", ""),
        )

    def handle_error(self, provider: ProviderInfo, status: int, body: str) -> str:
        message = super().handle_error(provider, status, body)
        if status == 404 or "not found" in body.lower():
            message += " Make sure the model is pulled (ollama pull <model>)."
        elif status == 0:
            message += " Is the Ollama server running (ollama serve)?"
        return message
