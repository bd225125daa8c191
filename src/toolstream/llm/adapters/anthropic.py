"""Anthropic Messages API adapter (typed SSE events)."""

from __future__ import annotations

import json
import logging
from typing import Any

from toolstream.llm.adapters.base import StreamAccumulator, StreamingProtocolAdapter
from toolstream.llm.adapters.openai import sse_data
from toolstream.llm.extractor import parse_arguments
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

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicAccumulator(StreamAccumulator):
    """Tracks ``tool_use`` content blocks and the split usage counters."""

    def __init__(self) -> None:
        super().__init__()
        self._blocks: dict[int, dict[str, Any]] = {}
        self._input_tokens = 0
        self._output_tokens = 0

    def feed(self, payload: dict[str, Any]) -> None:
        kind = payload.get("type")
        if kind == "message_start":
            message = payload.get("message") or {}
            self.model = message.get("model", self.model)
            usage = message.get("usage") or {}
            self._input_tokens = int(usage.get("input_tokens", 0) or 0)
            self._output_tokens = int(usage.get("output_tokens", 0) or 0)
        elif kind == "content_block_start":
            block = payload.get("content_block") or {}
            if block.get("type") == "tool_use":
                self._blocks[payload.get("index", len(self._blocks))] = {
                    "id": block.get("id"),
                    "name": block.get("name", ""),
                    "input": block.get("input") or {},
                    "json": "",
                }
        elif kind == "content_block_delta":
            delta = payload.get("delta") or {}
            entry = self._blocks.get(payload.get("index"))
            if entry is not None and delta.get("type") == "input_json_delta":
                entry["json"] += delta.get("partial_json", "")
        elif kind == "message_delta":
            usage = payload.get("usage") or {}
            if "output_tokens" in usage:
                self._output_tokens = int(usage["output_tokens"] or 0)
            stop = (payload.get("delta") or {}).get("stop_reason")
            if stop:
                self.finish_reason = stop
        elif kind == "message_stop":
            self.done = True
        elif kind == "error":
            self.error = str((payload.get("error") or {}).get("message", payload))

        if kind in ("message_start", "message_delta"):
            self.usage = Usage.from_counts(self._input_tokens, self._output_tokens)

    def tool_calls(self) -> list[ToolCall]:
        calls = []
        for idx in sorted(self._blocks):
            entry = self._blocks[idx]
            raw = entry["json"]
            args = parse_arguments(raw) if raw else entry["input"]
            calls.append(ToolCall(
                name=entry["name"], arguments=args, id=entry["id"],
                raw=raw or json.dumps(entry["input"]),
            ))
        return calls


class AnthropicAdapter(StreamingProtocolAdapter):
    family = "anthropic"
    requires_id_correlation = True

    def endpoint(self, settings: LLMSettings, provider: ProviderInfo) -> str:
        return f"{provider.resolve_base_url(settings)}/messages"

    def headers(self, settings: LLMSettings, provider: ProviderInfo) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "anthropic-version": ANTHROPIC_VERSION,
        }
        if settings.api_key:
            headers["x-api-key"] = settings.api_key
        headers.update(provider.extra_headers)
        return headers

    def build_body(
        self,
        transcript: list[ConversationTurn],
        settings: LLMSettings,
        tools: list[ToolSpec],
        mode: ToolMode,
        stream: bool,
    ) -> dict[str, Any]:
        system = "\n\n".join(t.text for t in transcript if t.role == "system")
        body: dict[str, Any] = {
            "model": settings.model,
            "max_tokens": settings.max_tokens,
            "temperature": settings.temperature,
            "messages": self.prepare_messages(transcript),
        }
        if system:
            body["system"] = system
        if stream:
            body["stream"] = True
        if mode is ToolMode.NATIVE:
            body["tools"] = [t.to_anthropic_schema() for t in tools]
        return body

    def prepare_messages(self, transcript: list[ConversationTurn]) -> list[dict[str, Any]]:
        """System turns move to the top-level ``system`` field; tool results
        become ``tool_result`` blocks inside a single user turn.
        """
        messages: list[dict[str, Any]] = []
        for turn in transcript:
            if turn.role == "system":
                continue
            if turn.role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": turn.tool_call_id,
                    "content": turn.text,
                }
                prev = messages[-1] if messages else None
                if (
                    prev is not None and prev["role"] == "user"
                    and isinstance(prev["content"], list)
                    and all(b.get("type") == "tool_result" for b in prev["content"])
                ):
                    prev["content"].append(block)
                else:
                    messages.append({"role": "user", "content": [block]})
                continue
            if turn.role == "assistant" and turn.tool_calls:
                blocks: list[dict[str, Any]] = []
                if turn.text:
                    blocks.append({"type": "text", "text": turn.text})
                for tc in turn.tool_calls:
                    blocks.append({
                        "type": "tool_use", "id": tc.id,
                        "name": tc.name, "input": tc.arguments,
                    })
                messages.append({"role": "assistant", "content": blocks})
                continue
            messages.append({"role": turn.role, "content": turn.content or ""})
        return messages

    def new_accumulator(self) -> StreamAccumulator:
        return AnthropicAccumulator()

    def decode_frame(self, frame: str) -> dict[str, Any] | None:
        data = sse_data(frame)
        if not data:
            return None
        payload = json.loads(data)
        if not isinstance(payload, dict):
            raise ValueError(f"Expected a JSON object, got {type(payload).__name__}")
        return payload

    def extract_text(self, payload: dict[str, Any]) -> str | None:
        if payload.get("type") != "content_block_delta":
            return None
        delta = payload.get("delta") or {}
        if delta.get("type") != "text_delta":
            return None
        return delta.get("text") or None

    def parse_response(self, data: dict[str, Any], mode: ToolMode) -> RoundResult:
        text_parts: list[str] = []
        calls: list[ToolCall] = []
        for block in data.get("content") or []:
            if block.get("type") == "text":
                text_parts.append(block.get("text", ""))
            elif block.get("type") == "tool_use" and mode is ToolMode.NATIVE:
                args = block.get("input") or {}
                calls.append(ToolCall(
                    name=block.get("name", ""), arguments=args,
                    id=block.get("id"), raw=json.dumps(args),
                ))
        usage = data.get("usage") or {}
        return RoundResult(
            content="".join(text_parts),
            tool_calls=calls,
            usage=Usage.from_counts(
                int(usage.get("input_tokens", 0) or 0),
                int(usage.get("output_tokens", 0) or 0),
            ) if usage else None,
            finish_reason=data.get("stop_reason") or "",
            model=data.get("model", ""),
        )
