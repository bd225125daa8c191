"""StreamingProtocolAdapter base class and the StreamingConfig value object.

An adapter translates ``(message, settings, provider, history, tools)``
into a :class:`StreamingConfig` and knows how to read that provider
family's wire format back into text, tool calls and usage.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable

from toolstream.errors import ConfigurationError, ProtocolViolationError, user_message, classify_error
from toolstream.llm.extractor import ToolCallExtractor, extract_thinking
from toolstream.tools.capabilities import ModelCapabilityCache
from toolstream.tools.spec import ToolSpec, normalize_tools
from toolstream.types import (
    ConversationTurn,
    LLMSettings,
    ProviderInfo,
    RoundResult,
    ToolCall,
    ToolMode,
    ToolResult,
    Usage,
    new_call_id,
)

_logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Stream accumulation
# ---------------------------------------------------------------------------

class StreamAccumulator:
    """Per-request state collected while frames arrive.

    Subclasses pick up native tool-call fragments, usage counters and the
    terminal flag from decoded payloads.  Text is not kept here; the
    client joins what ``parse_chunk`` returns.
    """

    def __init__(self) -> None:
        self.usage: Usage | None = None
        self.finish_reason = ""
        self.model = ""
        self.done = False
        # Error object reported inside an otherwise 2xx stream
        self.error: str | None = None

    def feed(self, payload: dict[str, Any]) -> None:
        """Consume one decoded frame."""

    def tool_calls(self) -> list[ToolCall]:
        return []


@dataclass
class StreamingConfig:
    """Everything needed to run one request.  Built fresh, consumed once.

    ``parse_chunk`` is pure and total: it returns the text carried by a
    frame, or ``None`` for frames without text or that cannot be parsed.
    ``decode_frame`` is the strict variant used by the client, raising
    ``ValueError`` for malformed frames so they can be logged.
    """

    endpoint: str
    headers: dict[str, str]
    request_body: dict[str, Any]
    parse_chunk: Callable[[str], "str | None"]
    parse_tool_calls: Callable[[str], "list[ToolCall]"]
    handle_error: Callable[[int, str], str]
    decode_frame: Callable[[str], "dict[str, Any] | None"]
    extract_text: Callable[[dict[str, Any]], "str | None"]
    is_terminal: Callable[[str], bool]
    parse_response: Callable[[dict[str, Any]], RoundResult]
    accumulator: StreamAccumulator = field(default_factory=StreamAccumulator)
    tool_mode: ToolMode = ToolMode.NONE
    provider_id: str = ""
    stream: bool = True


# ---------------------------------------------------------------------------
# Text-mode prompting
# ---------------------------------------------------------------------------

TEXT_TOOL_INSTRUCTIONS = """\
You have access to the following tools. To call a tool, reply with an XML
block whose outer tag is the tool name and whose child tags are the
arguments, for example:

<tool_name>
<param>value</param>
</tool_name>

Only use the tool names listed below. After a tool runs you will receive
its result and can answer the user's question.

Available tools:

{tools}"""

FOLLOWUP_PROMPT = """\
Based on the tool results below, please answer the original question. \
If the results are not sufficient you may call another tool.

Tool Results:
{results}

Original Question: {question}"""


def text_tool_prompt(tools: list[ToolSpec]) -> str:
    return TEXT_TOOL_INSTRUCTIONS.format(
        tools="\n\n".join(t.to_prompt_description() for t in tools),
    )


def format_text_results(pairs: list[tuple[ToolCall, ToolResult]]) -> str:
    blocks = []
    for call, result in pairs:
        blocks.append(f"Tool: {call.name}\nResult: {result.to_message()}")
    return "\n\n".join(blocks)


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------

class StreamingProtocolAdapter(ABC):
    """One instance per provider family.

    Parameters
    ----------
    capabilities:
        Shared model capability cache (only consulted by families whose
        tool support varies per model).
    extractor:
        Text-based tool call extractor for families without native tool
        calling.
    """

    family: str = ""
    requires_id_correlation: bool = False

    def __init__(
        self,
        capabilities: ModelCapabilityCache | None = None,
        extractor: ToolCallExtractor | None = None,
    ) -> None:
        self.capabilities = (
            capabilities if capabilities is not None else ModelCapabilityCache()
        )
        self.extractor = extractor if extractor is not None else ToolCallExtractor()

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def tool_mode(
        self,
        settings: LLMSettings,
        provider: ProviderInfo,
        tools: list[ToolSpec],
    ) -> ToolMode:
        if not tools or not settings.tool_calling_enabled:
            return ToolMode.NONE
        return ToolMode.NATIVE

    def create_streaming_config(
        self,
        message: str | list[dict[str, Any]],
        settings: LLMSettings,
        provider: ProviderInfo,
        history: list[Any] | None = None,
        tools: list[Any] | None = None,
        stream: bool = True,
    ) -> StreamingConfig:
        """Build the request for a fresh user message."""
        specs = normalize_tools(tools or [])
        transcript = self.build_messages(message, settings, provider, history, specs)
        return self.build_config(transcript, settings, provider, specs, stream)

    def build_messages(
        self,
        message: str | list[dict[str, Any]],
        settings: LLMSettings,
        provider: ProviderInfo,
        history: list[Any] | None,
        tools: list[ToolSpec],
    ) -> list[ConversationTurn]:
        """Canonical transcript: system prompt, history, then *message*."""
        system = settings.system_prompt
        if self.tool_mode(settings, provider, tools) is ToolMode.TEXT:
            prompt = text_tool_prompt(tools)
            system = f"{system}\n\n{prompt}" if system else prompt

        turns: list[ConversationTurn] = []
        if system:
            turns.append(ConversationTurn("system", system))
        for item in history or []:
            turn = item if isinstance(item, ConversationTurn) else ConversationTurn.from_message(item)
            if turn.role == "system" and system:
                continue
            turns.append(turn)
        turns.append(ConversationTurn("user", message))
        return turns

    def build_config(
        self,
        transcript: list[ConversationTurn],
        settings: LLMSettings,
        provider: ProviderInfo,
        tools: list[ToolSpec],
        stream: bool = True,
    ) -> StreamingConfig:
        """Build the request for an existing canonical transcript."""
        if not settings.model or not settings.model.strip():
            raise ConfigurationError("settings.model must be a non-empty model name")
        if provider.requires_api_key and not settings.api_key:
            _logger.warning("No API key configured for provider %s", provider.id)

        mode = self.tool_mode(settings, provider, tools)
        available = [t.name for t in tools]
        accumulator = self.new_accumulator()
        return StreamingConfig(
            endpoint=self.endpoint(settings, provider),
            headers=self.headers(settings, provider),
            request_body=self.build_body(transcript, settings, tools, mode, stream),
            parse_chunk=self.parse_chunk,
            parse_tool_calls=partial(self._stream_tool_calls, accumulator, mode, available),
            handle_error=partial(self.handle_error, provider),
            decode_frame=self.decode_frame,
            extract_text=self.extract_text,
            is_terminal=self.is_terminal,
            parse_response=partial(self._response_round, mode=mode, available=available),
            accumulator=accumulator,
            tool_mode=mode,
            provider_id=provider.id,
            stream=stream,
        )

    @abstractmethod
    def endpoint(self, settings: LLMSettings, provider: ProviderInfo) -> str:
        ...

    def headers(self, settings: LLMSettings, provider: ProviderInfo) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if settings.api_key:
            headers["Authorization"] = f"Bearer {settings.api_key}"
        headers.update(provider.extra_headers)
        return headers

    @abstractmethod
    def build_body(
        self,
        transcript: list[ConversationTurn],
        settings: LLMSettings,
        tools: list[ToolSpec],
        mode: ToolMode,
        stream: bool,
    ) -> dict[str, Any]:
        ...

    def prepare_messages(self, transcript: list[ConversationTurn]) -> list[dict[str, Any]]:
        """Canonical transcript to this provider's wire messages."""
        return [turn.to_message() for turn in transcript]

    # ------------------------------------------------------------------
    # Response parsing
    # ------------------------------------------------------------------

    def new_accumulator(self) -> StreamAccumulator:
        return StreamAccumulator()

    def is_terminal(self, frame: str) -> bool:
        return False

    @abstractmethod
    def decode_frame(self, frame: str) -> dict[str, Any] | None:
        """Decode one frame; ``None`` for frames carrying no payload.

        Raises ``ValueError`` if the frame is malformed.
        """

    @abstractmethod
    def extract_text(self, payload: dict[str, Any]) -> str | None:
        ...

    def parse_chunk(self, frame: str) -> str | None:
        try:
            payload = self.decode_frame(frame)
            return self.extract_text(payload) if payload else None
        except (ValueError, TypeError, KeyError, IndexError, AttributeError):
            return None

    @abstractmethod
    def parse_response(
        self, data: dict[str, Any], mode: ToolMode,
    ) -> RoundResult:
        """Parse a non-streamed response body (native tool calls only)."""

    def _stream_tool_calls(
        self,
        accumulator: StreamAccumulator,
        mode: ToolMode,
        available: list[str],
        full_text: str,
    ) -> list[ToolCall]:
        if mode is ToolMode.NATIVE:
            return accumulator.tool_calls()
        if mode is ToolMode.TEXT:
            return self.extractor.extract(full_text, available)
        return []

    def _response_round(
        self,
        data: dict[str, Any],
        mode: ToolMode,
        available: list[str],
    ) -> RoundResult:
        result = self.parse_response(data, mode)
        if mode is ToolMode.TEXT and not result.tool_calls:
            result.tool_calls = self.extractor.extract(result.content, available)
        elif mode is ToolMode.NONE:
            result.tool_calls = []
        _, result.content = extract_thinking(result.content)
        return result

    # ------------------------------------------------------------------
    # Tool rounds
    # ------------------------------------------------------------------

    def assign_ids(self, calls: list[ToolCall]) -> list[ToolCall]:
        """Ensure every call has an id.

        Providers that correlate results by id must supply them; a missing
        id there is a protocol violation.  Others get a synthesized id.
        """
        for call in calls:
            if call.id:
                continue
            if self.requires_id_correlation:
                raise ProtocolViolationError(
                    f"Provider returned tool call {call.name!r} without an id"
                )
            call.id = new_call_id()
        return calls

    def followup_turns(
        self,
        content: str,
        pairs: list[tuple[ToolCall, ToolResult]],
        mode: ToolMode,
        question: str,
    ) -> list[ConversationTurn]:
        """Turns carrying one round of tool calls and their results."""
        calls = [call for call, _ in pairs]
        if mode is ToolMode.TEXT:
            return [
                ConversationTurn("assistant", content),
                ConversationTurn("user", FOLLOWUP_PROMPT.format(
                    results=format_text_results(pairs), question=question,
                )),
            ]
        turns = [ConversationTurn("assistant", content, tool_calls=calls)]
        for call, result in pairs:
            turns.append(ConversationTurn(
                "tool", self.format_tool_content(result),
                tool_call_id=call.id, name=call.name,
            ))
        return turns

    def format_tool_content(self, result: ToolResult) -> str:
        return result.to_message()

    def followup_transcript(
        self, transcript: list[ConversationTurn],
    ) -> list[ConversationTurn]:
        """Transcript to send for a follow-up request."""
        return transcript

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def handle_error(self, provider: ProviderInfo, status: int, body: str) -> str:
        """Friendly remediation text for a non-2xx response.

        ``status`` is 0 for transport failures, with the exception text
        as *body*.
        """
        name = provider.name or provider.id
        if status == 0:
            return f"Could not reach {name}: {user_message(classify_error(body))} Details: {body}"
        detail = _error_detail(body)
        friendly = user_message(classify_error(detail, status))
        return f"{name} API error ({status}): {friendly}" + (f" Details: {detail}" if detail else "")


def _error_detail(body: str) -> str:
    """Pull ``error.message`` out of a JSON error body when present."""
    if not body:
        return ""
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return body.strip()[:500]
    if isinstance(data, dict):
        err = data.get("error", data)
        if isinstance(err, dict):
            return str(err.get("message") or err.get("detail") or err)[:500]
        return str(err)[:500]
    return body.strip()[:500]
