"""Tool call extraction.

Two sides:

* **native**: tool calls read from structured provider fields, either
  complete (``message.tool_calls``) or as streamed deltas that must be
  accumulated by index;
* **text-based**: tool calls recovered from free-form model output by a
  cascade of independent strategies, composed first-match-wins.

Nothing in this module raises on bad input; unparseable candidates are
skipped and an empty list means "no tool call present".
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Iterable

from toolstream.types import ToolCall

_logger = logging.getLogger(__name__)

ERROR_RESPONSE_TOOL = "error_response"

DEFAULT_IGNORED_TAGS = frozenset({
    "think", "thinking", "reasoning", "answer",
    "tool_execution", "tool_result",
})


# ---------------------------------------------------------------------------
# Thinking / template-token removal
# ---------------------------------------------------------------------------

_THINK_RE = re.compile(r"<(think|thinking)>(.*?)</\1>", re.DOTALL | re.IGNORECASE)
_UNCLOSED_THINK_RE = re.compile(r"<(?:think|thinking)>.*\Z", re.DOTALL | re.IGNORECASE)
_TEMPLATE_TOKEN_RE = re.compile(r"<\|[^|>]*\|>")


def extract_thinking(text: str) -> tuple[str, str]:
    """Split ``<think>`` / ``<thinking>`` blocks from response text.

    Returns (thinking_text, cleaned_text).
    """
    parts = [m.group(2).strip() for m in _THINK_RE.finditer(text)]
    cleaned = _THINK_RE.sub("", text)
    return "\n".join(p for p in parts if p), cleaned.strip()


def strip_reasoning(text: str) -> str:
    """Remove reasoning blocks and chat-template tokens before parsing."""
    _, cleaned = extract_thinking(text)
    cleaned = _UNCLOSED_THINK_RE.sub("", cleaned)
    return _TEMPLATE_TOKEN_RE.sub(" ", cleaned).strip()


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------

def _extract_balanced_json(text: str, start: int) -> str | None:
    """Extract a balanced JSON object starting at *start* (must be ``{``).

    Handles nested braces and quoted strings so that
    ``{"args": {"k": "v"}}`` is captured in full.
    """
    if start >= len(text) or text[start] != "{":
        return None
    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if escape:
            escape = False
            continue
        if ch == "\\":
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def _repair_json(raw: str) -> str:
    """Close an unterminated string and any unbalanced brackets."""
    stack: list[str] = []
    in_string = False
    escape = False
    for ch in raw:
        if escape:
            escape = False
            continue
        if ch == "\\":
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]" and stack:
            stack.pop()
    repaired = raw + ('"' if in_string else "")
    repaired = re.sub(r",\s*$", "", repaired)
    return repaired + "".join(reversed(stack))


def parse_arguments(raw: str | dict[str, Any] | None) -> dict[str, Any]:
    """Parse a tool-call arguments payload into a dict.

    Accepts an already-decoded dict, a JSON string, or a truncated JSON
    string (repaired once).  Anything else yields ``{}``.
    """
    if isinstance(raw, dict):
        return raw
    if not raw or not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        try:
            data = json.loads(_repair_json(raw.strip()))
        except json.JSONDecodeError:
            _logger.warning("Discarding malformed tool arguments: %.200s", raw)
            return {}
    if isinstance(data, dict):
        return data
    return {"input": data}


def _loads_object(raw: str) -> dict[str, Any] | None:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


# ---------------------------------------------------------------------------
# Native: streamed deltas
# ---------------------------------------------------------------------------

class NativeToolCallAccumulator:
    """Accumulate native function-calling tool_calls from streaming deltas.

    OpenAI-compatible providers send tool calls as incremental chunks:
    each chunk has an ``index``; ``id`` and ``function.name`` arrive once,
    ``function.arguments`` fragments must be concatenated in order.
    """

    def __init__(self) -> None:
        self._calls: dict[int, dict[str, str]] = {}

    def feed(self, delta: dict[str, Any]) -> None:
        """Process ``delta.tool_calls`` from a single SSE chunk."""
        tc_list = delta.get("tool_calls")
        if not isinstance(tc_list, list):
            return
        for pos, tc in enumerate(tc_list):
            if not isinstance(tc, dict):
                continue
            idx = tc.get("index", pos)
            func = tc.get("function")
            if not isinstance(func, dict):
                func = {}
            entry = self._calls.setdefault(
                idx, {"id": "", "name": "", "arguments": ""},
            )
            if tc.get("id") and not entry["id"]:
                entry["id"] = tc["id"]
            if func.get("name") and not entry["name"]:
                entry["name"] = func["name"]
            args = func.get("arguments")
            if isinstance(args, dict):
                entry["arguments"] += json.dumps(args)
            elif args:
                entry["arguments"] += args

    def finalize(self) -> list[ToolCall]:
        """Parse accumulated fragments into complete ToolCall objects."""
        result: list[ToolCall] = []
        for idx in sorted(self._calls):
            entry = self._calls[idx]
            if not entry["name"]:
                _logger.warning("Dropping streamed tool call %d with no name", idx)
                continue
            result.append(ToolCall(
                name=entry["name"],
                arguments=parse_arguments(entry["arguments"]),
                id=entry["id"] or None,
                raw=entry["arguments"],
            ))
        return result


# ---------------------------------------------------------------------------
# Native: complete messages
# ---------------------------------------------------------------------------

def parse_openai_tool_calls(message: dict[str, Any]) -> list[ToolCall]:
    """Read ``message.tool_calls`` from a non-streamed OpenAI response."""
    calls: list[ToolCall] = []
    for tc in message.get("tool_calls") or []:
        if not isinstance(tc, dict):
            continue
        func = tc.get("function")
        name = func.get("name") if isinstance(func, dict) else None
        if not name:
            continue
        raw_args = func.get("arguments", "")
        calls.append(ToolCall(
            name=name,
            arguments=parse_arguments(raw_args),
            id=tc.get("id"),
            raw=raw_args if isinstance(raw_args, str) else "",
        ))
    return calls


def parse_ollama_tool_calls(message: dict[str, Any]) -> list[ToolCall]:
    """Ollama sends arguments as an object and no call ids."""
    calls: list[ToolCall] = []
    for tc in message.get("tool_calls") or []:
        if not isinstance(tc, dict):
            continue
        func = tc.get("function")
        name = func.get("name") if isinstance(func, dict) else None
        if name:
            calls.append(ToolCall(
                name=name, arguments=parse_arguments(func.get("arguments")),
            ))
    return calls


# ---------------------------------------------------------------------------
# Text-based strategies
# ---------------------------------------------------------------------------

# Each strategy: (text, available tool names) -> calls, or None for "no match"
Strategy = Callable[[str, frozenset], "list[ToolCall] | None"]

_TAG_RE = re.compile(r"<([a-zA-Z_][\w-]*)\b[^>]*>([\s\S]*?)</\1>")


def xml_tags(
    text: str,
    available: frozenset,
    ignored: Iterable[str] = DEFAULT_IGNORED_TAGS,
) -> list[ToolCall] | None:
    """``<tool><param>value</param></tool>`` for tags naming available tools."""
    ignored = {t.lower() for t in ignored}
    calls: list[ToolCall] = []
    for match in _TAG_RE.finditer(text):
        name = match.group(1)
        if name.lower() in ignored or name not in available:
            continue
        inner = match.group(2).strip()
        args: dict[str, Any] = {}
        children = list(_TAG_RE.finditer(inner))
        for child in children:
            key, value = child.group(1), child.group(2).strip()
            if key not in args:
                args[key] = value
            elif isinstance(args[key], list):
                args[key].append(value)
            else:
                args[key] = [args[key], value]
        if not children:
            if inner.startswith(("{", "[")):
                try:
                    parsed = json.loads(inner)
                except json.JSONDecodeError:
                    args["input"] = inner
                else:
                    if isinstance(parsed, dict):
                        args.update(parsed)
                    else:
                        args["input"] = parsed
            elif inner:
                args["input"] = inner
        calls.append(ToolCall(name=name, arguments=args))
    return calls or None


_TOOL_CALL_BLOCK_RE = re.compile(
    r"<tool_call>\s*<tool_name>(.*?)</tool_name>\s*"
    r"<arguments>\s*(.*?)\s*</arguments>\s*</tool_call>",
    re.DOTALL,
)


def tool_call_blocks(text: str, available: frozenset) -> list[ToolCall] | None:
    """``<tool_call><tool_name>X</tool_name><arguments>{...}</arguments></tool_call>``.

    Arguments that are not a JSON object are passed on as ``query``.
    """
    calls: list[ToolCall] = []
    for match in _TOOL_CALL_BLOCK_RE.finditer(text):
        name = match.group(1).strip()
        if name not in available:
            continue
        body = match.group(2).strip()
        args = _loads_object(body)
        if args is None:
            args = {"query": re.sub(r"""[{}'"]""", "", body).strip()} if body else {}
        calls.append(ToolCall(name=name, arguments=args))
    return calls or None


# Misspellings some models produce for common tool names
TOOL_NAME_ALIASES: dict[str, str] = {
    "memory_store": "memory-store",
    "memory_search": "memory-search",
    "memory_retrieve": "memory-retrieve",
    "knowledge_base": "knowledge-base",
    "knowledge_search": "knowledge-base",
    "internal_tools": "internal-commands",
    "internal_commands": "internal-commands",
    "search": "web_search",
}

_NESTED_RE = re.compile(r"(?:commentary\s+)?to=functions\s*json(?=\{)", re.I)


def nested_function_json(text: str, available: frozenset) -> list[ToolCall] | None:
    """``to=functions json{"name": "X", "arguments": {...}}``."""
    calls: list[ToolCall] = []
    for match in _NESTED_RE.finditer(text):
        obj = _extract_balanced_json(text, match.end())
        data = _loads_object(obj) if obj else None
        if not data or not isinstance(data.get("name"), str):
            continue
        raw_name = data["name"]
        name = raw_name if raw_name in available else TOOL_NAME_ALIASES.get(raw_name, raw_name)
        if name not in available:
            _logger.debug("Nested function call names unknown tool %r", raw_name)
            continue
        calls.append(ToolCall(
            name=name, arguments=parse_arguments(data.get("arguments")),
        ))
    return calls or None


_TO_TOOL_RE = re.compile(
    r"(?:commentary\s+)?to=(?:functions\.)?([a-zA-Z_][a-zA-Z0-9_-]*?)\s*json(?=\{)",
    re.I,
)
_EMPTY_ARGS = re.compile(r'^\{\s*""\s*:\s*""\s*\}$')


def unknown_tool_call(name: str, available: Iterable[str]) -> ToolCall:
    """Synthetic call telling the model which tool names are valid."""
    names = sorted(available)
    listed = ", ".join(names[:10])
    if len(names) > 10:
        listed += f", and {len(names) - 10} more"
    message = (
        f'Tool "{name}" does not exist. Available tools include: {listed}. '
        "Please use an exact tool name from the available list."
    )
    return ToolCall(name=ERROR_RESPONSE_TOOL, arguments={"error": message})


def to_tool_json(text: str, available: frozenset) -> list[ToolCall] | None:
    """``to=<tool> json{...}``; an unknown tool short-circuits to an error call."""
    calls: list[ToolCall] = []
    for match in _TO_TOOL_RE.finditer(text):
        name = match.group(1)
        if name.lower() == "functions":
            continue
        obj = _extract_balanced_json(text, match.end())
        if obj is None:
            continue
        if name not in available:
            _logger.info("Model addressed unknown tool %r", name)
            return [unknown_tool_call(name, available)]
        if _EMPTY_ARGS.match(obj):
            obj = "{}"
        args = _loads_object(obj)
        if args is None:
            _logger.debug("Unparseable arguments for %s: %.200s", name, obj)
            continue
        calls.append(ToolCall(name=name, arguments=args))
    return calls or None


_FENCED_RE = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```")
_BARE_RE = re.compile(r'\{\s*"(?:tool_call|tool)"\s*:')


def _call_from_object(data: dict[str, Any]) -> ToolCall | None:
    if isinstance(data.get("tool_call"), dict):
        tc = data["tool_call"]
        name = tc.get("name") or tc.get("tool")
        args = tc.get("arguments", tc.get("args"))
    elif "tool" in data and "args" in data:
        name, args = data.get("tool"), data.get("args")
    else:
        return None
    if not isinstance(name, str) or not name:
        return None
    if isinstance(args, str):
        args = parse_arguments(args)
    return ToolCall(name=name, arguments=args if isinstance(args, dict) else {})


def json_blocks(text: str, available: frozenset) -> list[ToolCall] | None:
    """Fenced or bare ``{"tool_call": {"name", "arguments"}}`` objects.

    The short ``{"tool": ..., "args": ...}`` form is accepted too.
    """
    candidates = [m.group(1) for m in _FENCED_RE.finditer(text)]
    if not any(_BARE_RE.search(c) for c in candidates):
        candidates = []
        for m in _BARE_RE.finditer(text):
            obj = _extract_balanced_json(text, m.start())
            if obj:
                candidates.append(obj)
    calls: list[ToolCall] = []
    for raw in candidates:
        data = _loads_object(raw)
        call = _call_from_object(data) if data else None
        if call is not None:
            calls.append(call)
    return calls or None


_FUNCTION_FIELD_RE = re.compile(r'\{\s*"function"\s*:\s*"')


def function_field_json(text: str, available: frozenset) -> list[ToolCall] | None:
    """``{"function": "X", "arguments": {...}}`` objects naming available tools."""
    calls: list[ToolCall] = []
    for match in _FUNCTION_FIELD_RE.finditer(text):
        obj = _extract_balanced_json(text, match.start())
        data = _loads_object(obj) if obj else None
        name = data.get("function") if data else None
        if not isinstance(name, str) or name not in available:
            continue
        calls.append(ToolCall(name=name, arguments=parse_arguments(data.get("arguments"))))
    return calls or None


# ---------------------------------------------------------------------------
# Speculative fallbacks (opt-in)
# ---------------------------------------------------------------------------

_KV_PATTERNS = [
    re.compile(r"""["']?(\w+)["']?\s*[:=]\s*["']([^"']+)["']"""),
    re.compile(r"""["']?(\w+)["']?\s*[:=]\s*(\d+(?:\.\d+)?)"""),
    re.compile(r"""["']?(\w+)["']?\s*[:=]\s*(true|false)"""),
    re.compile(r"""["']?(\w+)["']?\s*[:=]\s*([^,}\]]+)"""),
]


def parse_loose_arguments(text: str) -> dict[str, Any]:
    """JSON first, then ``key: value`` pairs with scalar coercion."""
    data = _loads_object(text)
    if data is not None:
        return data
    args: dict[str, Any] = {}
    for pattern in _KV_PATTERNS:
        for key, value in pattern.findall(text):
            if key in args:
                continue
            value = value.strip()
            if value in ("true", "false"):
                args[key] = value == "true"
                continue
            try:
                args[key] = float(value) if "." in value else int(value)
            except ValueError:
                args[key] = value
    return args


def call_syntax(text: str, available: frozenset) -> list[ToolCall] | None:
    """``tool_name(args)`` or ``tool_name: {...}``."""
    calls: list[ToolCall] = []
    for name in sorted(available):
        escaped = re.escape(name)
        m = re.search(escaped + r"\s*\(([^)]+)\)", text, re.I)
        if m is None:
            m = re.search(r"""["']?""" + escaped + r"""["']?\s*[:=]\s*(\{[^}]*\})""", text, re.I)
        if m is not None:
            calls.append(ToolCall(name=name, arguments=parse_loose_arguments(m.group(1))))
    return calls or None


def json_near_mention(text: str, available: frozenset) -> list[ToolCall] | None:
    """A JSON-ish object within a short window around a tool mention."""
    calls: list[ToolCall] = []
    lowered = text.lower()
    for name in sorted(available):
        pos = lowered.find(name.lower())
        if pos < 0:
            continue
        window = text[max(0, pos - 100) : pos + 200]
        for fragment in re.findall(r"\{[^}]*\}", window):
            args = parse_loose_arguments(fragment)
            if args:
                calls.append(ToolCall(name=name, arguments=args))
                break
    return calls or None


# ---------------------------------------------------------------------------
# ToolCallExtractor
# ---------------------------------------------------------------------------

def dedupe_calls(calls: Iterable[ToolCall]) -> list[ToolCall]:
    """Collapse identical ``(name, arguments)`` pairs, keeping first seen."""
    seen: set[tuple[str, str]] = set()
    unique: list[ToolCall] = []
    for call in calls:
        if call.key in seen:
            continue
        seen.add(call.key)
        unique.append(call)
    return unique


class ToolCallExtractor:
    """Text-based tool call recovery, ordered by format confidence.

    Strategies run in order and the first that yields any call wins.
    The speculative fallbacks (call syntax, JSON near a tool mention)
    only run when *speculative* is set.
    """

    def __init__(
        self,
        ignored_tags: Iterable[str] = DEFAULT_IGNORED_TAGS,
        speculative: bool = False,
    ) -> None:
        ignored = frozenset(ignored_tags)
        self.strategies: list[tuple[str, Strategy]] = [
            ("xml", lambda text, avail: xml_tags(text, avail, ignored)),
            ("tool_call_block", tool_call_blocks),
            ("nested_function", nested_function_json),
            ("to_tool", to_tool_json),
            ("json_block", json_blocks),
            ("function_field", function_field_json),
        ]
        if speculative:
            self.strategies += [
                ("call_syntax", call_syntax),
                ("json_near_mention", json_near_mention),
            ]

    def extract(self, text: str, available: Iterable[str]) -> list[ToolCall]:
        """Return tool calls found in *text*; never raises."""
        if not text:
            return []
        names = frozenset(available)
        cleaned = strip_reasoning(text)
        for label, strategy in self.strategies:
            try:
                calls = strategy(cleaned, names)
            except Exception:
                _logger.exception("Tool call strategy %s failed", label)
                continue
            if calls:
                _logger.debug("Strategy %s found %d tool call(s)", label, len(calls))
                return dedupe_calls(calls)
        return []
