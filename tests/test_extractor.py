"""Tests for native and text-based tool call extraction."""

from __future__ import annotations

import pytest

from toolstream.llm.extractor import (
    ERROR_RESPONSE_TOOL,
    NativeToolCallAccumulator,
    ToolCallExtractor,
    extract_thinking,
    parse_arguments,
    parse_loose_arguments,
    parse_ollama_tool_calls,
    parse_openai_tool_calls,
    strip_reasoning,
    xml_tags,
)


@pytest.fixture
def extractor() -> ToolCallExtractor:
    return ToolCallExtractor()


# ---------------------------------------------------------------------------
# XML tags
# ---------------------------------------------------------------------------

class TestXmlTags:
    def test_child_tags_become_arguments(self, extractor):
        calls = extractor.extract(
            "<web_search><query>cats</query></web_search>", ["web_search"],
        )
        assert len(calls) == 1
        assert calls[0].name == "web_search"
        assert calls[0].arguments == {"query": "cats"}

    def test_unavailable_tool_yields_nothing(self, extractor):
        calls = extractor.extract(
            "<web_search><query>cats</query></web_search>", ["read_file"],
        )
        assert calls == []

    def test_surrounding_prose(self, extractor):
        text = "Let me look that up.\n<web_search>\n  <query>cats</query>\n</web_search>\n"
        calls = extractor.extract(text, ["web_search"])
        assert calls[0].arguments == {"query": "cats"}

    def test_repeated_child_becomes_list(self, extractor):
        calls = extractor.extract(
            "<read_files><path>a.py</path><path>b.py</path></read_files>",
            ["read_files"],
        )
        assert calls[0].arguments == {"path": ["a.py", "b.py"]}

    def test_json_body(self, extractor):
        calls = extractor.extract(
            '<web_search>{"query": "cats", "limit": 3}</web_search>', ["web_search"],
        )
        assert calls[0].arguments == {"query": "cats", "limit": 3}

    def test_plain_body_is_input(self, extractor):
        calls = extractor.extract("<shell>ls -la</shell>", ["shell"])
        assert calls[0].arguments == {"input": "ls -la"}

    def test_ignored_tags_are_never_tools(self):
        assert xml_tags(
            "<thinking><query>x</query></thinking>", frozenset({"thinking"}),
        ) is None

    def test_reasoning_blocks_are_stripped(self, extractor):
        text = (
            "<think><web_search><query>no</query></web_search></think>"
            "<web_search><query>yes</query></web_search>"
        )
        calls = extractor.extract(text, ["web_search"])
        assert [c.arguments for c in calls] == [{"query": "yes"}]

    def test_unclosed_reasoning_block(self, extractor):
        text = "<think>maybe <web_search><query>x</query></web_search>"
        assert extractor.extract(text, ["web_search"]) == []


# ---------------------------------------------------------------------------
# to=<tool> json{...}
# ---------------------------------------------------------------------------

class TestToToolJson:
    def test_plain(self, extractor):
        calls = extractor.extract('to=list_directory json{"path":"/tmp"}', ["list_directory"])
        assert len(calls) == 1
        assert calls[0].name == "list_directory"
        assert calls[0].arguments == {"path": "/tmp"}

    def test_functions_prefix_and_nested_args(self, extractor):
        text = 'commentary to=functions.web_search json{"query": {"text": "cats", "n": 2}}'
        calls = extractor.extract(text, ["web_search"])
        assert calls[0].name == "web_search"
        assert calls[0].arguments == {"query": {"text": "cats", "n": 2}}

    def test_template_tokens_are_removed(self, extractor):
        text = '<|channel|>commentary to=read_file json{"path": "a.py"}<|call|>'
        calls = extractor.extract(text, ["read_file"])
        assert calls[0].arguments == {"path": "a.py"}

    def test_empty_key_placeholder(self, extractor):
        calls = extractor.extract('to=get_time json{"":""}', ["get_time"])
        assert calls[0].arguments == {}

    def test_unknown_tool_becomes_error_response(self, extractor):
        calls = extractor.extract(
            'to=delete_everything json{"x": 1}', ["web_search", "read_file"],
        )
        assert len(calls) == 1
        assert calls[0].name == ERROR_RESPONSE_TOOL
        error = calls[0].arguments["error"]
        assert 'Tool "delete_everything" does not exist' in error
        assert "read_file, web_search" in error
        assert "exact tool name" in error


class TestNestedFunctionJson:
    def test_name_inside_payload(self, extractor):
        text = 'to=functions json{"name": "web_search", "arguments": {"query": "cats"}}'
        calls = extractor.extract(text, ["web_search"])
        assert calls[0].name == "web_search"
        assert calls[0].arguments == {"query": "cats"}

    def test_alias_resolution(self, extractor):
        text = 'to=functions json{"name": "search", "arguments": {"query": "cats"}}'
        calls = extractor.extract(text, ["web_search"])
        assert calls[0].name == "web_search"


# ---------------------------------------------------------------------------
# JSON blocks
# ---------------------------------------------------------------------------

class TestJsonBlocks:
    def test_fenced_tool_call(self, extractor):
        text = (
            "Sure.\n```json\n"
            '{"tool_call": {"name": "read_file", "arguments": {"path": "a.py"}}}\n'
            "```"
        )
        calls = extractor.extract(text, ["read_file"])
        assert calls[0].name == "read_file"
        assert calls[0].arguments == {"path": "a.py"}

    def test_bare_short_form(self, extractor):
        text = 'I will call {"tool": "read_file", "args": {"path": "a.py"}} now'
        calls = extractor.extract(text, ["read_file"])
        assert calls[0].name == "read_file"
        assert calls[0].arguments == {"path": "a.py"}

    def test_string_arguments(self, extractor):
        text = '{"tool_call": {"name": "read_file", "arguments": "{\\"path\\": \\"a.py\\"}"}}'
        calls = extractor.extract(text, ["read_file"])
        assert calls[0].arguments == {"path": "a.py"}


class TestToolCallBlocks:
    def test_json_arguments(self, extractor):
        text = (
            "<tool_call><tool_name>web_search</tool_name>"
            '<arguments>{"query": "cats"}</arguments></tool_call>'
        )
        calls = extractor.extract(text, ["web_search"])
        assert len(calls) == 1
        assert calls[0].name == "web_search"
        assert calls[0].arguments == {"query": "cats"}

    def test_multiline_block(self, extractor):
        text = (
            "<tool_call>\n  <tool_name>read_file</tool_name>\n"
            '  <arguments>\n    {"path": "a.py"}\n  </arguments>\n</tool_call>'
        )
        calls = extractor.extract(text, ["read_file"])
        assert calls[0].arguments == {"path": "a.py"}

    def test_plain_arguments_become_query(self, extractor):
        text = (
            "<tool_call><tool_name>web_search</tool_name>"
            "<arguments>'cats and dogs'</arguments></tool_call>"
        )
        calls = extractor.extract(text, ["web_search"])
        assert calls[0].arguments == {"query": "cats and dogs"}

    def test_unavailable_tool_yields_nothing(self, extractor):
        text = (
            "<tool_call><tool_name>rm_rf</tool_name>"
            '<arguments>{"path": "/"}</arguments></tool_call>'
        )
        assert extractor.extract(text, ["web_search"]) == []


class TestFunctionFieldJson:
    def test_function_and_arguments(self, extractor):
        text = 'Calling {"function": "web_search", "arguments": {"query": "cats"}} now'
        calls = extractor.extract(text, ["web_search"])
        assert len(calls) == 1
        assert calls[0].name == "web_search"
        assert calls[0].arguments == {"query": "cats"}

    def test_string_arguments(self, extractor):
        text = '{"function": "read_file", "arguments": "{\\"path\\": \\"a.py\\"}"}'
        calls = extractor.extract(text, ["read_file"])
        assert calls[0].arguments == {"path": "a.py"}

    def test_unknown_function_yields_nothing(self, extractor):
        text = '{"function": "rm_rf", "arguments": {"path": "/"}}'
        assert extractor.extract(text, ["web_search"]) == []


class TestTextCallsCarryNoRaw:
    @pytest.mark.parametrize("text", [
        "<web_search><query>cats</query></web_search>",
        'to=web_search json{"query": "cats"}',
        '{"tool_call": {"name": "web_search", "arguments": {"query": "cats"}}}',
        '{"function": "web_search", "arguments": {"query": "cats"}}',
    ])
    def test_raw_is_empty(self, extractor, text):
        calls = extractor.extract(text, ["web_search"])
        assert calls[0].raw == ""
        assert calls[0].arguments_json() == '{"query": "cats"}'


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------

class TestCascade:
    def test_first_match_wins(self, extractor):
        text = (
            "<web_search><query>a</query></web_search> "
            'to=read_file json{"path": "x"}'
        )
        calls = extractor.extract(text, ["web_search", "read_file"])
        assert [c.name for c in calls] == ["web_search"]

    def test_duplicates_collapse(self, extractor):
        text = (
            "<web_search><query>a</query></web_search>\n"
            "<web_search><query>a</query></web_search>"
        )
        assert len(extractor.extract(text, ["web_search"])) == 1

    def test_speculative_fallbacks_are_opt_in(self, extractor):
        text = "web_search(query='cats')"
        assert extractor.extract(text, ["web_search"]) == []
        calls = ToolCallExtractor(speculative=True).extract(text, ["web_search"])
        assert calls[0].name == "web_search"
        assert calls[0].arguments == {"query": "cats"}

    def test_failing_strategy_is_skipped(self, extractor):
        def broken(text, available):
            raise RuntimeError("boom")

        extractor.strategies.insert(0, ("broken", broken))
        calls = extractor.extract("<shell>ls</shell>", ["shell"])
        assert calls[0].name == "shell"

    @pytest.mark.parametrize("text", [
        "",
        "just an answer",
        "{{{ <<< to=json{",
        '```json\n{"not": "a tool"}\n```',
        "<unclosed><query>x</query>",
    ])
    def test_no_tool_call(self, extractor, text):
        assert extractor.extract(text, ["web_search", "shell"]) == []


class TestReasoning:
    def test_extract_thinking(self):
        thinking, cleaned = extract_thinking("<think>plan it</think>The answer is 4.")
        assert thinking == "plan it"
        assert cleaned == "The answer is 4."

    def test_strip_reasoning_template_tokens(self):
        assert strip_reasoning("<|start|>hi<|end|>") == "hi"


# ---------------------------------------------------------------------------
# Arguments
# ---------------------------------------------------------------------------

class TestParseArguments:
    def test_dict_passthrough(self):
        args = {"a": 1}
        assert parse_arguments(args) is args

    def test_json_string(self):
        assert parse_arguments('{"a": [1, 2]}') == {"a": [1, 2]}

    def test_truncated_json_is_repaired(self):
        assert parse_arguments('{"city": "Par') == {"city": "Par"}
        assert parse_arguments('{"a": {"b": 1') == {"a": {"b": 1}}

    def test_non_object_is_wrapped(self):
        assert parse_arguments("[1, 2]") == {"input": [1, 2]}

    @pytest.mark.parametrize("raw", [None, "", "   ", "not json at all"])
    def test_unusable_yields_empty(self, raw):
        assert parse_arguments(raw) == {}

    def test_loose_key_values(self):
        assert parse_loose_arguments("path: 'a.py', depth=2, hidden=true") == {
            "path": "a.py", "depth": 2, "hidden": True,
        }


# ---------------------------------------------------------------------------
# Native
# ---------------------------------------------------------------------------

class TestNativeToolCallAccumulator:
    def test_empty(self):
        acc = NativeToolCallAccumulator()
        assert acc.finalize() == []

    def test_fragments_by_index(self):
        acc = NativeToolCallAccumulator()
        acc.feed({"tool_calls": [{
            "index": 0, "id": "call_abc", "type": "function",
            "function": {"name": "get_weather", "arguments": ""},
        }]})
        acc.feed({"tool_calls": [{"index": 0, "function": {"arguments": '{"city":'}}]})
        acc.feed({"tool_calls": [{
            "index": 1, "id": "call_def",
            "function": {"name": "get_time", "arguments": "{}"},
        }]})
        acc.feed({"tool_calls": [{"index": 0, "function": {"arguments": '"Paris"}'}}]})

        calls = acc.finalize()
        assert [(c.id, c.name) for c in calls] == [
            ("call_abc", "get_weather"), ("call_def", "get_time"),
        ]
        assert calls[0].arguments == {"city": "Paris"}
        assert calls[0].raw == '{"city":"Paris"}'

    def test_id_and_name_set_once(self):
        acc = NativeToolCallAccumulator()
        acc.feed({"tool_calls": [{"index": 0, "id": "a", "function": {"name": "f"}}]})
        acc.feed({"tool_calls": [{"index": 0, "id": "b", "function": {"name": "g"}}]})
        call = acc.finalize()[0]
        assert (call.id, call.name) == ("a", "f")

    def test_nameless_call_dropped(self):
        acc = NativeToolCallAccumulator()
        acc.feed({"tool_calls": [{"index": 0, "function": {"arguments": "{}"}}]})
        assert acc.finalize() == []

    def test_ignores_deltas_without_calls(self):
        acc = NativeToolCallAccumulator()
        acc.feed({"content": "hi"})
        acc.feed({"tool_calls": None})
        assert acc.finalize() == []


class TestCompleteMessages:
    def test_openai(self):
        calls = parse_openai_tool_calls({"tool_calls": [
            {"id": "c1", "type": "function",
             "function": {"name": "read_file", "arguments": '{"path": "a"}'}},
            {"id": "c2", "function": {"arguments": "{}"}},
        ]})
        assert len(calls) == 1
        assert calls[0].id == "c1"
        assert calls[0].arguments == {"path": "a"}
        assert calls[0].raw == '{"path": "a"}'

    def test_ollama_object_arguments(self):
        calls = parse_ollama_tool_calls({"tool_calls": [
            {"function": {"name": "read_file", "arguments": {"path": "a"}}},
        ]})
        assert calls[0].arguments == {"path": "a"}
        assert calls[0].id is None
