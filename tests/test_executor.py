"""Tests for ToolExecutionManager: dedup, batching, timeouts, cancellation."""

from __future__ import annotations

import asyncio
import time

import pytest

from toolstream.core.cancellation import CancelToken
from toolstream.core.executor import (
    ExecutionConfig,
    ToolExecutionManager,
    create_batches,
    deduplicate_tool_calls,
    summarize_tool_results,
    validate_tool_calls,
)
from toolstream.errors import RequestCancelled, ToolCallRejected
from toolstream.events.bus import EventBus
from toolstream.types import EventType, ToolCall, ToolResult


def _call(name: str = "echo", call_id: str | None = None, **args) -> ToolCall:
    return ToolCall(name=name, arguments=args, id=call_id)


class Recorder:
    """Execute callback that records invocations and tracks concurrency."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls: list[tuple[str, dict]] = []
        self.active = 0
        self.max_active = 0

    async def run(self, name: str, arguments: dict) -> str:
        self.calls.append((name, arguments))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(arguments.get("delay", self.delay))
        finally:
            self.active -= 1
        return f"{name}:{arguments.get('i', '')}"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    def test_deduplicate_ignores_key_order(self):
        calls = [
            ToolCall("f", {"a": 1, "b": 2}, id="1"),
            ToolCall("f", {"b": 2, "a": 1}, id="2"),
            ToolCall("f", {"a": 2}, id="3"),
        ]
        assert [c.id for c in deduplicate_tool_calls(calls)] == ["1", "3"]

    def test_create_batches(self):
        calls = [_call(i=i) for i in range(12)]
        batches = create_batches(calls, 5)
        assert [len(b) for b in batches] == [5, 5, 2]

    def test_validate_tool_calls(self):
        valid, errors = validate_tool_calls(
            [_call("echo"), _call("nope"), ToolCall("", {})], ["echo"],
        )
        assert [c.name for c in valid] == ["echo"]
        assert errors == ["Tool nope is not available", "Tool call is missing a name"]

    def test_summarize(self):
        text = summarize_tool_results([
            ToolResult("echo", "hello", True),
            ToolResult("fail", "boom", False),
        ])
        assert text.startswith("Executed 2 tool(s): 1 successful, 1 failed.")
        assert "- echo: hello" in text
        assert "- fail failed: boom" in text

    def test_summarize_empty(self):
        assert summarize_tool_results([]) == "No tools were executed."


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

class TestExecute:
    async def test_success(self):
        recorder = Recorder()
        report = await ToolExecutionManager().execute([_call(i=1, call_id="c1")], recorder.run)
        assert report.all_succeeded
        result = report.results[0]
        assert result.result == "echo:1"
        assert result.id == "c1"
        assert result.execution_ms >= 0

    async def test_duplicates_execute_once_and_share_result(self):
        recorder = Recorder()
        calls = [
            _call(call_id="a", i=1),
            _call(call_id="b", i=1),
            _call(call_id="c", i=2),
        ]
        report = await ToolExecutionManager().execute(calls, recorder.run)

        assert len(recorder.calls) == 2
        assert len(report.results) == 2
        assert report.result_for(calls[0]) is report.result_for(calls[1])
        pairs = report.pairs()
        assert [c.id for c, _ in pairs] == ["a", "b", "c"]

    async def test_deduplication_can_be_disabled(self):
        recorder = Recorder()
        manager = ToolExecutionManager(ExecutionConfig(enable_deduplication=False))
        await manager.execute([_call(i=1), _call(i=1)], recorder.run)
        assert len(recorder.calls) == 2

    async def test_batches_bound_concurrency(self):
        recorder = Recorder(delay=0.1)
        manager = ToolExecutionManager(ExecutionConfig(max_parallel_tools=5))
        calls = [_call(i=i) for i in range(12)]

        start = time.monotonic()
        report = await manager.execute(calls, recorder.run)
        elapsed = time.monotonic() - start

        assert len(report.results) == 12
        assert recorder.max_active == 5
        # three sequential batches of ~100ms each
        assert 0.28 <= elapsed < 0.6

    async def test_completion_order_within_batch(self):
        recorder = Recorder()
        calls = [_call(i="slow", delay=0.15), _call(i="fast", delay=0.01)]
        report = await ToolExecutionManager().execute(calls, recorder.run)
        assert [r.result for r in report.results] == ["echo:fast", "echo:slow"]

    async def test_timeout_becomes_failed_result(self):
        manager = ToolExecutionManager(ExecutionConfig(timeout_ms=50))
        start = time.monotonic()
        report = await manager.execute([_call(delay=5)], Recorder().run)
        assert time.monotonic() - start < 1
        result = report.results[0]
        assert not result.success
        assert "timed out after 50ms" in result.result

    async def test_exception_becomes_classified_text(self):
        async def failing(name, args):
            raise ConnectionError("connection refused")

        report = await ToolExecutionManager().execute([_call()], failing)
        result = report.results[0]
        assert not result.success
        assert result.result.startswith('Tool "echo" failed due to a network error.')
        assert result.to_message().startswith("[Tool Error] ")

    async def test_unclassified_exception(self):
        async def failing(name, args):
            raise ValueError("weird")

        report = await ToolExecutionManager().execute([_call()], failing)
        assert report.results[0].result == 'Tool "echo" failed: weird'

    async def test_rejected_call_text_is_verbatim(self):
        async def reject(name, args):
            raise ToolCallRejected("Use an exact tool name.")

        report = await ToolExecutionManager().execute([_call()], reject)
        assert report.results[0].result == "Use an exact tool name."
        assert not report.results[0].success

    async def test_sync_callback_runs_in_thread(self):
        def blocking(name, args):
            time.sleep(0.01)
            return 42

        report = await ToolExecutionManager().execute([_call()], blocking)
        assert report.results[0].result == "42"

    async def test_each_invocation_returns_fresh_report(self):
        manager = ToolExecutionManager()
        first = await manager.execute([_call(i=1)], Recorder().run)
        second = await manager.execute([_call(i=2)], Recorder().run)
        assert first is not second
        assert first.results[0].result == "echo:1"
        assert len(second.results) == 1


class TestCancellation:
    async def test_cancel_during_batch(self):
        token = CancelToken()
        recorder = Recorder(delay=5)
        manager = ToolExecutionManager(ExecutionConfig(max_parallel_tools=1))

        async def cancel_soon():
            await asyncio.sleep(0.05)
            token.cancel()

        canceller = asyncio.ensure_future(cancel_soon())
        start = time.monotonic()
        with pytest.raises(RequestCancelled):
            await manager.execute([_call(i=1), _call(i=2)], recorder.run, token)
        await canceller

        assert time.monotonic() - start < 1
        # the second batch never started
        assert len(recorder.calls) == 1

    async def test_already_cancelled(self):
        token = CancelToken()
        token.cancel("stop")
        recorder = Recorder()
        with pytest.raises(RequestCancelled, match="stop"):
            await ToolExecutionManager().execute([_call()], recorder.run, token)
        assert recorder.calls == []


class TestEvents:
    async def test_tool_events(self):
        bus = EventBus()
        seen: list[EventType] = []
        bus.subscribe("*", lambda e: seen.append(e.type))

        async def run(name, args):
            if name == "bad":
                raise RuntimeError("x")
            return "ok"

        manager = ToolExecutionManager(event_bus=bus)
        await manager.execute([_call("good"), _call("bad")], run, conversation_id="c1")

        assert seen.count(EventType.TOOL_EXECUTING) == 2
        assert seen.count(EventType.TOOL_EXECUTED) == 1
        assert seen.count(EventType.TOOL_ERROR) == 1
        assert all(e.conversation_id == "c1" for e in bus.history())
