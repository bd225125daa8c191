"""ToolExecutionManager: concurrent, deduplicated, time-limited tool runs.

Calls are deduplicated by ``(name, canonical arguments)``, split into
batches of ``max_parallel_tools`` and executed batch after batch; calls
inside a batch run concurrently and each is raced against a timeout.
Failures never propagate: they become failed :class:`ToolResult` objects
whose text the model can read.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from toolstream.core.cancellation import CancelToken, race_cancel
from toolstream.errors import (
    RequestCancelled,
    ToolCallRejected,
    ToolTimeoutError,
    format_tool_error,
)
from toolstream.events.bus import EventBus
from toolstream.types import AgentEvent, EventType, ToolCall, ToolResult

_logger = logging.getLogger(__name__)

# (name, arguments) -> result text, sync or async; raises on failure
ExecuteTool = Callable[[str, dict[str, Any]], Any]


@dataclass
class ExecutionConfig:
    max_parallel_tools: int = 5
    timeout_ms: int = 30000
    retry_attempts: int = 2  # reserved, calls are not retried
    enable_deduplication: bool = True


@dataclass
class ExecutionReport:
    """Results of one :meth:`ToolExecutionManager.execute` invocation.

    ``results`` holds one entry per unique call in completion order within
    each batch.  Use :meth:`result_for` to correlate a requested call,
    duplicates included, with its canonical result.
    """

    calls: list[ToolCall] = field(default_factory=list)
    unique_calls: list[ToolCall] = field(default_factory=list)
    results: list[ToolResult] = field(default_factory=list)
    elapsed_ms: float = 0.0
    _by_key: dict[tuple[str, str], ToolResult] = field(default_factory=dict, repr=False)

    def result_for(self, call: ToolCall) -> ToolResult:
        return self._by_key[call.key]

    def pairs(self) -> list[tuple[ToolCall, ToolResult]]:
        """Every requested call with its result, in request order."""
        return [(call, self.result_for(call)) for call in self.calls]

    @property
    def all_succeeded(self) -> bool:
        return all(r.success for r in self.results)

    @property
    def succeeded(self) -> list[ToolResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> list[ToolResult]:
        return [r for r in self.results if not r.success]


def deduplicate_tool_calls(calls: list[ToolCall]) -> list[ToolCall]:
    seen: set[tuple[str, str]] = set()
    unique: list[ToolCall] = []
    for call in calls:
        if call.key not in seen:
            seen.add(call.key)
            unique.append(call)
    if len(unique) < len(calls):
        _logger.debug("Deduplicated %d tool calls to %d", len(calls), len(unique))
    return unique


def create_batches(calls: list[ToolCall], size: int) -> list[list[ToolCall]]:
    size = max(1, size)
    return [calls[i : i + size] for i in range(0, len(calls), size)]


def validate_tool_calls(
    calls: list[ToolCall], available: list[str],
) -> tuple[list[ToolCall], list[str]]:
    """Split *calls* into (valid, error messages) against *available* names."""
    valid: list[ToolCall] = []
    errors: list[str] = []
    names = set(available)
    for call in calls:
        if not call.name:
            errors.append("Tool call is missing a name")
        elif call.name not in names:
            errors.append(f"Tool {call.name} is not available")
        elif not isinstance(call.arguments, dict):
            errors.append(f"Tool {call.name} has invalid arguments")
        else:
            valid.append(call)
    return valid, errors


def summarize_tool_results(results: list[ToolResult], preview: int = 200) -> str:
    """Short human-readable summary of a round of tool results."""
    if not results:
        return "No tools were executed."
    ok = [r for r in results if r.success]
    bad = [r for r in results if not r.success]
    lines = [
        f"Executed {len(results)} tool(s): {len(ok)} successful, {len(bad)} failed."
    ]
    for r in ok:
        text = r.result if len(r.result) <= preview else r.result[:preview] + "..."
        lines.append(f"- {r.name}: {text}")
    for r in bad:
        lines.append(f"- {r.name} failed: {r.result}")
    return "\n".join(lines)


class ToolExecutionManager:
    """Executes tool calls against an injected callback.

    Usage::

        manager = ToolExecutionManager(ExecutionConfig(max_parallel_tools=3))
        report = await manager.execute(calls, registry.execute)
    """

    def __init__(
        self,
        config: ExecutionConfig | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.config = config or ExecutionConfig()
        self._event_bus = event_bus

    async def execute(
        self,
        calls: list[ToolCall],
        execute_tool: ExecuteTool,
        cancel: CancelToken | None = None,
        conversation_id: str | None = None,
    ) -> ExecutionReport:
        """Execute *calls* and return a fresh :class:`ExecutionReport`.

        Raises :class:`RequestCancelled` if *cancel* fires; calls already
        in flight are abandoned, not guaranteed to stop.
        """
        start = time.monotonic()
        report = ExecutionReport(calls=list(calls))
        unique = (
            deduplicate_tool_calls(calls)
            if self.config.enable_deduplication
            else list(calls)
        )
        report.unique_calls = unique

        for batch in create_batches(unique, self.config.max_parallel_tools):
            if cancel is not None:
                cancel.raise_if_cancelled()
            batch_results = await race_cancel(
                self._run_batch(batch, execute_tool, conversation_id), cancel,
            )
            for call, result in batch_results:
                report.results.append(result)
                report._by_key.setdefault(call.key, result)

        report.elapsed_ms = (time.monotonic() - start) * 1000
        _logger.info(
            "Executed %d tool call(s) (%d unique) in %.0fms",
            len(calls), len(unique), report.elapsed_ms,
        )
        return report

    async def _run_batch(
        self,
        batch: list[ToolCall],
        execute_tool: ExecuteTool,
        conversation_id: str | None,
    ) -> list[tuple[ToolCall, ToolResult]]:
        tasks = [
            asyncio.ensure_future(self._run_one(call, execute_tool, conversation_id))
            for call in batch
        ]
        completed: list[tuple[ToolCall, ToolResult]] = []
        try:
            for next_done in asyncio.as_completed(tasks):
                completed.append(await next_done)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise
        return completed

    async def _run_one(
        self,
        call: ToolCall,
        execute_tool: ExecuteTool,
        conversation_id: str | None,
    ) -> tuple[ToolCall, ToolResult]:
        await self._emit(EventType.TOOL_EXECUTING, {
            "tool": call.name,
            "arguments": call.arguments,
            "id": call.id,
        }, conversation_id)
        start = time.monotonic()
        timeout = self.config.timeout_ms / 1000
        try:
            output = await asyncio.wait_for(
                self._invoke(execute_tool, call), timeout=timeout,
            )
        except asyncio.TimeoutError:
            elapsed = (time.monotonic() - start) * 1000
            err = ToolTimeoutError(self.config.timeout_ms)
            _logger.warning("Tool %s timed out after %dms", call.name, self.config.timeout_ms)
            result = ToolResult(
                name=call.name, result=format_tool_error(call.name, err),
                success=False, execution_ms=elapsed, id=call.id,
            )
        except ToolCallRejected as e:
            result = ToolResult(
                name=call.name, result=str(e), success=False,
                execution_ms=(time.monotonic() - start) * 1000, id=call.id,
            )
        except RequestCancelled:
            raise
        except Exception as e:
            _logger.warning("Tool %s failed: %s", call.name, e)
            result = ToolResult(
                name=call.name, result=format_tool_error(call.name, e),
                success=False, execution_ms=(time.monotonic() - start) * 1000,
                id=call.id,
            )
        else:
            result = ToolResult(
                name=call.name, result="" if output is None else str(output),
                success=True, execution_ms=(time.monotonic() - start) * 1000,
                id=call.id,
            )

        if result.success:
            await self._emit(EventType.TOOL_EXECUTED, {
                "tool": call.name,
                "id": call.id,
                "output_length": len(result.result),
                "execution_ms": result.execution_ms,
            }, conversation_id)
        else:
            await self._emit(EventType.TOOL_ERROR, {
                "tool": call.name,
                "id": call.id,
                "error": result.result,
            }, conversation_id)
        return call, result

    @staticmethod
    async def _invoke(execute_tool: ExecuteTool, call: ToolCall) -> Any:
        if inspect.iscoroutinefunction(execute_tool):
            return await execute_tool(call.name, call.arguments)
        output = await asyncio.to_thread(execute_tool, call.name, call.arguments)
        if inspect.isawaitable(output):
            output = await output
        return output

    async def _emit(
        self,
        event_type: EventType,
        data: dict[str, Any],
        conversation_id: str | None,
    ) -> None:
        if self._event_bus is not None:
            await self._event_bus.emit(AgentEvent(
                type=event_type, data=data, conversation_id=conversation_id,
            ))
