"""AgenticOrchestrator: the per-request model/tool loop.

    adapter → client → reasoner → executor → follow-up → loop

One ``send_message`` call may span several network round trips.  The
loop ends when the model stops requesting tools, when the iteration or
time budget runs out, or when the caller's cancel token fires.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import uuid
from typing import Any, Callable

from toolstream.config import ToolstreamConfig
from toolstream.core.cancellation import CancelToken
from toolstream.core.executor import (
    ExecutionConfig,
    ToolExecutionManager,
    summarize_tool_results,
    validate_tool_calls,
)
from toolstream.core.reasoner import ActionType, Reasoner
from toolstream.errors import (
    ProtocolViolationError,
    RequestCancelled,
    ToolCallRejected,
    ToolNotFoundError,
)
from toolstream.events.bus import EventBus
from toolstream.llm.adapters import StreamingConfig, StreamingProtocolAdapter, create_adapter
from toolstream.llm.client import AsyncLLMClient, ChunkCallback
from toolstream.llm.extractor import ERROR_RESPONSE_TOOL, ToolCallExtractor
from toolstream.tools.base import ToolProvider
from toolstream.tools.capabilities import ModelCapabilityCache
from toolstream.tools.spec import ToolSpec, normalize_tools
from toolstream.types import (
    AgentEvent,
    ConversationTurn,
    EventType,
    LLMResponse,
    LLMSettings,
    OrchestratorState,
    PricingFn,
    ProviderInfo,
    RoundResult,
    ToolCall,
    ToolMode,
    ToolResult,
    Usage,
    estimate_tokens,
)

_logger = logging.getLogger(__name__)

STATUS_OPEN = "<tool_execution>"
STATUS_CLOSE = "</tool_execution>"


def verify_tool_round(calls: list[ToolCall], turns: list[ConversationTurn]) -> None:
    """Check that the tool turns answer exactly the calls being sent.

    Raises
    ------
    ProtocolViolationError
        If any call lacks an id, or the result ids are not exactly the
        call ids (no additions, omissions or renames).
    """
    sent = [c.id for c in calls]
    returned = [t.tool_call_id for t in turns if t.role == "tool"]
    if any(not i for i in sent):
        raise ProtocolViolationError("Tool call without an id cannot be correlated")
    if len(sent) != len(returned) or set(sent) != set(returned):
        missing = sorted(set(sent) - set(returned))
        extra = sorted(set(returned) - set(sent))
        raise ProtocolViolationError(
            f"Tool call/result ID mismatch: {len(sent)} call(s) vs "
            f"{len(returned)} result(s); missing {missing}, unexpected {extra}"
        )


def status_block(text: str) -> str:
    return f"\n{STATUS_OPEN}\n{text}\n{STATUS_CLOSE}\n"


class AgenticOrchestrator:
    """Drives model/tool round trips for one request at a time per call.

    Parameters
    ----------
    config:
        Loaded configuration (provider catalog, limits, parsing options).
    tools:
        Tool provider consulted on every run (``list_tools``/``execute``).
    client:
        HTTP transport.  Created on demand if omitted.
    event_bus:
        Receives run, LLM and tool events.
    capabilities:
        Shared model capability cache, injected into adapters.
    pricing:
        ``(provider_id, model, usage) -> Cost | None`` for cost reporting.
    """

    def __init__(
        self,
        config: ToolstreamConfig | None = None,
        tools: ToolProvider | None = None,
        client: AsyncLLMClient | None = None,
        event_bus: EventBus | None = None,
        capabilities: ModelCapabilityCache | None = None,
        pricing: PricingFn | None = None,
    ) -> None:
        self.config = config or ToolstreamConfig()
        self._tools = tools
        self._event_bus = event_bus if event_bus is not None else EventBus()
        self._client = client or AsyncLLMClient(event_bus=self._event_bus)
        self.capabilities = (
            capabilities if capabilities is not None else ModelCapabilityCache()
        )
        self._pricing = pricing
        self._extractor = ToolCallExtractor(
            ignored_tags=self.config.text_parsing.ignored_tags,
            speculative=self.config.text_parsing.speculative_fallbacks,
        )
        execution = self.config.execution
        self._executor = ToolExecutionManager(
            ExecutionConfig(
                max_parallel_tools=execution.max_parallel_tools,
                timeout_ms=execution.timeout_ms,
                retry_attempts=execution.retry_attempts,
                enable_deduplication=execution.enable_deduplication,
            ),
            self._event_bus,
        )
        self._adapters: dict[str, StreamingProtocolAdapter] = {}

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    def adapter_for(self, provider: ProviderInfo) -> StreamingProtocolAdapter:
        adapter = self._adapters.get(provider.family)
        if adapter is None:
            adapter = create_adapter(
                provider.family,
                capabilities=self.capabilities,
                extractor=self._extractor,
                ollama_native_models=self.config.ollama_native_tool_models,
            )
            self._adapters[provider.family] = adapter
        return adapter

    async def send_message(
        self,
        message: str | list[dict[str, Any]],
        settings: LLMSettings,
        provider: ProviderInfo | None = None,
        history: list[Any] | None = None,
        on_stream_chunk: ChunkCallback | None = None,
        cancel: CancelToken | None = None,
        conversation_id: str | None = None,
    ) -> LLMResponse:
        """Run the agentic loop for one user message.

        Streams model text to *on_stream_chunk* when given (streaming
        mode); otherwise each round is a single non-streamed request.
        On success the user turn and final assistant turn are appended
        to *history*.

        Raises
        ------
        RequestCancelled
            *cancel* fired at any suspension point.
        ProviderError
            The provider call failed.
        ProtocolViolationError
            Tool call/result ids could not be matched.
        """
        provider = provider or self.config.provider(settings.provider)
        adapter = self.adapter_for(provider)
        cancel = cancel or CancelToken()
        conv_id = conversation_id or uuid.uuid4().hex
        stream = on_stream_chunk is not None
        reasoner = Reasoner(
            max_iterations=self.config.agent.max_iterations,
            max_duration_s=self.config.agent.max_duration_s,
        )

        specs = await self._list_tools()
        transcript = adapter.build_messages(message, settings, provider, history, specs)
        question = transcript[-1].text

        usage = Usage()
        all_calls: list[ToolCall] = []
        all_results: list[ToolResult] = []
        final = RoundResult()
        finish_reason = ""

        await self._emit(EventType.RUN_STARTED, {
            "provider": provider.id,
            "model": settings.model,
            "tools": len(specs),
            "streaming": stream,
        }, conv_id)

        try:
            while True:
                await self._set_state(OrchestratorState.AWAITING_MODEL, conv_id)
                cancel.raise_if_cancelled()
                outbound = transcript if reasoner.rounds == 0 else adapter.followup_transcript(transcript)
                config = adapter.build_config(outbound, settings, provider, specs, stream)
                await self._emit(EventType.LLM_REQUEST, {
                    "endpoint": config.endpoint,
                    "round": reasoner.rounds + 1,
                    "tool_mode": config.tool_mode.value,
                    "messages": len(outbound),
                }, conv_id)

                result = await self._client.send(config, on_stream_chunk, cancel, conv_id)
                usage = usage + (result.usage or self._estimate_usage(config, result))
                final = result
                decision = reasoner.decide(result)

                await self._emit(EventType.LLM_RESPONSE, {
                    "model": result.model,
                    "round": reasoner.rounds,
                    "content_length": len(result.content),
                    "tool_calls": len(result.tool_calls),
                    "action": decision.action.value,
                }, conv_id)

                if decision.action is ActionType.RESPOND:
                    break
                if decision.action is ActionType.LIMIT_REACHED:
                    finish_reason = "iteration_limit"
                    if not final.content:
                        final.content = f"[{decision.reason}]"
                    break

                await self._set_state(OrchestratorState.TOOLS_FOUND, conv_id)
                calls = adapter.assign_ids(decision.tool_calls)
                all_calls.extend(calls)
                _, problems = validate_tool_calls(
                    calls, [s.name for s in specs] + [ERROR_RESPONSE_TOOL],
                )
                for problem in problems:
                    _logger.warning("[%s] %s", conv_id[:8], problem)

                await self._set_state(OrchestratorState.EXECUTING_TOOLS, conv_id)
                report = await self._executor.execute(
                    calls, self._execute_tool, cancel, conv_id,
                )
                all_results.extend(report.results)

                await self._set_state(OrchestratorState.BUILDING_FOLLOWUP, conv_id)
                cancel.raise_if_cancelled()
                turns = adapter.followup_turns(
                    result.content, report.pairs(), config.tool_mode, question,
                )
                if config.tool_mode is ToolMode.NATIVE:
                    verify_tool_round(calls, turns)
                transcript.extend(turns)

                if stream and self.config.agent.emit_tool_status:
                    await self._deliver(
                        on_stream_chunk, status_block(summarize_tool_results(report.results)),
                    )
        except RequestCancelled:
            await self._set_state(OrchestratorState.CANCELLED, conv_id)
            await self._emit(EventType.RUN_CANCELLED, {"rounds": reasoner.rounds}, conv_id)
            raise
        except asyncio.CancelledError:
            await self._emit(EventType.RUN_CANCELLED, {"rounds": reasoner.rounds}, conv_id)
            raise
        except Exception as e:
            await self._emit(EventType.RUN_ERROR, {
                "error": str(e), "type": type(e).__name__,
            }, conv_id)
            raise

        await self._set_state(OrchestratorState.DONE, conv_id)

        if history is not None:
            history.append(ConversationTurn("user", message))
            history.append(ConversationTurn("assistant", final.content))

        response = LLMResponse(
            content=final.content,
            usage=usage,
            cost=self._pricing(provider.id, settings.model, usage) if self._pricing else None,
            tool_calls=all_calls,
            tool_results=all_results,
            rounds=reasoner.rounds,
            finish_reason=finish_reason or final.finish_reason or "stop",
            model=final.model or settings.model,
        )
        await self._emit(EventType.RUN_DONE, {
            "rounds": response.rounds,
            "tool_calls": len(all_calls),
            "total_tokens": usage.total_tokens,
        }, conv_id)
        return response

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def _list_tools(self) -> list[ToolSpec]:
        if self._tools is None:
            return []
        listed = self._tools.list_tools()
        if inspect.isawaitable(listed):
            listed = await listed
        return normalize_tools(list(listed or []))

    async def _execute_tool(self, name: str, arguments: dict[str, Any]) -> str:
        if name == ERROR_RESPONSE_TOOL:
            raise ToolCallRejected(arguments.get("error", "Invalid tool call"))
        if self._tools is None:
            raise ToolNotFoundError(name)
        if inspect.iscoroutinefunction(self._tools.execute):
            output = await self._tools.execute(name, arguments)
        else:
            output = await asyncio.to_thread(self._tools.execute, name, arguments)
            if inspect.isawaitable(output):
                output = await output
        return "" if output is None else str(output)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _estimate_usage(config: StreamingConfig, result: RoundResult) -> Usage:
        prompt = estimate_tokens(json.dumps(config.request_body.get("messages", []), ensure_ascii=False))
        completion = estimate_tokens(result.content)
        usage = Usage.from_counts(prompt, completion)
        usage.estimated = True
        return usage

    @staticmethod
    async def _deliver(on_chunk: Callable[[str], Any] | None, text: str) -> None:
        if on_chunk is None:
            return
        result = on_chunk(text)
        if inspect.isawaitable(result):
            await result

    async def _set_state(self, state: OrchestratorState, conversation_id: str) -> None:
        _logger.debug("[%s] state -> %s", conversation_id[:8], state.value)
        await self._emit(EventType.STATE_CHANGED, {"state": state.value}, conversation_id)

    async def _emit(
        self,
        event_type: EventType,
        data: dict[str, Any],
        conversation_id: str | None,
    ) -> None:
        await self._event_bus.emit(AgentEvent(
            type=event_type, data=data, conversation_id=conversation_id,
        ))

    async def close(self) -> None:
        await self._client.close()
