"""Execution core: cancellation, tool execution, reasoning, orchestration."""

from toolstream.core.cancellation import CancelToken, race_cancel
from toolstream.core.executor import ExecutionConfig, ExecutionReport, ToolExecutionManager
from toolstream.core.orchestrator import AgenticOrchestrator
from toolstream.core.reasoner import ActionType, Reasoner, ReasonerDecision

__all__ = [
    "ActionType",
    "AgenticOrchestrator",
    "CancelToken",
    "ExecutionConfig",
    "ExecutionReport",
    "Reasoner",
    "ReasonerDecision",
    "ToolExecutionManager",
    "race_cancel",
]
