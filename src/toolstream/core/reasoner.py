"""Reasoner: decides what the agentic loop does after each round.

Pure apart from its round counter and start time: it takes a
``RoundResult`` and returns a :class:`ReasonerDecision`.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field

from toolstream.types import RoundResult, ToolCall

_logger = logging.getLogger(__name__)


class ActionType(enum.Enum):
    EXECUTE_TOOLS = "execute_tools"  # run the calls, then follow up
    RESPOND = "respond"              # final answer, loop ends
    LIMIT_REACHED = "limit_reached"  # budget exhausted with calls pending


@dataclass
class ReasonerDecision:
    action: ActionType
    tool_calls: list[ToolCall] = field(default_factory=list)
    reason: str = ""


class Reasoner:
    """Tracks round trips against the iteration cap and time budget.

    Parameters
    ----------
    max_iterations:
        Maximum network round trips per run.  Tool calls in the last
        allowed round are not executed.
    max_duration_s:
        Wall-clock budget in seconds; 0 disables it.
    """

    def __init__(self, max_iterations: int = 8, max_duration_s: float = 0) -> None:
        self._max_iterations = max(1, max_iterations)
        self._max_duration_s = max_duration_s
        self._rounds = 0
        self._started = time.monotonic()

    @property
    def rounds(self) -> int:
        return self._rounds

    @property
    def elapsed_s(self) -> float:
        return time.monotonic() - self._started

    def decide(self, result: RoundResult) -> ReasonerDecision:
        """Record one round trip and decide the next step."""
        self._rounds += 1

        if not result.has_tool_calls:
            return ReasonerDecision(action=ActionType.RESPOND)

        if self._rounds >= self._max_iterations:
            _logger.warning(
                "Iteration limit reached (%d) with %d tool call(s) pending",
                self._max_iterations, len(result.tool_calls),
            )
            return ReasonerDecision(
                action=ActionType.LIMIT_REACHED,
                tool_calls=result.tool_calls,
                reason=f"Iteration limit reached ({self._max_iterations} rounds)",
            )

        if self._max_duration_s and self.elapsed_s >= self._max_duration_s:
            _logger.warning("Time budget of %.1fs exhausted", self._max_duration_s)
            return ReasonerDecision(
                action=ActionType.LIMIT_REACHED,
                tool_calls=result.tool_calls,
                reason=f"Time budget exhausted ({self._max_duration_s:g}s)",
            )

        return ReasonerDecision(
            action=ActionType.EXECUTE_TOOLS, tool_calls=result.tool_calls,
        )
