"""Async pub/sub for run events (state changes, LLM rounds, tool activity)."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable

from toolstream.types import AgentEvent, EventType

_logger = logging.getLogger(__name__)

_WILDCARD = "*"

Handler = Callable[[AgentEvent], Any]


class EventBus:
    """Lightweight async event bus.

    - Subscribe to one :class:`EventType` or ``"*"`` for all events,
      optionally only for one conversation id.
    - Handlers may be sync or async; handler errors are logged, never
      propagated into the run.
    - ``subscribe()`` returns a callable that removes the subscription.
    """

    def __init__(self, max_history: int = 200) -> None:
        self._handlers: dict[str, list[tuple[Handler, str | None]]] = {}
        self._history: list[AgentEvent] = []
        self._max_history = max_history

    def subscribe(
        self,
        event_type: EventType | str,
        handler: Handler,
        conversation_id: str | None = None,
    ) -> Callable[[], None]:
        """Register *handler*; return an unsubscribe function."""
        key = self._key(event_type)
        entry = (handler, conversation_id)
        self._handlers.setdefault(key, []).append(entry)

        def unsubscribe() -> None:
            entries = self._handlers.get(key, [])
            if entry in entries:
                entries.remove(entry)

        return unsubscribe

    async def emit(self, event: AgentEvent) -> None:
        """Deliver *event* to matching handlers concurrently."""
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        entries = list(self._handlers.get(self._key(event.type), []))
        entries.extend(self._handlers.get(_WILDCARD, []))
        handlers = [
            h for h, conv in entries
            if conv is None or conv == event.conversation_id
        ]
        if handlers:
            await asyncio.gather(*(self._call_handler(h, event) for h in handlers))

    def history(self, conversation_id: str | None = None) -> list[AgentEvent]:
        """Recent events, optionally for one conversation."""
        if conversation_id is None:
            return list(self._history)
        return [e for e in self._history if e.conversation_id == conversation_id]

    def clear(self) -> None:
        self._handlers.clear()
        self._history.clear()

    @staticmethod
    def _key(event_type: EventType | str) -> str:
        if isinstance(event_type, EventType):
            return event_type.value
        return str(event_type)

    @staticmethod
    async def _call_handler(handler: Handler, event: AgentEvent) -> None:
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            _logger.exception(
                "EventBus handler %s raised for event %s",
                getattr(handler, "__name__", handler),
                event.type,
            )
