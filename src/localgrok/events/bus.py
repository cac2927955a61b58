"""Async pub/sub EventBus for fanning turn progress out to several observers."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable

from localgrok.types import (
    Cancelled,
    EventType,
    Finalized,
    ToolActivity,
    TurnCallbacks,
    TurnEvent,
    TurnState,
)

_logger = logging.getLogger(__name__)

# Subscribe with this key to receive every event
_WILDCARD = "*"

Handler = Callable[[TurnEvent], Any]


class EventBus:
    """Lightweight async pub/sub event bus.

    - Subscribe to a specific EventType, or ``"*"`` for all events.
    - Handlers can be sync or async.
    - ``emit()`` fans out to matching handlers concurrently.
    - A failing handler is logged and never affects the others.
    """

    def __init__(self, max_history: int = 200) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._history: list[TurnEvent] = []
        self._max_history = max_history

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def subscribe(self, event_type: EventType | str, handler: Handler) -> None:
        """Register *handler* for *event_type* (or ``"*"`` for all)."""
        self._handlers.setdefault(self._key(event_type), []).append(handler)

    def unsubscribe(self, event_type: EventType | str, handler: Handler) -> None:
        """Remove *handler* from *event_type*; unknown handlers are ignored."""
        handlers = self._handlers.get(self._key(event_type), [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, event: TurnEvent) -> None:
        """Emit *event* to its type's handlers and to wildcard handlers."""
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        handlers = list(self._handlers.get(self._key(event.type), []))
        handlers.extend(self._handlers.get(_WILDCARD, []))
        if not handlers:
            return
        await asyncio.gather(*(self._call_handler(h, event) for h in handlers))

    def callbacks(self) -> TurnCallbacks:
        """Return orchestrator callbacks that publish onto this bus."""

        async def on_state(state: TurnState) -> None:
            await self.emit(TurnEvent(EventType.TURN_STATE, {"state": state}))

        async def on_reasoning(delta: str) -> None:
            await self.emit(TurnEvent(EventType.STREAM_REASONING, {"delta": delta}))

        async def on_content(text: str) -> None:
            await self.emit(TurnEvent(EventType.STREAM_CONTENT, {"text": text}))

        async def on_tool(activity: ToolActivity) -> None:
            await self.emit(TurnEvent(EventType.TOOL_ACTIVITY, {"activity": activity}))

        async def on_complete(outcome: Finalized) -> None:
            await self.emit(TurnEvent(EventType.TURN_DONE, {"outcome": outcome}))

        async def on_error(reason: str) -> None:
            await self.emit(TurnEvent(EventType.TURN_ERROR, {"reason": reason}))

        async def on_cancelled(outcome: Cancelled) -> None:
            await self.emit(TurnEvent(EventType.TURN_CANCELLED, {"outcome": outcome}))

        return TurnCallbacks(
            on_state=on_state,
            on_reasoning=on_reasoning,
            on_content=on_content,
            on_tool=on_tool,
            on_complete=on_complete,
            on_error=on_error,
            on_cancelled=on_cancelled,
        )

    @property
    def history(self) -> list[TurnEvent]:
        """Return a copy of the event history."""
        return list(self._history)

    def clear(self) -> None:
        """Remove all handlers and history."""
        self._handlers.clear()
        self._history.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _key(event_type: EventType | str) -> str:
        if isinstance(event_type, EventType):
            return event_type.value
        return str(event_type)

    @staticmethod
    async def _call_handler(handler: Handler, event: TurnEvent) -> None:
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
