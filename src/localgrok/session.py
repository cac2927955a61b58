"""In-memory chat session: conversation history plus the one active turn."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from localgrok.core.orchestrator import StreamingOrchestrator, TurnHandle
from localgrok.types import (
    Cancelled,
    ChatMessage,
    Failed,
    Finalized,
    TurnCallbacks,
    TurnOptions,
    TurnOutcome,
)

_logger = logging.getLogger(__name__)


class TurnInProgressError(RuntimeError):
    """A new message was sent while a response is still streaming."""


class ChatSession:
    """One conversation with a model.

    Only one turn may be active at a time.  Finished and cancelled turns
    keep whatever answer text was produced; failed turns add nothing.
    """

    def __init__(self, orchestrator: StreamingOrchestrator, options: TurnOptions) -> None:
        self._orchestrator = orchestrator
        self.options = options
        self.history: list[ChatMessage] = []
        self._active: TurnHandle | None = None

    @property
    def busy(self) -> bool:
        return self._active is not None and not self._active.done

    def update_options(self, **changes: Any) -> TurnOptions:
        """Change settings for subsequent turns."""
        self.options = replace(self.options, **changes)
        return self.options

    async def send(self, text: str, callbacks: TurnCallbacks | None = None) -> TurnOutcome:
        """Send a user message and wait for the turn's outcome."""
        if self.busy:
            raise TurnInProgressError("A response is still being generated")

        self.history.append(ChatMessage(role="user", content=text))
        handle = self._orchestrator.start_turn(self.history, self.options, callbacks)
        self._active = handle
        try:
            outcome = await handle.wait()
        finally:
            self._active = None
        self._record(outcome)
        return outcome

    def cancel(self) -> bool:
        """Cancel the active turn.  Returns False when nothing is running."""
        if not self.busy:
            return False
        assert self._active is not None
        self._active.cancel()
        return True

    def clear(self) -> None:
        if self.busy:
            raise TurnInProgressError("Cannot clear while a response is being generated")
        self.history.clear()

    def _record(self, outcome: TurnOutcome) -> None:
        if isinstance(outcome, (Finalized, Cancelled)) and outcome.visible_text:
            self.history.append(ChatMessage(role="assistant", content=outcome.visible_text))
        elif isinstance(outcome, Failed):
            _logger.debug("Turn failed, nothing added to history: %s", outcome.reason)
