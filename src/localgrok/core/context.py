"""Mutable per-turn state owned by the orchestrator task.

``AccumulatedResponse`` covers one stream; ``TurnChain`` covers one user
turn, including any continuation rounds after a tool call.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from localgrok.types import ConversationTurn, ToolInvocation, TurnState


@dataclass
class AccumulatedResponse:
    """Text received so far on a single stream."""

    content: str = ""
    reasoning: str = ""
    invocation_pending: bool = False  # prefix looks like a tool call
    invocation: ToolInvocation | None = None  # set once, freezes the stream
    saw_content: bool = False

    @property
    def resolved(self) -> bool:
        return self.invocation is not None


@dataclass
class TurnChain:
    """State that persists across the rounds of one user turn."""

    turn: ConversationTurn
    state: TurnState = TurnState.IDLE
    visible_text: str = ""  # last text published to observers
    reasoning_parts: list[str] = field(default_factory=list)
    tool_rounds: int = 0
    tool_label: str = ""
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @property
    def tool_used(self) -> bool:
        return self.tool_rounds > 0

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def reasoning_text(self) -> str:
        return "\n\n".join(p for p in self.reasoning_parts if p)
