"""Shared data types for localgrok."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any, Callable


# ---------------------------------------------------------------------------
# Conversation types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ChatMessage:
    """A single message in the conversation history."""

    role: str  # system, user, assistant
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class ConversationTurn:
    """Everything sent with one streaming request.

    Immutable: continuation rounds derive a new turn with
    :meth:`with_system_block` instead of mutating this one.
    """

    messages: tuple[ChatMessage, ...]
    model: str
    think: bool = False

    def with_system_block(self, text: str) -> ConversationTurn:
        """Return a copy with a trailing system message appended."""
        return ConversationTurn(
            messages=self.messages + (ChatMessage(role="system", content=text),),
            model=self.model,
            think=self.think,
        )

    def to_messages(self) -> list[dict[str, str]]:
        return [m.to_dict() for m in self.messages]


@dataclass(frozen=True)
class TurnOptions:
    """Per-turn engine settings, passed explicitly into each turn."""

    model: str
    think: bool = False
    tools_enabled: bool = True
    max_tool_rounds: int = 1
    system_prompt: str | None = None  # overrides the generated prompt


# ---------------------------------------------------------------------------
# Stream types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StreamFragment:
    """One decoded line of a streamed chat response."""

    reasoning: str = ""
    content: str = ""
    done: bool = False


# ---------------------------------------------------------------------------
# Tool types
# ---------------------------------------------------------------------------

@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    type: str  # string, integer, boolean
    description: str
    required: bool = True


@dataclass(frozen=True)
class ToolInvocationPayload:
    """Untyped ``{"name": ..., "query": ...}`` parsed from model output."""

    name: str
    query: str | None = None


@dataclass(frozen=True)
class WebSearch:
    """Search the web for *query*."""

    query: str


@dataclass(frozen=True)
class CurrentDateTime:
    """Report the current local date and time."""


ToolInvocation = WebSearch | CurrentDateTime


@dataclass
class ToolResult:
    """Result of a tool execution."""

    success: bool
    output: str
    error: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> str:
        if self.success:
            return self.output
        if self.output:
            return f"[Tool Error] {self.error}\n{self.output}"
        return f"[Tool Error] {self.error}"


@dataclass(frozen=True)
class ToolActivity:
    """Tool status published to observers while a turn is running.

    ``pending`` with no ``invocation`` means an invocation marker has been
    seen but the call is not complete yet.
    """

    pending: bool
    display_name: str = ""
    invocation: ToolInvocation | None = None


# ---------------------------------------------------------------------------
# Turn outcome types
# ---------------------------------------------------------------------------

class TurnState(enum.Enum):
    """States of a streaming turn."""

    IDLE = "idle"
    THINKING = "thinking"
    STREAMING = "streaming"
    EXECUTING_TOOL = "executing_tool"
    FINALIZED = "finalized"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TurnState.FINALIZED, TurnState.CANCELLED, TurnState.FAILED)


@dataclass(frozen=True)
class Finalized:
    visible_text: str
    reasoning_text: str = ""
    tool_used: bool = False
    tool_label: str = ""


@dataclass(frozen=True)
class ContinuationNeeded:
    tool_result_text: str
    invocation: ToolInvocation | None = None


@dataclass(frozen=True)
class Failed:
    reason: str
    visible_text: str = ""


@dataclass(frozen=True)
class Cancelled:
    visible_text: str = ""
    reasoning_text: str = ""
    tool_used: bool = False


TurnOutcome = Finalized | ContinuationNeeded | Failed | Cancelled


@dataclass
class TurnCallbacks:
    """Observer hooks invoked by the orchestrator, in order, per transition.

    Each hook may be a plain function or a coroutine function.
    ``on_content`` receives the cleaned visible text accumulated so far.
    """

    on_state: Callable[[TurnState], Any] | None = None
    on_reasoning: Callable[[str], Any] | None = None
    on_content: Callable[[str], Any] | None = None
    on_tool: Callable[[ToolActivity], Any] | None = None
    on_complete: Callable[[Finalized], Any] | None = None
    on_error: Callable[[str], Any] | None = None
    on_cancelled: Callable[[Cancelled], Any] | None = None


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Event types published through the EventBus."""

    # Turn lifecycle
    TURN_STATE = "turn.state"
    TURN_DONE = "turn.done"
    TURN_ERROR = "turn.error"
    TURN_CANCELLED = "turn.cancelled"

    # Stream events
    STREAM_REASONING = "stream.reasoning"
    STREAM_CONTENT = "stream.content"

    # Tool events
    TOOL_ACTIVITY = "tool.activity"


@dataclass
class TurnEvent:
    """Event published via the EventBus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
