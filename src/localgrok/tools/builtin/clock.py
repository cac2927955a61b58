"""Current date/time tool."""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from localgrok.tools.base import Tool
from localgrok.types import (
    CurrentDateTime,
    ToolInvocation,
    ToolInvocationPayload,
    ToolParameter,
    ToolResult,
)

Clock = Callable[[], datetime]


def local_now() -> datetime:
    """Aware datetime in the process's local time zone."""
    return datetime.now().astimezone()


def format_time(moment: datetime) -> str:
    """``3:30 PM``"""
    hour = moment.hour % 12 or 12
    return f"{hour}:{moment:%M} {'AM' if moment.hour < 12 else 'PM'}"


def format_datetime(moment: datetime) -> str:
    """``Wednesday, December 10, 2025 at 3:30 PM (CET)``"""
    text = f"{moment:%A, %B} {moment.day}, {moment.year} at {format_time(moment)}"
    zone = moment.tzname()
    if zone:
        text += f" ({zone})"
    return text


class DateTimeTool(Tool):
    """Report the current local date and time."""

    name = "get_datetime"
    aliases = ("get_timedate", "get_time", "current_time")
    description = "Get the current local date and time."
    parameters: list[ToolParameter] = []
    invocation_type = CurrentDateTime
    display_name = "Checking time..."
    used_label = "Checked time"

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or local_now

    def build(self, payload: ToolInvocationPayload) -> ToolInvocation | None:
        return CurrentDateTime()

    async def execute(self, invocation: ToolInvocation) -> ToolResult:
        # Read the clock now, not when the turn started.
        return ToolResult(
            success=True,
            output=f"Current date and time: {format_datetime(self._clock())}",
        )
