"""Async Tool abstract base class for localgrok."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod

from localgrok.types import ToolInvocation, ToolInvocationPayload, ToolParameter, ToolResult


class Tool(ABC):
    """Base class for inline tools.

    Subclasses set ``name``, ``description``, ``parameters`` and
    ``invocation_type`` as class attributes.  ``aliases`` are alternative
    spellings models tend to produce; matching is case-insensitive.
    """

    name: str
    description: str
    parameters: list[ToolParameter]
    invocation_type: type
    aliases: tuple[str, ...] = ()
    display_name: str = "Working..."  # shown while the tool runs
    used_label: str = "Used a tool"  # shown on the finished answer
    max_output: int = 5000  # Per-tool output limit (chars). Override in subclasses.

    def matches(self, name: str) -> bool:
        key = name.strip().lower()
        return key == self.name.lower() or key in {a.lower() for a in self.aliases}

    @abstractmethod
    def build(self, payload: ToolInvocationPayload) -> ToolInvocation | None:
        """Validate *payload* into a typed invocation, or None if unusable."""

    @abstractmethod
    async def execute(self, invocation: ToolInvocation) -> ToolResult:
        """Execute the tool asynchronously."""

    def example_call(self) -> str:
        """The exact text a model should emit to call this tool."""
        call: dict[str, str] = {"name": self.name}
        for p in self.parameters:
            call[p.name] = f"<{p.name}>"
        return f"<tool_call>{json.dumps(call)}</tool_call>"

    def to_prompt_description(self) -> str:
        """Generate a text description for prompt-based tool calling."""
        params_desc: list[str] = []
        for p in self.parameters:
            req = "required" if p.required else "optional"
            params_desc.append(f"  - {p.name} ({p.type}, {req}): {p.description}")

        params_str = "\n".join(params_desc) if params_desc else "  (none)"
        return (
            f"### {self.name}\n{self.description}\nParameters:\n{params_str}\n"
            f"Call: {self.example_call()}"
        )
