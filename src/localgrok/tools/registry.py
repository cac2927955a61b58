"""Tool registry: resolves parsed tool calls and executes them."""

from __future__ import annotations

import logging

from localgrok.tools.base import Tool
from localgrok.types import ToolInvocation, ToolInvocationPayload, ToolResult

_logger = logging.getLogger(__name__)


def _smart_truncate(text: str, max_length: int) -> str:
    """Keep head and tail with a marker in the middle."""
    if len(text) <= max_length:
        return text
    head_size = max_length // 4
    tail_size = max_length - head_size
    omitted = len(text) - max_length
    return (
        text[:head_size]
        + f"\n\n... [{omitted} chars truncated] ...\n\n"
        + text[-tail_size:]
    )


class ToolRegistry:
    """The closed set of tools a model may call inline."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool instance."""
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        """Look up a tool by name or alias (case-insensitive)."""
        for tool in self._tools.values():
            if tool.matches(name):
                return tool
        return None

    def list_tools(self) -> list[Tool]:
        """Return all registered tools."""
        return list(self._tools.values())

    def tool_names(self) -> list[str]:
        """Return list of registered tool names."""
        return list(self._tools.keys())

    def tool_for(self, invocation: ToolInvocation) -> Tool | None:
        """Return the tool that handles *invocation*."""
        for tool in self._tools.values():
            if isinstance(invocation, tool.invocation_type):
                return tool
        return None

    def resolve(self, payload: ToolInvocationPayload) -> ToolInvocation | None:
        """Turn a parsed payload into a typed invocation.

        Returns None for unknown names or payloads the tool rejects.
        """
        tool = self.get(payload.name)
        if tool is None:
            _logger.debug("Unknown tool name in tool call: %r", payload.name)
            return None
        return tool.build(payload)

    async def execute(self, invocation: ToolInvocation) -> ToolResult:
        """Execute *invocation* with its tool.

        Applies per-tool output truncation after execution.
        Returns an error ToolResult if no tool matches or the tool raises.
        """
        tool = self.tool_for(invocation)
        if tool is None:
            return ToolResult(
                success=False,
                output="",
                error=f"No tool available for {type(invocation).__name__}",
            )
        _logger.info("Executing tool %s", tool.name)
        try:
            result = await tool.execute(invocation)
        except Exception as e:
            _logger.warning("Tool %s failed: %s", tool.name, e)
            return ToolResult(
                success=False,
                output="",
                error=f"Tool '{tool.name}' execution failed: {type(e).__name__}: {e}",
            )
        if tool.max_output > 0 and len(result.output) > tool.max_output:
            result = ToolResult(
                success=result.success,
                output=_smart_truncate(result.output, tool.max_output),
                error=result.error,
                metadata=result.metadata,
            )
        return result

    def get_prompt_description(self) -> str:
        """Return detailed prompt descriptions for all registered tools."""
        descs = [t.to_prompt_description() for t in self._tools.values()]
        return "\n\n".join(descs)
