"""Built-in tools for localgrok."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from localgrok.search.client import SearxngClient
    from localgrok.tools.builtin.clock import Clock
    from localgrok.tools.registry import ToolRegistry


def register_builtins(
    registry: ToolRegistry,
    search_client: SearxngClient,
    clock: Clock | None = None,
) -> None:
    """Register all built-in tools with the given registry."""
    from localgrok.tools.builtin.clock import DateTimeTool
    from localgrok.tools.builtin.web_search import WebSearchTool

    registry.register(WebSearchTool(search_client))
    registry.register(DateTimeTool(clock))
