"""Web search tool backed by SearXNG."""

from __future__ import annotations

from localgrok.search.client import (
    SearchUnavailableError,
    SearxngClient,
    format_search_results,
)
from localgrok.tools.base import Tool
from localgrok.types import (
    ToolInvocation,
    ToolInvocationPayload,
    ToolParameter,
    ToolResult,
    WebSearch,
)


class WebSearchTool(Tool):
    """Search the web and return a digest of the top results."""

    name = "web_search"
    aliases = ("websearch",)
    description = (
        "Search the web. Use ONLY for events after your knowledge cutoff, "
        "real-time news, weather, or facts you don't know."
    )
    parameters = [
        ToolParameter(name="query", type="string", description="What to search for"),
    ]
    invocation_type = WebSearch
    display_name = "Searching..."
    used_label = "Searched the web"
    max_output = 6000

    def __init__(self, client: SearxngClient, limit: int = 5) -> None:
        self._client = client
        self._limit = limit

    def build(self, payload: ToolInvocationPayload) -> ToolInvocation | None:
        # Never fall back to searching for an empty string.
        query = (payload.query or "").strip()
        if not query:
            return None
        return WebSearch(query=query)

    async def execute(self, invocation: ToolInvocation) -> ToolResult:
        if not isinstance(invocation, WebSearch):
            return ToolResult(
                success=False,
                output="",
                error=f"{self.name} cannot handle {type(invocation).__name__}",
            )
        try:
            results = await self._client.search(invocation.query, limit=self._limit)
        except SearchUnavailableError as e:
            return ToolResult(success=False, output="", error=str(e))
        return ToolResult(
            success=True,
            output=format_search_results(invocation.query, results),
            metadata={"result_count": len(results)},
        )
