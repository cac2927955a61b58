"""Async SearXNG client used by the web search tool."""

from __future__ import annotations

import logging

import httpx
from pydantic import BaseModel, Field, ValidationError

from localgrok.config import SearchSpec

_logger = logging.getLogger(__name__)

_DEFAULT_LIMIT = 5
_SNIPPET_CHARS = 300


class SearchUnavailableError(Exception):
    """Search is not configured, unreachable, or returned garbage."""


class SearchResult(BaseModel):
    title: str | None = None
    url: str | None = None
    content: str | None = None


class SearchResponse(BaseModel):
    query: str = ""
    results: list[SearchResult] = Field(default_factory=list)


class SearxngClient:
    """Thin client for the SearXNG JSON API (``/search?format=json``)."""

    def __init__(
        self,
        spec: SearchSpec | None,
        timeout: float = 15,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.spec = spec
        self._client: httpx.AsyncClient | None = None
        if spec is not None and spec.is_configured:
            self._client = httpx.AsyncClient(
                base_url=spec.base_url,
                timeout=httpx.Timeout(timeout, connect=10),
                transport=transport,
            )

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    async def search(self, query: str, limit: int = _DEFAULT_LIMIT) -> list[SearchResult]:
        """Return up to *limit* ranked results for *query*."""
        if self._client is None:
            raise SearchUnavailableError(
                "Search not configured. Please set the SearXNG host and port in the config."
            )
        try:
            resp = await self._client.get(
                "/search", params={"q": query, "format": "json"},
            )
        except httpx.HTTPError as e:
            _logger.warning("Search request failed: %s", e)
            raise SearchUnavailableError(f"Search error: {e}") from e

        if not resp.is_success:
            raise SearchUnavailableError(
                f"Search failed: {resp.status_code} - {resp.reason_phrase}"
            )
        try:
            data = SearchResponse.model_validate_json(resp.content)
        except ValidationError as e:
            raise SearchUnavailableError("Search failed: invalid response") from e
        return data.results[:limit]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()


def format_search_results(query: str, results: list[SearchResult]) -> str:
    """Render results as a plain-text digest for the model."""
    if not results:
        return f"No search results found for: {query}"
    lines = [f"Search Results: {query}", ""]
    for i, r in enumerate(results, 1):
        lines.append(f"{i}. {(r.title or '').strip() or r.url or '(untitled)'}")
        if r.url:
            lines.append(f"   URL: {r.url}")
        snippet = " ".join((r.content or "").split())
        if len(snippet) > _SNIPPET_CHARS:
            snippet = snippet[:_SNIPPET_CHARS].rstrip() + "..."
        if snippet:
            lines.append(f"   {snippet}")
    return "\n".join(lines)
