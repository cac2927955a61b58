"""Web search backend for localgrok."""

from localgrok.search.client import (
    SearchResult,
    SearchUnavailableError,
    SearxngClient,
    format_search_results,
)

__all__ = [
    "SearchResult",
    "SearchUnavailableError",
    "SearxngClient",
    "format_search_results",
]
