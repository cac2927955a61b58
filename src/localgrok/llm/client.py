"""Async client for the Ollama native chat API.

Streams ``/api/chat`` responses as :class:`~localgrok.types.StreamFragment`
values.  Unlike a request/response client, nothing here retries: a
transport failure ends the stream with :class:`OllamaError` and the caller
decides what to show.
"""

from __future__ import annotations

import logging
from typing import AsyncGenerator

import httpx
from pydantic import ValidationError

from localgrok.config import ServerSpec
from localgrok.types import ConversationTurn, StreamFragment

from .wire import OllamaChatRequest, OllamaTagsResponse, decode_chunk

_logger = logging.getLogger(__name__)


class OllamaError(Exception):
    """The inference server is unreachable, misconfigured, or returned an error."""


class AsyncOllamaClient:
    """Async client for a single Ollama server.

    Parameters
    ----------
    server:
        Connection descriptor.  Read-only for the lifetime of the client;
        reconfiguring means building a new client between turns.
    timeout:
        Timeout for non-streaming calls.  Streaming reads use a longer
        read timeout since reasoning models can pause for a while.
    transport:
        Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        server: ServerSpec,
        timeout: float = 120,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.server = server
        base_url = server.base_url if server.is_configured else "http://localhost"
        headers = {"Content-Type": "application/json"}

        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=30),
            transport=transport,
        )
        self._stream_client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=30, read=300),
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Streaming chat
    # ------------------------------------------------------------------

    async def stream_chat(
        self, turn: ConversationTurn,
    ) -> AsyncGenerator[StreamFragment, None]:
        """Stream one chat response.  Yields fragments in wire order.

        Ends after the fragment with ``done=True`` or at end of stream.
        Raises :class:`OllamaError` on transport or server errors.  Closing
        the generator (or cancelling the consuming task) leaves the
        ``httpx`` streaming context, which closes the connection.
        """
        self._require_server()
        payload = OllamaChatRequest.from_turn(turn).model_dump()

        try:
            async with self._stream_client.stream(
                "POST", "/api/chat", json=payload,
            ) as resp:
                if resp.status_code >= 400:
                    body = (await resp.aread()).decode(errors="replace")
                    raise OllamaError(
                        f"API Error: {resp.status_code} - "
                        f"{_error_detail(body) or resp.reason_phrase}"
                    )

                saw_done = False
                async for line in resp.aiter_lines():
                    if not line.strip():
                        continue
                    chunk = decode_chunk(line)
                    if chunk is None:
                        _logger.debug("Skipping malformed stream line: %.120s", line)
                        continue
                    if chunk.error:
                        raise OllamaError(f"Server error: {chunk.error}")

                    fragment = chunk.to_fragment()
                    yield fragment
                    if fragment.done:
                        saw_done = True
                        break

                if not saw_done:
                    _logger.warning("Stream ended without a done marker")
        except httpx.HTTPError as e:
            raise OllamaError(f"Network error: {e}") from e

    # ------------------------------------------------------------------
    # Server utilities
    # ------------------------------------------------------------------

    async def list_models(self) -> list[str]:
        """Return the names of models installed on the server."""
        self._require_server()
        try:
            resp = await self._client.get("/api/tags")
            resp.raise_for_status()
            tags = OllamaTagsResponse.model_validate_json(resp.content)
        except httpx.HTTPError as e:
            raise OllamaError(f"Failed to fetch models: {e}") from e
        except ValidationError as e:
            raise OllamaError("Failed to fetch models: invalid response") from e
        return [m.name for m in tags.models]

    async def check_connection(self) -> bool:
        """Return True if the server answers its version endpoint."""
        if not self.server.is_configured:
            return False
        try:
            resp = await self._client.get("/api/version")
        except httpx.HTTPError as e:
            _logger.warning("Connection check failed: %s", e)
            return False
        return resp.is_success

    async def close(self) -> None:
        """Close underlying HTTP clients."""
        await self._client.aclose()
        await self._stream_client.aclose()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_server(self) -> None:
        if not self.server.is_configured:
            raise OllamaError(
                "Server not configured. Please set the server host in the config."
            )


def _error_detail(body: str) -> str:
    """Pull the ``error`` field out of an Ollama error body, if present."""
    chunk = decode_chunk(body)
    if chunk is not None and chunk.error:
        return chunk.error
    return body.strip()[:200]
