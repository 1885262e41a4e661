"""Transports that feed normalized events to a :class:`ChatSession`."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack
from typing import TYPE_CHECKING, Protocol

import httpx

from sitepilot.events import StreamEvent
from sitepilot.message import Message
from sitepilot.sse import iter_lines, parse_sse_lines

if TYPE_CHECKING:
    from sitepilot.decoder import UpstreamDecoder

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """The chat endpoint could not be reached or rejected the request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class Transport(Protocol):
    def stream(self, messages: list[Message]) -> AsyncIterator[StreamEvent]:
        ...


class HttpTransport:
    """Posts the history to a chat endpoint and reads its SSE response.

    Args:
        endpoint: URL of the chat endpoint, e.g. ``http://localhost:8000/api/chat``.
        client: Shared ``httpx.AsyncClient``. When omitted a client is
            created per request.
        timeout: Timeout for owned clients. ``None`` disables it, since
            a response may stream for a long time.
    """

    def __init__(
        self,
        endpoint: str,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        self.endpoint = endpoint
        self._client = client
        self._timeout = timeout

    async def stream(self, messages: list[Message]) -> AsyncIterator[StreamEvent]:
        payload = {"messages": [m.model_dump() for m in messages]}
        async with AsyncExitStack() as stack:
            client = self._client
            if client is None:
                client = await stack.enter_async_context(
                    httpx.AsyncClient(timeout=self._timeout)
                )
            try:
                response = await stack.enter_async_context(
                    client.stream("POST", self.endpoint, json=payload)
                )
            except httpx.HTTPError as e:
                raise TransportError(f"Could not reach {self.endpoint}: {e}") from e
            if response.status_code >= 400:
                detail = (await response.aread()).decode(errors="replace")
                raise TransportError(
                    f"Chat endpoint returned HTTP {response.status_code}: {detail[:500]}",
                    status_code=response.status_code,
                )
            async for event in parse_sse_lines(iter_lines(response.aiter_text())):
                yield event


class LocalTransport:
    """Reads events straight from an in-process decoder, skipping HTTP."""

    def __init__(self, decoder: UpstreamDecoder):
        self.decoder = decoder

    async def stream(self, messages: list[Message]) -> AsyncIterator[StreamEvent]:
        events = self.decoder.stream(messages)
        try:
            async for event in events:
                yield event
        finally:
            await events.aclose()
