from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, AsyncExitStack, asynccontextmanager

import httpx

from sitepilot.message import Message
from sitepilot.streaming import StreamChunk
from sitepilot.tools import ToolRegistry

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"


class UpstreamError(Exception):
    """The provider could not be reached or refused the request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


async def data_payloads(lines: AsyncIterator[str]) -> AsyncIterator[dict]:
    """Yield the JSON objects carried by ``data:`` lines.

    Other SSE fields, comments and unparseable payloads are skipped.
    Iteration stops at the ``[DONE]`` marker.
    """
    async for line in lines:
        if not line.startswith(DATA_PREFIX):
            continue
        data = line[len(DATA_PREFIX):].strip()
        if data == DONE_MARKER:
            return
        if not data:
            continue
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            logger.debug(f"Skipping malformed frame: {data[:200]!r}")
            continue
        if isinstance(payload, dict):
            yield payload


def error_message(payload: dict) -> str | None:
    """Return the message of an in-stream error payload, if this is one."""
    error = payload.get("error")
    if error is None and payload.get("type") != "error":
        return None
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error or "unknown error")


class UpstreamProvider(ABC):
    """A streaming text-generation service.

    Subclasses translate the conversation into the provider's request
    shape and decode its streamed frames into :class:`StreamChunk`
    objects.

    Args:
        model: Model identifier sent to the provider.
        api_key: Credential. Falls back to ``api_key_env`` when omitted.
        temperature: Sampling temperature (0-1).
        max_tokens: Optional cap on generated tokens.
    """

    name: str = "upstream"
    api_key_env: str | None = None
    default_model: str = ""

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ):
        if not api_key and self.api_key_env:
            api_key = os.getenv(self.api_key_env)
        self.api_key = api_key
        self.model = model or self.default_model
        self.temperature = temperature
        self.max_tokens = max_tokens

    def has_credentials(self) -> bool:
        return bool(self.api_key)

    def missing_credentials_message(self) -> str:
        if self.api_key_env:
            return f"{self.name} API key not configured (set {self.api_key_env})"
        return f"{self.name} API key not configured"

    @abstractmethod
    def open_stream(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: ToolRegistry | None = None,
    ) -> AbstractAsyncContextManager[AsyncIterator[str]]:
        """Send the request and yield the response body as text lines.

        Raises:
            UpstreamError: If the provider is unreachable or answers
                with a non-success status.
        """

    @abstractmethod
    def decode(self, lines: AsyncIterator[str]) -> AsyncIterator[StreamChunk]:
        """Translate raw response lines into normalised chunks.

        Malformed frames are skipped. An error reported by the provider
        inside the stream raises :class:`UpstreamError`.
        """


class HTTPStreamingProvider(UpstreamProvider):
    """Provider spoken to directly over ``httpx``.

    Args:
        http_client: Shared client to use. When omitted a client is
            created for each request and closed with it.
        timeout: Request timeout in seconds for owned clients.
    """

    default_base_url: str = ""

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
    ):
        super().__init__(
            model=model, api_key=api_key,
            temperature=temperature, max_tokens=max_tokens,
        )
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self._http_client = http_client
        self._timeout = timeout

    @asynccontextmanager
    async def _post_stream(
        self, url: str, headers: dict[str, str], body: dict,
    ) -> AsyncIterator[AsyncIterator[str]]:
        async with AsyncExitStack() as stack:
            client = self._http_client
            if client is None:
                client = await stack.enter_async_context(
                    httpx.AsyncClient(timeout=self._timeout)
                )
            try:
                response = await stack.enter_async_context(
                    client.stream("POST", url, json=body, headers=headers)
                )
            except httpx.HTTPError as e:
                raise UpstreamError(f"Could not reach {self.name}: {e}") from e
            if response.status_code >= 400:
                detail = (await response.aread()).decode(errors="replace")
                raise UpstreamError(
                    f"{self.name} returned HTTP {response.status_code}: {detail[:500]}",
                    status_code=response.status_code,
                )
            yield response.aiter_lines()
