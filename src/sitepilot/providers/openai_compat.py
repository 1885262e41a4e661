"""OpenAI-compatible chat completions, streamed.

Works with any endpoint that speaks ``/v1/chat/completions`` with
``stream: true``: OpenRouter (the default), OpenAI, vLLM and so on.
Tool calls arrive as ``delta.tool_calls`` fragments carrying a slot
``index``; the name comes once and the arguments in pieces.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager

import httpx
from openai import APIError, AsyncOpenAI

from sitepilot.message import Message
from sitepilot.providers.base import UpstreamError, UpstreamProvider, data_payloads, error_message
from sitepilot.streaming import StreamChunk, ToolCallFragment
from sitepilot.tools import ToolRegistry

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OPENAI_BASE_URL = "https://api.openai.com/v1"


def chunk_from_payload(payload: dict) -> StreamChunk | None:
    """Build a chunk from one ``chat.completion.chunk`` object.

    Returns ``None`` for frames without a usable first choice.
    """
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    choice = choices[0]
    if not isinstance(choice, dict):
        return None
    delta = choice.get("delta")
    if not isinstance(delta, dict):
        delta = {}

    fragments = []
    for tc in delta.get("tool_calls") or []:
        if not isinstance(tc, dict):
            continue
        function = tc.get("function")
        if not isinstance(function, dict):
            function = {}
        index = tc.get("index")
        fragments.append(ToolCallFragment(
            index=index if isinstance(index, int) else 0,
            call_id=tc.get("id"),
            name=function.get("name"),
            arguments_delta=function.get("arguments"),
        ))

    content = delta.get("content")
    return StreamChunk(
        content_delta=content if isinstance(content, str) and content else None,
        tool_call_fragments=fragments or None,
        finish_reason=choice.get("finish_reason"),
    )


class OpenAICompatibleProvider(UpstreamProvider):
    """Chat completions through the ``openai`` client's raw streaming response.

    Args:
        base_url: API root. Defaults to ``default_base_url``.
        site_url: Sent as ``HTTP-Referer`` (shown in the OpenRouter dashboard).
        site_name: Sent as ``X-Title``.
        max_retries: Retries on transient failures before the first byte.
        http_client: Optional ``httpx.AsyncClient`` handed to the openai client.
    """

    name = "openrouter"
    api_key_env = "OPENROUTER_API_KEY"
    default_model = "google/gemini-2.0-flash"
    default_base_url = OPENROUTER_BASE_URL

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        base_url: str | None = None,
        site_url: str | None = None,
        site_name: str | None = None,
        max_retries: int = 2,
        timeout: float = 600.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(
            model=model, api_key=api_key,
            temperature=temperature, max_tokens=max_tokens,
        )
        self.base_url = base_url or self.default_base_url
        self.site_url = site_url
        self.site_name = site_name
        self._max_retries = max_retries
        self._timeout = timeout
        self._http_client = http_client
        self._client: AsyncOpenAI | None = None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                max_retries=self._max_retries,
                timeout=self._timeout,
                http_client=self._http_client,
            )
        return self._client

    def build_request(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: ToolRegistry | None = None,
    ) -> dict:
        kwargs: dict = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                *[m.model_dump() for m in messages],
            ],
            "temperature": self.temperature,
            "stream": True,
        }
        if tools:
            kwargs["tools"] = tools.to_openai()
        if self.max_tokens:
            kwargs["max_tokens"] = self.max_tokens
        headers = {}
        if self.site_url:
            headers["HTTP-Referer"] = self.site_url
        if self.site_name:
            headers["X-Title"] = self.site_name
        if headers:
            kwargs["extra_headers"] = headers
        return kwargs

    @asynccontextmanager
    async def open_stream(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: ToolRegistry | None = None,
    ) -> AsyncIterator[AsyncIterator[str]]:
        kwargs = self.build_request(system_prompt, messages, tools)
        logger.info(
            f"Requesting {self.model} from {self.base_url} "
            f"with {len(messages)} messages and {len(tools or [])} tools"
        )
        async with AsyncExitStack() as stack:
            try:
                response = await stack.enter_async_context(
                    self.client.chat.completions.with_streaming_response.create(**kwargs)
                )
            except APIError as e:
                raise UpstreamError(
                    f"{self.name} request failed: {e}",
                    status_code=getattr(e, "status_code", None),
                ) from e
            yield response.iter_lines()

    async def decode(self, lines: AsyncIterator[str]) -> AsyncIterator[StreamChunk]:
        async for payload in data_payloads(lines):
            message = error_message(payload)
            if message is not None:
                raise UpstreamError(f"{self.name} stream error: {message}")
            chunk = chunk_from_payload(payload)
            if chunk is not None:
                yield chunk


class OpenAIProvider(OpenAICompatibleProvider):
    """The OpenAI API itself, keyed by ``OPENAI_API_KEY``."""

    name = "openai"
    api_key_env = "OPENAI_API_KEY"
    default_model = "gpt-4o-mini"
    default_base_url = OPENAI_BASE_URL
