"""Anthropic Messages API, streamed over ``httpx``.

Each content block has an ``index``. A ``tool_use`` block announces the
tool name in ``content_block_start``; its input then arrives as
``input_json_delta`` fragments at the same index.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sitepilot.message import Message
from sitepilot.providers.base import (
    HTTPStreamingProvider,
    UpstreamError,
    data_payloads,
    error_message,
)
from sitepilot.streaming import StreamChunk, ToolCallFragment
from sitepilot.tools import ToolRegistry

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


def chunk_from_event(payload: dict) -> StreamChunk | None:
    kind = payload.get("type")
    index = payload.get("index")
    if not isinstance(index, int):
        index = 0

    if kind == "content_block_start":
        block = payload.get("content_block")
        if not isinstance(block, dict):
            return None
        if block.get("type") == "tool_use":
            return StreamChunk(tool_call_fragments=[ToolCallFragment(
                index=index, call_id=block.get("id"), name=block.get("name"),
            )])
        if block.get("type") == "text" and block.get("text"):
            return StreamChunk(content_delta=block["text"])
        return None

    if kind == "content_block_delta":
        delta = payload.get("delta")
        if not isinstance(delta, dict):
            return None
        if delta.get("type") == "text_delta" and delta.get("text"):
            return StreamChunk(content_delta=delta["text"])
        if delta.get("type") == "input_json_delta":
            return StreamChunk(tool_call_fragments=[ToolCallFragment(
                index=index, arguments_delta=delta.get("partial_json"),
            )])
        return None

    if kind == "message_delta":
        delta = payload.get("delta")
        if isinstance(delta, dict) and delta.get("stop_reason"):
            return StreamChunk(finish_reason=delta["stop_reason"])
    return None


class AnthropicProvider(HTTPStreamingProvider):
    name = "anthropic"
    api_key_env = "ANTHROPIC_API_KEY"
    default_model = "claude-3-5-haiku-latest"
    default_base_url = "https://api.anthropic.com/v1"

    # the Messages API requires an explicit output cap
    default_max_tokens = 1024

    def build_request(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: ToolRegistry | None = None,
    ) -> dict:
        body: dict = {
            "model": self.model,
            "system": system_prompt,
            "messages": [m.model_dump() for m in messages],
            "max_tokens": self.max_tokens or self.default_max_tokens,
            "temperature": self.temperature,
            "stream": True,
        }
        if tools:
            body["tools"] = tools.to_anthropic()
        return body

    def build_headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
            "accept": "text/event-stream",
        }

    @asynccontextmanager
    async def open_stream(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: ToolRegistry | None = None,
    ) -> AsyncIterator[AsyncIterator[str]]:
        body = self.build_request(system_prompt, messages, tools)
        logger.info(
            f"Requesting {self.model} from {self.base_url} "
            f"with {len(messages)} messages and {len(tools or [])} tools"
        )
        async with self._post_stream(
            f"{self.base_url}/messages", self.build_headers(), body,
        ) as lines:
            yield lines

    async def decode(self, lines: AsyncIterator[str]) -> AsyncIterator[StreamChunk]:
        # tool_use block index -> whether any input JSON text has arrived
        tool_blocks: dict[int, bool] = {}
        async for payload in data_payloads(lines):
            message = error_message(payload)
            if message is not None:
                raise UpstreamError(f"{self.name} stream error: {message}")
            kind = payload.get("type")
            if kind == "message_stop":
                return
            if kind == "content_block_stop":
                index = payload.get("index")
                if tool_blocks.pop(index, True) is False:
                    # a tool with no input streams only an empty partial_json
                    yield StreamChunk(tool_call_fragments=[
                        ToolCallFragment(index=index, arguments_delta="{}"),
                    ])
                continue
            chunk = chunk_from_event(payload)
            if chunk is None:
                continue
            for fragment in chunk.tool_call_fragments or []:
                if fragment.name:
                    tool_blocks.setdefault(fragment.index, False)
                if fragment.arguments_delta:
                    tool_blocks[fragment.index] = True
            yield chunk
