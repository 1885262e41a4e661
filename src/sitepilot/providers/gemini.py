"""Google Gemini ``streamGenerateContent``, streamed as SSE over ``httpx``.

Gemini does not fragment function calls: every ``functionCall`` part
arrives whole. Each one is extracted after the fact into a single
complete fragment on its own slot, so it still goes through the
accumulator and is released at the end of the turn like the others.
"""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sitepilot.message import Message, Role
from sitepilot.providers.base import (
    HTTPStreamingProvider,
    UpstreamError,
    data_payloads,
    error_message,
)
from sitepilot.streaming import StreamChunk, ToolCallFragment
from sitepilot.tools import ToolRegistry

logger = logging.getLogger(__name__)


class GeminiProvider(HTTPStreamingProvider):
    name = "gemini"
    api_key_env = "GOOGLE_GENERATIVE_AI_API_KEY"
    default_model = "gemini-2.0-flash"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"

    def build_request(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: ToolRegistry | None = None,
    ) -> dict:
        generation_config: dict = {"temperature": self.temperature}
        if self.max_tokens:
            generation_config["maxOutputTokens"] = self.max_tokens
        body: dict = {
            "contents": [
                {
                    "role": "model" if m.role is Role.ASSISTANT else "user",
                    "parts": [{"text": m.content}],
                }
                for m in messages
            ],
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "generationConfig": generation_config,
        }
        if tools:
            body["tools"] = [{"functionDeclarations": tools.to_gemini()}]
        return body

    def build_headers(self) -> dict[str, str]:
        return {
            "x-goog-api-key": self.api_key or "",
            "content-type": "application/json",
        }

    @asynccontextmanager
    async def open_stream(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: ToolRegistry | None = None,
    ) -> AsyncIterator[AsyncIterator[str]]:
        body = self.build_request(system_prompt, messages, tools)
        url = f"{self.base_url}/models/{self.model}:streamGenerateContent?alt=sse"
        logger.info(
            f"Requesting {self.model} from {self.base_url} "
            f"with {len(messages)} messages and {len(tools or [])} tools"
        )
        async with self._post_stream(url, self.build_headers(), body) as lines:
            yield lines

    async def decode(self, lines: AsyncIterator[str]) -> AsyncIterator[StreamChunk]:
        next_slot = 0
        async for payload in data_payloads(lines):
            message = error_message(payload)
            if message is not None:
                raise UpstreamError(f"{self.name} stream error: {message}")
            candidates = payload.get("candidates")
            if not isinstance(candidates, list) or not candidates:
                continue
            candidate = candidates[0]
            if not isinstance(candidate, dict):
                continue
            content = candidate.get("content")
            parts = content.get("parts") if isinstance(content, dict) else None

            text = ""
            fragments = []
            for part in parts if isinstance(parts, list) else []:
                if not isinstance(part, dict):
                    continue
                if isinstance(part.get("text"), str):
                    text += part["text"]
                call = part.get("functionCall")
                if isinstance(call, dict) and call.get("name"):
                    fragments.append(ToolCallFragment(
                        index=next_slot,
                        name=call["name"],
                        arguments_delta=json.dumps(call.get("args") or {}),
                    ))
                    next_slot += 1

            if text or fragments or candidate.get("finishReason"):
                yield StreamChunk(
                    content_delta=text or None,
                    tool_call_fragments=fragments or None,
                    finish_reason=candidate.get("finishReason"),
                )
