"""HTTP endpoint that streams normalized events as Server-Sent Events.

Example::

    from sitepilot import HandlerConfig, create_app, define_tool

    app = create_app(HandlerConfig(
        prompt="You are the assistant for Acme Dance Studio.",
        tools=[define_tool(
            "navigate", "Scroll to a section of the page",
            properties={"section": {"type": "string", "description": "Section id"}},
            required=["section"],
        )],
    ))
"""

import asyncio
import logging
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import ValidationError

from sitepilot.config import HandlerConfig
from sitepilot.decoder import UpstreamDecoder
from sitepilot.message import ChatRequest, Message
from sitepilot.prompt import resolve_system_prompt
from sitepilot.providers import UpstreamProvider
from sitepilot.sse import SSE_HEADERS, sse_generator
from sitepilot.tools import ToolRegistry

logger = logging.getLogger(__name__)


class ChatHandler:
    """Serves one configured assistant.

    The handler is stateless between requests: every POST carries the
    full history and gets its own decoder stream.

    Args:
        config: Provider, prompt and tool configuration.
        provider: Prebuilt provider, overriding ``config.provider``.
    """

    def __init__(
        self,
        config: HandlerConfig,
        provider: UpstreamProvider | None = None,
    ):
        self.config = config
        self.tools = ToolRegistry(config.tools)
        self.provider = provider or config.build_provider()
        self.system_prompt = resolve_system_prompt(config.prompt)
        self.decoder = UpstreamDecoder(
            self.provider,
            self.system_prompt,
            self.tools,
            idle_timeout=config.idle_timeout,
        )

    async def _sse(self, messages: list[Message]) -> AsyncIterator[str]:
        events = self.decoder.stream(messages)
        try:
            async for frame in sse_generator(events):
                yield frame
        except asyncio.CancelledError:
            logger.info("Client disconnected, closing upstream stream")
            raise
        finally:
            await events.aclose()

    async def handle(self, request: Request) -> Response:
        if not self.provider.has_credentials():
            message = self.provider.missing_credentials_message()
            logger.error(message)
            return JSONResponse({"error": message}, status_code=500)

        try:
            body = ChatRequest.model_validate_json(await request.body())
        except ValidationError as e:
            logger.warning(f"Rejected chat request: {e}")
            return JSONResponse({"error": "Invalid request body"}, status_code=400)

        return StreamingResponse(
            self._sse(body.messages),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )


def create_app(
    config: HandlerConfig,
    path: str = "/api/chat",
    provider: UpstreamProvider | None = None,
) -> FastAPI:
    """Build a FastAPI app exposing the chat endpoint at ``path``."""
    handler = ChatHandler(config, provider=provider)
    app = FastAPI(title="sitepilot")
    app.add_api_route(path, handler.handle, methods=["POST"])
    app.state.chat_handler = handler
    return app
