import asyncio
import json
from contextlib import asynccontextmanager

import pytest

from sitepilot.events import StreamEvent
from sitepilot.message import Message
from sitepilot.providers.base import UpstreamError
from sitepilot.providers.openai_compat import OpenAICompatibleProvider
from sitepilot.tools import ToolRegistry, define_tool


# ---------------------------------------------------------------------------
# OpenAI-style frame builders
# ---------------------------------------------------------------------------

DONE_FRAME = "data: [DONE]"


def text_frame(content: str) -> str:
    """One ``data:`` line carrying a text delta."""
    return "data: " + json.dumps({
        "id": "gen-1",
        "object": "chat.completion.chunk",
        "choices": [{"index": 0, "delta": {"content": content}}],
    })


def tool_frame(
    index: int,
    name: str | None = None,
    arguments: str | None = None,
    call_id: str | None = None,
) -> str:
    """One ``data:`` line carrying a single tool-call fragment."""
    function = {}
    if name is not None:
        function["name"] = name
    if arguments is not None:
        function["arguments"] = arguments
    call = {"index": index, "function": function}
    if call_id is not None:
        call["id"] = call_id
        call["type"] = "function"
    return "data: " + json.dumps({
        "id": "gen-1",
        "object": "chat.completion.chunk",
        "choices": [{"index": 0, "delta": {"tool_calls": [call]}}],
    })


def sse_body(lines: list[str]) -> bytes:
    """Join frames the way a provider sends them: blank line after each."""
    return "".join(f"{line}\n\n" for line in lines).encode()


# ---------------------------------------------------------------------------
# Scripted provider
# ---------------------------------------------------------------------------

class ScriptedProvider(OpenAICompatibleProvider):
    """OpenAI-compatible provider that replays pre-queued lines.

    Decoding is the real OpenAI-compatible decoder; only the network
    is replaced. No network calls.

    Args:
        lines: Raw lines to replay.
        fail_with: Raise this from ``open_stream`` instead of streaming.
        stall_after: Stop producing lines (forever) after this many.
    """

    def __init__(
        self,
        lines: list[str] | None = None,
        fail_with: Exception | None = None,
        stall_after: int | None = None,
        api_key: str | None = "test-key",
    ):
        super().__init__(model="mock-model", api_key=api_key)
        self.lines = list(lines or [])
        self.fail_with = fail_with
        self.stall_after = stall_after
        self.call_log: list[dict] = []
        self.closed = False

    @asynccontextmanager
    async def open_stream(self, system_prompt, messages, tools=None):
        self.call_log.append({
            "system_prompt": system_prompt,
            "messages": messages,
            "tools": tools,
        })
        if self.fail_with is not None:
            raise self.fail_with
        try:
            yield self._replay()
        finally:
            self.closed = True

    async def _replay(self):
        for i, line in enumerate(self.lines):
            if self.stall_after is not None and i >= self.stall_after:
                await asyncio.Event().wait()
            yield line


# ---------------------------------------------------------------------------
# Scripted transport (client side)
# ---------------------------------------------------------------------------

class ScriptedTransport:
    """Transport that yields pre-queued events for each turn.

    When ``hold`` is set, the stream blocks after its events until the
    event is released, simulating a response that is still open.
    """

    def __init__(self, *turns: list[StreamEvent]):
        self.turns = [list(t) for t in turns]
        self.hold: asyncio.Event | None = None
        self.requests: list[list[Message]] = []
        self.closed = 0

    async def stream(self, messages):
        self.requests.append(list(messages))
        events = self.turns.pop(0) if self.turns else []
        try:
            for event in events:
                await asyncio.sleep(0)
                yield event
            if self.hold is not None:
                await self.hold.wait()
        finally:
            self.closed += 1


class FailingTransport:
    def __init__(self, error: Exception):
        self.error = error

    async def stream(self, messages):
        raise self.error
        yield  # pragma: no cover


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def page_tools():
    """A registry of the usual page tools, with handlers that record calls."""
    calls: list[tuple[str, dict]] = []

    def recorder(name):
        def handler(args):
            calls.append((name, args))
        return handler

    registry = ToolRegistry([
        define_tool(
            "navigate", "Scroll to a section of the page",
            properties={"section": {"type": "string", "description": "Section id"}},
            required=["section"],
            handler=recorder("navigate"),
        ),
        define_tool(
            "filter_projects", "Filter the project grid",
            properties={
                "category": {
                    "type": "string",
                    "description": "Category to show",
                    "enum": ["web", "mobile", "all"],
                },
            },
            required=["category"],
            handler=recorder("filter_projects"),
        ),
    ])
    registry.calls = calls
    return registry


@pytest.fixture
def upstream_error():
    return UpstreamError("boom", status_code=502)
