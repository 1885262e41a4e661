"""Server-Sent Events framing for the normalized event stream."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator

from sitepilot.events import StreamEvent, event_from_dict

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def encode_event(event: StreamEvent) -> str:
    """Frame one event as a single ``data:`` line plus a blank line."""
    data = json.dumps(event.to_dict(), separators=(",", ":"))
    return f"{DATA_PREFIX}{data}\n\n"


async def sse_generator(
    event_stream: AsyncIterator[StreamEvent],
) -> AsyncIterator[str]:
    """Convert a StreamEvent async iterator into SSE-formatted strings."""
    async for event in event_stream:
        yield encode_event(event)


async def iter_lines(chunks: AsyncIterator[str]) -> AsyncIterator[str]:
    """Split arbitrarily sized text chunks into lines.

    A line split across two chunks is held back until its newline
    arrives. A trailing line without a newline is yielded at the end.
    """
    buffer = ""
    async for chunk in chunks:
        buffer += chunk
        *lines, buffer = buffer.split("\n")
        for line in lines:
            yield line.rstrip("\r")
    if buffer:
        yield buffer.rstrip("\r")


async def parse_sse_lines(
    lines: AsyncIterator[str],
) -> AsyncIterator[StreamEvent]:
    """Parse ``data:`` lines into events, skipping anything malformed."""
    async for line in lines:
        if not line.startswith(DATA_PREFIX):
            continue
        try:
            event = event_from_dict(json.loads(line[len(DATA_PREFIX):]))
        except ValueError as e:
            # json.JSONDecodeError is a ValueError too
            logger.debug(f"Skipping malformed event line {line!r}: {e}")
            continue
        yield event
