"""Streaming primitives for provider responses.

Providers decode their frames into :class:`StreamChunk` objects.  The
:class:`ToolCallAccumulator` reassembles tool calls whose name and
arguments arrive in fragments across multiple chunks, keyed by the
provider's per-turn slot index.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from sitepilot.message import ToolInvocation

logger = logging.getLogger(__name__)


@dataclass
class ToolCallFragment:
    """A fragment of a tool call from a streaming chunk."""

    index: int
    call_id: str | None = None
    name: str | None = None
    arguments_delta: str | None = None


@dataclass
class StreamChunk:
    """Normalised streaming chunk from any provider."""

    content_delta: str | None = None
    tool_call_fragments: list[ToolCallFragment] | None = None
    finish_reason: str | None = None


@dataclass
class PendingToolCall:
    """A tool call still being assembled."""

    id: str = ""
    name: str = ""
    arguments: str = ""


class ToolCallAccumulator:
    """Assembles complete tool calls from streaming fragments.

    Nothing is released until :meth:`finalize`, since the argument text
    is not valid JSON until the stream has ended.
    """

    def __init__(self) -> None:
        self._pending: dict[int, PendingToolCall] = {}

    @property
    def pending(self) -> dict[int, PendingToolCall]:
        return self._pending

    def feed(self, fragment: ToolCallFragment) -> None:
        if fragment.index not in self._pending:
            self._pending[fragment.index] = PendingToolCall()
        tc = self._pending[fragment.index]
        if fragment.call_id:
            tc.id = fragment.call_id
        if fragment.name:
            tc.name = fragment.name
        if fragment.arguments_delta:
            tc.arguments += fragment.arguments_delta

    def finalize(self) -> list[ToolInvocation]:
        """Return completed tool calls in slot-index order.

        Slots without a name or without argument text are dropped.
        Slots whose arguments do not parse to a JSON object are logged
        and dropped; the remaining slots are still returned.
        """
        completed = []
        for index in sorted(self._pending):
            tc = self._pending[index]
            if not tc.name or not tc.arguments:
                continue
            try:
                args = json.loads(tc.arguments)
            except json.JSONDecodeError as e:
                logger.warning(
                    f"Dropping tool call {tc.name} (slot {index}): "
                    f"invalid JSON arguments {tc.arguments!r}: {e}"
                )
                continue
            if not isinstance(args, dict):
                logger.warning(
                    f"Dropping tool call {tc.name} (slot {index}): "
                    f"arguments are not an object: {tc.arguments!r}"
                )
                continue
            completed.append(ToolInvocation(name=tc.name, args=args))
        return completed

    def clear(self) -> None:
        self._pending.clear()
