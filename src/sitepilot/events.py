"""Normalized stream events exchanged between the decoder and the assembler.

Every turn is a sequence of zero or more :class:`TextEvent` and
:class:`ToolEvent` objects followed by exactly one terminal event,
either :class:`DoneEvent` or :class:`ErrorEvent`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


@dataclass
class StreamEvent:
    """Base for all streaming events."""

    type: ClassVar[str] = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type}


@dataclass
class TextEvent(StreamEvent):
    """Text delta from the model, forwarded as soon as it arrives."""

    type: ClassVar[str] = "text"

    content: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "content": self.content}


@dataclass
class ToolEvent(StreamEvent):
    """A complete tool invocation with parsed arguments."""

    type: ClassVar[str] = "tool"

    name: str = ""
    args: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "name": self.name, "args": self.args}


@dataclass
class DoneEvent(StreamEvent):
    """Final event of a successful turn."""

    type: ClassVar[str] = "done"


@dataclass
class ErrorEvent(StreamEvent):
    """Final event of a failed turn. ``message`` is safe to show users."""

    type: ClassVar[str] = "error"

    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "message": self.message}


def is_terminal(event: StreamEvent) -> bool:
    return isinstance(event, (DoneEvent, ErrorEvent))


def event_from_dict(data: Any) -> StreamEvent:
    """Build an event from its wire object.

    Raises:
        ValueError: If the object is not a known event or is missing a
            required field.
    """
    if not isinstance(data, dict):
        raise ValueError(f"Expected an object, got {type(data).__name__}")
    kind = data.get("type")
    if kind == "text":
        content = data.get("content")
        if not isinstance(content, str):
            raise ValueError("text event requires a string 'content'")
        return TextEvent(content=content)
    if kind == "tool":
        name = data.get("name")
        args = data.get("args", {})
        if not isinstance(name, str) or not name:
            raise ValueError("tool event requires a non-empty 'name'")
        if not isinstance(args, dict):
            raise ValueError("tool event 'args' must be an object")
        return ToolEvent(name=name, args=args)
    if kind == "done":
        return DoneEvent()
    if kind == "error":
        return ErrorEvent(message=str(data.get("message", "")))
    raise ValueError(f"Unknown event type: {kind!r}")
