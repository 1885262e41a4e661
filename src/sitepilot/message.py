import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, PrivateAttr, field_serializer, field_validator


class Role(Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"


class Message(BaseModel):
    role: Role
    content: str

    @field_serializer('role')
    def serialize_role(self, role: Role, _info) -> str:
        return role.value


class ChatRequest(BaseModel):
    """Body posted by the browser: the full history, every call."""

    messages: list[Message]

    @field_validator("messages")
    @classmethod
    def no_system_messages(cls, messages: list[Message]) -> list[Message]:
        for m in messages:
            if m.role is Role.SYSTEM:
                raise ValueError("system messages are injected by the server")
        return messages


class ToolInvocation(BaseModel):
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class TurnFrozenError(RuntimeError):
    """Raised when mutating a turn that has already completed."""


class Turn(BaseModel):
    """One message in a chat session transcript.

    Content is append-only while the turn streams. The tool-call list is
    written once, when the turn completes.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: Role
    content: str = ""
    tool_calls: list[ToolInvocation] | None = None
    streaming: bool = False
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    _frozen: bool = PrivateAttr(default=False)

    @field_serializer('role')
    def serialize_role(self, role: Role, _info) -> str:
        return role.value

    @property
    def frozen(self) -> bool:
        return self._frozen

    def append(self, delta: str) -> None:
        if self._frozen:
            raise TurnFrozenError(f"Turn {self.id} is frozen")
        self.content += delta

    def replace_content(self, content: str) -> None:
        if self._frozen:
            raise TurnFrozenError(f"Turn {self.id} is frozen")
        self.content = content

    def attach_tool_calls(self, tool_calls: list[ToolInvocation]) -> None:
        if self.tool_calls is not None:
            raise TurnFrozenError(f"Tool calls for turn {self.id} already set")
        self.tool_calls = list(tool_calls)

    def freeze(self) -> None:
        self.streaming = False
        self._frozen = True

    def to_message(self) -> Message:
        return Message(role=self.role, content=self.content)
