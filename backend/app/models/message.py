"""Conversation messages as exchanged between the chat UI and the relay."""

import uuid
from typing import Literal

from pydantic import BaseModel, Field

Role = Literal["user", "assistant", "system"]


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


# Only text parts are accepted. Unknown part types fail validation instead of
# being dropped; widen this to a discriminated union when new kinds land.
Part = TextPart


class Message(BaseModel):
    id: str = Field(min_length=1)
    role: Role
    parts: list[Part] = Field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(part_text(p) for p in self.parts)


class ChatRequest(BaseModel):
    messages: list[Message] = Field(min_length=1)


def part_text(part: Part) -> str:
    match part:
        case TextPart(text=text):
            return text
    raise TypeError(f"Unsupported message part: {part!r}")


def new_message(role: Role, text: str | None = None) -> Message:
    """Create a message with a fresh id and, optionally, one text part."""
    parts = [TextPart(text=text)] if text is not None else []
    return Message(id=uuid.uuid4().hex, role=role, parts=parts)
