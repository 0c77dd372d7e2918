"""Stream chunks emitted by the chat relay and their server-sent event framing.

Each chunk travels as one SSE event (`data: <json>` followed by a blank
line). After the terminal chunk the relay sends `data: [DONE]`.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from app.core.errors import RelayError

DONE_MARKER = "[DONE]"


class TextDeltaChunk(BaseModel):
    type: Literal["text-delta"] = "text-delta"
    text: str


class FinishChunk(BaseModel):
    type: Literal["finish"] = "finish"


class ErrorChunk(BaseModel):
    type: Literal["error"] = "error"
    kind: str
    message: str

    @classmethod
    def from_error(cls, error: RelayError) -> "ErrorChunk":
        return cls(kind=error.kind, message=str(error))


StreamChunk = Annotated[
    Union[TextDeltaChunk, FinishChunk, ErrorChunk],
    Field(discriminator="type"),
]

_chunk_adapter: TypeAdapter[StreamChunk] = TypeAdapter(StreamChunk)


def is_terminal(chunk: StreamChunk) -> bool:
    return isinstance(chunk, (FinishChunk, ErrorChunk))


def encode_sse(chunk: StreamChunk) -> str:
    return f"data: {chunk.model_dump_json()}\n\n"


def encode_sse_done() -> str:
    return f"data: {DONE_MARKER}\n\n"


def decode_chunk(data: str | bytes) -> StreamChunk:
    """Parse one JSON chunk. Raises pydantic.ValidationError if malformed."""
    return _chunk_adapter.validate_json(data)


def parse_sse_line(line: str) -> StreamChunk | None:
    """Decode one line of an SSE body.

    Returns None for blank lines, comments, non-data fields and the
    `[DONE]` marker.
    """
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if not data or data == DONE_MARKER:
        return None
    return decode_chunk(data)
