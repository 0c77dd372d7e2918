"""Client-side chat session: owns a conversation and drives one relay call at a time.

States and transitions:

    idle/error --submit--> submitting --first chunk--> streaming --finish--> idle
    submitting/streaming --cancel--> idle
    any --failure--> error

A finalized assistant message is always complete. Partial text is kept in
`draft` while streaming and discarded on cancel or error.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Iterator

from app.client.transport import BaseChatTransport
from app.core.cancellation import CancellationToken
from app.core.errors import RelayError, UpstreamError
from app.models.chunks import ErrorChunk, FinishChunk, StreamChunk, TextDeltaChunk
from app.models.message import Message, new_message

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    STREAMING = "streaming"
    ERROR = "error"


@dataclass
class ChatErrorInfo:
    kind: str
    message: str


class Conversation:
    """Ordered, append-only sequence of finalized messages."""

    def __init__(self, messages: Iterable[Message] = ()):
        self._messages: list[Message] = list(messages)

    def append(self, message: Message) -> None:
        self._messages.append(message)

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)


Listener = Callable[["ChatSession"], None]


class ChatSession:
    def __init__(self, transport: BaseChatTransport, conversation: Conversation | None = None):
        self.transport = transport
        self.conversation = conversation if conversation is not None else Conversation()
        self.state = SessionState.IDLE
        self.draft: Message | None = None
        self.error: ChatErrorInfo | None = None
        self._token: CancellationToken | None = None
        self._listeners: list[Listener] = []

    @property
    def messages(self) -> tuple[Message, ...]:
        return self.conversation.messages

    @property
    def in_flight(self) -> bool:
        return self.state in (SessionState.SUBMITTING, SessionState.STREAMING)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call `listener` on every state or draft change. Returns an unsubscribe function."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def _set_state(self, state: SessionState) -> None:
        self.state = state
        self._notify()

    async def submit(self, text: str) -> bool:
        """Send `text` as a user message and stream the reply.

        Returns False without touching anything if the input is blank or a
        call is already in flight. Otherwise runs the call to completion
        (finish, error or cancel) and returns True.
        """
        if not text.strip() or self.in_flight:
            return False

        self.conversation.append(new_message("user", text))
        token = CancellationToken()
        self._token = token
        self.error = None
        self.draft = None
        self._set_state(SessionState.SUBMITTING)

        stream = self.transport.stream(list(self.conversation), token)
        try:
            async for chunk in stream:
                if token.cancelled:
                    break
                if self._apply(chunk):
                    break
            else:
                if not token.cancelled:
                    self._fail(UpstreamError.kind, "Stream ended before completion")
        except RelayError as e:
            if not token.cancelled:
                logger.warning(f"Chat call failed ({e.kind}): {e}")
                self._fail(e.kind, str(e))
        finally:
            await stream.aclose()
            if self._token is token:
                self._token = None
        return True

    def cancel(self) -> bool:
        """Abort the in-flight call, discarding partial output. No-op when idle."""
        if not self.in_flight or self._token is None:
            return False
        self._token.cancel()
        self.draft = None
        self._set_state(SessionState.IDLE)
        logger.info("Chat cancelled by user")
        return True

    def _apply(self, chunk: StreamChunk) -> bool:
        """Apply one chunk. Returns True once the call has reached a terminal state."""
        match chunk:
            case TextDeltaChunk(text=text):
                if self.draft is None:
                    self.draft = new_message("assistant", text)
                    self._set_state(SessionState.STREAMING)
                else:
                    self.draft.parts[0].text += text
                    self._notify()
                return False
            case FinishChunk():
                message = self.draft if self.draft is not None else new_message("assistant")
                self.draft = None
                self.conversation.append(message)
                self._set_state(SessionState.IDLE)
                return True
            case ErrorChunk(kind=kind, message=message):
                logger.warning(f"Relay reported {kind}: {message}")
                self._fail(kind, message)
                return True
        raise TypeError(f"Unsupported stream chunk: {chunk!r}")

    def _fail(self, kind: str, message: str) -> None:
        self.draft = None
        self.error = ChatErrorInfo(kind=kind, message=message)
        self._set_state(SessionState.ERROR)
