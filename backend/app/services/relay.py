"""Chat relay - forwards a conversation to the completion provider and streams the reply.

The relay is stateless: every call receives the full conversation it must
continue. The persona prompt is injected here and never appears as a
visible message. A call ends in exactly one of three ways:

- `finish` chunk after all text deltas
- `error` chunk (UpstreamError or TimeoutError), no retry
- abort: the caller cancelled or went away, nothing more is emitted
"""

import asyncio
import logging
from typing import Any, AsyncIterator

from pydantic import ValidationError

from app.core.cancellation import CancellationToken, DeadlineExceeded, next_or_abort
from app.core.config import settings
from app.core.errors import AbortedError, InvalidConversationError, RelayTimeoutError, UpstreamError
from app.models.chunks import ErrorChunk, FinishChunk, StreamChunk, TextDeltaChunk
from app.models.message import ChatRequest, Message, part_text
from app.services.llm.base import BaseLLMProvider, ModelMessage

logger = logging.getLogger(__name__)


def _describe_validation_error(error: ValidationError) -> str:
    problems = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "body"
        problems.append(f"{loc}: {err['msg']}")
    return "; ".join(problems)


def parse_chat_request(payload: Any) -> list[Message]:
    """Validate a raw request body into an ordered, non-empty list of messages."""
    try:
        request = ChatRequest.model_validate(payload)
    except ValidationError as e:
        raise InvalidConversationError(_describe_validation_error(e)) from e
    # Also reject conversations with nothing to continue
    convert_to_model_messages(request.messages)
    return request.messages


def convert_to_model_messages(messages: list[Message]) -> tuple[list[ModelMessage], list[str]]:
    """Split a conversation into provider turns and extra system instructions.

    User and assistant messages become turns with their text parts kept in
    order. System messages are not turns; their text is returned separately
    so it can follow the persona prompt.
    """
    if not messages:
        raise InvalidConversationError("messages: conversation is empty")

    turns: list[ModelMessage] = []
    system_texts: list[str] = []
    for message in messages:
        texts = [part_text(p) for p in message.parts]
        if message.role == "system":
            system_texts.append("".join(texts))
        else:
            turns.append(ModelMessage(role=message.role, parts=texts))

    if not turns:
        raise InvalidConversationError("messages: no user or assistant turns to continue")
    return turns, system_texts


class ChatRelay:
    """Relays one conversation per call to a completion provider."""

    def __init__(
        self,
        provider: BaseLLMProvider,
        system_prompt: str | None = None,
        max_duration: float | None = None,
    ):
        self.provider = provider
        self.system_prompt = system_prompt if system_prompt is not None else settings.system_prompt
        self.max_duration = max_duration if max_duration is not None else settings.max_duration

    def _build_system_instruction(self, extra: list[str]) -> str:
        return "\n\n".join([self.system_prompt, *[t for t in extra if t]])

    async def stream(
        self, messages: list[Message], token: CancellationToken | None = None
    ) -> AsyncIterator[StreamChunk]:
        """Yield text deltas followed by one terminal chunk.

        Raises InvalidConversationError before contacting the provider if the
        conversation cannot be continued. Task cancellation (client
        disconnect) is re-raised after the upstream stream is closed.
        """
        turns, extra_system = convert_to_model_messages(messages)
        system = self._build_system_instruction(extra_system)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.max_duration
        upstream = self.provider.stream(system, turns)
        logger.info(
            f"Relaying conversation to {self.provider.name}: "
            f"{len(turns)} turns, limit {self.max_duration}s"
        )

        # Stays None when the call is aborted: token, task cancel or the
        # consumer closing this generator
        terminal: StreamChunk | None = None
        deltas = 0
        try:
            while True:
                try:
                    delta = await next_or_abort(upstream, token, deadline - loop.time())
                except StopAsyncIteration:
                    terminal = FinishChunk()
                    break
                if delta:
                    deltas += 1
                    yield TextDeltaChunk(text=delta)
        except AbortedError:
            return
        except DeadlineExceeded:
            error = RelayTimeoutError(
                f"Chat exceeded the maximum duration of {self.max_duration:g}s",
                limit=self.max_duration,
            )
            logger.warning(f"{error} after {deltas} deltas")
            terminal = ErrorChunk.from_error(error)
        except UpstreamError as e:
            logger.error(f"Upstream error from {e.provider}: {e}")
            terminal = ErrorChunk.from_error(e)
        except Exception as e:
            logger.exception(f"Unexpected provider failure: {e}")
            terminal = ErrorChunk.from_error(UpstreamError(str(e), provider=self.provider.name))
        finally:
            await upstream.aclose()
            if terminal is None:
                logger.info(f"Chat aborted after {deltas} deltas")

        if isinstance(terminal, FinishChunk):
            logger.info(f"Chat finished after {deltas} deltas")
        yield terminal
