"""Transports that carry a conversation to the relay and bring chunks back."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator

import httpx
from pydantic import ValidationError

from app.core.cancellation import CancellationToken, await_or_abort, next_or_abort
from app.core.config import settings
from app.core.errors import AbortedError, InvalidConversationError, UpstreamError
from app.models.chunks import StreamChunk, parse_sse_line
from app.models.message import ChatRequest, Message
from app.services.relay import ChatRelay

logger = logging.getLogger(__name__)


class BaseChatTransport(ABC):
    @abstractmethod
    async def stream(self, messages: list[Message], token: CancellationToken) -> AsyncIterator[StreamChunk]:
        """Send the conversation and yield chunks in emission order.

        Stops quietly once `token` is cancelled. Failures that happen before
        a terminal chunk arrives are raised as RelayError subclasses.
        """
        ...


class RelayTransport(BaseChatTransport):
    """In-process transport bound directly to a ChatRelay."""

    def __init__(self, relay: ChatRelay):
        self.relay = relay

    async def stream(self, messages: list[Message], token: CancellationToken) -> AsyncIterator[StreamChunk]:
        async for chunk in self.relay.stream(messages, token):
            yield chunk


class HttpChatTransport(BaseChatTransport):
    """Talks to the relay endpoint over HTTP and decodes its SSE body.

    Every network wait, from sending the request to reading each line, is
    raced against the token, so a cancel closes the connection immediately.
    """

    def __init__(self, url: str | None = None, client: httpx.AsyncClient | None = None):
        self.url = url or settings.relay_url
        self._client = client

    async def stream(self, messages: list[Message], token: CancellationToken) -> AsyncIterator[StreamChunk]:
        if token.cancelled:
            return

        payload = ChatRequest(messages=messages).model_dump(mode="json")
        # No client-side timeout: the relay enforces the duration ceiling
        client = self._client or httpx.AsyncClient(timeout=None)
        response: httpx.Response | None = None
        try:
            request = client.build_request("POST", self.url, json=payload)
            send_task = asyncio.ensure_future(client.send(request, stream=True))
            try:
                response = await await_or_abort(send_task, token)
            except AbortedError:
                # Headers may have landed just as the token fired
                if send_task.done() and not send_task.cancelled() and send_task.exception() is None:
                    response = send_task.result()
                logger.info("Chat request cancelled before the relay replied")
                return

            if response.is_error:
                try:
                    await await_or_abort(response.aread(), token)
                except AbortedError:
                    return
                if response.status_code == 400:
                    raise InvalidConversationError(_error_detail(response))
                raise UpstreamError(f"Relay returned HTTP {response.status_code}", provider="relay")

            lines = response.aiter_lines()
            while True:
                try:
                    line = await next_or_abort(lines, token)
                except (StopAsyncIteration, AbortedError):
                    return
                try:
                    chunk = parse_sse_line(line)
                except ValidationError as e:
                    raise UpstreamError(f"Malformed chunk from relay: {line!r}", provider="relay") from e
                if chunk is not None:
                    yield chunk
        except httpx.HTTPError as e:
            logger.error(f"Relay request to {self.url} failed: {e}")
            raise UpstreamError(f"Relay request failed: {e}", provider="relay") from e
        finally:
            if response is not None:
                await response.aclose()
            if self._client is None:
                await client.aclose()


def _error_detail(response: httpx.Response) -> str:
    try:
        detail = response.json().get("detail")
    except ValueError:
        return response.text or "Invalid request"
    if isinstance(detail, dict):
        return detail.get("message", str(detail))
    return str(detail)
