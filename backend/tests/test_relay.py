"""Tests for the chat relay service."""

import asyncio
import logging

import pytest

from app.core.cancellation import CancellationToken
from app.core.config import ZEN_PERSONA
from app.core.errors import InvalidConversationError, UpstreamError
from app.models.chunks import ErrorChunk, FinishChunk, TextDeltaChunk, is_terminal
from app.models.message import Message, TextPart, new_message
from app.services.relay import ChatRelay, convert_to_model_messages, parse_chat_request

from tests.conftest import FakeProvider, chat_body, user_conversation


async def _collect(relay: ChatRelay, messages, token=None) -> list:
    return [chunk async for chunk in relay.stream(messages, token)]


def test_stream_emits_deltas_then_finish():
    relay = ChatRelay(FakeProvider(), max_duration=5)
    chunks = asyncio.run(_collect(relay, user_conversation()))

    assert chunks == [
        TextDeltaChunk(text="Hello"),
        TextDeltaChunk(text=" from"),
        TextDeltaChunk(text=" Zen"),
        FinishChunk(),
    ]


def test_exactly_one_terminal_chunk_at_the_end():
    relay = ChatRelay(FakeProvider(tokens=["a", "", "b"]), max_duration=5)
    chunks = asyncio.run(_collect(relay, user_conversation()))

    assert [is_terminal(c) for c in chunks] == [False, False, True]
    # Empty deltas are not forwarded
    assert "".join(c.text for c in chunks[:-1]) == "ab"


def test_persona_prompt_injected_and_system_messages_appended():
    provider = FakeProvider()
    relay = ChatRelay(provider, max_duration=5)
    messages = [
        new_message("system", "The user prefers short answers."),
        new_message("user", "Hi"),
        new_message("assistant", "Hello!"),
        new_message("user", "How do I relax?"),
    ]
    asyncio.run(_collect(relay, messages))

    system, turns = provider.calls[0]
    assert system == ZEN_PERSONA + "\n\nThe user prefers short answers."
    assert [t.role for t in turns] == ["user", "assistant", "user"]
    assert turns[-1].parts == ["How do I relax?"]


def test_upstream_error_becomes_error_chunk():
    provider = FakeProvider(tokens=["Par"], error=UpstreamError("quota exceeded", provider="fake"))
    relay = ChatRelay(provider, max_duration=5)
    chunks = asyncio.run(_collect(relay, user_conversation()))

    assert chunks[0] == TextDeltaChunk(text="Par")
    assert chunks[-1] == ErrorChunk(kind="UpstreamError", message="quota exceeded")
    assert not any(isinstance(c, FinishChunk) for c in chunks)
    assert provider.closed


def test_unexpected_provider_exception_reported_as_upstream_error():
    relay = ChatRelay(FakeProvider(tokens=[], error=RuntimeError("socket exploded")), max_duration=5)
    chunks = asyncio.run(_collect(relay, user_conversation()))

    assert len(chunks) == 1
    assert chunks[0].kind == "UpstreamError"
    assert "socket exploded" in chunks[0].message


def test_timeout_yields_timeout_error_never_finish():
    provider = FakeProvider(tokens=["Breathe"], hang=True)
    relay = ChatRelay(provider, max_duration=0.05)
    chunks = asyncio.run(_collect(relay, user_conversation()))

    assert chunks[0] == TextDeltaChunk(text="Breathe")
    assert isinstance(chunks[-1], ErrorChunk)
    assert chunks[-1].kind == "TimeoutError"
    assert not any(isinstance(c, FinishChunk) for c in chunks)
    assert provider.closed


def test_timeout_covers_whole_call_not_each_delta():
    # Every delta arrives well within the limit but the total does not
    provider = FakeProvider(tokens=["x"] * 20, delay=0.02)
    relay = ChatRelay(provider, max_duration=0.1)
    chunks = asyncio.run(_collect(relay, user_conversation()))

    assert chunks[-1].kind == "TimeoutError"
    assert len(chunks) < 20


def test_cancel_token_stops_stream_without_terminal_chunk():
    async def scenario():
        provider = FakeProvider(tokens=["one", "two", "three"])
        relay = ChatRelay(provider, max_duration=5)
        token = CancellationToken()
        received = []
        async for chunk in relay.stream(user_conversation(), token):
            received.append(chunk)
            token.cancel()
        return provider, received

    provider, received = asyncio.run(scenario())
    assert received == [TextDeltaChunk(text="one")]
    assert provider.closed


def test_cancel_token_while_waiting_on_upstream():
    async def scenario():
        provider = FakeProvider(tokens=["Hi"], hang=True)
        relay = ChatRelay(provider, max_duration=5)
        token = CancellationToken()
        received = []

        async def consume():
            async for chunk in relay.stream(user_conversation(), token):
                received.append(chunk)

        task = asyncio.create_task(consume())
        while not received:
            await asyncio.sleep(0.01)
        token.cancel()
        await asyncio.wait_for(task, timeout=1)
        return provider, received

    provider, received = asyncio.run(scenario())
    assert received == [TextDeltaChunk(text="Hi")]
    assert provider.closed


def test_task_cancellation_closes_upstream():
    async def scenario():
        provider = FakeProvider(tokens=["Hi"], hang=True)
        relay = ChatRelay(provider, max_duration=5)
        received = []

        async def consume():
            async for chunk in relay.stream(user_conversation()):
                received.append(chunk)

        task = asyncio.create_task(consume())
        while not received:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return provider

    provider = asyncio.run(scenario())
    assert provider.closed


def test_empty_conversation_fails_before_upstream_call():
    provider = FakeProvider()
    relay = ChatRelay(provider, max_duration=5)

    with pytest.raises(InvalidConversationError):
        asyncio.run(_collect(relay, []))
    assert provider.calls == []


def test_convert_keeps_parts_in_order():
    message = Message(
        id="m1",
        role="user",
        parts=[TextPart(text="first"), TextPart(text="second")],
    )
    turns, system = convert_to_model_messages([message])
    assert turns[0].role == "user"
    assert turns[0].parts == ["first", "second"]
    assert system == []


def test_parse_chat_request_accepts_well_formed_body():
    messages = parse_chat_request(chat_body(("user", "hello"), ("assistant", "hi")))
    assert [m.role for m in messages] == ["user", "assistant"]
    assert messages[0].text == "hello"


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"messages": []},
        {"messages": "hello"},
        {"messages": [{"id": "m1", "role": "moderator", "parts": [{"type": "text", "text": "x"}]}]},
        {"messages": [{"id": "m1", "role": "user", "parts": [{"type": "image", "url": "x"}]}]},
        {"messages": [{"role": "user", "parts": [{"type": "text", "text": "no id"}]}]},
        chat_body(("system", "only instructions")),
    ],
)
def test_parse_chat_request_rejects_malformed_body(payload):
    with pytest.raises(InvalidConversationError) as exc_info:
        parse_chat_request(payload)
    assert exc_info.value.kind == "ValidationError"


def test_provider_timeout_error_is_not_mistaken_for_duration_limit():
    provider = FakeProvider(tokens=["Hi"], error=TimeoutError("read timed out"))
    relay = ChatRelay(provider, max_duration=5)
    chunks = asyncio.run(_collect(relay, user_conversation()))

    assert chunks[-1].kind == "UpstreamError"
    assert "read timed out" in chunks[-1].message


def test_consumer_closing_stream_is_logged_as_abort(caplog):
    async def scenario():
        provider = FakeProvider(tokens=["one", "two"])
        relay = ChatRelay(provider, max_duration=5)
        stream = relay.stream(user_conversation())
        first = await anext(stream)
        await stream.aclose()
        return provider, first

    with caplog.at_level(logging.INFO, logger="app.services.relay"):
        provider, first = asyncio.run(scenario())

    assert first == TextDeltaChunk(text="one")
    assert provider.closed
    assert any("Chat aborted" in r.getMessage() for r in caplog.records)


def test_token_abort_is_logged(caplog):
    async def scenario():
        relay = ChatRelay(FakeProvider(), max_duration=5)
        token = CancellationToken()
        token.cancel()
        return await _collect(relay, user_conversation(), token)

    with caplog.at_level(logging.INFO, logger="app.services.relay"):
        chunks = asyncio.run(scenario())

    assert chunks == []
    assert any("Chat aborted" in r.getMessage() for r in caplog.records)
