"""Shared test fixtures for backend tests."""

import asyncio
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from app.models.message import Message, new_message
from app.services.llm.base import BaseLLMProvider, ModelMessage


class FakeProvider(BaseLLMProvider):
    """Provider that yields canned tokens, then optionally fails or hangs."""

    name = "fake"

    def __init__(self, tokens=("Hello", " from", " Zen"), delay=0.0, error=None, hang=False):
        self.tokens = list(tokens)
        self.delay = delay
        self.error = error
        self.hang = hang
        self.calls: list[tuple[str, list[ModelMessage]]] = []
        self.closed = False

    async def stream(self, system, messages):
        self.calls.append((system, messages))
        self.closed = False
        try:
            for token in self.tokens:
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield token
            if self.error is not None:
                raise self.error
            if self.hang:
                await asyncio.Event().wait()
        finally:
            self.closed = True


def user_conversation(text: str = "I feel anxious today") -> list[Message]:
    return [new_message("user", text)]


def chat_body(*messages: tuple[str, str]) -> dict:
    """Build a request body from (role, text) pairs."""
    return {
        "messages": [
            {"id": f"m{i}", "role": role, "parts": [{"type": "text", "text": text}]}
            for i, (role, text) in enumerate(messages)
        ]
    }


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def client(fake_provider):
    """FastAPI TestClient with the completion provider replaced by a fake."""
    with patch("app.api.chat.get_llm_provider", return_value=fake_provider):
        from app.main import app

        with TestClient(app) as c:
            yield c
