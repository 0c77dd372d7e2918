"""Google Gemini completion provider."""

import logging
from typing import AsyncIterator

import httpx
from google import genai
from google.genai import errors, types

from app.core.config import settings
from app.core.errors import UpstreamError
from app.services.llm.base import BaseLLMProvider, ModelMessage

logger = logging.getLogger(__name__)

_GEMINI_ROLES = {"user": "user", "assistant": "model"}


class GeminiProvider(BaseLLMProvider):
    name = "gemini"

    def __init__(self, model: str | None = None):
        self.model = model or settings.llm_model
        self._client: genai.Client | None = None

    def _get_client(self) -> genai.Client:
        if not settings.gemini_api_key:
            raise UpstreamError("Gemini API key not configured", provider=self.name)
        if self._client is None:
            self._client = genai.Client(api_key=settings.gemini_api_key)
        return self._client

    async def stream(self, system: str, messages: list[ModelMessage]) -> AsyncIterator[str]:
        client = self._get_client()
        contents = [
            types.Content(
                role=_GEMINI_ROLES[m.role],
                parts=[types.Part(text=text) for text in m.parts],
            )
            for m in messages
        ]
        config = types.GenerateContentConfig(system_instruction=system)

        response = None
        try:
            response = await client.aio.models.generate_content_stream(
                model=self.model,
                contents=contents,
                config=config,
            )
            async for chunk in response:
                if chunk.text:
                    yield chunk.text
        except errors.APIError as e:
            logger.debug(f"Gemini API error: {e}")
            raise UpstreamError(f"Gemini API error {e.code}: {e.message}", provider=self.name) from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Gemini network error: {e}", provider=self.name) from e
        finally:
            if response is not None:
                await response.aclose()
