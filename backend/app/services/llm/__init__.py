"""Completion provider factory."""

from app.core.config import settings
from app.services.llm.base import BaseLLMProvider, ModelMessage

__all__ = ["BaseLLMProvider", "ModelMessage", "get_llm_provider"]


def get_llm_provider(model: str | None = None) -> BaseLLMProvider:
    """Return the configured completion provider, optionally overriding its model."""
    if settings.llm_provider == "gemini":
        from app.services.llm.gemini import GeminiProvider
        return GeminiProvider(model=model)
    raise ValueError(f"Unknown LLM provider: {settings.llm_provider}")
