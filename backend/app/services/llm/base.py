"""Abstract completion provider interface. All providers must implement this."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator


@dataclass
class ModelMessage:
    role: str  # "user" | "assistant"
    parts: list[str] = field(default_factory=list)


class BaseLLMProvider(ABC):
    name = "base"

    @abstractmethod
    async def stream(self, system: str, messages: list[ModelMessage]) -> AsyncIterator[str]:
        """Stream a completion as text deltas.

        Implementations are async generators. Provider failures must be
        raised as UpstreamError. Closing the generator stops the upstream call.
        """
        ...
