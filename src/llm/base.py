"""Shared abstractions for language model clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable


class BaseLLMClient(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    async def complete(self, prompt: str, *, temperature: float = 0.1) -> str:
        """Return a completion for the given prompt."""

    @abstractmethod
    async def chat(
        self,
        messages: Iterable[dict[str, str]],
        *,
        temperature: float = 0.1,
    ) -> str:
        """Return a chat-style completion."""

    async def stream_chat(
        self,
        messages: Iterable[dict[str, str]],
        *,
        temperature: float = 0.1,
    ) -> AsyncIterator[str]:
        """Yield the chat completion in fragments.

        Providers without streaming support deliver the whole reply as one fragment.
        """

        yield await self.chat(messages, temperature=temperature)
