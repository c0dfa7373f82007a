"""OpenAI (and OpenAI-compatible) chat client wrapper."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable

from openai import AsyncOpenAI

from llm.base import BaseLLMClient

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 768


class OpenAIClient(BaseLLMClient):
    """Chat Completions client used for personas, moderation and the text pipeline.

    OpenRouter exposes the same API, so it is served by this class with a
    different ``base_url``. Plain completions go through the chat endpoint
    as a single user message.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        base_url: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        if not api_key:
            raise ValueError("LLM API key must be configured for OpenAI client.")

        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        self._model = model
        self._max_tokens = max_tokens

    async def complete(self, prompt: str, *, temperature: float = 0.1) -> str:
        content = await self.chat([{"role": "user", "content": prompt}], temperature=temperature)
        if not content.strip():
            raise ValueError("No response from LLM")
        return content

    async def chat(
        self,
        messages: Iterable[dict[str, str]],
        *,
        temperature: float = 0.1,
    ) -> str:
        response = await self._client.chat.completions.create(
            model=self._model,
            messages=list(messages),
            temperature=temperature,
            max_tokens=self._max_tokens,
        )
        choice = response.choices[0]
        if choice.finish_reason == "length":
            LOGGER.warning("Completion from %s was cut off at %s tokens", self._model, self._max_tokens)
        return choice.message.content or ""

    async def stream_chat(
        self,
        messages: Iterable[dict[str, str]],
        *,
        temperature: float = 0.1,
    ) -> AsyncIterator[str]:
        stream = await self._client.chat.completions.create(
            model=self._model,
            messages=list(messages),
            temperature=temperature,
            max_tokens=self._max_tokens,
            stream=True,
        )

        async for event in stream:
            if not event.choices:
                continue
            fragment = event.choices[0].delta.content
            if fragment:
                yield fragment
