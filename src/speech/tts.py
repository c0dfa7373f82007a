"""Text-to-speech synthesis for the simulated caller voice."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Final

from openai import AsyncOpenAI, OpenAIError

from agents.errors import SynthesisFailedError
from config.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)

OUTPUT_SAMPLE_RATE: Final[int] = 24000


class BaseSynthesizer(ABC):
    """Interface for all text-to-speech synthesizers.

    Implementations return 16-bit little-endian mono PCM at ``OUTPUT_SAMPLE_RATE``.
    """

    @abstractmethod
    async def synthesize(self, text: str, voice: str | None = None) -> bytes:
        """Synthesize speech for the given text."""


class OpenAISynthesizer(BaseSynthesizer):
    """OpenAI speech endpoint returning raw PCM."""

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        api_key = settings.openai_api_key or settings.llm_api_key
        if not api_key:
            raise ValueError("OpenAI API key must be configured for OpenAISynthesizer.")

        self._client = AsyncOpenAI(api_key=api_key)
        self._model = settings.tts_model
        self._voice = settings.tts_voice

    async def synthesize(self, text: str, voice: str | None = None) -> bytes:
        try:
            response = await self._client.audio.speech.create(
                model=self._model,
                voice=voice or self._voice,
                input=text,
                response_format="pcm",
            )
        except OpenAIError as exc:
            raise SynthesisFailedError(f"OpenAI TTS failed: {exc}") from exc
        return response.content


def build_synthesizer(settings: Settings | None = None) -> BaseSynthesizer:
    """Factory returning the configured synthesizer."""

    return OpenAISynthesizer(settings)
