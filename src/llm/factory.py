"""Factory returning configured LLM client implementation."""

from __future__ import annotations

from config.settings import Settings, get_settings
from llm.base import BaseLLMClient
from llm.openai_client import OpenAIClient

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


def build_llm_client(settings: Settings | None = None) -> BaseLLMClient:
    """Instantiate the configured LLM connector."""

    settings = settings or get_settings()
    api_key = settings.llm_api_key or settings.openai_api_key
    if settings.llm_provider == "openai":
        return OpenAIClient(api_key=api_key, model=settings.llm_model, base_url=settings.llm_endpoint)
    if settings.llm_provider == "openrouter":
        return OpenAIClient(
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            base_url=settings.llm_endpoint or OPENROUTER_BASE_URL,
        )
    raise ValueError(f"Unsupported llm_provider: {settings.llm_provider}")
