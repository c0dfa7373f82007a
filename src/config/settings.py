"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # Realtime speech-to-speech session
    openai_api_key: str | None = Field(default=None)
    realtime_url: str = Field(default="wss://api.openai.com/v1/realtime")
    realtime_model: str = Field(default="gpt-4o-realtime-preview")
    realtime_voice: str = Field(default="alloy")
    transcription_model: str = Field(
        default="whisper-1",
        description="Input transcription model declared in the realtime session.",
    )

    # LLM connectivity (persona generation, moderation, text pipeline)
    llm_provider: Literal["openai", "openrouter"] = Field(default="openai")
    llm_endpoint: str | None = Field(
        default=None, description="Optional base URL override for the provider."
    )
    llm_api_key: str | None = Field(default=None)
    llm_model: str = Field(default="gpt-4o")

    # Text pipeline stages
    tts_model: str = Field(default="tts-1")
    tts_voice: str = Field(default="alloy")
    gladia_api_key: str | None = Field(default=None)
    gladia_live_url: str = Field(default="https://api.gladia.io/v2/live")

    # Agent timing
    inactivity_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Stop the agent if no inbound audio arrives within this window.",
    )
    stop_grace_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Delay before tearing down so trailing messages can still arrive.",
    )
    ready_poll_interval_seconds: float = Field(default=0.1, gt=0)
    ready_timeout_seconds: float = Field(default=15.0, gt=0)
    audio_poll_interval_seconds: float = Field(default=0.02, gt=0)
    egress_drain_timeout_seconds: float = Field(default=10.0, ge=0)

    # Call defaults
    default_language: str = Field(default="en-US")
    default_max_turns: int = Field(default=10, ge=1)

    # Twilio (Voice)
    twilio_account_sid: str | None = Field(default=None)
    twilio_auth_token: str | None = Field(default=None)
    twilio_from_number: str | None = Field(default=None, description="E.164, e.g. +1202...")
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL the media stream connects back to (e.g. https://<ngrok>.ngrok-free.app).",
    )
    twilio_record_calls: bool = Field(default=True)

    data_dir: Path = Field(default=Path("./data"))

    @field_validator("data_dir")
    @classmethod
    def ensure_data_dir(cls, value: Path) -> Path:
        value.mkdir(parents=True, exist_ok=True)
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
