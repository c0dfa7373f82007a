"""Data exchanged between the agent, its collaborators and the API."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Role = Literal["user", "assistant", "moderator"]

DEFAULT_PROVIDER = "openai"
DEFAULT_MODEL = "gpt-4o-realtime-preview"
DEFAULT_VOICE = "alloy"
DEFAULT_LANGUAGE = "en-US"
DEFAULT_MAX_TURNS = 10


class DialogueMode(str, Enum):
    STS = "sts"  # one realtime speech-to-speech session
    LLM = "llm"  # transcription -> reasoning -> synthesis


class Posture(str, Enum):
    BASELINE = "baseline"
    EDGE = "edge"
    ATTACKER = "attacker"


@dataclass(frozen=True, slots=True)
class AudioChunk:
    """A unit of 8 kHz mu-law audio travelling in either direction."""

    data: bytes
    stream_id: str
    model_instance_id: str | None = None


class ConversationItem(BaseModel):
    """One transcript entry."""

    role: Role
    role_name: str | None = None
    content: str


class PersonaInstruction(BaseModel):
    model_config = ConfigDict(frozen=True)

    role_name: str
    role_prompt: str

    @field_validator("role_name", "role_prompt")
    @classmethod
    def not_blank(cls, value: str) -> str:
        text = value.strip()
        if not text:
            raise ValueError("Persona fields may not be empty.")
        return text


class PersonaInstructions(BaseModel):
    """Generated pair of personas for a single call."""

    model_config = ConfigDict(frozen=True)

    testing_role: PersonaInstruction
    moderator: PersonaInstruction


class ModelInstanceConfig(BaseModel):
    language: str = DEFAULT_LANGUAGE
    max_turns: int | None = Field(default=DEFAULT_MAX_TURNS, ge=1)
    posture: Posture = Posture.BASELINE
    custom_posture: str | None = None


class ModelInstance(BaseModel):
    """Voice model configuration supplied with a call request."""

    model_config = ConfigDict(frozen=True)

    instance_id: str | None = None
    provider: str = DEFAULT_PROVIDER
    model: str = DEFAULT_MODEL
    voice: str = DEFAULT_VOICE
    config: ModelInstanceConfig = Field(default_factory=ModelInstanceConfig)


@dataclass(slots=True)
class ErrorEvent:
    error: Exception
    stream_id: str | None
    model_instance_id: str | None = None


@dataclass(slots=True)
class CallSummary:
    """Payload of the terminal "stopped" notification."""

    call_id: str | None
    stream_id: str | None
    duration_seconds: float
    transcript: list[ConversationItem] = field(default_factory=list)
    recorded_audio: bytes = b""
