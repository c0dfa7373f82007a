"""Domain-specific exceptions for voice test calls.

These exceptions are safe to import from API layers without triggering network client imports.
"""

from __future__ import annotations

from typing import Any


class VoiceAgentError(Exception):
    status_code: int = 500
    default_detail: str = "Voice agent error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class TransportError(VoiceAgentError):
    status_code = 502
    default_detail = "Realtime session failed."

    def __init__(self, detail: str | None = None, payload: dict[str, Any] | None = None) -> None:
        super().__init__(detail)
        self.payload = payload or {}


class PersonaGenerationError(VoiceAgentError):
    status_code = 502
    default_detail = "Persona instructions could not be generated."


class AudioPipelineError(VoiceAgentError):
    status_code = 500
    default_detail = "Audio forwarding failed."


class ModerationError(VoiceAgentError):
    status_code = 502
    default_detail = "Moderation request failed."


class TranscriptionFailedError(VoiceAgentError):
    status_code = 503
    default_detail = "Transcription failed."


class SynthesisFailedError(VoiceAgentError):
    status_code = 503
    default_detail = "Speech synthesis failed."


class AgentNotFoundError(VoiceAgentError):
    status_code = 404
    default_detail = "No agent registered for this call."


class CallInitiationError(VoiceAgentError):
    status_code = 502
    default_detail = "Outbound call could not be placed."
