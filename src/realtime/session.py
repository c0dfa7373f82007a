"""Realtime session configuration and acknowledgement matching."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final

AUDIO_FORMAT: Final[str] = "g711_ulaw"
MODALITIES: Final[tuple[str, ...]] = ("text", "audio")


@dataclass(frozen=True, slots=True)
class SessionConfig:
    instructions: str
    voice: str
    transcription_model: str = "whisper-1"
    vad_threshold: float = 0.5
    silence_duration_ms: int = 1000
    create_response: bool = True

    def turn_detection(self) -> dict[str, Any]:
        return {
            "type": "server_vad",
            "threshold": self.vad_threshold,
            "silence_duration_ms": self.silence_duration_ms,
            "create_response": self.create_response,
        }

    def to_message(self) -> dict[str, Any]:
        return {
            "type": "session.update",
            "session": {
                "instructions": self.instructions,
                "voice": self.voice,
                "turn_detection": self.turn_detection(),
                "input_audio_format": AUDIO_FORMAT,
                "output_audio_format": AUDIO_FORMAT,
                "modalities": list(MODALITIES),
                "input_audio_transcription": {"model": self.transcription_model},
            },
        }

    def is_acknowledged_by(self, session: dict[str, Any] | None) -> bool:
        """True only if ``session`` echoes every declared parameter.

        The server adds fields of its own (ids, padding, tool settings); those
        are ignored, but any declared value that is missing or different
        means the session is not yet configured the way we asked.
        """

        if not isinstance(session, dict):
            return False

        turn_detection = session.get("turn_detection") or {}
        for key, expected in self.turn_detection().items():
            if turn_detection.get(key) != expected:
                return False

        transcription = session.get("input_audio_transcription") or {}
        modalities = session.get("modalities") or []
        return (
            session.get("instructions") == self.instructions
            and session.get("voice") == self.voice
            and session.get("input_audio_format") == AUDIO_FORMAT
            and session.get("output_audio_format") == AUDIO_FORMAT
            and sorted(modalities) == sorted(MODALITIES)
            and transcription.get("model") == self.transcription_model
        )
