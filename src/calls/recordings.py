"""Archive the audio and transcript of a finished call."""

from __future__ import annotations

import json
import logging
import wave
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from agents.schemas import CallSummary
from telephony.g711 import SAMPLE_RATE_8K, convert_mulaw_to_pcm8k

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallArtifacts:
    audio_path: Path
    transcript_path: Path


def pcm16_to_wav(path: Path, pcm: bytes, sample_rate: int) -> None:
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)


def write_call_artifacts(data_dir: Path, summary: CallSummary) -> CallArtifacts:
    target = Path(data_dir) / "calls"
    target.mkdir(parents=True, exist_ok=True)
    stem = summary.call_id or "call-" + datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")

    audio_path = target / f"{stem}.wav"
    pcm16_to_wav(audio_path, convert_mulaw_to_pcm8k(summary.recorded_audio), SAMPLE_RATE_8K)

    transcript_path = target / f"{stem}.json"
    document = {
        "call_id": summary.call_id,
        "stream_id": summary.stream_id,
        "duration_seconds": round(summary.duration_seconds, 3),
        "transcript": [item.model_dump() for item in summary.transcript],
    }
    transcript_path.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8")

    LOGGER.info("Archived call %s to %s", stem, target)
    return CallArtifacts(audio_path=audio_path, transcript_path=transcript_path)
