"""Bidirectional session with the cloud speech-to-speech endpoint.

Lifecycle: DISCONNECTED -> CONNECTING -> SESSION_NEGOTIATING -> READY -> DISCONNECTED.
The session only becomes READY once a ``session.updated`` acknowledgement
echoes every parameter sent in ``session.update``.
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Final
from urllib.parse import urlencode

import numpy as np
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from agents.errors import TransportError
from agents.schemas import AudioChunk, ConversationItem
from realtime.session import SessionConfig

LOGGER = logging.getLogger(__name__)

SILENCE_MIDPOINT: Final[int] = 128
SILENCE_THRESHOLD: Final[int] = 2
SEND_DELAY_SECONDS: Final[float] = 0.01

# Inbound transcription is what the voice agent under test said; the
# response transcripts are our simulated caller.
TRANSCRIPT_ROLES: Final[dict[str, str]] = {
    "conversation.item.input_audio_transcription.completed": "assistant",
    "response.audio_transcript.done": "user",
    "response.text.done": "user",
}


class TransportState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SESSION_NEGOTIATING = "session_negotiating"
    READY = "ready"


@dataclass(slots=True)
class TransportHandlers:
    on_audio_delta: Callable[[bytes], Awaitable[None]]
    on_transcript: Callable[[ConversationItem], Awaitable[None]]
    on_audio_done: Callable[[], Awaitable[None]]
    on_error: Callable[[TransportError], Awaitable[None]]


def is_silent_frame(data: bytes, threshold: int = SILENCE_THRESHOLD) -> bool:
    """A frame is silent when no byte strays ``threshold`` or more from the mid-point."""

    if not data:
        return True
    samples = np.frombuffer(data, dtype=np.uint8).astype(np.int16)
    return int(np.max(np.abs(samples - SILENCE_MIDPOINT))) < threshold


class RealtimeTransportAdapter:
    """Websocket client for one realtime speech-to-speech session."""

    def __init__(
        self,
        session: SessionConfig,
        handlers: TransportHandlers,
        *,
        api_key: str | None,
        url: str,
        model: str,
        connector: Callable[..., Awaitable[Any]] | None = None,
        logger: logging.LoggerAdapter | None = None,
    ) -> None:
        self._session = session
        self._handlers = handlers
        self._api_key = api_key
        self._url = url.rstrip("/")
        self._model = model
        self._connector = connector or websockets.connect
        self._log = logger or LOGGER

        self._ws: Any = None
        self._receive_task: asyncio.Task | None = None
        self._state = TransportState.DISCONNECTED
        self._closing = False

        self._event_handlers: dict[str, Callable[[dict[str, Any]], Awaitable[None]]] = {
            "session.updated": self._on_session_updated,
            "response.audio.delta": self._on_audio_delta,
            "response.audio.done": self._on_audio_done,
            "response.done": self._on_response_done,
            "error": self._on_error_event,
        }
        for event_type in TRANSCRIPT_ROLES:
            self._event_handlers[event_type] = self._on_transcript_done

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is TransportState.READY and self._ws is not None

    async def connect(self) -> None:
        if self._ws is not None:
            self._log.info("Realtime session already connected")
            return
        if not self._api_key:
            raise TransportError("OpenAI API key must be configured for the realtime session.")

        self._state = TransportState.CONNECTING
        self._closing = False
        url = f"{self._url}?{urlencode({'model': self._model})}"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "OpenAI-Beta": "realtime=v1",
        }

        try:
            ws = await self._connector(url, additional_headers=headers, ping_interval=20, ping_timeout=20)
        except (OSError, WebSocketException) as exc:
            self._state = TransportState.DISCONNECTED
            raise TransportError(f"Failed to open realtime session: {exc}") from exc

        self._ws = ws
        self._state = TransportState.SESSION_NEGOTIATING
        self._log.info("Realtime session opened, negotiating configuration")
        try:
            await ws.send(json.dumps(self._session.to_message()))
        except (OSError, WebSocketException) as exc:
            self._ws = None
            self._state = TransportState.DISCONNECTED
            with contextlib.suppress(OSError, WebSocketException):
                await ws.close()
            raise TransportError(f"Failed to negotiate realtime session: {exc}") from exc

        self._receive_task = asyncio.create_task(self._receive_loop(ws))

    async def disconnect(self) -> None:
        if self._ws is None:
            return

        self._log.info("Disconnecting realtime session")
        self._closing = True
        ws, self._ws = self._ws, None
        self._state = TransportState.DISCONNECTED

        task, self._receive_task = self._receive_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        try:
            await ws.close()
        except (OSError, WebSocketException) as exc:
            self._log.warning("Realtime socket did not close cleanly: %s", exc)

    async def send_audio(self, chunk: AudioChunk) -> None:
        if not self.is_ready:
            self._log.error("No realtime session ready for audio")
            return

        if is_silent_frame(chunk.data):
            self._log.debug("Skipping silent audio frame")
            return

        message = {
            "type": "input_audio_buffer.append",
            "audio": base64.b64encode(chunk.data).decode("ascii"),
        }
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as exc:
            raise TransportError(f"Realtime session closed while sending audio: {exc}") from exc
        await asyncio.sleep(SEND_DELAY_SECONDS)

    async def _receive_loop(self, ws: Any) -> None:
        reason = "closed by server"
        try:
            async for raw in ws:
                try:
                    await self._dispatch(raw)
                except Exception:
                    self._log.exception("Failed to handle realtime event")
        except ConnectionClosed as exc:
            reason = str(exc)

        if self._closing:
            return
        self._state = TransportState.DISCONNECTED
        self._ws = None
        await self._handlers.on_error(TransportError(f"Realtime connection lost: {reason}"))

    async def _dispatch(self, raw: str | bytes) -> None:
        try:
            event = json.loads(raw)
        except json.JSONDecodeError:
            self._log.warning("Ignoring non-JSON realtime message")
            return

        event_type = str(event.get("type") or "")
        handler = self._event_handlers.get(event_type)
        if handler is None:
            self._log.debug("Unhandled realtime event: %s", event_type)
            return
        await handler(event)

    async def _on_session_updated(self, event: dict[str, Any]) -> None:
        self._log.debug("Session updated: %s", event)
        if self._state is TransportState.READY:
            return
        if self._session.is_acknowledged_by(event.get("session")):
            self._state = TransportState.READY
            self._log.info("Realtime session configured")
        else:
            self._log.debug("Session acknowledgement does not match the requested configuration yet")

    async def _on_audio_delta(self, event: dict[str, Any]) -> None:
        delta = event.get("delta")
        if not delta:
            return
        await self._handlers.on_audio_delta(base64.b64decode(delta))

    async def _on_transcript_done(self, event: dict[str, Any]) -> None:
        text = event.get("transcript") or event.get("text") or ""
        if not text.strip():
            return
        item = ConversationItem(role=TRANSCRIPT_ROLES[event["type"]], content=text.strip())
        self._log.debug("Transcript %s: %s", item.role, item.content)
        await self._handlers.on_transcript(item)

    async def _on_audio_done(self, event: dict[str, Any]) -> None:
        await self._handlers.on_audio_done()

    async def _on_response_done(self, event: dict[str, Any]) -> None:
        response = event.get("response") or {}
        status_details = response.get("status_details") or {}
        error = event.get("error") or response.get("error") or status_details.get("error")
        if error:
            await self._report_error(error, event)

    async def _on_error_event(self, event: dict[str, Any]) -> None:
        await self._report_error(event.get("error"), event)

    async def _report_error(self, error: Any, event: dict[str, Any]) -> None:
        message = error.get("message") if isinstance(error, dict) else error
        self._log.error("Realtime error: %s", json.dumps(event))
        await self._handlers.on_error(TransportError(f"Realtime error: {message or 'unknown'}", payload=event))
