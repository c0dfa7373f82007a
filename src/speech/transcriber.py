"""Streaming speech-to-text for the text pipeline, backed by Gladia live sessions."""

from __future__ import annotations

import asyncio
import base64
import contextlib
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from agents.errors import TranscriptionFailedError
from agents.schemas import AudioChunk
from config.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)

TranscriptCallback = Callable[[str], Awaitable[None]]


class BaseStreamingTranscriber(ABC):
    """Interface for transcribers that accept audio incrementally."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the transcription session."""

    @abstractmethod
    async def send_audio(self, chunk: AudioChunk) -> None:
        """Forward one mu-law chunk."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the session; safe to call more than once."""


class GladiaLiveTranscriber(BaseStreamingTranscriber):
    """Gladia v2 live transcription.

    A session URL is requested over HTTP, then audio is streamed over a
    websocket. Only final utterances are reported to ``on_transcript``.
    """

    def __init__(
        self,
        on_transcript: TranscriptCallback,
        settings: Settings | None = None,
        *,
        connector: Callable[..., Awaitable[Any]] | None = None,
    ) -> None:
        settings = settings or get_settings()
        if not settings.gladia_api_key:
            raise ValueError("Gladia API key must be configured for live transcription.")

        self._on_transcript = on_transcript
        self._api_key = settings.gladia_api_key
        self._endpoint = settings.gladia_live_url
        self._connector = connector or websockets.connect
        self._ws: Any = None
        self._receive_task: asyncio.Task | None = None

    async def connect(self) -> None:
        if self._ws is not None:
            LOGGER.info("Gladia session already connected")
            return

        payload = {"encoding": "wav/ulaw", "sample_rate": 8000, "bit_depth": 8, "channels": 1}
        headers = {"x-gladia-key": self._api_key, "Content-Type": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=30) as client:
                response = await client.post(self._endpoint, json=payload, headers=headers)
            response.raise_for_status()
            url = response.json()["url"]
            self._ws = await self._connector(url)
        except (httpx.HTTPError, KeyError, ValueError, OSError, WebSocketException) as exc:
            raise TranscriptionFailedError(f"Failed to initialize Gladia session: {exc}") from exc

        LOGGER.info("Gladia session connected")
        self._receive_task = asyncio.create_task(self._receive_loop(self._ws))

    async def send_audio(self, chunk: AudioChunk) -> None:
        if self._ws is None:
            raise TranscriptionFailedError("No Gladia session connected.")

        message = {
            "type": "audio_chunk",
            "data": {"chunk": base64.b64encode(chunk.data).decode("ascii")},
        }
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as exc:
            raise TranscriptionFailedError(f"Gladia session closed: {exc}") from exc

    async def disconnect(self) -> None:
        if self._ws is None:
            return

        LOGGER.info("Disconnecting from Gladia")
        ws, self._ws = self._ws, None
        task, self._receive_task = self._receive_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        try:
            await ws.send(json.dumps({"type": "stop_recording"}))
            await ws.close()
        except (OSError, WebSocketException) as exc:
            LOGGER.warning("Gladia socket did not close cleanly: %s", exc)

    async def _receive_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    LOGGER.warning("Ignoring non-JSON Gladia message")
                    continue
                if message.get("type") != "transcript":
                    continue
                data = message.get("data") or {}
                if not data.get("is_final"):
                    continue
                text = ((data.get("utterance") or {}).get("text") or "").strip()
                if text:
                    await self._on_transcript(text)
        except ConnectionClosed as exc:
            LOGGER.info("Gladia session closed: %s", exc)
