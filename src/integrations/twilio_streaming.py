"""Bridge between a Twilio Media Stream websocket and a conversation agent."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from agents.schemas import AudioChunk, CallSummary, ErrorEvent
from calls.registry import AgentRegistry

if TYPE_CHECKING:  # pragma: no cover
    from agents.conversation_agent import ConversationAgent

LOGGER = logging.getLogger(__name__)

RESPONSE_MARK = "responsePart"


def parse_twilio_ws_message(text: str) -> dict[str, Any]:
    return json.loads(text)


class MediaStreamSession:
    """One Twilio media stream bound to the agent placing that call.

    ``start`` looks the agent up by call sid and subscribes to its channels;
    ``media`` forwards inbound audio; ``stop`` stops the agent. Agent audio
    goes back out as ``media`` messages, each finished response part as a
    ``mark``. The socket is closed when the agent stops or reports an error.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        send_json: Callable[[dict[str, Any]], Awaitable[None]],
        close: Callable[[], Awaitable[None]],
    ) -> None:
        self._registry = registry
        self._send_json = send_json
        self._close = close
        self._agent: ConversationAgent | None = None
        self._stream_sid: str | None = None
        self._unsubscribers: list[Callable[[], None]] = []
        self._closed = False

    @property
    def agent(self) -> ConversationAgent | None:
        return self._agent

    @property
    def stream_sid(self) -> str | None:
        return self._stream_sid

    @property
    def closed(self) -> bool:
        return self._closed

    async def handle_message(self, message: dict[str, Any]) -> None:
        event = str(message.get("event") or "")
        if event == "start":
            await self._on_start(message)
        elif event == "media":
            await self._on_media(message)
        elif event == "stop":
            LOGGER.info("Media stream %s stopped by Twilio", self._stream_sid)
            if self._agent is not None:
                await self._agent.stop()
        else:
            LOGGER.debug("Ignoring media stream event %s", event or "<missing>")

    async def _on_start(self, message: dict[str, Any]) -> None:
        start = message.get("start") or {}
        call_sid = str(start.get("callSid") or "")
        stream_sid = str(start.get("streamSid") or message.get("streamSid") or "")

        agent = self._registry.lookup(call_sid)
        self._agent = agent
        self._stream_sid = stream_sid
        agent.bind_stream(stream_sid)
        self._unsubscribers = [
            agent.outgoing_audio.subscribe(self._send_audio),
            agent.response_done.subscribe(self._send_mark),
            agent.error.subscribe(self._on_agent_error),
            agent.stopped.subscribe(self._on_agent_stopped),
        ]
        LOGGER.info("Media stream %s attached to call %s", stream_sid, call_sid)

    async def _on_media(self, message: dict[str, Any]) -> None:
        if self._agent is None:
            LOGGER.debug("Media received before start, dropping")
            return
        media = message.get("media") or {}
        if media.get("track") and media.get("track") != "inbound":
            return
        payload = media.get("payload")
        if not isinstance(payload, str) or not payload:
            return
        try:
            data = base64.b64decode(payload, validate=True)
        except binascii.Error:
            LOGGER.warning("Dropping media frame with invalid base64 payload")
            return
        await self._agent.handle_incoming_audio(AudioChunk(data=data, stream_id=self._stream_sid or ""))

    async def _send_audio(self, chunk: AudioChunk) -> None:
        if self._closed:
            return
        await self._send_json(
            {
                "event": "media",
                "streamSid": self._stream_sid,
                "media": {"payload": base64.b64encode(chunk.data).decode("ascii")},
            }
        )

    async def _send_mark(self, stream_id: str | None) -> None:
        if self._closed:
            return
        await self._send_json(
            {"event": "mark", "streamSid": self._stream_sid, "mark": {"name": RESPONSE_MARK}}
        )

    async def _on_agent_error(self, event: ErrorEvent) -> None:
        LOGGER.error("Agent error on stream %s: %s", event.stream_id, event.error)
        await self.close()
        if self._agent is not None:
            await self._agent.stop()

    async def _on_agent_stopped(self, summary: CallSummary) -> None:
        LOGGER.info("Agent for stream %s stopped after %.1fs", summary.stream_id, summary.duration_seconds)
        await self.close()

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    async def handle_disconnect(self) -> None:
        """The socket went away without a ``stop`` message."""

        self.detach()
        self._closed = True
        if self._agent is not None:
            await self._agent.stop()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.detach()
        try:
            await self._close()
        except RuntimeError as exc:
            LOGGER.debug("Media stream already closed: %s", exc)
