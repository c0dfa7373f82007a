from __future__ import annotations

import asyncio
import base64
import json

import pytest
from websockets.exceptions import ConnectionClosedError

from agents.errors import TransportError
from agents.schemas import AudioChunk, ConversationItem
from realtime.session import SessionConfig
from realtime.transport import RealtimeTransportAdapter, TransportHandlers, TransportState, is_silent_frame


class FakeWebSocket:
    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.close_calls = 0
        self._incoming: asyncio.Queue[str | None] = asyncio.Queue()

    async def send(self, message: str) -> None:
        self.sent.append(json.loads(message))

    async def close(self) -> None:
        self.close_calls += 1
        self._incoming.put_nowait(None)

    def feed(self, event: dict) -> None:
        self._incoming.put_nowait(json.dumps(event))

    def hang_up(self) -> None:
        self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


class Recorder:
    def __init__(self) -> None:
        self.audio: list[bytes] = []
        self.transcripts: list[ConversationItem] = []
        self.audio_done = 0
        self.errors: list[TransportError] = []

    def handlers(self) -> TransportHandlers:
        async def on_audio_delta(data: bytes) -> None:
            self.audio.append(data)

        async def on_transcript(item: ConversationItem) -> None:
            self.transcripts.append(item)

        async def on_audio_done() -> None:
            self.audio_done += 1

        async def on_error(error: TransportError) -> None:
            self.errors.append(error)

        return TransportHandlers(on_audio_delta, on_transcript, on_audio_done, on_error)


SESSION = SessionConfig(instructions="Never speak first. You are Anna.", voice="alloy")


def build_adapter(ws: FakeWebSocket, recorder: Recorder) -> tuple[RealtimeTransportAdapter, list[dict]]:
    connections: list[dict] = []

    async def connector(url: str, **kwargs):
        connections.append({"url": url, **kwargs})
        return ws

    adapter = RealtimeTransportAdapter(
        SESSION,
        recorder.handlers(),
        api_key="sk-test",
        url="wss://realtime.example/v1/realtime",
        model="gpt-4o-realtime-preview",
        connector=connector,
    )
    return adapter, connections


def acknowledgement(**overrides) -> dict:
    session = {**SESSION.to_message()["session"], "id": "sess_1", "object": "realtime.session", "tools": []}
    session.update(overrides)
    return {"type": "session.updated", "session": session}


async def settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0.01)


def test_connect_sends_session_configuration() -> None:
    async def scenario():
        ws = FakeWebSocket()
        adapter, connections = build_adapter(ws, Recorder())
        await adapter.connect()
        state = adapter.state
        await adapter.disconnect()
        return ws, connections, state

    ws, connections, state = asyncio.run(scenario())

    assert state is TransportState.SESSION_NEGOTIATING
    assert connections[0]["url"] == "wss://realtime.example/v1/realtime?model=gpt-4o-realtime-preview"
    assert connections[0]["additional_headers"]["Authorization"] == "Bearer sk-test"

    message = ws.sent[0]
    assert message["type"] == "session.update"
    session = message["session"]
    assert session["voice"] == "alloy"
    assert session["instructions"].startswith("Never speak first.")
    assert session["input_audio_format"] == session["output_audio_format"] == "g711_ulaw"
    assert session["modalities"] == ["text", "audio"]
    assert session["input_audio_transcription"] == {"model": "whisper-1"}
    assert session["turn_detection"] == {
        "type": "server_vad",
        "threshold": 0.5,
        "silence_duration_ms": 1000,
        "create_response": True,
    }


def test_only_matching_acknowledgement_makes_session_ready() -> None:
    async def scenario():
        ws = FakeWebSocket()
        adapter, _ = build_adapter(ws, Recorder())
        await adapter.connect()

        ws.feed(acknowledgement(voice="verse"))
        ws.feed({"type": "session.updated", "session": {"voice": "alloy"}})
        await settle()
        before = adapter.is_ready

        ws.feed(acknowledgement())
        await settle()
        after = adapter.is_ready
        await adapter.disconnect()
        return before, after

    before, after = asyncio.run(scenario())

    assert before is False
    assert after is True


def test_session_config_rejects_mismatched_turn_detection() -> None:
    ack = acknowledgement()["session"]
    ack["turn_detection"] = {**ack["turn_detection"], "silence_duration_ms": 500}

    assert not SESSION.is_acknowledged_by(ack)
    assert not SESSION.is_acknowledged_by(None)


def test_silence_gate_drops_midpoint_frames() -> None:
    assert is_silent_frame(bytes([128] * 160))
    assert is_silent_frame(bytes([129, 127] * 80))
    assert not is_silent_frame(bytes([128] * 159 + [131]))

    async def scenario():
        ws = FakeWebSocket()
        adapter, _ = build_adapter(ws, Recorder())
        await adapter.connect()
        ws.feed(acknowledgement())
        await settle()

        await adapter.send_audio(AudioChunk(data=bytes([128] * 160), stream_id="MZ1"))
        loud = bytes([128] * 159 + [140])
        await adapter.send_audio(AudioChunk(data=loud, stream_id="MZ1"))
        await adapter.disconnect()
        return ws, loud

    ws, loud = asyncio.run(scenario())

    appended = [message for message in ws.sent if message["type"] == "input_audio_buffer.append"]
    assert len(appended) == 1
    assert base64.b64decode(appended[0]["audio"]) == loud


def test_inbound_events_are_normalized() -> None:
    async def scenario():
        ws = FakeWebSocket()
        recorder = Recorder()
        adapter, _ = build_adapter(ws, recorder)
        await adapter.connect()

        ws.feed({"type": "response.audio.delta", "delta": base64.b64encode(b"\x01\x02").decode("ascii")})
        ws.feed({"type": "conversation.item.input_audio_transcription.completed", "transcript": "How can I help?"})
        ws.feed({"type": "response.audio_transcript.done", "transcript": "I need an appointment."})
        ws.feed({"type": "response.text.done", "text": "Tomorrow works."})
        ws.feed({"type": "response.audio.done"})
        ws.feed({"type": "rate_limits.updated", "rate_limits": []})
        ws.feed({"type": "error", "error": {"message": "bad request"}})
        ws.feed({"type": "response.done", "response": {"status_details": {"error": {"message": "quota"}}}})
        ws.feed({"type": "response.done", "response": {"status": "completed"}})
        await settle()
        await adapter.disconnect()
        return recorder

    recorder = asyncio.run(scenario())

    assert recorder.audio == [b"\x01\x02"]
    assert [(item.role, item.content) for item in recorder.transcripts] == [
        ("assistant", "How can I help?"),
        ("user", "I need an appointment."),
        ("user", "Tomorrow works."),
    ]
    assert recorder.audio_done == 1
    assert [str(error) for error in recorder.errors] == ["Realtime error: bad request", "Realtime error: quota"]


def test_disconnect_is_idempotent_and_silent() -> None:
    async def scenario():
        ws = FakeWebSocket()
        recorder = Recorder()
        adapter, _ = build_adapter(ws, recorder)
        await adapter.connect()
        await adapter.disconnect()
        await adapter.disconnect()
        return ws, recorder, adapter

    ws, recorder, adapter = asyncio.run(scenario())

    assert ws.close_calls == 1
    assert adapter.state is TransportState.DISCONNECTED
    assert recorder.errors == []


def test_unexpected_hang_up_reports_error() -> None:
    async def scenario():
        ws = FakeWebSocket()
        recorder = Recorder()
        adapter, _ = build_adapter(ws, recorder)
        await adapter.connect()
        ws.hang_up()
        await settle()
        return recorder, adapter

    recorder, adapter = asyncio.run(scenario())

    assert adapter.state is TransportState.DISCONNECTED
    assert len(recorder.errors) == 1
    assert "connection lost" in str(recorder.errors[0])


def test_connect_without_api_key_fails() -> None:
    adapter = RealtimeTransportAdapter(
        SESSION,
        Recorder().handlers(),
        api_key=None,
        url="wss://realtime.example/v1/realtime",
        model="gpt-4o-realtime-preview",
    )

    with pytest.raises(TransportError, match="API key"):
        asyncio.run(adapter.connect())


class ClosingWebSocket(FakeWebSocket):
    async def send(self, message: str) -> None:
        raise ConnectionClosedError(None, None)


def test_socket_closing_during_negotiation_fails_connect() -> None:
    async def scenario():
        ws = ClosingWebSocket()
        adapter, _ = build_adapter(ws, Recorder())
        with pytest.raises(TransportError, match="negotiate"):
            await adapter.connect()
        return ws, adapter

    ws, adapter = asyncio.run(scenario())

    assert adapter.state is TransportState.DISCONNECTED
    assert not adapter.is_ready
    assert ws.close_calls == 1
