from __future__ import annotations

import base64

from fastapi.testclient import TestClient

from agents.channels import EventChannel
from calls.registry import AgentRegistry


class FakeAgent:
    def __init__(self) -> None:
        self.outgoing_audio = EventChannel("outgoing_audio")
        self.response_done = EventChannel("response_done")
        self.error = EventChannel("error")
        self.stopped = EventChannel("stopped")
        self.stream_id = None
        self.chunks = []
        self.stop_calls = 0

    def bind_stream(self, stream_id: str) -> None:
        self.stream_id = stream_id

    async def handle_incoming_audio(self, chunk) -> None:
        self.chunks.append(chunk.data)

    async def stop(self) -> None:
        self.stop_calls += 1


def test_media_stream_forwards_audio_to_registered_agent(app):
    import api.dependencies as deps

    registry = AgentRegistry()
    agent = FakeAgent()
    registry.insert("CA1", agent)
    app.dependency_overrides[deps.get_registry] = lambda: registry

    payload = base64.b64encode(b"\x10" * 160).decode("ascii")
    with TestClient(app) as client:
        with client.websocket_connect("/media-stream/outbound") as ws:
            ws.send_json({"event": "connected", "protocol": "Call"})
            ws.send_json({"event": "start", "start": {"callSid": "CA1", "streamSid": "MZ1"}})
            ws.send_json({"event": "media", "media": {"track": "inbound", "payload": payload}})
            ws.send_json({"event": "stop", "stop": {"callSid": "CA1"}})

    app.dependency_overrides.clear()

    assert agent.stream_id == "MZ1"
    assert agent.chunks == [b"\x10" * 160]
    assert agent.stop_calls >= 1
