"""Twilio Media Streams websocket endpoint for outbound test calls."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from agents.errors import AgentNotFoundError
from api.dependencies import get_registry
from calls.registry import AgentRegistry
from integrations.twilio_client import MEDIA_STREAM_PATH
from integrations.twilio_streaming import MediaStreamSession, parse_twilio_ws_message

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["twilio"])


@router.websocket(MEDIA_STREAM_PATH)
async def outbound_media_stream(
    websocket: WebSocket,
    registry: AgentRegistry = Depends(get_registry),
) -> None:
    await websocket.accept()
    session = MediaStreamSession(registry, websocket.send_json, websocket.close)
    try:
        while not session.closed:
            message = await websocket.receive_text()
            try:
                parsed = parse_twilio_ws_message(message)
            except json.JSONDecodeError:
                LOGGER.warning("Ignoring non-JSON media stream message")
                continue
            await session.handle_message(parsed)
    except WebSocketDisconnect:
        await session.handle_disconnect()
    except AgentNotFoundError as exc:
        LOGGER.warning("Rejecting media stream: %s", exc.detail)
        await session.close()
