"""FastAPI routes for placing automated test calls."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException

from agents.errors import VoiceAgentError
from api.dependencies import get_initiator
from api.schemas import CallRequest, CallResponse, HealthResponse

if TYPE_CHECKING:  # pragma: no cover
    from calls.initiator import CallInitiator

LOGGER = logging.getLogger(__name__)

router = APIRouter()


@router.post("/calls", response_model=CallResponse, status_code=201)
async def create_call(
    payload: CallRequest,
    initiator: CallInitiator = Depends(get_initiator),
) -> CallResponse:
    try:
        agent = await initiator.place_call(
            instructions=payload.instructions,
            to_phone_number=payload.to_phone_number,
            mode=payload.mode,
            model_instance=payload.model_instance,
        )
    except VoiceAgentError as exc:
        LOGGER.exception("Call initiation failed: %s", exc)
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc

    return CallResponse(call_id=agent.call_id or "")


@router.get("/health", response_model=HealthResponse)
async def health(initiator: CallInitiator = Depends(get_initiator)) -> HealthResponse:
    return HealthResponse(active_calls=len(initiator.active_calls))
