"""API-facing Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from agents.schemas import DialogueMode, ModelInstance


class CallRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    instructions: str = Field(min_length=1, description="What the simulated caller should test.")
    to_phone_number: str = Field(description="E.164 phone number of the agent under test, e.g. +4179...")
    mode: DialogueMode = DialogueMode.STS
    model_instance: ModelInstance | None = None


class CallResponse(BaseModel):
    call_id: str
    status: str = "initiated"


class HealthResponse(BaseModel):
    status: str = "ok"
    active_calls: int = 0
