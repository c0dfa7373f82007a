"""Entry point for the automated voice test-call service."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.dependencies import get_initiator
from api.routes import router as api_router
from api.twilio_routes import router as twilio_router
from config.logging import configure_logging
from config.settings import get_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await get_initiator().shutdown()


settings = get_settings()

configure_logging(settings.log_level)

app = FastAPI(
    title="Voicebench",
    description="Places automated test calls against voice agents and moderates the conversation.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")
app.include_router(twilio_router)
