"""Outbound call placement and post-call archival."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from twilio.base.exceptions import TwilioException

from agents.conversation_agent import ConversationAgent
from agents.errors import CallInitiationError
from agents.schemas import CallSummary, DialogueMode, ModelInstance
from calls.recordings import write_call_artifacts
from calls.registry import AgentRegistry
from config.settings import Settings, get_settings
from integrations.twilio_client import TwilioConfig, build_twilio_client, get_twilio_config, media_stream_twiml

LOGGER = logging.getLogger(__name__)

AgentFactory = Callable[..., ConversationAgent]


class CallInitiator:
    """Starts an agent, dials the target number and owns the call until it ends."""

    def __init__(
        self,
        registry: AgentRegistry,
        settings: Settings | None = None,
        *,
        twilio_client_factory: Callable[[TwilioConfig], Any] = build_twilio_client,
        agent_factory: AgentFactory = ConversationAgent,
    ) -> None:
        self._registry = registry
        self._settings = settings or get_settings()
        self._twilio_client_factory = twilio_client_factory
        self._agent_factory = agent_factory
        self._active: dict[str, ConversationAgent] = {}

    @property
    def active_calls(self) -> list[str]:
        return list(self._active)

    async def place_call(
        self,
        *,
        instructions: str,
        to_phone_number: str,
        mode: DialogueMode = DialogueMode.STS,
        model_instance: ModelInstance | None = None,
    ) -> ConversationAgent:
        # Missing Twilio, OpenAI or Gladia credentials surface as ValueError.
        try:
            cfg = get_twilio_config(self._settings)
            agent = self._agent_factory(mode, instructions, model_instance, settings=self._settings)
        except ValueError as exc:
            raise CallInitiationError(str(exc)) from exc

        await agent.start()

        try:
            client = self._twilio_client_factory(cfg)
            call = await asyncio.to_thread(
                client.calls.create,
                to=to_phone_number,
                from_=cfg.from_number,
                twiml=media_stream_twiml(cfg.public_base_url),
                record=self._settings.twilio_record_calls,
            )
        except TwilioException as exc:
            LOGGER.error("Twilio rejected the call to %s: %s", to_phone_number, exc)
            await agent.stop()
            raise CallInitiationError(f"Twilio rejected the call: {exc}") from exc

        call_sid = str(call.sid)
        agent.bind_call(call_sid)
        self._registry.insert(call_sid, agent)
        self._active[call_sid] = agent
        agent.stopped.subscribe(self._on_agent_stopped)
        LOGGER.info("Placed call %s to %s", call_sid, to_phone_number)
        return agent

    async def _on_agent_stopped(self, summary: CallSummary) -> None:
        call_id = summary.call_id
        try:
            await asyncio.to_thread(write_call_artifacts, self._settings.data_dir, summary)
        except OSError:
            LOGGER.exception("Failed to archive call %s", call_id)
        finally:
            # Removal waits for archival so lookups never see a half-finished agent.
            if call_id is not None:
                self._registry.remove(call_id)
                self._active.pop(call_id, None)

    async def shutdown(self) -> None:
        agents = list(self._active.values())
        if not agents:
            return
        LOGGER.info("Stopping %s active call(s)", len(agents))
        await asyncio.gather(*(agent.stop() for agent in agents), return_exceptions=True)
