from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from agents.errors import AgentNotFoundError

if TYPE_CHECKING:  # pragma: no cover
    from agents.conversation_agent import ConversationAgent

LOGGER = logging.getLogger(__name__)


class AgentRegistry:
    """Maps a telephony call id to the agent running that call.

    Only the call initiator (insert/remove) and the media-stream bridge
    (lookup) hold a reference. Everything runs on one event loop, so no lock
    is needed.
    """

    def __init__(self) -> None:
        self._agents: dict[str, ConversationAgent] = {}

    def insert(self, call_id: str, agent: ConversationAgent) -> None:
        if call_id in self._agents:
            raise ValueError(f"An agent is already registered for call {call_id}")
        self._agents[call_id] = agent
        LOGGER.debug("Registered agent for call %s", call_id)

    def lookup(self, call_id: str) -> ConversationAgent:
        agent = self._agents.get(call_id)
        if agent is None:
            raise AgentNotFoundError(f"No agent registered for call {call_id}")
        return agent

    def remove(self, call_id: str) -> ConversationAgent | None:
        agent = self._agents.pop(call_id, None)
        if agent is not None:
            LOGGER.debug("Removed agent for call %s", call_id)
        return agent
