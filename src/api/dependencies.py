"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING

from calls.registry import AgentRegistry

if TYPE_CHECKING:  # pragma: no cover
    from calls.initiator import CallInitiator


@lru_cache(maxsize=1)
def get_registry() -> AgentRegistry:
    return AgentRegistry()


@lru_cache(maxsize=1)
def _initiator_factory() -> CallInitiator:
    # Lazy import so the API layer loads without the Twilio and OpenAI SDKs configured.
    from calls.initiator import CallInitiator

    return CallInitiator(get_registry())


def get_initiator() -> CallInitiator:
    return _initiator_factory()
