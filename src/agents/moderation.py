"""Turn-gated continue/terminate decisions."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Final

from agents.errors import ModerationError
from agents.schemas import ConversationItem, PersonaInstruction
from agents.state_utils import format_transcript
from llm.base import BaseLLMClient
from prompts.loader import render_prompt

LOGGER = logging.getLogger(__name__)

MIN_MODERATION_TURN: Final[int] = 3
CONTINUE_TOKEN: Final[str] = "continue"


@dataclass(frozen=True, slots=True)
class ModerationVerdict:
    should_continue: bool
    reason: str
    explanation: str | None = None


def parse_verdict(response: str | None) -> ModerationVerdict:
    """Only a response starting with ``continue`` keeps the call alive."""

    text = (response or "").strip()
    if not text:
        return ModerationVerdict(False, "empty_response")

    first_line, _, rest = text.partition("\n")
    explanation = rest.strip() or None
    if text.lower().startswith(CONTINUE_TOKEN):
        return ModerationVerdict(True, "moderator_continue", explanation)
    return ModerationVerdict(False, "moderator_terminate", explanation or first_line.strip())


class ModerationPolicy:
    def __init__(
        self,
        llm_client: BaseLLMClient,
        *,
        max_turns: int | None,
        min_turn: int = MIN_MODERATION_TURN,
        logger: logging.LoggerAdapter | None = None,
    ) -> None:
        self._llm = llm_client
        self._max_turns = max_turns
        self._min_turn = min_turn
        self._log = logger or LOGGER

    @property
    def max_turns(self) -> int | None:
        return self._max_turns

    def build_prompt(self, moderator: PersonaInstruction | None, transcript: Sequence[ConversationItem]) -> str:
        rubric = moderator.role_prompt if moderator else "You moderate a phone call."
        return render_prompt("moderation.txt", rubric=rubric, transcript=format_transcript(transcript))

    async def request_verdict(
        self,
        moderator: PersonaInstruction | None,
        transcript: Sequence[ConversationItem],
    ) -> ModerationVerdict:
        """Ask the moderator model once; request failures raise ``ModerationError``."""
        prompt = self.build_prompt(moderator, transcript)
        try:
            response = await self._llm.complete(prompt)
        except Exception as exc:
            raise ModerationError(f"Moderation request failed: {exc}") from exc
        return parse_verdict(response)

    async def decide(
        self,
        turn_index: int,
        moderator: PersonaInstruction | None,
        transcript: Sequence[ConversationItem],
    ) -> ModerationVerdict:
        if self._max_turns is not None and turn_index >= self._max_turns:
            self._log.info("Turn %s reached the limit of %s turns", turn_index, self._max_turns)
            return ModerationVerdict(False, "max_turns")

        if turn_index < self._min_turn:
            return ModerationVerdict(True, "warmup")

        try:
            verdict = await self.request_verdict(moderator, transcript)
        except ModerationError as exc:
            self._log.error("%s; terminating the call", exc.detail)
            return ModerationVerdict(False, "moderation_error", exc.detail)

        self._log.info(
            "Moderation at turn %s: %s (%s)",
            turn_index,
            "continue" if verdict.should_continue else "terminate",
            verdict.explanation or "no explanation",
        )
        return verdict
