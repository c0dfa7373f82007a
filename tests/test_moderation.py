from __future__ import annotations

import asyncio

import pytest

from agents.errors import ModerationError
from agents.moderation import ModerationPolicy, parse_verdict
from agents.schemas import ConversationItem, PersonaInstruction
from llm.base import BaseLLMClient

MODERATOR = PersonaInstruction(role_name="Judge", role_prompt="Stop once the appointment is confirmed.")
TRANSCRIPT = [
    ConversationItem(role="assistant", content="Dental practice, how can I help?"),
    ConversationItem(role="user", role_name="Anna", content="I need to move my appointment."),
]


class FakeLLM(BaseLLMClient):
    def __init__(self, response: str | Exception = "continue") -> None:
        self.response = response
        self.prompts: list[str] = []

    async def complete(self, prompt: str, *, temperature: float = 0.1) -> str:
        self.prompts.append(prompt)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    async def chat(self, messages, *, temperature: float = 0.1) -> str:
        raise NotImplementedError


def decide(llm: FakeLLM, turn_index: int, max_turns: int | None = 10):
    policy = ModerationPolicy(llm, max_turns=max_turns)
    return asyncio.run(policy.decide(turn_index, MODERATOR, TRANSCRIPT))


def test_warmup_turns_continue_without_model_call() -> None:
    llm = FakeLLM("terminate")

    for turn_index in range(3):
        assert decide(llm, turn_index).should_continue

    assert llm.prompts == []


def test_max_turns_overrides_a_continue_answer() -> None:
    llm = FakeLLM("continue")

    verdict = decide(llm, turn_index=11, max_turns=10)

    assert not verdict.should_continue
    assert verdict.reason == "max_turns"
    assert llm.prompts == []


def test_reaching_max_turns_terminates() -> None:
    assert not decide(FakeLLM("continue"), turn_index=1, max_turns=1).should_continue


def test_unbounded_calls_keep_asking_the_moderator() -> None:
    llm = FakeLLM("Continue\nThe appointment is not settled yet.")

    verdict = decide(llm, turn_index=50, max_turns=None)

    assert verdict.should_continue
    assert verdict.explanation == "The appointment is not settled yet."


def test_prompt_contains_rubric_transcript_and_closing_rule() -> None:
    llm = FakeLLM("continue")

    decide(llm, turn_index=3)

    prompt = llm.prompts[0]
    assert MODERATOR.role_prompt in prompt
    assert "- user (Anna): I need to move my appointment." in prompt
    assert "intention to close the conversation" in prompt


def test_anything_but_continue_terminates() -> None:
    assert not decide(FakeLLM("terminate\nThey said goodbye."), turn_index=4).should_continue
    assert not decide(FakeLLM("I think we should continue"), turn_index=4).should_continue
    assert not decide(FakeLLM(""), turn_index=4).should_continue


def test_moderation_failure_terminates() -> None:
    verdict = decide(FakeLLM(RuntimeError("timeout")), turn_index=5)

    assert not verdict.should_continue
    assert verdict.reason == "moderation_error"


def test_parse_verdict_keeps_explanation_aside() -> None:
    verdict = parse_verdict("terminate\nThe caller hung up.")

    assert verdict.should_continue is False
    assert verdict.explanation == "The caller hung up."
    assert parse_verdict(None).reason == "empty_response"


def test_request_failure_raises_moderation_error() -> None:
    policy = ModerationPolicy(FakeLLM(RuntimeError("timeout")), max_turns=10)

    with pytest.raises(ModerationError, match="timeout"):
        asyncio.run(policy.request_verdict(MODERATOR, TRANSCRIPT))

    verdict = asyncio.run(policy.decide(5, MODERATOR, TRANSCRIPT))
    assert verdict.reason == "moderation_error"
    assert "timeout" in verdict.explanation
