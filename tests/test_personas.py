from __future__ import annotations

import asyncio
import json

import pytest

from agents.errors import PersonaGenerationError
from agents.personas import POSTURE_BLOCKS, PersonaGenerator
from agents.schemas import ModelInstanceConfig, Posture
from llm.base import BaseLLMClient

PERSONAS = {
    "testing_role": {"role_name": "Anna", "role_prompt": "You call to move your dental appointment."},
    "moderator": {"role_name": "Judge", "role_prompt": "End the call once the appointment is moved."},
}


class FakeLLM(BaseLLMClient):
    def __init__(self, response: str | Exception) -> None:
        self.response = response
        self.prompts: list[str] = []

    async def complete(self, prompt: str, *, temperature: float = 0.1) -> str:
        self.prompts.append(prompt)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    async def chat(self, messages, *, temperature: float = 0.1) -> str:
        raise NotImplementedError


def generate(llm: FakeLLM, config: ModelInstanceConfig | None = None):
    generator = PersonaGenerator(llm)
    return asyncio.run(generator.generate("Reschedule an appointment", config or ModelInstanceConfig(), max_turns=6))


def test_generates_both_personas_in_one_round_trip() -> None:
    llm = FakeLLM(json.dumps(PERSONAS))

    personas = generate(llm, ModelInstanceConfig(language="de-CH", posture=Posture.EDGE))

    assert personas.testing_role.role_name == "Anna"
    assert personas.moderator.role_prompt.startswith("End the call")
    assert len(llm.prompts) == 1
    prompt = llm.prompts[0]
    assert "Reschedule an appointment" in prompt
    assert "de-CH" in prompt
    assert "6" in prompt
    assert POSTURE_BLOCKS[Posture.EDGE] in prompt


def test_accepts_markdown_fenced_json() -> None:
    llm = FakeLLM("```json\n" + json.dumps(PERSONAS) + "\n```")

    personas = generate(llm)

    assert personas.moderator.role_name == "Judge"


def test_custom_posture_is_used_verbatim() -> None:
    llm = FakeLLM(json.dumps(PERSONAS))

    generate(llm, ModelInstanceConfig(posture=Posture.ATTACKER, custom_posture="Only speak in rhymes."))

    assert "Only speak in rhymes." in llm.prompts[0]
    assert POSTURE_BLOCKS[Posture.ATTACKER] not in llm.prompts[0]


@pytest.mark.parametrize(
    "response",
    [
        "",
        "Sure! Here are your personas.",
        json.dumps({"testing_role": PERSONAS["testing_role"]}),
        json.dumps({**PERSONAS, "moderator": {"role_name": "Judge", "role_prompt": "   "}}),
    ],
)
def test_unusable_responses_are_fatal(response: str) -> None:
    with pytest.raises(PersonaGenerationError):
        generate(FakeLLM(response))


def test_model_failure_is_fatal() -> None:
    with pytest.raises(PersonaGenerationError, match="No response"):
        generate(FakeLLM(ValueError("No response from LLM")))
