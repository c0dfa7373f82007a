from __future__ import annotations

from collections.abc import Iterable

from agents.schemas import ConversationItem

# Transcript roles are recorded from the call's point of view: "assistant" is
# the voice agent under test, "user" is our simulated caller. Our own model
# speaks as the caller, so the roles swap when building its chat history.
CHAT_ROLE_FOR_TRANSCRIPT_ROLE = {
    "assistant": "user",
    "user": "assistant",
}


def speaker_label(item: ConversationItem) -> str:
    if item.role_name:
        return f"{item.role} ({item.role_name})"
    return item.role


def format_transcript(items: Iterable[ConversationItem]) -> str:
    lines = [f"- {speaker_label(item)}: {item.content}" for item in items]
    return "\n".join(lines) if lines else "(no conversation yet)"


def build_llm_history(system_prompt: str, items: Iterable[ConversationItem]) -> list[dict[str, str]]:
    history: list[dict[str, str]] = [{"role": "system", "content": system_prompt}]
    for item in items:
        chat_role = CHAT_ROLE_FOR_TRANSCRIPT_ROLE.get(item.role)
        if chat_role is None:
            # Moderator notes are not part of the spoken dialogue.
            continue
        history.append({"role": chat_role, "content": item.content})
    return history
