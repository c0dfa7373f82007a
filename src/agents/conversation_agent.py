"""Conversation state machine for one automated test call."""

from __future__ import annotations

import asyncio
import logging
import operator
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Final

from agents.channels import EventChannel
from agents.debounce import DebouncedAggregator
from agents.errors import VoiceAgentError
from agents.moderation import ModerationPolicy, ModerationVerdict
from agents.personas import PersonaGenerator
from agents.pipelines import DialoguePipeline, TranscriberFactory, TransportFactory, build_pipeline
from agents.schemas import (
    AudioChunk,
    CallSummary,
    ConversationItem,
    DialogueMode,
    ErrorEvent,
    ModelInstance,
    ModelInstanceConfig,
    PersonaInstructions,
)
from config.logging import CallLogger
from config.settings import Settings, get_settings
from llm.base import BaseLLMClient
from llm.factory import build_llm_client
from speech.tts import BaseSynthesizer

LOGGER = logging.getLogger(__name__)

EGRESS_KEY: Final[str] = "egress"


class Lifecycle(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    STREAMING = "streaming"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class AgentState:
    mode: DialogueMode
    is_processing: bool = False
    is_speaking: bool = False
    turn_index: int = 0
    start_timestamp: float | None = None
    recorded_audio: bytearray = field(default_factory=bytearray)


class ConversationAgent:
    """Runs one simulated caller against the voice agent under test.

    The agent generates its personas, opens the mode-specific pipeline, then
    relays audio in both directions until moderation, the inactivity timer,
    the media stream or the caller ends the call. Collaborators observe it
    through four channels: ``outgoing_audio``, ``response_done``, ``error``
    and ``stopped``.
    """

    def __init__(
        self,
        mode: DialogueMode | str,
        instructions: str,
        model_instance: ModelInstance | None = None,
        *,
        llm_client: BaseLLMClient | None = None,
        transport_factory: TransportFactory | None = None,
        transcriber_factory: TranscriberFactory | None = None,
        synthesizer: BaseSynthesizer | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._instructions = instructions
        self._model_instance = model_instance or ModelInstance(
            model=self._settings.realtime_model,
            voice=self._settings.realtime_voice,
            config=ModelInstanceConfig(
                language=self._settings.default_language,
                max_turns=self._settings.default_max_turns,
            ),
        )
        self._state = AgentState(mode=DialogueMode(mode))
        self._lifecycle = Lifecycle.IDLE
        self._call_id: str | None = None
        self._stream_id: str | None = None
        self.log = CallLogger(LOGGER)

        self._llm = llm_client or build_llm_client(self._settings)
        self._persona_generator = PersonaGenerator(self._llm)
        self._moderation = ModerationPolicy(
            self._llm,
            max_turns=self._model_instance.config.max_turns,
            logger=self.log,
        )
        self._pipeline: DialoguePipeline = build_pipeline(
            self._state.mode,
            self,
            self._settings,
            self._model_instance,
            llm_client=self._llm,
            transport_factory=transport_factory,
            transcriber_factory=transcriber_factory,
            synthesizer=synthesizer,
        )

        self._personas: PersonaInstructions | None = None
        self._transcript: list[ConversationItem] = []
        self._verdicts: list[ModerationVerdict] = []
        self._egress: DebouncedAggregator[str, int] = DebouncedAggregator(
            self._on_egress_flushed, combine=operator.add
        )
        self._inactivity_task: asyncio.Task | None = None
        self._moderation_tasks: set[asyncio.Task] = set()
        self._stop_task: asyncio.Task | None = None

        self.outgoing_audio: EventChannel[AudioChunk] = EventChannel("outgoing_audio")
        self.response_done: EventChannel[str | None] = EventChannel("response_done")
        self.error: EventChannel[ErrorEvent] = EventChannel("error")
        self.stopped: EventChannel[CallSummary] = EventChannel("stopped")

    # -- accessors -------------------------------------------------------

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def lifecycle(self) -> Lifecycle:
        return self._lifecycle

    @property
    def is_processing(self) -> bool:
        return self._state.is_processing

    @property
    def model_instance(self) -> ModelInstance:
        return self._model_instance

    @property
    def pipeline(self) -> DialoguePipeline:
        return self._pipeline

    @property
    def personas(self) -> PersonaInstructions | None:
        return self._personas

    @property
    def transcript(self) -> list[ConversationItem]:
        return list(self._transcript)

    @property
    def recorded_audio(self) -> bytes:
        return bytes(self._state.recorded_audio)

    @property
    def verdicts(self) -> list[ModerationVerdict]:
        return list(self._verdicts)

    @property
    def call_id(self) -> str | None:
        return self._call_id

    @property
    def stream_id(self) -> str | None:
        return self._stream_id

    def bind_call(self, call_id: str) -> None:
        self._call_id = call_id
        self.log.bind(call_id=call_id)

    def bind_stream(self, stream_id: str) -> None:
        self._stream_id = stream_id
        self.log.bind(stream_id=stream_id)

    # -- lifecycle -------------------------------------------------------

    async def start(self) -> None:
        if self._lifecycle is not Lifecycle.IDLE:
            raise RuntimeError(f"Agent cannot be started from state {self._lifecycle.value}")

        self._lifecycle = Lifecycle.INITIALIZING
        self.log.info("Starting %s agent", self._state.mode.value)
        config = self._model_instance.config
        try:
            self._personas = await self._persona_generator.generate(
                self._instructions,
                config,
                max_turns=config.max_turns or self._settings.default_max_turns,
            )
            await self._pipeline.open(self._personas)
        except Exception:
            self._lifecycle = Lifecycle.STOPPED
            self.log.exception("Agent failed to start")
            await self._pipeline.close()
            raise

        self._state.is_processing = True
        self._state.start_timestamp = time.monotonic()
        self._lifecycle = Lifecycle.STREAMING
        self._reset_inactivity_timer()
        self.log.info("Agent is streaming")

    async def stop(self) -> None:
        if self._stop_task is None:
            if not self._state.is_processing:
                return
            self._stop_task = asyncio.create_task(self._shutdown())
        await asyncio.shield(self._stop_task)

    async def _shutdown(self) -> None:
        self._lifecycle = Lifecycle.STOPPING
        self.log.info("Stopping agent")
        # Trailing transcript and audio events may still arrive during the grace period.
        await asyncio.sleep(self._settings.stop_grace_seconds)

        self._state.is_processing = False
        self._state.is_speaking = False
        self._cancel_inactivity_timer()
        self._egress.clear_all()
        try:
            await self._pipeline.close()
        except Exception:
            self.log.exception("Pipeline did not close cleanly")

        started = self._state.start_timestamp
        duration = max(0.0, time.monotonic() - started) if started is not None else 0.0
        summary = CallSummary(
            call_id=self._call_id,
            stream_id=self._stream_id,
            duration_seconds=duration,
            transcript=list(self._transcript),
            recorded_audio=bytes(self._state.recorded_audio),
        )
        self._lifecycle = Lifecycle.STOPPED
        self.log.info("Agent stopped after %.1f seconds and %s turn(s)", duration, self._state.turn_index)
        await self.stopped.emit(summary)
        for channel in (self.outgoing_audio, self.response_done, self.error, self.stopped):
            channel.close()

    # -- inactivity ------------------------------------------------------

    def _reset_inactivity_timer(self) -> None:
        self._cancel_inactivity_timer()
        self._inactivity_task = asyncio.create_task(self._inactivity_timeout())

    def _cancel_inactivity_timer(self) -> None:
        task, self._inactivity_task = self._inactivity_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _inactivity_timeout(self) -> None:
        await asyncio.sleep(self._settings.inactivity_timeout_seconds)
        self.log.warning(
            "No inbound audio for %s seconds, stopping", self._settings.inactivity_timeout_seconds
        )
        self._inactivity_task = None
        await self.stop()

    # -- audio -----------------------------------------------------------

    async def handle_incoming_audio(self, chunk: AudioChunk) -> None:
        if not self._state.is_processing:
            return
        self._reset_inactivity_timer()
        self._state.recorded_audio.extend(chunk.data)
        await self._pipeline.accept_audio(chunk)

    async def handle_model_audio(self, data: bytes) -> None:
        if not self._state.is_processing or not data:
            return
        self._state.is_speaking = True
        chunk = AudioChunk(
            data=data,
            stream_id=self._stream_id or "",
            model_instance_id=self._model_instance.instance_id,
        )
        await self.outgoing_audio.emit(chunk)
        self._egress.push(EGRESS_KEY, len(data))

    async def _on_egress_flushed(self, key: str, sent_bytes: int) -> None:
        if not self._state.is_processing:
            return
        self.log.debug("Response part of %s bytes sent", sent_bytes)
        await self.response_done.emit(self._stream_id)

    async def _wait_for_egress_drain(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.egress_drain_timeout_seconds
        while self._egress.has_pending(EGRESS_KEY) and loop.time() < deadline:
            await asyncio.sleep(self._settings.audio_poll_interval_seconds)

    # -- transcript, turns and moderation --------------------------------

    async def record_transcript(self, item: ConversationItem) -> None:
        if not self._state.is_processing:
            return
        if item.role == "user" and item.role_name is None and self._personas is not None:
            item = item.model_copy(update={"role_name": self._personas.testing_role.role_name})
        self._transcript.append(item)
        self.log.info("%s: %s", item.role, item.content)

    async def report_error(self, error: Exception) -> None:
        if not self._state.is_processing:
            self.log.debug("Discarding error after shutdown: %s", error)
            return
        detail = error.detail if isinstance(error, VoiceAgentError) else str(error)
        self.log.error("%s: %s", type(error).__name__, detail)
        await self.error.emit(ErrorEvent(error, self._stream_id, self._model_instance.instance_id))

    async def complete_turn(self) -> None:
        """Close the current turn and moderate it without blocking the caller."""

        if not self._state.is_processing:
            return
        self._state.is_speaking = False
        self._state.turn_index += 1
        self.log.info("Turn %s completed", self._state.turn_index)

        task = asyncio.create_task(self._moderate_and_maybe_stop())
        self._moderation_tasks.add(task)
        task.add_done_callback(self._moderation_tasks.discard)

    async def _moderate_and_maybe_stop(self) -> None:
        should_continue = await self.moderate_conversation()
        if should_continue or not self._state.is_processing:
            return
        await self._wait_for_egress_drain()
        await self.stop()

    async def moderate_conversation(self) -> bool:
        moderator = self._personas.moderator if self._personas else None
        verdict = await self._moderation.decide(self._state.turn_index, moderator, self._transcript)
        if not self._state.is_processing:
            return verdict.should_continue

        self._verdicts.append(verdict)
        if not verdict.should_continue:
            note = verdict.reason if not verdict.explanation else f"{verdict.reason}: {verdict.explanation}"
            self._transcript.append(
                ConversationItem(
                    role="moderator",
                    role_name=moderator.role_name if moderator else None,
                    content=note,
                )
            )
        return verdict.should_continue
