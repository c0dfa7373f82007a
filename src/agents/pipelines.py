"""Mode-specific audio pipelines assembled when an agent is built.

``SpeechToSpeechPipeline`` drives one realtime session that listens, reasons
and speaks. ``TextPipeline`` chains streaming transcription, a chat model
and speech synthesis.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable
from typing import TYPE_CHECKING, Final

from agents.debounce import DebouncedAggregator
from agents.errors import AudioPipelineError, SynthesisFailedError, TransportError, VoiceAgentError
from agents.personas import NEVER_SPEAK_FIRST
from agents.schemas import AudioChunk, ConversationItem, DialogueMode, ModelInstance, PersonaInstructions
from agents.state_utils import build_llm_history
from config.settings import Settings
from llm.base import BaseLLMClient
from realtime.session import SessionConfig
from realtime.transport import RealtimeTransportAdapter, TransportHandlers
from speech.transcriber import BaseStreamingTranscriber, GladiaLiveTranscriber, TranscriptCallback
from speech.tts import BaseSynthesizer, build_synthesizer
from telephony.g711 import convert_pcm24k_to_8k_mulaw

if TYPE_CHECKING:
    from agents.conversation_agent import ConversationAgent

TransportFactory = Callable[[SessionConfig, TransportHandlers, logging.LoggerAdapter], RealtimeTransportAdapter]
TranscriberFactory = Callable[[TranscriptCallback], BaseStreamingTranscriber]

CALLER_KEY: Final[str] = "caller"
REPLY_KEY: Final[str] = "reply"


class DialoguePipeline(ABC):
    """Moves audio between the call and the model on behalf of one agent."""

    def __init__(self, agent: ConversationAgent, settings: Settings) -> None:
        self._agent = agent
        self._settings = settings

    @abstractmethod
    async def open(self, personas: PersonaInstructions) -> None:
        """Connect the model side; the call is live once this returns."""

    @abstractmethod
    async def accept_audio(self, chunk: AudioChunk) -> None:
        """Take one inbound mu-law chunk from the call."""

    @abstractmethod
    async def close(self) -> None:
        """Release model-side resources. Called exactly once, during stop."""


class SpeechToSpeechPipeline(DialoguePipeline):
    def __init__(
        self,
        agent: ConversationAgent,
        settings: Settings,
        model_instance: ModelInstance,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        super().__init__(agent, settings)
        self._model_instance = model_instance
        self._transport_factory = transport_factory or self._default_transport
        self._transport: RealtimeTransportAdapter | None = None
        self._queue: deque[AudioChunk] = deque()
        self._drain_task: asyncio.Task | None = None

    @property
    def transport(self) -> RealtimeTransportAdapter | None:
        return self._transport

    @property
    def queue_depth(self) -> int:
        return len(self._queue)

    def _default_transport(
        self,
        session: SessionConfig,
        handlers: TransportHandlers,
        logger: logging.LoggerAdapter,
    ) -> RealtimeTransportAdapter:
        return RealtimeTransportAdapter(
            session,
            handlers,
            api_key=self._settings.openai_api_key,
            url=self._settings.realtime_url,
            model=self._model_instance.model,
            logger=logger,
        )

    async def open(self, personas: PersonaInstructions) -> None:
        session = SessionConfig(
            instructions=f"{NEVER_SPEAK_FIRST}\n\n{personas.testing_role.role_prompt}",
            voice=self._model_instance.voice,
            transcription_model=self._settings.transcription_model,
        )
        handlers = TransportHandlers(
            on_audio_delta=self._agent.handle_model_audio,
            on_transcript=self._agent.record_transcript,
            on_audio_done=self._agent.complete_turn,
            on_error=self._agent.report_error,
        )
        self._transport = self._transport_factory(session, handlers, self._agent.log)
        await self._transport.connect()
        await self._wait_until_ready()
        self._drain_task = asyncio.create_task(self._drain_loop())

    async def _wait_until_ready(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.ready_timeout_seconds
        while not self._transport.is_ready:
            if loop.time() >= deadline:
                raise TransportError("Realtime session did not acknowledge its configuration in time.")
            await asyncio.sleep(self._settings.ready_poll_interval_seconds)

    async def accept_audio(self, chunk: AudioChunk) -> None:
        self._queue.append(chunk)
        self._agent.log.debug("Queued inbound audio, %s chunk(s) waiting", len(self._queue))

    async def _drain_loop(self) -> None:
        interval = self._settings.audio_poll_interval_seconds
        while True:
            if not self._queue or self._transport is None or not self._transport.is_ready:
                await asyncio.sleep(interval)
                continue

            chunk = self._queue.popleft()
            try:
                await self._transport.send_audio(chunk)
            except Exception as exc:
                self._agent.log.exception("Failed to forward inbound audio")
                await self._agent.report_error(AudioPipelineError(f"Failed to forward audio: {exc}"))
            await asyncio.sleep(0)

    async def close(self) -> None:
        task, self._drain_task = self._drain_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._queue.clear()
        if self._transport is not None:
            await self._transport.disconnect()


class TextPipeline(DialoguePipeline):
    """Transcribe the agent under test, answer with a chat model, speak the answer.

    Transcript fragments are debounced into one utterance before the model is
    asked for a reply. The streamed reply is debounced again so each flushed
    phrase is synthesized as soon as the model pauses; synthesis is serialized
    so audio leaves in text order.
    """

    def __init__(
        self,
        agent: ConversationAgent,
        settings: Settings,
        model_instance: ModelInstance,
        llm_client: BaseLLMClient,
        transcriber_factory: TranscriberFactory | None = None,
        synthesizer: BaseSynthesizer | None = None,
    ) -> None:
        super().__init__(agent, settings)
        self._model_instance = model_instance
        self._llm = llm_client
        factory = transcriber_factory or (lambda callback: GladiaLiveTranscriber(callback, settings))
        self._transcriber = factory(self._on_transcript)
        self._synthesizer = synthesizer or build_synthesizer(settings)
        self._partials: DebouncedAggregator[str, str] = DebouncedAggregator(
            self._on_caller_utterance, combine=_join_words
        )
        self._replies: DebouncedAggregator[str, str] = DebouncedAggregator(self._speak, combine=str.__add__)
        self._respond_lock = asyncio.Lock()
        self._speak_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self._system_prompt = ""

    async def open(self, personas: PersonaInstructions) -> None:
        self._system_prompt = personas.testing_role.role_prompt
        await self._transcriber.connect()

    async def accept_audio(self, chunk: AudioChunk) -> None:
        try:
            await self._transcriber.send_audio(chunk)
        except VoiceAgentError as exc:
            await self._agent.report_error(exc)

    async def _on_transcript(self, text: str) -> None:
        if self._agent.is_processing:
            self._partials.push(CALLER_KEY, text)

    async def _on_caller_utterance(self, key: str, text: str) -> None:
        if not self._agent.is_processing:
            return
        await self._agent.record_transcript(ConversationItem(role="assistant", content=text))
        task = asyncio.create_task(self._respond())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _respond(self) -> None:
        async with self._respond_lock:
            if not self._agent.is_processing:
                return
            history = build_llm_history(self._system_prompt, self._agent.transcript)
            parts: list[str] = []
            try:
                async for delta in self._llm.stream_chat(history, temperature=0.7):
                    if not self._agent.is_processing:
                        return
                    parts.append(delta)
                    self._replies.push(REPLY_KEY, delta)
                await self._replies.flush(REPLY_KEY)
            except Exception as exc:
                self._agent.log.exception("Reply generation failed")
                await self._agent.report_error(AudioPipelineError(f"Reply generation failed: {exc}"))
                return

            reply = "".join(parts).strip()
            if reply:
                await self._agent.record_transcript(ConversationItem(role="user", content=reply))
            await self._agent.complete_turn()

    async def _speak(self, key: str, text: str) -> None:
        text = text.strip()
        if not text:
            return
        async with self._speak_lock:
            if not self._agent.is_processing:
                return
            try:
                pcm = await self._synthesizer.synthesize(text, voice=self._model_instance.voice)
            except SynthesisFailedError as exc:
                await self._agent.report_error(exc)
                return
            await self._agent.handle_model_audio(convert_pcm24k_to_8k_mulaw(pcm))

    async def close(self) -> None:
        self._partials.clear_all()
        self._replies.clear_all()
        await self._transcriber.disconnect()


def _join_words(left: str, right: str) -> str:
    return f"{left} {right}"


def build_pipeline(
    mode: DialogueMode,
    agent: ConversationAgent,
    settings: Settings,
    model_instance: ModelInstance,
    *,
    llm_client: BaseLLMClient,
    transport_factory: TransportFactory | None = None,
    transcriber_factory: TranscriberFactory | None = None,
    synthesizer: BaseSynthesizer | None = None,
) -> DialoguePipeline:
    if mode is DialogueMode.STS:
        return SpeechToSpeechPipeline(agent, settings, model_instance, transport_factory)
    if mode is DialogueMode.LLM:
        return TextPipeline(agent, settings, model_instance, llm_client, transcriber_factory, synthesizer)
    raise ValueError(f"Unsupported dialogue mode: {mode}")
