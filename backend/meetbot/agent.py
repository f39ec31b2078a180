"""
Agent wiring.

AgentContext owns every long-lived component of one agent process and is
passed explicitly; nothing here is a module-level singleton. MeetAgent runs the
background loops (transcription, ingestion, watching, response expiry and the
optional status server) and shuts them down in order.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Optional

import uvicorn
from openai import AsyncOpenAI

from core.config import Settings
from core.logger import log_event
from core.state import AgentState
from meetbot.api import create_app
from meetbot.archive.store import AnalysisArchive
from meetbot.classification.classifier import ConversationClassifier
from meetbot.feedback.guard import FeedbackGuard
from meetbot.generation.generator import AnswerGenerator
from meetbot.pipeline.orchestrator import QueryOrchestrator
from meetbot.pipeline.watcher import ChangeWatcher
from meetbot.retrieval.embeddings import OpenAIEmbedder
from meetbot.retrieval.ranker import RetrievalRanker
from meetbot.retrieval.vector_store import PineconeVectorIndex
from meetbot.services.deepgram_service import DeepgramService
from meetbot.session.meeting import MeetingSession, NullMeetingSession
from meetbot.speech.tts import OpenAITextToSpeech, SpeechOutput
from meetbot.transcript.ingestor import TranscriptIngestor
from meetbot.transcript.store import TranscriptStore

logger = logging.getLogger("meetbot.agent")

# 100 ms of 16 kHz mono linear16
AUDIO_CHUNK_BYTES = 3200


@dataclass
class AgentContext:
    settings: Settings
    store: TranscriptStore
    guard: FeedbackGuard
    archive: AnalysisArchive
    orchestrator: QueryOrchestrator
    ranker: Optional[RetrievalRanker] = None
    speech: Optional[SpeechOutput] = None
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: AgentState = AgentState.IDLE


def build_ranker(settings: Settings, client: AsyncOpenAI) -> Optional[RetrievalRanker]:
    if not settings.pinecone_api_key or not settings.pinecone_index_name:
        logger.warning("Pinecone not configured; technical questions are answered without context")
        return None
    index = PineconeVectorIndex(settings.pinecone_api_key, settings.pinecone_index_name)
    return RetrievalRanker(OpenAIEmbedder(client, settings.embedding_model), index)


def build_context(
    settings: Settings,
    client: Optional[AsyncOpenAI] = None,
    speak: Optional[bool] = None,
    ranker: Optional[RetrievalRanker] = None,
    speech: Optional[SpeechOutput] = None,
) -> AgentContext:
    """Construct the shared components for one agent process or one-shot command."""
    client = client or AsyncOpenAI(api_key=settings.openai_api_key)
    speak_enabled = settings.use_tts if speak is None else speak
    session_id = uuid.uuid4().hex[:12]

    store = TranscriptStore(settings.transcript_path)
    guard = FeedbackGuard()
    archive = AnalysisArchive(settings.analysis_dir)
    if ranker is None:
        ranker = build_ranker(settings, client)
    if speech is None and speak_enabled:
        speech = OpenAITextToSpeech(client, model=settings.tts_model, voice=settings.tts_voice)
    if speech is not None:
        speech.on_speaking_change(guard.set_speaking)

    orchestrator = QueryOrchestrator(
        guard=guard,
        classifier=ConversationClassifier(client, model=settings.classifier_model),
        ranker=ranker,
        generator=AnswerGenerator(
            client,
            model=settings.model_name,
            timeout_sec=settings.llm_timeout_sec,
            retries=settings.llm_retries,
        ),
        archive=archive,
        speech=speech,
        speak_enabled=speak_enabled,
        persona=settings.persona_name,
        session_id=session_id,
    )
    return AgentContext(
        settings=settings,
        store=store,
        guard=guard,
        archive=archive,
        orchestrator=orchestrator,
        ranker=ranker,
        speech=speech,
        session_id=session_id,
    )


class MeetAgent:
    def __init__(
        self,
        context: AgentContext,
        transcription: Optional[DeepgramService] = None,
        meeting: Optional[MeetingSession] = None,
        audio_source: Optional[BinaryIO] = None,
    ):
        self.context = context
        settings = context.settings
        self.ingestor = TranscriptIngestor(context.store)
        self.transcription = transcription or DeepgramService(
            api_key=settings.deepgram_api_key or None,
            enabled=not settings.qa_mode,
            transcript_queue=self.ingestor.queue,
        )
        self.meeting = meeting or NullMeetingSession()
        self.audio_source = audio_source
        self.watcher = ChangeWatcher(
            context.store,
            context.orchestrator,
            force_polling=settings.watch_force_polling,
            debounce_ms=settings.watch_debounce_ms,
            session_id=context.session_id,
        )
        self._tasks: list[asyncio.Task] = []
        self._server: Optional[uvicorn.Server] = None
        self._watch_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> AgentState:
        return self.context.state

    def _set_state(self, state: AgentState) -> None:
        self.context.state = state
        log_event("agent", "state", self.context.session_id, state=state.value)

    def status(self) -> dict[str, Any]:
        return {
            "session_id": self.context.session_id,
            "state": self.context.state.value,
            "watch_offset": self.watcher.offset,
            "in_flight": self.context.orchestrator.in_flight,
            "speaking": self.context.guard.is_playing,
            "transcription_active": self.transcription.is_active(),
        }

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.append(task)
        return task

    async def start(self) -> None:
        settings = self.context.settings
        self._set_state(AgentState.STARTING)

        self.context.store.ensure()
        self.watcher.prime()

        self._spawn(self.ingestor.run(), "ingestor")
        self._watch_task = self._spawn(self.watcher.run(), "watcher")
        self._spawn(self.context.guard.run_expiry(), "response-expiry")

        await self.transcription.connect()
        if self.audio_source is not None:
            self._spawn(self._pump_audio(self.audio_source), "audio")

        if settings.status_port:
            config = uvicorn.Config(
                create_app(self.context.archive, status=self.status),
                host="127.0.0.1",
                port=settings.status_port,
                log_level="warning",
            )
            self._server = uvicorn.Server(config)
            self._spawn(self._server.serve(), "status-server")
            logger.info("Status server on http://127.0.0.1:%s", settings.status_port)

        await self.meeting.join(settings.meet_url)
        self._set_state(AgentState.LISTENING)
        logger.info("Agent listening | session=%s transcript=%s", self.context.session_id, self.context.store.path)

    async def _pump_audio(self, source: BinaryIO) -> None:
        """Forward raw linear16 audio from `source` to the transcription stream until EOF."""
        while self.context.state in (AgentState.STARTING, AgentState.LISTENING):
            chunk = await asyncio.to_thread(source.read, AUDIO_CHUNK_BYTES)
            if not chunk:
                logger.info("Audio source reached end of stream")
                break
            self.transcription.send_audio(chunk)

    async def shutdown(self, grace_sec: float = 5.0) -> None:
        if self.context.state in (AgentState.SHUTTING_DOWN, AgentState.STOPPED):
            return
        self._set_state(AgentState.SHUTTING_DOWN)
        logger.info("Shutting down agent")

        self.watcher.stop()
        await self.transcription.close()
        self.ingestor.stop()
        self.context.guard.stop()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + grace_sec
        if self._watch_task is not None and not self._watch_task.done():
            # a cycle that already read its delta runs to the end before the store is reset
            _, pending = await asyncio.wait({self._watch_task}, timeout=grace_sec)
            if pending:
                logger.warning("Watcher still busy after %.1fs grace period", grace_sec)
        await self.context.orchestrator.wait_idle(max(0.0, deadline - loop.time()))
        if isinstance(self.context.speech, OpenAITextToSpeech):
            await self.context.speech.stop()

        try:
            await asyncio.to_thread(self.context.store.reset)
        except OSError as exc:
            logger.error("Could not clear transcript store: %s", exc)

        try:
            await self.meeting.leave(preserve_session=True)
        except Exception as exc:
            logger.error("Error leaving meeting: %s", exc)

        if self._server is not None:
            self._server.should_exit = True

        for task in self._tasks:
            if task.get_name() == "audio" and not task.done():
                task.cancel()
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for task, result in zip(self._tasks, results):
            if isinstance(result, Exception):
                logger.error("Background task %s ended with error: %s", task.get_name(), result)
        self._tasks.clear()

        self._set_state(AgentState.STOPPED)
        logger.info("Agent stopped")
