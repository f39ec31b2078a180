"""
Per-utterance answer pipeline.

    RECEIVED -> FEEDBACK_CHECK -> CLASSIFY -> (RETRIEVE) -> GENERATE -> PERSIST -> (SPEAK) -> DONE

FEEDBACK_CHECK may end the run in ABORTED. Classification, retrieval and speech
failures fall back to a default and the run continues. A generation failure
raises GenerationError to the caller; nothing is persisted in that case.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from core.logger import log_event
from core.state import OrchestrationState
from meetbot.archive.store import AnalysisArchive, AnalysisRecord
from meetbot.classification.classifier import ConversationClassifier, ConversationType
from meetbot.feedback.guard import FeedbackGuard
from meetbot.generation.generator import AnswerGenerator
from meetbot.generation.prompts import build_prompt
from meetbot.retrieval.models import RetrievalSource
from meetbot.retrieval.ranker import RetrievalRanker
from meetbot.speech.tts import SpeechOutput
from meetbot.system_metrics import (
    decrement_metric,
    increment_metric,
    observe_orchestration_latency_ms,
)
from meetbot.transcript.models import Finality, Utterance

logger = logging.getLogger("meetbot.pipeline.orchestrator")


@dataclass
class OrchestrationResult:
    transcript: str
    state: OrchestrationState = OrchestrationState.RECEIVED
    conversation_type: Optional[ConversationType] = None
    context: Optional[str] = None
    sources: list[RetrievalSource] = field(default_factory=list)
    analysis: Optional[str] = None
    record: Optional[AnalysisRecord] = None
    archive_path: Optional[Path] = None
    spoken: bool = False
    abort_reason: Optional[str] = None
    history: list[OrchestrationState] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.state is OrchestrationState.DONE

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "transcript": self.transcript,
            "conversationType": self.conversation_type.value if self.conversation_type else None,
            "context": self.context,
            "sources": [source.to_dict() for source in self.sources],
            "analysis": self.analysis,
            "archivePath": str(self.archive_path) if self.archive_path else None,
            "spoken": self.spoken,
            "abortReason": self.abort_reason,
        }


class QueryOrchestrator:
    def __init__(
        self,
        guard: FeedbackGuard,
        classifier: ConversationClassifier,
        ranker: Optional[RetrievalRanker],
        generator: AnswerGenerator,
        archive: AnalysisArchive,
        speech: Optional[SpeechOutput] = None,
        speak_enabled: bool = True,
        persona: str = "the host",
        session_id: str = "",
    ):
        self.guard = guard
        self.classifier = classifier
        self.ranker = ranker
        self.generator = generator
        self.archive = archive
        self.speech = speech
        self.speak_enabled = speak_enabled
        self.persona = persona
        self.session_id = session_id
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def _advance(self, result: OrchestrationResult, state: OrchestrationState) -> None:
        result.state = state
        result.history.append(state)
        logger.debug("Orchestration state -> %s", state.value)

    async def process(
        self,
        utterance: Union[Utterance, str],
        context: Optional[str] = None,
    ) -> OrchestrationResult:
        if isinstance(utterance, str):
            utterance = Utterance(text=utterance, finality=Finality.FINAL)
        if utterance.finality is not Finality.FINAL:
            raise ValueError("Only FINAL utterances can be orchestrated")

        self._in_flight += 1
        self._idle.clear()
        increment_metric("orchestrations_started")
        increment_metric("orchestrations_in_flight")
        started = time.perf_counter()
        try:
            return await self._run(utterance.text.strip(), context)
        except Exception:
            increment_metric("orchestrations_failed")
            raise
        finally:
            observe_orchestration_latency_ms((time.perf_counter() - started) * 1000.0)
            decrement_metric("orchestrations_in_flight")
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.set()

    async def _run(self, transcript: str, context: Optional[str]) -> OrchestrationResult:
        result = OrchestrationResult(transcript=transcript)
        self._advance(result, OrchestrationState.RECEIVED)

        self._advance(result, OrchestrationState.FEEDBACK_CHECK)
        reason = self.guard.check(transcript)
        if reason is not None:
            result.abort_reason = f"feedback:{reason}"
            self._advance(result, OrchestrationState.ABORTED)
            increment_metric("orchestrations_aborted_feedback")
            log_event("orchestrator", "aborted", self.session_id, reason=reason, transcript=transcript)
            return result

        self._advance(result, OrchestrationState.CLASSIFY)
        conversation_type = await self.classifier.classify(transcript)
        result.conversation_type = conversation_type
        increment_metric(f"conversations_{conversation_type.value}")

        if conversation_type is ConversationType.TECHNICAL and not context and self.ranker is not None:
            self._advance(result, OrchestrationState.RETRIEVE)
            retrieval = await self.ranker.retrieve(transcript)
            increment_metric("retrievals_performed")
            context = retrieval.context or None
            result.sources = list(retrieval.sources)

        result.context = context or None

        self._advance(result, OrchestrationState.GENERATE)
        request = build_prompt(transcript, result.context, conversation_type, persona=self.persona)
        try:
            analysis = await self.generator.generate(request)
        except Exception:
            increment_metric("generation_failures")
            self._advance(result, OrchestrationState.ABORTED)
            log_event("orchestrator", "generation_failed", self.session_id, transcript=transcript)
            raise
        result.analysis = analysis
        logger.info("Analysis generated successfully (%s response)", conversation_type.value)

        self._advance(result, OrchestrationState.PERSIST)
        record = AnalysisRecord.create(
            transcript=transcript,
            analysis=analysis,
            conversation_type=conversation_type,
            context=result.context,
        )
        result.archive_path = await asyncio.to_thread(self.archive.save, record)
        result.record = record
        increment_metric("archive_records_saved")

        if self.speak_enabled and self.speech is not None:
            self._advance(result, OrchestrationState.SPEAK)
            result.spoken = await self._speak(analysis)

        self._advance(result, OrchestrationState.DONE)
        increment_metric("orchestrations_completed")
        log_event(
            "orchestrator",
            "completed",
            self.session_id,
            conversation_type=conversation_type.value,
            sources=len(result.sources),
            spoken=result.spoken,
            analysis=analysis,
        )
        return result

    async def _speak(self, analysis: str) -> bool:
        # registered before playback so the echo of this answer is recognized
        self.guard.store_response(analysis)
        increment_metric("speech_started")
        try:
            await self.speech.synthesize_and_play(analysis)
            return True
        except Exception as exc:
            increment_metric("speech_failures")
            logger.error("Error in text-to-speech; analysis already saved: %s", exc)
            return False

    async def wait_idle(self, timeout: float) -> bool:
        """Wait until no orchestration is running. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for %s in-flight orchestration(s)", self._in_flight)
            return False
