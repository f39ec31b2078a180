import asyncio

import pytest

from core.state import OrchestrationState
from meetbot.archive.store import AnalysisArchive
from meetbot.classification.classifier import ConversationType
from meetbot.errors import GenerationError
from meetbot.feedback.guard import FeedbackGuard
from meetbot.pipeline.orchestrator import QueryOrchestrator
from meetbot.retrieval.models import RetrievalResult, RetrievalSource
from meetbot.system_metrics import get_metrics_snapshot
from meetbot.transcript.models import Finality, Utterance


class FakeClassifier:
    def __init__(self, label=ConversationType.TECHNICAL):
        self.label = label
        self.calls = []

    async def classify(self, text):
        self.calls.append(text)
        return self.label


class FakeRanker:
    def __init__(self, context="Consensus requires a quorum."):
        self.context = context
        self.calls = []

    async def retrieve(self, query):
        self.calls.append(query)
        sources = [RetrievalSource(id="doc-1", score=0.9, metadata={"text": self.context})] if self.context else []
        return RetrievalResult(context=self.context, sources=sources, total_matches=len(sources), relevant_matches=len(sources))


class FakeGenerator:
    def __init__(self, answer="Consensus is hard because...", error=None, delay=0.0):
        self.answer = answer
        self.error = error
        self.delay = delay
        self.requests = []

    async def generate(self, request):
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.answer


class FakeSpeech:
    def __init__(self, guard=None, error=None):
        self.spoken = []
        self.error = error
        self.recent_at_start = None
        self.guard = guard

    def on_speaking_change(self, listener):
        pass

    async def synthesize_and_play(self, text):
        if self.guard is not None:
            self.recent_at_start = self.guard.recent_responses()
        if self.error:
            raise self.error
        self.spoken.append(text)


def _orchestrator(tmp_path, **overrides):
    parts = {
        "guard": FeedbackGuard(),
        "classifier": FakeClassifier(),
        "ranker": FakeRanker(),
        "generator": FakeGenerator(),
        "archive": AnalysisArchive(tmp_path / "analysis"),
        "speech": None,
        "speak_enabled": False,
    }
    parts.update(overrides)
    return QueryOrchestrator(**parts), parts


@pytest.mark.asyncio
async def test_technical_utterance_retrieves_generates_and_persists(tmp_path):
    orchestrator, parts = _orchestrator(tmp_path)

    result = await orchestrator.process("What is your view on distributed consensus?")

    assert result.state is OrchestrationState.DONE
    assert result.history == [
        OrchestrationState.RECEIVED,
        OrchestrationState.FEEDBACK_CHECK,
        OrchestrationState.CLASSIFY,
        OrchestrationState.RETRIEVE,
        OrchestrationState.GENERATE,
        OrchestrationState.PERSIST,
        OrchestrationState.DONE,
    ]
    assert result.context == "Consensus requires a quorum."
    assert [s.id for s in result.sources] == ["doc-1"]
    assert "Context: Consensus requires a quorum." in parts["generator"].requests[0].messages[1]["content"]
    records = parts["archive"].list_all()
    assert len(records) == 1
    assert records[0].conversation_type is ConversationType.TECHNICAL
    assert records[0].context == "Consensus requires a quorum."
    assert result.archive_path.exists()


@pytest.mark.asyncio
async def test_casual_utterance_skips_retrieval(tmp_path):
    orchestrator, parts = _orchestrator(tmp_path, classifier=FakeClassifier(ConversationType.CASUAL))

    result = await orchestrator.process("How was your weekend?")

    assert result.state is OrchestrationState.DONE
    assert OrchestrationState.RETRIEVE not in result.history
    assert parts["ranker"].calls == []
    assert parts["archive"].list_all()[0].context is None


@pytest.mark.asyncio
async def test_supplied_context_skips_retrieval(tmp_path):
    orchestrator, parts = _orchestrator(tmp_path)

    result = await orchestrator.process("Why Raft?", context="Raft is understandable.")

    assert parts["ranker"].calls == []
    assert result.context == "Raft is understandable."


@pytest.mark.asyncio
async def test_empty_retrieval_is_recorded_as_no_context(tmp_path):
    orchestrator, parts = _orchestrator(tmp_path, ranker=FakeRanker(context=""))

    result = await orchestrator.process("Explain vector clocks")

    assert result.state is OrchestrationState.DONE
    assert result.context is None
    assert "Context:" not in parts["generator"].requests[0].messages[1]["content"]


@pytest.mark.asyncio
async def test_feedback_aborts_before_any_service_call(tmp_path):
    guard = FeedbackGuard()
    guard.set_speaking(True)
    orchestrator, parts = _orchestrator(tmp_path, guard=guard)

    result = await orchestrator.process("What is your view on distributed consensus?")

    assert result.state is OrchestrationState.ABORTED
    assert result.abort_reason == "feedback:speaking"
    assert parts["classifier"].calls == []
    assert parts["generator"].requests == []
    assert parts["archive"].count() == 0
    assert get_metrics_snapshot()["orchestrations_aborted_feedback"] == 1


@pytest.mark.asyncio
async def test_generation_failure_propagates_and_persists_nothing(tmp_path):
    orchestrator, parts = _orchestrator(tmp_path, generator=FakeGenerator(error=GenerationError("down")))

    with pytest.raises(GenerationError):
        await orchestrator.process("Explain sharding")

    assert parts["archive"].count() == 0
    assert orchestrator.in_flight == 0
    snapshot = get_metrics_snapshot()
    assert snapshot["generation_failures"] == 1
    assert snapshot["orchestrations_failed"] == 1


@pytest.mark.asyncio
async def test_interim_utterance_is_rejected(tmp_path):
    orchestrator, _ = _orchestrator(tmp_path)

    with pytest.raises(ValueError):
        await orchestrator.process(Utterance(text="partial", finality=Finality.INTERIM))


@pytest.mark.asyncio
async def test_response_is_registered_before_playback(tmp_path):
    guard = FeedbackGuard()
    speech = FakeSpeech(guard=guard)
    orchestrator, _ = _orchestrator(tmp_path, guard=guard, speech=speech, speak_enabled=True)

    result = await orchestrator.process("Explain sharding")

    assert result.spoken is True
    assert speech.spoken == ["Consensus is hard because..."]
    assert speech.recent_at_start == ["consensus is hard because"]
    assert guard.check("consensus is hard because of partitions") == "echo"


@pytest.mark.asyncio
async def test_speech_failure_still_completes(tmp_path):
    speech = FakeSpeech(error=RuntimeError("ffplay missing"))
    orchestrator, parts = _orchestrator(tmp_path, speech=speech, speak_enabled=True)

    result = await orchestrator.process("Explain sharding")

    assert result.state is OrchestrationState.DONE
    assert result.spoken is False
    assert parts["archive"].count() == 1
    assert get_metrics_snapshot()["speech_failures"] == 1


@pytest.mark.asyncio
async def test_speech_disabled_never_speaks(tmp_path):
    speech = FakeSpeech()
    orchestrator, _ = _orchestrator(tmp_path, speech=speech, speak_enabled=False)

    result = await orchestrator.process("Explain sharding")

    assert OrchestrationState.SPEAK not in result.history
    assert speech.spoken == []


@pytest.mark.asyncio
async def test_wait_idle_tracks_in_flight_runs(tmp_path):
    orchestrator, _ = _orchestrator(tmp_path, generator=FakeGenerator(delay=0.05))

    assert await orchestrator.wait_idle(0.01) is True
    task = asyncio.create_task(orchestrator.process("Explain sharding"))
    await asyncio.sleep(0)

    assert orchestrator.in_flight == 1
    assert await orchestrator.wait_idle(0.001) is False
    assert await orchestrator.wait_idle(1.0) is True
    await task
