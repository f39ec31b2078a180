import asyncio
import io
import time

import pytest

from core.config import Settings
from core.state import AgentState
from meetbot.agent import MeetAgent, build_context


class FakeTranscription:
    def __init__(self):
        self.connected = False
        self.closed = False
        self.audio = []

    async def connect(self):
        self.connected = True

    async def close(self):
        self.closed = True

    def is_active(self):
        return self.connected and not self.closed

    def send_audio(self, chunk):
        self.audio.append(chunk)


class FakeMeeting:
    def __init__(self):
        self.joined = None
        self.left = False

    async def join(self, meet_url):
        self.joined = meet_url

    async def leave(self, preserve_session=True):
        self.left = True


def _settings(tmp_path):
    return Settings(
        openai_api_key="test-key",
        meet_url="https://meet.example.com/abc-defg-hij",
        query_dir=tmp_path / "query",
        use_tts=False,
        qa_mode=True,
        watch_force_polling=True,
        watch_debounce_ms=50,
    )


@pytest.mark.asyncio
async def test_agent_answers_transcribed_question_and_cleans_up(tmp_path, fake_openai):
    client = fake_openai("casual", "Pretty good, thanks for asking!")
    context = build_context(_settings(tmp_path), client=client, speak=False)
    transcription = FakeTranscription()
    meeting = FakeMeeting()
    agent = MeetAgent(context, transcription=transcription, meeting=meeting, audio_source=io.BytesIO(b"\x01" * 6400))

    await agent.start()
    assert agent.state is AgentState.LISTENING
    assert meeting.joined == "https://meet.example.com/abc-defg-hij"
    assert transcription.connected

    await asyncio.sleep(0.5)
    agent.ingestor.submit({"text": "How is your week going?", "is_final": True, "confidence": 0.96})
    for _ in range(100):
        if context.archive.count():
            break
        await asyncio.sleep(0.1)

    assert context.archive.count() == 1
    assert context.archive.list_all()[0].analysis == "Pretty good, thanks for asking!"
    assert len(transcription.audio) == 2

    await agent.shutdown(grace_sec=1.0)

    assert agent.state is AgentState.STOPPED
    assert transcription.closed
    assert meeting.left
    assert context.store.size() == 0


@pytest.mark.asyncio
async def test_shutdown_is_idempotent(tmp_path, fake_openai):
    context = build_context(_settings(tmp_path), client=fake_openai("casual"), speak=False)
    agent = MeetAgent(context, transcription=FakeTranscription(), meeting=FakeMeeting())

    await agent.start()
    await agent.shutdown(grace_sec=0.1)
    await agent.shutdown(grace_sec=0.1)

    assert agent.state is AgentState.STOPPED
    assert agent.status()["state"] == "stopped"


@pytest.mark.asyncio
async def test_shutdown_finishes_cycle_that_already_read_its_delta(tmp_path, fake_openai):
    context = build_context(_settings(tmp_path), client=fake_openai("casual", "Busy but good."), speak=False)
    agent = MeetAgent(context, transcription=FakeTranscription(), meeting=FakeMeeting())
    read_since = context.store.read_since

    def slow_read_since(offset):
        time.sleep(0.4)
        return read_since(offset)

    context.store.read_since = slow_read_since
    await agent.start()
    await asyncio.sleep(0.5)
    agent.ingestor.submit({"text": "How is your week going?", "is_final": True, "confidence": 0.96})
    for _ in range(100):
        if agent.watcher.is_processing:
            break
        await asyncio.sleep(0.05)
    assert agent.watcher.is_processing
    assert context.orchestrator.in_flight == 0

    await agent.shutdown(grace_sec=3.0)

    assert context.archive.count() == 1
    assert context.archive.list_all()[0].analysis == "Busy but good."
    assert context.store.size() == 0
    assert agent.state is AgentState.STOPPED

def test_build_context_wires_speech_to_guard(tmp_path, fake_openai):
    class _Speech:
        def __init__(self):
            self.listeners = []

        def on_speaking_change(self, listener):
            self.listeners.append(listener)

        async def synthesize_and_play(self, text):
            pass

    speech = _Speech()
    context = build_context(_settings(tmp_path), client=fake_openai("casual"), speak=True, speech=speech)

    speech.listeners[0](True)
    assert context.guard.is_playing
    speech.listeners[0](False)
    assert not context.guard.is_playing
    assert context.orchestrator.speak_enabled is True
    assert context.ranker is None
