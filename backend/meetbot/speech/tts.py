"""
Text-to-speech output.

Answers are synthesized with the OpenAI speech endpoint and played through
`ffplay`. Listeners registered with on_speaking_change() are told when playback
starts and when it stops, including when it stops because of an error.
"""
from __future__ import annotations

import asyncio
import logging
import os
import re
import tempfile
from typing import Callable, Protocol

from openai import AsyncOpenAI

logger = logging.getLogger("meetbot.speech.tts")

SpeakingListener = Callable[[bool], None]

_MARKDOWN_CHARS = re.compile(r"[*_~`#]")
_SENTENCE = re.compile(r"[^.!?]+[.!?]+")


class SpeechOutput(Protocol):
    async def synthesize_and_play(self, text: str) -> None:
        ...

    def on_speaking_change(self, listener: SpeakingListener) -> None:
        ...


def prepare_text_for_speech(text: str) -> str:
    cleaned = _MARKDOWN_CHARS.sub("", str(text or ""))
    return re.sub(r"\s+", " ", cleaned).strip()


def split_into_chunks(text: str) -> list[str]:
    chunks = [chunk.strip() for chunk in _SENTENCE.findall(text) if chunk.strip()]
    consumed = "".join(_SENTENCE.findall(text))
    tail = text[len(consumed):].strip() if text.startswith(consumed) else ""
    if tail:
        chunks.append(tail)
    return chunks or ([text] if text else [])


class SpeakingStateMixin:
    def __init__(self):
        self._listeners: list[SpeakingListener] = []
        self.is_speaking = False

    def on_speaking_change(self, listener: SpeakingListener) -> None:
        self._listeners.append(listener)

    def _notify(self, speaking: bool) -> None:
        self.is_speaking = speaking
        for listener in list(self._listeners):
            try:
                listener(speaking)
            except Exception as exc:
                logger.warning("Speaking-state listener failed: %s", exc)


class OpenAITextToSpeech(SpeakingStateMixin):
    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = "tts-1",
        voice: str = "onyx",
        player: str = "ffplay",
        volume: int = 85,
    ):
        super().__init__()
        self.client = client
        self.model = model
        self.voice = voice
        self.player = player
        self.volume = max(0, min(100, int(volume)))
        self._current: asyncio.subprocess.Process | None = None

    async def synthesize(self, text: str) -> bytes:
        response = await self.client.audio.speech.create(
            model=self.model,
            voice=self.voice,
            input=text,
            response_format="mp3",
        )
        return response.content

    async def play(self, audio: bytes) -> None:
        fd, path = tempfile.mkstemp(prefix="speech_", suffix=".mp3")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(audio)
            self._current = await asyncio.create_subprocess_exec(
                self.player,
                "-nodisp",
                "-autoexit",
                "-loglevel",
                "error",
                "-volume",
                str(self.volume),
                path,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await self._current.communicate()
            if self._current.returncode not in (0, None):
                raise RuntimeError(f"{self.player} exited with {self._current.returncode}: {stderr.decode(errors='replace').strip()}")
        finally:
            self._current = None
            try:
                os.unlink(path)
            except OSError:
                logger.debug("Temp audio already removed: %s", path)

    async def synthesize_and_play(self, text: str) -> None:
        prepared = prepare_text_for_speech(text)
        if not prepared:
            return

        self._notify(True)
        try:
            for chunk in split_into_chunks(prepared):
                audio = await self.synthesize(chunk)
                await self.play(audio)
        finally:
            self._notify(False)

    async def stop(self) -> None:
        process = self._current
        if process is not None and process.returncode is None:
            process.kill()
            await process.wait()
