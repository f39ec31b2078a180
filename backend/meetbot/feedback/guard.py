"""
Self-echo suppression.

The agent's microphone also hears the agent's own speech. FeedbackGuard decides
whether an incoming transcript is worth answering by looking at three things:
whether speech is playing right now, whether it stopped less than
`feedback_delay` seconds ago, and whether the text repeats something the agent
said within the last `response_ttl` seconds.

The phrase matcher is a heuristic. It can suppress a genuine short question
that repeats an earlier answer, and it misses paraphrased echoes. Both
thresholds are constructor arguments so they can be tuned per deployment.
"""
from __future__ import annotations

import asyncio
import logging
import re
import time
from threading import Lock
from typing import Callable, Optional

logger = logging.getLogger("meetbot.feedback.guard")

FEEDBACK_DELAY_SEC = 1.0
RESPONSE_TTL_SEC = 30.0
MIN_RESPONSE_CHARS = 10
MIN_PHRASE_CHARS = 10
MAX_PHRASE_WORDS = 3

_PUNCTUATION = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")

REASON_SPEAKING = "speaking"
REASON_COOLDOWN = "cooldown"
REASON_ECHO = "echo"


def clean_text(text: str) -> str:
    if not text or not isinstance(text, str):
        return ""
    lowered = _PUNCTUATION.sub("", text.lower())
    return _WHITESPACE.sub(" ", lowered).strip()


def contains_response_phrase(clean_input: str, response: str) -> bool:
    """
    True when clean_input repeats `response` exactly, or contains a run of
    min(3, words // 2) consecutive words from it longer than 10 characters.
    """
    if not clean_input or not response:
        return False
    if response == clean_input:
        return True
    if len(response) <= MIN_RESPONSE_CHARS:
        return False

    words = response.split(" ")
    run = min(MAX_PHRASE_WORDS, len(words) // 2)
    if run <= 0:
        return False

    for i in range(len(words) - run + 1):
        phrase = " ".join(words[i:i + run])
        if len(phrase) > MIN_PHRASE_CHARS and phrase in clean_input:
            return True
    return False


class FeedbackGuard:
    def __init__(
        self,
        feedback_delay: float = FEEDBACK_DELAY_SEC,
        response_ttl: float = RESPONSE_TTL_SEC,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.feedback_delay = float(feedback_delay)
        self.response_ttl = float(response_ttl)
        self._clock = clock
        self._lock = Lock()
        self._is_playing = False
        self._last_speech_end: Optional[float] = None
        # normalized response -> insertion time
        self._recent: dict[str, float] = {}
        self._stop_event = asyncio.Event()

    @property
    def is_playing(self) -> bool:
        return self._is_playing

    def set_speaking(self, is_playing: bool) -> None:
        playing = bool(is_playing)
        with self._lock:
            if self._is_playing and not playing:
                self._last_speech_end = self._clock()
            self._is_playing = playing

    def store_response(self, text: str) -> None:
        cleaned = clean_text(text)
        if not cleaned:
            return
        with self._lock:
            self._recent[cleaned] = self._clock()

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, inserted in self._recent.items() if now - inserted >= self.response_ttl]
            for key in expired:
                self._recent.pop(key, None)
        return len(expired)

    def recent_responses(self) -> list[str]:
        self.purge_expired()
        with self._lock:
            return list(self._recent)

    def is_similar_to_recent(self, text: str) -> bool:
        clean_input = clean_text(text)
        if not clean_input:
            return False
        return any(contains_response_phrase(clean_input, response) for response in self.recent_responses())

    def check(self, text: str) -> Optional[str]:
        """Return why `text` should be suppressed, or None when it may be processed."""
        if self._is_playing:
            return REASON_SPEAKING

        last_end = self._last_speech_end
        if last_end is not None and (self._clock() - last_end) < self.feedback_delay:
            return REASON_COOLDOWN

        if text and self.is_similar_to_recent(text):
            return REASON_ECHO

        return None

    def should_process(self, text: str) -> bool:
        reason = self.check(text)
        if reason is not None:
            logger.info("Skipping processing | reason=%s", reason)
            return False
        return True

    async def run_expiry(self, interval_sec: float = 1.0) -> None:
        try:
            while not self._stop_event.is_set():
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval_sec)
                except asyncio.TimeoutError:
                    pass
                removed = self.purge_expired()
                if removed:
                    logger.debug("Expired %s recent response(s)", removed)
        finally:
            logger.info("Response expiry loop stopped")

    def stop(self) -> None:
        self._stop_event.set()
