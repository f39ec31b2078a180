import asyncio
import logging
import os

from deepgram import DeepgramClient, LiveOptions, LiveTranscriptionEvents

from core.config import QA_MODE
from meetbot.services.deepgram_stream import DeepgramStreamGuard
from meetbot.transcript.models import TranscriptPayload, normalize_payload

logger = logging.getLogger("meetbot.services.deepgram_service")

DEEPGRAM_MODEL = os.getenv("DEEPGRAM_MODEL", "nova-2")
DEEPGRAM_ENDPOINTING_MS = max(300, int(os.getenv("DEEPGRAM_ENDPOINTING_MS", "700")))
RECONNECT_BACKOFF_SEC = 1.0


class DeepgramService:
    """
    Live transcription source.

    Raw audio goes in through send_audio(); normalized TranscriptPayloads come
    out on `transcript_queue`, which has a single consumer (TranscriptIngestor).
    When disabled (QA mode or no key) every call is a no-op.
    """

    def __init__(
        self,
        api_key: str | None = None,
        enabled: bool | None = None,
        language: str = "en-US",
        transcript_queue: asyncio.Queue | None = None,
        max_reconnect_attempts: int = 2,
    ):
        self.enabled = (not QA_MODE) if enabled is None else enabled
        self.language = language
        self.client = self._create_client(api_key or os.getenv("DEEPGRAM_API_KEY")) if self.enabled else None
        self.enabled = self.client is not None
        self.transcript_queue: asyncio.Queue = transcript_queue if transcript_queue is not None else asyncio.Queue()
        self.guard = DeepgramStreamGuard(self._reconnect, self._can_reconnect) if self.enabled else None
        self.connection = None
        self.active = False
        self.max_reconnect_attempts = max(1, int(max_reconnect_attempts))
        self._loop: asyncio.AbstractEventLoop | None = None
        self._watchdog_task: asyncio.Task | None = None
        self._reconnecting = False
        self._closed = False
        self._degraded = False

    def _create_client(self, api_key: str | None):
        if not api_key:
            logger.error("[DG] DEEPGRAM_API_KEY not set; live transcription disabled")
            return None
        try:
            client = DeepgramClient(api_key)
        except Exception as exc:
            logger.warning("[DG] client init failed; live transcription disabled: %s", exc)
            return None
        logger.info("[DG] client ready | language=%s model=%s", self.language, DEEPGRAM_MODEL)
        return client

    def _can_reconnect(self) -> bool:
        return self.enabled and self.active and not self._closed and not self._degraded

    def is_active(self) -> bool:
        return self.active and not self._closed and not self._degraded

    def _live_options(self) -> LiveOptions:
        return LiveOptions(
            model=DEEPGRAM_MODEL,
            language=self.language,
            encoding="linear16",
            sample_rate=16000,
            channels=1,
            interim_results=True,
            punctuate=True,
            smart_format=True,
            endpointing=DEEPGRAM_ENDPOINTING_MS,
        )

    def _open_connection(self) -> None:
        connection = self.client.listen.live.v("1")
        connection.on(LiveTranscriptionEvents.Transcript, self._on_transcript)
        connection.on(LiveTranscriptionEvents.Metadata, self._on_metadata)
        connection.on(LiveTranscriptionEvents.Error, self._on_error)
        # start() is synchronous in SDK 3.x
        connection.start(self._live_options())
        self.connection = connection
        if self.guard:
            self.guard.reset_order()

    def _finish_connection(self) -> None:
        connection, self.connection = self.connection, None
        if connection is None:
            return
        try:
            connection.finish()
        except Exception as exc:
            logger.warning("[DG] finish() failed during cleanup: %s", exc)

    async def connect(self) -> None:
        if not self.enabled:
            logger.info("[DG] disabled; no live transcription")
            return
        if self.connection is not None:
            return

        self._loop = asyncio.get_running_loop()
        self._closed = False
        self._degraded = False
        self.active = True
        self._open_connection()

        if self._watchdog_task is None or self._watchdog_task.done():
            self._watchdog_task = asyncio.create_task(self.guard.watchdog())
        self.guard.note_audio_activity()
        logger.info("[DG] live transcription started")

    async def _reconnect(self) -> bool:
        """Reopen a stalled stream. Gives up, and marks the service degraded, after max_reconnect_attempts."""
        if self._reconnecting or not self._can_reconnect():
            return False

        self._reconnecting = True
        try:
            for attempt in range(1, self.max_reconnect_attempts + 1):
                logger.warning("[DG] reconnecting | attempt=%s/%s", attempt, self.max_reconnect_attempts)
                self._finish_connection()
                await asyncio.sleep(RECONNECT_BACKOFF_SEC * attempt)
                if not self._can_reconnect():
                    return False
                try:
                    self._open_connection()
                except Exception as exc:
                    logger.error("[DG] reconnect failed: %s", exc)
                    continue
                self.guard.note_audio_activity()
                return True
        finally:
            self._reconnecting = False

        self._degraded = True
        self.active = False
        self.guard.stop()
        logger.error("[DG] reconnect budget exhausted; transcription degraded")
        return False

    def send_audio(self, audio_bytes: bytes) -> None:
        if not self.is_active() or self.connection is None:
            return
        self.guard.note_audio_activity()
        self.connection.send(bytes(audio_bytes))

    # SDK callbacks run on the SDK's own thread

    def _on_transcript(self, client, result, **kwargs):
        if not self.enabled or not self.active:
            return
        try:
            payload = normalize_payload(result)
        except Exception as exc:
            logger.error("[DG] unreadable transcription result: %s", exc)
            return
        if payload is None:
            return
        if self.guard and not self.guard.is_in_order(payload.start):
            return

        logger.debug("[DG] %s | final=%s", payload.text, payload.is_final)
        self._publish(payload)

    def _publish(self, payload: TranscriptPayload) -> None:
        loop = self._loop
        if loop is not None and loop.is_running():
            loop.call_soon_threadsafe(self.transcript_queue.put_nowait, payload)
        else:
            self.transcript_queue.put_nowait(payload)

    def _on_metadata(self, client, metadata, **kwargs):
        logger.info("[DG] metadata: %s", metadata)

    def _on_error(self, client, error, **kwargs):
        logger.error("[DG] stream error: %s", error)

    async def close(self) -> None:
        """Stop the stream. Safe to call more than once."""
        self.active = False
        self._closed = True
        if self.guard:
            self.guard.stop()
        task, self._watchdog_task = self._watchdog_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._finish_connection()
        logger.info("[DG] live transcription stopped")
