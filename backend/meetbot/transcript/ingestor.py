from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .models import TranscriptPayload, normalize_payload
from .store import TranscriptStore

logger = logging.getLogger("meetbot.transcript.ingestor")


class TranscriptIngestor:
    """
    Single consumer of the transcription queue.
    Appends every normalized payload to the store; it never triggers answers itself.
    """

    def __init__(self, store: TranscriptStore, queue: Optional[asyncio.Queue] = None):
        self.store = store
        self.queue: asyncio.Queue = queue if queue is not None else asyncio.Queue()
        self.appended = 0
        self.dropped = 0

    def submit(self, raw, is_final: Optional[bool] = None) -> bool:
        payload = normalize_payload(raw, is_final=is_final)
        if payload is None:
            self.dropped += 1
            return False
        self.queue.put_nowait(payload)
        return True

    async def ingest(self, payload: TranscriptPayload) -> Optional[int]:
        size = await asyncio.to_thread(self.store.append, payload.to_utterance())
        if size is None:
            self.dropped += 1
        else:
            self.appended += 1
        return size

    async def run(self) -> None:
        try:
            while True:
                payload = await self.queue.get()
                try:
                    if payload is None:
                        break
                    if not isinstance(payload, TranscriptPayload):
                        payload = normalize_payload(payload)
                        if payload is None:
                            self.dropped += 1
                            continue
                    await self.ingest(payload)
                except OSError as exc:
                    logger.error("Failed to append transcript: %s", exc)
                finally:
                    self.queue.task_done()
        finally:
            logger.info("Transcript ingestor stopped | appended=%s dropped=%s", self.appended, self.dropped)

    def stop(self) -> None:
        """Finish appending what is already queued, then exit."""
        self.queue.put_nowait(None)
