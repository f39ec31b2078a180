"""
Incremental transcript watcher.

Keeps the byte offset of the last consumed transcript content and, on each
change notification, orchestrates the FINAL utterances appended since then.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import watchfiles

from core.logger import log_event
from meetbot.pipeline.orchestrator import QueryOrchestrator
from meetbot.system_metrics import increment_metric
from meetbot.transcript.parser import parse_entries
from meetbot.transcript.store import TranscriptStore

logger = logging.getLogger("meetbot.pipeline.watcher")


@dataclass(frozen=True)
class WatchCycle:
    start: int
    end: int
    entries: int = 0
    finals: int = 0
    skipped: int = 0
    failures: int = 0
    truncated: bool = False


class ChangeWatcher:
    def __init__(
        self,
        store: TranscriptStore,
        orchestrator: QueryOrchestrator,
        force_polling: bool = False,
        debounce_ms: int = 500,
        session_id: str = "",
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.force_polling = force_polling
        self.debounce_ms = debounce_ms
        self.session_id = session_id
        self.offset = 0
        self._processing = False
        self._stop_event = asyncio.Event()

    @property
    def is_processing(self) -> bool:
        return self._processing

    def prime(self, process_existing: bool = False) -> int:
        self.offset = 0 if process_existing else self.store.size()
        logger.info("Watching %s from offset %s", self.store.path, self.offset)
        return self.offset

    async def check_for_changes(self) -> Optional[WatchCycle]:
        """
        Process everything appended since the last cycle.
        Returns None when another cycle is still running; that notification is dropped.
        """
        if self._processing:
            increment_metric("watcher_cycles_skipped")
            logger.info("Change notification skipped: previous cycle still processing")
            return None
        self._processing = True

        start = self.offset
        end = start
        try:
            delta = await asyncio.to_thread(self.store.read_since, self.offset)
            end = delta.end
            if delta.truncated:
                increment_metric("watcher_truncations")
                logger.info("Transcript store shrank below offset %s; reading from the start", self.offset)
            if not delta:
                return WatchCycle(start=delta.start, end=end, truncated=delta.truncated)

            increment_metric("watcher_cycles")
            batch = parse_entries(delta.text)
            finals = batch.finals
            increment_metric("entries_parsed", len(batch.utterances))
            increment_metric("entries_skipped", batch.skipped)
            logger.info(
                "Transcript grew by %s bytes: %s entries, %s final, %s skipped",
                end - delta.start,
                len(batch.utterances),
                len(finals),
                batch.skipped,
            )

            outcomes = await asyncio.gather(
                *(self.orchestrator.process(utterance) for utterance in finals),
                return_exceptions=True,
            )
            failures = 0
            for utterance, outcome in zip(finals, outcomes):
                if isinstance(outcome, BaseException):
                    failures += 1
                    logger.error("Orchestration failed for utterance at %s: %s", utterance.timestamp, outcome)

            log_event(
                "watcher",
                "cycle",
                self.session_id,
                start=delta.start,
                end=end,
                finals=len(finals),
                failures=failures,
            )
            return WatchCycle(
                start=delta.start,
                end=end,
                entries=len(batch.utterances),
                finals=len(finals),
                skipped=batch.skipped,
                failures=failures,
                truncated=delta.truncated,
            )
        except Exception as exc:
            logger.error("Error processing transcript changes: %s", exc)
            return WatchCycle(start=start, end=end, failures=1)
        finally:
            # a poisoned entry is consumed, not retried
            self.offset = end
            self._processing = False

    async def run(self) -> None:
        self.store.ensure()
        target = self.store.path.resolve()

        def _is_transcript(_change: watchfiles.Change, path: str) -> bool:
            return Path(path).resolve() == target

        logger.info("Started watching %s", target)
        async for changes in watchfiles.awatch(
            target.parent,
            watch_filter=_is_transcript,
            stop_event=self._stop_event,
            force_polling=self.force_polling,
            debounce=self.debounce_ms,
        ):
            logger.debug("Change detected: %s", ", ".join(change.name for change, _ in changes))
            await self.check_for_changes()
        logger.info("Stopped watching %s", target)

    def stop(self) -> None:
        self._stop_event.set()
