from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Optional

from .models import Finality, Utterance, utc_timestamp
from .parser import format_entry, parse_entries

logger = logging.getLogger("meetbot.transcript.store")


@dataclass(frozen=True)
class TranscriptDelta:
    data: bytes
    start: int
    end: int
    truncated: bool = False

    @property
    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")

    def __bool__(self) -> bool:
        return bool(self.data)


class TranscriptStore:
    """
    Append-only transcript log on disk.

    Writers only append whole entries or truncate the file to empty, so readers
    can track a byte offset without locking the file.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = Lock()

    def ensure(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self.path.touch()

    def size(self) -> int:
        try:
            return self.path.stat().st_size
        except FileNotFoundError:
            return 0

    def append(self, utterance: Utterance) -> Optional[int]:
        """
        Append one entry. Returns the store size after the write, or None when
        the utterance carries no text.
        """
        if not str(utterance.text or "").strip():
            logger.info("Skipping empty or whitespace-only transcript")
            return None

        encoded = format_entry(utterance).encode("utf-8")
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("ab") as handle:
                handle.write(encoded)
                handle.flush()
            size = self.size()

        logger.debug("Appended %s entry (%d bytes)", utterance.finality.value, len(encoded))
        return size

    def append_text(
        self,
        text: str,
        confidence: Optional[float],
        is_final: bool,
        timestamp: Optional[str] = None,
    ) -> Optional[int]:
        if not isinstance(text, str) or not text.strip():
            logger.info("Skipping empty or invalid transcript")
            return None
        return self.append(
            Utterance(
                text=text.strip(),
                finality=Finality.FINAL if is_final else Finality.INTERIM,
                confidence=confidence,
                timestamp=timestamp or utc_timestamp(),
            )
        )

    def read_since(self, offset: int) -> TranscriptDelta:
        """
        Return the bytes appended after `offset`, bounded by a size snapshot taken
        before reading. If the store shrank below `offset` the whole current
        content is returned with truncated=True.
        """
        offset = max(0, int(offset or 0))
        snapshot = self.size()
        truncated = snapshot < offset
        start = 0 if truncated else offset

        if snapshot <= start:
            return TranscriptDelta(data=b"", start=start, end=snapshot, truncated=truncated)

        with self.path.open("rb") as handle:
            handle.seek(start)
            data = handle.read(snapshot - start)

        return TranscriptDelta(data=data, start=start, end=start + len(data), truncated=truncated)

    def read_all(self) -> str:
        if not self.path.exists():
            return ""
        return self.path.read_text(encoding="utf-8", errors="replace")

    def latest_final(self) -> Optional[str]:
        batch = parse_entries(self.read_all())
        finals = batch.finals
        if not finals:
            return None
        return finals[-1].text

    def reset(self) -> None:
        with self._lock:
            if self.path.exists():
                self.path.write_bytes(b"")
        logger.info("Transcript store cleared: %s", self.path)
