from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Optional

from meetbot.classification.classifier import ConversationType
from meetbot.errors import ArchiveCorruptError, ArchiveError

logger = logging.getLogger("meetbot.archive.store")

_REQUIRED_KEYS = ("timestamp", "transcript", "context", "analysis", "conversationType")
_ID_UNSAFE = re.compile(r"[:.+]")


@dataclass(frozen=True)
class AnalysisRecord:
    transcript: str
    analysis: str
    conversation_type: ConversationType
    context: Optional[str] = None
    timestamp: str = ""

    @classmethod
    def create(
        cls,
        transcript: str,
        analysis: str,
        conversation_type: ConversationType,
        context: Optional[str] = None,
    ) -> "AnalysisRecord":
        return cls(
            transcript=transcript,
            analysis=analysis,
            conversation_type=conversation_type,
            context=context,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "transcript": self.transcript,
            "context": self.context,
            "analysis": self.analysis,
            "conversationType": self.conversation_type.value,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "AnalysisRecord":
        if not isinstance(payload, dict):
            raise ValueError("record is not an object")
        missing = [key for key in _REQUIRED_KEYS if key not in payload]
        if missing:
            raise ValueError(f"missing keys: {', '.join(missing)}")
        context = payload["context"]
        if context is not None and not isinstance(context, str):
            raise ValueError("context must be a string or null")
        try:
            conversation_type = ConversationType(payload["conversationType"])
        except ValueError:
            raise ValueError(f"unknown conversationType {payload['conversationType']!r}") from None
        timestamp = payload["timestamp"]
        if not isinstance(timestamp, str):
            raise ValueError("timestamp must be a string")
        parse_timestamp(timestamp)
        return cls(
            transcript=str(payload["transcript"]),
            analysis=str(payload["analysis"]),
            conversation_type=conversation_type,
            context=context,
            timestamp=timestamp,
        )


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 record timestamp; naive values are taken as UTC. Raises ValueError."""
    try:
        moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValueError(f"invalid timestamp {value!r}") from None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def _sort_key(record: AnalysisRecord) -> float:
    return parse_timestamp(record.timestamp).timestamp()


class AnalysisArchive:
    """
    One JSON file per orchestration result, listed newest first.
    Unlike the live transcript, a record that cannot be read is an error.
    """

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)
        self._lock = Lock()
        self._last_stem = ""
        self._sequence = 0

    def _next_stem(self, timestamp: str) -> str:
        stem = "analysis_" + _ID_UNSAFE.sub("-", timestamp)
        if stem == self._last_stem:
            self._sequence += 1
            return f"{stem}_{self._sequence}"
        self._last_stem = stem
        self._sequence = 0
        return stem

    def save(self, record: AnalysisRecord) -> Path:
        with self._lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            stem = self._next_stem(record.timestamp)
            path = self.directory / f"{stem}.json"
            while path.exists():
                self._sequence += 1
                path = self.directory / f"{stem}_{self._sequence}.json"
            temp_path = path.with_suffix(".tmp")
            try:
                temp_path.write_text(json.dumps(record.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
                temp_path.replace(path)
            except OSError as exc:
                raise ArchiveError(f"Could not write analysis record {path}: {exc}") from exc

        logger.info("Analysis saved to: %s", path)
        return path

    def load(self, path: Path) -> AnalysisRecord:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            return AnalysisRecord.from_dict(payload)
        except (OSError, ValueError) as exc:
            raise ArchiveCorruptError(path, str(exc)) from exc

    def list_all(self, limit: Optional[int] = None) -> list[AnalysisRecord]:
        if not self.directory.exists():
            return []

        with self._lock:
            rows = [(path.name, self.load(path)) for path in self.directory.glob("analysis_*.json")]

        # same-timestamp records fall back to write order: stem, stem_1, stem_2, ...
        rows.sort(key=lambda row: (_sort_key(row[1]), len(row[0]), row[0]), reverse=True)
        records = [record for _, record in rows]
        if limit is not None:
            records = records[: max(0, int(limit))]
        return records

    def count(self) -> int:
        if not self.directory.exists():
            return 0
        return len(list(self.directory.glob("analysis_*.json")))
