from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class Finality(str, Enum):
    INTERIM = "INTERIM"
    FINAL = "FINAL"


@dataclass(frozen=True)
class Utterance:
    """
    One unit of recognized speech.
    Immutable: a later FINAL never rewrites an earlier INTERIM, both are kept.
    """
    text: str
    finality: Finality = Finality.FINAL
    confidence: Optional[float] = None  # 0..1, None when the source did not report one
    timestamp: str = field(default_factory=utc_timestamp)

    @property
    def is_final(self) -> bool:
        return self.finality is Finality.FINAL

    @property
    def confidence_pct(self) -> float:
        return round(float(self.confidence or 0.0) * 100.0, 2)


@dataclass(frozen=True)
class TranscriptPayload:
    """
    The one shape a transcription result takes past the ingestion boundary.
    """
    text: str
    is_final: bool
    confidence: Optional[float] = None
    timestamp: Optional[str] = None
    start: float = 0.0

    def to_utterance(self) -> Utterance:
        return Utterance(
            text=self.text,
            finality=Finality.FINAL if self.is_final else Finality.INTERIM,
            confidence=self.confidence,
            timestamp=self.timestamp or utc_timestamp(),
        )


def _clamp_confidence(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number > 1.0:
        # some sources report a percentage
        number = number / 100.0
    return max(0.0, min(1.0, number))


def _first_alternative(raw: Any) -> Any:
    channel = raw.get("channel") if isinstance(raw, dict) else getattr(raw, "channel", None)
    if not channel:
        return None
    alternatives = channel.get("alternatives") if isinstance(channel, dict) else getattr(channel, "alternatives", None)
    if not alternatives:
        return None
    return alternatives[0]


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def normalize_payload(raw: Any, is_final: Optional[bool] = None) -> Optional[TranscriptPayload]:
    """
    Normalize whatever the transcription source hands over into a TranscriptPayload.

    Accepts a plain string, a flat dict ({"text", "is_final", "confidence"}), or a
    streaming result carrying channel.alternatives[0].transcript, either as dict or
    SDK object. Returns None when there is no usable text.
    """
    if raw is None:
        return None

    if isinstance(raw, TranscriptPayload):
        return raw if raw.text.strip() else None

    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        return TranscriptPayload(text=text, is_final=bool(is_final))

    alternative = _first_alternative(raw)
    if alternative is not None:
        text = str(_field(alternative, "transcript", "") or "").strip()
        confidence = _field(alternative, "confidence")
    else:
        text = str(_field(raw, "text", "") or "").strip()
        confidence = _field(raw, "confidence")

    if not text:
        return None

    final_flag = _field(raw, "is_final", is_final)
    return TranscriptPayload(
        text=text,
        is_final=bool(final_flag),
        confidence=_clamp_confidence(confidence),
        timestamp=_field(raw, "timestamp"),
        start=float(_field(raw, "start", 0.0) or 0.0),
    )
