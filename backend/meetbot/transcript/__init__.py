from meetbot.transcript.models import Finality, TranscriptPayload, Utterance, normalize_payload
from meetbot.transcript.parser import ParseBatch, parse_entries, parse_entry, split_entries
from meetbot.transcript.store import TranscriptDelta, TranscriptStore

__all__ = [
    "Finality",
    "TranscriptPayload",
    "Utterance",
    "normalize_payload",
    "ParseBatch",
    "parse_entries",
    "parse_entry",
    "split_entries",
    "TranscriptDelta",
    "TranscriptStore",
]
