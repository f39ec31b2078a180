"""
Transcript log entry format and its tolerant parser.

An entry is a header line followed by one or more non-blank text lines, and entries are
separated by a blank line:

    [2024-01-01T00:00:00+00:00] [FINAL] (confidence: 95.00%)
    What is your view on distributed consensus?

The brackets around the timestamp are optional on read.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from .models import Finality, Utterance, utc_timestamp

logger = logging.getLogger("meetbot.transcript.parser")

ENTRY_SEPARATOR = "\n\n"

HEADER_PATTERN = re.compile(
    r"^\[?(?P<timestamp>[^\[\]\n]+?)\]? \[(?P<finality>FINAL|INTERIM)\] \(confidence: (?P<confidence>\d+(?:\.\d+)?)%\)$"
)
_BLANK_LINES = re.compile(r"\n\s*\n")
_TIMESTAMP_UNSAFE = re.compile(r"[\[\]\r\n]")


def format_header(utterance: Utterance) -> str:
    timestamp = _TIMESTAMP_UNSAFE.sub("", str(utterance.timestamp)).strip() or utc_timestamp()
    return f"[{timestamp}] [{utterance.finality.value}] (confidence: {utterance.confidence_pct:.2f}%)"


def format_entry(utterance: Utterance) -> str:
    # a blank line inside the text would read back as an entry boundary
    text = _BLANK_LINES.sub("\n", utterance.text.strip())
    return f"{format_header(utterance)}\n{text}{ENTRY_SEPARATOR}"


def split_entries(content: str) -> list[str]:
    return [block for block in str(content or "").split(ENTRY_SEPARATOR) if block.strip()]


def parse_entry(block: str) -> Optional[Utterance]:
    """
    Parse one entry block. Never raises; unusable blocks return None.
    """
    lines = str(block or "").strip("\n").split("\n")
    if len(lines) < 2:
        logger.debug("Entry skipped: expected header and text, got %s line(s)", len(lines))
        return None

    header = lines[0].strip()
    match = HEADER_PATTERN.match(header)
    if not match:
        logger.warning("Unparseable transcript entry header: %r", header[:120])
        return None

    text = "\n".join(lines[1:]).strip()
    if not text:
        logger.debug("Entry skipped: empty text after header")
        return None

    return Utterance(
        text=text,
        finality=Finality(match.group("finality")),
        confidence=float(match.group("confidence")) / 100.0,
        timestamp=match.group("timestamp"),
    )


@dataclass
class ParseBatch:
    utterances: list[Utterance] = field(default_factory=list)
    skipped: int = 0

    @property
    def finals(self) -> list[Utterance]:
        return [item for item in self.utterances if item.is_final]


def parse_entries(content: str) -> ParseBatch:
    batch = ParseBatch()
    for block in split_entries(content):
        utterance = parse_entry(block)
        if utterance is None:
            batch.skipped += 1
            continue
        batch.utterances.append(utterance)
    return batch
