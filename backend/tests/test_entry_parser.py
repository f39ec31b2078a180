import logging

import pytest

from meetbot.transcript.models import Finality, Utterance, normalize_payload
from meetbot.transcript.parser import format_entry, parse_entries, parse_entry


def test_parse_final_entry():
    block = "[2024-01-01T00:00:00Z] [FINAL] (confidence: 95.00%)\nWhat is your view on distributed consensus?"

    utterance = parse_entry(block)

    assert utterance is not None
    assert utterance.finality is Finality.FINAL
    assert utterance.text == "What is your view on distributed consensus?"
    assert utterance.confidence == pytest.approx(0.95)
    assert utterance.timestamp == "2024-01-01T00:00:00Z"


def test_parse_accepts_unbracketed_timestamp():
    utterance = parse_entry("2024-01-01T00:00:00Z [INTERIM] (confidence: 40%)\nmaybe")

    assert utterance is not None
    assert utterance.finality is Finality.INTERIM
    assert utterance.confidence == pytest.approx(0.40)


def test_parse_keeps_multiline_text():
    utterance = parse_entry("[t1] [FINAL] (confidence: 90.00%)\nline one\nline two")

    assert utterance.text == "line one\nline two"


@pytest.mark.parametrize(
    "block",
    [
        "[t1] [FINAL] (confidence: 90.00%)",
        "garbage header\nsome text",
        "[t1] [DONE] (confidence: 90.00%)\ntext",
        "[t1] [FINAL] (confidence: 90.00%)\n   ",
        "",
    ],
)
def test_unusable_entries_return_none(block):
    assert parse_entry(block) is None


def test_bad_entry_does_not_affect_siblings(caplog):
    content = (
        "[t1] [FINAL] (confidence: 90.00%)\nfirst\n\n"
        "not a header at all\nstray text\n\n"
        "[t2] [INTERIM] (confidence: 50.00%)\npartial\n\n"
        "[t3] [FINAL] (confidence: 80.00%)\nthird\n\n"
    )

    with caplog.at_level(logging.WARNING, logger="meetbot.transcript.parser"):
        batch = parse_entries(content)

    assert [u.text for u in batch.utterances] == ["first", "partial", "third"]
    assert [u.text for u in batch.finals] == ["first", "third"]
    assert batch.skipped == 1
    skips = [r for r in caplog.records if r.name == "meetbot.transcript.parser"]
    assert len(skips) == 1
    assert "not a header at all" in skips[0].getMessage()


def test_format_entry_is_parseable():
    utterance = Utterance(text="hello there", confidence=0.873, timestamp="2024-05-05T10:00:00+00:00")

    entry = format_entry(utterance)

    assert entry.endswith("\n\n")
    parsed = parse_entries(entry).utterances[0]
    assert parsed.text == "hello there"
    assert parsed.confidence == pytest.approx(0.8730)


def test_blank_lines_inside_text_do_not_split_the_entry():
    utterance = Utterance(
        text="First part.\n\nWhat about consensus?\n  \nAnd leader election?",
        timestamp="2024-05-05T10:00:00+00:00",
    )

    batch = parse_entries(format_entry(utterance) + format_entry(Utterance(text="next", timestamp="t2")))

    assert batch.skipped == 0
    assert [u.text for u in batch.utterances] == [
        "First part.\nWhat about consensus?\nAnd leader election?",
        "next",
    ]


@pytest.mark.parametrize(
    "timestamp",
    ["2024-01-01 00:00:00+00:00", "2024-01-01T00:00:00Z", "Mon, 01 Jan 2024 00:00:00 GMT"],
)
def test_timestamps_with_spaces_read_back(timestamp):
    entry = format_entry(Utterance(text="What is raft?", confidence=0.9, timestamp=timestamp))

    utterance = parse_entry(entry)

    assert utterance is not None
    assert utterance.timestamp == timestamp
    assert utterance.text == "What is raft?"


def test_brackets_in_timestamp_are_dropped_on_write():
    utterance = parse_entry(format_entry(Utterance(text="hi", timestamp="[2024-01-01]\n")))

    assert utterance.timestamp == "2024-01-01"


def test_normalize_streaming_result_dict():
    raw = {
        "is_final": True,
        "start": 1.5,
        "channel": {"alternatives": [{"transcript": "  Hi team ", "confidence": 0.91}]},
    }

    payload = normalize_payload(raw)

    assert payload.text == "Hi team"
    assert payload.is_final is True
    assert payload.confidence == pytest.approx(0.91)
    assert payload.start == 1.5


def test_normalize_percentage_confidence_and_blank_text():
    assert normalize_payload({"text": "ok", "confidence": 88, "is_final": False}).confidence == pytest.approx(0.88)
    assert normalize_payload({"text": "   "}) is None
    assert normalize_payload("") is None
    assert normalize_payload("plain words", is_final=True).is_final is True
