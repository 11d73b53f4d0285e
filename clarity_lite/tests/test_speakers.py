"""
Tests for Speaker Normalizer and message-edit helpers
"""

import pytest

from clarity_lite.schemas import ParsedMessage
from clarity_lite.speakers import (
    is_generic,
    canonical_label,
    build_speaker_mapping,
    normalize_speakers,
    messages_from_raw,
    speakers_from_raw,
    renumber_messages,
    messages_to_transcript,
)


def _msgs(*rows):
    """rows: (speaker, content, line_number)"""
    return [ParsedMessage(speaker=s, content=c, line_number=n) for s, c, n in rows]


class TestGenericDetection:
    """Named vs generic labels"""

    @pytest.mark.parametrize("label", ["You", "you", "Me", "Speaker", "Speaker-1", "speaker2", "User", "Unnamed", "Unknown", ""])
    def test_generic(self, label):
        assert is_generic(label)

    @pytest.mark.parametrize("label", ["Jane Doe", "John", "Sarah", "Speaker-A", "Mom", "Speaker A"])
    def test_named(self, label):
        assert not is_generic(label)

    def test_canonical_labels(self):
        assert canonical_label(0) == "Speaker-A"
        assert canonical_label(1) == "Speaker-B"
        assert canonical_label(25) == "Speaker-Z"
        assert canonical_label(26) == "Speaker-AA"


class TestNormalizeSpeakers:
    """Tests for normalize_speakers"""

    def test_named_and_generic_round_trip(self):
        """Jane Doe -> Speaker-A, generic -> Speaker-B, whichever appears first"""
        for rows in (
            [("Jane Doe", "hi", 1), ("Speaker-1", "hello", 2)],
            [("Speaker-1", "hello", 1), ("Jane Doe", "hi", 2)],
        ):
            result = normalize_speakers(_msgs(*rows))
            assert result.speakers == ["Speaker-A", "Speaker-B"]
            assert result.mapping["Jane Doe"] == "Speaker-A"
            assert result.mapping["Speaker-1"] == "Speaker-B"

    def test_all_generic_variants_collapse(self):
        messages = _msgs(
            ("Mike", "are we still on?", 1),
            ("You", "yes", 2),
            ("Unnamed", "see you", 3),
            ("Speaker 2", "?", 4),
            ("me", "ok", 5),
        )
        result = normalize_speakers(messages)

        # "Speaker 2" has a space, so it counts as a name
        assert result.mapping["Mike"] == "Speaker-A"
        assert result.mapping["Speaker 2"] == "Speaker-B"
        assert result.mapping["You"] == result.mapping["Unnamed"] == result.mapping["me"] == "Speaker-C"
        assert result.speakers == ["Speaker-A", "Speaker-B", "Speaker-C"]

    def test_reorders_by_line_number(self):
        """Stable sort on original lineNumber; content untouched"""
        messages = _msgs(
            ("Anna", "third", 3),
            ("You", "first", 1),
            ("Anna", "second", 2),
            ("You", "second-b", 2),
        )
        result = normalize_speakers(messages)

        assert [m.line_number for m in result.messages] == [1, 2, 2, 3]
        assert [m.content for m in result.messages] == ["first", "second", "second-b", "third"]
        assert len(result.messages) == len(messages)

    def test_speakers_come_from_rewritten_messages(self):
        messages = _msgs(("Anna", "hi", 1), ("You", "hey", 2), ("Anna", "?", 3))
        result = normalize_speakers(messages)

        assert set(result.speakers) == {m.speaker for m in result.messages}
        assert result.speakers == sorted(result.speakers)

    def test_idempotent(self):
        messages = _msgs(
            ("You", "hey", 1),
            ("Jane Doe", "hi", 2),
            ("Mark", "yo", 3),
            ("Unknown", "?", 4),
        )
        once = normalize_speakers(messages)
        twice = normalize_speakers(once.messages)

        assert twice.speakers == once.speakers
        assert [m.model_dump() for m in twice.messages] == [m.model_dump() for m in once.messages]

    def test_empty(self):
        result = normalize_speakers([])
        assert result.speakers == []
        assert result.messages == []

    def test_mapping_keeps_existing_canonical_letters(self):
        mapping = build_speaker_mapping(["You", "Speaker-A", "Bob"])
        assert mapping["Speaker-A"] == "Speaker-A"
        assert mapping["Bob"] == "Speaker-B"
        assert mapping["You"] == "Speaker-C"


class TestRawParseOutput:
    """Validation of the parser's JSON arrays"""

    def test_drops_invalid_entries(self):
        raw = [
            {"speaker": "John", "content": "hi", "lineNumber": 1},
            "not a message",
            {"content": "no speaker", "lineNumber": 2},
            {"speaker": "  ", "content": "blank speaker"},
            {"speaker": "Sarah", "content": 42, "lineNumber": 3},
        ]
        messages = messages_from_raw(raw)

        assert [m.speaker for m in messages] == ["John", "Sarah"]
        assert messages[1].content == "42"

    def test_missing_line_number_uses_position(self):
        raw = [
            {"speaker": "A", "content": "x"},
            {"speaker": "B", "content": "y", "lineNumber": "two"},
            {"speaker": "C", "content": "z", "lineNumber": True},
        ]
        assert [m.line_number for m in messages_from_raw(raw)] == [1, 2, 3]

    def test_non_list(self):
        assert messages_from_raw(None) == []
        assert messages_from_raw({"speaker": "A"}) == []
        assert speakers_from_raw("John") == []

    def test_speakers_from_raw(self):
        assert speakers_from_raw([" John ", "", None, "Sarah"]) == ["John", "Sarah"]


class TestEditHelpers:
    """Renumbering and transcript"""

    def test_renumber(self):
        messages = _msgs(("A", "x", 7), ("B", "y", 2), ("A", "z", 9))
        assert [m.line_number for m in renumber_messages(messages)] == [1, 2, 3]

    def test_transcript(self):
        messages = _msgs(("John", "let's meet", 1), ("Sarah", "sure, when?", 2))
        assert messages_to_transcript(messages) == "John: let's meet\nSarah: sure, when?"
        assert messages_to_transcript(messages, numbered=True) == "1. John: let's meet\n2. Sarah: sure, when?"
