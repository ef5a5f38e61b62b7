"""Tests for tolerant JSON recovery."""

import json

import pytest

from serialist.core.json_repair import extract_json, parse_json, parse_model, repair_truncated_json
from serialist.models import ChapterOutline, CriticReport

NESTED_OBJECT = {
    "title": "Ash, Smoke}",
    "count": 12,
    "ready": True,
    "spoken": 'He said "run"',
    "tags": ["a", "b"],
    "scenes": [{"order": 1, "goal": "x"}, {"order": 2, "beats": [3, 4.5]}],
    "note": None,
}
NESTED_ARRAY = [{"id": 1, "tags": ["x", "y"]}, {"id": 2, "ok": False}, [3, 4.5], "tail, ]"]


def _member_ends(document, text):
    """Offsets in ``text`` where each top-level member is fully written."""
    ends = []
    pos = 0
    items = document.items() if isinstance(document, dict) else enumerate(document)
    for key, value in items:
        member = json.dumps(value)
        if isinstance(document, dict):
            member = f"{json.dumps(key)}: {member}"
        start = text.index(member, pos)
        pos = start + len(member)
        ends.append((key, pos))
    return ends


class TestExtractJson:
    """Tests for extract_json."""

    def test_extracts_from_code_block(self):
        """Should pull the JSON out of a fenced block surrounded by prose."""
        response = 'Sure, here it is:\n```json\n{"a": 2}\n```\nAnything else?'
        assert extract_json(response) == '{"a": 2}'

    def test_returns_none_without_brackets(self):
        """Should return None when no JSON is present."""
        assert extract_json("This is just plain text.") is None


class TestRepairTruncatedJson:
    """Tests for repair_truncated_json."""

    def test_closes_open_string_and_containers(self):
        """Should finish the string being written and close every container."""
        text = '{"title": "Ash", "scenes": [{"order": 1, "goal": "esc'
        assert repair_truncated_json(text) == '{"title": "Ash", "scenes": [{"order": 1, "goal": "esc"}]}'

    def test_drops_dangling_key(self):
        """Should drop a key that was cut before its value."""
        assert repair_truncated_json('{"a": 1, "b') == '{"a": 1}'

    def test_drops_partial_literal(self):
        """Should drop a literal that was cut mid-word."""
        assert repair_truncated_json('{"a": 1, "b": tru') == '{"a": 1}'

    def test_keeps_finished_scalar_members(self):
        """Should keep a number or literal that ends the text in value position."""
        assert repair_truncated_json('{"a": 1, "b": 2') == '{"a": 1, "b": 2}'
        assert repair_truncated_json('{"overall_score": 7') == '{"overall_score": 7}'
        assert parse_json('{"approved": true') == {"approved": True}
        assert parse_json('{"note": null') == {"note": None}

    @pytest.mark.parametrize("document", [NESTED_OBJECT, NESTED_ARRAY], ids=["object", "array"])
    def test_every_cut_parses_and_keeps_finished_members(self, document):
        """Should close a document cut at any point into the same top-level type."""
        text = json.dumps(document)
        ends = _member_ends(document, text)
        for cut in range(1, len(text) + 1):
            repaired = json.loads(repair_truncated_json(text[:cut]))
            assert type(repaired) is type(document), text[:cut]
            for key, end in ends:
                if end <= cut:
                    assert repaired[key] == document[key], text[:cut]

    def test_removes_trailing_commas(self):
        """Should remove commas directly before a closing bracket."""
        assert parse_json('{"a": [1, 2,], }') == {"a": [1, 2]}


class TestParseJson:
    """Tests for parse_json and parse_model."""

    def test_unwraps_single_element_array(self):
        """Should unwrap a one-object array when an object is expected."""
        assert parse_json('[{"a": 1}]') == {"a": 1}

    def test_keeps_array_when_not_expecting_object(self):
        """Should leave arrays alone when expect_object is false."""
        assert parse_json('[{"a": 1}]', expect_object=False) == [{"a": 1}]

    def test_returns_none_for_no_json(self):
        """Should return None when nothing can be recovered."""
        assert parse_json("no json here") is None

    def test_parses_truncated_outline(self):
        """Should validate an outline cut off mid-scene."""
        text = (
            '```json\n{"chapter_number": 4, "title": "Embers", "scenes": ['
            '{"order": 1, "goal": "Reach the gate", "estimated_words": "600"}, {"order": 2, "go'
        )
        outline = parse_model(text, ChapterOutline)
        assert outline is not None
        assert outline.title == "Embers"
        assert outline.scenes[0].estimated_words == 600

    def test_coerces_unknown_enum_values(self):
        """Should map unknown issue types and severities to their fallbacks."""
        text = '{"overall_score": "7", "issues": [{"type": "vibes", "severity": "huge", "description": "x"}]}'
        report = parse_model(text, CriticReport)
        assert report is not None
        assert report.overall_score == 7
        assert report.issues[0].type.value == "quality"
        assert report.issues[0].severity.value == "moderate"

    def test_returns_none_for_wrong_shape(self):
        """Should return None when the data is not an object."""
        assert parse_model("[1, 2, 3]", CriticReport) is None
