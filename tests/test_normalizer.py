"""Tests for the output normalizer."""

import pytest

from medico.capabilities.normalizer import excerpt, normalize, repair_json_text, strip_code_fence
from medico.capabilities.schema import Schema, list_of, string
from medico.capabilities.types import Failure, FailureKind, Recovered, Success

SUMMARY = Schema.of(string("summary"))
NOTES = Schema.of(
    string("notes"),
    list_of("summary_points", string(), required=False),
    string("source", required=False),
)


class TestStripCodeFence:
    """Tests for fence stripping."""

    @pytest.mark.parametrize(
        "text",
        [
            '```json\n{"a": 1}\n```',
            '```\n{"a": 1}\n```',
            '  ```JSON\n{"a": 1}\n```  ',
            '```json\n{"a": 1}',
            '{"a": 1}\n```',
            '{"a": 1}',
        ],
    )
    def test_strips_single_fence(self, text):
        assert strip_code_fence(text) == '{"a": 1}'

    def test_idempotent(self):
        once = strip_code_fence('```json\n{"a": 1}\n```')
        assert strip_code_fence(once) == once

    def test_only_one_fence_pair(self):
        text = '```json\n```json\n{"a": 1}\n```\n```'
        assert strip_code_fence(text) == '```json\n{"a": 1}\n```'


class TestRepairJsonText:
    """Tests for the single repair pass."""

    def test_trims_prose_and_commentary(self):
        text = 'Here you go: {"a": 1} Hope this helps!'
        assert repair_json_text(text) == '{"a": 1}'

    def test_no_brackets(self):
        assert repair_json_text("no json here") is None

    def test_unclosed(self):
        assert repair_json_text('{"summary":"x"') is None

    def test_already_minimal(self):
        assert repair_json_text('{"a": 1}') is None

    def test_brackets_in_prose_before_object(self):
        text = 'Here is the result [JSON]: {"summary": "x"}'
        assert repair_json_text(text) == '{"summary": "x"}'

    def test_array_when_no_object(self):
        assert repair_json_text("items: [1, 2] done") == "[1, 2]"


class TestNormalize:
    """Tests for normalize()."""

    def test_structured_value_passes_through(self):
        value = {"summary": "x"}
        assert normalize(value, SUMMARY) == Success(value={"summary": "x"})

    def test_structured_non_object(self):
        result = normalize(["x"], SUMMARY)
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.SCHEMA_VIOLATION

    def test_plain_json_text(self):
        assert normalize('{"summary": "x"}', SUMMARY) == Success(value={"summary": "x"})

    def test_fenced_json_matches_unwrapped(self):
        fenced = normalize('```json\n{"summary":"x"}\n```', SUMMARY)
        plain = normalize('{"summary":"x"}', SUMMARY)
        assert fenced == plain == Success(value={"summary": "x"})

    def test_missing_optional_fields_recovered(self):
        result = normalize('{"notes": "n"}', NOTES)
        assert isinstance(result, Recovered)
        assert result.value == {"notes": "n", "summary_points": [], "source": None}
        assert result.notes == ("defaulted missing optional fields: summary_points, source",)

    def test_present_fields_unchanged_when_recovered(self):
        result = normalize('{"notes": "n", "summary_points": ["a"], "extra": 1}', NOTES)
        assert isinstance(result, Recovered)
        assert result.value["notes"] == "n"
        assert result.value["summary_points"] == ["a"]
        assert result.value["extra"] == 1

    def test_missing_required_is_schema_violation(self):
        result = normalize('{"summary_points": []}', NOTES)
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.SCHEMA_VIOLATION
        assert "notes" in result.message

    def test_wrong_type_is_schema_violation(self):
        result = normalize('{"summary": 42}', SUMMARY)
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.SCHEMA_VIOLATION

    def test_non_object_json(self):
        result = normalize('["x"]', SUMMARY)
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.SCHEMA_VIOLATION

    def test_repair_trailing_commentary(self):
        result = normalize('{"summary": "x"}\n\nLet me know if you need more.', SUMMARY)
        assert result == Success(value={"summary": "x"})

    def test_repair_skips_bracketed_prose(self):
        result = normalize('Here is the result [JSON]: {"summary": "x"}', SUMMARY)
        assert result == Success(value={"summary": "x"})

    def test_truncated_json_is_unparsable(self):
        result = normalize('{"summary":"x"', SUMMARY)
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.UNPARSABLE_RESPONSE
        assert result.detail == '{"summary":"x"'

    def test_prose_is_unparsable(self):
        result = normalize("I cannot help with that.", SUMMARY)
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.UNPARSABLE_RESPONSE

    def test_empty_text_is_unparsable(self):
        result = normalize("", SUMMARY)
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.UNPARSABLE_RESPONSE

    def test_detail_is_truncated(self):
        result = normalize("x" * 1000, SUMMARY)
        assert isinstance(result, Failure)
        assert len(result.detail) <= 201

    def test_never_raises(self):
        for raw in (None, 42, 3.5, object(), "{", "}", "[}", "```"):
            assert isinstance(normalize(raw, SUMMARY), Failure)


def test_excerpt():
    assert excerpt("  short  ") == "short"
    assert excerpt("a" * 10, limit=4) == "aaaa…"
