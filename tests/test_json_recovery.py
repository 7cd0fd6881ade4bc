"""
Tests for JSON recovery from model output.
"""

import json

import pytest

from statement_pipeline.extraction.json_recovery import (
    JSONRecoveryError,
    extract_json,
    find_balanced,
    strip_code_fences,
)


class TestStripCodeFences:
    """Tests for markdown fence removal."""

    def test_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_fence(self):
        assert strip_code_fences('```\n[1, 2]\n```') == "[1, 2]"

    def test_unterminated_fence(self):
        assert strip_code_fences('```json\n{"a": 1}') == '{"a": 1}'

    def test_no_fence_is_unchanged(self):
        assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


class TestFindBalanced:
    """Tests for the bracket scanner."""

    def test_nested(self):
        text = 'x {"a": {"b": [1, 2]}} y'
        start = text.index("{")
        end = find_balanced(text, start)
        assert text[start:end] == '{"a": {"b": [1, 2]}}'

    def test_braces_inside_strings_are_ignored(self):
        text = '{"description": "PAYMENT } {[ REF"}'
        assert find_balanced(text, 0) == len(text)

    def test_escaped_quotes_inside_strings(self):
        text = r'{"description": "say \"hi\" }"} trailing'
        end = find_balanced(text, 0)
        assert text[:end] == r'{"description": "say \"hi\" }"}'

    def test_unclosed_raises(self):
        with pytest.raises(JSONRecoveryError, match="Unclosed"):
            find_balanced('{"a": [1, 2]', 0)

    def test_mismatch_raises(self):
        with pytest.raises(JSONRecoveryError, match="Mismatched"):
            find_balanced('{"a": [1, 2}', 0)

    def test_not_an_opener(self):
        with pytest.raises(JSONRecoveryError):
            find_balanced("abc", 0)


class TestExtractJson:
    """Tests for the full recovery routine."""

    def test_bare_object(self):
        assert extract_json('{"transactions": []}') == {"transactions": []}

    def test_bare_array(self):
        assert extract_json("[1, 2, 3]") == [1, 2, 3]

    def test_backticks_inside_string_values(self):
        payload = {"transactions": [{"description": "PAY ```x``` REF", "amount": -2.0}]}
        assert extract_json(json.dumps(payload)) == payload

    def test_fenced_object(self):
        text = 'Sure!\n```json\n{"transactions": [{"amount": -1.5}]}\n```\nHope that helps.'
        assert extract_json(text) == {"transactions": [{"amount": -1.5}]}

    def test_object_wrapped_in_prose(self):
        text = 'Here are the transactions: {"transactions": [{"description": "a}b"}]} Thanks.'
        assert extract_json(text) == {"transactions": [{"description": "a}b"}]}

    def test_skips_invalid_candidates(self):
        text = 'Use {braces} like this: {"ok": true}'
        assert extract_json(text) == {"ok": True}

    def test_empty_raises(self):
        with pytest.raises(JSONRecoveryError, match="Empty"):
            extract_json("   ")

    def test_none_raises(self):
        with pytest.raises(JSONRecoveryError):
            extract_json(None)

    def test_no_json_raises(self):
        with pytest.raises(JSONRecoveryError, match="No JSON"):
            extract_json("I cannot help with that request.")

    def test_truncated_json_raises(self):
        with pytest.raises(JSONRecoveryError):
            extract_json('{"transactions": [{"date": "2024-03-01"')

    def test_error_is_value_error(self):
        with pytest.raises(ValueError):
            extract_json("nothing here")
