"""Tests for input sanitization helpers."""

import pytest

from helpers.sanitization import (
    is_valid_email,
    sanitize_email,
    sanitize_input,
    sanitize_optional,
    strip_markup,
)
from models.exceptions import InvalidEmailException, ValidationException


class TestSanitizeInput:
    def test_strips_markup_and_metacharacters(self):
        assert sanitize_input("  <b>Acme</b> Corp; rm -rf /  ") == "Acme Corp rm -rf /"

    def test_script_tags_removed(self):
        cleaned = sanitize_input("<script>alert('x')</script>Hello")
        assert "<" not in cleaned
        assert "'" not in cleaned
        assert cleaned.endswith("Hello")

    def test_encoded_entities_are_filtered_too(self):
        assert sanitize_input("a &lt;b&gt; c") == "a b c"

    def test_none_becomes_empty(self):
        assert sanitize_input(None) == ""

    def test_truncated(self):
        assert sanitize_input("x" * 50, max_length=10) == "x" * 10

    def test_strip_markup_keeps_text(self):
        assert strip_markup("<p>Hello <i>world</i></p>") == "Hello world"


class TestSanitizeOptional:
    def test_none_kept(self):
        assert sanitize_optional(None) is None

    def test_empty_result_becomes_none(self):
        assert sanitize_optional("<br>") is None

    def test_value_cleaned(self):
        assert sanitize_optional(" Ada ") == "Ada"


class TestSanitizeEmail:
    def test_lowercased_and_trimmed(self):
        assert sanitize_email("  User@Example.COM ") == "user@example.com"

    @pytest.mark.parametrize("value", ["", None, "not-an-email", "a@b", "two words@x.io"])
    def test_invalid_addresses(self, value):
        with pytest.raises(InvalidEmailException):
            sanitize_email(value)

    def test_invalid_email_is_a_validation_error(self):
        with pytest.raises(ValidationException):
            sanitize_email("nope")

    def test_is_valid_email(self):
        assert is_valid_email("a@b.io") is True
        assert is_valid_email("a@b") is False
