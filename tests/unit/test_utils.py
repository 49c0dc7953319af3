"""
Unit tests for shared helpers.
"""

import pytest

from sim.utils import (
    ValidationError,
    clean_str,
    edit_codes_match,
    generate_edit_code,
    generate_nonce,
    is_valid_edit_code,
    is_valid_slug,
    parse_float,
    slugify,
)


class TestEditCodes:
    """Test six-digit edit code helpers."""

    def test_generated_codes_are_six_digits_in_range(self):
        for _ in range(200):
            code = generate_edit_code()
            assert is_valid_edit_code(code)
            assert 100000 <= int(code) <= 999999

    @pytest.mark.parametrize("code", ["", None, "12345", "1234567", "12a456", 123456, " 12 456"])
    def test_malformed_codes(self, code):
        assert is_valid_edit_code(code) is False

    def test_surrounding_whitespace_allowed(self):
        assert is_valid_edit_code(" 123456 ") is True

    def test_edit_codes_match(self):
        assert edit_codes_match("123456", "123456") is True
        assert edit_codes_match("123456", " 123456") is True
        assert edit_codes_match("123456", "654321") is False


class TestSlugs:
    def test_slugify(self):
        assert slugify("  Ada Lovelace!! ") == "ada-lovelace"

    def test_is_valid_slug(self):
        assert is_valid_slug("ada-lovelace") is True
        assert is_valid_slug("") is False
        assert is_valid_slug("-ada") is False
        assert is_valid_slug("a" * 101) is False


class TestInputHelpers:
    def test_parse_float(self):
        assert parse_float("2.5", "price") == 2.5
        assert parse_float(3, "price") == 3.0

    @pytest.mark.parametrize("value", ["abc", None, True])
    def test_parse_float_rejects(self, value):
        with pytest.raises(ValidationError) as exc:
            parse_float(value, "price")
        assert exc.value.fields == {"price": "must be a number"}

    @pytest.mark.parametrize("value", ["NaN", "inf", float("-inf")])
    def test_parse_float_rejects_non_finite(self, value):
        with pytest.raises(ValidationError) as exc:
            parse_float(value, "price")
        assert exc.value.fields == {"price": "must be finite"}

    def test_clean_str(self):
        assert clean_str("  hi  ") == "hi"
        assert clean_str("   ") is None
        assert clean_str(None) is None
        assert clean_str("abcdef", max_length=3) == "abc"

    def test_validation_error_to_dict(self):
        err = ValidationError("Name is required", {"name": "required"})
        assert err.to_dict() == {"error": "validation_error", "message": "Name is required", "fields": {"name": "required"}}

    def test_nonce_is_hex(self):
        nonce = generate_nonce()
        assert len(nonce) == 32
        int(nonce, 16)
