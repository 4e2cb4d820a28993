"""Tests for utils/formatting.py: number formatting."""

import pytest
from utils.formatting import (
    format_large_number,
    format_percent,
    format_price,
    mask_user_id,
    safe_number,
    truncate,
)


class TestSafeNumber:
    def test_passthrough(self):
        assert safe_number(1.5) == 1.5
        assert safe_number("2.5") == 2.5

    @pytest.mark.parametrize("value", [None, "abc", float("nan"), float("inf"), {}])
    def test_junk_becomes_default(self, value):
        assert safe_number(value) == 0.0
        assert safe_number(value, default=7) == 7


class TestFormatPrice:
    def test_large(self):
        assert format_price(43250.5) == "$43,250.50"

    def test_small(self):
        assert format_price(0.00012) == "$0.00012"

    def test_nan_renders_zero(self):
        assert format_price(float("nan")) == "$0.00"
        assert format_price(None) == "$0.00"


class TestFormatPercent:
    def test_positive_has_sign(self):
        assert format_percent(5.123) == "+5.12%"

    def test_negative(self):
        assert format_percent(-3.5) == "-3.50%"

    def test_zero(self):
        assert format_percent(0) == "0.00%"


class TestFormatLargeNumber:
    def test_suffixes(self):
        assert format_large_number(2_500_000_000_000) == "2.5T"
        assert format_large_number(1_200_000_000) == "1.2B"
        assert format_large_number(5_200_000) == "5.2M"
        assert format_large_number(1_500) == "1.5K"
        assert format_large_number(42) == "42"


class TestTruncate:
    def test_short_unchanged(self):
        assert truncate("hello", 10) == "hello"

    def test_long_truncated(self):
        result = truncate("a" * 200, 160)
        assert len(result) == 160
        assert result.endswith("...")

    def test_exact_length(self):
        assert truncate("a" * 160, 160) == "a" * 160


class TestMaskUserId:
    def test_short_ids_unchanged(self):
        assert mask_user_id("user42") == "user42"

    def test_long_ids_shortened(self):
        assert mask_user_id("U1234567890abcdef") == "U1234567..."
