"""Unit tests for parsers module."""

from datetime import date
from decimal import Decimal

import pytest

from src.services.parsers import format_won, parse_iso_date, parse_percentage, parse_won_amount


class TestParseWonAmount:
    """Tests for parse_won_amount function."""

    def test_parse_plain_digits(self):
        """Test parsing plain digits."""
        assert parse_won_amount("30000") == 30000

    def test_parse_with_separators_and_suffix(self):
        """Test parsing thousands separators and the won suffix."""
        assert parse_won_amount("1,000,000원") == 1000000

    def test_parse_int_passthrough(self):
        """Test integers are returned unchanged."""
        assert parse_won_amount(5000) == 5000

    def test_parse_negative(self):
        """Test a sign is accepted; callers decide whether negatives are valid."""
        assert parse_won_amount("-5") == -5

    def test_parse_empty(self):
        """Test empty input returns None."""
        assert parse_won_amount("") is None
        assert parse_won_amount(None) is None

    def test_parse_text_raises(self):
        """Test non-numeric text raises ValueError."""
        with pytest.raises(ValueError, match="Cannot parse won amount"):
            parse_won_amount("abc")

    def test_parse_decimal_raises(self):
        """Test fractional won amounts are rejected."""
        with pytest.raises(ValueError):
            parse_won_amount("100.5")

    def test_parse_bool_raises(self):
        """Test booleans are not amounts."""
        with pytest.raises(ValueError):
            parse_won_amount(True)


class TestParsePercentage:
    """Tests for parse_percentage function."""

    def test_parse_with_suffix(self):
        """Test parsing a percentage with % suffix."""
        assert parse_percentage("12.5%") == Decimal("12.5")

    def test_parse_empty(self):
        """Test empty input returns None."""
        assert parse_percentage("") is None
        assert parse_percentage("%") is None

    def test_parse_invalid(self):
        """Test invalid text raises ValueError."""
        with pytest.raises(ValueError, match="Cannot parse percentage"):
            parse_percentage("half")

    def test_parse_infinity(self):
        """Test non-finite values are rejected."""
        with pytest.raises(ValueError, match="not a finite number"):
            parse_percentage("Infinity")


class TestParseIsoDate:
    """Tests for parse_iso_date function."""

    def test_parse_valid(self):
        """Test parsing an ISO date."""
        assert parse_iso_date("2025-06-23") == date(2025, 6, 23)

    def test_parse_empty(self):
        """Test empty input returns None."""
        assert parse_iso_date("  ") is None

    def test_parse_invalid(self):
        """Test other formats raise ValueError."""
        with pytest.raises(ValueError, match="Cannot parse date"):
            parse_iso_date("23.06.2025")


def test_format_won():
    """Test thousands separators."""
    assert format_won(1234567) == "1,234,567"
    assert format_won(0) == "0"
