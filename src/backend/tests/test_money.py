"""
Test suite for money parsing.

Tests cover:
- US, European, Swiss and comma-decimal formats
- Rejection of non-numbers and malformed separators
- Magnitude bound for OCR garbage
- Currency marker detection
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from summa.utils.money import (
    contains_currency_marker,
    parse_amount,
    strip_currency,
)
from decimal import Decimal
import pytest


class TestParseAmount:
    """Test separator handling across regional formats."""

    @pytest.mark.parametrize("text,expected", [
        ("$1,234.56", Decimal("1234.56")),
        ("1.234,56 EUR", Decimal("1234.56")),
        ("1'234.56 CHF", Decimal("1234.56")),
        ("1234,56", Decimal("1234.56")),
        ("45.00", Decimal("45.00")),
        ("€12,50", Decimal("12.50")),
        ("1,234", Decimal("1234")),
        ("1,234,567", Decimal("1234567")),
        ("1.234.567,89", Decimal("1234567.89")),
        ("1'234'567.00", Decimal("1234567.00")),
        ("USD 99", Decimal("99")),
    ])
    def test_regional_formats(self, text, expected):
        assert parse_amount(text) == expected

    def test_negative_amount(self):
        assert parse_amount("-1,234.56") == Decimal("-1234.56")

    @pytest.mark.parametrize("text", ["abc", "", "1.2.3.4", "$", "CHF", "-"])
    def test_rejects_non_numbers(self, text):
        assert parse_amount(text) is None

    def test_rejects_none(self):
        assert parse_amount(None) is None

    def test_magnitude_bound(self):
        """Amounts of a trillion or more are treated as recognition noise."""
        assert parse_amount("1000000000000") is None
        assert parse_amount("-1000000000000") is None
        assert parse_amount("999999999999.99") == Decimal("999999999999.99")

    def test_result_is_decimal(self):
        result = parse_amount("0.10")
        assert isinstance(result, Decimal)
        assert result + Decimal("0.20") == Decimal("0.30")


class TestCurrencyMarkers:
    """Test currency symbol and code detection."""

    @pytest.mark.parametrize("text", ["$10", "10 €", "£5.00", "1'234.56 CHF", "usd 12"])
    def test_detects_markers(self, text):
        assert contains_currency_marker(text)

    @pytest.mark.parametrize("text", ["1,234.56", "", "Account 4711", "CHFX 12"])
    def test_no_marker(self, text):
        assert not contains_currency_marker(text)

    def test_strip_currency(self):
        assert strip_currency(" $1,234.56 ") == "1,234.56"
        assert strip_currency("1.234,56 EUR") == "1.234,56"


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
