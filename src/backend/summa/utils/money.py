"""
Money parsing utilities for balance screenshots.

Handles the number formats seen on e-banking screens:
- US: $1,234.56
- European: 1.234,56 EUR
- Swiss: 1'234.56 CHF
- Comma decimal without thousands: 1234,56
"""

from decimal import Decimal, InvalidOperation
from typing import Optional
import re

CURRENCY_SYMBOLS = ('$', '€', '£', '¥', '₹', '₽', '¢')
CURRENCY_CODES = ('USD', 'EUR', 'GBP', 'CHF', 'JPY', 'CNY', 'CAD', 'AUD')

# Amounts at or above this magnitude are OCR garbage, not balances
MAX_ABS_AMOUNT = Decimal('1000000000000')

_SYMBOL_PATTERN = re.compile('[' + re.escape(''.join(CURRENCY_SYMBOLS)) + ']')
_CODE_PATTERN = re.compile(
    r'\b(?:' + '|'.join(CURRENCY_CODES) + r')\b',
    flags=re.IGNORECASE
)
_LEADING_DIGITS = re.compile(r'\d*')
_NON_NUMERIC = re.compile(r'[^0-9.\-]')


def contains_currency_marker(text: str) -> bool:
    """
    Check whether text carries a recognized currency symbol or ISO code.

    Examples:
        >>> contains_currency_marker("1'234.56 CHF")
        True
        >>> contains_currency_marker("1,234.56")
        False
    """
    if not text:
        return False
    return bool(_SYMBOL_PATTERN.search(text) or _CODE_PATTERN.search(text))


def strip_currency(text: str) -> str:
    """Remove currency symbols and codes, then trim whitespace."""
    cleaned = _SYMBOL_PATTERN.sub('', text)
    cleaned = _CODE_PATTERN.sub('', cleaned)
    return cleaned.strip()


def parse_amount(text: str) -> Optional[Decimal]:
    """
    Parse a recognized text token into a signed Decimal.

    Separator policy:
    - Both '.' and ',' present: the later one is the decimal separator,
      the other one and all apostrophes are thousands separators.
    - Only ',' present: decimal if exactly two digits follow the last
      comma, thousands separator otherwise.
    - Only '.' or nothing: apostrophes are thousands separators, '.' stays.

    Args:
        text: Raw text (e.g., "$1,234.56", "1.234,56 EUR", "1'234.56 CHF")

    Returns:
        Decimal amount or None if no number survives normalization

    Examples:
        >>> parse_amount("1'234.56 CHF")
        Decimal('1234.56')
        >>> parse_amount("1234,56")
        Decimal('1234.56')
        >>> parse_amount("1.2.3.4") is None
        True
    """
    if not text or not isinstance(text, str):
        return None

    cleaned = strip_currency(text)
    if not cleaned:
        return None

    last_dot = cleaned.rfind('.')
    last_comma = cleaned.rfind(',')

    if last_dot != -1 and last_comma != -1:
        cleaned = _normalize_mixed_separators(cleaned, last_dot, last_comma)
    elif last_comma != -1:
        cleaned = _normalize_comma_only(cleaned, last_comma)
    else:
        cleaned = cleaned.replace("'", '')

    cleaned = _NON_NUMERIC.sub('', cleaned)
    if not cleaned:
        return None

    try:
        result = Decimal(cleaned)
    except (InvalidOperation, ValueError):
        return None

    if not result.is_finite() or abs(result) >= MAX_ABS_AMOUNT:
        return None

    return result


def _normalize_mixed_separators(text: str, last_dot: int, last_comma: int) -> str:
    """Later separator is decimal: 1.234,56 -> 1234.56, 1,234.56 -> 1234.56."""
    text = text.replace("'", '')
    if last_comma > last_dot:
        return text.replace('.', '').replace(',', '.')
    return text.replace(',', '')


def _normalize_comma_only(text: str, last_comma: int) -> str:
    """12,50 -> 12.50 but 1,234 -> 1234."""
    text_after = text[last_comma + 1:]
    fraction = _LEADING_DIGITS.match(text_after).group(0)

    if len(fraction) == 2:
        head = text[:last_comma].replace(',', '').replace("'", '')
        return head + '.' + text_after

    return text.replace(',', '').replace("'", '')

