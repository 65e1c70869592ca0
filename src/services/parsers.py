"""Korean won and date parsing utilities for user-entered values.

Handles the formats admins type into the dues forms:
- Thousands separator: comma (,)
- Currency suffix: 원
- Percentages with or without a % suffix
- Date format: YYYY-MM-DD

Example:
    >>> parse_won_amount("30,000원")
    30000

    >>> parse_percentage("12.5%")
    Decimal('12.5')

    >>> parse_iso_date("2025-06-23")
    datetime.date(2025, 6, 23)

    >>> format_won(1234567)
    '1,234,567'
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional, Union


def _normalize_number_text(value: str) -> str:
    """Strip whitespace, thousands separators and the won suffix."""
    return (
        value.strip()
        .replace(",", "")
        .replace(" ", "")
        .replace("\xa0", "")
        .removesuffix("원")
    )


def parse_won_amount(value: Union[int, str, None]) -> Optional[int]:
    """
    Parse a won amount to an integer.

    Args:
        value: Integer, or text such as "30000", "30,000" or "30,000원"

    Returns:
        Parsed integer or None if input is empty/None

    Raises:
        ValueError: If value is not a whole number

    Examples:
        >>> parse_won_amount("1,000,000")
        1000000
        >>> parse_won_amount(5000)
        5000
        >>> parse_won_amount("")
        None
    """
    if value is None:
        return None

    # bool is an int subclass but never a valid amount
    if isinstance(value, bool):
        raise ValueError(f"Cannot parse won amount {value!r}")

    if isinstance(value, int):
        return value

    if not isinstance(value, str):
        raise ValueError(f"Cannot parse won amount {value!r}")

    normalized = _normalize_number_text(value)
    if not normalized:
        return None

    sign = ""
    if normalized[0] in "+-":
        sign, normalized = normalized[0], normalized[1:]

    if not normalized.isascii() or not normalized.isdigit():
        raise ValueError(f"Cannot parse won amount '{value}'")

    return int(sign + normalized)


def parse_percentage(value: Optional[str]) -> Optional[Decimal]:
    """
    Parse a percentage to Python Decimal.

    Args:
        value: Percentage text (e.g., "10", "12.5%") or None/empty

    Returns:
        Decimal object (e.g., Decimal('12.5')) or None if input is empty

    Raises:
        ValueError: If value cannot be parsed as a finite number

    Examples:
        >>> parse_percentage("50%")
        Decimal('50')
        >>> parse_percentage("")
        None
    """
    if not value or not isinstance(value, str):
        return None

    value = value.strip().rstrip("%").strip()
    if not value:
        return None

    try:
        parsed = Decimal(value.replace(",", ""))
    except InvalidOperation as e:
        raise ValueError(f"Cannot parse percentage '{value}': {e}") from e

    if not parsed.is_finite():
        raise ValueError(f"Cannot parse percentage '{value}': not a finite number")

    return parsed


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """Parse an ISO date string (YYYY-MM-DD) to a date object.

    Args:
        value: Date string or None/empty

    Returns:
        datetime.date object or None if input is empty

    Raises:
        ValueError: If date format is invalid

    Examples:
        >>> parse_iso_date("2025-01-31")
        datetime.date(2025, 1, 31)
        >>> parse_iso_date(None)
        None
    """
    if not value or not isinstance(value, str):
        return None

    value = value.strip()
    if not value:
        return None

    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise ValueError(f"Cannot parse date '{value}' (expected YYYY-MM-DD): {e}") from e


def format_won(amount: int) -> str:
    """Format an amount with thousands separators (1234567 -> '1,234,567')."""
    return f"{amount:,}"


__all__ = ["parse_won_amount", "parse_percentage", "parse_iso_date", "format_won"]
