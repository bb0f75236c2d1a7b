"""
Money Helpers

Balances and amounts are plain Decimals with two fractional digits.
NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from datetime import datetime, date, timezone
from typing import Union


CENT = Decimal('0.01')
ZERO = Decimal('0.00')

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """
    Convert a number to Decimal without going through binary float

    Raises:
        ValueError: If the value cannot be represented as a finite Decimal
    """
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"Cannot convert '{value}' to Decimal")

    if not result.is_finite():
        raise ValueError(f"Amount must be finite, got {value}")
    return result


def quantize_amount(value: Number) -> Decimal:
    """Round to cents using round-half-away-from-zero"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(value: Decimal) -> str:
    """Format for display and serialization"""
    return f"{quantize_amount(value):.2f}"


def ensure_utc(value: Union[datetime, date]) -> datetime:
    """Normalize a timestamp to an aware UTC datetime; naive values are taken as UTC"""
    if not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
