"""
Interest Calculator Module

Compound interest for savings withdrawals:

    ending_balance = starting_balance * (1 + monthly_rate) ** months
    monthly_rate   = yearly_return / 12 / 100

Only whole calendar months count. Pure functions, no state, no I/O.
"""

from decimal import Decimal
from datetime import date, datetime
from dataclasses import dataclass
from typing import Union

from .money import Number, ensure_utc, quantize_amount, to_decimal


MONTHS_PER_YEAR = Decimal('12')
PERCENT = Decimal('100')

Timestamp = Union[date, datetime]


@dataclass(frozen=True)
class InterestCalculation:
    """Result of an interest calculation, amounts rounded to cents"""
    months_held: int
    interest_earned: Decimal
    ending_balance: Decimal


def monthly_rate(yearly_return: Number) -> Decimal:
    """Convert a yearly percentage (e.g. 6.0 for 6%) to a monthly fraction"""
    return to_decimal(yearly_return) / MONTHS_PER_YEAR / PERCENT


def months_held(start: Timestamp, end: Timestamp) -> int:
    """
    Whole calendar months between two timestamps.

    A month counts once its day-of-month anniversary is reached, so
    2024-01-15 -> 2024-07-14 is 5 months and 2024-01-15 -> 2024-07-15 is 6.
    Returns 0 when ``end`` precedes ``start``.
    """
    start = ensure_utc(start)
    end = ensure_utc(end)

    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1

    return max(0, months)


def accrue(principal: Number, yearly_return: Number, months: int) -> InterestCalculation:
    """
    Compound ``principal`` monthly for ``months`` months.

    Ending balance and interest are each rounded half-up to cents from the
    unrounded ending balance.

    Raises:
        ValueError: If principal, rate or months is negative
    """
    principal = to_decimal(principal)
    rate = monthly_rate(yearly_return)

    if principal < 0:
        raise ValueError("Principal must not be negative")
    if rate < 0:
        raise ValueError("Yearly return must not be negative")
    if months < 0:
        raise ValueError("Months held must not be negative")

    if months == 0:
        return InterestCalculation(
            months_held=0,
            interest_earned=quantize_amount(0),
            ending_balance=quantize_amount(principal)
        )

    ending_balance = principal * (1 + rate) ** months
    interest_earned = ending_balance - principal

    return InterestCalculation(
        months_held=months,
        interest_earned=quantize_amount(interest_earned),
        ending_balance=quantize_amount(ending_balance)
    )


def calculate_withdrawal_interest(
    balance: Number,
    yearly_return: Number,
    deposit_date: Timestamp,
    withdrawal_date: Timestamp
) -> InterestCalculation:
    """Interest owed on ``balance`` held from ``deposit_date`` until ``withdrawal_date``"""
    months = months_held(deposit_date, withdrawal_date)
    return accrue(balance, yearly_return, months)
