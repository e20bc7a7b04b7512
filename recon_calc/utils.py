"""Utility functions for the reconciliation calculator.

This module provides the date arithmetic used by every schedule (month ends,
inclusive month spans, days in a month), the money rounding helper and
parsers that turn user input into ``date`` and ``Decimal`` values. It uses
Python's ``calendar`` module for month lengths.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
import calendar

from .errors import ValidationError

getcontext().prec = 28  # increase decimal precision to avoid rounding errors

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Exclusive bound on any money amount. Below it an amount has at most 15
# significant digits, which SQLite's float-backed Numeric columns keep exactly.
MAX_AMOUNT = Decimal("10000000000000")


def round2(value: Decimal) -> Decimal:
    """Round a money value to two decimal places (half up)."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def days_in_month(year: int, month: int) -> int:
    """Return the number of calendar days in ``month`` of ``year``."""
    return calendar.monthrange(year, month)[1]


def month_end(year: int, month: int) -> date:
    """Return the last calendar day of the given month (leap years included)."""
    return date(year, month, days_in_month(year, month))


def month_end_of(dt: date) -> date:
    """Return the month-end date of the month containing ``dt``."""
    return month_end(dt.year, dt.month)


def inclusive_month_span(start: date, end: date) -> int:
    """Count the calendar months touched by ``start`` .. ``end``.

    This counts months, not elapsed days: 9 January to 8 February spans two
    months. The result is never less than one.
    """
    months = (end.year - start.year) * 12 + (end.month - start.month) + 1
    return max(months, 1)


def parse_date(value: str) -> date:
    """Parse a ``YYYY-MM-DD`` string into a ``date``.

    Raises
    ------
    ValidationError
        If the string is not a valid calendar date.
    """
    try:
        return date.fromisoformat(value.strip())
    except (AttributeError, ValueError) as exc:
        raise ValidationError(f"Invalid date: {value}") from exc


def parse_year_month(ym: str) -> date:
    """Parse a ``YYYY-MM`` string into the month-end date of that month."""
    try:
        parts = ym.strip().split("-")
        if len(parts) < 2:
            raise ValueError
        return month_end(int(parts[0]), int(parts[1]))
    except (AttributeError, ValueError) as exc:
        raise ValidationError(f"Invalid year-month string: {ym}") from exc


def decimal_from_str(value) -> Decimal:
    """Convert a numeric string (or number) into a ``Decimal``.

    Commas are stripped so ``"9,000.00"`` is accepted. Floats go through
    ``str`` first so binary fractions never leak into the result. Values whose
    magnitude reaches ``MAX_AMOUNT`` are rejected before any rounding.
    """
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).replace(",", "").strip())
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError(f"Invalid numeric value: {value}") from exc
    if not result.is_finite():
        raise ValidationError(f"Invalid numeric value: {value}")
    if abs(result) >= MAX_AMOUNT:
        raise ValidationError(f"Amount must be below {MAX_AMOUNT:,}: {value}")
    return result
