"""Core calculation engine for amortisation schedules.

This module builds month-by-month recognition schedules for prepayments and
deferred income. A lump sum is spread over the calendar months between a start
and end date using one of three conventions:

* ``equal`` - the same rounded amount every month,
* ``daily_proration`` - amounts weighted by the days covered in each month,
* ``half_month`` - partial first/last months count as half a month.

Every strategy shares the same month walk: amounts are rounded to the cent at
each step and the final month takes whatever is left of its opening balance,
so the schedule always closes at exactly zero and sums to the total.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Tuple

from .data_models import ScheduleLine, SpreadMethod
from .errors import InvariantViolation, ValidationError
from .utils import ZERO, days_in_month, decimal_from_str, inclusive_month_span, month_end, round2

logger = logging.getLogger(__name__)

HALF = Decimal("0.5")
ONE = Decimal("1")


def validate_item_terms(start: date, end: date, total) -> Decimal:
    """Check the dates and amount of a new item and return the total as Decimal.

    Raises ``ValidationError`` when the end date is not after the start date,
    when the amount is not positive or when it carries more than two decimal
    places.
    """
    if end <= start:
        raise ValidationError("End date must be after start date")
    amount = decimal_from_str(total)
    if amount <= 0:
        raise ValidationError("Total amount must be a positive number")
    if amount != round2(amount):
        raise ValidationError("Total amount must have at most two decimal places")
    return round2(amount)


def headline_monthly_amount(total: Decimal, number_of_months: int) -> Decimal:
    """Return the straight-line monthly figure shown alongside an item."""
    return round2(total / Decimal(number_of_months))


def _month_slots(start: date, number_of_months: int) -> List[Tuple[int, int]]:
    """Return ``(year, month)`` pairs for each month from ``start`` onwards."""
    slots = []
    year, month = start.year, start.month
    for _ in range(number_of_months):
        slots.append((year, month))
        month += 1
        if month > 12:
            month = 1
            year += 1
    return slots


def _equal_amounts(start: date, end: date, total: Decimal, number_of_months: int) -> List[Decimal]:
    # Partial-month coverage is ignored on purpose: month one always gets a full share.
    per_month = round2(total / Decimal(number_of_months))
    return [per_month] * number_of_months


def _covered_days(start: date, end: date, number_of_months: int) -> List[int]:
    """Return the number of days the item overlaps each of its months."""
    days = []
    for i, (year, month) in enumerate(_month_slots(start, number_of_months)):
        is_first = i == 0
        is_last = i == number_of_months - 1
        if is_first and is_last:
            covered = end.day - start.day + 1
        elif is_first:
            covered = days_in_month(year, month) - start.day + 1
        elif is_last:
            covered = end.day
        else:
            covered = days_in_month(year, month)
        days.append(max(covered, 0))
    return days


def _daily_proration_amounts(start: date, end: date, total: Decimal, number_of_months: int) -> List[Decimal]:
    days = _covered_days(start, end, number_of_months)
    total_days = sum(days)
    if total_days <= 0:
        raise ValidationError("Item must cover at least one day")
    return [round2(total * Decimal(d) / Decimal(total_days)) for d in days]


def _half_month_weights(start: date, end: date, number_of_months: int) -> List[Decimal]:
    """Return 0.5 for partial first/last months and 1 for full months.

    The last month is only considered partial when the item spans more than
    one month.
    """
    first_partial = start.day > 1
    last_partial = number_of_months > 1 and end.day < days_in_month(end.year, end.month)
    weights = []
    for i in range(number_of_months):
        if i == 0 and first_partial:
            weights.append(HALF)
        elif i == number_of_months - 1 and last_partial:
            weights.append(HALF)
        else:
            weights.append(ONE)
    return weights


def _half_month_amounts(start: date, end: date, total: Decimal, number_of_months: int) -> List[Decimal]:
    weights = _half_month_weights(start, end, number_of_months)
    per_unit = total / sum(weights)
    return [round2(per_unit * w) for w in weights]


SpreadStrategy = Callable[[date, date, Decimal, int], List[Decimal]]

STRATEGIES: Dict[SpreadMethod, SpreadStrategy] = {
    SpreadMethod.EQUAL: _equal_amounts,
    SpreadMethod.DAILY_PRORATION: _daily_proration_amounts,
    SpreadMethod.HALF_MONTH: _half_month_amounts,
}


def _walk_months(start: date, total: Decimal, amounts: List[Decimal]) -> List[ScheduleLine]:
    """Chain opening/closing balances through the computed monthly amounts.

    The final month ignores its formula amount and recognises its whole
    opening balance, which absorbs any rounding remainder.
    """
    lines: List[ScheduleLine] = []
    opening = round2(total)
    last_index = len(amounts) - 1
    for i, ((year, month), amount) in enumerate(zip(_month_slots(start, len(amounts)), amounts)):
        monthly = round2(opening) if i == last_index else round2(amount)
        closing = round2(opening - monthly)
        lines.append(
            ScheduleLine(
                month_end_date=month_end(year, month),
                opening_balance=opening,
                monthly_amount=monthly,
                closing_balance=closing,
                original_amount=monthly,
            )
        )
        opening = closing
    return lines


def generate_schedule(start: date, end: date, total, method) -> List[ScheduleLine]:
    """Generate the amortisation schedule for an item.

    Parameters
    ----------
    start, end: date
        First and last day covered by the item. ``end`` must be after
        ``start``.
    total: Decimal
        The amount to spread. Must be positive with at most two decimals.
    method: SpreadMethod or str
        ``equal``, ``daily_proration`` or ``half_month``.

    Returns
    -------
    List[ScheduleLine]
        One line per calendar month touched by the item, ordered by month
        end. The lines satisfy every invariant checked by
        ``verify_schedule``.
    """
    spread = SpreadMethod.parse(method)
    amount = validate_item_terms(start, end, total)
    number_of_months = inclusive_month_span(start, end)

    amounts = STRATEGIES[spread](start, end, amount, number_of_months)
    lines = _walk_months(start, amount, amounts)
    verify_schedule(lines, amount)
    logger.debug(
        "Generated %s schedule of %d months for %s (%s to %s)",
        spread.value, number_of_months, amount, start, end,
    )
    return lines


def schedule_total(lines: Iterable[ScheduleLine]) -> Decimal:
    return sum((line.monthly_amount for line in lines), ZERO)


def verify_schedule(lines: List[ScheduleLine], total: Decimal) -> None:
    """Raise ``InvariantViolation`` unless ``lines`` is a consistent schedule.

    Checks that the first line opens at ``total``, that each line closes at
    its opening balance less its monthly amount, that balances chain from
    line to line, that the schedule ends at zero and that the monthly
    amounts add up to ``total`` to the cent.
    """
    if not lines:
        raise InvariantViolation("Schedule has no lines")
    expected_total = round2(total)
    if lines[0].opening_balance != expected_total:
        raise InvariantViolation(
            f"First line opens at {lines[0].opening_balance}, expected {expected_total}"
        )
    previous = None
    for line in lines:
        if line.closing_balance != round2(line.opening_balance - line.monthly_amount):
            raise InvariantViolation(f"Line {line.month_end_date} does not balance")
        if previous is not None:
            if line.opening_balance != previous.closing_balance:
                raise InvariantViolation(
                    f"Line {line.month_end_date} does not open at the previous closing balance"
                )
            if line.month_end_date <= previous.month_end_date:
                raise InvariantViolation("Schedule lines are not in ascending month order")
        previous = line
    if lines[-1].closing_balance != ZERO:
        raise InvariantViolation(f"Schedule closes at {lines[-1].closing_balance}, not zero")
    recognised = schedule_total(lines)
    if recognised != expected_total:
        raise InvariantViolation(f"Schedule sums to {recognised}, expected {expected_total}")
