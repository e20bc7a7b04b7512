"""Manual overrides of a single schedule month.

When a preparer changes the amount recognised in one month, every later month
is re-spread so the schedule still sums to the item total. The tail is always
re-spread with the equal convention, whatever method produced the original
schedule: overriding a daily-proration or half-month schedule flattens the
months after the edited one.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import List, Optional

from .data_models import ScheduleLine
from .engine import schedule_total, verify_schedule
from .errors import NotFoundError, ValidationError
from .utils import decimal_from_str, round2


def _parse_override_amount(value) -> Decimal:
    amount = decimal_from_str(value)
    if amount < 0:
        raise ValidationError("Override amount cannot be negative")
    if amount != round2(amount):
        raise ValidationError("Override amount must have at most two decimal places")
    return round2(amount)


def override_line(
    lines: List[ScheduleLine],
    index: int,
    new_amount,
    total: Decimal,
    audit_note: Optional[str] = None,
) -> List[ScheduleLine]:
    """Return a new schedule with line ``index`` set to ``new_amount``.

    Lines before ``index`` keep their current (possibly overridden) values.
    The edited line records the override and closes at its opening balance
    less ``new_amount``. What remains of ``total`` is spread flat over the
    later lines, with the final line recognising its full opening balance.

    An override on the final line must equal that line's opening balance;
    anything else would leave a residual and is rejected.

    Raises
    ------
    NotFoundError
        If ``index`` does not address a line of the schedule.
    ValidationError
        If ``new_amount`` is negative, not numeric, out of range or finer
        than a cent, or if it would leave the final line with a non-zero
        closing balance.
    """
    if index < 0 or index >= len(lines):
        raise NotFoundError("Line not found in schedule")
    amount = _parse_override_amount(new_amount)
    total = round2(total)

    recognised_before = schedule_total(lines[:index])
    target = lines[index]
    closing = round2(target.opening_balance - amount)
    remaining_months = len(lines) - index - 1

    if remaining_months == 0 and closing != 0:
        raise ValidationError(
            f"An override on the final month must equal its opening balance of {target.opening_balance}"
        )

    result = list(lines[:index])
    result.append(
        replace(
            target,
            monthly_amount=amount,
            closing_balance=closing,
            override_amount=amount,
            is_overridden=True,
            audit_note=audit_note,
        )
    )

    if remaining_months > 0:
        remaining_amount = total - recognised_before - amount
        per_month = round2(remaining_amount / Decimal(remaining_months))
        opening = closing
        for i in range(index + 1, len(lines)):
            is_last = i == len(lines) - 1
            monthly = round2(opening) if is_last else per_month
            line_closing = round2(opening - monthly)
            result.append(
                replace(
                    lines[i],
                    opening_balance=opening,
                    monthly_amount=monthly,
                    closing_balance=line_closing,
                    override_amount=None,
                    is_overridden=False,
                )
            )
            opening = line_closing

    verify_schedule(result, total)
    return result
