"""Variance arithmetic used by every reconciliation.

A variance compares a ledger balance with a figure the preparer has built up:
a schedule closing balance, the total of ticked bank reconciling items or an
aged receivables total. Callers always state which tolerance class applies.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from .data_models import ToleranceClass, VarianceResult
from .utils import ZERO, decimal_from_str, round2

ROUNDING_CEILING = Decimal("1.00")


def calculate_variance(
    ledger_balance,
    comparison_total,
    tolerance: ToleranceClass = ToleranceClass.SCHEDULE,
) -> VarianceResult:
    """Compare ``comparison_total`` against ``ledger_balance``.

    The reported amount is rounded to the cent. Whether the two figures
    reconcile is decided on the unrounded difference, so ``1000.00`` against
    ``999.995`` reports a variance of ``0.01`` yet reconciles under the
    schedule tolerance (but not under the exact one).
    """
    tolerance = ToleranceClass(tolerance)
    difference = decimal_from_str(ledger_balance) - decimal_from_str(comparison_total)
    return VarianceResult(
        variance_amount=round2(difference),
        is_reconciled=abs(difference) < tolerance.threshold,
        tolerance=tolerance,
    )


def sum_amounts(amounts: Iterable) -> Decimal:
    return sum((decimal_from_str(a) for a in amounts), ZERO)


def is_rounding_difference(variance_amount) -> bool:
    """Return True for a variance small enough to post as a rounding item."""
    amount = abs(decimal_from_str(variance_amount))
    return Decimal("0.01") <= amount <= ROUNDING_CEILING


def bank_statement_variance(statement_balance, ledger_balance) -> VarianceResult:
    """Statement balance against the ledger, with no tolerance beyond rounding."""
    return calculate_variance(statement_balance, ledger_balance, ToleranceClass.EXACT)


def adjusted_bank_variance(statement_balance, ledger_balance, ticked_items: Iterable) -> VarianceResult:
    """Statement variance after taking off the ticked reconciling items."""
    difference = decimal_from_str(statement_balance) - decimal_from_str(ledger_balance)
    return calculate_variance(difference, sum_amounts(ticked_items), ToleranceClass.EXACT)


def unexplained_remainder(statement_balance, ledger_balance, all_items: Iterable) -> Decimal:
    """Portion of the statement variance not covered by any reconciling item."""
    difference = decimal_from_str(statement_balance) - decimal_from_str(ledger_balance)
    return round2(difference - sum_amounts(all_items))


def aged_receivables_variance(ledger_balance, aged_total) -> VarianceResult:
    return calculate_variance(ledger_balance, aged_total, ToleranceClass.EXACT)
