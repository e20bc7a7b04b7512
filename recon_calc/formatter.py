"""Output helpers for the reconciliation calculator.

This module renders schedules, grids and variance results as plain tab
separated tables. We rely only on built-in printing and string formatting so
the output can be piped into a spreadsheet.
"""

from __future__ import annotations

from datetime import date
from typing import Dict, Iterable, Optional

from .data_models import GridProjection, ItemRole, ScheduleLine, VarianceResult


def print_schedule(lines: Iterable[ScheduleLine], role: ItemRole = ItemRole.EXPENSE) -> None:
    """Print an amortisation schedule as a simple table.

    Overridden months are marked in the last column; the generator's
    original figure is kept alongside so the edit is visible.
    """
    headers = ["Month", "Opening", role.amount_label, "Closing", "Original", "Override"]
    print("\t".join(headers))
    for line in lines:
        row = [
            line.month_end_date.isoformat(),
            f"{line.opening_balance:.2f}",
            f"{line.monthly_amount:.2f}",
            f"{line.closing_balance:.2f}",
            f"{line.original_amount:.2f}",
            "Yes" if line.is_overridden else "",
        ]
        print("\t".join(row))
        if line.audit_note:
            print(f"\t  note: {line.audit_note}")


def print_variance(result: VarianceResult, label: str = "Variance") -> None:
    status = "Reconciled" if result.is_reconciled else "Not reconciled"
    print(f"{label:18s}: {result.variance_amount:.2f} ({status}, {result.tolerance.value} tolerance)")


def print_grid(
    projection: GridProjection,
    ledger_balances: Optional[Dict[date, object]] = None,
    variances: Optional[Dict[date, VarianceResult]] = None,
) -> None:
    """Print period totals for every month column of a grid."""
    ledger_balances = ledger_balances or {}
    variances = variances or {}
    print(f"Viewing period: {projection.viewing_month_end.isoformat()}")
    print("-" * 72)
    print("\t".join(["Month", "Recognised", "Closing", "Ledger", "Variance"]))
    for month in projection.month_columns:
        totals = projection.totals[month]
        ledger = ledger_balances.get(month)
        variance = variances.get(month)
        row = [
            month.isoformat(),
            f"{totals.total_recognised:.2f}",
            f"{totals.closing_balance:.2f}",
            f"{ledger:.2f}" if ledger is not None else "-",
            f"{variance.variance_amount:.2f}{' ok' if variance.is_reconciled else ''}" if variance else "-",
        ]
        print("\t".join(row))
    print("-" * 72)
