"""Projection of many item schedules onto a shared grid of month columns."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .data_models import GridProjection, PeriodTotals, SchedulableItem, ScheduleLine, ToleranceClass, VarianceResult
from .utils import ZERO, month_end_of, round2
from .variance import calculate_variance


def month_columns(
    items: Iterable[SchedulableItem],
    lines_by_item: Mapping[str, List[ScheduleLine]],
    viewing_month_end: date,
) -> List[date]:
    """Return the viewing month plus every later month any item has a line in."""
    columns = {viewing_month_end}
    for item in items:
        for line in lines_by_item.get(item.id, []):
            if line.month_end_date >= viewing_month_end:
                columns.add(line.month_end_date)
    return sorted(columns)


def _item_position(
    item: SchedulableItem, lines: List[ScheduleLine], month: date
) -> Tuple[Decimal, Decimal]:
    """Return ``(recognised, closing)`` for one item at one month column.

    Before its first line an item still carries its whole amount; after its
    last line it is fully recognised.
    """
    for line in lines:
        if line.month_end_date == month:
            return line.monthly_amount, line.closing_balance
    if not lines:
        return ZERO, ZERO
    first = min(line.month_end_date for line in lines)
    if month < first:
        return ZERO, item.total_amount
    return ZERO, ZERO


def project_grid(
    items: Iterable[SchedulableItem],
    lines_by_item: Mapping[str, List[ScheduleLine]],
    viewing_month_end: date,
) -> GridProjection:
    """Aggregate item schedules into per-month totals for a grid view.

    Cancelled items are left out of both the columns and the totals.
    """
    viewing_month_end = month_end_of(viewing_month_end)
    active = [item for item in items if item.is_active]
    columns = month_columns(active, lines_by_item, viewing_month_end)

    totals: Dict[date, PeriodTotals] = {}
    for month in columns:
        recognised = ZERO
        closing = ZERO
        for item in active:
            item_recognised, item_closing = _item_position(item, lines_by_item.get(item.id, []), month)
            recognised += item_recognised
            closing += item_closing
        totals[month] = PeriodTotals(total_recognised=round2(recognised), closing_balance=round2(closing))

    return GridProjection(viewing_month_end=viewing_month_end, month_columns=columns, totals=totals)


def ledger_variances(
    projection: GridProjection, ledger_balances: Mapping[date, Decimal]
) -> Dict[date, VarianceResult]:
    """Compare ledger balances with projected closing balances, month by month.

    Only columns up to the viewing month that have a ledger balance are
    compared; later months have no ledger figure yet.
    """
    results: Dict[date, VarianceResult] = {}
    for month in projection.month_columns:
        if month > projection.viewing_month_end or month not in ledger_balances:
            continue
        results[month] = calculate_variance(
            ledger_balances[month], projection.totals[month].closing_balance, ToleranceClass.SCHEDULE
        )
    return results


def current_variance(
    projection: GridProjection, ledger_balance: Optional[Decimal]
) -> Optional[VarianceResult]:
    """Reconciliation status of the viewing month, or None without a ledger balance."""
    if ledger_balance is None:
        return None
    return calculate_variance(
        ledger_balance,
        projection.totals[projection.viewing_month_end].closing_balance,
        ToleranceClass.SCHEDULE,
    )
