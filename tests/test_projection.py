from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from recon_calc.data_models import ItemRole, ItemStatus, SchedulableItem, SpreadMethod, ToleranceClass
from recon_calc.engine import generate_schedule
from recon_calc.projection import current_variance, ledger_variances, month_columns, project_grid

D = Decimal

FEB = date(2026, 2, 28)
MAR = date(2026, 3, 31)
APR = date(2026, 4, 30)
MAY = date(2026, 5, 31)


def make_item(item_id, start, end, total):
    return SchedulableItem(
        id=item_id,
        client_id="client-1",
        account_code="1100",
        role=ItemRole.EXPENSE,
        counterparty="Vendor",
        description="",
        start_date=start,
        end_date=end,
        total_amount=total,
        spread_method=SpreadMethod.EQUAL,
        number_of_months=0,
        monthly_amount=D("0"),
    )


@pytest.fixture
def items():
    return [
        make_item("a", date(2026, 1, 9), date(2026, 4, 8), D("9000.00")),
        make_item("b", date(2026, 3, 1), date(2026, 5, 31), D("3000.00")),
    ]


@pytest.fixture
def lines_by_item(items):
    return {item.id: generate_schedule(item.start_date, item.end_date, item.total_amount, "equal") for item in items}


def test_columns_start_at_viewing_month(items, lines_by_item):
    assert month_columns(items, lines_by_item, FEB) == [FEB, MAR, APR, MAY]


def test_totals_per_column(items, lines_by_item):
    grid = project_grid(items, lines_by_item, FEB)
    assert grid.month_columns == [FEB, MAR, APR, MAY]
    # Item b has not started in February, so it still carries its full amount.
    assert grid.totals[FEB].total_recognised == D("2250.00")
    assert grid.totals[FEB].closing_balance == D("7500.00")
    assert grid.totals[MAR].total_recognised == D("3250.00")
    assert grid.totals[MAR].closing_balance == D("4250.00")
    assert grid.totals[APR].total_recognised == D("3250.00")
    assert grid.totals[APR].closing_balance == D("1000.00")
    # Item a is fully recognised by May.
    assert grid.totals[MAY].total_recognised == D("1000.00")
    assert grid.totals[MAY].closing_balance == D("0.00")


def test_viewing_month_without_lines_is_included(items, lines_by_item):
    december = date(2025, 12, 31)
    grid = project_grid(items, lines_by_item, date(2025, 12, 15))
    assert grid.viewing_month_end == december
    assert grid.month_columns[0] == december
    assert grid.totals[december].total_recognised == D("0.00")
    assert grid.totals[december].closing_balance == D("12000.00")


def test_viewing_after_every_schedule(items, lines_by_item):
    july = date(2026, 7, 31)
    grid = project_grid(items, lines_by_item, july)
    assert grid.month_columns == [july]
    assert grid.totals[july].closing_balance == D("0.00")


def test_cancelled_items_are_excluded(items, lines_by_item):
    items[1] = replace(items[1], status=ItemStatus.CANCELLED)
    grid = project_grid(items, lines_by_item, FEB)
    assert grid.month_columns == [FEB, MAR, APR]
    assert grid.totals[FEB].closing_balance == D("4500.00")


def test_fully_recognised_items_still_count(items, lines_by_item):
    items[0] = replace(items[0], status=ItemStatus.FULLY_RECOGNISED)
    grid = project_grid(items, lines_by_item, FEB)
    assert grid.totals[FEB].closing_balance == D("7500.00")


def test_overridden_lines_flow_into_totals(items, lines_by_item):
    lines = lines_by_item["a"]
    lines[1] = replace(lines[1], monthly_amount=D("1000.00"), closing_balance=D("5750.00"))
    grid = project_grid(items, lines_by_item, FEB)
    assert grid.totals[FEB].total_recognised == D("1000.00")
    assert grid.totals[FEB].closing_balance == D("8750.00")


def test_ledger_variances_only_for_past_and_current_columns(items, lines_by_item):
    grid = project_grid(items, lines_by_item, FEB)
    ledger = {date(2026, 1, 31): D("6750.00"), FEB: D("7500.00"), MAR: D("4000.00")}
    variances = ledger_variances(grid, ledger)
    assert list(variances) == [FEB]
    assert variances[FEB].variance_amount == D("0.00")
    assert variances[FEB].is_reconciled is True
    assert variances[FEB].tolerance is ToleranceClass.SCHEDULE


def test_current_variance(items, lines_by_item):
    grid = project_grid(items, lines_by_item, FEB)
    assert current_variance(grid, None) is None
    result = current_variance(grid, D("7600.00"))
    assert result.variance_amount == D("100.00")
    assert result.is_reconciled is False
