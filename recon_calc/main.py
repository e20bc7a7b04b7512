"""Command-line interface for the reconciliation calculator.

This module uses the ``click`` library to implement a multi-command
interface. Users can generate amortisation schedules (optionally applying
month overrides), check a variance against a ledger balance, or project
several items onto a period grid. Schedules can be printed to the terminal or
exported to JSON/CSV files.
"""

from __future__ import annotations

import csv
import json
import logging
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import click

from .data_models import ItemRole, SchedulableItem, ScheduleLine, SpreadMethod, ToleranceClass
from .engine import generate_schedule, headline_monthly_amount, validate_item_terms
from .errors import ReconError
from .formatter import print_grid, print_schedule, print_variance
from .override import override_line
from .projection import ledger_variances, project_grid
from .utils import decimal_from_str, inclusive_month_span, parse_date, parse_year_month
from .variance import calculate_variance

METHOD_CHOICES = [m.value for m in SpreadMethod]


def parse_override_strings(values: Tuple[str, ...]) -> List[Tuple[date, str, Optional[str]]]:
    """Parse ``YYYY-MM:AMOUNT[:NOTE]`` override options."""
    overrides = []
    for item in values:
        parts = item.split(":", 2)
        if len(parts) < 2:
            raise click.BadParameter(f"Override must be in YYYY-MM:AMOUNT[:NOTE] format; got {item}")
        try:
            month = parse_year_month(parts[0])
        except ReconError as exc:
            raise click.BadParameter(str(exc))
        note = parts[2] if len(parts) == 3 and parts[2] else None
        overrides.append((month, parts[1], note))
    return overrides


def parse_item_strings(values: Tuple[str, ...]) -> List[Tuple[date, date, str, str]]:
    """Parse ``START:END:TOTAL[:METHOD]`` item options."""
    items = []
    for item in values:
        parts = item.split(":")
        if len(parts) not in (3, 4):
            raise click.BadParameter(f"Item must be in START:END:TOTAL[:METHOD] format; got {item}")
        try:
            start, end = parse_date(parts[0]), parse_date(parts[1])
        except ReconError as exc:
            raise click.BadParameter(str(exc))
        method = parts[3] if len(parts) == 4 else SpreadMethod.EQUAL.value
        items.append((start, end, parts[2], method))
    return items


def parse_ledger_strings(values: Tuple[str, ...]) -> Dict[date, Any]:
    """Parse ``YYYY-MM:BALANCE`` ledger options keyed by month end."""
    balances = {}
    for item in values:
        parts = item.split(":")
        if len(parts) != 2:
            raise click.BadParameter(f"Ledger balance must be in YYYY-MM:BALANCE format; got {item}")
        try:
            balances[parse_year_month(parts[0])] = decimal_from_str(parts[1])
        except ReconError as exc:
            raise click.BadParameter(str(exc))
    return balances


def build_schedule(
    start_date: str,
    end_date: str,
    total: str,
    method: str,
    overrides: Tuple[str, ...] = (),
) -> List[ScheduleLine]:
    """Generate a schedule and apply overrides in the order given."""
    start, end = parse_date(start_date), parse_date(end_date)
    amount = validate_item_terms(start, end, total)
    lines = generate_schedule(start, end, amount, method)
    for month, value, note in parse_override_strings(overrides):
        index = next((i for i, line in enumerate(lines) if line.month_end_date == month), None)
        if index is None:
            raise click.BadParameter(f"No schedule line for {month:%Y-%m}")
        lines = override_line(lines, index, value, amount, note)
    return lines


def export_to_json(path: Path, lines: List[ScheduleLine]) -> None:
    """Export a schedule to a JSON file."""
    sched_list = []
    for line in lines:
        sched_list.append(
            {
                "month_end_date": line.month_end_date.isoformat(),
                "opening_balance": f"{line.opening_balance:.2f}",
                "monthly_amount": f"{line.monthly_amount:.2f}",
                "closing_balance": f"{line.closing_balance:.2f}",
                "original_amount": f"{line.original_amount:.2f}",
                "is_overridden": line.is_overridden,
                "audit_note": line.audit_note,
            }
        )
    with path.open("w", encoding="utf-8") as f:
        json.dump({"schedule": sched_list}, f, indent=2)


def export_to_csv(path: Path, lines: List[ScheduleLine]) -> None:
    """Export a schedule to a CSV file."""
    header = [
        "Month_End",
        "Opening_Balance",
        "Monthly_Amount",
        "Closing_Balance",
        "Original_Amount",
        "Overridden",
        "Audit_Note",
    ]
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(header)
        for line in lines:
            writer.writerow(
                [
                    line.month_end_date.isoformat(),
                    f"{line.opening_balance:.2f}",
                    f"{line.monthly_amount:.2f}",
                    f"{line.closing_balance:.2f}",
                    f"{line.original_amount:.2f}",
                    line.is_overridden,
                    line.audit_note or "",
                ]
            )


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log calculation details")
def cli(verbose: bool) -> None:
    """Amortisation schedules and reconciliation checks for month-end closes."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s [%(name)s] %(message)s",
    )


@cli.command()
@click.option("--start", "-s", "start_date", required=True, help="First day covered (YYYY-MM-DD)")
@click.option("--end", "-e", "end_date", required=True, help="Last day covered (YYYY-MM-DD)")
@click.option("--total", "-t", "total", required=True, help="Amount to spread")
@click.option("--method", "-m", "method", type=click.Choice(METHOD_CHOICES), default="equal", help="Spread method")
@click.option("--role", "role", type=click.Choice([r.value for r in ItemRole]), default="expense", help="Prepayment (expense) or deferred income")
@click.option("--override", "override", multiple=True, help="Override in YYYY-MM:AMOUNT[:NOTE] format")
@click.option("--output", "output", type=str, help="Output file path (.json or .csv)")
def schedule(
    start_date: str,
    end_date: str,
    total: str,
    method: str,
    role: str,
    override: Tuple[str, ...],
    output: Optional[str],
) -> None:
    """Generate and print an amortisation schedule."""
    try:
        lines = build_schedule(start_date, end_date, total, method, override)
    except ReconError as exc:
        raise click.ClickException(str(exc))
    if output:
        path = Path(output)
        if path.suffix.lower() == ".json":
            export_to_json(path, lines)
        elif path.suffix.lower() == ".csv":
            export_to_csv(path, lines)
        else:
            raise click.BadParameter("Unsupported output format; use .json or .csv")
        click.echo(f"Schedule exported to {path}")
    else:
        print_schedule(lines, ItemRole(role))


@cli.command()
@click.option("--ledger", "ledger", required=True, help="Ledger balance")
@click.option("--comparison", "comparison", required=True, help="Schedule or sub-ledger total")
@click.option(
    "--tolerance",
    "tolerance",
    type=click.Choice([t.value for t in ToleranceClass]),
    required=True,
    help="'schedule' (within a cent) or 'exact' (rounding only)",
)
def variance(ledger: str, comparison: str, tolerance: str) -> None:
    """Compare a computed total with a ledger balance."""
    try:
        result = calculate_variance(decimal_from_str(ledger), decimal_from_str(comparison), ToleranceClass(tolerance))
    except ReconError as exc:
        raise click.ClickException(str(exc))
    print_variance(result)


@cli.command()
@click.option("--period", "-p", "period", required=True, help="Viewing period (YYYY-MM)")
@click.option("--item", "item", multiple=True, required=True, help="Item in START:END:TOTAL[:METHOD] format")
@click.option("--ledger", "ledger", multiple=True, help="Ledger balance in YYYY-MM:BALANCE format")
def grid(period: str, item: Tuple[str, ...], ledger: Tuple[str, ...]) -> None:
    """Project several items onto month columns from the viewing period on."""
    try:
        viewing = parse_year_month(period)
    except ReconError as exc:
        raise click.BadParameter(str(exc))
    items: List[SchedulableItem] = []
    lines_by_item: Dict[str, List[ScheduleLine]] = {}
    try:
        for n, (start, end, total, method) in enumerate(parse_item_strings(item), start=1):
            amount = validate_item_terms(start, end, total)
            months = inclusive_month_span(start, end)
            entry = SchedulableItem(
                id=f"item-{n}",
                client_id="",
                account_code="",
                role=ItemRole.EXPENSE,
                counterparty="",
                description="",
                start_date=start,
                end_date=end,
                total_amount=amount,
                spread_method=SpreadMethod.parse(method),
                number_of_months=months,
                monthly_amount=headline_monthly_amount(amount, months),
            )
            items.append(entry)
            lines_by_item[entry.id] = generate_schedule(start, end, amount, entry.spread_method)
    except ReconError as exc:
        raise click.ClickException(str(exc))
    balances = parse_ledger_strings(ledger)
    projection = project_grid(items, lines_by_item, viewing)
    print_grid(projection, balances, ledger_variances(projection, balances))


if __name__ == "__main__":
    cli()
