"""Orchestration of schedules against a persistence collaborator.

The engines in this package are pure functions. ``ReconciliationService``
wires them to a store: it validates and generates schedules for new items,
applies overrides under a per-item lock, and assembles the grid data a
reconciliation page needs.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Protocol
from uuid import uuid4

from .data_models import (
    GridProjection,
    ItemRole,
    ItemStatus,
    SchedulableItem,
    ScheduleLine,
    SpreadMethod,
    VarianceResult,
)
from .engine import generate_schedule, headline_monthly_amount, validate_item_terms
from .errors import NotFoundError, ValidationError
from .override import override_line
from .projection import current_variance, ledger_variances, project_grid
from .utils import decimal_from_str, inclusive_month_span, month_end, month_end_of, round2

logger = logging.getLogger(__name__)


class ScheduleRepository(Protocol):
    """What the service needs from a store.

    ``save_lines`` must replace an item's lines in a single transaction.
    """

    def supports(self, capability: str) -> bool: ...

    def add_item(self, item: SchedulableItem, lines: List[ScheduleLine]) -> None: ...

    def load_item(self, item_id: str) -> Optional[SchedulableItem]: ...

    def load_lines(self, item_id: str) -> List[ScheduleLine]: ...

    def save_lines(self, item_id: str, lines: List[ScheduleLine]) -> None: ...

    def list_items(self, client_id: str, account_code: str, role: ItemRole) -> List[SchedulableItem]: ...

    def set_status(self, item_id: str, status: ItemStatus) -> None: ...

    def delete_item(self, item_id: str) -> None: ...

    def record_ledger_balance(self, client_id: str, account_code: str, month_end_date: date, balance: Decimal) -> None: ...

    def load_ledger_balance(self, client_id: str, account_code: str, month_end_date: date) -> Optional[Decimal]: ...

    def load_ledger_balances(self, client_id: str, account_code: str) -> Dict[date, Decimal]: ...


class ItemLocks:
    """Registry of one lock per item id.

    An override reads every line of an item before writing them back, so two
    overrides on the same item must never interleave.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def for_item(self, item_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(item_id)
            if lock is None:
                lock = self._locks[item_id] = threading.Lock()
            return lock

    def discard(self, item_id: str) -> None:
        with self._guard:
            self._locks.pop(item_id, None)


@dataclass
class GridView:
    """Everything a reconciliation page renders for one account and period."""

    items: List[SchedulableItem]
    lines_by_item: Dict[str, List[ScheduleLine]]
    projection: GridProjection
    ledger_balances: Dict[date, Decimal] = field(default_factory=dict)
    variances: Dict[date, VarianceResult] = field(default_factory=dict)
    current: Optional[VarianceResult] = None


class ReconciliationService:
    def __init__(self, repository: ScheduleRepository) -> None:
        self._repository = repository
        self._locks = ItemLocks()

    def create_item(
        self,
        *,
        client_id: str,
        account_code: str,
        role,
        counterparty: str,
        description: str,
        start_date: date,
        end_date: date,
        total_amount,
        spread_method=SpreadMethod.EQUAL,
        currency: str = "GBP",
        created_by: Optional[str] = None,
    ) -> SchedulableItem:
        """Validate a new item, generate its schedule and store both."""
        if not client_id or not account_code or not counterparty:
            raise ValidationError("Missing required fields")
        role = ItemRole.parse(role)
        spread = SpreadMethod.parse(spread_method)
        total = validate_item_terms(start_date, end_date, total_amount)
        if spread is not SpreadMethod.EQUAL and not self._repository.supports("spread_method"):
            raise ValidationError("This store cannot record spread methods other than equal")

        lines = generate_schedule(start_date, end_date, total, spread)
        number_of_months = inclusive_month_span(start_date, end_date)
        item = SchedulableItem(
            id=uuid4().hex,
            client_id=client_id,
            account_code=account_code,
            role=role,
            counterparty=counterparty,
            description=description or "",
            start_date=start_date,
            end_date=end_date,
            total_amount=total,
            spread_method=spread,
            number_of_months=number_of_months,
            monthly_amount=headline_monthly_amount(total, number_of_months),
            currency=currency or "GBP",
            created_by=created_by,
        )
        for line in lines:
            line.id = uuid4().hex
            line.item_id = item.id
        self._repository.add_item(item, lines)
        logger.info(
            "Created %s item %s for client %s: %s over %d months (%s)",
            role.value, item.id, client_id, total, number_of_months, spread.value,
        )
        return item

    def get_item(self, item_id: str) -> SchedulableItem:
        item = self._repository.load_item(item_id)
        if item is None:
            raise NotFoundError("Item not found")
        return item

    def get_lines(self, item_id: str) -> List[ScheduleLine]:
        self.get_item(item_id)
        return self._repository.load_lines(item_id)

    def override(self, item_id: str, line_id: str, amount, audit_note: Optional[str] = None) -> List[ScheduleLine]:
        """Override one line of an item's schedule and re-spread the months after it."""
        with self._locks.for_item(item_id):
            item = self.get_item(item_id)
            if item.status is ItemStatus.CANCELLED:
                raise ValidationError("Cancelled items cannot be changed")
            lines = self._repository.load_lines(item_id)
            index = next((i for i, line in enumerate(lines) if line.id == line_id), None)
            if index is None:
                raise NotFoundError("Schedule line not found")
            updated = override_line(lines, index, amount, item.total_amount, audit_note)
            self._repository.save_lines(item_id, updated)
        logger.info(
            "Override on item %s month %s set to %s", item_id, lines[index].month_end_date, updated[index].monthly_amount
        )
        return updated

    def cancel_item(self, item_id: str) -> None:
        self.get_item(item_id)
        self._repository.set_status(item_id, ItemStatus.CANCELLED)
        logger.info("Cancelled item %s", item_id)

    def delete_item(self, item_id: str) -> None:
        with self._locks.for_item(item_id):
            self.get_item(item_id)
            self._repository.delete_item(item_id)
        self._locks.discard(item_id)
        logger.info("Deleted item %s", item_id)

    def record_ledger_balance(self, client_id: str, account_code: str, month_end_date: date, balance) -> None:
        self._repository.record_ledger_balance(
            client_id, account_code, month_end_of(month_end_date), round2(decimal_from_str(balance))
        )

    def mark_fully_recognised(self, client_id: str, account_code: str, role, as_of: date) -> List[str]:
        """Flag active items whose schedule has fully run by ``as_of``.

        Returns the ids of the items that changed status.
        """
        as_of = month_end_of(as_of)
        changed = []
        for item in self._repository.list_items(client_id, account_code, ItemRole.parse(role)):
            if item.status is not ItemStatus.ACTIVE:
                continue
            lines = self._repository.load_lines(item.id)
            if lines and lines[-1].month_end_date <= as_of:
                self._repository.set_status(item.id, ItemStatus.FULLY_RECOGNISED)
                changed.append(item.id)
        if changed:
            logger.info("Marked %d item(s) fully recognised as of %s", len(changed), as_of)
        return changed

    def load_grid(self, client_id: str, account_code: str, role, period_year: int, period_month: int) -> GridView:
        """Assemble the schedule grid and ledger comparison for one period."""
        viewing = month_end(period_year, period_month)
        items = [
            item
            for item in self._repository.list_items(client_id, account_code, ItemRole.parse(role))
            if item.is_active
        ]
        lines_by_item = {item.id: self._repository.load_lines(item.id) for item in items}
        projection = project_grid(items, lines_by_item, viewing)

        balances = {
            month: balance
            for month, balance in self._repository.load_ledger_balances(client_id, account_code).items()
            if month in projection.totals and month <= viewing
        }
        return GridView(
            items=items,
            lines_by_item=lines_by_item,
            projection=projection,
            ledger_balances=balances,
            variances=ledger_variances(projection, balances),
            current=current_variance(
                projection, self._repository.load_ledger_balance(client_id, account_code, viewing)
            ),
        )
