"""Data models for the reconciliation calculator.

Schedulable items cover both prepayments and deferred income; the ``role``
field tells them apart. Money fields are ``Decimal`` and are expected to be
rounded to the cent before they reach these classes.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from .errors import ValidationError


class SpreadMethod(str, Enum):
    """Convention used to divide a lump sum across the months it covers."""

    EQUAL = "equal"
    DAILY_PRORATION = "daily_proration"
    HALF_MONTH = "half_month"

    @classmethod
    def parse(cls, value) -> "SpreadMethod":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValidationError(f"Unknown spread method: {value}") from exc


class ItemStatus(str, Enum):
    ACTIVE = "active"
    FULLY_RECOGNISED = "fully_recognised"
    CANCELLED = "cancelled"


class ItemRole(str, Enum):
    """Whether an item is a prepayment (expense) or deferred income.

    The role never changes the arithmetic; it only selects the labels used
    when a schedule is displayed.
    """

    EXPENSE = "expense"
    INCOME = "income"

    @classmethod
    def parse(cls, value) -> "ItemRole":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValidationError(f"Unknown item role: {value}") from exc

    @property
    def counterparty_label(self) -> str:
        return "Vendor" if self is ItemRole.EXPENSE else "Customer"

    @property
    def amount_label(self) -> str:
        return "Monthly expense" if self is ItemRole.EXPENSE else "Monthly recognition"


class ToleranceClass(str, Enum):
    """How close two balances must be to count as reconciled.

    ``SCHEDULE`` absorbs rounding noise below one cent when comparing a
    schedule or sub-ledger against the ledger. ``EXACT`` is used where only
    sub-cent rounding may differ, e.g. a submitted bank statement balance.
    """

    SCHEDULE = "schedule"
    EXACT = "exact"

    @property
    def threshold(self) -> Decimal:
        return Decimal("0.01") if self is ToleranceClass.SCHEDULE else Decimal("0.005")


@dataclass
class SchedulableItem:
    """One amortising financial event.

    Attributes
    ----------
    start_date, end_date: date
        The period covered. ``end_date`` must be after ``start_date``.
    total_amount: Decimal
        The lump sum to spread, positive and held to two decimal places.
    spread_method: SpreadMethod
        The allocation convention used when the schedule was generated.
    number_of_months: int
        Calendar months touched by the item (see ``inclusive_month_span``).
    monthly_amount: Decimal
        Headline per-month figure, ``round2(total_amount / number_of_months)``.
    """

    id: str
    client_id: str
    account_code: str
    role: ItemRole
    counterparty: str
    description: str
    start_date: date
    end_date: date
    total_amount: Decimal
    spread_method: SpreadMethod
    number_of_months: int
    monthly_amount: Decimal
    status: ItemStatus = ItemStatus.ACTIVE
    currency: str = "GBP"
    created_by: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status is not ItemStatus.CANCELLED


@dataclass
class ScheduleLine:
    """One calendar month of an amortisation schedule.

    ``original_amount`` keeps the figure the generator first produced so the
    audit trail survives overrides. ``override_amount`` and ``audit_note`` are
    only set on lines a user has edited.
    """

    month_end_date: date
    opening_balance: Decimal
    monthly_amount: Decimal
    closing_balance: Decimal
    original_amount: Decimal
    override_amount: Optional[Decimal] = None
    is_overridden: bool = False
    audit_note: Optional[str] = None
    id: Optional[str] = None
    item_id: Optional[str] = None


@dataclass
class VarianceResult:
    variance_amount: Decimal
    is_reconciled: bool
    tolerance: ToleranceClass


@dataclass
class PeriodTotals:
    total_recognised: Decimal
    closing_balance: Decimal


@dataclass
class GridProjection:
    """Month columns and aggregated totals for a multi-item schedule grid."""

    viewing_month_end: date
    month_columns: List[date]
    totals: Dict[date, PeriodTotals] = field(default_factory=dict)
