"""Persistence layer for schedulable items, schedule lines and ledger balances.

This module implements the store the reconciliation service works against. It
defaults to SQLite for local development, but accepts any SQLAlchemy-compatible
URL (e.g. PostgreSQL/MySQL) for shared deployments.

Older databases may predate some columns. Rather than catching errors when a
column is missing, the store records a schema version and answers
``supports(capability)`` so callers can check before relying on a feature.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    select,
)
from sqlalchemy.orm import declarative_base, defer, relationship, selectinload, sessionmaker

from recon_calc.data_models import ItemRole, ItemStatus, SchedulableItem, ScheduleLine, SpreadMethod
from recon_calc.errors import NotFoundError

logger = logging.getLogger(__name__)

Base = declarative_base()

SCHEMA_VERSION = 2

# Schema version that introduced each optional capability.
CAPABILITIES = {
    "spread_method": 2,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ItemModel(Base):
    __tablename__ = "schedulable_items"

    id = Column(String(64), primary_key=True)
    client_id = Column(String(64), index=True, nullable=False)
    account_code = Column(String(64), nullable=False)
    role = Column(String(16), nullable=False)
    counterparty = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    total_amount = Column(Numeric(18, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="GBP")
    number_of_months = Column(Integer, nullable=False)
    monthly_amount = Column(Numeric(18, 2), nullable=False)
    spread_method = Column(String(32), nullable=False, default=SpreadMethod.EQUAL.value)
    status = Column(String(32), nullable=False, default=ItemStatus.ACTIVE.value)
    created_by = Column(String(64))
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, nullable=False)

    lines = relationship(
        "ScheduleLineModel",
        cascade="all, delete-orphan",
        order_by="ScheduleLineModel.month_end_date",
        passive_deletes=True,
    )


class ScheduleLineModel(Base):
    __tablename__ = "schedule_lines"
    __table_args__ = (UniqueConstraint("item_id", "month_end_date"),)

    id = Column(String(64), primary_key=True)
    item_id = Column(String(64), ForeignKey("schedulable_items.id", ondelete="CASCADE"), index=True, nullable=False)
    month_end_date = Column(Date, index=True, nullable=False)
    opening_balance = Column(Numeric(18, 2), nullable=False)
    monthly_amount = Column(Numeric(18, 2), nullable=False)
    closing_balance = Column(Numeric(18, 2), nullable=False)
    original_amount = Column(Numeric(18, 2), nullable=False)
    override_amount = Column(Numeric(18, 2))
    is_overridden = Column(Boolean, nullable=False, default=False)
    audit_note = Column(Text)
    updated_at = Column(DateTime, default=_utcnow, nullable=False)


class LedgerBalanceModel(Base):
    __tablename__ = "ledger_balances"
    __table_args__ = (UniqueConstraint("client_id", "account_code", "month_end_date"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_id = Column(String(64), index=True, nullable=False)
    account_code = Column(String(64), nullable=False)
    month_end_date = Column(Date, nullable=False)
    balance = Column(Numeric(18, 2), nullable=False)


class StoreMetadataModel(Base):
    __tablename__ = "store_metadata"

    key = Column(String(64), primary_key=True)
    value = Column(String(255), nullable=False)


class ScheduleStore:
    """Database-backed store for amortisation schedules."""

    def __init__(self, url: str) -> None:
        self._engine = create_engine(url, future=True)
        Base.metadata.create_all(self._engine)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)
        self._schema_version = self._read_schema_version()

    # -- schema capabilities -------------------------------------------------

    def _read_schema_version(self) -> int:
        with self._session_factory() as session:
            row = session.get(StoreMetadataModel, "schema_version")
            if row is None:
                session.add(StoreMetadataModel(key="schema_version", value=str(SCHEMA_VERSION)))
                session.commit()
                return SCHEMA_VERSION
            return int(row.value)

    def set_schema_version(self, version: int) -> None:
        with self._session_factory() as session:
            row = session.get(StoreMetadataModel, "schema_version")
            if row is None:
                session.add(StoreMetadataModel(key="schema_version", value=str(version)))
            else:
                row.value = str(version)
            session.commit()
        self._schema_version = version
        logger.info("Schedule store schema version set to %d", version)

    @property
    def schema_version(self) -> int:
        return self._schema_version

    def supports(self, capability: str) -> bool:
        required = CAPABILITIES.get(capability)
        return required is not None and self._schema_version >= required

    def _item_query(self):
        query = select(ItemModel)
        if not self.supports("spread_method"):
            query = query.options(defer(ItemModel.spread_method))
        return query

    # -- items ---------------------------------------------------------------

    def add_item(self, item: SchedulableItem, lines: List[ScheduleLine]) -> None:
        row = ItemModel(
            id=item.id,
            client_id=item.client_id,
            account_code=item.account_code,
            role=item.role.value,
            counterparty=item.counterparty,
            description=item.description,
            start_date=item.start_date,
            end_date=item.end_date,
            total_amount=item.total_amount,
            currency=item.currency,
            number_of_months=item.number_of_months,
            monthly_amount=item.monthly_amount,
            status=item.status.value,
            created_by=item.created_by,
        )
        if self.supports("spread_method"):
            row.spread_method = item.spread_method.value
        row.lines = [self._line_row(item.id, line) for line in lines]
        with self._session_factory() as session:
            session.add(row)
            session.commit()

    def load_item(self, item_id: str) -> Optional[SchedulableItem]:
        with self._session_factory() as session:
            row = session.execute(self._item_query().where(ItemModel.id == item_id)).scalar_one_or_none()
            return self._to_item(row) if row is not None else None

    def list_items(self, client_id: str, account_code: str, role: ItemRole) -> List[SchedulableItem]:
        with self._session_factory() as session:
            rows: Iterable[ItemModel] = session.execute(
                self._item_query()
                .where(
                    ItemModel.client_id == client_id,
                    ItemModel.account_code == account_code,
                    ItemModel.role == ItemRole(role).value,
                )
                .order_by(ItemModel.start_date.asc(), ItemModel.created_at.asc())
            ).scalars()
            return [self._to_item(row) for row in rows]

    def set_status(self, item_id: str, status: ItemStatus) -> None:
        with self._session_factory() as session:
            row = session.get(ItemModel, item_id)
            if row is None:
                raise NotFoundError("Item not found")
            row.status = ItemStatus(status).value
            row.updated_at = _utcnow()
            session.commit()

    def delete_item(self, item_id: str) -> None:
        with self._session_factory() as session:
            row = session.get(ItemModel, item_id, options=[selectinload(ItemModel.lines)])
            if row:
                session.delete(row)
                session.commit()

    # -- schedule lines ------------------------------------------------------

    def load_lines(self, item_id: str) -> List[ScheduleLine]:
        with self._session_factory() as session:
            rows = session.execute(
                select(ScheduleLineModel)
                .where(ScheduleLineModel.item_id == item_id)
                .order_by(ScheduleLineModel.month_end_date.asc())
            ).scalars()
            return [self._to_line(row) for row in rows]

    def save_lines(self, item_id: str, lines: List[ScheduleLine]) -> None:
        """Replace the stored lines of an item in one transaction.

        The item row is locked for update on backends that support it, so a
        concurrent writer in another process waits for this one to commit.
        """
        with self._session_factory() as session:
            item = session.execute(
                select(ItemModel)
                .options(defer(ItemModel.spread_method), selectinload(ItemModel.lines))
                .where(ItemModel.id == item_id)
                .with_for_update()
            ).scalar_one_or_none()
            if item is None:
                raise NotFoundError("Item not found")
            existing = {row.id: row for row in item.lines}
            now = _utcnow()
            kept = []
            for line in lines:
                row = existing.get(line.id)
                if row is None:
                    row = self._line_row(item_id, line)
                else:
                    row.opening_balance = line.opening_balance
                    row.monthly_amount = line.monthly_amount
                    row.closing_balance = line.closing_balance
                    row.original_amount = line.original_amount
                    row.override_amount = line.override_amount
                    row.is_overridden = line.is_overridden
                    row.audit_note = line.audit_note
                row.updated_at = now
                kept.append(row)
            item.lines = kept
            item.updated_at = now
            session.commit()
        logger.debug("Saved %d schedule lines for item %s", len(lines), item_id)

    # -- ledger balances -----------------------------------------------------

    def record_ledger_balance(self, client_id: str, account_code: str, month_end_date: date, balance: Decimal) -> None:
        with self._session_factory() as session:
            row = session.execute(
                select(LedgerBalanceModel).where(
                    LedgerBalanceModel.client_id == client_id,
                    LedgerBalanceModel.account_code == account_code,
                    LedgerBalanceModel.month_end_date == month_end_date,
                )
            ).scalar_one_or_none()
            if row is None:
                session.add(
                    LedgerBalanceModel(
                        client_id=client_id,
                        account_code=account_code,
                        month_end_date=month_end_date,
                        balance=balance,
                    )
                )
            else:
                row.balance = balance
            session.commit()

    def load_ledger_balance(self, client_id: str, account_code: str, month_end_date: date) -> Optional[Decimal]:
        with self._session_factory() as session:
            return session.execute(
                select(LedgerBalanceModel.balance).where(
                    LedgerBalanceModel.client_id == client_id,
                    LedgerBalanceModel.account_code == account_code,
                    LedgerBalanceModel.month_end_date == month_end_date,
                )
            ).scalar_one_or_none()

    def load_ledger_balances(self, client_id: str, account_code: str) -> Dict[date, Decimal]:
        with self._session_factory() as session:
            rows = session.execute(
                select(LedgerBalanceModel)
                .where(
                    LedgerBalanceModel.client_id == client_id,
                    LedgerBalanceModel.account_code == account_code,
                )
                .order_by(LedgerBalanceModel.month_end_date.asc())
            ).scalars()
            return {row.month_end_date: row.balance for row in rows}

    # -- row conversion ------------------------------------------------------

    @staticmethod
    def _line_row(item_id: str, line: ScheduleLine) -> ScheduleLineModel:
        return ScheduleLineModel(
            id=line.id,
            item_id=item_id,
            month_end_date=line.month_end_date,
            opening_balance=line.opening_balance,
            monthly_amount=line.monthly_amount,
            closing_balance=line.closing_balance,
            original_amount=line.original_amount,
            override_amount=line.override_amount,
            is_overridden=line.is_overridden,
            audit_note=line.audit_note,
        )

    def _to_item(self, row: ItemModel) -> SchedulableItem:
        method = SpreadMethod(row.spread_method) if self.supports("spread_method") else SpreadMethod.EQUAL
        return SchedulableItem(
            id=row.id,
            client_id=row.client_id,
            account_code=row.account_code,
            role=ItemRole(row.role),
            counterparty=row.counterparty,
            description=row.description,
            start_date=row.start_date,
            end_date=row.end_date,
            total_amount=row.total_amount,
            spread_method=method,
            number_of_months=row.number_of_months,
            monthly_amount=row.monthly_amount,
            status=ItemStatus(row.status),
            currency=row.currency,
            created_by=row.created_by,
        )

    @staticmethod
    def _to_line(row: ScheduleLineModel) -> ScheduleLine:
        return ScheduleLine(
            month_end_date=row.month_end_date,
            opening_balance=row.opening_balance,
            monthly_amount=row.monthly_amount,
            closing_balance=row.closing_balance,
            original_amount=row.original_amount,
            override_amount=row.override_amount,
            is_overridden=bool(row.is_overridden),
            audit_note=row.audit_note,
            id=row.id,
            item_id=row.item_id,
        )


def create_store_from_env(url: str | None) -> ScheduleStore:
    return ScheduleStore(url or "sqlite:///recon_data.sqlite3")
