"""
GL Recon - Reconciliation Database Models

Tables:
- order_forecasts: Revenue/expense forecast lines entered by staff
- gl_entries: Lines imported from the general-ledger export
- accounting_items: Accounting item -> account code table
- reconciliation_runs: Run ledger (one row per orchestrator invocation)

The order -> GL edge lives only on order_forecasts.gl_match_id. The GL
side's status is the derived "claimed" flag and is always written in the
same unit of work as the edge.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, String, Text, Boolean, Date, DateTime, Float, Integer,
    ForeignKey, Index, Enum as SQLEnum, Numeric
)
from sqlalchemy.orm import validates

from database.connection import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# ==================== ENUMS (FROZEN) ====================

class OrderStatus(str, PyEnum):
    """Reconciliation status of an order forecast line"""
    UNMATCHED = "unmatched"
    FUZZY = "fuzzy"        # Tolerance-based pairing, needs human confirmation
    MATCHED = "matched"    # Exact or manual pairing
    EXCLUDED = "excluded"  # Out of scope for reconciliation


class GLStatus(str, PyEnum):
    """Reconciliation status of a GL entry (claimed or not)"""
    UNMATCHED = "unmatched"
    MATCHED = "matched"


class DebitCredit(str, PyEnum):
    DEBIT = "debit"
    CREDIT = "credit"


# ==================== DATABASE MODELS ====================

class AccountingItemDB(Base):
    """
    Accounting item code table.

    Maps the category label staff use on forecasts to the GL account.
    """
    __tablename__ = "accounting_items"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    code = Column(String(50), nullable=False, unique=True)
    name = Column(Text, nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)


class OrderForecastDB(Base):
    """
    Order forecast line.

    Project/customer columns are display-only references owned by the
    entry collaborators.
    """
    __tablename__ = "order_forecasts"

    id = Column(String(36), primary_key=True, default=generate_uuid)

    # Display-only references
    project_id = Column(String(36), nullable=True)
    project_code = Column(Text, nullable=True)
    project_name = Column(Text, nullable=True)
    customer_id = Column(String(36), nullable=True)
    customer_code = Column(Text, nullable=True)
    customer_name = Column(Text, nullable=True)

    # Reconciliation keys
    accounting_period = Column(String(7), nullable=False, index=True)  # YYYY-MM
    accounting_item = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")
    amount = Column(Numeric(14, 2), nullable=False)
    remarks = Column(Text, nullable=True)

    # Reconciliation state
    reconciliation_status = Column(
        SQLEnum(OrderStatus, name="order_reconciliation_status_enum", values_callable=_enum_values),
        nullable=False,
        default=OrderStatus.UNMATCHED,
        index=True
    )
    gl_match_id = Column(
        String(36),
        ForeignKey("gl_entries.id", ondelete="RESTRICT"),
        nullable=True,
        unique=True
    )
    is_excluded = Column(Boolean, nullable=False, default=False)
    exclusion_reason = Column(Text, nullable=True)

    # Optimistic locking
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_order_forecasts_period_status", "accounting_period", "reconciliation_status"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "project_code": self.project_code,
            "project_name": self.project_name,
            "customer_id": self.customer_id,
            "customer_code": self.customer_code,
            "customer_name": self.customer_name,
            "accounting_period": self.accounting_period,
            "accounting_item": self.accounting_item,
            "description": self.description,
            "amount": str(self.amount) if self.amount is not None else None,
            "remarks": self.remarks,
            "reconciliation_status": OrderStatus(self.reconciliation_status).value,
            "gl_match_id": self.gl_match_id,
            "is_excluded": self.is_excluded,
            "exclusion_reason": self.exclusion_reason,
            "version": self.version,
        }

    def __repr__(self) -> str:
        return (
            f"<OrderForecastDB {self.id} {self.accounting_period} "
            f"{self.reconciliation_status} gl={self.gl_match_id}>"
        )


class GLEntryDB(Base):
    """
    General-ledger line imported from the accounting system export.

    ``period`` is derived from ``transaction_date`` whenever the date is set.
    """
    __tablename__ = "gl_entries"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    voucher_no = Column(Text, nullable=False)
    transaction_date = Column(Date, nullable=False)
    account_code = Column(String(50), nullable=False)
    account_name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    amount = Column(Numeric(14, 2), nullable=False)
    debit_credit = Column(
        SQLEnum(DebitCredit, name="debit_credit_enum", values_callable=_enum_values),
        nullable=False,
        default=DebitCredit.CREDIT
    )
    period = Column(String(7), nullable=False, index=True)  # YYYY-MM

    reconciliation_status = Column(
        SQLEnum(GLStatus, name="gl_reconciliation_status_enum", values_callable=_enum_values),
        nullable=False,
        default=GLStatus.UNMATCHED,
        index=True
    )
    is_excluded = Column(Boolean, nullable=False, default=False)
    exclusion_reason = Column(Text, nullable=True)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_gl_entries_period_status", "period", "reconciliation_status"),
    )

    @validates("transaction_date")
    def _derive_period(self, key, value):
        if isinstance(value, str):
            value = date.fromisoformat(value)
        self.period = value.strftime("%Y-%m")
        return value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "voucher_no": self.voucher_no,
            "transaction_date": self.transaction_date.isoformat() if self.transaction_date else None,
            "period": self.period,
            "account_code": self.account_code,
            "account_name": self.account_name,
            "description": self.description,
            "amount": str(self.amount) if self.amount is not None else None,
            "debit_credit": DebitCredit(self.debit_credit).value,
            "reconciliation_status": GLStatus(self.reconciliation_status).value,
            "is_excluded": self.is_excluded,
            "exclusion_reason": self.exclusion_reason,
            "version": self.version,
        }

    def __repr__(self) -> str:
        return f"<GLEntryDB {self.id} {self.period} {self.reconciliation_status}>"


class ReconciliationRunDB(Base):
    """
    Run ledger entry.

    Written once per orchestrator invocation inside the run's transaction;
    immutable afterwards except for retention cleanup.
    """
    __tablename__ = "reconciliation_runs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    period = Column(String(7), nullable=False, index=True)
    executed_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, index=True)
    executed_by = Column(String(100), nullable=False, default="system")

    # Parameters
    fuzzy_enabled = Column(Boolean, nullable=False, default=True)
    fuzzy_threshold = Column(Float, nullable=False)
    date_tolerance_days = Column(Integer, nullable=False)
    amount_tolerance = Column(Numeric(14, 2), nullable=False)

    # Outcome
    newly_matched = Column(Integer, nullable=False, default=0)
    newly_fuzzy = Column(Integer, nullable=False, default=0)
    already_matched_orders = Column(Integer, nullable=False, default=0)
    already_matched_gl = Column(Integer, nullable=False, default=0)
    unmatched_order_count = Column(Integer, nullable=False, default=0)
    unmatched_gl_count = Column(Integer, nullable=False, default=0)
    excluded_order_count = Column(Integer, nullable=False, default=0)
    excluded_gl_count = Column(Integer, nullable=False, default=0)
    total_order_count = Column(Integer, nullable=False, default=0)
    total_gl_count = Column(Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        amount_tolerance = self.amount_tolerance
        if isinstance(amount_tolerance, Decimal):
            amount_tolerance = str(amount_tolerance)
        return {
            "id": self.id,
            "period": self.period,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "executed_by": self.executed_by,
            "parameters": {
                "fuzzy_enabled": self.fuzzy_enabled,
                "fuzzy_threshold": self.fuzzy_threshold,
                "date_tolerance_days": self.date_tolerance_days,
                "amount_tolerance": amount_tolerance,
            },
            "newly_matched": self.newly_matched,
            "newly_fuzzy": self.newly_fuzzy,
            "already_matched_orders": self.already_matched_orders,
            "already_matched_gl": self.already_matched_gl,
            "unmatched_order_count": self.unmatched_order_count,
            "unmatched_gl_count": self.unmatched_gl_count,
            "excluded_order_count": self.excluded_order_count,
            "excluded_gl_count": self.excluded_gl_count,
            "total_order_count": self.total_order_count,
            "total_gl_count": self.total_gl_count,
        }
