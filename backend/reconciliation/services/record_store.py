"""
GL Recon - Record Store

Persistence access for order forecasts, GL entries and the accounting
item code table. The store never commits: the calling service owns the
unit of work.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.reconciliation_models import (
    AccountingItemDB,
    DebitCredit,
    GLEntryDB,
    GLStatus,
    OrderForecastDB,
    OrderStatus,
)
from reconciliation.errors import NotFoundError, StateConflictError
from reconciliation.matching_rules.base import AccountCodeTable
from reconciliation.status import PAIRED_ORDER_STATUSES

logger = logging.getLogger(__name__)


class RecordStore:
    """Repository for reconciliation records"""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ==================== READ ====================

    async def get_order(self, order_id: str) -> OrderForecastDB:
        result = await self.session.execute(
            select(OrderForecastDB).where(OrderForecastDB.id == order_id)
        )
        order = result.scalar_one_or_none()
        if not order:
            raise NotFoundError("order_forecast", order_id)
        return order

    async def get_gl_entry(self, gl_id: str) -> GLEntryDB:
        result = await self.session.execute(
            select(GLEntryDB).where(GLEntryDB.id == gl_id)
        )
        gl = result.scalar_one_or_none()
        if not gl:
            raise NotFoundError("gl_entry", gl_id)
        return gl

    async def get_orders(self, order_ids: Sequence[str]) -> List[OrderForecastDB]:
        """Fetch orders by id, in id order. Raises NotFoundError for the first missing id."""
        wanted = sorted(set(order_ids))
        if not wanted:
            return []
        result = await self.session.execute(
            select(OrderForecastDB)
            .where(OrderForecastDB.id.in_(wanted))
            .order_by(OrderForecastDB.id)
        )
        orders = list(result.scalars().all())
        _raise_missing("order_forecast", wanted, orders)
        return orders

    async def get_gl_entries(self, gl_ids: Sequence[str]) -> List[GLEntryDB]:
        """Fetch GL entries by id, in id order. Raises NotFoundError for the first missing id."""
        wanted = sorted(set(gl_ids))
        if not wanted:
            return []
        result = await self.session.execute(
            select(GLEntryDB)
            .where(GLEntryDB.id.in_(wanted))
            .order_by(GLEntryDB.id)
        )
        entries = list(result.scalars().all())
        _raise_missing("gl_entry", wanted, entries)
        return entries

    async def find_orders(
        self,
        period: str,
        statuses: Optional[Iterable[OrderStatus]] = None
    ) -> List[OrderForecastDB]:
        query = select(OrderForecastDB).where(OrderForecastDB.accounting_period == period)
        if statuses is not None:
            query = query.where(OrderForecastDB.reconciliation_status.in_(list(statuses)))
        result = await self.session.execute(query.order_by(OrderForecastDB.id))
        return list(result.scalars().all())

    async def find_gl_entries(
        self,
        period: str,
        statuses: Optional[Iterable[GLStatus]] = None
    ) -> List[GLEntryDB]:
        query = select(GLEntryDB).where(GLEntryDB.period == period)
        if statuses is not None:
            query = query.where(GLEntryDB.reconciliation_status.in_(list(statuses)))
        result = await self.session.execute(query.order_by(GLEntryDB.id))
        return list(result.scalars().all())

    async def find_orders_matched_to(self, gl_ids: Sequence[str]) -> List[OrderForecastDB]:
        """Orders (in any period) whose edge points at one of ``gl_ids``."""
        if not gl_ids:
            return []
        result = await self.session.execute(
            select(OrderForecastDB)
            .where(OrderForecastDB.gl_match_id.in_(list(gl_ids)))
            .order_by(OrderForecastDB.id)
        )
        return list(result.scalars().all())

    async def load_account_code_table(self) -> AccountCodeTable:
        result = await self.session.execute(
            select(AccountingItemDB).order_by(AccountingItemDB.code)
        )
        return AccountCodeTable.from_records(result.scalars().all())

    # ==================== CREATE ====================

    async def add_order(
        self,
        accounting_period: str,
        accounting_item: str,
        amount: Decimal,
        description: str = "",
        **extra
    ) -> OrderForecastDB:
        """Create an order forecast line. New lines always start unmatched."""
        order = OrderForecastDB(
            accounting_period=accounting_period,
            accounting_item=accounting_item,
            description=description or "",
            amount=Decimal(str(amount)),
            reconciliation_status=OrderStatus.UNMATCHED,
            gl_match_id=None,
            is_excluded=False,
            exclusion_reason=None,
            **extra
        )
        self.session.add(order)
        await self.session.flush()
        return order

    async def add_gl_entry(
        self,
        voucher_no: str,
        transaction_date: date,
        account_code: str,
        account_name: str,
        amount: Decimal,
        description: Optional[str] = None,
        debit_credit: DebitCredit = DebitCredit.CREDIT,
        **extra
    ) -> GLEntryDB:
        """Create a GL entry. The period is derived from the transaction date."""
        gl = GLEntryDB(
            voucher_no=voucher_no,
            transaction_date=transaction_date,
            account_code=account_code,
            account_name=account_name,
            description=description,
            amount=Decimal(str(amount)),
            debit_credit=DebitCredit(debit_credit),
            reconciliation_status=GLStatus.UNMATCHED,
            is_excluded=False,
            exclusion_reason=None,
            **extra
        )
        self.session.add(gl)
        await self.session.flush()
        return gl

    async def add_accounting_item(self, code: str, name: str) -> AccountingItemDB:
        item = AccountingItemDB(code=code, name=name)
        self.session.add(item)
        await self.session.flush()
        return item

    # ==================== DELETE ====================

    async def delete_order(self, order_id: str):
        """Delete an order line. Paired lines must be unmatched first."""
        order = await self.get_order(order_id)
        status = OrderStatus(order.reconciliation_status)
        if status in PAIRED_ORDER_STATUSES:
            raise StateConflictError(
                record_type="order_forecast",
                record_id=order.id,
                current_status=status.value,
                message=f"Order {order.id} is {status.value}: unmatch it before deleting",
            )
        await self.session.delete(order)
        await self.session.flush()
        logger.info(f"Deleted order forecast {order_id}")

    async def delete_gl_entry(self, gl_id: str):
        """Delete a GL entry. Claimed entries must be unmatched first."""
        gl = await self.get_gl_entry(gl_id)
        if GLStatus(gl.reconciliation_status) == GLStatus.MATCHED:
            raise StateConflictError(
                record_type="gl_entry",
                record_id=gl.id,
                current_status=GLStatus.MATCHED.value,
                message=f"GL entry {gl.id} is matched: unmatch it before deleting",
            )
        await self.session.delete(gl)
        await self.session.flush()
        logger.info(f"Deleted GL entry {gl_id}")


def _raise_missing(record_type: str, wanted: List[str], found) -> None:
    found_ids = {record.id for record in found}
    for record_id in wanted:
        if record_id not in found_ids:
            raise NotFoundError(record_type, record_id)
