"""
Shared fixtures for the reconciliation test suite.

Service tests run against an in-memory SQLite database (aiosqlite) with
the real models; strategy and resolver tests use plain line objects.
"""

import os

# Settings are read (and cached) on first use, so set them before any import
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["INTERNAL_API_KEY"] = "test-internal-key"

from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from database.connection import Base
from database.reconciliation_models import DebitCredit
from reconciliation.matching_rules.base import LedgerLine, OrderLine
from reconciliation.services.record_store import RecordStore

TEST_API_KEY = "test-internal-key"


@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(session):
    return RecordStore(session)


@pytest.fixture
def make_order(store):
    """Create and flush an order forecast line with sensible defaults."""
    async def _make(
        accounting_period: str = "2026-01",
        accounting_item: str = "保守売上",
        description: str = "保守費用（1月分）",
        amount="500000",
        **extra
    ):
        return await store.add_order(
            accounting_period=accounting_period,
            accounting_item=accounting_item,
            amount=Decimal(str(amount)),
            description=description,
            **extra
        )
    return _make


@pytest.fixture
def make_gl(store):
    """Create and flush a GL entry with sensible defaults."""
    async def _make(
        transaction_date: date = date(2026, 1, 15),
        account_code: str = "4100",
        account_name: str = "保守売上",
        description: str = "保守費用（1月分）",
        amount="500000",
        voucher_no: str = "V-0001",
        **extra
    ):
        return await store.add_gl_entry(
            voucher_no=voucher_no,
            transaction_date=transaction_date,
            account_code=account_code,
            account_name=account_name,
            amount=Decimal(str(amount)),
            description=description,
            debit_credit=DebitCredit.CREDIT,
            **extra
        )
    return _make


@pytest_asyncio.fixture
async def code_table_items(store, session):
    """Accounting item code table used by the exact tier."""
    await store.add_accounting_item("4100", "保守売上")
    await store.add_accounting_item("5200", "外注費")
    await session.commit()


def order_line(
    id: str,
    accounting_period: str = "2026-01",
    accounting_item: str = "保守売上",
    description: str = "保守費用（1月分）",
    amount: str = "500000.00"
) -> OrderLine:
    return OrderLine(
        id=id,
        accounting_period=accounting_period,
        accounting_item=accounting_item,
        description=description,
        amount=Decimal(amount),
    )


def ledger_line(
    id: str,
    transaction_date: date = date(2026, 1, 15),
    account_code: str = "4100",
    account_name: str = "保守売上",
    description: str = "保守費用（1月分）",
    amount: str = "500000.00"
) -> LedgerLine:
    return LedgerLine(
        id=id,
        period=transaction_date.strftime("%Y-%m"),
        transaction_date=transaction_date,
        account_code=account_code,
        account_name=account_name,
        description=description,
        amount=Decimal(amount),
    )


@pytest.fixture
def lines():
    """Builders for strategy input lines."""
    class _Lines:
        order = staticmethod(order_line)
        ledger = staticmethod(ledger_line)
    return _Lines
