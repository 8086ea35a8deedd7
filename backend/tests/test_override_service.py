"""
Tests for the Manual Override Service

Tests:
- manual_match guards (unmatch first, excluded, claimed GL)
- unmatch of exact/fuzzy pairs
- confirming a fuzzy pair (unmatch + manual_match)
- bulk exclusion is all-or-nothing
- concurrent modification maps to ConcurrencyConflictError

Run with: pytest backend/tests/test_override_service.py -v
"""

import pytest
import pytest_asyncio
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, patch

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm.exc import StaleDataError

from database.connection import Base
from database.reconciliation_models import GLStatus, OrderStatus
from reconciliation.errors import (
    ConcurrencyConflictError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from reconciliation.services.override_service import OverrideService, RecordKind
from reconciliation.services.record_store import RecordStore
from reconciliation.services.reconciliation_service import ReconciliationService


@pytest.fixture
def overrides(session):
    return OverrideService(session)


@pytest.fixture
def seed_pair(session, make_order, make_gl):
    """One unmatched order and one unmatched GL entry that do not auto-match."""
    async def _seed():
        order = await make_order(description="月次保守")
        gl = await make_gl(description="保守料 1月")
        await session.commit()
        return order, gl
    return _seed


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """Sessions on a file database, so each one holds its own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'recon.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await engine.dispose()


class TestManualMatch:
    """Test manual pairing of orders and GL entries."""

    @pytest.mark.asyncio
    async def test_manual_match_sets_both_sides(self, overrides, seed_pair, store):
        order, gl = await seed_pair()

        result = await overrides.manual_match(order.id, gl.id, actor="user-1")

        assert result["order"]["reconciliation_status"] == "matched"
        assert result["order"]["gl_match_id"] == gl.id
        assert result["gl_entry"]["reconciliation_status"] == "matched"
        assert (await store.get_gl_entry(gl.id)).reconciliation_status == GLStatus.MATCHED

    @pytest.mark.asyncio
    async def test_manual_match_on_fuzzy_order_requires_unmatch(
        self, session, overrides, make_order, make_gl, store
    ):
        order = await make_order(accounting_item="外注費", description="ヘルプデスク費用", amount="300000")
        fuzzy_gl = await make_gl(
            transaction_date=date(2026, 1, 5), account_code="5200", account_name="外注費",
            description="ヘルプデスク代", amount="300500"
        )
        other_gl = await make_gl(voucher_no="V-0009", description="別件", amount="1")
        order_id, fuzzy_gl_id, other_gl_id = order.id, fuzzy_gl.id, other_gl.id
        await session.commit()
        await ReconciliationService(session).run("2026-01")
        assert (await store.get_order(order.id)).reconciliation_status == OrderStatus.FUZZY

        with pytest.raises(StateConflictError) as exc:
            await overrides.manual_match(order_id, other_gl_id)

        assert exc.value.current_status == "fuzzy"
        order_after = await store.get_order(order_id)
        assert order_after.reconciliation_status == OrderStatus.FUZZY
        assert order_after.gl_match_id == fuzzy_gl_id
        assert (await store.get_gl_entry(other_gl_id)).reconciliation_status == GLStatus.UNMATCHED

    @pytest.mark.asyncio
    async def test_manual_match_on_exact_matched_order_rejected(
        self, session, overrides, make_order, make_gl, store
    ):
        order = await make_order()
        matched_gl = await make_gl()
        other_gl = await make_gl(voucher_no="V-0009", description="別件", amount="1")
        order_id, matched_gl_id, other_gl_id = order.id, matched_gl.id, other_gl.id
        await session.commit()
        await ReconciliationService(session).run("2026-01")
        assert (await store.get_order(order_id)).reconciliation_status == OrderStatus.MATCHED

        with pytest.raises(StateConflictError) as exc:
            await overrides.manual_match(order_id, other_gl_id)

        assert exc.value.record_type == "order_forecast"
        assert exc.value.current_status == "matched"
        order_after = await store.get_order(order_id)
        assert order_after.gl_match_id == matched_gl_id
        assert (await store.get_gl_entry(other_gl_id)).reconciliation_status == GLStatus.UNMATCHED

    @pytest.mark.asyncio
    async def test_confirm_fuzzy_pair(self, session, overrides, make_order, make_gl, store):
        order = await make_order(accounting_item="外注費", description="ヘルプデスク費用", amount="300000")
        gl = await make_gl(
            transaction_date=date(2026, 1, 5), account_code="5200", account_name="外注費",
            description="ヘルプデスク代", amount="300500"
        )
        await session.commit()
        await ReconciliationService(session).run("2026-01")

        await overrides.unmatch(order.id, gl.id)
        await overrides.manual_match(order.id, gl.id)

        confirmed = await store.get_order(order.id)
        assert confirmed.reconciliation_status == OrderStatus.MATCHED
        assert confirmed.gl_match_id == gl.id

    @pytest.mark.asyncio
    async def test_claimed_gl_rejected(self, session, overrides, seed_pair, make_order):
        order, gl = await seed_pair()
        other = await make_order(description="別の受注")
        await session.commit()
        await overrides.manual_match(order.id, gl.id)

        with pytest.raises(StateConflictError) as exc:
            await overrides.manual_match(other.id, gl.id)

        assert exc.value.record_type == "gl_entry"
        assert exc.value.current_status == "matched"

    @pytest.mark.asyncio
    async def test_excluded_order_rejected(self, overrides, seed_pair):
        order, gl = await seed_pair()
        await overrides.set_exclusion([order.id], True)

        with pytest.raises(StateConflictError) as exc:
            await overrides.manual_match(order.id, gl.id)

        assert exc.value.current_status == "excluded"

    @pytest.mark.asyncio
    async def test_unknown_ids(self, overrides, seed_pair):
        order, _ = await seed_pair()

        with pytest.raises(NotFoundError) as exc:
            await overrides.manual_match(order.id, "missing-gl")

        assert exc.value.record_type == "gl_entry"

    @pytest.mark.asyncio
    async def test_stale_version_maps_to_concurrency_conflict(self, session, overrides, seed_pair, store):
        order, gl = await seed_pair()
        order_id, gl_id = order.id, gl.id

        with patch.object(session, "commit", AsyncMock(side_effect=StaleDataError("stale"))):
            with pytest.raises(ConcurrencyConflictError):
                await overrides.manual_match(order_id, gl_id)

        assert (await store.get_order(order_id)).reconciliation_status == OrderStatus.UNMATCHED
        assert (await store.get_gl_entry(gl_id)).reconciliation_status == GLStatus.UNMATCHED

    @pytest.mark.asyncio
    async def test_concurrent_manual_match_from_second_session(self, file_session_factory):
        async with file_session_factory() as seed:
            seed_store = RecordStore(seed)
            order = await seed_store.add_order("2026-01", "保守売上", Decimal("500000"), description="月次保守")
            gl_1 = await seed_store.add_gl_entry(
                "V-0001", date(2026, 1, 15), "4100", "保守売上", Decimal("500000"), description="保守料 1月"
            )
            gl_2 = await seed_store.add_gl_entry(
                "V-0002", date(2026, 1, 16), "4100", "保守売上", Decimal("500000"), description="保守料 1月分"
            )
            order_id, gl_1_id, gl_2_id = order.id, gl_1.id, gl_2.id
            await seed.commit()

        async with file_session_factory() as session_a, file_session_factory() as session_b:
            held = await RecordStore(session_a).get_order(order_id)
            assert held.reconciliation_status == OrderStatus.UNMATCHED

            await OverrideService(session_b).manual_match(order_id, gl_1_id)

            with pytest.raises(ConcurrencyConflictError):
                await OverrideService(session_a).manual_match(order_id, gl_2_id)

        async with file_session_factory() as check:
            check_store = RecordStore(check)
            order_after = await check_store.get_order(order_id)
            assert order_after.reconciliation_status == OrderStatus.MATCHED
            assert order_after.gl_match_id == gl_1_id
            gl_2_after = await check_store.get_gl_entry(gl_2_id)
            assert gl_2_after.reconciliation_status == GLStatus.UNMATCHED


class TestUnmatch:
    """Test dissolving order/GL pairs."""

    @pytest.mark.asyncio
    async def test_unmatch_clears_both_sides(self, overrides, seed_pair, store):
        order, gl = await seed_pair()
        await overrides.manual_match(order.id, gl.id)

        result = await overrides.unmatch(order.id, gl.id)

        assert result["order"]["reconciliation_status"] == "unmatched"
        assert result["order"]["gl_match_id"] is None
        assert (await store.get_gl_entry(gl.id)).reconciliation_status == GLStatus.UNMATCHED

    @pytest.mark.asyncio
    async def test_unmatch_requires_existing_pair(self, overrides, seed_pair):
        order, gl = await seed_pair()

        with pytest.raises(StateConflictError):
            await overrides.unmatch(order.id, gl.id)


class TestSetExclusion:
    """Test bulk exclusion and inclusion."""

    @pytest.mark.asyncio
    async def test_exclude_and_include_orders(self, overrides, seed_pair, store):
        order, _ = await seed_pair()

        excluded = await overrides.set_exclusion([order.id], True, reason="cancelled")
        assert excluded[0]["reconciliation_status"] == "excluded"
        assert excluded[0]["exclusion_reason"] == "cancelled"

        included = await overrides.set_exclusion([order.id], False, reason="ignored")
        assert included[0]["reconciliation_status"] == "unmatched"
        assert included[0]["is_excluded"] is False
        assert included[0]["exclusion_reason"] is None

    @pytest.mark.asyncio
    async def test_bulk_is_all_or_nothing_on_matched(self, session, overrides, seed_pair, make_order, store):
        order, gl = await seed_pair()
        free = await make_order(description="未消込")
        await session.commit()
        free_id, order_id = free.id, order.id
        await overrides.manual_match(order.id, gl.id)

        with pytest.raises(StateConflictError):
            await overrides.set_exclusion([free_id, order_id], True, reason="bulk")

        assert (await store.get_order(free_id)).reconciliation_status == OrderStatus.UNMATCHED
        assert (await store.get_order(order_id)).reconciliation_status == OrderStatus.MATCHED

    @pytest.mark.asyncio
    async def test_bulk_unknown_id_mutates_nothing(self, overrides, seed_pair, store):
        order, _ = await seed_pair()
        order_id = order.id

        with pytest.raises(NotFoundError):
            await overrides.set_exclusion([order_id, "missing"], True)

        assert (await store.get_order(order_id)).is_excluded is False

    @pytest.mark.asyncio
    async def test_gl_exclusion(self, overrides, seed_pair, store):
        _, gl = await seed_pair()

        await overrides.set_exclusion([gl.id], True, reason="reversal", kind=RecordKind.GL)

        entry = await store.get_gl_entry(gl.id)
        assert entry.is_excluded is True
        assert entry.exclusion_reason == "reversal"

    @pytest.mark.asyncio
    async def test_claimed_gl_cannot_be_excluded(self, overrides, seed_pair):
        order, gl = await seed_pair()
        await overrides.manual_match(order.id, gl.id)

        with pytest.raises(StateConflictError):
            await overrides.set_exclusion([gl.id], True, kind="gl")

    @pytest.mark.asyncio
    async def test_empty_ids_rejected(self, overrides):
        with pytest.raises(ValidationError):
            await overrides.set_exclusion([], True)

    @pytest.mark.asyncio
    async def test_unknown_kind_rejected(self, overrides):
        with pytest.raises(ValidationError):
            await overrides.set_exclusion(["x"], True, kind="project")
