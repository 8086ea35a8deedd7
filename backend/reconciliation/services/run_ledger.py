"""
GL Recon - Run Ledger

Append-only history of reconciliation runs. Rows are written by the
orchestrator inside the run's transaction and are only removed again by
retention cleanup.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.reconciliation_models import ReconciliationRunDB
from reconciliation.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

SORTABLE_COLUMNS = {
    "executed_at": ReconciliationRunDB.executed_at,
    "period": ReconciliationRunDB.period,
}

MAX_PAGE_SIZE = 100


class RunLedger:
    """Repository for reconciliation run records"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(self, **fields) -> ReconciliationRunDB:
        """Add a run row to the current unit of work. Does not commit."""
        run = ReconciliationRunDB(**fields)
        self.session.add(run)
        await self.session.flush()
        return run

    async def get(self, run_id: str) -> ReconciliationRunDB:
        result = await self.session.execute(
            select(ReconciliationRunDB).where(ReconciliationRunDB.id == run_id)
        )
        run = result.scalar_one_or_none()
        if not run:
            raise NotFoundError("reconciliation_run", run_id)
        return run

    def _filters(
        self,
        period: Optional[str] = None,
        period_from: Optional[str] = None,
        period_to: Optional[str] = None
    ) -> list:
        conditions = []
        if period:
            conditions.append(ReconciliationRunDB.period == period)
        if period_from:
            conditions.append(ReconciliationRunDB.period >= period_from)
        if period_to:
            conditions.append(ReconciliationRunDB.period <= period_to)
        return conditions

    async def list_runs(
        self,
        period: Optional[str] = None,
        period_from: Optional[str] = None,
        period_to: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
        sort_by: str = "executed_at",
        sort_order: str = "desc"
    ) -> List[ReconciliationRunDB]:
        """List runs, newest first by default."""
        if sort_by not in SORTABLE_COLUMNS:
            raise ValidationError("sort_by", f"sort_by must be one of {sorted(SORTABLE_COLUMNS)}", sort_by)
        if sort_order not in ("asc", "desc"):
            raise ValidationError("sort_order", "sort_order must be 'asc' or 'desc'", sort_order)
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError("limit", f"limit must be between 1 and {MAX_PAGE_SIZE}", limit)
        if offset < 0:
            raise ValidationError("offset", "offset must be >= 0", offset)

        column = SORTABLE_COLUMNS[sort_by]
        if sort_order == "desc":
            ordering = (column.desc(), ReconciliationRunDB.id.desc())
        else:
            ordering = (column.asc(), ReconciliationRunDB.id.asc())

        query = (
            select(ReconciliationRunDB)
            .where(*self._filters(period, period_from, period_to))
            .order_by(*ordering)
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count(
        self,
        period: Optional[str] = None,
        period_from: Optional[str] = None,
        period_to: Optional[str] = None
    ) -> int:
        result = await self.session.execute(
            select(func.count(ReconciliationRunDB.id))
            .where(*self._filters(period, period_from, period_to))
        )
        return result.scalar() or 0

    async def latest(self, period: Optional[str] = None) -> Optional[ReconciliationRunDB]:
        query = select(ReconciliationRunDB)
        if period:
            query = query.where(ReconciliationRunDB.period == period)
        result = await self.session.execute(
            query.order_by(ReconciliationRunDB.executed_at.desc(), ReconciliationRunDB.id.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def statistics(self) -> Dict[str, Any]:
        """
        Aggregate over all runs.

        average_match_rate = (matched + fuzzy) / (matched + fuzzy + unmatched) * 100,
        where unmatched counts orders and GL entries left unmatched.
        """
        result = await self.session.execute(
            select(
                func.count(ReconciliationRunDB.id),
                func.coalesce(func.sum(ReconciliationRunDB.newly_matched), 0),
                func.coalesce(func.sum(ReconciliationRunDB.newly_fuzzy), 0),
                func.coalesce(func.sum(ReconciliationRunDB.unmatched_order_count), 0),
                func.coalesce(func.sum(ReconciliationRunDB.unmatched_gl_count), 0),
                func.max(ReconciliationRunDB.executed_at),
            )
        )
        total_runs, matched, fuzzy, unmatched_orders, unmatched_gl, last_executed = result.one()

        total_unmatched = int(unmatched_orders) + int(unmatched_gl)
        resolved = int(matched) + int(fuzzy)
        denominator = resolved + total_unmatched
        average_match_rate = round(resolved / denominator * 100, 2) if denominator else 0.0

        return {
            "total_runs": int(total_runs),
            "total_matched": int(matched),
            "total_fuzzy_matched": int(fuzzy),
            "total_unmatched": total_unmatched,
            "average_match_rate": average_match_rate,
            "last_executed_at": last_executed.isoformat() if last_executed else None,
        }

    async def purge_before(self, cutoff: datetime) -> int:
        """Delete runs executed before ``cutoff``. Commits; returns the number deleted."""
        result = await self.session.execute(
            delete(ReconciliationRunDB).where(ReconciliationRunDB.executed_at < cutoff)
        )
        await self.session.commit()
        deleted = result.rowcount or 0
        logger.info(f"Purged {deleted} reconciliation runs executed before {cutoff.isoformat()}")
        return deleted
