"""
GL Recon - Manual Override Service

Human corrections to match state:
- manual_match: pair an unmatched order with an unmatched GL entry
- unmatch: dissolve an existing (exact, fuzzy or manual) pair
- set_exclusion: bulk exclude/include orders or GL entries

Every call is one transaction that writes both sides of a pair together.
Row versions guard against concurrent edits: a record changed since it
was read raises ConcurrencyConflictError and nothing is written.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from reconciliation.errors import (
    ConcurrencyConflictError,
    PersistenceError,
    ValidationError,
)
from reconciliation.services.record_store import RecordStore
from reconciliation.services.reconciliation_service import (
    ReconciliationAuditEvent,
    log_reconciliation_event,
)
from reconciliation.status import (
    MatchTier,
    exclude_gl,
    exclude_order,
    include_gl,
    include_order,
    link,
    unlink,
)

logger = logging.getLogger(__name__)


class RecordKind(str, Enum):
    ORDER = "order"
    GL = "gl"


class OverrideService:
    """Manual match/unmatch/exclusion gateway"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.store = RecordStore(db)

    async def _commit(self, operation: str):
        try:
            await self.db.commit()
        except StaleDataError as e:
            await self.db.rollback()
            raise ConcurrencyConflictError(
                f"{operation} conflicted with a concurrent change; reload and retry"
            ) from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"{operation} failed: {e}")
            raise PersistenceError(f"{operation} failed and was rolled back") from e

    async def manual_match(self, order_id: str, gl_id: str, actor: str = "system") -> Dict[str, Any]:
        """
        Pair an order with a GL entry.

        Both must be unmatched and not excluded. A fuzzy pair is confirmed
        by unmatching it first, then matching manually.
        """
        try:
            order = await self.store.get_order(order_id)
            gl = await self.store.get_gl_entry(gl_id)
            link(order, gl, MatchTier.MANUAL)
        except Exception:
            await self.db.rollback()
            raise
        await self._commit("manual_match")

        log_reconciliation_event(
            ReconciliationAuditEvent.MATCH_CREATED,
            order.accounting_period,
            {"order_id": order_id, "gl_id": gl_id, "tier": MatchTier.MANUAL.value},
            actor=actor
        )
        return {"order": order.to_dict(), "gl_entry": gl.to_dict()}

    async def unmatch(self, order_id: str, gl_id: str, actor: str = "system") -> Dict[str, Any]:
        """Dissolve the pair (order_id, gl_id); both sides return to unmatched."""
        try:
            order = await self.store.get_order(order_id)
            gl = await self.store.get_gl_entry(gl_id)
            previous_status = order.reconciliation_status
            unlink(order, gl)
        except Exception:
            await self.db.rollback()
            raise
        await self._commit("unmatch")

        log_reconciliation_event(
            ReconciliationAuditEvent.MATCH_REMOVED,
            order.accounting_period,
            {"order_id": order_id, "gl_id": gl_id, "previous_status": getattr(previous_status, "value", previous_status)},
            actor=actor
        )
        return {"order": order.to_dict(), "gl_entry": gl.to_dict()}

    async def set_exclusion(
        self,
        ids: Sequence[str],
        is_excluded: bool,
        reason: Optional[str] = None,
        kind: RecordKind = RecordKind.ORDER,
        actor: str = "system"
    ) -> List[Dict[str, Any]]:
        """
        Exclude or include records in bulk. All-or-nothing.

        Excluding a matched/fuzzy order or a matched GL entry is rejected.
        Including always lands in unmatched and clears the reason.
        """
        if not ids:
            raise ValidationError("ids", "at least one id is required")
        try:
            kind = RecordKind(kind)
        except ValueError:
            raise ValidationError("kind", "kind must be 'order' or 'gl'", kind)

        try:
            if kind == RecordKind.ORDER:
                records = await self.store.get_orders(ids)
                apply = (lambda r: exclude_order(r, reason)) if is_excluded else include_order
            else:
                records = await self.store.get_gl_entries(ids)
                apply = (lambda r: exclude_gl(r, reason)) if is_excluded else include_gl
            for record in records:
                apply(record)
        except Exception:
            await self.db.rollback()
            raise
        await self._commit("set_exclusion")

        periods = sorted({
            r.accounting_period if kind == RecordKind.ORDER else r.period
            for r in records
        })
        log_reconciliation_event(
            ReconciliationAuditEvent.EXCLUSION_SET if is_excluded else ReconciliationAuditEvent.EXCLUSION_CLEARED,
            periods[0] if len(periods) == 1 else None,
            {"kind": kind.value, "ids": [r.id for r in records], "reason": reason, "periods": periods},
            actor=actor
        )
        return [r.to_dict() for r in records]
