"""
GL Recon - Reconciliation Service

Orchestrates a reconciliation run for one accounting period:
- Validates the period and run parameters
- Serializes runs per period
- Runs the enabled matching strategies in priority order
- Resolves candidates into 1:1 assignments and applies them
- Records the run in the ledger
- Commits once; any failure rolls the whole run back

Records already matched, fuzzy or excluded are counted, never touched.
Re-running a period is therefore a no-op for resolved records.
"""

import math
import re
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Dict, Any, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from config import Settings, get_settings
from database.reconciliation_models import GLStatus, OrderStatus
from reconciliation.assignment import Assignment, resolve_assignments
from reconciliation.errors import (
    ConcurrencyConflictError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from reconciliation.locking import period_lock
from reconciliation.matching_rules.base import LedgerLine, OrderLine, to_minor_units
from reconciliation.services.record_store import RecordStore
from reconciliation.services.run_ledger import RunLedger
from reconciliation.status import MatchTier, PAIRED_ORDER_STATUSES, link
from reconciliation.strategy_registry import StrategyRegistry, build_default_registry

logger = logging.getLogger(__name__)

PERIOD_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

MAX_DATE_TOLERANCE_DAYS = 30


def validate_period(period: Any) -> str:
    if not isinstance(period, str) or not PERIOD_PATTERN.match(period):
        raise ValidationError("period", "period must be in YYYY-MM format", period)
    return period


@dataclass
class RunParameters:
    """Tunable parameters of a reconciliation run."""
    fuzzy_threshold: float = 80.0
    date_tolerance_days: int = 7
    amount_tolerance: Decimal = Decimal("1000")
    fuzzy_enabled: bool = True

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides) -> "RunParameters":
        """Defaults from configuration, with explicit (non-None) overrides applied."""
        settings = settings or get_settings()
        values = {
            "fuzzy_threshold": settings.RECON_DEFAULT_FUZZY_THRESHOLD,
            "date_tolerance_days": settings.RECON_DEFAULT_DATE_TOLERANCE_DAYS,
            "amount_tolerance": settings.RECON_DEFAULT_AMOUNT_TOLERANCE,
            "fuzzy_enabled": settings.RECON_FUZZY_ENABLED,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)

    def validated(self) -> "RunParameters":
        """Return a normalized copy or raise ValidationError."""
        threshold = self.fuzzy_threshold
        if (
            isinstance(threshold, bool)
            or not isinstance(threshold, (int, float))
            or not math.isfinite(threshold)
            or not 0 <= threshold <= 100
        ):
            raise ValidationError(
                "fuzzy_threshold", "fuzzy_threshold must be a number between 0 and 100", threshold
            )

        tolerance_days = self.date_tolerance_days
        if (
            isinstance(tolerance_days, bool)
            or not isinstance(tolerance_days, int)
            or not 0 <= tolerance_days <= MAX_DATE_TOLERANCE_DAYS
        ):
            raise ValidationError(
                "date_tolerance_days",
                f"date_tolerance_days must be an integer between 0 and {MAX_DATE_TOLERANCE_DAYS}",
                tolerance_days,
            )

        try:
            amount_tolerance = Decimal(str(self.amount_tolerance))
        except (InvalidOperation, ValueError):
            raise ValidationError("amount_tolerance", "amount_tolerance must be a number", self.amount_tolerance)
        if not amount_tolerance.is_finite() or amount_tolerance < 0:
            raise ValidationError("amount_tolerance", "amount_tolerance must be >= 0", self.amount_tolerance)

        return RunParameters(
            fuzzy_threshold=float(threshold),
            date_tolerance_days=tolerance_days,
            amount_tolerance=to_minor_units(amount_tolerance),
            fuzzy_enabled=bool(self.fuzzy_enabled),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fuzzy_threshold": self.fuzzy_threshold,
            "date_tolerance_days": self.date_tolerance_days,
            "amount_tolerance": str(self.amount_tolerance),
            "fuzzy_enabled": self.fuzzy_enabled,
        }


@dataclass
class RunResult:
    """Result of a reconciliation run."""
    run_id: str
    period: str
    newly_matched: int
    newly_fuzzy: int
    already_matched_orders: int
    already_matched_gl: int
    unmatched_order_count: int
    unmatched_gl_count: int
    excluded_order_count: int
    excluded_gl_count: int
    total_order_count: int
    total_gl_count: int
    parameters: RunParameters
    assignments: List[Assignment] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "period": self.period,
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
            "parameters": self.parameters.to_dict(),
            "assignments": [a.to_dict() for a in self.assignments],
        }


class ReconciliationAuditEvent:
    """Audit event types for reconciliation operations."""
    RUN_STARTED = "reconciliation.run_started"
    RUN_COMPLETED = "reconciliation.run_completed"
    RUN_FAILED = "reconciliation.run_failed"
    MATCH_CREATED = "reconciliation.match_created"
    MATCH_REMOVED = "reconciliation.match_removed"
    EXCLUSION_SET = "reconciliation.exclusion_set"
    EXCLUSION_CLEARED = "reconciliation.exclusion_cleared"


def log_reconciliation_event(
    event_type: str,
    period: Optional[str],
    details: Dict[str, Any],
    actor: str = "system"
):
    """Log reconciliation event for audit trail."""
    log_entry = {
        "event": event_type,
        "period": period,
        "details": details,
        "actor": actor,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    logger.info(f"Reconciliation event: {event_type}", extra=log_entry)


def _money(amount) -> str:
    return str(to_minor_units(amount))


class ReconciliationService:
    """
    Runs reconciliation for one period at a time.

    Each call to ``run`` is a single transaction on the injected session.
    """

    def __init__(
        self,
        db: AsyncSession,
        registry: Optional[StrategyRegistry] = None,
        settings: Optional[Settings] = None
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.registry = registry or build_default_registry(self.settings.RECON_FUZZY_ENABLED)
        self.store = RecordStore(db)
        self.ledger = RunLedger(db)

    def default_parameters(self, **overrides) -> RunParameters:
        return RunParameters.from_settings(self.settings, **overrides)

    async def run(
        self,
        period: str,
        params: Optional[RunParameters] = None,
        actor: str = "system"
    ) -> RunResult:
        """
        Reconcile one accounting period.

        Raises:
            ValidationError: malformed period or parameter (nothing read)
            ConcurrencyConflictError: a record changed underneath the run
            PersistenceError: the transaction failed; nothing was written
        """
        validate_period(period)
        params = (params or self.default_parameters()).validated()

        log_reconciliation_event(
            ReconciliationAuditEvent.RUN_STARTED,
            period,
            params.to_dict(),
            actor=actor
        )

        try:
            async with period_lock(self.db, period):
                result = await self._run_locked(period, params, actor)
                await self.db.commit()
        except StaleDataError as e:
            await self.db.rollback()
            self._log_failure(period, actor, e)
            raise ConcurrencyConflictError(
                f"Records in period {period} were modified during the run; retry"
            ) from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            self._log_failure(period, actor, e)
            raise PersistenceError(f"Reconciliation run for {period} failed and was rolled back") from e
        except Exception as e:
            await self.db.rollback()
            self._log_failure(period, actor, e)
            raise

        log_reconciliation_event(
            ReconciliationAuditEvent.RUN_COMPLETED,
            period,
            {
                "run_id": result.run_id,
                "newly_matched": result.newly_matched,
                "newly_fuzzy": result.newly_fuzzy,
                "already_matched_orders": result.already_matched_orders,
                "already_matched_gl": result.already_matched_gl,
            },
            actor=actor
        )
        return result

    def _log_failure(self, period: str, actor: str, error: Exception):
        logger.error(f"Reconciliation run for {period} failed: {error}")
        log_reconciliation_event(
            ReconciliationAuditEvent.RUN_FAILED,
            period,
            {"error": type(error).__name__},
            actor=actor
        )

    async def _run_locked(self, period: str, params: RunParameters, actor: str) -> RunResult:
        orders = await self.store.find_orders(period)
        gl_entries = await self.store.find_gl_entries(period)
        code_table = await self.store.load_account_code_table()

        already_matched_orders = sum(
            1 for o in orders if OrderStatus(o.reconciliation_status) in PAIRED_ORDER_STATUSES
        )
        already_matched_gl = sum(
            1 for g in gl_entries if GLStatus(g.reconciliation_status) == GLStatus.MATCHED
        )
        excluded_order_count = sum(1 for o in orders if o.is_excluded)
        excluded_gl_count = sum(1 for g in gl_entries if g.is_excluded)

        open_orders = {
            o.id: o for o in orders
            if OrderStatus(o.reconciliation_status) == OrderStatus.UNMATCHED and not o.is_excluded
        }
        open_gl = {
            g.id: g for g in gl_entries
            if GLStatus(g.reconciliation_status) == GLStatus.UNMATCHED and not g.is_excluded
        }
        order_lines = [OrderLine.from_record(o) for o in open_orders.values()]
        ledger_lines = [LedgerLine.from_record(g) for g in open_gl.values()]

        claimed = set()
        assignments: List[Assignment] = []
        for config in self.registry.get_enabled():
            if config.tier == MatchTier.FUZZY and not params.fuzzy_enabled:
                continue
            strategy = config.factory(params, code_table)
            candidates = strategy.find_candidates(
                [line for line in order_lines if line.id not in claimed],
                [line for line in ledger_lines if line.id not in claimed],
            )
            tier_assignments = resolve_assignments(candidates, claimed)
            for assignment in tier_assignments:
                link(open_orders[assignment.order_id], open_gl[assignment.gl_id], assignment.tier)
            logger.debug(
                f"{config.tier.value}: {len(candidates)} candidates, {len(tier_assignments)} assigned"
            )
            assignments.extend(tier_assignments)

        await self.db.flush()

        newly_matched = sum(1 for a in assignments if a.tier == MatchTier.EXACT)
        newly_fuzzy = sum(1 for a in assignments if a.tier == MatchTier.FUZZY)

        run = await self.ledger.record(
            period=period,
            executed_by=actor,
            fuzzy_enabled=params.fuzzy_enabled and self.registry.is_enabled(MatchTier.FUZZY),
            fuzzy_threshold=params.fuzzy_threshold,
            date_tolerance_days=params.date_tolerance_days,
            amount_tolerance=params.amount_tolerance,
            newly_matched=newly_matched,
            newly_fuzzy=newly_fuzzy,
            already_matched_orders=already_matched_orders,
            already_matched_gl=already_matched_gl,
            unmatched_order_count=len(open_orders) - len(assignments),
            unmatched_gl_count=len(open_gl) - len(assignments),
            excluded_order_count=excluded_order_count,
            excluded_gl_count=excluded_gl_count,
            total_order_count=len(orders),
            total_gl_count=len(gl_entries),
        )

        return RunResult(
            run_id=run.id,
            period=period,
            newly_matched=newly_matched,
            newly_fuzzy=newly_fuzzy,
            already_matched_orders=already_matched_orders,
            already_matched_gl=already_matched_gl,
            unmatched_order_count=run.unmatched_order_count,
            unmatched_gl_count=run.unmatched_gl_count,
            excluded_order_count=excluded_order_count,
            excluded_gl_count=excluded_gl_count,
            total_order_count=len(orders),
            total_gl_count=len(gl_entries),
            parameters=params,
            assignments=assignments,
        )

    # ==================== READ MODELS ====================

    async def get_account_summary(self, period: str) -> Dict[str, Any]:
        """
        Per-account totals for one period.

        Forecast lines are grouped by the account code their accounting
        item maps to (the raw item label when unmapped). Excluded records
        are skipped.
        """
        validate_period(period)
        orders = [o for o in await self.store.find_orders(period) if not o.is_excluded]
        gl_entries = [g for g in await self.store.find_gl_entries(period) if not g.is_excluded]
        code_table = await self.store.load_account_code_table()

        gl_summary: Dict[str, Dict[str, Any]] = {}
        for gl in gl_entries:
            row = gl_summary.setdefault(gl.account_code, {
                "account_code": gl.account_code,
                "account_name": gl.account_name,
                "amount": Decimal("0"),
                "count": 0,
            })
            row["amount"] += Decimal(str(gl.amount))
            row["count"] += 1

        order_summary: Dict[str, Dict[str, Any]] = {}
        for order in orders:
            mapping = code_table.lookup(order.accounting_item)
            code = mapping.code if mapping else order.accounting_item
            row = order_summary.setdefault(code, {
                "account_code": code,
                "accounting_item": mapping.name if mapping else order.accounting_item,
                "amount": Decimal("0"),
                "count": 0,
            })
            row["amount"] += Decimal(str(order.amount))
            row["count"] += 1

        differences = []
        for code in sorted(set(gl_summary) | set(order_summary)):
            gl_amount = gl_summary[code]["amount"] if code in gl_summary else Decimal("0")
            order_amount = order_summary[code]["amount"] if code in order_summary else Decimal("0")
            name = (
                gl_summary[code]["account_name"] if code in gl_summary
                else order_summary[code]["accounting_item"]
            )
            differences.append({
                "account_code": code,
                "account_name": name,
                "gl_amount": _money(gl_amount),
                "order_amount": _money(order_amount),
                "difference": _money(gl_amount - order_amount),
            })

        matched_amount = sum(
            (Decimal(str(g.amount)) for g in gl_entries
             if GLStatus(g.reconciliation_status) == GLStatus.MATCHED),
            Decimal("0")
        )
        total_gl_amount = sum((row["amount"] for row in gl_summary.values()), Decimal("0"))
        total_order_amount = sum((row["amount"] for row in order_summary.values()), Decimal("0"))

        def _rows(summary):
            return [
                {**row, "amount": _money(row["amount"])}
                for _, row in sorted(summary.items())
            ]

        return {
            "period": period,
            "gl_summary": _rows(gl_summary),
            "order_summary": _rows(order_summary),
            "differences": differences,
            "matched_amount": _money(matched_amount),
            "total_gl_amount": _money(total_gl_amount),
            "total_order_amount": _money(total_order_amount),
        }

    async def check_integrity(self, period: str) -> List[Dict[str, Any]]:
        """
        Report pairing invariant violations for a period.

        Returns an empty list when every order/GL pair is consistent.
        """
        validate_period(period)
        orders = await self.store.find_orders(period)
        gl_entries = await self.store.find_gl_entries(period)

        violations: List[Dict[str, Any]] = []

        def _violation(record_type: str, record_id: str, issue: str):
            violations.append({"record_type": record_type, "record_id": record_id, "issue": issue})

        referenced_ids = sorted({o.gl_match_id for o in orders if o.gl_match_id})
        referenced = {}
        if referenced_ids:
            # Edges may cross periods, so fetch targets by id
            found = {g.id: g for g in gl_entries}
            missing = [gl_id for gl_id in referenced_ids if gl_id not in found]
            for gl_id in missing:
                try:
                    found[gl_id] = await self.store.get_gl_entry(gl_id)
                except NotFoundError:
                    continue
            referenced = found

        for order in orders:
            status = OrderStatus(order.reconciliation_status)
            if status in PAIRED_ORDER_STATUSES:
                if not order.gl_match_id:
                    _violation("order_forecast", order.id, f"status {status.value} without gl_match_id")
                    continue
                gl = referenced.get(order.gl_match_id)
                if gl is None:
                    _violation("order_forecast", order.id, f"gl_match_id {order.gl_match_id} does not exist")
                elif GLStatus(gl.reconciliation_status) != GLStatus.MATCHED:
                    _violation("order_forecast", order.id, f"paired GL entry {gl.id} is not matched")
            elif order.gl_match_id:
                _violation("order_forecast", order.id, f"status {status.value} with gl_match_id set")

            if order.is_excluded != (status == OrderStatus.EXCLUDED):
                _violation("order_forecast", order.id, "is_excluded disagrees with status")

        edges = defaultdict(list)
        for order in await self.store.find_orders_matched_to([g.id for g in gl_entries]):
            edges[order.gl_match_id].append(order.id)

        for gl in gl_entries:
            claimed = GLStatus(gl.reconciliation_status) == GLStatus.MATCHED
            holders = edges.get(gl.id, [])
            if claimed and not holders:
                _violation("gl_entry", gl.id, "matched without a referencing order")
            if not claimed and holders:
                _violation("gl_entry", gl.id, f"unmatched but referenced by {holders}")
            if len(holders) > 1:
                _violation("gl_entry", gl.id, f"referenced by multiple orders {holders}")
            if claimed and gl.is_excluded:
                _violation("gl_entry", gl.id, "excluded while matched")

        if violations:
            logger.warning(f"Integrity check for {period} found {len(violations)} violations")
        return violations
