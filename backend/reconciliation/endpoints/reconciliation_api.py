"""
Reconciliation API Endpoints

REST API for the reconciliation engine:
- GET /api/reconciliation/status - Module status
- GET /api/reconciliation/strategies - Registered matching strategies
- POST /api/reconciliation/execute - Run reconciliation for a period
- POST /api/reconciliation/manual-match - Pair an order with a GL entry
- POST /api/reconciliation/unmatch - Dissolve a pair
- POST /api/reconciliation/exclusion - Bulk exclude/include records
- GET /api/reconciliation/runs - Run history (filters + pagination)
- GET /api/reconciliation/runs/latest - Most recent run
- GET /api/reconciliation/runs/{run_id} - Single run
- GET /api/reconciliation/statistics - Aggregate run statistics
- GET /api/reconciliation/summary/{period} - Per-account totals
- GET /api/reconciliation/integrity/{period} - Pairing invariant check
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from database.connection import get_db
from middleware.internal_auth import InternalService, get_internal_service
from reconciliation.errors import (
    ConcurrencyConflictError,
    NotFoundError,
    PersistenceError,
    ReconciliationError,
    StateConflictError,
    ValidationError,
)
from reconciliation.services.override_service import OverrideService, RecordKind
from reconciliation.services.reconciliation_service import ReconciliationService, validate_period
from reconciliation.services.run_ledger import RunLedger
from reconciliation.status import MatchTier
from reconciliation.strategy_registry import build_default_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconciliation", tags=["Reconciliation"])


# ==================== Request/Response Models ====================

class ExecuteRequest(BaseModel):
    """Request to run reconciliation for a period."""
    period: str = Field(..., description="Accounting period (YYYY-MM)")
    fuzzy_threshold: Optional[float] = Field(default=None, description="Similarity threshold 0-100 (default 80)")
    date_tolerance_days: Optional[int] = Field(default=None, description="Date tolerance in days 0-30 (default 7)")
    amount_tolerance: Optional[Decimal] = Field(default=None, description="Amount tolerance >= 0 (default 1000)")
    fuzzy_enabled: Optional[bool] = Field(default=None, description="Run the fuzzy tier")


class PairRequest(BaseModel):
    """Request naming one order/GL pair."""
    order_id: str = Field(..., description="Order forecast ID")
    gl_id: str = Field(..., description="GL entry ID")


class ExclusionRequest(BaseModel):
    """Request to exclude or include records."""
    kind: RecordKind = Field(default=RecordKind.ORDER, description="Record kind: order or gl")
    ids: List[str] = Field(..., description="Record IDs")
    is_excluded: bool = Field(..., description="True to exclude, false to include")
    reason: Optional[str] = Field(default=None, description="Exclusion reason")


class RunResponse(BaseModel):
    """Response for a reconciliation run."""
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
    parameters: dict
    assignments: List[dict]


# ==================== Error Mapping ====================

_ERROR_STATUS = {
    ValidationError: 422,
    NotFoundError: 404,
    StateConflictError: 409,
    ConcurrencyConflictError: 409,
    PersistenceError: 500,
}


def status_code_for(error: ReconciliationError) -> int:
    for error_type, code in _ERROR_STATUS.items():
        if isinstance(error, error_type):
            return code
    return 500


def _to_http(error: ReconciliationError) -> HTTPException:
    status_code = status_code_for(error)
    if status_code >= 500:
        logger.error(f"Reconciliation request failed: {error}")
    return HTTPException(status_code=status_code, detail=error.to_dict())


# ==================== Endpoints ====================

@router.get("/status", summary="Module status")
async def get_module_status():
    """
    Get reconciliation module status.

    Returns configuration and availability information.
    """
    settings = get_settings()
    registry = build_default_registry(settings.RECON_FUZZY_ENABLED)
    return {
        "module": "reconciliation",
        "status": "operational",
        "version": settings.API_VERSION,
        "features": {
            "exact_matching": registry.is_enabled(MatchTier.EXACT),
            "fuzzy_matching": registry.is_enabled(MatchTier.FUZZY),
            "manual_override": True,
            "run_ledger": True
        },
        "defaults": {
            "fuzzy_threshold": settings.RECON_DEFAULT_FUZZY_THRESHOLD,
            "date_tolerance_days": settings.RECON_DEFAULT_DATE_TOLERANCE_DAYS,
            "amount_tolerance": str(settings.RECON_DEFAULT_AMOUNT_TOLERANCE)
        },
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/strategies", summary="List matching strategies")
async def list_strategies():
    """List registered matching strategies in the order they run."""
    registry = build_default_registry(get_settings().RECON_FUZZY_ENABLED)
    configs = registry.get_all_configs()
    return {
        "strategies": [cfg.to_dict() for cfg in configs],
        "enabled_count": len(registry.get_enabled())
    }


@router.post("/execute", response_model=RunResponse, summary="Run reconciliation")
async def execute_reconciliation(
    request: ExecuteRequest,
    db: AsyncSession = Depends(get_db),
    service: InternalService = Depends(get_internal_service)
):
    """
    Run reconciliation for one accounting period.

    Already matched, fuzzy and excluded records are left untouched, so
    the call can be repeated safely.

    Requires internal API key authentication.
    """
    reconciliation = ReconciliationService(db)
    try:
        params = reconciliation.default_parameters(
            fuzzy_threshold=request.fuzzy_threshold,
            date_tolerance_days=request.date_tolerance_days,
            amount_tolerance=request.amount_tolerance,
            fuzzy_enabled=request.fuzzy_enabled,
        )
        result = await reconciliation.run(request.period, params, actor=service.actor)
    except ReconciliationError as e:
        raise _to_http(e)
    return RunResponse(**result.to_dict())


@router.post("/manual-match", summary="Manually pair an order with a GL entry")
async def manual_match(
    request: PairRequest,
    db: AsyncSession = Depends(get_db),
    service: InternalService = Depends(get_internal_service)
):
    """Both records must be unmatched and not excluded."""
    try:
        return await OverrideService(db).manual_match(request.order_id, request.gl_id, actor=service.actor)
    except ReconciliationError as e:
        raise _to_http(e)


@router.post("/unmatch", summary="Dissolve an order/GL pair")
async def unmatch(
    request: PairRequest,
    db: AsyncSession = Depends(get_db),
    service: InternalService = Depends(get_internal_service)
):
    try:
        return await OverrideService(db).unmatch(request.order_id, request.gl_id, actor=service.actor)
    except ReconciliationError as e:
        raise _to_http(e)


@router.post("/exclusion", summary="Exclude or include records")
async def set_exclusion(
    request: ExclusionRequest,
    db: AsyncSession = Depends(get_db),
    service: InternalService = Depends(get_internal_service)
):
    """
    Bulk exclude/include. All-or-nothing: one unknown or matched id
    rejects the whole request.
    """
    try:
        records = await OverrideService(db).set_exclusion(
            request.ids,
            request.is_excluded,
            reason=request.reason,
            kind=request.kind,
            actor=service.actor
        )
    except ReconciliationError as e:
        raise _to_http(e)
    return {"kind": request.kind.value, "updated": len(records), "records": records}


@router.get("/runs", summary="List reconciliation runs")
async def list_runs(
    period: Optional[str] = Query(None, description="Exact period (YYYY-MM)"),
    period_from: Optional[str] = Query(None, description="Earliest period (YYYY-MM)"),
    period_to: Optional[str] = Query(None, description="Latest period (YYYY-MM)"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    sort_by: str = Query("executed_at", description="executed_at or period"),
    sort_order: str = Query("desc", description="asc or desc"),
    db: AsyncSession = Depends(get_db),
    _service: InternalService = Depends(get_internal_service)
):
    ledger = RunLedger(db)
    try:
        for value in (period, period_from, period_to):
            if value is not None:
                validate_period(value)
        runs = await ledger.list_runs(
            period=period,
            period_from=period_from,
            period_to=period_to,
            limit=limit,
            offset=offset,
            sort_by=sort_by,
            sort_order=sort_order
        )
        total = await ledger.count(period=period, period_from=period_from, period_to=period_to)
    except ReconciliationError as e:
        raise _to_http(e)
    return {
        "runs": [run.to_dict() for run in runs],
        "total": total,
        "limit": limit,
        "offset": offset
    }


@router.get("/runs/latest", summary="Most recent run")
async def latest_run(
    period: Optional[str] = Query(None, description="Restrict to a period (YYYY-MM)"),
    db: AsyncSession = Depends(get_db),
    _service: InternalService = Depends(get_internal_service)
):
    try:
        if period is not None:
            validate_period(period)
        run = await RunLedger(db).latest(period)
    except ReconciliationError as e:
        raise _to_http(e)
    if run is None:
        raise _to_http(NotFoundError("reconciliation_run", "latest"))
    return run.to_dict()


@router.get("/runs/{run_id}", summary="Get a single run")
async def get_run(
    run_id: str,
    db: AsyncSession = Depends(get_db),
    _service: InternalService = Depends(get_internal_service)
):
    try:
        run = await RunLedger(db).get(run_id)
    except ReconciliationError as e:
        raise _to_http(e)
    return run.to_dict()


@router.get("/statistics", summary="Aggregate run statistics")
async def get_statistics(
    db: AsyncSession = Depends(get_db),
    _service: InternalService = Depends(get_internal_service)
):
    return await RunLedger(db).statistics()


@router.get("/summary/{period}", summary="Per-account totals for a period")
async def get_account_summary(
    period: str,
    db: AsyncSession = Depends(get_db),
    _service: InternalService = Depends(get_internal_service)
):
    try:
        return await ReconciliationService(db).get_account_summary(period)
    except ReconciliationError as e:
        raise _to_http(e)


@router.get("/integrity/{period}", summary="Check pairing invariants for a period")
async def check_integrity(
    period: str,
    db: AsyncSession = Depends(get_db),
    _service: InternalService = Depends(get_internal_service)
):
    try:
        violations = await ReconciliationService(db).check_integrity(period)
    except ReconciliationError as e:
        raise _to_http(e)
    return {
        "period": period,
        "consistent": not violations,
        "violations": violations
    }
