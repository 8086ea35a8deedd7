"""
GL Reconciliation API - application entry point.

Run with: uvicorn server:app --app-dir backend
"""

from fastapi import FastAPI, APIRouter, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
import time
import uuid
from pathlib import Path
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# Load environment variables first
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from sqlalchemy import text

from config import get_settings, validate_environment
from logging_config import setup_logging, get_logger, set_request_context, clear_request_context
from database import init_db, engine, AsyncSessionLocal
from middleware.internal_auth import is_internal_auth_configured
from reconciliation import ReconciliationError, reconciliation_router
from reconciliation.endpoints.reconciliation_api import status_code_for
from reconciliation.services.run_ledger import RunLedger

settings = get_settings()

# JSON in production, plain text in development
setup_logging(
    level=settings.LOG_LEVEL,
    json_format=settings.is_production,
    service_name="gl-recon"
)
logger = get_logger(__name__)


async def purge_expired_runs() -> int:
    """Apply run ledger retention (RECON_RUN_RETENTION_DAYS, 0 disables)."""
    if settings.RECON_RUN_RETENTION_DAYS <= 0:
        return 0
    cutoff = datetime.now(timezone.utc) - timedelta(days=settings.RECON_RUN_RETENTION_DAYS)
    async with AsyncSessionLocal() as session:
        return await RunLedger(session).purge_before(cutoff)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting GL Reconciliation API ({settings.ENVIRONMENT}, db={engine.dialect.name})")

    env_status = validate_environment()
    for error in env_status["errors"]:
        logger.error(f"Configuration Error: {error}")
    if not env_status["valid"] and settings.is_production:
        raise RuntimeError("Cannot start in production with invalid configuration")
    for warning in env_status["warnings"]:
        logger.warning(f"Configuration Warning: {warning}")

    await init_db()

    purged = await purge_expired_runs()
    if purged:
        logger.info(f"Run ledger retention removed {purged} runs")

    yield

    logger.info("Shutting down GL Reconciliation API")
    await engine.dispose()


app = FastAPI(
    title=settings.API_TITLE,
    description="""
    Reconciliation of order forecast lines against general-ledger entries.

    ### Reconciliation (/api/reconciliation)
    - Exact and fuzzy matching per accounting period
    - Idempotent, transactional runs recorded in a run ledger
    - Manual match / unmatch / exclusion overrides
    - Per-account summaries and integrity checks
    """,
    version=settings.API_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug_enabled else None,
    redoc_url="/api/redoc" if settings.debug_enabled else None,
)

api_router = APIRouter(prefix="/api")


# ==================== HEALTH CHECK ENDPOINTS ====================

@api_router.get("/health", tags=["Health"])
async def health_check():
    """
    Readiness check.

    Returns 503 when the database is unreachable. Also reports whether
    the reconciliation endpoints can accept calls and when the last run
    was recorded.
    """
    checks = {
        "reconciliation": {
            "internal_auth_configured": is_internal_auth_configured(),
            "fuzzy_enabled": settings.RECON_FUZZY_ENABLED,
        }
    }
    healthy = True

    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
            last_run = await RunLedger(session).latest()
        checks["database"] = {"status": "connected", "type": engine.dialect.name}
        checks["reconciliation"]["last_run_at"] = (
            last_run.executed_at.isoformat() if last_run else None
        )
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        healthy = False
        checks["database"] = {"status": "disconnected", "error": str(e)}

    body = {
        "status": "healthy" if healthy else "unhealthy",
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }
    return JSONResponse(status_code=200 if healthy else 503, content=body)


@api_router.get("/health/live", tags=["Health"])
async def liveness_check():
    """Liveness probe; does not touch the database."""
    return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}


api_router.include_router(reconciliation_router)
app.include_router(api_router)


# ==================== MIDDLEWARE ====================

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Attach a request id to the logging context and time the request."""
    start_time = time.perf_counter()
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    set_request_context(request_id=request_id, user_id=request.headers.get("X-User-Id"))

    try:
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - start_time) * 1000, 2)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(elapsed_ms)

        if settings.debug_enabled or response.status_code >= 400:
            logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms}ms)")
        return response
    finally:
        clear_request_context()


# ==================== EXCEPTION HANDLERS ====================

@app.exception_handler(ReconciliationError)
async def reconciliation_error_handler(request: Request, exc: ReconciliationError):
    """Engine errors that escape an endpoint keep their structured body."""
    return JSONResponse(status_code=status_code_for(exc), content={"detail": exc.to_dict()})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")

    # Don't expose internal errors in production
    if settings.is_production:
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
    return JSONResponse(
        status_code=500,
        content={"detail": str(exc), "type": type(exc).__name__}
    )
