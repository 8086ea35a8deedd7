"""
Per-period run serialization.

On PostgreSQL a transaction-scoped advisory lock keyed by the period is
taken, so runs in separate processes are serialized too; it is released
when the run's transaction commits or rolls back. Other backends fall
back to a process-local asyncio.Lock per period and event loop.
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import Dict

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# asyncio.Lock binds to the loop that first contends it
_local_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[str, asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def _get_local_lock(period: str) -> asyncio.Lock:
    loop_locks = _local_locks.setdefault(asyncio.get_running_loop(), {})
    lock = loop_locks.get(period)
    if lock is None:
        lock = asyncio.Lock()
        loop_locks[period] = lock
    return lock


def _is_postgres(session: AsyncSession) -> bool:
    bind = session.get_bind()
    return bind.dialect.name == "postgresql"


@asynccontextmanager
async def period_lock(session: AsyncSession, period: str):
    """Hold the reconciliation lock for ``period`` for the enclosed block."""
    if _is_postgres(session):
        await session.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
            {"key": f"reconciliation:{period}"}
        )
        logger.debug(f"Advisory lock acquired for period {period}")
        yield
        return

    lock = _get_local_lock(period)
    async with lock:
        logger.debug(f"Local lock acquired for period {period}")
        yield
