"""
Reconciliation status state machine.

One status enum per side with declared legal transitions. All status
writes go through the helpers below, which keep the paired fields
(gl_match_id, is_excluded, exclusion_reason, GL claimed flag) consistent
and always touch both sides of a match together.

Order:
    unmatched -> matched | fuzzy | excluded
    matched   -> unmatched
    fuzzy     -> unmatched
    excluded  -> unmatched | excluded (reason update)

GL:
    unmatched -> matched
    matched   -> unmatched
    (exclusion is a flag on an unmatched GL entry)
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional

from database.reconciliation_models import (
    OrderStatus,
    GLStatus,
    OrderForecastDB,
    GLEntryDB,
    utc_now,
)
from reconciliation.errors import StateConflictError


class MatchTier(str, Enum):
    """How a pair was established."""
    EXACT = "exact"
    FUZZY = "fuzzy"
    MANUAL = "manual"


TIER_STATUS: Dict[MatchTier, OrderStatus] = {
    MatchTier.EXACT: OrderStatus.MATCHED,
    MatchTier.FUZZY: OrderStatus.FUZZY,
    MatchTier.MANUAL: OrderStatus.MATCHED,
}

ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.UNMATCHED: frozenset({OrderStatus.MATCHED, OrderStatus.FUZZY, OrderStatus.EXCLUDED}),
    OrderStatus.MATCHED: frozenset({OrderStatus.UNMATCHED}),
    OrderStatus.FUZZY: frozenset({OrderStatus.UNMATCHED}),
    OrderStatus.EXCLUDED: frozenset({OrderStatus.UNMATCHED, OrderStatus.EXCLUDED}),
}

GL_TRANSITIONS: Dict[GLStatus, FrozenSet[GLStatus]] = {
    GLStatus.UNMATCHED: frozenset({GLStatus.MATCHED}),
    GLStatus.MATCHED: frozenset({GLStatus.UNMATCHED}),
}

# Statuses that hold a GL edge
PAIRED_ORDER_STATUSES: FrozenSet[OrderStatus] = frozenset({OrderStatus.MATCHED, OrderStatus.FUZZY})


def can_transition_order(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS.get(OrderStatus(current), frozenset())


def can_transition_gl(current: GLStatus, target: GLStatus) -> bool:
    return target in GL_TRANSITIONS.get(GLStatus(current), frozenset())


def _order_conflict(order: OrderForecastDB, message: str) -> StateConflictError:
    return StateConflictError(
        record_type="order_forecast",
        record_id=order.id,
        current_status=OrderStatus(order.reconciliation_status).value,
        message=message,
    )


def _gl_conflict(gl: GLEntryDB, message: str) -> StateConflictError:
    current = GLStatus(gl.reconciliation_status).value
    if gl.is_excluded:
        current = "excluded"
    return StateConflictError(
        record_type="gl_entry",
        record_id=gl.id,
        current_status=current,
        message=message,
    )


def ensure_order_transition(order: OrderForecastDB, target: OrderStatus, hint: Optional[str] = None):
    """Raise StateConflictError unless order may move to ``target``."""
    current = OrderStatus(order.reconciliation_status)
    if not can_transition_order(current, target):
        message = f"Order {order.id} cannot move from {current.value} to {target.value}"
        if hint:
            message = f"{message}: {hint}"
        raise _order_conflict(order, message)


def ensure_gl_claimable(gl: GLEntryDB):
    if gl.is_excluded:
        raise _gl_conflict(gl, f"GL entry {gl.id} is excluded: include it first")
    if not can_transition_gl(gl.reconciliation_status, GLStatus.MATCHED):
        raise _gl_conflict(gl, f"GL entry {gl.id} is already matched: unmatch it first")


def link(order: OrderForecastDB, gl: GLEntryDB, tier: MatchTier):
    """
    Pair an order with a GL entry.

    Both sides are checked before either is written.
    """
    target = TIER_STATUS[tier]
    if order.is_excluded:
        raise _order_conflict(order, f"Order {order.id} is excluded: include it first")
    ensure_order_transition(order, target, hint="unmatch first")
    ensure_gl_claimable(gl)

    now = utc_now()
    order.reconciliation_status = target
    order.gl_match_id = gl.id
    order.updated_at = now
    gl.reconciliation_status = GLStatus.MATCHED
    gl.updated_at = now


def unlink(order: OrderForecastDB, gl: GLEntryDB):
    """Dissolve an existing pair, returning both sides to unmatched."""
    if order.gl_match_id != gl.id:
        raise _order_conflict(order, f"Order {order.id} is not matched to GL entry {gl.id}")
    ensure_order_transition(order, OrderStatus.UNMATCHED)
    if not can_transition_gl(gl.reconciliation_status, GLStatus.UNMATCHED):
        raise _gl_conflict(gl, f"GL entry {gl.id} is not matched")

    now = utc_now()
    order.reconciliation_status = OrderStatus.UNMATCHED
    order.gl_match_id = None
    order.updated_at = now
    gl.reconciliation_status = GLStatus.UNMATCHED
    gl.updated_at = now


def exclude_order(order: OrderForecastDB, reason: Optional[str] = None):
    ensure_order_transition(order, OrderStatus.EXCLUDED, hint="unmatch first")
    order.reconciliation_status = OrderStatus.EXCLUDED
    order.gl_match_id = None
    order.is_excluded = True
    order.exclusion_reason = reason
    order.updated_at = utc_now()


def include_order(order: OrderForecastDB):
    """Clear exclusion. Always lands in unmatched."""
    if OrderStatus(order.reconciliation_status) in PAIRED_ORDER_STATUSES:
        raise _order_conflict(order, f"Order {order.id} is matched: unmatch it first")
    order.reconciliation_status = OrderStatus.UNMATCHED
    order.gl_match_id = None
    order.is_excluded = False
    order.exclusion_reason = None
    order.updated_at = utc_now()


def exclude_gl(gl: GLEntryDB, reason: Optional[str] = None):
    if GLStatus(gl.reconciliation_status) == GLStatus.MATCHED:
        raise _gl_conflict(gl, f"GL entry {gl.id} is matched: unmatch it first")
    gl.is_excluded = True
    gl.exclusion_reason = reason
    gl.updated_at = utc_now()


def include_gl(gl: GLEntryDB):
    if GLStatus(gl.reconciliation_status) == GLStatus.MATCHED:
        raise _gl_conflict(gl, f"GL entry {gl.id} is matched: unmatch it first")
    gl.reconciliation_status = GLStatus.UNMATCHED
    gl.is_excluded = False
    gl.exclusion_reason = None
    gl.updated_at = utc_now()
