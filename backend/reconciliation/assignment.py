"""
Assignment Resolver

Turns a candidate list (possibly many-to-many) into a conflict-free 1:1
set of assignments with a greedy single pass:

1. exact candidates first, then fuzzy by descending score
2. ties broken by ascending (order_id, gl_id)
3. a candidate is taken only if neither side is already claimed

The output depends only on the candidate set, never on input order.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set

from database.reconciliation_models import OrderStatus
from reconciliation.status import MatchTier, TIER_STATUS
from reconciliation.matching_rules.base import MatchCandidate

# Lower sorts first
_TIER_RANK = {
    MatchTier.EXACT: 0,
    MatchTier.FUZZY: 1,
}


@dataclass(frozen=True)
class Assignment:
    order_id: str
    gl_id: str
    tier: MatchTier
    score: float

    @property
    def status(self) -> OrderStatus:
        return TIER_STATUS[self.tier]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "gl_id": self.gl_id,
            "tier": self.tier.value,
            "status": self.status.value,
            "score": self.score,
        }


def _priority(candidate: MatchCandidate):
    return (
        _TIER_RANK.get(candidate.tier, len(_TIER_RANK)),
        -candidate.score,
        candidate.order_id,
        candidate.gl_id,
    )


def resolve_assignments(
    candidates: Iterable[MatchCandidate],
    already_claimed: Optional[Set[str]] = None
) -> List[Assignment]:
    """
    Resolve candidates into 1:1 assignments.

    ``already_claimed`` holds order and GL ids taken by an earlier tier;
    it is updated in place with the ids claimed here.
    """
    claimed_orders: Set[str] = set()
    claimed_gl: Set[str] = set()
    if already_claimed is None:
        already_claimed = set()

    assignments = []
    for candidate in sorted(set(candidates), key=_priority):
        if candidate.order_id in claimed_orders or candidate.gl_id in claimed_gl:
            continue
        if candidate.order_id in already_claimed or candidate.gl_id in already_claimed:
            continue
        claimed_orders.add(candidate.order_id)
        claimed_gl.add(candidate.gl_id)
        assignments.append(Assignment(
            order_id=candidate.order_id,
            gl_id=candidate.gl_id,
            tier=candidate.tier,
            score=candidate.score,
        ))

    already_claimed.update(claimed_orders)
    already_claimed.update(claimed_gl)
    return assignments
