"""
Fuzzy Matching Rules

A pair qualifies when all of:
- |GL transaction date - first day of the order's period| <= date_tolerance_days
- |GL amount - order amount| <= amount_tolerance
- both normalized descriptions are non-empty
- description similarity >= fuzzy_threshold (0-100)

Score is the similarity scaled to 0-1 and kept strictly below the exact
score, so a fuzzy candidate can never outrank an exact one.
"""

from bisect import bisect_left, bisect_right
from decimal import Decimal
from typing import List, Sequence

from reconciliation.status import MatchTier
from reconciliation.matching_rules.base import (
    LedgerLine,
    MatchCandidate,
    OrderLine,
    period_start,
)
from reconciliation.matching_rules.text_normalization import normalize_description, text_similarity

FUZZY_SCORE_CEILING = 0.9999


class FuzzyMatchStrategy:
    """
    Tolerance-based candidate generation.

    GL lines are sorted by amount so each order only scores the lines
    inside its amount window.
    """

    tier = MatchTier.FUZZY

    def __init__(
        self,
        fuzzy_threshold: float = 80.0,
        date_tolerance_days: int = 7,
        amount_tolerance: Decimal = Decimal("1000")
    ):
        self.fuzzy_threshold = fuzzy_threshold
        self.date_tolerance_days = date_tolerance_days
        self.amount_tolerance = Decimal(str(amount_tolerance))

    def find_candidates(
        self,
        orders: Sequence[OrderLine],
        ledger: Sequence[LedgerLine]
    ) -> List[MatchCandidate]:
        # lines without a description never pair
        by_amount = sorted(
            (gl for gl in ledger if normalize_description(gl.description)),
            key=lambda gl: (gl.amount, gl.id)
        )
        amounts = [gl.amount for gl in by_amount]

        candidates = []
        for order in orders:
            if not normalize_description(order.description):
                continue
            start = period_start(order.accounting_period)
            lo = bisect_left(amounts, order.amount - self.amount_tolerance)
            hi = bisect_right(amounts, order.amount + self.amount_tolerance)

            for gl in by_amount[lo:hi]:
                date_diff = abs((gl.transaction_date - start).days)
                if date_diff > self.date_tolerance_days:
                    continue

                similarity = text_similarity(order.description, gl.description)
                if similarity < self.fuzzy_threshold:
                    continue

                candidates.append(MatchCandidate(
                    order_id=order.id,
                    gl_id=gl.id,
                    tier=self.tier,
                    score=min(similarity / 100.0, FUZZY_SCORE_CEILING),
                    scoring_breakdown={
                        "similarity": round(similarity, 2),
                        "date_diff_days": date_diff,
                        "amount_diff": str(abs(gl.amount - order.amount)),
                    },
                ))

        candidates.sort(key=lambda c: c.pair)
        return candidates
