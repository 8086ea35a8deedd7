"""
Exact Matching Rules

A forecast line and a GL line are the same transaction when all of:
- accounting period == GL period (derived from the transaction date)
- accounting item maps to the GL account (code table)
- normalized descriptions are equal and non-empty
- amounts are equal to the minor unit

Score is always 1.0.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Dict, List, Sequence, Tuple

from reconciliation.status import MatchTier
from reconciliation.matching_rules.base import (
    AccountCodeTable,
    LedgerLine,
    MatchCandidate,
    OrderLine,
)
from reconciliation.matching_rules.text_normalization import normalize_description

EXACT_SCORE = 1.0


class ExactMatchStrategy:
    """
    Equality-based candidate generation.

    GL lines are bucketed by (period, amount, description) so each order
    only inspects lines that already agree on the cheap keys; the account
    check runs on that bucket.
    """

    tier = MatchTier.EXACT

    def __init__(self, code_table: AccountCodeTable):
        self.code_table = code_table

    def find_candidates(
        self,
        orders: Sequence[OrderLine],
        ledger: Sequence[LedgerLine]
    ) -> List[MatchCandidate]:
        buckets: Dict[Tuple[str, Decimal, str], List[LedgerLine]] = defaultdict(list)
        for gl in ledger:
            description = normalize_description(gl.description)
            if not description:
                continue
            buckets[(gl.period, gl.amount, description)].append(gl)

        candidates = []
        for order in orders:
            description = normalize_description(order.description)
            if not description:
                continue
            for gl in buckets.get((order.accounting_period, order.amount, description), ()):
                if not self.code_table.matches(order.accounting_item, gl.account_code, gl.account_name):
                    continue
                candidates.append(MatchCandidate(
                    order_id=order.id,
                    gl_id=gl.id,
                    tier=self.tier,
                    score=EXACT_SCORE,
                    scoring_breakdown={
                        "period": True,
                        "account": True,
                        "description": True,
                        "amount": str(order.amount),
                    },
                ))

        candidates.sort(key=lambda c: c.pair)
        return candidates
