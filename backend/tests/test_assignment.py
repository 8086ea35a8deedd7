"""
Unit Tests for the Assignment Resolver

Run with: pytest backend/tests/test_assignment.py -v
"""

import random

from reconciliation.assignment import resolve_assignments
from reconciliation.matching_rules.base import MatchCandidate
from reconciliation.status import MatchTier
from database.reconciliation_models import OrderStatus


def exact(order_id, gl_id):
    return MatchCandidate(order_id=order_id, gl_id=gl_id, tier=MatchTier.EXACT, score=1.0)


def fuzzy(order_id, gl_id, score):
    return MatchCandidate(order_id=order_id, gl_id=gl_id, tier=MatchTier.FUZZY, score=score)


class TestResolveAssignments:
    """Test resolving candidates into one-to-one assignments."""

    def test_single_candidate(self):
        assignments = resolve_assignments([exact("o1", "g1")])

        assert len(assignments) == 1
        assert assignments[0].status == OrderStatus.MATCHED

    def test_empty(self):
        assert resolve_assignments([]) == []

    def test_each_side_claimed_once(self):
        candidates = [exact("o1", "g1"), exact("o1", "g2"), exact("o2", "g1"), exact("o2", "g2")]

        assignments = resolve_assignments(candidates)

        assert [(a.order_id, a.gl_id) for a in assignments] == [("o1", "g1"), ("o2", "g2")]
        assert len({a.order_id for a in assignments}) == len(assignments)
        assert len({a.gl_id for a in assignments}) == len(assignments)

    def test_exact_beats_higher_fuzzy(self):
        candidates = [fuzzy("o1", "g1", 0.99), exact("o2", "g1")]

        assignments = resolve_assignments(candidates)

        assert [(a.order_id, a.gl_id, a.tier) for a in assignments] == [("o2", "g1", MatchTier.EXACT)]

    def test_fuzzy_by_descending_score(self):
        candidates = [fuzzy("o1", "g1", 0.81), fuzzy("o2", "g1", 0.95)]

        assignments = resolve_assignments(candidates)

        assert [(a.order_id, a.gl_id) for a in assignments] == [("o2", "g1")]
        assert assignments[0].status == OrderStatus.FUZZY

    def test_ties_broken_by_ids(self):
        candidates = [fuzzy("o2", "g1", 0.9), fuzzy("o1", "g2", 0.9), fuzzy("o1", "g1", 0.9)]

        assignments = resolve_assignments(candidates)

        # (o1, g1) wins; the other two each collide with it
        assert [(a.order_id, a.gl_id) for a in assignments] == [("o1", "g1")]

    def test_greedy_skips_when_either_side_taken(self):
        candidates = [exact("o1", "g1"), fuzzy("o1", "g2", 0.9), fuzzy("o2", "g2", 0.85)]

        assignments = resolve_assignments(candidates)

        assert [(a.order_id, a.gl_id) for a in assignments] == [("o1", "g1"), ("o2", "g2")]

    def test_already_claimed_carries_between_tiers(self):
        claimed = set()
        resolve_assignments([exact("o1", "g1")], claimed)

        second = resolve_assignments([fuzzy("o1", "g2", 0.9), fuzzy("o2", "g1", 0.9), fuzzy("o2", "g2", 0.8)], claimed)

        assert [(a.order_id, a.gl_id) for a in second] == [("o2", "g2")]
        assert claimed == {"o1", "g1", "o2", "g2"}

    def test_input_order_does_not_matter(self):
        candidates = [
            exact("o3", "g3"),
            fuzzy("o1", "g1", 0.9),
            fuzzy("o1", "g2", 0.9),
            fuzzy("o2", "g1", 0.92),
            fuzzy("o2", "g3", 0.95),
        ]
        expected = resolve_assignments(candidates)

        rng = random.Random(7)
        for _ in range(10):
            shuffled = list(candidates)
            rng.shuffle(shuffled)
            assert resolve_assignments(shuffled) == expected
