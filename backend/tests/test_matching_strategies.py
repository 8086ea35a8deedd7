"""
Unit Tests for Matching Strategies

Tests:
- Text normalization and description similarity
- Account code table lookups
- ExactMatchStrategy candidate generation
- FuzzyMatchStrategy candidate generation
- StrategyRegistry ordering and enablement

Run with: pytest backend/tests/test_matching_strategies.py -v
"""

import pytest
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from reconciliation.matching_rules import (
    AccountCodeTable,
    ExactMatchStrategy,
    FuzzyMatchStrategy,
    normalize_account,
    normalize_description,
    period_start,
    text_similarity,
    to_minor_units,
)
from reconciliation.matching_rules.fuzzy import FUZZY_SCORE_CEILING
from reconciliation.status import MatchTier
from reconciliation.strategy_registry import StrategyRegistry, build_default_registry


class TestTextNormalization:
    """Test width/dash/case normalization."""

    def test_full_width_alphanumerics_become_half_width(self):
        assert normalize_description("ＡＢＣ１２３") == "abc123"

    def test_half_width_katakana_becomes_full_width(self):
        assert normalize_description("ﾍﾙﾌﾟﾃﾞｽｸ") == "ヘルプデスク"

    def test_dashes_removed_from_descriptions(self):
        assert normalize_description("サーバー-保守－費用") == "サバ保守費用"

    def test_account_labels_keep_dashes_and_case(self):
        assert normalize_account("Sales-A") == "Sales-A"

    def test_whitespace_collapsed_including_ideographic_space(self):
        assert normalize_description("  保守　 費用  ") == "保守 費用"

    def test_empty_input(self):
        assert normalize_description("") == ""
        assert normalize_description(None) == ""

    def test_similarity_identical_after_normalization(self):
        assert text_similarity("ＡＢＣ", "abc") == 100.0

    def test_similarity_is_symmetric(self):
        a, b = "ヘルプデスク費用", "ヘルプデスク代"
        assert text_similarity(a, b) == text_similarity(b, a)

    def test_similarity_help_desk_pair_reaches_default_threshold(self):
        assert text_similarity("ヘルプデスク費用", "ヘルプデスク代") >= 80

    def test_similarity_empty_is_zero(self):
        assert text_similarity("", "保守") == 0.0


class TestAccountCodeTable:
    """Test accounting item -> GL account mapping."""

    @pytest.fixture
    def table(self):
        return AccountCodeTable([("4100", "保守売上"), ("5200", "外注費")])

    def test_lookup_by_name(self, table):
        assert table.lookup("保守売上").code == "4100"

    def test_lookup_by_code(self, table):
        assert table.lookup("5200").name == "外注費"

    def test_lookup_unknown(self, table):
        assert table.lookup("雑費") is None
        assert table.lookup("") is None

    def test_matches_on_code(self, table):
        assert table.matches("保守売上", "4100", "別名") is True

    def test_matches_on_mapped_name(self, table):
        assert table.matches("保守売上", "9999", "保守売上") is True

    def test_mapped_item_rejects_other_account(self, table):
        assert table.matches("保守売上", "5200", "外注費") is False

    def test_unmapped_item_compares_labels(self, table):
        assert table.matches("雑費", "7000", "雑費") is True
        assert table.matches("雑費", "7000", "交際費") is False


class TestExactMatchStrategy:
    """Test exact candidate generation."""

    @pytest.fixture
    def strategy(self):
        return ExactMatchStrategy(AccountCodeTable([("4100", "保守売上")]))

    def test_scenario_exact_pair(self, strategy, lines):
        candidates = strategy.find_candidates([lines.order("A")], [lines.ledger("G1")])

        assert len(candidates) == 1
        assert candidates[0].pair == ("A", "G1")
        assert candidates[0].tier == MatchTier.EXACT
        assert candidates[0].score == 1.0

    def test_period_must_match(self, strategy, lines):
        gl = lines.ledger("G1", transaction_date=date(2026, 2, 1))
        assert strategy.find_candidates([lines.order("A")], [gl]) == []

    def test_amount_must_match_to_minor_unit(self, strategy, lines):
        gl = lines.ledger("G1", amount="500000.01")
        assert strategy.find_candidates([lines.order("A")], [gl]) == []

    def test_description_normalized_before_compare(self, strategy, lines):
        order = lines.order("A", description="ＡＢＣ保守")
        gl = lines.ledger("G1", description="abc保守")
        assert len(strategy.find_candidates([order], [gl])) == 1

    def test_empty_description_never_matches(self, strategy, lines):
        order = lines.order("A", description="")
        gl = lines.ledger("G1", description="")
        assert strategy.find_candidates([order], [gl]) == []

    def test_account_must_map(self, strategy, lines):
        gl = lines.ledger("G1", account_code="5200", account_name="外注費")
        assert strategy.find_candidates([lines.order("A")], [gl]) == []

    def test_many_to_many_candidates_sorted(self, strategy, lines):
        orders = [lines.order("B"), lines.order("A")]
        ledger = [lines.ledger("G2"), lines.ledger("G1")]

        candidates = strategy.find_candidates(orders, ledger)

        assert [c.pair for c in candidates] == [("A", "G1"), ("A", "G2"), ("B", "G1"), ("B", "G2")]


class TestFuzzyMatchStrategy:
    """Test tolerance-based candidate generation."""

    @pytest.fixture
    def strategy(self):
        return FuzzyMatchStrategy(fuzzy_threshold=80, date_tolerance_days=7, amount_tolerance=Decimal("1000"))

    @pytest.fixture
    def help_desk_order(self, lines):
        return lines.order("B", accounting_item="外注費", description="ヘルプデスク費用", amount="300000.00")

    def test_scenario_fuzzy_pair(self, strategy, lines, help_desk_order):
        gl = lines.ledger(
            "G2", transaction_date=date(2026, 1, 5), account_code="5200",
            account_name="外注費", description="ヘルプデスク代", amount="300500.00"
        )

        candidates = strategy.find_candidates([help_desk_order], [gl])

        assert len(candidates) == 1
        assert candidates[0].tier == MatchTier.FUZZY
        assert 0.8 <= candidates[0].score < 1.0
        assert candidates[0].scoring_breakdown["date_diff_days"] == 4
        assert candidates[0].scoring_breakdown["amount_diff"] == "500.00"

    def test_date_outside_tolerance(self, strategy, lines, help_desk_order):
        gl = lines.ledger("G2", transaction_date=date(2026, 1, 9), description="ヘルプデスク代", amount="300500.00")
        assert strategy.find_candidates([help_desk_order], [gl]) == []

    def test_date_tolerance_is_inclusive(self, strategy, lines, help_desk_order):
        gl = lines.ledger("G2", transaction_date=date(2026, 1, 8), description="ヘルプデスク代", amount="300500.00")

        candidates = strategy.find_candidates([help_desk_order], [gl])

        assert len(candidates) == 1
        assert candidates[0].scoring_breakdown["date_diff_days"] == 7

    def test_date_before_period_start_counts(self, strategy, lines, help_desk_order):
        gl = lines.ledger("G2", transaction_date=date(2025, 12, 28), description="ヘルプデスク代", amount="300000.00")
        assert len(strategy.find_candidates([help_desk_order], [gl])) == 1

    def test_amount_tolerance_is_inclusive(self, strategy, lines, help_desk_order):
        at_limit = lines.ledger("G2", transaction_date=date(2026, 1, 2), description="ヘルプデスク代", amount="301000.00")
        over = lines.ledger("G3", transaction_date=date(2026, 1, 2), description="ヘルプデスク代", amount="301000.01")

        candidates = strategy.find_candidates([help_desk_order], [at_limit, over])

        assert [c.gl_id for c in candidates] == ["G2"]

    def test_below_threshold_rejected(self, strategy, lines, help_desk_order):
        gl = lines.ledger("G2", transaction_date=date(2026, 1, 2), description="サーバー保守", amount="300000.00")
        assert strategy.find_candidates([help_desk_order], [gl]) == []

    def test_empty_descriptions_skipped_at_zero_threshold(self, lines):
        strategy = FuzzyMatchStrategy(fuzzy_threshold=0, date_tolerance_days=7, amount_tolerance=Decimal("1000"))
        order = lines.order("B", description="", amount="300000.00")
        gl = lines.ledger("G2", transaction_date=date(2026, 1, 2), description="　", amount="300000.00")
        described = lines.ledger("G3", transaction_date=date(2026, 1, 2), description="保守料", amount="300000.00")

        assert strategy.find_candidates([order], [gl, described]) == []
        assert strategy.find_candidates([lines.order("C", description="保守", amount="300000.00")], [gl]) == []

    def test_identical_text_scores_below_exact(self, lines):
        strategy = FuzzyMatchStrategy(fuzzy_threshold=0, date_tolerance_days=30, amount_tolerance=Decimal("0"))
        candidates = strategy.find_candidates([lines.order("A")], [lines.ledger("G1")])

        assert candidates[0].score == FUZZY_SCORE_CEILING

    def test_result_independent_of_input_order(self, strategy, lines, help_desk_order):
        ledger = [
            lines.ledger("G2", transaction_date=date(2026, 1, 3), description="ヘルプデスク代", amount="300100.00"),
            lines.ledger("G1", transaction_date=date(2026, 1, 4), description="ヘルプデスク費", amount="299900.00"),
        ]
        other = lines.order("A", description="ヘルプデスク費用", amount="300000.00")

        forward = strategy.find_candidates([help_desk_order, other], ledger)
        backward = strategy.find_candidates([other, help_desk_order], list(reversed(ledger)))

        assert forward == backward


class TestStrategyRegistry:
    """Test strategy registration and ordering."""

    def test_default_registry_runs_exact_first(self):
        registry = build_default_registry()
        assert [cfg.tier for cfg in registry.get_enabled()] == [MatchTier.EXACT, MatchTier.FUZZY]

    def test_fuzzy_can_be_disabled(self):
        registry = build_default_registry(fuzzy_enabled=False)

        assert registry.is_enabled(MatchTier.FUZZY) is False
        assert [cfg.tier for cfg in registry.get_enabled()] == [MatchTier.EXACT]

    def test_factories_build_configured_strategies(self):
        registry = build_default_registry()
        params = SimpleNamespace(fuzzy_threshold=90, date_tolerance_days=3, amount_tolerance=Decimal("10"))

        fuzzy = registry.get_config(MatchTier.FUZZY).factory(params, AccountCodeTable())

        assert isinstance(fuzzy, FuzzyMatchStrategy)
        assert fuzzy.fuzzy_threshold == 90
        assert fuzzy.date_tolerance_days == 3

    def test_priority_orders_configs(self):
        registry = StrategyRegistry()
        registry.register(MatchTier.FUZZY, factory=lambda p, t: None, display_name="fuzzy", priority=1)
        registry.register(MatchTier.EXACT, factory=lambda p, t: None, display_name="exact", priority=5)

        assert [cfg.tier for cfg in registry.get_all_configs()] == [MatchTier.FUZZY, MatchTier.EXACT]
        assert registry.to_dict()["exact"]["priority"] == 5


class TestHelpers:
    """Test period and amount helpers."""

    def test_period_start(self):
        assert period_start("2026-03") == date(2026, 3, 1)

    def test_to_minor_units(self):
        assert to_minor_units(500000) == Decimal("500000.00")
        assert to_minor_units("1.005") == Decimal("1.01")
