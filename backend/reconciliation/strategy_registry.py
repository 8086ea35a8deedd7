"""
Reconciliation Strategy Registry

Central registry of the matching strategies the orchestrator runs.
Each strategy has:
- Unique identifier (its match tier)
- Display name
- Matching priority (lower runs first)
- Enabled flag

Registered strategies:
- EXACT: period + account + description + amount equality
- FUZZY: date/amount tolerance + description similarity

Fuzzy matching is optional policy; it can be disabled globally
(RECON_FUZZY_ENABLED) or per run.
"""

from typing import Dict, Any, List, Optional, Callable
from dataclasses import dataclass

from reconciliation.status import MatchTier


@dataclass
class StrategyConfig:
    """
    Configuration for a matching strategy.
    """
    tier: MatchTier
    display_name: str
    priority: int  # Lower = runs earlier
    enabled: bool
    factory: Callable[..., Any]  # Builds the strategy from run parameters

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier.value,
            "display_name": self.display_name,
            "priority": self.priority,
            "enabled": self.enabled,
        }


class StrategyRegistry:
    """
    Registry of matching strategies.

    Manages strategy configurations and hands the orchestrator the
    enabled strategies in priority order.
    """

    def __init__(self):
        self._configs: Dict[MatchTier, StrategyConfig] = {}

    def register(
        self,
        tier: MatchTier,
        factory: Callable[..., Any],
        display_name: str,
        priority: int,
        enabled: bool = True
    ):
        """Register (or replace) the strategy for a tier."""
        self._configs[tier] = StrategyConfig(
            tier=tier,
            display_name=display_name,
            priority=priority,
            enabled=enabled,
            factory=factory,
        )

    def get_config(self, tier: MatchTier) -> Optional[StrategyConfig]:
        """Get configuration for a strategy."""
        return self._configs.get(tier)

    def get_all_configs(self) -> List[StrategyConfig]:
        """Get all strategy configurations, in priority order."""
        return sorted(self._configs.values(), key=lambda cfg: (cfg.priority, cfg.tier.value))

    def get_enabled(self) -> List[StrategyConfig]:
        """Get enabled strategies in priority order."""
        return [cfg for cfg in self.get_all_configs() if cfg.enabled]

    def is_enabled(self, tier: MatchTier) -> bool:
        cfg = self._configs.get(tier)
        return cfg.enabled if cfg else False

    def set_enabled(self, tier: MatchTier, enabled: bool):
        cfg = self._configs.get(tier)
        if cfg:
            cfg.enabled = enabled

    def to_dict(self) -> Dict[str, Any]:
        """Export registry as dictionary."""
        return {
            cfg.tier.value: cfg.to_dict()
            for cfg in self.get_all_configs()
        }


def build_default_registry(fuzzy_enabled: bool = True) -> StrategyRegistry:
    """Registry with the exact tier first and the fuzzy tier second."""
    from reconciliation.matching_rules.exact import ExactMatchStrategy
    from reconciliation.matching_rules.fuzzy import FuzzyMatchStrategy

    registry = StrategyRegistry()
    registry.register(
        MatchTier.EXACT,
        factory=lambda params, code_table: ExactMatchStrategy(code_table),
        display_name="Exact match (period, account, description, amount)",
        priority=1,
    )
    registry.register(
        MatchTier.FUZZY,
        factory=lambda params, code_table: FuzzyMatchStrategy(
            fuzzy_threshold=params.fuzzy_threshold,
            date_tolerance_days=params.date_tolerance_days,
            amount_tolerance=params.amount_tolerance,
        ),
        display_name="Fuzzy match (date/amount tolerance, description similarity)",
        priority=2,
        enabled=fuzzy_enabled,
    )
    return registry
