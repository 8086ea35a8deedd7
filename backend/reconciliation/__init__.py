"""
Reconciliation Engine Module

Matches order forecast lines against general-ledger entries:
- Exact matching (period, account, description, amount)
- Fuzzy matching (date/amount tolerance, description similarity)
- Deterministic 1:1 assignment, exact before fuzzy
- Idempotent, transactional runs recorded in a run ledger
- Manual match/unmatch/exclusion overrides
"""

from reconciliation.errors import (
    ReconciliationError,
    ValidationError,
    NotFoundError,
    StateConflictError,
    ConcurrencyConflictError,
    PersistenceError
)
from reconciliation.status import MatchTier
from reconciliation.matching_rules import (
    AccountCodeTable,
    ExactMatchStrategy,
    FuzzyMatchStrategy,
    LedgerLine,
    MatchCandidate,
    OrderLine
)
from reconciliation.strategy_registry import (
    StrategyConfig,
    StrategyRegistry,
    build_default_registry
)
from reconciliation.assignment import Assignment, resolve_assignments
from reconciliation.services.reconciliation_service import (
    ReconciliationService,
    RunParameters,
    RunResult
)
from reconciliation.services.override_service import OverrideService, RecordKind
from reconciliation.services.run_ledger import RunLedger
from reconciliation.services.record_store import RecordStore
from reconciliation.endpoints.reconciliation_api import router as reconciliation_router

__all__ = [
    # Errors
    'ReconciliationError',
    'ValidationError',
    'NotFoundError',
    'StateConflictError',
    'ConcurrencyConflictError',
    'PersistenceError',
    # Matching
    'MatchTier',
    'AccountCodeTable',
    'ExactMatchStrategy',
    'FuzzyMatchStrategy',
    'LedgerLine',
    'MatchCandidate',
    'OrderLine',
    'StrategyConfig',
    'StrategyRegistry',
    'build_default_registry',
    'Assignment',
    'resolve_assignments',
    # Services
    'ReconciliationService',
    'RunParameters',
    'RunResult',
    'OverrideService',
    'RecordKind',
    'RunLedger',
    'RecordStore',
    # Router
    'reconciliation_router'
]
