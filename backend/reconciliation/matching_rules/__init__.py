"""
Matching Rules Module
"""

from .base import (
    AccountCodeTable,
    AccountMapping,
    LedgerLine,
    MatchCandidate,
    OrderLine,
    period_start,
    to_minor_units,
)
from .exact import ExactMatchStrategy
from .fuzzy import FuzzyMatchStrategy
from .text_normalization import normalize_account, normalize_description, text_similarity

__all__ = [
    "AccountCodeTable",
    "AccountMapping",
    "LedgerLine",
    "MatchCandidate",
    "OrderLine",
    "period_start",
    "to_minor_units",
    "ExactMatchStrategy",
    "FuzzyMatchStrategy",
    "normalize_account",
    "normalize_description",
    "text_similarity",
]
