"""
Shared types for matching strategies.

Strategies never see ORM objects: the orchestrator snapshots the pool into
immutable OrderLine/LedgerLine values so that candidate generation is a
pure function of its inputs.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, Optional, Tuple

from reconciliation.status import MatchTier
from reconciliation.matching_rules.text_normalization import normalize_account

MINOR_UNIT = Decimal("0.01")


def to_minor_units(amount) -> Decimal:
    """Quantize an amount to the currency minor unit."""
    return Decimal(str(amount)).quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def period_start(period: str) -> date:
    """First day of a YYYY-MM accounting period."""
    year, month = period.split("-")
    return date(int(year), int(month), 1)


@dataclass(frozen=True)
class OrderLine:
    id: str
    accounting_period: str
    accounting_item: str
    description: str
    amount: Decimal

    @classmethod
    def from_record(cls, record) -> "OrderLine":
        return cls(
            id=record.id,
            accounting_period=record.accounting_period,
            accounting_item=record.accounting_item or "",
            description=record.description or "",
            amount=to_minor_units(record.amount),
        )


@dataclass(frozen=True)
class LedgerLine:
    id: str
    period: str
    transaction_date: date
    account_code: str
    account_name: str
    description: str
    amount: Decimal

    @classmethod
    def from_record(cls, record) -> "LedgerLine":
        return cls(
            id=record.id,
            period=record.period,
            transaction_date=record.transaction_date,
            account_code=record.account_code or "",
            account_name=record.account_name or "",
            description=record.description or "",
            amount=to_minor_units(record.amount),
        )


@dataclass(frozen=True)
class MatchCandidate:
    """
    A potential order/GL pairing produced by a strategy.
    """
    order_id: str
    gl_id: str
    tier: MatchTier
    score: float
    scoring_breakdown: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def pair(self) -> Tuple[str, str]:
        return (self.order_id, self.gl_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "gl_id": self.gl_id,
            "tier": self.tier.value,
            "score": self.score,
            "scoring_breakdown": self.scoring_breakdown,
        }


@dataclass(frozen=True)
class AccountMapping:
    code: str
    name: str


class AccountCodeTable:
    """
    Accounting item -> GL account lookup.

    Items are looked up by normalized name first, then by code, so a
    forecast line may carry either the label or the code.
    """

    def __init__(self, mappings: Iterable[Tuple[str, str]] = ()):
        self._by_name: Dict[str, AccountMapping] = {}
        self._by_code: Dict[str, AccountMapping] = {}
        for code, name in mappings:
            mapping = AccountMapping(code=code, name=name)
            self._by_name[normalize_account(name)] = mapping
            self._by_code[normalize_account(code)] = mapping

    @classmethod
    def from_records(cls, records) -> "AccountCodeTable":
        return cls((record.code, record.name) for record in records)

    def __len__(self) -> int:
        return len(self._by_name)

    def lookup(self, item: str) -> Optional[AccountMapping]:
        key = normalize_account(item)
        if not key:
            return None
        return self._by_name.get(key) or self._by_code.get(key)

    def matches(self, item: str, account_code: str, account_name: str) -> bool:
        """True when the accounting item refers to the GL entry's account."""
        mapping = self.lookup(item)
        if mapping is not None:
            if normalize_account(mapping.code) == normalize_account(account_code):
                return True
            return normalize_account(mapping.name) == normalize_account(account_name)
        # Unmapped item: compare the label with the account name directly
        label = normalize_account(item)
        return bool(label) and label == normalize_account(account_name)
