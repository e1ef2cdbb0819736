"""
Reconciliation domain types.

Pure frozen dataclasses for three-way trust reconciliation.  Produced by
ReconciliationEngine (imperative shell) and handed to callers unchanged.

Architecture: trust_services -- pure domain, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from trust_kernel.domain.values import Money


class ReconciliationStatus(str, Enum):
    MATCHED = "matched"
    MISMATCHED = "mismatched"


class ReconciliationScope(str, Enum):
    """A single matter sub-account, or a firm's pooled trust bank account."""

    MATTER = "matter"
    FIRM = "firm"


@dataclass(frozen=True)
class MatterPosition:
    """One matter's figures inside a firm-level reconciliation."""

    matter_id: str
    ledger_balance: Money
    subledger_balance: Money
    transaction_count: int


@dataclass(frozen=True)
class ReconciliationResult:
    """
    Outcome of comparing the trust ledger with a bank statement.

    ``ledger_balance`` is replayed from entries created at or before
    ``as_of``; ``subledger_balance`` is what the stored sub-ledger says at
    the same point (for a firm, the sum over its matters).  ``discrepancy``
    is ``ledger_balance - adjusted_bank_balance``.
    """

    scope: ReconciliationScope
    scope_id: str
    as_of: datetime
    currency: str
    ledger_balance: Money
    subledger_balance: Money
    bank_statement_balance: Money
    outstanding_checks: Money
    deposits_in_transit: Money
    adjusted_bank_balance: Money
    discrepancy: Money
    status: ReconciliationStatus
    transaction_count: int
    exceptions: tuple[str, ...] = ()
    matters: tuple[MatterPosition, ...] = ()

    @property
    def is_matched(self) -> bool:
        return self.status is ReconciliationStatus.MATCHED

    @property
    def requires_partner_review(self) -> bool:
        return self.status is ReconciliationStatus.MISMATCHED or bool(self.exceptions)

    def to_dict(self) -> dict:
        """JSON-safe form.  Amounts are decimal strings."""
        return {
            "scope": self.scope.value,
            "scope_id": self.scope_id,
            "as_of": self.as_of.isoformat(),
            "currency": self.currency,
            "ledger_balance": self.ledger_balance.to_string(),
            "subledger_balance": self.subledger_balance.to_string(),
            "bank_statement_balance": self.bank_statement_balance.to_string(),
            "outstanding_checks": self.outstanding_checks.to_string(),
            "deposits_in_transit": self.deposits_in_transit.to_string(),
            "adjusted_bank_balance": self.adjusted_bank_balance.to_string(),
            "discrepancy": self.discrepancy.to_string(),
            "status": self.status.value,
            "transaction_count": self.transaction_count,
            "exceptions": list(self.exceptions),
            "requires_partner_review": self.requires_partner_review,
        }
