"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that cross the ledger API and the
    persistence boundary: TrustAccountSnapshot, TrustTransactionDraft (what
    the ledger asks the store to append), TrustTransaction (what the store
    returns), history query/page types and the integrity report.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods exist as boundary converters but are only
    invoked from the store (never from domain logic).

Invariants enforced:
    - Money value objects for all monetary fields (never raw Decimal).
    - Callers receive frozen DTOs, never ORM rows, so no caller can mutate
      a persisted ledger entry through the object it was handed.

Data flow:
    TrustTransactionDraft -> (store) -> TrustTransaction
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from trust_kernel.domain.transaction_types import TransactionType
from trust_kernel.domain.values import Money

if TYPE_CHECKING:
    from trust_kernel.models.trust_account import TrustAccountModel
    from trust_kernel.models.trust_transaction import TrustTransactionModel


@dataclass(frozen=True)
class TrustAccountSnapshot:
    """Point-in-time view of a matter's trust account row."""

    matter_id: str
    currency: str
    current_balance: Money
    version: int
    last_sequence: int
    firm_account_id: str
    client_id: str | None
    created_at: datetime
    updated_at: datetime | None

    @classmethod
    def from_model(cls, model: TrustAccountModel) -> TrustAccountSnapshot:
        # NUMERIC(38, 9) loads with nine places; round() restores the currency exponent.
        return cls(
            matter_id=model.matter_id,
            currency=model.currency,
            current_balance=Money.of(model.current_balance, model.currency).round(),
            version=model.version,
            last_sequence=model.last_sequence,
            firm_account_id=model.firm_account_id,
            client_id=model.client_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


@dataclass(frozen=True)
class TrustTransactionDraft:
    """
    A fully-computed ledger entry the store is asked to append.

    The ledger has already validated the request, computed ``sequence`` and
    ``balance_after`` from the account it read at ``expected_version``.
    """

    matter_id: str
    transaction_type: TransactionType
    amount: Money
    description: str
    reference: str | None
    created_at: datetime
    created_by: str
    actor_role: str
    balance_after: Money
    sequence: int
    expected_version: int
    reversal_of_id: UUID | None = None
    shortfall: bool = False

    def __post_init__(self) -> None:
        if not self.amount.is_positive:
            raise ValueError("TrustTransactionDraft amount must be positive")
        if self.sequence != self.expected_version + 1:
            raise ValueError(
                f"sequence {self.sequence} does not follow version {self.expected_version}"
            )


@dataclass(frozen=True)
class TrustTransaction:
    """
    An immutable, persisted trust ledger entry.

    ``effect`` is the signed change this entry made to the matter balance.
    """

    id: UUID
    matter_id: str
    transaction_type: TransactionType
    amount: Money
    description: str
    reference: str | None
    created_at: datetime
    created_by: str
    actor_role: str
    balance_after: Money
    sequence: int
    reversal_of_id: UUID | None = None
    shortfall: bool = False

    @property
    def effect(self) -> Money:
        return self.transaction_type.signed(self.amount)

    @property
    def balance_before(self) -> Money:
        return self.balance_after - self.effect

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_id is not None

    @property
    def currency(self) -> str:
        return self.amount.currency.code

    @classmethod
    def from_model(cls, model: TrustTransactionModel) -> TrustTransaction:
        return cls(
            id=model.id,
            matter_id=model.matter_id,
            transaction_type=TransactionType(model.transaction_type),
            amount=Money.of(model.amount, model.currency).round(),
            description=model.description,
            reference=model.reference,
            created_at=model.created_at,
            created_by=model.created_by,
            actor_role=model.actor_role,
            balance_after=Money.of(model.balance_after, model.currency).round(),
            sequence=model.sequence,
            reversal_of_id=model.reversal_of_id,
            shortfall=model.shortfall,
        )

    def to_dict(self) -> dict[str, Any]:
        """Canonical JSON-safe record.  Amounts are decimal strings."""
        return {
            "id": str(self.id),
            "matter_id": self.matter_id,
            "sequence": self.sequence,
            "type": self.transaction_type.value,
            "amount": self.amount.to_string(),
            "currency": self.currency,
            "balance_after": self.balance_after.to_string(),
            "description": self.description,
            "reference": self.reference,
            "created_at": self.created_at.isoformat(),
            "created_by": self.created_by,
            "actor_role": self.actor_role,
            "reversal_of_id": str(self.reversal_of_id) if self.reversal_of_id else None,
            "shortfall": self.shortfall,
        }


@dataclass(frozen=True)
class HistoryQuery:
    """Filters for a matter's transaction history."""

    matter_id: str
    descending: bool = False
    created_from: datetime | None = None
    created_to: datetime | None = None
    types: frozenset[TransactionType] | None = None
    after_sequence: int | None = None
    limit: int | None = None
    page_size: int = 100

    def __post_init__(self) -> None:
        if self.page_size < 1:
            raise ValueError("page_size must be >= 1")
        if self.limit is not None and self.limit < 0:
            raise ValueError("limit must be >= 0")
        if self.after_sequence is not None and self.after_sequence < 0:
            raise ValueError("after_sequence must be >= 0")


@dataclass(frozen=True)
class HistoryPage:
    """
    One page of history.

    ``next_cursor`` is the sequence to pass as ``after_sequence`` for the
    following page, or None when the history is exhausted.
    """

    items: tuple[TrustTransaction, ...]
    next_cursor: int | None


@dataclass(frozen=True)
class LedgerIntegrityReport:
    """Result of replaying a matter's history against its account row."""

    matter_id: str
    transaction_count: int
    replayed_balance: Money
    stored_balance: Money
    stored_version: int
    errors: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_valid(self) -> bool:
        return not self.errors
