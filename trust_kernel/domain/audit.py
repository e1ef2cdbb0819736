"""
Audit -- events the ledger emits and the sink contract that receives them.

Responsibility:
    Defines AuditEvent (one immutable record per ledger write, rejection or
    reconciliation mismatch) and AuditSink, the collaborator interface the
    firm's audit log implements.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Sinks live in services/.

Invariants enforced:
    - Every successful ledger write produces exactly one AuditEvent whose
      ``transaction_id`` is the ledger entry id (the correlation id).
    - Amounts are carried as Money and serialized as decimal strings.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from trust_kernel.domain.transaction_types import TransactionType
from trust_kernel.domain.values import Money


class AuditAction(str, Enum):
    """Audited trust-ledger actions."""

    TRUST_DEPOSIT = "TRUST_DEPOSIT"
    TRUST_WITHDRAWAL = "TRUST_WITHDRAWAL"
    TRUST_TRANSFER = "TRUST_TRANSFER"
    TRUST_REFUND = "TRUST_REFUND"
    TRUST_REVERSAL = "TRUST_REVERSAL"
    TRANSACTION_REJECTED = "TRANSACTION_REJECTED"
    RECONCILIATION_MISMATCH = "RECONCILIATION_MISMATCH"

    @classmethod
    def for_transaction_type(cls, transaction_type: TransactionType) -> AuditAction:
        return cls(f"TRUST_{transaction_type.value.upper()}")


class AuditFlag:
    """Well-known flag strings carried on audit events."""

    REQUIRES_REVIEW = "requires_review"
    SHORTFALL_OVERRIDE = "shortfall_override"
    REVERSAL = "reversal"


@dataclass(frozen=True)
class AuditEvent:
    """
    One audit record.

    ``amount`` and ``resulting_balance`` are None only for events that are
    not tied to a single matter balance (firm-level reconciliation carries
    its figures in ``metadata``).
    """

    actor_id: str
    actor_role: str
    matter_id: str
    action: AuditAction
    timestamp: datetime
    currency: str
    amount: Money | None = None
    resulting_balance: Money | None = None
    transaction_id: UUID | None = None
    flags: frozenset[str] = frozenset()
    metadata: dict[str, Any] = field(default_factory=dict)
    event_id: UUID = field(default_factory=uuid4)

    @property
    def requires_review(self) -> bool:
        return AuditFlag.REQUIRES_REVIEW in self.flags

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe canonical form used for the outbox and for hashing."""
        return {
            "event_id": str(self.event_id),
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "matter_id": self.matter_id,
            "action": self.action.value,
            "timestamp": self.timestamp.isoformat(),
            "currency": self.currency,
            "amount": self.amount.to_string() if self.amount is not None else None,
            "resulting_balance": (
                self.resulting_balance.to_string()
                if self.resulting_balance is not None
                else None
            ),
            "transaction_id": str(self.transaction_id) if self.transaction_id else None,
            "flags": sorted(self.flags),
            "metadata": self.metadata,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> AuditEvent:
        currency = payload["currency"]
        amount = payload.get("amount")
        resulting = payload.get("resulting_balance")
        transaction_id = payload.get("transaction_id")
        return cls(
            event_id=UUID(payload["event_id"]),
            actor_id=payload["actor_id"],
            actor_role=payload["actor_role"],
            matter_id=payload["matter_id"],
            action=AuditAction(payload["action"]),
            timestamp=datetime.fromisoformat(payload["timestamp"]),
            currency=currency,
            amount=Money.of(amount, currency) if amount is not None else None,
            resulting_balance=(
                Money.of(resulting, currency) if resulting is not None else None
            ),
            transaction_id=UUID(transaction_id) if transaction_id else None,
            flags=frozenset(payload.get("flags") or ()),
            metadata=dict(payload.get("metadata") or {}),
        )


class AuditSink(ABC):
    """
    Receiver of audit events (the firm's immutable audit log).

    Contract:
        ``record`` returns normally once the event is durably accepted and
        raises any exception to signal failure.  Delivery is at-least-once:
        a sink may see the same ``event_id`` more than once after a retry
        and should treat repeats as no-ops.
    """

    @abstractmethod
    def record(self, event: AuditEvent) -> None:
        ...
