"""
Module: trust_kernel.models.audit_outbox
Responsibility: Transactional outbox for audit events.
Architecture position: Kernel > Models.  May import from db/base.py and
    db/types.py only.

Invariants enforced:
    - The outbox row is written in the same database transaction as the
      ledger entry it describes, so an entry without its audit record (or
      the reverse) can never be committed.
    - Event columns and payload are immutable after insert.  Only the
      delivery-tracking columns listed in DELIVERY_FIELDS may change.
    - Rows are never deleted, including delivered and dead-lettered ones.

Audit relevance:
    payload_hash is the SHA-256 of the canonical JSON payload; the
    dispatcher refuses to deliver a row whose payload no longer matches it.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from trust_kernel.db.base import Base, UUIDString
from trust_kernel.db.types import CurrencyCode, LongText, MoneyAmount, PayloadHash, ShortCode


class OutboxStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    DEAD_LETTER = "dead_letter"


class AuditOutboxEntry(Base):
    """One audit event awaiting (or having completed) delivery to the AuditSink."""

    __tablename__ = "audit_outbox"

    __table_args__ = (
        Index("idx_audit_outbox_due", "status", "next_attempt_at"),
        Index("idx_audit_outbox_matter", "matter_id"),
    )

    DELIVERY_FIELDS = frozenset(
        {"status", "attempts", "last_error", "delivered_at", "next_attempt_at"}
    )

    event_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)

    action: Mapped[str] = mapped_column(String(50), nullable=False)

    matter_id: Mapped[ShortCode] = mapped_column(nullable=False)

    # Ledger entry id; the correlation id between the two records
    transaction_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    actor_id: Mapped[ShortCode] = mapped_column(nullable=False)

    actor_role: Mapped[ShortCode] = mapped_column(nullable=False)

    amount: Mapped[MoneyAmount | None] = mapped_column(nullable=True)

    resulting_balance: Mapped[MoneyAmount | None] = mapped_column(nullable=True)

    currency: Mapped[CurrencyCode] = mapped_column(nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    payload_hash: Mapped[PayloadHash] = mapped_column(nullable=False)

    # Delivery tracking
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OutboxStatus.PENDING.value
    )

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_error: Mapped[LongText | None] = mapped_column(nullable=True)

    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)

    next_attempt_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<AuditOutboxEntry {self.action} {self.matter_id} [{self.status}]>"
