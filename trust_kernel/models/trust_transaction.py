"""
Module: trust_kernel.models.trust_transaction
Responsibility: ORM persistence for immutable trust ledger entries.
Architecture position: Kernel > Models.  May import from db/base.py and
    db/types.py only.

Invariants enforced:
    - Append-only: no UPDATE or DELETE (ORM listener + PostgreSQL trigger).
    - (matter_id, sequence) is unique; sequences run 1..N without gaps.
    - amount > 0; the direction comes from transaction_type.
    - reversal_of_id is unique: an entry is reversed at most once.

Audit relevance:
    This table IS the trust ledger.  Every balance the system reports is
    derivable by replaying these rows in sequence order.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from trust_kernel.db.base import Base, UUIDString
from trust_kernel.db.types import CurrencyCode, LongText, MoneyAmount, Sequence, ShortCode


class TrustTransactionModel(Base):
    """
    One deposit, withdrawal, transfer or refund against a matter.

    Guarantees:
        - balance_after(n) == balance_after(n-1) + effect(n).
        - created_at comes from the ledger's injected clock.
    """

    __tablename__ = "trust_transactions"

    __table_args__ = (
        UniqueConstraint("matter_id", "sequence", name="uq_trust_txn_matter_sequence"),
        UniqueConstraint("reversal_of_id", name="uq_trust_txn_reversal_of"),
        Index("idx_trust_txn_matter_created", "matter_id", "created_at"),
        CheckConstraint("sequence >= 1", name="chk_trust_txn_sequence"),
        CheckConstraint(
            "transaction_type IN ('deposit', 'withdrawal', 'transfer', 'refund')",
            name="chk_trust_txn_type",
        ),
    )

    matter_id: Mapped[ShortCode] = mapped_column(
        ForeignKey("trust_accounts.matter_id", ondelete="RESTRICT"),
        nullable=False,
    )

    sequence: Mapped[Sequence] = mapped_column(nullable=False)

    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)

    amount: Mapped[MoneyAmount] = mapped_column(nullable=False)

    currency: Mapped[CurrencyCode] = mapped_column(nullable=False)

    balance_after: Mapped[MoneyAmount] = mapped_column(nullable=False)

    description: Mapped[LongText] = mapped_column(nullable=False)

    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    created_by: Mapped[ShortCode] = mapped_column(nullable=False)

    actor_role: Mapped[ShortCode] = mapped_column(nullable=False)

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("trust_transactions.id", ondelete="RESTRICT"),
        nullable=True,
    )

    # Set when an authorized override drove the balance below zero
    shortfall: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return (
            f"<TrustTransaction {self.matter_id}#{self.sequence} "
            f"{self.transaction_type} {self.amount} {self.currency}>"
        )
