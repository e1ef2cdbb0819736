"""
Module: trust_kernel.models.trust_account
Responsibility: ORM persistence for the per-matter trust account row.
Architecture position: Kernel > Models.  May import from db/base.py and
    db/types.py only.

Invariants enforced:
    - One account per matter (unique matter_id).
    - currency, matter_id and firm_account_id are fixed at creation
      (ORM listener + PostgreSQL trigger).
    - version == last_sequence == number of transactions for the matter.
      The balance and version change only through the conditional
      ``UPDATE ... WHERE version = :expected`` issued by the trust store.
    - Rows are never deleted.

Audit relevance:
    current_balance is a cached projection.  It must always equal the
    balance_after of the matter's highest-sequence transaction; the
    integrity selector replays history to prove it.
"""

from datetime import datetime

from sqlalchemy import CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from trust_kernel.db.base import Base
from trust_kernel.db.types import CurrencyCode, MoneyAmount, Sequence, ShortCode


class TrustAccountModel(Base):
    """
    A matter's trust sub-account within the firm's pooled trust bank account.

    Guarantees:
        - Created implicitly on the first write for a matter with a zero
          balance and version 0.
        - Never deleted.
    """

    __tablename__ = "trust_accounts"

    __table_args__ = (
        Index("idx_trust_account_firm", "firm_account_id"),
        CheckConstraint("version >= 0", name="chk_trust_account_version"),
        CheckConstraint("last_sequence = version", name="chk_trust_account_sequence"),
    )

    matter_id: Mapped[ShortCode] = mapped_column(nullable=False, unique=True)

    currency: Mapped[CurrencyCode] = mapped_column(nullable=False)

    current_balance: Mapped[MoneyAmount] = mapped_column(nullable=False)

    version: Mapped[Sequence] = mapped_column(nullable=False, default=0)

    last_sequence: Mapped[Sequence] = mapped_column(nullable=False, default=0)

    # Pooled IOLTA bank account this matter's funds sit in
    firm_account_id: Mapped[ShortCode] = mapped_column(nullable=False)

    # Owning client (identifier only)
    client_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<TrustAccount {self.matter_id}: {self.current_balance} {self.currency} "
            f"v{self.version}>"
        )
