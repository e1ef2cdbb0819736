"""Trust transaction types and their effect on the matter balance."""

from enum import Enum

from trust_kernel.domain.values import Money


class TransactionType(str, Enum):
    """
    Kinds of trust ledger entry.

    A deposit credits the matter's trust balance.  Withdrawals, transfers
    (trust to operating, once fees are earned) and refunds to the client
    all debit it.
    """

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER = "transfer"
    REFUND = "refund"

    @property
    def is_credit(self) -> bool:
        return self is TransactionType.DEPOSIT

    @property
    def is_debit(self) -> bool:
        return not self.is_credit

    def signed(self, amount: Money) -> Money:
        """Signed effect of an entry of this type on the balance."""
        return amount if self.is_credit else -amount

    def reversal_type(self) -> "TransactionType":
        """Opposite-direction type used to reverse an entry of this type."""
        if self.is_credit:
            return TransactionType.WITHDRAWAL
        return TransactionType.DEPOSIT

    @classmethod
    def parse(cls, value: "TransactionType | str") -> "TransactionType":
        """
        Accept an enum member or its (case-insensitive) string value.

        Raises:
            ValueError: If the value names no transaction type.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise ValueError(
            f"Unknown transaction type {value!r}; expected one of "
            f"{', '.join(t.value for t in cls)}"
        )
