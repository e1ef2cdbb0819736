"""
Values -- Immutable, self-validating domain value objects.

Responsibility:
    Provides the value types for every trust-ledger computation: Currency
    and Money.  These replace primitive types (Decimal, str) wherever
    financial data appears in domain logic.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    No outward dependencies except trust_kernel.domain.currency.

Invariants enforced:
    - All monetary amounts use Money value objects (never raw Decimal/float).
    - Constructing Money from a float raises TypeError.  Binary floats
      cannot represent most cent values exactly and are refused at the
      boundary instead of being converted.
    - Currency codes are validated at construction time.

Failure modes:
    - TypeError when a float (or other non-numeric type) is supplied.
    - ValueError on construction with invalid amounts or currencies.
    - ValueError when arithmetic or comparison mixes different currencies.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from trust_kernel.domain.currency import CurrencyRegistry


@dataclass(frozen=True, slots=True)
class Currency:
    """
    ISO 4217 currency code value object.

    Guarantees:
        - Immutable and hashable.
        - code is always uppercase, stripped and registered in CurrencyRegistry.
    """

    code: str

    def __post_init__(self) -> None:
        if not isinstance(self.code, str):
            raise TypeError(f"currency code must be str, got {type(self.code).__name__}")
        normalized = self.code.upper().strip()
        if not CurrencyRegistry.is_valid(normalized):
            raise ValueError(f"Invalid ISO 4217 currency code: {self.code}")
        object.__setattr__(self, "code", normalized)

    @property
    def decimal_places(self) -> int:
        return CurrencyRegistry.get_decimal_places(self.code)

    @property
    def minor_unit(self) -> Decimal:
        return CurrencyRegistry.get_minor_unit(self.code)

    @property
    def name(self) -> str:
        info = CurrencyRegistry.get_info(self.code)
        return info.name if info else self.code

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"Currency({self.code!r})"


def _to_decimal(value: object) -> Decimal:
    """Convert an exact numeric input to Decimal.  Floats are refused."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or isinstance(value, float):
        raise TypeError(
            f"Money amount must be Decimal, int or str, not {type(value).__name__}"
        )
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(value.strip() if isinstance(value, str) else value)
        except InvalidOperation as e:
            raise ValueError(f"Invalid amount: {value!r}") from e
    else:
        raise TypeError(
            f"Money amount must be Decimal, int or str, not {type(value).__name__}"
        )
    if not result.is_finite():
        raise ValueError(f"Invalid amount: {value!r} is not finite")
    return result


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount value object.

    Contract:
        Pairs a Decimal amount with its Currency.  This is the canonical
        representation of monetary values throughout the trust ledger.

    Guarantees:
        - Immutable and hashable.
        - amount is always a finite Decimal, never float.
        - Arithmetic and ordering enforce the same-currency constraint.

    Non-goals:
        - Does NOT perform currency conversion.
        - Does NOT auto-round; callers must explicitly call .round().
    """

    amount: Decimal
    currency: Currency

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", _to_decimal(self.amount))

        if isinstance(self.currency, str):
            object.__setattr__(self, "currency", Currency(self.currency))
        elif not isinstance(self.currency, Currency):
            raise TypeError(f"currency must be Currency or str, got {type(self.currency)}")

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str | Currency) -> Money:
        """
        Factory method for creating Money.

        Raises:
            TypeError: If amount is a float.
            ValueError: If amount cannot be converted or currency is invalid.
        """
        return cls(amount=_to_decimal(amount), currency=currency)

    @classmethod
    def zero(cls, currency: str | Currency) -> Money:
        """Create a zero amount in the given currency."""
        return cls(amount=Decimal("0"), currency=currency)

    @property
    def is_zero(self) -> bool:
        return self.amount == Decimal("0")

    @property
    def is_positive(self) -> bool:
        return self.amount > Decimal("0")

    @property
    def is_negative(self) -> bool:
        return self.amount < Decimal("0")

    @property
    def is_quantized(self) -> bool:
        """True when the amount has no digits below the currency's minor unit."""
        return self.amount == self.amount.quantize(self.currency.minor_unit)

    @property
    def minor_units(self) -> int:
        """
        Amount expressed as an integer count of minor units (cents for USD).

        Raises:
            ValueError: If the amount is not quantized to the minor unit.
        """
        if not self.is_quantized:
            raise ValueError(
                f"{self} has more precision than {self.currency.code} allows"
            )
        return int(self.amount.scaleb(self.currency.decimal_places))

    def round(self, rounding: str = ROUND_HALF_UP) -> Money:
        """Round to the currency's decimal places.  Returns a new Money."""
        rounded = self.amount.quantize(self.currency.minor_unit, rounding=rounding)
        return Money(amount=rounded, currency=self.currency)

    def _check_currency(self, other: Money, operation: str) -> None:
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot {operation} Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "add")
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "subtract")
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def __neg__(self) -> Money:
        return Money(amount=-self.amount, currency=self.currency)

    def __abs__(self) -> Money:
        return Money(amount=abs(self.amount), currency=self.currency)

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def to_string(self) -> str:
        """Canonical decimal-string form used for serialization."""
        return format(self.amount, "f")

    def __str__(self) -> str:
        return f"{self.to_string()} {self.currency.code}"

    def __repr__(self) -> str:
        return f"Money({self.amount!r}, {self.currency!r})"
