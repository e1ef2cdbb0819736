"""
Module: trust_kernel.db.types
Responsibility: Annotated type aliases for ledger columns and currency-code
    validation, so that every model and the config loader use identical
    definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - ISO 4217 enforcement.  validate_currency() rejects any string that is
      not a recognized 3-character ISO 4217 currency code.
    - No floats anywhere in the trust kernel.  All monetary amounts use
      Decimal with explicit precision.

Failure modes:
    - InvalidCurrencyError on invalid ISO 4217 code.

Audit relevance:
    Every monetary column in every model uses MoneyAmount (ExactDecimal),
    ensuring that amounts are stored with identical precision system-wide.
"""

from decimal import Decimal
from typing import Annotated

from sqlalchemy import BigInteger, String, Text
from sqlalchemy.orm import mapped_column

from trust_kernel.db.base import ExactDecimal

# Monetary amount: NUMERIC(38, 9) on PostgreSQL, exact text elsewhere
MoneyAmount = Annotated[Decimal, mapped_column(ExactDecimal())]

# ISO 4217 currency code (e.g., "USD", "EUR", "GBP")
CurrencyCode = Annotated[str, mapped_column(String(3))]

# Gapless per-matter sequence number
Sequence = Annotated[int, mapped_column(BigInteger)]

# SHA-256 hash as hex string (64 characters)
PayloadHash = Annotated[str, mapped_column(String(64))]

# Short identifier strings (matter ids, actor ids, roles)
ShortCode = Annotated[str, mapped_column(String(100))]

# Long text for descriptions and delivery errors
LongText = Annotated[str, mapped_column(Text)]


class InvalidCurrencyError(ValueError):
    """Raised when an invalid ISO 4217 currency code is provided."""

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'")


def validate_currency(currency: str) -> str:
    """
    Validate that a currency code is a known ISO 4217 code.

    Returns:
        The validated currency code (uppercase, trimmed).

    Raises:
        InvalidCurrencyError: If the currency code is not valid.
    """
    # Late import: the registry lives in the pure domain layer.
    from trust_kernel.domain.currency import CurrencyRegistry

    if not currency or not isinstance(currency, str):
        raise InvalidCurrencyError(str(currency))

    normalized = currency.upper().strip()
    if len(normalized) != 3 or not CurrencyRegistry.is_valid(normalized):
        raise InvalidCurrencyError(currency)
    return normalized
