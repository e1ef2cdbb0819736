"""
Typed Exception Hierarchy for the Trust Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Trust accounting errors are shown to attorneys, bookkeepers and regulators.
Callers must never parse message strings to decide what happened:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (matter_id, attempted amount, reason)

Example - WRONG way to handle errors:
    try:
        ledger.record_transaction(...)
    except Exception as e:
        if "insufficient" in str(e):  # FRAGILE
            ...

Example - RIGHT way:
    try:
        ledger.record_transaction(...)
    except InsufficientFundsError as e:
        api_response(code=e.code, available=e.available, attempted=e.attempted)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    TrustLedgerError (base)
    |
    +-- InvalidRequestError
    |   +-- InvalidAmountError
    |   +-- CurrencyMismatchError
    |
    +-- UnauthorizedError
    |
    +-- InsufficientFundsError
    |
    +-- NotFoundError
    |   +-- TransactionNotFoundError
    |
    +-- ReversalError
    |   +-- TransactionAlreadyReversedError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |   +-- LedgerTimeoutError          (also a builtin TimeoutError)
    |   +-- OperationCancelledError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- AuditError
    |   +-- AuditDeliveryError
    |
    +-- StorageError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Request         | INVALID_REQUEST             | Empty description, missing matter id
                | INVALID_AMOUNT              | amount <= 0, float, sub-minor-unit precision
                | CURRENCY_MISMATCH           | amount currency != account currency
----------------|-----------------------------|-----------------------------------------
Authorization   | UNAUTHORIZED                | No actor, or actor without a role
----------------|-----------------------------|-----------------------------------------
Balance         | INSUFFICIENT_FUNDS          | Debit would drive balance below zero
----------------|-----------------------------|-----------------------------------------
Lookup          | TRANSACTION_NOT_FOUND       | Reversal target id does not exist
----------------|-----------------------------|-----------------------------------------
Reversal        | TRANSACTION_ALREADY_REVERSED| Original already has a reversal entry
----------------|-----------------------------|-----------------------------------------
Concurrency     | CONCURRENCY_CONFLICT        | Version conflicts exhausted retries
                | LEDGER_TIMEOUT              | Lock wait or storage round-trip expired
                | OPERATION_CANCELLED         | Caller cancelled before commit
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | UPDATE/DELETE of a ledger row
----------------|-----------------------------|-----------------------------------------
Audit           | AUDIT_DELIVERY_FAILED       | AuditSink rejected an event (non-fatal)
----------------|-----------------------------|-----------------------------------------
Storage         | STORAGE_ERROR               | Unclassified database failure
----------------|-----------------------------|-----------------------------------------
Config          | CONFIGURATION_ERROR         | Invalid YAML configuration

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Domain exceptions inherit from Exception, not ValueError etc.  The one
   exception is LedgerTimeoutError, which is also a builtin TimeoutError so
   generic timeout handling in callers keeps working.

2. Storage details (SQL text, driver messages) are never placed on an
   exception that crosses the ledger API.  The store maps driver errors to
   the types below and logs the original with exc_info.

3. AuditDeliveryError never escapes TrustLedger.  It is raised by sinks,
   caught by AuditDispatcher, recorded on the outbox row and retried.

===============================================================================
"""

from typing import Any


class TrustLedgerError(Exception):
    """
    Base exception for all trust ledger errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "TRUST_LEDGER_ERROR"

    def to_dict(self) -> dict[str, Any]:
        """API-safe representation: code, message and structured fields."""
        data: dict[str, Any] = {"code": self.code, "message": str(self)}
        for key, value in vars(self).items():
            if not key.startswith("_"):
                data[key] = value if isinstance(value, (int, bool)) or value is None else str(value)
        return data


# Request validation


class InvalidRequestError(TrustLedgerError):
    """Request is malformed and was rejected before any persistence attempt."""

    code: str = "INVALID_REQUEST"

    def __init__(self, reason: str, matter_id: str | None = None):
        self.reason = reason
        self.matter_id = matter_id
        super().__init__(
            f"Invalid request for matter {matter_id}: {reason}"
            if matter_id
            else f"Invalid request: {reason}"
        )


class InvalidAmountError(InvalidRequestError):
    """Amount is not a strictly positive, exactly representable Money value."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: Any, reason: str, matter_id: str | None = None):
        self.amount = str(amount)
        super().__init__(reason=f"amount {amount}: {reason}", matter_id=matter_id)


class CurrencyMismatchError(InvalidRequestError):
    """Amount currency differs from the account currency."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, matter_id: str, account_currency: str, amount_currency: str):
        self.account_currency = account_currency
        self.amount_currency = amount_currency
        super().__init__(
            reason=(
                f"account currency is {account_currency}, "
                f"amount is in {amount_currency}"
            ),
            matter_id=matter_id,
        )


# Authorization


class UnauthorizedError(TrustLedgerError):
    """No acting identity, or the identity carries no role."""

    code: str = "UNAUTHORIZED"

    def __init__(self, reason: str, matter_id: str | None = None):
        self.reason = reason
        self.matter_id = matter_id
        super().__init__(f"Unauthorized: {reason}")


# Balance floor


class InsufficientFundsError(TrustLedgerError):
    """
    Debit would drive the trust balance below zero.

    The write was rejected with no ledger side effects.
    """

    code: str = "INSUFFICIENT_FUNDS"

    def __init__(
        self,
        matter_id: str,
        attempted: str,
        available: str,
        currency: str,
    ):
        self.matter_id = matter_id
        self.attempted = attempted
        self.available = available
        self.currency = currency
        super().__init__(
            f"Insufficient trust funds for matter {matter_id}: "
            f"attempted {attempted} {currency}, available {available} {currency}"
        )


# Lookup


class NotFoundError(TrustLedgerError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class TransactionNotFoundError(NotFoundError):
    """Trust transaction with the given id does not exist."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Trust transaction not found: {transaction_id}")


# Reversal


class ReversalError(TrustLedgerError):
    """Base exception for reversal errors."""

    code: str = "REVERSAL_ERROR"


class TransactionAlreadyReversedError(ReversalError):
    """Original transaction already has a reversal entry."""

    code: str = "TRANSACTION_ALREADY_REVERSED"

    def __init__(self, transaction_id: str, reversal_id: str):
        self.transaction_id = transaction_id
        self.reversal_id = reversal_id
        super().__init__(
            f"Trust transaction {transaction_id} was already reversed by {reversal_id}"
        )


# Concurrency


class ConcurrencyError(TrustLedgerError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """Optimistic version check kept failing after the bounded retries."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, matter_id: str, attempts: int):
        self.matter_id = matter_id
        self.attempts = attempts
        super().__init__(
            f"Concurrent modification of trust account {matter_id}: "
            f"gave up after {attempts} attempt(s)"
        )


class LedgerTimeoutError(ConcurrencyError, TimeoutError):
    """Lock acquisition or storage round-trip exceeded its bound."""

    code: str = "LEDGER_TIMEOUT"

    def __init__(self, matter_id: str, operation: str, timeout_seconds: float):
        self.matter_id = matter_id
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Timed out after {timeout_seconds}s during {operation} "
            f"for trust account {matter_id}"
        )


class OperationCancelledError(ConcurrencyError):
    """Caller cancelled the operation before the durable commit point."""

    code: str = "OPERATION_CANCELLED"

    def __init__(self, matter_id: str, stage: str):
        self.matter_id = matter_id
        self.stage = stage
        super().__init__(
            f"Operation on trust account {matter_id} cancelled at {stage}"
        )


# Immutability


class ImmutabilityError(TrustLedgerError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Trust transactions are append-only; audit outbox rows allow only their
    delivery-tracking fields to change.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Audit


class AuditError(TrustLedgerError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditDeliveryError(AuditError):
    """AuditSink failed to acknowledge an event. Retried, never fatal."""

    code: str = "AUDIT_DELIVERY_FAILED"

    def __init__(self, event_id: str, reason: str):
        self.event_id = event_id
        self.reason = reason
        super().__init__(f"Audit delivery failed for event {event_id}: {reason}")


# Configuration


class ConfigurationError(TrustLedgerError):
    """Ledger configuration is missing or invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid configuration '{key}': {reason}")


# Storage


class StorageError(TrustLedgerError):
    """
    Database failure that maps to no more specific ledger error.

    The driver exception is logged with exc_info by the store and chained
    as __cause__; its text is not part of the message.
    """

    code: str = "STORAGE_ERROR"

    def __init__(self, operation: str, matter_id: str | None = None):
        self.operation = operation
        self.matter_id = matter_id
        super().__init__(
            f"Storage failure during {operation}"
            + (f" for trust account {matter_id}" if matter_id else "")
        )
