"""
TrustLedger -- the transactional API of the trust (IOLTA) ledger.

Responsibility:
    Records deposits, withdrawals, transfers and refunds against a matter's
    trust balance, reverses earlier entries, and answers balance, history,
    export and integrity queries.  Every write appends one immutable entry,
    advances the account balance and version, and enqueues one audit event,
    all in a single unit of work.

Architecture position:
    Kernel > Services -- imperative shell.  Depends on the PersistenceStore
    and AuditSink contracts, never on a concrete database.

Invariants enforced:
    - Balance invariant: current_balance equals the sum of entry effects in
      sequence order, and each entry's balance_after continues the chain.
    - Balance floor: a debit that would leave the balance below zero is
      refused unless the actor's role carries override authority AND the
      caller passed ``authorize_shortfall=True``.  Such entries carry the
      shortfall flag.
    - Gapless sequences: sequence == version + 1 of the account read in the
      same unit of work.
    - Per-matter serialization: AccountLockRegistry in process, conditional
      version update across processes, bounded conflict retries.
    - Audit delivery failure never fails a committed write.

Failure modes:
    - InvalidRequestError / InvalidAmountError / CurrencyMismatchError
    - UnauthorizedError
    - InsufficientFundsError (no ledger rows written)
    - ConcurrencyConflictError after ``max_conflict_retries`` attempts
    - LedgerTimeoutError, OperationCancelledError
    - TransactionNotFoundError, TransactionAlreadyReversedError

Usage:
    ledger = TrustLedger(store, audit_sink=sink, clock=clock)
    ledger.record_transaction(
        "M-1", "deposit", Money.of("1000.00", "USD"), "Retainer",
        actor=AuthorizationContext.standard("bookkeeper-7"),
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from trust_kernel.domain.audit import AuditAction, AuditEvent, AuditFlag, AuditSink
from trust_kernel.domain.authorization import (
    AuthorizationContext,
    OverridePolicy,
    require_actor,
)
from trust_kernel.domain.clock import Clock, SystemClock, to_utc_bound
from trust_kernel.domain.dtos import (
    HistoryQuery,
    LedgerIntegrityReport,
    TrustAccountSnapshot,
    TrustTransaction,
    TrustTransactionDraft,
)
from trust_kernel.domain.persistence import PersistenceStore, StoreSession
from trust_kernel.domain.transaction_types import TransactionType
from trust_kernel.domain.values import Money
from trust_kernel.exceptions import (
    ConcurrencyConflictError,
    CurrencyMismatchError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidRequestError,
    TransactionAlreadyReversedError,
    TransactionNotFoundError,
    TrustLedgerError,
)
from trust_kernel.logging_config import LogContext, get_logger
from trust_kernel.selectors.trust_selector import TransactionHistory, TrustSelector
from trust_kernel.services.account_lock import AccountLockRegistry
from trust_kernel.services.audit_dispatcher import AuditDispatcher
from trust_kernel.services.cancellation import CancellationToken

logger = get_logger("services.trust_ledger")


@dataclass(frozen=True)
class TrustLedgerSettings:
    """
    Behavioural knobs for TrustLedger.

    ``review_thresholds`` maps a transaction type value ("withdrawal", ...)
    to the amount at or above which its audit event is flagged for review.
    """

    default_currency: str = "USD"
    default_firm_account_id: str = "IOLTA-DEFAULT"
    lock_timeout_seconds: float = 5.0
    max_conflict_retries: int = 5
    override_roles: frozenset[str] = frozenset({"override"})
    deliver_inline: bool = True
    review_thresholds: dict[str, Decimal] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_conflict_retries < 1:
            raise ValueError("max_conflict_retries must be >= 1")
        if self.lock_timeout_seconds <= 0:
            raise ValueError("lock_timeout_seconds must be positive")


@dataclass(frozen=True)
class _PostingRequest:
    matter_id: str
    transaction_type: TransactionType
    amount: Money
    description: str
    reference: str | None
    actor: AuthorizationContext
    authorize_shortfall: bool
    firm_account_id: str
    client_id: str | None
    reversal_of: TrustTransaction | None = None
    reason: str | None = None


class _Rejected(Exception):
    """Internal signal: the balance floor refused the request."""

    def __init__(self, account: TrustAccountSnapshot):
        self.account = account


class TrustLedger:
    """
    Transactional trust ledger for matter sub-accounts.

    Contract:
        Each successful write returns the persisted TrustTransaction.  Each
        failed write raises a TrustLedgerError subclass and leaves no
        ledger rows behind.

    Non-goals:
        - Does NOT authenticate actors; it trusts the AuthorizationContext.
        - Does NOT convert currencies.
    """

    def __init__(
        self,
        store: PersistenceStore,
        audit_sink: AuditSink | None = None,
        *,
        dispatcher: AuditDispatcher | None = None,
        clock: Clock | None = None,
        settings: TrustLedgerSettings | None = None,
        lock_registry: AccountLockRegistry | None = None,
    ):
        if dispatcher is None and audit_sink is None:
            raise ValueError("TrustLedger requires an audit_sink or a dispatcher")
        self._store = store
        self._clock = clock or SystemClock()
        self._settings = settings or TrustLedgerSettings()
        self._dispatcher = dispatcher or AuditDispatcher(store, audit_sink, clock=self._clock)
        self._locks = lock_registry or AccountLockRegistry(self._settings.lock_timeout_seconds)
        self._policy = OverridePolicy(override_roles=frozenset(self._settings.override_roles))
        self._selector = TrustSelector(store)

    @property
    def settings(self) -> TrustLedgerSettings:
        return self._settings

    @property
    def dispatcher(self) -> AuditDispatcher:
        return self._dispatcher

    # Writes

    def record_transaction(
        self,
        matter_id: str,
        transaction_type: TransactionType | str,
        amount: Money | Decimal | str | int,
        description: str,
        reference: str | None = None,
        actor: AuthorizationContext | None = None,
        *,
        authorize_shortfall: bool = False,
        firm_account_id: str | None = None,
        client_id: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> TrustTransaction:
        """
        Append one entry to a matter's trust ledger.

        Preconditions:
            - ``matter_id`` and ``description`` are non-empty.
            - ``actor`` carries an actor id and a role.
            - ``amount`` is positive, in the account currency, and has no
              more decimal places than the currency's minor unit.  Plain
              Decimal/str/int amounts take the account currency.

        Postconditions:
            - Exactly one new entry with sequence == previous version + 1.
            - Account balance and version advanced in the same commit.
            - One audit outbox row written in the same commit.

        Raises:
            InsufficientFundsError: Debit past zero without override.
        """
        matter_id = self._require_matter_id(matter_id)
        actor = require_actor(actor, matter_id)
        try:
            txn_type = TransactionType.parse(transaction_type)
        except ValueError as exc:
            raise InvalidRequestError(str(exc), matter_id) from exc
        description = self._require_text(description, "description", matter_id)
        money = self._coerce_amount(matter_id, amount)

        request = _PostingRequest(
            matter_id=matter_id,
            transaction_type=txn_type,
            amount=money,
            description=description,
            reference=reference,
            actor=actor,
            authorize_shortfall=authorize_shortfall,
            firm_account_id=firm_account_id or self._settings.default_firm_account_id,
            client_id=client_id,
        )
        return self._post(request, cancel_token)

    def reverse_transaction(
        self,
        original_id: UUID | str,
        actor: AuthorizationContext | None,
        reason: str,
        *,
        authorize_shortfall: bool = False,
        cancel_token: CancellationToken | None = None,
    ) -> TrustTransaction:
        """
        Offset an earlier entry with an opposite-direction entry.

        The reversal is a normal ledger entry: a deposit is reversed by a
        withdrawal, any debit by a deposit, for the same amount.  It is
        subject to the balance floor like any other debit.  An entry can be
        reversed at most once.

        Raises:
            TransactionNotFoundError: ``original_id`` does not exist.
            TransactionAlreadyReversedError: A reversal already exists.
        """
        actor = require_actor(actor)
        reason = self._require_text(reason, "reason", None)
        original = self._load_original(original_id)

        request = _PostingRequest(
            matter_id=original.matter_id,
            transaction_type=original.transaction_type.reversal_type(),
            amount=original.amount,
            description=f"REVERSAL: {reason}",
            reference=str(original.id),
            actor=actor,
            authorize_shortfall=authorize_shortfall,
            firm_account_id=self._settings.default_firm_account_id,
            client_id=None,
            reversal_of=original,
            reason=reason,
        )
        return self._post(request, cancel_token)

    # Reads

    def get_balance(self, matter_id: str) -> Money:
        """Current balance, or zero in the default currency for an unknown matter."""
        matter_id = self._require_matter_id(matter_id)
        account = self._store.get_account(matter_id)
        if account is None:
            return Money.zero(self._settings.default_currency)
        return account.current_balance

    def get_account(self, matter_id: str) -> TrustAccountSnapshot | None:
        return self._store.get_account(self._require_matter_id(matter_id))

    def get_history(
        self,
        matter_id: str,
        *,
        descending: bool = False,
        created_from: date | datetime | None = None,
        created_to: date | datetime | None = None,
        types: list[TransactionType | str] | None = None,
        after_sequence: int | None = None,
        limit: int | None = None,
        page_size: int = 100,
    ) -> TransactionHistory:
        """
        Lazy history of a matter ordered by sequence.

        A ``date`` for ``created_from`` means the start of that day and for
        ``created_to`` the end of that day, both UTC.  ``after_sequence`` is
        an exclusive cursor in the iteration direction.
        """
        matter_id = self._require_matter_id(matter_id)
        try:
            query = HistoryQuery(
                matter_id=matter_id,
                descending=descending,
                created_from=(
                    to_utc_bound(created_from, end_of_day=False)
                    if created_from is not None
                    else None
                ),
                created_to=to_utc_bound(created_to) if created_to is not None else None,
                types=(
                    frozenset(TransactionType.parse(t) for t in types) if types else None
                ),
                after_sequence=after_sequence,
                limit=limit,
                page_size=page_size,
            )
        except (TypeError, ValueError) as exc:
            raise InvalidRequestError(str(exc), matter_id) from exc
        return self._selector.history(query)

    def verify_integrity(self, matter_id: str) -> LedgerIntegrityReport:
        matter_id = self._require_matter_id(matter_id)
        return self._selector.verify_integrity(matter_id, self._settings.default_currency)

    def export_transactions(self, matter_id: str) -> list[dict[str, Any]]:
        """Verbatim canonical records of every entry, in sequence order."""
        return self._selector.export(self._require_matter_id(matter_id))

    # Internals

    def _post(
        self, request: _PostingRequest, cancel_token: CancellationToken | None
    ) -> TrustTransaction:
        matter_id = request.matter_id
        with LogContext.bind(
            matter_id=matter_id,
            actor_id=request.actor.actor_id,
            actor_role=request.actor.role,
        ):
            self._check_cancel(cancel_token, matter_id, "before_lock")
            with self._locks.hold(matter_id):
                self._check_cancel(cancel_token, matter_id, "after_lock")
                attempts = self._settings.max_conflict_retries
                for attempt in range(1, attempts + 1):
                    try:
                        txn, outbox_entry_id = self._write_once(request, cancel_token)
                        break
                    except ConcurrencyConflictError:
                        logger.warning(
                            "concurrency_conflict_retry",
                            extra={"attempt": attempt, "max_attempts": attempts},
                        )
                    except _Rejected as rejected:
                        raise self._reject(request, rejected.account) from None
                else:
                    logger.error(
                        "concurrency_conflict_exhausted",
                        extra={"attempts": attempts},
                    )
                    raise ConcurrencyConflictError(matter_id=matter_id, attempts=attempts)

            with LogContext.bind(transaction_id=str(txn.id), sequence=txn.sequence):
                logger.info(
                    "transaction_recorded",
                    extra={
                        "transaction_type": txn.transaction_type,
                        "amount": txn.amount,
                        "balance_after": txn.balance_after,
                        "reversal_of_id": txn.reversal_of_id,
                        "shortfall": txn.shortfall,
                    },
                )
                if self._settings.deliver_inline:
                    self._dispatcher.deliver(outbox_entry_id)
            return txn

    def _write_once(
        self, request: _PostingRequest, cancel_token: CancellationToken | None
    ) -> tuple[TrustTransaction, UUID]:
        with self._store.unit_of_work(request.matter_id) as uow:
            if request.reversal_of is not None:
                self._ensure_not_reversed(uow, request.reversal_of)

            account = uow.get_or_create_account(
                matter_id=request.matter_id,
                currency=request.amount.currency.code,
                firm_account_id=request.firm_account_id,
                client_id=request.client_id,
                now=self._clock.now(),
            )
            if account.currency != request.amount.currency.code:
                raise CurrencyMismatchError(
                    matter_id=request.matter_id,
                    account_currency=account.currency,
                    amount_currency=request.amount.currency.code,
                )

            proposed = account.current_balance + request.transaction_type.signed(request.amount)
            shortfall = False
            if proposed.is_negative:
                if not self._policy.permits_shortfall(
                    request.actor, request.authorize_shortfall
                ):
                    raise _Rejected(account)
                shortfall = True
                logger.warning(
                    "trust_shortfall_authorized",
                    extra={
                        "balance_before": account.current_balance,
                        "balance_after": proposed,
                    },
                )

            draft = TrustTransactionDraft(
                matter_id=request.matter_id,
                transaction_type=request.transaction_type,
                amount=request.amount,
                description=request.description,
                reference=request.reference,
                created_at=self._clock.now(),
                created_by=request.actor.actor_id,
                actor_role=request.actor.role,
                balance_after=proposed,
                sequence=account.version + 1,
                expected_version=account.version,
                reversal_of_id=request.reversal_of.id if request.reversal_of else None,
                shortfall=shortfall,
            )
            txn = uow.append_transaction(draft)
            outbox_entry_id = uow.enqueue_audit(self._audit_event_for(request, txn))

            # Last point at which cancelling still aborts the write.
            self._check_cancel(cancel_token, request.matter_id, "before_commit")
        return txn, outbox_entry_id

    def _ensure_not_reversed(self, uow: StoreSession, original: TrustTransaction) -> None:
        existing = uow.find_reversal_of(original.id)
        if existing is not None:
            logger.info(
                "reversal_rejected_already_reversed",
                extra={"original_id": str(original.id), "reversal_id": str(existing.id)},
            )
            raise TransactionAlreadyReversedError(
                transaction_id=str(original.id), reversal_id=str(existing.id)
            )

    def _reject(
        self, request: _PostingRequest, account: TrustAccountSnapshot
    ) -> InsufficientFundsError:
        """Log and audit a balance-floor rejection, and build the error to raise."""
        available = account.current_balance
        logger.warning(
            "insufficient_funds_rejected",
            extra={
                "transaction_type": request.transaction_type,
                "attempted": request.amount,
                "available": available,
                "authorize_shortfall": request.authorize_shortfall,
            },
        )
        event = AuditEvent(
            actor_id=request.actor.actor_id,
            actor_role=request.actor.role,
            matter_id=request.matter_id,
            action=AuditAction.TRANSACTION_REJECTED,
            timestamp=self._clock.now(),
            currency=available.currency.code,
            amount=request.amount,
            resulting_balance=available,
            flags=frozenset({AuditFlag.REQUIRES_REVIEW}),
            metadata={
                "reason": InsufficientFundsError.code,
                "transaction_type": request.transaction_type.value,
                "reversal_of_id": (
                    str(request.reversal_of.id) if request.reversal_of else None
                ),
            },
        )
        self._enqueue_standalone(event)
        return InsufficientFundsError(
            matter_id=request.matter_id,
            attempted=request.amount.to_string(),
            available=available.to_string(),
            currency=available.currency.code,
        )

    def _enqueue_standalone(self, event: AuditEvent) -> None:
        """Write an audit-only outbox row in its own short unit of work."""
        try:
            with self._store.unit_of_work(event.matter_id) as uow:
                entry_id = uow.enqueue_audit(event)
        except TrustLedgerError as exc:
            logger.error(
                "audit_enqueue_failed",
                extra={"event_id": str(event.event_id), "error_code": exc.code},
            )
            return
        if self._settings.deliver_inline:
            self._dispatcher.deliver(entry_id)

    def _audit_event_for(self, request: _PostingRequest, txn: TrustTransaction) -> AuditEvent:
        flags: set[str] = set()
        metadata: dict[str, Any] = {
            "transaction_type": txn.transaction_type.value,
            "sequence": txn.sequence,
        }
        threshold = self._settings.review_thresholds.get(txn.transaction_type.value)
        if threshold is not None and txn.amount.amount >= threshold:
            flags.add(AuditFlag.REQUIRES_REVIEW)
            metadata["review_threshold"] = format(threshold, "f")
        if txn.shortfall:
            flags.update({AuditFlag.SHORTFALL_OVERRIDE, AuditFlag.REQUIRES_REVIEW})

        if request.reversal_of is not None:
            action = AuditAction.TRUST_REVERSAL
            flags.add(AuditFlag.REVERSAL)
            metadata["reversal_of_id"] = str(request.reversal_of.id)
            metadata["reason"] = request.reason
        else:
            action = AuditAction.for_transaction_type(txn.transaction_type)

        return AuditEvent(
            actor_id=request.actor.actor_id,
            actor_role=request.actor.role,
            matter_id=txn.matter_id,
            action=action,
            timestamp=txn.created_at,
            currency=txn.currency,
            amount=txn.amount,
            resulting_balance=txn.balance_after,
            transaction_id=txn.id,
            flags=frozenset(flags),
            metadata=metadata,
        )

    def _load_original(self, original_id: UUID | str) -> TrustTransaction:
        if isinstance(original_id, UUID):
            txn_uuid = original_id
        else:
            try:
                txn_uuid = UUID(str(original_id))
            except ValueError:
                raise TransactionNotFoundError(str(original_id)) from None
        original = self._store.get_transaction(txn_uuid)
        if original is None:
            logger.info("reversal_target_not_found", extra={"original_id": str(txn_uuid)})
            raise TransactionNotFoundError(str(txn_uuid))
        return original

    def _coerce_amount(self, matter_id: str, amount: Any) -> Money:
        if isinstance(amount, Money):
            money = amount
        else:
            if isinstance(amount, (float, bool)):
                raise InvalidAmountError(
                    amount, "floats are not accepted; use Decimal or str", matter_id
                )
            account = self._store.get_account(matter_id)
            currency = account.currency if account else self._settings.default_currency
            try:
                money = Money.of(amount, currency)
            except (TypeError, ValueError, ArithmeticError) as exc:
                raise InvalidAmountError(amount, str(exc), matter_id) from exc

        if not money.is_positive:
            raise InvalidAmountError(money.to_string(), "must be greater than zero", matter_id)
        if not money.is_quantized:
            raise InvalidAmountError(
                money.to_string(),
                f"more than {money.currency.decimal_places} decimal place(s) "
                f"for {money.currency.code}",
                matter_id,
            )
        return money

    @staticmethod
    def _require_matter_id(matter_id: str) -> str:
        if not isinstance(matter_id, str) or not matter_id.strip():
            raise InvalidRequestError("matter_id is required")
        return matter_id.strip()

    @staticmethod
    def _require_text(value: str, name: str, matter_id: str | None) -> str:
        if not isinstance(value, str) or not value.strip():
            raise InvalidRequestError(f"{name} must not be empty", matter_id)
        return value.strip()

    @staticmethod
    def _check_cancel(
        token: CancellationToken | None, matter_id: str, stage: str
    ) -> None:
        if token is not None:
            token.raise_if_cancelled(matter_id, stage)
