"""
ReconciliationEngine -- three-way trust reconciliation.

Compares, at a point in time, the trust ledger (entries replayed), the
stored client sub-ledger balances and the bank statement adjusted for
outstanding checks and deposits in transit.

Architecture: trust_services -- imperative shell over the kernel's
    PersistenceStore read methods.

Invariants enforced:
    - Read-only: nothing is written to the ledger database and nothing is
      corrected.  A mismatch is reported to the caller and to the audit
      sink, never auto-fixed.
    - Deterministic: identical inputs and ledger state give an identical
      ReconciliationResult (no timestamps or ids inside the result).
    - Exact: all arithmetic is Money arithmetic; ``epsilon`` defaults to 0.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from trust_kernel.domain.audit import AuditAction, AuditEvent, AuditFlag
from trust_kernel.domain.authorization import AuthorizationContext
from trust_kernel.domain.clock import Clock, SystemClock, to_utc_bound
from trust_kernel.domain.persistence import PersistenceStore
from trust_kernel.domain.values import Money
from trust_kernel.exceptions import (
    CurrencyMismatchError,
    InvalidAmountError,
    InvalidRequestError,
)
from trust_kernel.logging_config import LogContext, get_logger
from trust_kernel.services.audit_dispatcher import AuditDispatcher

from trust_services.reconciliation_types import (
    MatterPosition,
    ReconciliationResult,
    ReconciliationScope,
    ReconciliationStatus,
)

logger = get_logger("services.reconciliation")

SYSTEM_ACTOR = AuthorizationContext(actor_id="trust-reconciliation", role="system")


class ReconciliationEngine:
    """
    Per-matter and firm-level trust reconciliation.

    Contract:
        - ``reconcile()`` reconciles one matter sub-account.
        - ``reconcile_firm()`` reconciles every matter of a pooled firm
          trust account: journal vs sub-ledgers vs bank.

    Non-goals:
        - Does NOT import bank statements; the caller supplies balances.
        - Does NOT raise on a mismatch; the status carries it.
    """

    def __init__(
        self,
        store: PersistenceStore,
        dispatcher: AuditDispatcher,
        clock: Clock | None = None,
        epsilon: Decimal = Decimal("0"),
        default_currency: str = "USD",
    ) -> None:
        if epsilon < 0:
            raise ValueError("epsilon must be >= 0")
        self._store = store
        self._dispatcher = dispatcher
        self._clock = clock or SystemClock()
        self._epsilon = epsilon
        self._default_currency = default_currency

    def reconcile(
        self,
        matter_id: str,
        bank_statement_balance: Money | Decimal | str | int,
        as_of: date | datetime,
        *,
        outstanding_checks: Iterable[Money | Decimal | str | int] = (),
        deposits_in_transit: Iterable[Money | Decimal | str | int] = (),
        actor: AuthorizationContext | None = None,
    ) -> ReconciliationResult:
        """Reconcile one matter against its share of the bank statement."""
        if not isinstance(matter_id, str) or not matter_id.strip():
            raise InvalidRequestError("matter_id is required")
        matter_id = matter_id.strip()
        cutoff = self._cutoff(as_of, matter_id)

        account = self._store.get_account(matter_id)
        currency = account.currency if account is not None else self._default_currency

        with LogContext.bind(matter_id=matter_id):
            position = self._position(matter_id, currency, cutoff)
            exceptions = self._position_exceptions(position)

            result = self._build_result(
                scope=ReconciliationScope.MATTER,
                scope_id=matter_id,
                cutoff=cutoff,
                currency=currency,
                ledger_balance=position.ledger_balance,
                subledger_balance=position.subledger_balance,
                bank_statement_balance=bank_statement_balance,
                outstanding_checks=outstanding_checks,
                deposits_in_transit=deposits_in_transit,
                transaction_count=position.transaction_count,
                exceptions=exceptions,
            )
            self._report(result, actor or SYSTEM_ACTOR)
        return result

    def reconcile_firm(
        self,
        firm_account_id: str,
        bank_statement_balance: Money | Decimal | str | int,
        as_of: date | datetime,
        *,
        outstanding_checks: Iterable[Money | Decimal | str | int] = (),
        deposits_in_transit: Iterable[Money | Decimal | str | int] = (),
        actor: AuthorizationContext | None = None,
    ) -> ReconciliationResult:
        """
        Three-way reconciliation of a pooled firm trust account.

        ``ledger_balance`` is the sum of every entry effect across the
        firm's matters (the journal view); ``subledger_balance`` is the sum
        of each matter's stored balance_after at the cutoff.
        """
        if not isinstance(firm_account_id, str) or not firm_account_id.strip():
            raise InvalidRequestError("firm_account_id is required")
        firm_account_id = firm_account_id.strip()
        cutoff = self._cutoff(as_of, None)

        accounts = self._store.list_accounts(firm_account_id)
        currencies = sorted({a.currency for a in accounts})
        if len(currencies) > 1:
            raise InvalidRequestError(
                f"firm account {firm_account_id} holds matters in several currencies: "
                f"{', '.join(currencies)}"
            )
        currency = currencies[0] if currencies else self._default_currency

        with LogContext.bind(firm_account_id=firm_account_id):
            positions = tuple(
                self._position(account.matter_id, currency, cutoff) for account in accounts
            )
            journal = Money.zero(currency)
            subledgers = Money.zero(currency)
            exceptions: list[str] = []
            for position in positions:
                journal = journal + position.ledger_balance
                subledgers = subledgers + position.subledger_balance
                exceptions.extend(self._position_exceptions(position))
            if journal != subledgers:
                exceptions.append(
                    f"journal total {journal.to_string()} differs from sub-ledger "
                    f"total {subledgers.to_string()}"
                )

            result = self._build_result(
                scope=ReconciliationScope.FIRM,
                scope_id=firm_account_id,
                cutoff=cutoff,
                currency=currency,
                ledger_balance=journal,
                subledger_balance=subledgers,
                bank_statement_balance=bank_statement_balance,
                outstanding_checks=outstanding_checks,
                deposits_in_transit=deposits_in_transit,
                transaction_count=sum(p.transaction_count for p in positions),
                exceptions=exceptions,
                matters=positions,
            )
            self._report(result, actor or SYSTEM_ACTOR)
        return result

    # Internals

    def _position(self, matter_id: str, currency: str, cutoff: datetime) -> MatterPosition:
        ledger = Money.zero(currency)
        subledger = Money.zero(currency)
        count = 0
        for txn in self._store.iter_transactions_until(matter_id, cutoff):
            ledger = ledger + txn.effect
            subledger = txn.balance_after
            count += 1
        return MatterPosition(
            matter_id=matter_id,
            ledger_balance=ledger,
            subledger_balance=subledger,
            transaction_count=count,
        )

    @staticmethod
    def _position_exceptions(position: MatterPosition) -> list[str]:
        found: list[str] = []
        if position.ledger_balance != position.subledger_balance:
            found.append(
                f"matter {position.matter_id}: sub-ledger balance "
                f"{position.subledger_balance.to_string()} differs from replayed "
                f"ledger balance {position.ledger_balance.to_string()}"
            )
        if position.ledger_balance.is_negative:
            found.append(
                f"matter {position.matter_id}: negative trust balance "
                f"{position.ledger_balance.to_string()}"
            )
        return found

    def _build_result(
        self,
        *,
        scope: ReconciliationScope,
        scope_id: str,
        cutoff: datetime,
        currency: str,
        ledger_balance: Money,
        subledger_balance: Money,
        bank_statement_balance: Any,
        outstanding_checks: Iterable[Any],
        deposits_in_transit: Iterable[Any],
        transaction_count: int,
        exceptions: list[str],
        matters: tuple[MatterPosition, ...] = (),
    ) -> ReconciliationResult:
        bank = self._coerce(bank_statement_balance, currency, "bank_statement_balance", scope_id)
        checks = self._total(outstanding_checks, currency, "outstanding_checks", scope_id)
        in_transit = self._total(deposits_in_transit, currency, "deposits_in_transit", scope_id)

        adjusted = bank + in_transit - checks
        discrepancy = ledger_balance - adjusted
        status = (
            ReconciliationStatus.MATCHED
            if abs(discrepancy.amount) <= self._epsilon
            else ReconciliationStatus.MISMATCHED
        )
        return ReconciliationResult(
            scope=scope,
            scope_id=scope_id,
            as_of=cutoff,
            currency=currency,
            ledger_balance=ledger_balance,
            subledger_balance=subledger_balance,
            bank_statement_balance=bank,
            outstanding_checks=checks,
            deposits_in_transit=in_transit,
            adjusted_bank_balance=adjusted,
            discrepancy=discrepancy,
            status=status,
            transaction_count=transaction_count,
            exceptions=tuple(exceptions),
            matters=matters,
        )

    def _report(self, result: ReconciliationResult, actor: AuthorizationContext) -> None:
        log_extra = {
            "scope": result.scope,
            "scope_id": result.scope_id,
            "status": result.status,
            "ledger_balance": result.ledger_balance,
            "adjusted_bank_balance": result.adjusted_bank_balance,
            "discrepancy": result.discrepancy,
            "exception_count": len(result.exceptions),
        }
        if not result.requires_partner_review:
            logger.info("reconciliation_matched", extra=log_extra)
            return

        logger.warning("reconciliation_requires_review", extra=log_extra)
        if result.status is not ReconciliationStatus.MISMATCHED:
            return

        event = AuditEvent(
            actor_id=actor.actor_id,
            actor_role=actor.role,
            matter_id=result.scope_id,
            action=AuditAction.RECONCILIATION_MISMATCH,
            timestamp=self._clock.now(),
            currency=result.currency,
            amount=(
                result.discrepancy if result.scope is ReconciliationScope.MATTER else None
            ),
            resulting_balance=(
                result.ledger_balance if result.scope is ReconciliationScope.MATTER else None
            ),
            flags=frozenset({AuditFlag.REQUIRES_REVIEW}),
            metadata=result.to_dict(),
        )
        self._dispatcher.deliver_direct(event)

    @staticmethod
    def _cutoff(as_of: date | datetime, matter_id: str | None) -> datetime:
        try:
            return to_utc_bound(as_of)
        except (TypeError, ValueError) as exc:
            raise InvalidRequestError(f"as_of: {exc}", matter_id) from exc

    @staticmethod
    def _coerce(value: Any, currency: str, label: str, scope_id: str) -> Money:
        if isinstance(value, Money):
            if value.currency.code != currency:
                raise CurrencyMismatchError(scope_id, currency, value.currency.code)
            return value
        if isinstance(value, (float, bool)):
            raise InvalidAmountError(value, f"{label}: floats are not accepted", scope_id)
        try:
            return Money.of(value, currency)
        except (TypeError, ValueError, ArithmeticError) as exc:
            raise InvalidAmountError(value, f"{label}: {exc}", scope_id) from exc

    def _total(self, values: Iterable[Any], currency: str, label: str, scope_id: str) -> Money:
        total = Money.zero(currency)
        for value in values:
            item = self._coerce(value, currency, label, scope_id)
            if item.is_negative:
                raise InvalidAmountError(item.to_string(), f"{label} must not be negative", scope_id)
            total = total + item
        return total
