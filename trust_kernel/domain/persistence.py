"""
Persistence -- the storage contract the trust ledger depends on.

Responsibility:
    Declares PersistenceStore (read queries, outbox delivery bookkeeping and
    the unit-of-work factory) and StoreSession (the operations available
    inside one durable transaction).  TrustLedger depends only on these
    interfaces; SqlAlchemyTrustStore is the shipped implementation.

Architecture position:
    Kernel > Domain -- interfaces only, zero I/O.

Contract for implementations:
    - ``unit_of_work()`` commits on normal exit and rolls back on exception.
      Nothing written inside a unit of work is visible to other readers
      until it commits.
    - ``append_transaction`` raises ConcurrencyConflictError when the
      account's version no longer equals ``draft.expected_version``.
    - Driver timeouts and lock waits are raised as LedgerTimeoutError;
      no driver exception type or SQL text crosses this boundary.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from trust_kernel.domain.audit import AuditEvent
from trust_kernel.domain.dtos import (
    HistoryQuery,
    TrustAccountSnapshot,
    TrustTransaction,
    TrustTransactionDraft,
)


@dataclass(frozen=True)
class OutboxRecord:
    """A pending audit outbox row handed to the dispatcher."""

    entry_id: UUID
    event: AuditEvent
    attempts: int
    # False when the stored payload no longer matches its payload_hash.
    payload_intact: bool = True


class StoreSession(ABC):
    """Operations available inside one unit of work."""

    @abstractmethod
    def get_or_create_account(
        self,
        matter_id: str,
        currency: str,
        firm_account_id: str,
        client_id: str | None,
        now: datetime,
    ) -> TrustAccountSnapshot:
        """Return the matter's account, creating it with a zero balance if absent."""

    @abstractmethod
    def get_account(self, matter_id: str) -> TrustAccountSnapshot | None:
        ...

    @abstractmethod
    def append_transaction(self, draft: TrustTransactionDraft) -> TrustTransaction:
        """Insert the entry and advance the account balance and version."""

    @abstractmethod
    def get_transaction(self, transaction_id: UUID) -> TrustTransaction | None:
        ...

    @abstractmethod
    def find_reversal_of(self, original_id: UUID) -> TrustTransaction | None:
        ...

    @abstractmethod
    def enqueue_audit(self, event: AuditEvent) -> UUID:
        """Write an outbox row for the event.  Returns the outbox entry id."""


class PersistenceStore(ABC):
    """Durable storage for trust accounts, transactions and the audit outbox."""

    @abstractmethod
    def unit_of_work(self, matter_id: str | None = None) -> AbstractContextManager[StoreSession]:
        ...

    # Read side

    @abstractmethod
    def get_account(self, matter_id: str) -> TrustAccountSnapshot | None:
        ...

    @abstractmethod
    def get_transaction(self, transaction_id: UUID) -> TrustTransaction | None:
        ...

    @abstractmethod
    def fetch_history_page(
        self, query: HistoryQuery, cursor: int | None, size: int
    ) -> list[TrustTransaction]:
        """
        One keyset page of a matter's history.

        ``cursor`` is the last sequence already returned (exclusive bound in
        the query's direction), or None for the first page.
        """

    @abstractmethod
    def iter_transactions_until(
        self, matter_id: str, as_of: datetime | None
    ) -> Iterator[TrustTransaction]:
        """All entries of a matter with created_at <= as_of, ascending by sequence."""

    @abstractmethod
    def list_accounts(self, firm_account_id: str | None = None) -> list[TrustAccountSnapshot]:
        ...

    # Audit outbox

    @abstractmethod
    def claim_pending_audit(self, now: datetime, limit: int) -> list[OutboxRecord]:
        """Pending outbox rows due for delivery, oldest first."""

    @abstractmethod
    def get_pending_audit(self, entry_id: UUID) -> OutboxRecord | None:
        ...

    @abstractmethod
    def mark_audit_delivered(self, entry_id: UUID, now: datetime) -> None:
        ...

    @abstractmethod
    def mark_audit_failed(
        self,
        entry_id: UUID,
        error: str,
        next_attempt_at: datetime | None,
        dead_letter: bool,
    ) -> None:
        ...

    @abstractmethod
    def count_audit_by_status(self) -> dict[str, int]:
        ...
