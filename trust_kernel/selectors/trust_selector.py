"""
Module: trust_kernel.selectors.trust_selector
Responsibility: Read-only trust ledger queries: lazy paginated history,
    regulatory export and integrity verification by replay.
Architecture position: Kernel > Selectors.  Reads through the
    PersistenceStore read methods only.

Invariants enforced:
    - History is ordered by sequence and paged by keyset (sequence cursor),
      never by OFFSET, so a page boundary is stable while new entries are
      appended.
    - Integrity replay recomputes every balance from the entries alone and
      compares it to the stored chain and account row.  Nothing is written
      and nothing is corrected.

Audit relevance:
    export() is the verbatim record set handed to regulators; export_digest()
    is the chained SHA-256 over exactly those records, so a recipient can
    prove the export was not edited.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from trust_kernel.domain.dtos import (
    HistoryPage,
    HistoryQuery,
    LedgerIntegrityReport,
    TrustTransaction,
)
from trust_kernel.domain.persistence import PersistenceStore
from trust_kernel.domain.values import Money
from trust_kernel.logging_config import get_logger
from trust_kernel.selectors.base import BaseSelector
from trust_kernel.utils.hashing import hash_records

logger = get_logger("selectors.trust")


class TransactionHistory:
    """
    Lazy, finite, restartable view of a matter's history.

    Each ``iter()`` starts a fresh keyset scan from the query's
    ``after_sequence``; nothing is fetched until iteration begins.
    """

    def __init__(self, store: PersistenceStore, query: HistoryQuery):
        self._store = store
        self._query = query

    @property
    def query(self) -> HistoryQuery:
        return self._query

    def __iter__(self) -> Iterator[TrustTransaction]:
        remaining = self._query.limit
        cursor = self._query.after_sequence
        while remaining is None or remaining > 0:
            size = self._query.page_size
            if remaining is not None:
                size = min(size, remaining)
            rows = self._store.fetch_history_page(self._query, cursor, size)
            if not rows:
                return
            yield from rows
            if remaining is not None:
                remaining -= len(rows)
            cursor = rows[-1].sequence
            if len(rows) < size:
                return

    def page(self) -> HistoryPage:
        """
        First page of the query, sized by ``limit`` or ``page_size``.

        One extra row is read to decide whether a next page exists.
        """
        size = self._query.page_size
        if self._query.limit is not None:
            size = min(size, self._query.limit)
        if size == 0:
            return HistoryPage(items=(), next_cursor=None)
        rows = self._store.fetch_history_page(
            self._query, self._query.after_sequence, size + 1
        )
        items = tuple(rows[:size])
        next_cursor = items[-1].sequence if len(rows) > size else None
        return HistoryPage(items=items, next_cursor=next_cursor)

    def to_list(self) -> list[TrustTransaction]:
        return list(self)


class TrustSelector(BaseSelector):
    """Read-only queries over one store."""

    def history(self, query: HistoryQuery) -> TransactionHistory:
        return TransactionHistory(self.store, query)

    def export(self, matter_id: str) -> list[dict[str, Any]]:
        """Every entry of the matter as a canonical JSON-safe record."""
        return [txn.to_dict() for txn in self.store.iter_transactions_until(matter_id, None)]

    def export_digest(self, matter_id: str) -> str:
        return hash_records(self.export(matter_id))

    def verify_integrity(self, matter_id: str, default_currency: str) -> LedgerIntegrityReport:
        """
        Replay a matter's entries and compare against what is stored.

        Checks, in entry order:
            - sequences run 1..N with no gap or repeat
            - every entry is in the account currency
            - balance_after(n) == balance_after(n-1) + effect(n)
        Then, against the account row:
            - current_balance equals the replayed balance
            - version and last_sequence equal N
        """
        account = self.store.get_account(matter_id)
        currency = account.currency if account is not None else default_currency
        running = Money.zero(currency)
        errors: list[str] = []
        count = 0

        for txn in self.store.iter_transactions_until(matter_id, None):
            count += 1
            if txn.sequence != count:
                errors.append(f"sequence gap: expected {count}, found {txn.sequence}")
            if txn.currency != currency:
                errors.append(
                    f"sequence {txn.sequence}: currency {txn.currency} != account {currency}"
                )
                continue
            running = running + txn.effect
            if txn.balance_after != running:
                errors.append(
                    f"sequence {txn.sequence}: balance_after {txn.balance_after.to_string()} "
                    f"!= replayed {running.to_string()}"
                )

        if account is None:
            stored_balance = Money.zero(currency)
            stored_version = 0
            if count:
                errors.append(f"{count} transaction(s) exist without an account row")
        else:
            stored_balance = account.current_balance
            stored_version = account.version
            if stored_balance != running:
                errors.append(
                    f"current_balance {stored_balance.to_string()} "
                    f"!= replayed {running.to_string()}"
                )
            if account.version != count:
                errors.append(f"version {account.version} != transaction count {count}")
            if account.last_sequence != count:
                errors.append(
                    f"last_sequence {account.last_sequence} != transaction count {count}"
                )

        report = LedgerIntegrityReport(
            matter_id=matter_id,
            transaction_count=count,
            replayed_balance=running,
            stored_balance=stored_balance,
            stored_version=stored_version,
            errors=tuple(errors),
        )
        if not report.is_valid:
            logger.error(
                "ledger_integrity_violation",
                extra={"matter_id": matter_id, "errors": list(report.errors)},
            )
        return report
