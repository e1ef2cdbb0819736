"""
SqlAlchemyTrustStore -- PersistenceStore backed by SQLAlchemy.

Responsibility:
    Persists trust accounts, trust transactions and audit outbox rows, and
    answers the read queries the ledger, selectors and reconciliation
    engine need.  Translates every driver failure into a typed ledger
    error at this boundary.

Architecture position:
    Kernel > Services -- imperative shell.  Implements
    trust_kernel.domain.persistence.PersistenceStore.  Receives its
    sessionmaker by injection; never reaches for a global engine.

Invariants enforced:
    - One durable transaction per unit of work: the transaction row, the
      account balance/version update and the audit outbox row commit
      together or not at all.
    - Optimistic concurrency: the account update is
      ``UPDATE ... WHERE matter_id = :m AND version = :expected``.  Zero
      rows affected means another writer won and raises
      ConcurrencyConflictError.  The unique (matter_id, sequence)
      constraint is the database backstop for the same race.
    - The account row is read with SELECT ... FOR UPDATE (PostgreSQL) so
      writers from other processes queue instead of spinning on conflicts.
    - Storage round-trips are bounded: ``SET LOCAL statement_timeout`` and
      ``lock_timeout`` on PostgreSQL, the engine busy timeout on SQLite.

Failure modes:
    - ConcurrencyConflictError -- version moved or sequence already taken.
    - LedgerTimeoutError -- statement/lock timeout or "database is locked".
    - ImmutabilityViolationError -- a database trigger refused the write.
    - StorageError -- anything else (original logged with exc_info).
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select, text, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from trust_kernel.db.immutability import register_immutability_listeners
from trust_kernel.domain.audit import AuditEvent
from trust_kernel.domain.dtos import (
    HistoryQuery,
    TrustAccountSnapshot,
    TrustTransaction,
    TrustTransactionDraft,
)
from trust_kernel.domain.persistence import OutboxRecord, PersistenceStore, StoreSession
from trust_kernel.exceptions import (
    ConcurrencyConflictError,
    ImmutabilityViolationError,
    LedgerTimeoutError,
    StorageError,
    TrustLedgerError,
)
from trust_kernel.logging_config import get_logger
from trust_kernel.models.audit_outbox import AuditOutboxEntry, OutboxStatus
from trust_kernel.models.trust_account import TrustAccountModel
from trust_kernel.models.trust_transaction import TrustTransactionModel
from trust_kernel.utils.hashing import hash_payload

logger = get_logger("services.trust_store")

_TIMEOUT_MARKERS = (
    "database is locked",
    "statement timeout",
    "lock timeout",
    "canceling statement",
    "lock_timeout",
)

_SEQUENCE_CONFLICT_MARKERS = (
    "uq_trust_txn_matter_sequence",
    "trust_transactions.matter_id, trust_transactions.sequence",
    "uq_trust_txn_reversal_of",
    "trust_transactions.reversal_of_id",
)


def translate_db_error(
    exc: DBAPIError,
    operation: str,
    matter_id: str | None,
    timeout_seconds: float,
) -> TrustLedgerError:
    """Map a driver exception onto the ledger's typed error hierarchy."""
    message = str(exc.orig if exc.orig is not None else exc).lower()

    if "immutability_violation" in message:
        logger.error(
            "immutability_violation_blocked_by_database",
            extra={"operation": operation, "matter_id": matter_id},
        )
        return ImmutabilityViolationError(
            entity_type="database",
            entity_id=matter_id or "unknown",
            reason="write rejected by database immutability trigger",
        )

    if isinstance(exc, IntegrityError) and any(
        marker in message for marker in _SEQUENCE_CONFLICT_MARKERS
    ):
        logger.info(
            "trust_store_sequence_conflict",
            extra={"operation": operation, "matter_id": matter_id},
        )
        return ConcurrencyConflictError(matter_id=matter_id or "unknown", attempts=1)

    if isinstance(exc, OperationalError) and any(
        marker in message for marker in _TIMEOUT_MARKERS
    ):
        logger.warning(
            "trust_store_timeout",
            extra={
                "operation": operation,
                "matter_id": matter_id,
                "timeout_seconds": timeout_seconds,
            },
        )
        return LedgerTimeoutError(
            matter_id=matter_id or "unknown",
            operation=operation,
            timeout_seconds=timeout_seconds,
        )

    logger.error(
        "trust_store_error",
        extra={"operation": operation, "matter_id": matter_id},
        exc_info=exc,
    )
    return StorageError(operation=operation, matter_id=matter_id)


class _SqlAlchemyStoreSession(StoreSession):
    """StoreSession bound to one SQLAlchemy session / DB transaction."""

    def __init__(self, session: Session):
        self._session = session

    def _select_account(self, matter_id: str) -> TrustAccountModel | None:
        return self._session.execute(
            select(TrustAccountModel)
            .where(TrustAccountModel.matter_id == matter_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_account(self, matter_id: str) -> TrustAccountSnapshot | None:
        model = self._select_account(matter_id)
        return TrustAccountSnapshot.from_model(model) if model is not None else None

    def get_or_create_account(
        self,
        matter_id: str,
        currency: str,
        firm_account_id: str,
        client_id: str | None,
        now: datetime,
    ) -> TrustAccountSnapshot:
        model = self._select_account(matter_id)
        if model is not None:
            return TrustAccountSnapshot.from_model(model)

        # Handle creation race: another writer may insert the same matter.
        # Use a savepoint so the surrounding transaction survives.
        savepoint = self._session.begin_nested()
        try:
            model = TrustAccountModel(
                matter_id=matter_id,
                currency=currency,
                current_balance=Decimal("0"),
                version=0,
                last_sequence=0,
                firm_account_id=firm_account_id,
                client_id=client_id,
                created_at=now,
            )
            self._session.add(model)
            self._session.flush()
            savepoint.commit()
            logger.info(
                "trust_account_created",
                extra={
                    "matter_id": matter_id,
                    "currency": currency,
                    "firm_account_id": firm_account_id,
                },
            )
        except IntegrityError:
            logger.debug("trust_account_create_race", extra={"matter_id": matter_id})
            savepoint.rollback()
            model = self._select_account(matter_id)
            if model is None:
                raise
        return TrustAccountSnapshot.from_model(model)

    def append_transaction(self, draft: TrustTransactionDraft) -> TrustTransaction:
        result = self._session.execute(
            update(TrustAccountModel)
            .where(
                TrustAccountModel.matter_id == draft.matter_id,
                TrustAccountModel.version == draft.expected_version,
            )
            .values(
                current_balance=draft.balance_after.amount,
                version=draft.expected_version + 1,
                last_sequence=draft.sequence,
                updated_at=draft.created_at,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(
                "trust_account_version_conflict",
                extra={
                    "matter_id": draft.matter_id,
                    "expected_version": draft.expected_version,
                },
            )
            raise ConcurrencyConflictError(matter_id=draft.matter_id, attempts=1)

        row = TrustTransactionModel(
            matter_id=draft.matter_id,
            sequence=draft.sequence,
            transaction_type=draft.transaction_type.value,
            amount=draft.amount.amount,
            currency=draft.amount.currency.code,
            balance_after=draft.balance_after.amount,
            description=draft.description,
            reference=draft.reference,
            created_at=draft.created_at,
            created_by=draft.created_by,
            actor_role=draft.actor_role,
            reversal_of_id=draft.reversal_of_id,
            shortfall=draft.shortfall,
        )
        self._session.add(row)
        self._session.flush()
        return TrustTransaction.from_model(row)

    def get_transaction(self, transaction_id: UUID) -> TrustTransaction | None:
        row = self._session.get(TrustTransactionModel, transaction_id)
        return TrustTransaction.from_model(row) if row is not None else None

    def find_reversal_of(self, original_id: UUID) -> TrustTransaction | None:
        row = self._session.execute(
            select(TrustTransactionModel).where(
                TrustTransactionModel.reversal_of_id == original_id
            )
        ).scalar_one_or_none()
        return TrustTransaction.from_model(row) if row is not None else None

    def enqueue_audit(self, event: AuditEvent) -> UUID:
        payload = event.to_payload()
        entry = AuditOutboxEntry(
            event_id=event.event_id,
            action=event.action.value,
            matter_id=event.matter_id,
            transaction_id=event.transaction_id,
            actor_id=event.actor_id,
            actor_role=event.actor_role,
            amount=event.amount.amount if event.amount is not None else None,
            resulting_balance=(
                event.resulting_balance.amount
                if event.resulting_balance is not None
                else None
            ),
            currency=event.currency,
            occurred_at=event.timestamp,
            payload=payload,
            payload_hash=hash_payload(payload),
            status=OutboxStatus.PENDING.value,
            attempts=0,
            next_attempt_at=event.timestamp,
        )
        self._session.add(entry)
        self._session.flush()
        logger.debug(
            "audit_event_enqueued",
            extra={
                "event_id": str(event.event_id),
                "action": event.action.value,
                "outbox_entry_id": str(entry.id),
            },
        )
        return entry.id


class SqlAlchemyTrustStore(PersistenceStore):
    """
    PersistenceStore over a SQLAlchemy sessionmaker.

    Contract:
        Every public method runs in its own short transaction except
        ``unit_of_work``, whose transaction spans the ``with`` block.

    Guarantees:
        - Immutability listeners are registered on construction.
        - Callers only ever receive DTOs, never ORM rows.
    """

    HISTORY_SCAN_PAGE = 500

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        storage_timeout_seconds: float = 10.0,
    ):
        self._session_factory = session_factory
        self._timeout_seconds = storage_timeout_seconds
        register_immutability_listeners()

    @property
    def storage_timeout_seconds(self) -> float:
        return self._timeout_seconds

    def _apply_timeouts(self, session: Session) -> None:
        bind = session.get_bind()
        if bind.dialect.name == "postgresql":
            ms = int(self._timeout_seconds * 1000)
            session.execute(text(f"SET LOCAL statement_timeout = {ms}"))
            session.execute(text(f"SET LOCAL lock_timeout = {ms}"))

    @contextmanager
    def _transaction(self, operation: str, matter_id: str | None = None) -> Iterator[Session]:
        session = self._session_factory()
        try:
            self._apply_timeouts(session)
            yield session
            session.commit()
        except DBAPIError as exc:
            session.rollback()
            raise translate_db_error(exc, operation, matter_id, self._timeout_seconds) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def unit_of_work(self, matter_id: str | None = None) -> Iterator[StoreSession]:
        with self._transaction("unit_of_work", matter_id) as session:
            yield _SqlAlchemyStoreSession(session)

    # Read side

    def get_account(self, matter_id: str) -> TrustAccountSnapshot | None:
        with self._transaction("get_account", matter_id) as session:
            model = session.execute(
                select(TrustAccountModel).where(TrustAccountModel.matter_id == matter_id)
            ).scalar_one_or_none()
            return TrustAccountSnapshot.from_model(model) if model is not None else None

    def get_transaction(self, transaction_id: UUID) -> TrustTransaction | None:
        with self._transaction("get_transaction") as session:
            row = session.get(TrustTransactionModel, transaction_id)
            return TrustTransaction.from_model(row) if row is not None else None

    def fetch_history_page(
        self, query: HistoryQuery, cursor: int | None, size: int
    ) -> list[TrustTransaction]:
        seq = TrustTransactionModel.sequence
        stmt = select(TrustTransactionModel).where(
            TrustTransactionModel.matter_id == query.matter_id
        )
        if query.created_from is not None:
            stmt = stmt.where(TrustTransactionModel.created_at >= query.created_from)
        if query.created_to is not None:
            stmt = stmt.where(TrustTransactionModel.created_at <= query.created_to)
        if query.types:
            stmt = stmt.where(
                TrustTransactionModel.transaction_type.in_(sorted(t.value for t in query.types))
            )
        if query.descending:
            if cursor is not None:
                stmt = stmt.where(seq < cursor)
            stmt = stmt.order_by(seq.desc())
        else:
            if cursor is not None:
                stmt = stmt.where(seq > cursor)
            stmt = stmt.order_by(seq.asc())
        stmt = stmt.limit(size)

        with self._transaction("fetch_history_page", query.matter_id) as session:
            rows = session.execute(stmt).scalars().all()
            return [TrustTransaction.from_model(row) for row in rows]

    def iter_transactions_until(
        self, matter_id: str, as_of: datetime | None
    ) -> Iterator[TrustTransaction]:
        cursor = 0
        while True:
            stmt = (
                select(TrustTransactionModel)
                .where(
                    TrustTransactionModel.matter_id == matter_id,
                    TrustTransactionModel.sequence > cursor,
                )
                .order_by(TrustTransactionModel.sequence.asc())
                .limit(self.HISTORY_SCAN_PAGE)
            )
            if as_of is not None:
                stmt = stmt.where(TrustTransactionModel.created_at <= as_of)
            with self._transaction("iter_transactions", matter_id) as session:
                page = [
                    TrustTransaction.from_model(row)
                    for row in session.execute(stmt).scalars().all()
                ]
            if not page:
                return
            yield from page
            cursor = page[-1].sequence
            if len(page) < self.HISTORY_SCAN_PAGE:
                return

    def list_accounts(self, firm_account_id: str | None = None) -> list[TrustAccountSnapshot]:
        stmt = select(TrustAccountModel).order_by(TrustAccountModel.matter_id)
        if firm_account_id is not None:
            stmt = stmt.where(TrustAccountModel.firm_account_id == firm_account_id)
        with self._transaction("list_accounts") as session:
            return [
                TrustAccountSnapshot.from_model(model)
                for model in session.execute(stmt).scalars().all()
            ]

    # Audit outbox

    @staticmethod
    def _to_record(entry: AuditOutboxEntry) -> OutboxRecord:
        return OutboxRecord(
            entry_id=entry.id,
            event=AuditEvent.from_payload(entry.payload),
            attempts=entry.attempts,
            payload_intact=hash_payload(entry.payload) == entry.payload_hash,
        )

    def claim_pending_audit(self, now: datetime, limit: int) -> list[OutboxRecord]:
        stmt = (
            select(AuditOutboxEntry)
            .where(
                AuditOutboxEntry.status == OutboxStatus.PENDING.value,
                or_(
                    AuditOutboxEntry.next_attempt_at.is_(None),
                    AuditOutboxEntry.next_attempt_at <= now,
                ),
            )
            .order_by(AuditOutboxEntry.occurred_at.asc(), AuditOutboxEntry.event_id.asc())
            .limit(limit)
        )
        with self._transaction("claim_pending_audit") as session:
            return [self._to_record(entry) for entry in session.execute(stmt).scalars().all()]

    def get_pending_audit(self, entry_id: UUID) -> OutboxRecord | None:
        with self._transaction("get_pending_audit") as session:
            entry = session.get(AuditOutboxEntry, entry_id)
            if entry is None or entry.status != OutboxStatus.PENDING.value:
                return None
            return self._to_record(entry)

    def _load_for_update(self, session: Session, entry_id: UUID) -> AuditOutboxEntry:
        entry = session.execute(
            select(AuditOutboxEntry)
            .where(AuditOutboxEntry.id == entry_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()
        return entry

    def mark_audit_delivered(self, entry_id: UUID, now: datetime) -> None:
        with self._transaction("mark_audit_delivered") as session:
            entry = self._load_for_update(session, entry_id)
            entry.status = OutboxStatus.DELIVERED.value
            entry.attempts = entry.attempts + 1
            entry.delivered_at = now
            entry.next_attempt_at = None
            entry.last_error = None

    def mark_audit_failed(
        self,
        entry_id: UUID,
        error: str,
        next_attempt_at: datetime | None,
        dead_letter: bool,
    ) -> None:
        with self._transaction("mark_audit_failed") as session:
            entry = self._load_for_update(session, entry_id)
            entry.attempts = entry.attempts + 1
            entry.last_error = error[:4000]
            if dead_letter:
                entry.status = OutboxStatus.DEAD_LETTER.value
                entry.next_attempt_at = None
            else:
                entry.next_attempt_at = next_attempt_at

    def count_audit_by_status(self) -> dict[str, int]:
        stmt = select(AuditOutboxEntry.status, func.count()).group_by(AuditOutboxEntry.status)
        with self._transaction("count_audit_by_status") as session:
            counts = {status.value: 0 for status in OutboxStatus}
            for status, count in session.execute(stmt).all():
                counts[status] = count
            return counts
