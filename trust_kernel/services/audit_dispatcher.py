"""
AuditDispatcher -- delivers audit outbox rows to the AuditSink.

Responsibility:
    Reads pending AuditOutboxEntry rows through the PersistenceStore, hands
    each event to the AuditSink, and records the outcome on the row:
    delivered, retry later (exponential backoff), or dead-lettered after
    ``max_delivery_attempts``.

Architecture position:
    Kernel > Services -- imperative shell.  Called by TrustLedger right
    after a write commits (inline delivery) and by operational tooling on
    a schedule (``dispatch_pending``).

Invariants enforced:
    - A delivery failure never propagates to the ledger write that produced
      the event.  Every failure is logged and written to the outbox row.
    - Retry bound: an entry is attempted at most ``max_delivery_attempts``
      times, then moved to dead_letter.
    - An entry whose payload no longer matches its payload_hash is
      dead-lettered without being delivered.

Delivery semantics:
    At-least-once.  A crash between ``sink.record`` and the outbox update
    redelivers the event; sinks dedupe on ``event_id``.

Failure modes:
    - StorageError / LedgerTimeoutError from the store while recording the
      outcome are logged; the row stays pending and is retried on the next
      dispatch.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import timedelta
from uuid import UUID

from trust_kernel.domain.audit import AuditEvent, AuditSink
from trust_kernel.domain.clock import Clock, SystemClock
from trust_kernel.domain.persistence import OutboxRecord, PersistenceStore
from trust_kernel.exceptions import TrustLedgerError
from trust_kernel.logging_config import get_logger

logger = get_logger("services.audit_dispatcher")


@dataclass(frozen=True)
class DispatchPolicy:
    """Retry and batching bounds for audit delivery."""

    max_delivery_attempts: int = 8
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 300.0
    batch_size: int = 100
    # Bounded in-process retries for events that bypass the outbox.
    direct_attempts: int = 3
    direct_retry_delay_seconds: float = 0.05

    def __post_init__(self) -> None:
        if self.max_delivery_attempts < 1:
            raise ValueError("max_delivery_attempts must be >= 1")
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.retry_base_delay_seconds < 0 or self.retry_max_delay_seconds < 0:
            raise ValueError("retry delays must be >= 0")
        if self.retry_max_delay_seconds < self.retry_base_delay_seconds:
            raise ValueError("retry_max_delay_seconds must be >= retry_base_delay_seconds")
        if self.direct_attempts < 1:
            raise ValueError("direct_attempts must be >= 1")

    def backoff(self, attempts_made: int) -> timedelta:
        """Delay before the next attempt after ``attempts_made`` failures."""
        seconds = self.retry_base_delay_seconds * (2 ** max(attempts_made - 1, 0))
        return timedelta(seconds=min(seconds, self.retry_max_delay_seconds))


@dataclass(frozen=True)
class DispatchReport:
    """Counts from one ``dispatch_pending`` pass."""

    delivered: int = 0
    failed: int = 0
    dead_lettered: int = 0

    @property
    def attempted(self) -> int:
        return self.delivered + self.failed + self.dead_lettered


class AuditDispatcher:
    """
    Outbox-to-sink delivery with retries and dead-lettering.

    Contract:
        ``deliver``, ``dispatch_pending`` and ``deliver_direct`` never
        raise because of a sink failure.

    Non-goals:
        - Does NOT run its own thread.  The embedding process decides
          when to call ``dispatch_pending``.
    """

    def __init__(
        self,
        store: PersistenceStore,
        sink: AuditSink,
        clock: Clock | None = None,
        policy: DispatchPolicy | None = None,
    ):
        self._store = store
        self._sink = sink
        self._clock = clock or SystemClock()
        self._policy = policy or DispatchPolicy()

    @property
    def sink(self) -> AuditSink:
        return self._sink

    @property
    def policy(self) -> DispatchPolicy:
        return self._policy

    def deliver(self, entry_id: UUID) -> bool:
        """
        Attempt one delivery of a single pending outbox entry.

        Returns True if the entry is now delivered.  An entry that is no
        longer pending (already delivered or dead-lettered) returns False.
        """
        try:
            record = self._store.get_pending_audit(entry_id)
        except TrustLedgerError as exc:
            logger.warning(
                "audit_outbox_read_failed",
                extra={"outbox_entry_id": str(entry_id), "error_code": exc.code},
            )
            return False
        if record is None:
            return False
        return self._attempt(record) == "delivered"

    def dispatch_pending(self) -> DispatchReport:
        """Deliver one batch of due pending entries, oldest first."""
        records = self._store.claim_pending_audit(
            self._clock.now(), self._policy.batch_size
        )
        counts = {"delivered": 0, "failed": 0, "dead_lettered": 0}
        for record in records:
            counts[self._attempt(record)] += 1

        report = DispatchReport(**counts)
        if report.attempted:
            logger.info(
                "audit_dispatch_completed",
                extra={
                    "delivered": report.delivered,
                    "failed": report.failed,
                    "dead_lettered": report.dead_lettered,
                },
            )
        return report

    def deliver_direct(self, event: AuditEvent) -> bool:
        """
        Deliver an event that has no outbox row.

        Used for read-only operations (reconciliation) that must not write
        to the ledger database.  Retries ``direct_attempts`` times; a final
        failure is logged and reported as False.
        """
        last_error: Exception | None = None
        for attempt in range(1, self._policy.direct_attempts + 1):
            try:
                self._sink.record(event)
                return True
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "audit_delivery_failed",
                    extra={
                        "event_id": str(event.event_id),
                        "action": event.action.value,
                        "attempt": attempt,
                        "error": str(exc),
                    },
                )
                if attempt < self._policy.direct_attempts:
                    time.sleep(self._policy.direct_retry_delay_seconds)

        logger.error(
            "audit_direct_delivery_abandoned",
            extra={
                "event_id": str(event.event_id),
                "action": event.action.value,
                "matter_id": event.matter_id,
                "attempts": self._policy.direct_attempts,
                "error": str(last_error),
            },
        )
        return False

    def _attempt(self, record: OutboxRecord) -> str:
        event_id = str(record.event.event_id)

        if not record.payload_intact:
            logger.error(
                "audit_payload_hash_mismatch",
                extra={"outbox_entry_id": str(record.entry_id), "event_id": event_id},
            )
            return self._record_failure(
                record, "payload hash mismatch", dead_letter=True
            )

        try:
            self._sink.record(record.event)
        except Exception as exc:
            attempts_made = record.attempts + 1
            dead_letter = attempts_made >= self._policy.max_delivery_attempts
            logger.warning(
                "audit_delivery_failed",
                extra={
                    "outbox_entry_id": str(record.entry_id),
                    "event_id": event_id,
                    "attempt": attempts_made,
                    "max_attempts": self._policy.max_delivery_attempts,
                    "error": str(exc),
                },
            )
            return self._record_failure(record, str(exc) or type(exc).__name__, dead_letter)

        try:
            self._store.mark_audit_delivered(record.entry_id, self._clock.now())
        except TrustLedgerError as exc:
            # Row stays pending; the next pass redelivers and the sink dedupes.
            logger.warning(
                "audit_outbox_update_failed",
                extra={
                    "outbox_entry_id": str(record.entry_id),
                    "event_id": event_id,
                    "error_code": exc.code,
                },
            )
            return "failed"

        logger.debug(
            "audit_delivered",
            extra={"outbox_entry_id": str(record.entry_id), "event_id": event_id},
        )
        return "delivered"

    def _record_failure(self, record: OutboxRecord, error: str, dead_letter: bool) -> str:
        attempts_made = record.attempts + 1
        next_attempt_at = (
            None
            if dead_letter
            else self._clock.now() + self._policy.backoff(attempts_made)
        )
        try:
            self._store.mark_audit_failed(
                record.entry_id,
                error=error,
                next_attempt_at=next_attempt_at,
                dead_letter=dead_letter,
            )
        except TrustLedgerError as exc:
            logger.warning(
                "audit_outbox_update_failed",
                extra={
                    "outbox_entry_id": str(record.entry_id),
                    "event_id": str(record.event.event_id),
                    "error_code": exc.code,
                },
            )
            return "failed"

        if dead_letter:
            logger.error(
                "audit_dead_lettered",
                extra={
                    "outbox_entry_id": str(record.entry_id),
                    "event_id": str(record.event.event_id),
                    "matter_id": record.event.matter_id,
                    "attempts": attempts_made,
                    "error": error,
                },
            )
            return "dead_lettered"
        return "failed"
