"""
Audit outbox delivery tests.

Every ledger write commits one outbox row with the entry.  The dispatcher
delivers rows to the sink, retries with backoff, and dead-letters after the
configured attempts.  A sink outage never fails or rolls back a write.
"""

import dataclasses
from datetime import timedelta

import pytest
from sqlalchemy import select

from trust_kernel.domain.audit import AuditAction, AuditEvent
from trust_kernel.domain.values import Money
from trust_kernel.models.audit_outbox import AuditOutboxEntry, OutboxStatus
from trust_kernel.services.audit_dispatcher import AuditDispatcher, DispatchPolicy
from trust_kernel.services.audit_sinks import InMemoryAuditSink, LoggingAuditSink
from trust_kernel.services.trust_ledger import TrustLedger, TrustLedgerSettings
from trust_kernel.utils.hashing import hash_payload


def _outbox_rows(session_factory) -> list[AuditOutboxEntry]:
    with session_factory() as session:
        return list(
            session.execute(
                select(AuditOutboxEntry).order_by(AuditOutboxEntry.occurred_at)
            ).scalars()
        )


class TestOutboxWrittenWithEntry:
    def test_outbox_row_matches_entry(self, deposit, session_factory):
        txn = deposit("M-O1", "250.00")

        rows = _outbox_rows(session_factory)
        assert len(rows) == 1
        row = rows[0]
        assert row.transaction_id == txn.id
        assert row.action == AuditAction.TRUST_DEPOSIT.value
        assert row.status == OutboxStatus.DELIVERED.value
        assert row.attempts == 1
        assert row.payload_hash == hash_payload(row.payload)
        assert row.payload["amount"] == "250.00"

    def test_payload_round_trips_to_event(self, deposit, audit_sink, session_factory):
        deposit("M-O2", "10.00")
        row = _outbox_rows(session_factory)[0]

        event = AuditEvent.from_payload(row.payload)
        assert event == audit_sink.events[0]


class TestInlineDeliveryFailure:
    def test_failing_sink_leaves_entry_pending(self, ledger, deposit, audit_sink, store):
        audit_sink.fail_next(1)
        txn = deposit("M-O3", "75.00")

        assert ledger.get_balance("M-O3").to_string() == "75.00"
        assert audit_sink.events == []
        counts = store.count_audit_by_status()
        assert counts == {"pending": 1, "delivered": 0, "dead_letter": 0}
        assert txn.sequence == 1

    def test_failure_records_error_and_backoff(self, deposit, audit_sink, session_factory, clock):
        audit_sink.fail_next(1)
        deposit("M-O4", "5.00")

        row = _outbox_rows(session_factory)[0]
        assert row.attempts == 1
        assert "sink unavailable" in row.last_error
        assert row.next_attempt_at == clock.now() + timedelta(seconds=1)

    def test_deliver_inline_disabled(self, store, dispatcher, clock, bookkeeper, audit_sink):
        ledger = TrustLedger(
            store, dispatcher=dispatcher, clock=clock,
            settings=TrustLedgerSettings(deliver_inline=False),
        )
        ledger.record_transaction(
            "M-O5", "deposit", Money.of("1.00", "USD"), "Retainer", actor=bookkeeper
        )
        assert audit_sink.events == []
        assert store.count_audit_by_status()["pending"] == 1

        report = dispatcher.dispatch_pending()
        assert report.delivered == 1
        assert len(audit_sink.events) == 1


class TestDispatchPending:
    def test_retry_waits_for_backoff(self, deposit, dispatcher, audit_sink, clock, store):
        audit_sink.fail_next(1)
        deposit("M-D1", "20.00")

        # Not due yet: next_attempt_at is one second ahead.
        assert dispatcher.dispatch_pending().attempted == 0

        clock.advance(2)
        report = dispatcher.dispatch_pending()
        assert report.delivered == 1
        assert [e.matter_id for e in audit_sink.events] == ["M-D1"]
        assert store.count_audit_by_status()["delivered"] == 1

    def test_dead_letter_after_max_attempts(
        self, deposit, dispatcher, audit_sink, clock, store, session_factory
    ):
        audit_sink.fail_next(10)
        deposit("M-D2", "20.00")

        clock.advance(3600)
        assert dispatcher.dispatch_pending().failed == 1
        clock.advance(3600)
        report = dispatcher.dispatch_pending()
        assert report.dead_lettered == 1

        row = _outbox_rows(session_factory)[0]
        assert row.status == OutboxStatus.DEAD_LETTER.value
        assert row.attempts == 3
        assert row.next_attempt_at is None

        clock.advance(3600)
        assert dispatcher.dispatch_pending().attempted == 0
        assert store.count_audit_by_status()["dead_letter"] == 1

    def test_oldest_first(self, deposit, dispatcher, audit_sink, clock):
        audit_sink.fail_next(2)
        deposit("M-D3", "1.00")
        clock.advance(1)
        deposit("M-D3", "2.00")

        clock.advance(600)
        dispatcher.dispatch_pending()
        assert [e.amount.to_string() for e in audit_sink.events] == ["1.00", "2.00"]

    def test_batch_size_bounds_a_pass(self, store, clock, bookkeeper):
        sink = InMemoryAuditSink()
        dispatcher = AuditDispatcher(
            store, sink, clock=clock, policy=DispatchPolicy(batch_size=2)
        )
        ledger = TrustLedger(
            store, dispatcher=dispatcher, clock=clock,
            settings=TrustLedgerSettings(deliver_inline=False),
        )
        for i in range(5):
            ledger.record_transaction("M-D4", "deposit", f"{i + 1}.00", "Retainer", actor=bookkeeper)

        assert dispatcher.dispatch_pending().delivered == 2
        assert dispatcher.dispatch_pending().delivered == 2
        assert dispatcher.dispatch_pending().delivered == 1
        assert dispatcher.dispatch_pending().attempted == 0

    def test_deliver_skips_non_pending(self, deposit, dispatcher, session_factory):
        deposit("M-D5", "1.00")
        row = _outbox_rows(session_factory)[0]
        assert dispatcher.deliver(row.id) is False


class TestPayloadIntegrity:
    def test_tampered_payload_is_dead_lettered(
        self, deposit, dispatcher, audit_sink, store, monkeypatch, session_factory
    ):
        audit_sink.fail_next(1)
        deposit("M-T1", "100.00")
        row = _outbox_rows(session_factory)[0]

        real_get = store.get_pending_audit

        def tampered(entry_id):
            record = real_get(entry_id)
            return dataclasses.replace(record, payload_intact=False)

        monkeypatch.setattr(store, "get_pending_audit", tampered)
        assert dispatcher.deliver(row.id) is False

        row = _outbox_rows(session_factory)[0]
        assert row.status == OutboxStatus.DEAD_LETTER.value
        assert row.last_error == "payload hash mismatch"
        assert audit_sink.events == []

    def test_intact_payload_detected(self, deposit, store, session_factory, audit_sink):
        audit_sink.fail_next(1)
        deposit("M-T2", "1.00")
        row = _outbox_rows(session_factory)[0]

        record = store.get_pending_audit(row.id)
        assert record.payload_intact
        assert record.event.transaction_id == row.transaction_id


class TestDeliverDirect:
    def test_delivers_without_outbox_row(self, dispatcher, audit_sink, store, clock):
        event = AuditEvent(
            actor_id="system",
            actor_role="system",
            matter_id="M-X",
            action=AuditAction.RECONCILIATION_MISMATCH,
            timestamp=clock.now(),
            currency="USD",
        )
        assert dispatcher.deliver_direct(event) is True
        assert audit_sink.events == [event]
        assert sum(store.count_audit_by_status().values()) == 0

    def test_bounded_retries_then_abandon(self, dispatcher, audit_sink, clock, captured_logs):
        audit_sink.fail_next(5)
        event = AuditEvent(
            actor_id="system",
            actor_role="system",
            matter_id="M-X",
            action=AuditAction.RECONCILIATION_MISMATCH,
            timestamp=clock.now(),
            currency="USD",
        )
        assert dispatcher.deliver_direct(event) is False
        assert audit_sink.attempts == 2
        messages = [r["message"] for r in captured_logs()]
        assert "audit_direct_delivery_abandoned" in messages


class TestDispatchPolicy:
    def test_backoff_doubles_and_caps(self):
        policy = DispatchPolicy(retry_base_delay_seconds=1.0, retry_max_delay_seconds=5.0)
        assert policy.backoff(1) == timedelta(seconds=1)
        assert policy.backoff(2) == timedelta(seconds=2)
        assert policy.backoff(3) == timedelta(seconds=4)
        assert policy.backoff(4) == timedelta(seconds=5)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_delivery_attempts": 0},
            {"batch_size": 0},
            {"retry_base_delay_seconds": 10.0, "retry_max_delay_seconds": 1.0},
        ],
    )
    def test_invalid_policy(self, kwargs):
        with pytest.raises(ValueError):
            DispatchPolicy(**kwargs)


class TestLoggingAuditSink:
    def test_event_written_as_log_record(self, store, clock, bookkeeper, captured_logs):
        ledger = TrustLedger(store, LoggingAuditSink(), clock=clock)
        txn = ledger.record_transaction(
            "M-LOGSINK", "deposit", Money.of("75.00", "USD"), "Retainer", actor=bookkeeper
        )

        records = [r for r in captured_logs() if r["message"] == "trust_audit_event"]
        assert len(records) == 1
        audit = records[0]["audit"]
        assert records[0]["logger"] == "trust_kernel.audit"
        assert audit["action"] == AuditAction.TRUST_DEPOSIT.value
        assert audit["transaction_id"] == str(txn.id)
        assert audit["amount"] == "75.00"
        assert store.count_audit_by_status()["delivered"] == 1
