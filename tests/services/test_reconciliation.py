"""
Three-way reconciliation tests.

Ledger (replayed entries) vs stored sub-ledger vs bank statement adjusted
for outstanding checks and deposits in transit.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from trust_kernel.domain.audit import AuditAction
from trust_kernel.domain.values import Money
from trust_kernel.exceptions import (
    CurrencyMismatchError,
    InvalidAmountError,
    InvalidRequestError,
)
from trust_services.reconciliation_service import ReconciliationEngine
from trust_services.reconciliation_types import ReconciliationScope, ReconciliationStatus

AS_OF = date(2024, 1, 1)


def usd(amount: str) -> Money:
    return Money.of(amount, "USD")


class TestMatterReconciliation:
    def test_bank_one_cent_short_is_mismatched(self, deposit, reconciliation, audit_sink):
        deposit("M-R1", "1000.00")

        result = reconciliation.reconcile("M-R1", usd("999.99"), AS_OF)

        assert result.status is ReconciliationStatus.MISMATCHED
        assert result.discrepancy == usd("0.01")
        assert result.requires_partner_review
        mismatch_events = [
            e for e in audit_sink.events if e.action is AuditAction.RECONCILIATION_MISMATCH
        ]
        assert len(mismatch_events) == 1
        assert mismatch_events[0].matter_id == "M-R1"
        assert mismatch_events[0].amount == usd("0.01")
        assert mismatch_events[0].requires_review

    def test_matched(self, deposit, reconciliation, audit_sink):
        deposit("M-R2", "1000.00")

        result = reconciliation.reconcile("M-R2", "1000.00", AS_OF)

        assert result.is_matched
        assert result.discrepancy.is_zero
        assert result.transaction_count == 1
        assert not result.requires_partner_review
        assert all(e.action is not AuditAction.RECONCILIATION_MISMATCH for e in audit_sink.events)

    def test_outstanding_checks_and_deposits_in_transit(self, ledger, deposit, bookkeeper, reconciliation):
        deposit("M-R3", "1000.00")
        ledger.record_transaction("M-R3", "withdrawal", usd("300.00"), "Check 1042", actor=bookkeeper)
        deposit("M-R3", "200.00")

        # Bank has not cleared the check nor received the last deposit.
        result = reconciliation.reconcile(
            "M-R3",
            usd("1000.00"),
            AS_OF,
            outstanding_checks=[usd("300.00")],
            deposits_in_transit=["200.00"],
        )

        assert result.adjusted_bank_balance == usd("900.00")
        assert result.ledger_balance == usd("900.00")
        assert result.is_matched

    def test_as_of_excludes_later_entries(self, deposit, reconciliation, clock):
        deposit("M-R4", "100.00")
        clock.advance(int(timedelta(days=2).total_seconds()))
        deposit("M-R4", "50.00")

        result = reconciliation.reconcile("M-R4", "100.00", AS_OF)
        assert result.is_matched
        assert result.transaction_count == 1
        assert result.as_of == datetime.combine(
            AS_OF, datetime.max.time(), tzinfo=timezone.utc
        )

        later = reconciliation.reconcile("M-R4", "150.00", date(2024, 1, 3))
        assert later.is_matched
        assert later.transaction_count == 2

    def test_aware_datetime_cutoff(self, deposit, reconciliation, clock):
        deposit("M-R5", "10.00")
        result = reconciliation.reconcile("M-R5", "0", clock.now() - timedelta(seconds=1))
        assert result.transaction_count == 0
        assert result.ledger_balance.is_zero

    def test_naive_datetime_rejected(self, reconciliation):
        with pytest.raises(InvalidRequestError):
            reconciliation.reconcile("M-R5", "0", datetime(2024, 1, 1))

    def test_unknown_matter_reconciles_at_zero(self, reconciliation):
        result = reconciliation.reconcile("M-NONE", "0.00", AS_OF)
        assert result.is_matched
        assert result.currency == "USD"

    def test_idempotent(self, deposit, reconciliation):
        deposit("M-R6", "42.00")
        first = reconciliation.reconcile("M-R6", "40.00", AS_OF, outstanding_checks=["1.00"])
        second = reconciliation.reconcile("M-R6", "40.00", AS_OF, outstanding_checks=["1.00"])
        assert first == second
        assert first.to_dict() == second.to_dict()

    def test_reconciliation_writes_nothing(self, deposit, reconciliation, store):
        deposit("M-R7", "10.00")
        before = store.count_audit_by_status()
        reconciliation.reconcile("M-R7", "9.00", AS_OF)
        assert store.count_audit_by_status() == before
        assert store.get_account("M-R7").version == 1

    def test_epsilon_tolerance(self, deposit, store, dispatcher, clock):
        deposit("M-R8", "100.00")
        tolerant = ReconciliationEngine(store, dispatcher, clock=clock, epsilon=Decimal("0.05"))
        assert tolerant.reconcile("M-R8", "99.97", AS_OF).is_matched
        assert not tolerant.reconcile("M-R8", "99.90", AS_OF).is_matched

    def test_negative_epsilon_rejected(self, store, dispatcher):
        with pytest.raises(ValueError):
            ReconciliationEngine(store, dispatcher, epsilon=Decimal("-0.01"))

    def test_sink_failure_does_not_raise(self, deposit, reconciliation, audit_sink):
        deposit("M-R9", "10.00")
        audit_sink.fail_next(5)
        result = reconciliation.reconcile("M-R9", "1.00", AS_OF)
        assert result.status is ReconciliationStatus.MISMATCHED

    def test_shortfall_is_flagged_as_exception(self, ledger, deposit, partner, reconciliation):
        deposit("M-R10", "10.00")
        ledger.record_transaction(
            "M-R10", "withdrawal", usd("15.00"), "Urgent",
            actor=partner, authorize_shortfall=True,
        )
        result = reconciliation.reconcile("M-R10", "-5.00", AS_OF)
        assert result.is_matched
        assert result.requires_partner_review
        assert any("negative trust balance" in e for e in result.exceptions)


class TestInputValidation:
    def test_float_bank_balance_rejected(self, reconciliation):
        with pytest.raises(InvalidAmountError):
            reconciliation.reconcile("M-V", 100.0, AS_OF)

    def test_currency_mismatch(self, deposit, reconciliation):
        deposit("M-V", "1.00")
        with pytest.raises(CurrencyMismatchError):
            reconciliation.reconcile("M-V", Money.of("1.00", "EUR"), AS_OF)

    def test_negative_outstanding_check_rejected(self, reconciliation):
        with pytest.raises(InvalidAmountError):
            reconciliation.reconcile("M-V", "0", AS_OF, outstanding_checks=["-1.00"])

    def test_empty_matter_id(self, reconciliation):
        with pytest.raises(InvalidRequestError):
            reconciliation.reconcile(" ", "0", AS_OF)


class TestFirmReconciliation:
    def test_firm_totals_across_matters(self, deposit, ledger, bookkeeper, reconciliation):
        deposit("M-F1", "1000.00")
        deposit("M-F2", "250.00")
        ledger.record_transaction("M-F2", "refund", usd("50.00"), "Refund", actor=bookkeeper)

        result = reconciliation.reconcile_firm("IOLTA-1", "1200.00", AS_OF)

        assert result.scope is ReconciliationScope.FIRM
        assert result.ledger_balance == usd("1200.00")
        assert result.subledger_balance == usd("1200.00")
        assert result.is_matched
        assert result.transaction_count == 3
        assert {p.matter_id: p.ledger_balance for p in result.matters} == {
            "M-F1": usd("1000.00"),
            "M-F2": usd("200.00"),
        }

    def test_other_firm_accounts_excluded(self, ledger, deposit, bookkeeper, reconciliation):
        deposit("M-F3", "100.00")
        ledger.record_transaction(
            "M-F4", "deposit", usd("900.00"), "Retainer",
            actor=bookkeeper, firm_account_id="IOLTA-2",
        )
        assert reconciliation.reconcile_firm("IOLTA-1", "100.00", AS_OF).is_matched
        assert reconciliation.reconcile_firm("IOLTA-2", "900.00", AS_OF).is_matched

    def test_firm_mismatch_audited(self, deposit, reconciliation, audit_sink):
        deposit("M-F5", "500.00")
        result = reconciliation.reconcile_firm("IOLTA-1", "450.00", AS_OF)

        assert result.discrepancy == usd("50.00")
        event = audit_sink.events[-1]
        assert event.action is AuditAction.RECONCILIATION_MISMATCH
        assert event.matter_id == "IOLTA-1"
        assert event.amount is None
        assert event.metadata["discrepancy"] == "50.00"

    def test_mixed_currency_firm_rejected(self, ledger, bookkeeper, reconciliation):
        ledger.record_transaction("M-F6", "deposit", usd("1.00"), "Retainer", actor=bookkeeper)
        ledger.record_transaction(
            "M-F7", "deposit", Money.of("1.00", "EUR"), "Retainer", actor=bookkeeper
        )
        with pytest.raises(InvalidRequestError):
            reconciliation.reconcile_firm("IOLTA-1", "2.00", AS_OF)

    def test_empty_firm(self, reconciliation):
        result = reconciliation.reconcile_firm("IOLTA-EMPTY", "0", AS_OF)
        assert result.is_matched
        assert result.matters == ()
