"""
Concurrency tests for per-matter serialization.

Two TrustLedger instances share one database but not a lock registry, so
they behave like two application processes: only the store's locking and
conditional version update keep the ledger consistent.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from trust_kernel.domain.values import Money
from trust_kernel.exceptions import InsufficientFundsError, TrustLedgerError
from trust_kernel.services.trust_ledger import TrustLedger

pytestmark = pytest.mark.slow_locks


def usd(amount: str) -> Money:
    return Money.of(amount, "USD")


@pytest.fixture
def second_ledger(store, dispatcher, clock, settings):
    """Independent ledger instance: separate in-process lock registry."""
    return TrustLedger(store, dispatcher=dispatcher, clock=clock, settings=settings)


def _run_concurrently(*calls):
    barrier = threading.Barrier(len(calls))
    outcomes: list = [None] * len(calls)

    def runner(index, call):
        barrier.wait()
        try:
            outcomes[index] = call()
        except TrustLedgerError as exc:
            outcomes[index] = exc

    threads = [
        threading.Thread(target=runner, args=(i, call)) for i, call in enumerate(calls)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return outcomes


class TestConcurrentWithdrawals:
    def test_racing_withdrawals_only_one_succeeds(
        self, ledger, second_ledger, deposit, bookkeeper
    ):
        deposit("M-C1", "100.00")

        outcomes = _run_concurrently(
            lambda: ledger.record_transaction(
                "M-C1", "withdrawal", usd("80.00"), "Payout A", actor=bookkeeper
            ),
            lambda: second_ledger.record_transaction(
                "M-C1", "withdrawal", usd("80.00"), "Payout B", actor=bookkeeper
            ),
        )

        failures = [o for o in outcomes if isinstance(o, Exception)]
        successes = [o for o in outcomes if not isinstance(o, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], InsufficientFundsError)
        assert ledger.get_balance("M-C1") == usd("20.00")
        assert ledger.verify_integrity("M-C1").is_valid

    def test_same_instance_serializes_withdrawals(self, ledger, deposit, bookkeeper):
        deposit("M-C2", "100.00")

        outcomes = _run_concurrently(
            *[
                (lambda i=i: ledger.record_transaction(
                    "M-C2", "withdrawal", usd("30.00"), f"Payout {i}", actor=bookkeeper
                ))
                for i in range(5)
            ]
        )

        failures = [o for o in outcomes if isinstance(o, Exception)]
        assert len(failures) == 2
        assert all(isinstance(f, InsufficientFundsError) for f in failures)
        assert ledger.get_balance("M-C2") == usd("10.00")


class TestGaplessSequences:
    def test_concurrent_deposits_are_gapless(self, ledger, second_ledger, bookkeeper):
        def post(target, i):
            return target.record_transaction(
                "M-C3", "deposit", usd("1.00"), f"Deposit {i}", actor=bookkeeper
            )

        with ThreadPoolExecutor(max_workers=8) as pool:
            futures = [
                pool.submit(post, ledger if i % 2 else second_ledger, i) for i in range(20)
            ]
            results = [f.result() for f in futures]

        assert sorted(t.sequence for t in results) == list(range(1, 21))
        account = ledger.get_account("M-C3")
        assert account.version == 20
        assert account.current_balance == usd("20.00")
        report = ledger.verify_integrity("M-C3")
        assert report.is_valid, report.errors

    def test_every_write_audited_once(self, ledger, second_ledger, bookkeeper, audit_sink):
        with ThreadPoolExecutor(max_workers=4) as pool:
            list(
                pool.map(
                    lambda i: (ledger if i % 2 else second_ledger).record_transaction(
                        "M-C4", "deposit", usd("2.00"), f"Deposit {i}", actor=bookkeeper
                    ),
                    range(10),
                )
            )

        events = audit_sink.events_for("M-C4")
        assert len(events) == 10
        assert len({e.transaction_id for e in events}) == 10


class TestIndependentMatters:
    def test_different_matters_do_not_interfere(self, ledger, bookkeeper):
        matters = [f"M-P{i}" for i in range(6)]

        def fill(matter_id):
            for _ in range(5):
                ledger.record_transaction(
                    matter_id, "deposit", usd("10.00"), "Retainer", actor=bookkeeper
                )
            return matter_id

        with ThreadPoolExecutor(max_workers=6) as pool:
            done = list(pool.map(fill, matters))

        assert done == matters
        for matter_id in matters:
            account = ledger.get_account(matter_id)
            assert account.current_balance == usd("50.00")
            assert account.last_sequence == 5
