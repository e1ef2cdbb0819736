"""
AccountLockRegistry -- per-matter exclusive access within one process.

Responsibility:
    Hands out one lock per matter so that at most one writer at a time runs
    the read-compute-write cycle for a given trust account.  Writers for
    different matters never contend.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Used by
    TrustLedger around every write.

Invariants enforced:
    - Lock acquisition is bounded; a wait past ``timeout_seconds`` raises
      LedgerTimeoutError and the caller performs no work.
    - This is only the in-process half of per-matter serialization.  The
      store's conditional version update is what protects writers in
      other processes.

Failure modes:
    - LedgerTimeoutError when the lock cannot be acquired in time.
"""

import threading
from contextlib import contextmanager
from typing import Iterator

from trust_kernel.exceptions import LedgerTimeoutError
from trust_kernel.logging_config import get_logger

logger = get_logger("services.account_lock")


class AccountLockRegistry:
    """
    One ``threading.Lock`` per matter id, created on first use.

    Locks are never discarded: the registry grows with the number of
    distinct matters a process writes to, which is bounded by the firm's
    matter count.
    """

    def __init__(self, timeout_seconds: float = 5.0):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self._timeout_seconds = timeout_seconds
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    def _lock_for(self, matter_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(matter_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[matter_id] = lock
            return lock

    @contextmanager
    def hold(self, matter_id: str, timeout_seconds: float | None = None) -> Iterator[None]:
        """
        Hold the matter's lock for the duration of the block.

        Raises:
            LedgerTimeoutError: If the lock is not acquired within the timeout.
        """
        timeout = self._timeout_seconds if timeout_seconds is None else timeout_seconds
        lock = self._lock_for(matter_id)
        if not lock.acquire(timeout=timeout):
            logger.warning(
                "account_lock_timeout",
                extra={"matter_id": matter_id, "timeout_seconds": timeout},
            )
            raise LedgerTimeoutError(
                matter_id=matter_id,
                operation="acquire_account_lock",
                timeout_seconds=timeout,
            )
        try:
            yield
        finally:
            lock.release()

    def is_locked(self, matter_id: str) -> bool:
        with self._guard:
            lock = self._locks.get(matter_id)
        return lock is not None and lock.locked()
