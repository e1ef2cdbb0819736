"""Cooperative cancellation for ledger writes."""

import threading

from trust_kernel.exceptions import OperationCancelledError


class CancellationToken:
    """
    Caller-owned flag checked by TrustLedger at each stage of a write.

    Cancelling before the commit point aborts the write with nothing
    persisted.  Once the ledger has committed, cancelling has no effect.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, matter_id: str, stage: str) -> None:
        if self._event.is_set():
            raise OperationCancelledError(matter_id=matter_id, stage=stage)
