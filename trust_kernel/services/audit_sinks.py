"""
AuditSink implementations shipped with the kernel.

InMemoryAuditSink keeps events in a list (tests, demos, and embedding
processes that forward events themselves).  LoggingAuditSink writes one
structured log line per event for deployments whose audit log is the log
pipeline.
"""

import threading
from uuid import UUID

from trust_kernel.domain.audit import AuditEvent, AuditSink
from trust_kernel.exceptions import AuditDeliveryError
from trust_kernel.logging_config import get_logger

logger = get_logger("services.audit_sink")


class InMemoryAuditSink(AuditSink):
    """
    Thread-safe in-memory sink.

    Repeated deliveries of the same ``event_id`` are ignored.  ``fail_times``
    makes the first N ``record`` calls raise AuditDeliveryError so retry and
    dead-letter behaviour can be exercised.
    """

    def __init__(self, fail_times: int = 0):
        self._events: list[AuditEvent] = []
        self._seen: set[UUID] = set()
        self._lock = threading.Lock()
        self._failures_remaining = fail_times
        self.attempts = 0

    def record(self, event: AuditEvent) -> None:
        with self._lock:
            self.attempts += 1
            if self._failures_remaining > 0:
                self._failures_remaining -= 1
                raise AuditDeliveryError(str(event.event_id), "sink unavailable")
            if event.event_id in self._seen:
                return
            self._seen.add(event.event_id)
            self._events.append(event)

    def fail_next(self, times: int) -> None:
        with self._lock:
            self._failures_remaining = times

    @property
    def events(self) -> list[AuditEvent]:
        with self._lock:
            return list(self._events)

    def events_for(self, matter_id: str) -> list[AuditEvent]:
        return [e for e in self.events if e.matter_id == matter_id]


class LoggingAuditSink(AuditSink):
    """Emit each audit event as a structured ``trust_audit_event`` log record."""

    def __init__(self, logger_name: str = "audit"):
        self._logger = get_logger(logger_name)

    def record(self, event: AuditEvent) -> None:
        self._logger.info(
            "trust_audit_event",
            extra={"audit": event.to_payload()},
        )
