"""
Services -- imperative shell of the trust kernel.

TrustLedger is the public write/read API.  The other services are its
collaborators and are exported for wiring and tests.
"""

from trust_kernel.services.account_lock import AccountLockRegistry
from trust_kernel.services.audit_dispatcher import (
    AuditDispatcher,
    DispatchPolicy,
    DispatchReport,
)
from trust_kernel.services.audit_sinks import InMemoryAuditSink, LoggingAuditSink
from trust_kernel.services.cancellation import CancellationToken
from trust_kernel.services.trust_ledger import TrustLedger, TrustLedgerSettings
from trust_kernel.services.trust_store import SqlAlchemyTrustStore

__all__ = [
    "AccountLockRegistry",
    "AuditDispatcher",
    "CancellationToken",
    "DispatchPolicy",
    "DispatchReport",
    "InMemoryAuditSink",
    "LoggingAuditSink",
    "SqlAlchemyTrustStore",
    "TrustLedger",
    "TrustLedgerSettings",
]
