"""
Pure domain layer.

Value objects, DTOs and collaborator contracts with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (injected)
- I/O
"""

from trust_kernel.domain.audit import AuditAction, AuditEvent, AuditFlag, AuditSink
from trust_kernel.domain.authorization import (
    ActorRole,
    AuthorizationContext,
    OverridePolicy,
    require_actor,
)
from trust_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from trust_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from trust_kernel.domain.dtos import (
    HistoryPage,
    HistoryQuery,
    LedgerIntegrityReport,
    TrustAccountSnapshot,
    TrustTransaction,
    TrustTransactionDraft,
)
from trust_kernel.domain.persistence import OutboxRecord, PersistenceStore, StoreSession
from trust_kernel.domain.transaction_types import TransactionType
from trust_kernel.domain.values import Currency, Money

__all__ = [
    "ActorRole",
    "AuditAction",
    "AuditEvent",
    "AuditFlag",
    "AuditSink",
    "AuthorizationContext",
    "Clock",
    "Currency",
    "CurrencyInfo",
    "CurrencyRegistry",
    "DeterministicClock",
    "HistoryPage",
    "HistoryQuery",
    "LedgerIntegrityReport",
    "Money",
    "OutboxRecord",
    "OverridePolicy",
    "PersistenceStore",
    "StoreSession",
    "SystemClock",
    "TransactionType",
    "TrustAccountSnapshot",
    "TrustTransaction",
    "TrustTransactionDraft",
    "require_actor",
]
