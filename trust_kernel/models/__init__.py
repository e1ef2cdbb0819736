"""ORM models for the trust kernel."""

from trust_kernel.models.audit_outbox import AuditOutboxEntry, OutboxStatus
from trust_kernel.models.trust_account import TrustAccountModel
from trust_kernel.models.trust_transaction import TrustTransactionModel

__all__ = [
    "AuditOutboxEntry",
    "OutboxStatus",
    "TrustAccountModel",
    "TrustTransactionModel",
]
