"""
ORM-Level Immutability Enforcement (Layer 1 of 2).

===============================================================================
WHY THIS EXISTS
===============================================================================

A trust ledger must be tamper-proof.  Bar regulators require that recorded
trust transactions cannot be edited or removed; mistakes are corrected only
by reversal entries that leave a visible trail.

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications through Python/SQLAlchemy code
    - Fires BEFORE the SQL is sent to the database

  Layer 2: db/triggers.py (database triggers)
    - Catches raw SQL, bulk UPDATE statements, direct database access
    - Fires AT the database level, independent of application code

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity             | Rule                                   | Why
-------------------|----------------------------------------|---------------------------------
TrustTransaction   | ALWAYS immutable, never deleted        | The ledger itself
AuditOutboxEntry   | Only delivery fields may change        | Audit payload is evidence
TrustAccount       | matter_id/currency/firm_account_id     | Identity of the sub-account
                   | fixed; never deleted                   |

Balance and version changes on TrustAccount are made by the trust store's
conditional UPDATE statement, not through the ORM unit of work, so they are
not subject to these listeners.

===============================================================================
USAGE
===============================================================================

Called once at startup (the trust store does this on construction):

    from trust_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from trust_kernel.exceptions import ImmutabilityViolationError
from trust_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

TRUST_ACCOUNT_STRUCTURAL_FIELDS = ("matter_id", "currency", "firm_account_id")


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _check_trust_transaction_immutability(mapper, connection, target):
    """Trust transactions are immutable from the moment they are inserted."""
    from trust_kernel.models.trust_transaction import TrustTransactionModel

    if not isinstance(target, TrustTransactionModel):
        return

    _blocked(
        "TrustTransaction",
        str(target.id),
        "UPDATE",
        "Trust transactions are immutable; record a reversal instead",
    )


def _check_trust_transaction_delete(mapper, connection, target):
    from trust_kernel.models.trust_transaction import TrustTransactionModel

    if not isinstance(target, TrustTransactionModel):
        return

    _blocked(
        "TrustTransaction",
        str(target.id),
        "DELETE",
        "Trust transactions cannot be deleted",
    )


def _check_audit_outbox_immutability(mapper, connection, target):
    """Only the delivery-tracking columns of an outbox row may change."""
    from trust_kernel.models.audit_outbox import AuditOutboxEntry

    if not isinstance(target, AuditOutboxEntry):
        return

    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key in AuditOutboxEntry.DELIVERY_FIELDS:
            continue
        if attr.history.has_changes():
            _blocked(
                "AuditOutboxEntry",
                str(target.id),
                "UPDATE",
                f"Cannot modify field '{attr.key}' on an audit outbox entry",
                field=attr.key,
            )


def _check_audit_outbox_delete(mapper, connection, target):
    from trust_kernel.models.audit_outbox import AuditOutboxEntry

    if not isinstance(target, AuditOutboxEntry):
        return

    _blocked(
        "AuditOutboxEntry",
        str(target.id),
        "DELETE",
        "Audit outbox entries cannot be deleted",
    )


def _check_trust_account_structural_immutability(mapper, connection, target):
    from trust_kernel.models.trust_account import TrustAccountModel

    if not isinstance(target, TrustAccountModel):
        return

    changed = [
        field
        for field in TRUST_ACCOUNT_STRUCTURAL_FIELDS
        if get_history(target, field).has_changes()
    ]
    if changed:
        _blocked(
            "TrustAccount",
            str(target.matter_id),
            "UPDATE",
            f"Cannot modify structural field(s) {changed} on a trust account",
            fields=changed,
        )


def _check_trust_account_deletion_before_flush(session, flush_context, instances):
    """
    Trust accounts are never deleted.

    Runs in before_flush so the deletion is refused before the flush plan
    (and the FK cascade analysis) is finalized.
    """
    from trust_kernel.models.trust_account import TrustAccountModel

    for obj in list(session.deleted):
        if isinstance(obj, TrustAccountModel):
            _blocked(
                "TrustAccount",
                str(obj.matter_id),
                "DELETE",
                "Trust accounts cannot be deleted",
            )


_registered = False


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners (idempotent).

    Call this after all models are imported but before any database
    operations begin.
    """
    global _registered
    from trust_kernel.models.audit_outbox import AuditOutboxEntry
    from trust_kernel.models.trust_account import TrustAccountModel
    from trust_kernel.models.trust_transaction import TrustTransactionModel

    if _registered:
        return

    event.listen(Session, "before_flush", _check_trust_account_deletion_before_flush)

    event.listen(TrustTransactionModel, "before_update", _check_trust_transaction_immutability)
    event.listen(TrustTransactionModel, "before_delete", _check_trust_transaction_delete)

    event.listen(AuditOutboxEntry, "before_update", _check_audit_outbox_immutability)
    event.listen(AuditOutboxEntry, "before_delete", _check_audit_outbox_delete)

    event.listen(TrustAccountModel, "before_update", _check_trust_account_structural_immutability)

    _registered = True
    logger.debug("immutability_listeners_registered")


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that need to bypass layer 1 to prove
    the database triggers (layer 2) hold on their own.
    """
    global _registered
    from trust_kernel.models.audit_outbox import AuditOutboxEntry
    from trust_kernel.models.trust_account import TrustAccountModel
    from trust_kernel.models.trust_transaction import TrustTransactionModel

    _safe_remove_listener(Session, "before_flush", _check_trust_account_deletion_before_flush)

    _safe_remove_listener(TrustTransactionModel, "before_update", _check_trust_transaction_immutability)
    _safe_remove_listener(TrustTransactionModel, "before_delete", _check_trust_transaction_delete)

    _safe_remove_listener(AuditOutboxEntry, "before_update", _check_audit_outbox_immutability)
    _safe_remove_listener(AuditOutboxEntry, "before_delete", _check_audit_outbox_delete)

    _safe_remove_listener(
        TrustAccountModel, "before_update", _check_trust_account_structural_immutability
    )

    _registered = False
