"""
trust_services -- services built on top of the trust kernel.

Architecture position:
    Sits above ``trust_kernel``.  The kernel never imports from here.
"""

from trust_services.reconciliation_service import ReconciliationEngine
from trust_services.reconciliation_types import (
    MatterPosition,
    ReconciliationResult,
    ReconciliationScope,
    ReconciliationStatus,
)

__all__ = [
    "MatterPosition",
    "ReconciliationEngine",
    "ReconciliationResult",
    "ReconciliationScope",
    "ReconciliationStatus",
]
