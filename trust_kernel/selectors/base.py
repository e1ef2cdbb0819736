"""
Module: trust_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors.  Selectors
    are the query side of the kernel: structured read access to the trust
    ledger with no mutation capability.
Architecture position: Kernel > Selectors.  May import from domain/.  MUST NOT
    import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors only call the read methods of a
      PersistenceStore.  They never open a unit of work.
    - DTO return convention: selectors return frozen dataclasses or computed
      results, never ORM rows.
"""

from abc import ABC

from trust_kernel.domain.persistence import PersistenceStore


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a PersistenceStore, perform read-only queries and
        return DTOs or computed results.

    Non-goals:
        - BaseSelector does NOT define any query methods.
    """

    def __init__(self, store: PersistenceStore):
        self.store = store
