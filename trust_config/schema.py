"""
TrustLedgerConfig schema.

Frozen dataclasses that a YAML configuration set is parsed into.  The
loader produces them; bridges.py turns them into kernel settings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class LedgerSection:
    default_currency: str = "USD"
    default_firm_account_id: str = "IOLTA-DEFAULT"
    lock_timeout_seconds: float = 5.0
    storage_timeout_seconds: float = 10.0
    max_conflict_retries: int = 5


@dataclass(frozen=True)
class OverdraftSection:
    """Roles allowed to authorize a shortfall."""

    override_roles: tuple[str, ...] = ("override",)


@dataclass(frozen=True)
class AuditSection:
    deliver_inline: bool = True
    max_delivery_attempts: int = 8
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 300.0
    batch_size: int = 100


@dataclass(frozen=True)
class ReconciliationSection:
    epsilon: Decimal = Decimal("0")


@dataclass(frozen=True)
class TrustLedgerConfig:
    """
    The runtime configuration artifact.

    ``checksum`` is the SHA-256 of the canonical source document and
    identifies exactly which configuration governed a run.
    """

    config_id: str
    version: int
    ledger: LedgerSection = field(default_factory=LedgerSection)
    overdraft: OverdraftSection = field(default_factory=OverdraftSection)
    audit: AuditSection = field(default_factory=AuditSection)
    reconciliation: ReconciliationSection = field(default_factory=ReconciliationSection)
    review_thresholds: tuple[tuple[str, Decimal], ...] = ()
    checksum: str = ""

    def review_threshold_map(self) -> dict[str, Decimal]:
        return dict(self.review_thresholds)
