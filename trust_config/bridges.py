"""
Config -> Kernel Bridges.

Functions that convert a TrustLedgerConfig into kernel-compatible inputs.
They live in trust_config (the producer) because the kernel must NEVER
import trust_config.

Usage:
    from trust_config import get_active_config
    from trust_config.bridges import build_ledger_settings, build_dispatch_policy

    config = get_active_config()
    settings = build_ledger_settings(config)
    policy = build_dispatch_policy(config)
"""

from __future__ import annotations

from decimal import Decimal

from trust_kernel.services.audit_dispatcher import DispatchPolicy
from trust_kernel.services.trust_ledger import TrustLedgerSettings

from trust_config.schema import TrustLedgerConfig


def build_ledger_settings(config: TrustLedgerConfig) -> TrustLedgerSettings:
    return TrustLedgerSettings(
        default_currency=config.ledger.default_currency,
        default_firm_account_id=config.ledger.default_firm_account_id,
        lock_timeout_seconds=config.ledger.lock_timeout_seconds,
        max_conflict_retries=config.ledger.max_conflict_retries,
        override_roles=frozenset(config.overdraft.override_roles),
        deliver_inline=config.audit.deliver_inline,
        review_thresholds=config.review_threshold_map(),
    )


def build_dispatch_policy(config: TrustLedgerConfig) -> DispatchPolicy:
    return DispatchPolicy(
        max_delivery_attempts=config.audit.max_delivery_attempts,
        retry_base_delay_seconds=config.audit.retry_base_delay_seconds,
        retry_max_delay_seconds=config.audit.retry_max_delay_seconds,
        batch_size=config.audit.batch_size,
    )


def reconciliation_epsilon(config: TrustLedgerConfig) -> Decimal:
    return config.reconciliation.epsilon


def storage_timeout_seconds(config: TrustLedgerConfig) -> float:
    return config.ledger.storage_timeout_seconds
