"""
Configuration Loader (``trust_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``trust_config.schema`` dataclasses.  Runtime code does not call this
directly; the single public entry point is
``trust_config.get_active_config()``.

Invariants enforced
-------------------
* Every parse or validation failure raises ``ConfigurationError`` naming
  the offending key.
* Money-valued settings (epsilon, review thresholds) must be strings or
  integers.  A YAML float is refused so no binary float reaches Decimal.
* ``compute_checksum`` is a deterministic SHA-256 over the canonical JSON
  form of the source document.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from trust_kernel.db.types import InvalidCurrencyError, validate_currency
from trust_kernel.domain.transaction_types import TransactionType
from trust_kernel.exceptions import ConfigurationError

from trust_config.schema import (
    AuditSection,
    LedgerSection,
    OverdraftSection,
    ReconciliationSection,
    TrustLedgerConfig,
)

_KNOWN_SECTIONS = frozenset(
    {"config_id", "version", "ledger", "overdraft", "audit", "reconciliation", "review_thresholds"}
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        ConfigurationError: if the file is missing, malformed, or its top
            level is not a mapping.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as exc:
        raise ConfigurationError(str(path), "configuration file not found") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(str(path), f"invalid YAML: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(name, "must be a mapping")
    return value


def _positive_number(section: dict[str, Any], key: str, default: float, path: str) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigurationError(f"{path}.{key}", f"must be a positive number, got {value!r}")
    return float(value)


def _positive_int(section: dict[str, Any], key: str, default: int, path: str) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError(f"{path}.{key}", f"must be an integer >= 1, got {value!r}")
    return value


def _decimal(value: Any, key: str) -> Decimal:
    if isinstance(value, bool) or isinstance(value, float):
        raise ConfigurationError(key, f"money values must be quoted strings, got {value!r}")
    if not isinstance(value, (int, str)):
        raise ConfigurationError(key, f"expected a decimal string, got {value!r}")
    try:
        result = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ConfigurationError(key, f"not a decimal: {value!r}") from exc
    if not result.is_finite() or result < 0:
        raise ConfigurationError(key, f"must be a finite, non-negative decimal: {value!r}")
    return result


def parse_ledger(data: dict[str, Any]) -> LedgerSection:
    section = _section(data, "ledger")
    defaults = LedgerSection()
    try:
        currency = validate_currency(section.get("default_currency", defaults.default_currency))
    except InvalidCurrencyError as exc:
        raise ConfigurationError("ledger.default_currency", str(exc)) from exc

    firm_account = section.get("default_firm_account_id", defaults.default_firm_account_id)
    if not isinstance(firm_account, str) or not firm_account.strip():
        raise ConfigurationError("ledger.default_firm_account_id", "must be a non-empty string")

    return LedgerSection(
        default_currency=currency,
        default_firm_account_id=firm_account.strip(),
        lock_timeout_seconds=_positive_number(
            section, "lock_timeout_seconds", defaults.lock_timeout_seconds, "ledger"
        ),
        storage_timeout_seconds=_positive_number(
            section, "storage_timeout_seconds", defaults.storage_timeout_seconds, "ledger"
        ),
        max_conflict_retries=_positive_int(
            section, "max_conflict_retries", defaults.max_conflict_retries, "ledger"
        ),
    )


def parse_overdraft(data: dict[str, Any]) -> OverdraftSection:
    section = _section(data, "overdraft")
    roles = section.get("override_roles", list(OverdraftSection().override_roles))
    if not isinstance(roles, list) or not all(isinstance(r, str) and r.strip() for r in roles):
        raise ConfigurationError("overdraft.override_roles", "must be a list of role names")
    return OverdraftSection(override_roles=tuple(sorted({r.strip() for r in roles})))


def parse_audit(data: dict[str, Any]) -> AuditSection:
    section = _section(data, "audit")
    defaults = AuditSection()
    deliver_inline = section.get("deliver_inline", defaults.deliver_inline)
    if not isinstance(deliver_inline, bool):
        raise ConfigurationError("audit.deliver_inline", "must be true or false")

    base_delay = section.get("retry_base_delay_seconds", defaults.retry_base_delay_seconds)
    max_delay = section.get("retry_max_delay_seconds", defaults.retry_max_delay_seconds)
    for key, value in (
        ("retry_base_delay_seconds", base_delay),
        ("retry_max_delay_seconds", max_delay),
    ):
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ConfigurationError(f"audit.{key}", f"must be a number >= 0, got {value!r}")
    if max_delay < base_delay:
        raise ConfigurationError(
            "audit.retry_max_delay_seconds", "must be >= retry_base_delay_seconds"
        )

    return AuditSection(
        deliver_inline=deliver_inline,
        max_delivery_attempts=_positive_int(
            section, "max_delivery_attempts", defaults.max_delivery_attempts, "audit"
        ),
        retry_base_delay_seconds=float(base_delay),
        retry_max_delay_seconds=float(max_delay),
        batch_size=_positive_int(section, "batch_size", defaults.batch_size, "audit"),
    )


def parse_reconciliation(data: dict[str, Any]) -> ReconciliationSection:
    section = _section(data, "reconciliation")
    return ReconciliationSection(
        epsilon=_decimal(section.get("epsilon", "0"), "reconciliation.epsilon")
    )


def parse_review_thresholds(data: dict[str, Any]) -> tuple[tuple[str, Decimal], ...]:
    section = _section(data, "review_thresholds")
    thresholds: dict[str, Decimal] = {}
    for name, value in section.items():
        try:
            txn_type = TransactionType.parse(name)
        except ValueError as exc:
            raise ConfigurationError(f"review_thresholds.{name}", str(exc)) from exc
        thresholds[txn_type.value] = _decimal(value, f"review_thresholds.{name}")
    return tuple(sorted(thresholds.items()))


def parse_config(data: dict[str, Any], checksum: str | None = None) -> TrustLedgerConfig:
    """
    Parse a configuration document.

    Raises:
        ConfigurationError: on unknown sections or any invalid value.
    """
    unknown = sorted(set(data) - _KNOWN_SECTIONS)
    if unknown:
        raise ConfigurationError(unknown[0], "unknown configuration section")

    config_id = data.get("config_id", "unnamed")
    if not isinstance(config_id, str) or not config_id.strip():
        raise ConfigurationError("config_id", "must be a non-empty string")
    version = data.get("version", 1)
    if isinstance(version, bool) or not isinstance(version, int):
        raise ConfigurationError("version", f"must be an integer, got {version!r}")

    return TrustLedgerConfig(
        config_id=config_id,
        version=version,
        ledger=parse_ledger(data),
        overdraft=parse_overdraft(data),
        audit=parse_audit(data),
        reconciliation=parse_reconciliation(data),
        review_thresholds=parse_review_thresholds(data),
        checksum=checksum if checksum is not None else compute_checksum(data),
    )


def load_config(path: Path) -> TrustLedgerConfig:
    """Load and parse one configuration file."""
    return parse_config(load_yaml_file(path))
