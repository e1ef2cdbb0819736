"""
trust_config -- single public entrypoint for trust ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files or environment variables directly.

Architecture position:
    Sits above ``trust_kernel`` and beside ``trust_services``.  The kernel
    MUST NEVER import from ``trust_config``; bridges in this package
    translate the configuration into kernel settings.

Failure modes:
    - ``ConfigurationError`` -- missing file, malformed YAML or an invalid
      value.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``TRUST_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying every ledger write back to the configuration that
    governed it.
"""

from __future__ import annotations

from pathlib import Path

from trust_kernel.logging_config import get_logger

from trust_config.loader import load_config
from trust_config.schema import TrustLedgerConfig

_logger = get_logger("config")

# Default configuration set
_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default" / "root.yaml"


def get_active_config(config_path: Path | str | None = None) -> TrustLedgerConfig:
    """
    The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a configuration YAML file.
            Defaults to trust_config/sets/default/root.yaml.

    Raises:
        ConfigurationError: If the file is missing or invalid.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    config = load_config(path)

    _logger.info(
        "TRUST_CONFIG_TRACE",
        extra={
            "trace_type": "TRUST_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "default_currency": config.ledger.default_currency,
            "override_roles": list(config.overdraft.override_roles),
        },
    )
    return config


__all__ = ["TrustLedgerConfig", "get_active_config"]
