"""
Configuration loading, validation and config-to-kernel bridges.
"""

from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from trust_config import get_active_config
from trust_config.bridges import (
    build_dispatch_policy,
    build_ledger_settings,
    reconciliation_epsilon,
    storage_timeout_seconds,
)
from trust_config.loader import compute_checksum, load_yaml_file, parse_config
from trust_kernel.exceptions import ConfigurationError


def _write(tmp_path: Path, data) -> Path:
    path = tmp_path / "root.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestDefaultConfig:
    def test_loads_default_set(self):
        config = get_active_config()

        assert config.config_id == "trust-default"
        assert config.version == 1
        assert config.ledger.default_currency == "USD"
        assert config.ledger.max_conflict_retries == 5
        assert config.overdraft.override_roles == ("override",)
        assert config.audit.max_delivery_attempts == 8
        assert config.reconciliation.epsilon == Decimal("0")
        assert config.review_threshold_map() == {
            "deposit": Decimal("50000"),
            "transfer": Decimal("10000"),
            "withdrawal": Decimal("5000"),
        }
        assert len(config.checksum) == 64

    def test_checksum_is_deterministic(self):
        assert get_active_config().checksum == get_active_config().checksum

    def test_trace_logged(self, captured_logs):
        config = get_active_config()

        traces = [r for r in captured_logs() if r["message"] == "TRUST_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["config_id"] == "trust-default"
        assert traces[0]["checksum"] == config.checksum


class TestParsing:
    def test_empty_document_uses_defaults(self):
        config = parse_config({})
        assert config.config_id == "unnamed"
        assert config.ledger.default_firm_account_id == "IOLTA-DEFAULT"
        assert config.review_thresholds == ()

    def test_checksum_tracks_content(self):
        a = parse_config({"config_id": "a"})
        b = parse_config({"config_id": "b"})
        assert a.checksum != b.checksum
        assert a.checksum == compute_checksum({"config_id": "a"})

    def test_custom_file(self, tmp_path):
        path = _write(
            tmp_path,
            {
                "config_id": "firm-x",
                "version": 3,
                "ledger": {"default_currency": "eur", "default_firm_account_id": "IOLTA-X"},
                "overdraft": {"override_roles": ["managing_partner", "override"]},
                "reconciliation": {"epsilon": "0.01"},
            },
        )
        config = get_active_config(path)
        assert config.ledger.default_currency == "EUR"
        assert config.overdraft.override_roles == ("managing_partner", "override")
        assert config.reconciliation.epsilon == Decimal("0.01")

    @pytest.mark.parametrize(
        "data, key",
        [
            ({"surprise": 1}, "surprise"),
            ({"config_id": ""}, "config_id"),
            ({"version": "one"}, "version"),
            ({"ledger": {"default_currency": "XXX1"}}, "ledger.default_currency"),
            ({"ledger": {"lock_timeout_seconds": 0}}, "ledger.lock_timeout_seconds"),
            ({"ledger": {"max_conflict_retries": 0}}, "ledger.max_conflict_retries"),
            ({"ledger": {"max_conflict_retries": True}}, "ledger.max_conflict_retries"),
            ({"overdraft": {"override_roles": "override"}}, "overdraft.override_roles"),
            ({"audit": {"deliver_inline": "yes"}}, "audit.deliver_inline"),
            ({"audit": {"batch_size": -1}}, "audit.batch_size"),
            (
                {"audit": {"retry_base_delay_seconds": 10, "retry_max_delay_seconds": 1}},
                "audit.retry_max_delay_seconds",
            ),
            ({"reconciliation": {"epsilon": 0.01}}, "reconciliation.epsilon"),
            ({"reconciliation": {"epsilon": "-1"}}, "reconciliation.epsilon"),
            ({"review_thresholds": {"loan": "1"}}, "review_thresholds.loan"),
            ({"review_thresholds": {"withdrawal": 5000.0}}, "review_thresholds.withdrawal"),
            ({"ledger": ["not", "a", "mapping"]}, "ledger"),
        ],
    )
    def test_invalid_values(self, data, key):
        with pytest.raises(ConfigurationError) as exc_info:
            parse_config(data)
        assert exc_info.value.key == key


class TestFileLoading:
    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            get_active_config(tmp_path / "nope.yaml")

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("ledger: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_yaml_file(path)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_yaml_file(path)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_yaml_file(path) == {}


class TestBridges:
    def test_ledger_settings(self):
        config = get_active_config()
        settings = build_ledger_settings(config)

        assert settings.default_currency == "USD"
        assert settings.default_firm_account_id == "IOLTA-DEFAULT"
        assert settings.override_roles == frozenset({"override"})
        assert settings.deliver_inline is True
        assert settings.review_thresholds["withdrawal"] == Decimal("5000")

    def test_dispatch_policy(self):
        policy = build_dispatch_policy(get_active_config())
        assert policy.max_delivery_attempts == 8
        assert policy.batch_size == 100
        assert policy.retry_max_delay_seconds == 300.0

    def test_scalar_bridges(self):
        config = get_active_config()
        assert reconciliation_epsilon(config) == Decimal("0")
        assert storage_timeout_seconds(config) == 10.0

    def test_configured_ledger_applies_thresholds(
        self, store, dispatcher, clock, bookkeeper, audit_sink
    ):
        from trust_kernel.domain.values import Money
        from trust_kernel.services.trust_ledger import TrustLedger

        ledger = TrustLedger(
            store,
            dispatcher=dispatcher,
            clock=clock,
            settings=build_ledger_settings(get_active_config()),
        )
        ledger.record_transaction(
            "M-CFG", "deposit", Money.of("50000.00", "USD"), "Settlement", actor=bookkeeper
        )
        assert audit_sink.events_for("M-CFG")[0].requires_review
        assert ledger.get_account("M-CFG").firm_account_id == "IOLTA-DEFAULT"
