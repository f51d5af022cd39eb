"""
Tests for billing configuration loading.

Verifies:
- Bundled defaults load and parse
- Every fee structure type parses into its tagged variant
- Schema violations raise instead of defaulting
- Environment overrides and the config trace log
"""

from decimal import Decimal
from uuid import uuid4

import pytest
import yaml

from billing_config import (
    DEFAULT_CONFIG_PATH,
    ConfiguredFeeConfigProvider,
    get_active_config,
    load_configuration,
    parse_configuration,
)
from billing_config.loader import compute_checksum, parse_fee_structure
from billing_kernel.domain.fees import DailyFee, FixedFee, PercentageFee, TieredFee


def _document(**overrides) -> dict:
    doc = {
        "config_id": "unit",
        "version": 2,
        "late_fees": {
            "default": {
                "grace_period_days": 5,
                "maximum_fee": "100.00",
                "fee_structure": {"type": "fixed", "amount": "50.00"},
            },
        },
    }
    doc.update(overrides)
    return doc


class TestDefaults:

    def test_bundled_defaults(self):
        config = load_configuration(DEFAULT_CONFIG_PATH)
        assert config.config_id == "default"
        assert config.settings.currency == "USD"
        assert config.settings.auto_apply_on_success
        assert config.default_late_fee.grace_period_days == 5
        assert config.default_late_fee.maximum_fee == Decimal("100.00")
        assert config.default_late_fee.fee_structure == FixedFee(Decimal("50.00"))

    def test_settings_default_when_absent(self):
        config = parse_configuration(_document())
        assert config.version == 2
        assert config.settings.max_payment_retries == 3
        assert config.settings.database_url == "sqlite://"


class TestFeeStructures:

    def test_percentage(self):
        assert parse_fee_structure({"type": "percentage", "percentage": 5}) == PercentageFee(
            Decimal("5")
        )

    def test_daily(self):
        assert parse_fee_structure({"type": "daily", "amount": "10"}) == DailyFee(Decimal("10"))

    def test_tiered(self):
        fee = parse_fee_structure({
            "type": "tiered",
            "tiers": [
                {"days_late": 5, "amount": "10"},
                {"days_late": 10, "amount": "20"},
            ],
        })
        assert isinstance(fee, TieredFee)
        assert fee.select_tier(7).amount == Decimal("10")

    def test_unknown_type(self):
        with pytest.raises(ValueError, match="unknown fee type"):
            parse_fee_structure({"type": "compound"})

    def test_empty_tiers(self):
        with pytest.raises(ValueError, match="at least one tier"):
            parse_fee_structure({"type": "tiered", "tiers": []})

    def test_boolean_amount_rejected(self):
        with pytest.raises(ValueError):
            parse_fee_structure({"type": "fixed", "amount": True})


class TestSchemaViolations:

    def test_missing_default_policy(self):
        with pytest.raises(KeyError, match="late_fees.default"):
            parse_configuration(_document(late_fees={}))

    def test_missing_config_id(self):
        doc = _document()
        del doc["config_id"]
        with pytest.raises(KeyError):
            parse_configuration(doc)

    def test_missing_grace_period(self):
        doc = _document()
        del doc["late_fees"]["default"]["grace_period_days"]
        with pytest.raises(KeyError):
            parse_configuration(doc)


class TestPropertyOverrides:

    def test_provider_prefers_property_policy(self):
        property_id = uuid4()
        doc = _document()
        doc["late_fees"]["properties"] = {
            str(property_id): {
                "grace_period_days": 0,
                "fee_structure": {"type": "daily", "amount": "5"},
            },
        }
        provider = ConfiguredFeeConfigProvider(parse_configuration(doc))

        assert provider.get_fee_config(property_id).fee_structure == DailyFee(Decimal("5"))
        assert provider.get_fee_config(uuid4()).fee_structure == FixedFee(Decimal("50.00"))


class TestActiveConfig:

    def test_loads_path_from_environment(self, tmp_path, monkeypatch, captured_logs):
        path = tmp_path / "billing.yaml"
        path.write_text(yaml.safe_dump(_document()))
        monkeypatch.setenv("BILLING_CONFIG_PATH", str(path))
        monkeypatch.setenv("BILLING_DATABASE_URL", "postgresql://billing@db/billing")

        config = get_active_config()

        assert config.config_id == "unit"
        assert config.settings.database_url == "postgresql://billing@db/billing"
        trace = [r for r in captured_logs() if r["message"] == "BILLING_CONFIG_TRACE"]
        assert trace[0]["config_id"] == "unit"
        assert trace[0]["checksum"] == config.checksum

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")

    def test_checksum_is_stable(self):
        assert compute_checksum(_document()) == compute_checksum(_document())
        assert compute_checksum(_document()) != compute_checksum(_document(version=3))
