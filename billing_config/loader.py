"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Loads the billing YAML file and parses it into ``billing_config.schema``
dataclasses.  Runtime callers go through ``billing_config.get_active_config``.

Invariants enforced
-------------------
* All parse errors raise ``ValueError`` or ``KeyError`` naming the
  offending key; required fields never get silent defaults.
* Money values are parsed through ``Decimal(str(...))``, never float.
* ``compute_checksum`` is a deterministic SHA-256 of the raw document.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown fee structure type  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import BillingConfiguration, BillingSettings
from billing_kernel.domain.fees import (
    DailyFee,
    FeeStructure,
    FeeTier,
    FixedFee,
    LateFeeConfig,
    PercentageFee,
    TieredFee,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, key: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{key}: expected a decimal amount, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"{key}: expected a decimal amount, got {value!r}") from e


def parse_fee_structure(data: dict[str, Any]) -> FeeStructure:
    """Parse the tagged fee-structure union from its ``type`` key."""
    fee_type = data["type"]
    match fee_type:
        case "fixed":
            return FixedFee(amount=parse_decimal(data["amount"], "fee_structure.amount"))
        case "percentage":
            return PercentageFee(rate=parse_decimal(data["percentage"], "fee_structure.percentage"))
        case "daily":
            return DailyFee(amount=parse_decimal(data["amount"], "fee_structure.amount"))
        case "tiered":
            tiers = tuple(
                FeeTier(
                    days_late=int(tier["days_late"]),
                    amount=parse_decimal(tier["amount"], "fee_structure.tiers.amount"),
                )
                for tier in data["tiers"]
            )
            if not tiers:
                raise ValueError("fee_structure.tiers: at least one tier is required")
            return TieredFee(tiers=tiers)
        case _:
            raise ValueError(f"fee_structure.type: unknown fee type {fee_type!r}")


def parse_late_fee_config(data: dict[str, Any]) -> LateFeeConfig:
    """Parse one property's (or the default) late-fee policy."""
    maximum = data.get("maximum_fee")
    return LateFeeConfig(
        enabled=bool(data.get("enabled", True)),
        grace_period_days=int(data["grace_period_days"]),
        fee_structure=parse_fee_structure(data["fee_structure"]),
        maximum_fee=parse_decimal(maximum, "maximum_fee") if maximum is not None else None,
    )


def parse_settings(data: dict[str, Any]) -> BillingSettings:
    defaults = BillingSettings()
    return BillingSettings(
        database_url=str(data.get("database_url", defaults.database_url)),
        currency=str(data.get("currency", defaults.currency)).upper(),
        auto_apply_on_success=bool(data.get("auto_apply_on_success", defaults.auto_apply_on_success)),
        max_payment_retries=int(data.get("max_payment_retries", defaults.max_payment_retries)),
        log_level=str(data.get("log_level", defaults.log_level)).upper(),
    )


def parse_configuration(data: dict[str, Any]) -> BillingConfiguration:
    """
    Parse a full configuration document.

    Raises:
        KeyError: if ``config_id`` or ``late_fees.default`` is missing.
    """
    late_fees = data.get("late_fees") or {}
    if "default" not in late_fees:
        raise KeyError("late_fees.default")

    properties = {
        str(property_id): parse_late_fee_config(fee_data)
        for property_id, fee_data in (late_fees.get("properties") or {}).items()
    }

    return BillingConfiguration(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        settings=parse_settings(data.get("settings") or {}),
        default_late_fee=parse_late_fee_config(late_fees["default"]),
        property_late_fees=properties,
        checksum=compute_checksum(data),
    )


def load_configuration(path: Path) -> BillingConfiguration:
    return parse_configuration(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
