"""
billing_config -- single public entrypoint for billing configuration.

Responsibility:
    ``get_active_config()`` is the one place that reads configuration
    files and environment variables.  It returns a ``BillingConfiguration``
    holding service settings and per-property late-fee policies.

Architecture position:
    Configuration -- sits above ``billing_kernel`` and below
    ``billing_services``.  The kernel never imports from this package.

Environment:
    BILLING_CONFIG_PATH    Path of the YAML file to load (defaults to the
                           bundled ``defaults.yaml``).
    BILLING_DATABASE_URL   Overrides ``settings.database_url``.

Failure modes:
    - ``FileNotFoundError`` -- the configured path does not exist.
    - ``ValueError`` / ``KeyError`` -- schema violations in the YAML.

Audit relevance:
    Every successful call emits a ``BILLING_CONFIG_TRACE`` log entry with
    the config id, version and checksum.
"""

from __future__ import annotations

import os
from dataclasses import replace
from pathlib import Path

from billing_config.fee_provider import ConfiguredFeeConfigProvider, StaticFeeConfigProvider
from billing_config.loader import load_configuration, parse_configuration
from billing_config.schema import BillingConfiguration, BillingSettings
from billing_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | str | None = None) -> BillingConfiguration:
    """Load the active configuration, applying environment overrides."""
    path = Path(
        config_path
        or os.environ.get("BILLING_CONFIG_PATH")
        or DEFAULT_CONFIG_PATH
    )
    configuration = load_configuration(path)

    database_url = os.environ.get("BILLING_DATABASE_URL")
    if database_url:
        configuration = replace(
            configuration,
            settings=replace(configuration.settings, database_url=database_url),
        )

    _logger.info(
        "BILLING_CONFIG_TRACE",
        extra={
            "trace_type": "BILLING_CONFIG_TRACE",
            "config_id": configuration.config_id,
            "config_version": configuration.version,
            "checksum": configuration.checksum,
            "config_path": str(path),
            "property_overrides": len(configuration.property_late_fees),
        },
    )
    return configuration


__all__ = [
    "BillingConfiguration",
    "BillingSettings",
    "ConfiguredFeeConfigProvider",
    "DEFAULT_CONFIG_PATH",
    "StaticFeeConfigProvider",
    "get_active_config",
    "load_configuration",
    "parse_configuration",
]
