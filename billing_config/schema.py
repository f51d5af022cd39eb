"""
Billing configuration schema.

Frozen dataclasses the YAML loader parses into.  ``BillingConfiguration``
is the single runtime artifact handed to the wiring layer: service
settings plus the late-fee policy for every property.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from billing_kernel.domain.fees import LateFeeConfig


@dataclass(frozen=True)
class BillingSettings:
    """Process-level settings."""

    database_url: str = "sqlite://"
    currency: str = "USD"
    auto_apply_on_success: bool = True
    max_payment_retries: int = 3
    log_level: str = "INFO"

    def __post_init__(self):
        if self.max_payment_retries < 0:
            raise ValueError("max_payment_retries cannot be negative")


@dataclass(frozen=True)
class BillingConfiguration:
    """Parsed, validated configuration set."""

    config_id: str
    version: int
    settings: BillingSettings
    default_late_fee: LateFeeConfig
    property_late_fees: dict[str, LateFeeConfig] = field(default_factory=dict)
    checksum: str = ""

    def late_fee_for(self, property_id: str) -> LateFeeConfig:
        """Property override when present, otherwise the default policy."""
        return self.property_late_fees.get(str(property_id), self.default_late_fee)
