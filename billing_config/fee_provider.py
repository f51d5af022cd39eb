"""Fee configuration provider backed by the loaded billing configuration."""

from __future__ import annotations

from uuid import UUID

from billing_config.schema import BillingConfiguration
from billing_kernel.domain.fees import LateFeeConfig
from billing_kernel.logging_config import get_logger

logger = get_logger("config.fee_provider")


class ConfiguredFeeConfigProvider:
    """Serves per-property ``LateFeeConfig`` from a ``BillingConfiguration``."""

    def __init__(self, configuration: BillingConfiguration):
        self._configuration = configuration

    def get_fee_config(self, property_id: UUID) -> LateFeeConfig:
        key = str(property_id)
        if key not in self._configuration.property_late_fees:
            logger.debug("fee_config_default_used", extra={"property_id": key})
        return self._configuration.late_fee_for(key)


class StaticFeeConfigProvider:
    """One policy for every property."""

    def __init__(self, config: LateFeeConfig):
        self._config = config

    def get_fee_config(self, property_id: UUID) -> LateFeeConfig:
        return self._config
