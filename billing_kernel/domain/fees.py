"""
Late-fee configuration types.

The fee structure is a closed tagged union of frozen dataclasses; the
calculator dispatches on it with ``match``.  ``LateFeeConfig`` is the
per-property configuration served by a fee configuration provider.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, ClassVar, TypeAlias


@dataclass(frozen=True)
class FixedFee:
    """Constant fee regardless of lateness."""
    amount: Decimal
    type: ClassVar[str] = "fixed"

    def __post_init__(self):
        if self.amount < 0:
            raise ValueError("fixed fee amount cannot be negative")

    def snapshot(self) -> dict[str, Any]:
        return {"type": self.type, "amount": str(self.amount)}


@dataclass(frozen=True)
class PercentageFee:
    """Percentage of the billed amount (``rate`` is in percent, 5 = 5%)."""
    rate: Decimal
    type: ClassVar[str] = "percentage"

    def __post_init__(self):
        if self.rate < 0 or self.rate > Decimal("100"):
            raise ValueError("percentage fee rate must be between 0 and 100")

    def snapshot(self) -> dict[str, Any]:
        return {"type": self.type, "rate": str(self.rate)}


@dataclass(frozen=True)
class DailyFee:
    """Fee accruing per day late."""
    amount: Decimal
    type: ClassVar[str] = "daily"

    def __post_init__(self):
        if self.amount < 0:
            raise ValueError("daily fee amount cannot be negative")

    def snapshot(self) -> dict[str, Any]:
        return {"type": self.type, "amount": str(self.amount)}


@dataclass(frozen=True)
class FeeTier:
    """Flat fee that applies once ``days_late`` reaches the threshold."""
    days_late: int
    amount: Decimal

    def __post_init__(self):
        if self.days_late < 0:
            raise ValueError("tier days_late cannot be negative")
        if self.amount < 0:
            raise ValueError("tier amount cannot be negative")


@dataclass(frozen=True)
class TieredFee:
    """Escalating flat fees keyed on days late."""
    tiers: tuple[FeeTier, ...]
    type: ClassVar[str] = "tiered"

    def select_tier(self, days_late: int) -> FeeTier | None:
        """Tier with the greatest threshold <= ``days_late`` (highest wins ties)."""
        eligible = [t for t in self.tiers if t.days_late <= days_late]
        if not eligible:
            return None
        return max(eligible, key=lambda t: t.days_late)

    def snapshot(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "tiers": [
                {"days_late": t.days_late, "amount": str(t.amount)}
                for t in self.tiers
            ],
        }


FeeStructure: TypeAlias = FixedFee | PercentageFee | DailyFee | TieredFee


@dataclass(frozen=True)
class LateFeeConfig:
    """A property's late-fee policy."""
    enabled: bool
    grace_period_days: int
    fee_structure: FeeStructure
    maximum_fee: Decimal | None = None

    def __post_init__(self):
        if self.grace_period_days < 0:
            raise ValueError("grace_period_days cannot be negative")
        if self.maximum_fee is not None and self.maximum_fee < 0:
            raise ValueError("maximum_fee cannot be negative")

    @classmethod
    def disabled(cls) -> LateFeeConfig:
        return cls(enabled=False, grace_period_days=0, fee_structure=FixedFee(Decimal("0")))
