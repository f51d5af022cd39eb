"""
Pure calculation engines: late fees, proration and allocation planning.

Engines take plain domain records and dates, never a session or a clock,
and emit a BILLING_ENGINE_TRACE log record per invocation.
"""

from billing_engines.allocation import (
    AllocationEngine,
    AllocationLine,
    AllocationMethod,
    AllocationResult,
    AllocationTarget,
)
from billing_engines.late_fee import LateFeeCalculation, LateFeeCalculator
from billing_engines.proration import (
    ProrationCalculation,
    ProrationCalculator,
    ProrationMethod,
    ProrationType,
)

__all__ = [
    "AllocationEngine",
    "AllocationLine",
    "AllocationMethod",
    "AllocationResult",
    "AllocationTarget",
    "LateFeeCalculation",
    "LateFeeCalculator",
    "ProrationCalculation",
    "ProrationCalculator",
    "ProrationMethod",
    "ProrationType",
]
