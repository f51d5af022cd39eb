"""Pure domain layer: values, dates, clock, records, fee types, workflows."""

from billing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from billing_kernel.domain.dtos import (
    AuditEntry,
    Invoice,
    InvoiceStatus,
    Lease,
    Payment,
    PaymentAllocation,
    PaymentDraft,
    PaymentStatus,
)
from billing_kernel.domain.fees import (
    DailyFee,
    FeeStructure,
    FeeTier,
    FixedFee,
    LateFeeConfig,
    PercentageFee,
    TieredFee,
)
from billing_kernel.domain.values import Currency, Money
from billing_kernel.domain.workflow import PAYMENT_WORKFLOW, Transition, Workflow

__all__ = [
    "AuditEntry",
    "Clock",
    "Currency",
    "DailyFee",
    "DeterministicClock",
    "FeeStructure",
    "FeeTier",
    "FixedFee",
    "Invoice",
    "InvoiceStatus",
    "LateFeeConfig",
    "Lease",
    "Money",
    "PAYMENT_WORKFLOW",
    "Payment",
    "PaymentAllocation",
    "PaymentDraft",
    "PaymentStatus",
    "PercentageFee",
    "SystemClock",
    "TieredFee",
    "Transition",
    "Workflow",
]
