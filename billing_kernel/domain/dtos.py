"""
Billing Domain Records (``billing_kernel.domain.dtos``).

Responsibility
--------------
Frozen dataclass records for the nouns of rent billing: invoices,
payments, their allocations and audit trail, and leases.  Stores return
these fully resolved; services never hand ORM rows to callers.

Architecture position
---------------------
**Kernel domain layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All records are ``frozen=True``.
* All monetary fields use ``Decimal`` -- NEVER ``float``.
* ``Invoice.balance_remaining == total_amount - amount_paid`` and is >= 0.
* ``Payment`` active allocations never exceed its amount.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from billing_kernel.exceptions import ValidationError


class InvoiceStatus(str, Enum):
    """Invoice lifecycle states."""
    ISSUED = "issued"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


# Statuses that can still receive money
OUTSTANDING_INVOICE_STATUSES: tuple[InvoiceStatus, ...] = (
    InvoiceStatus.ISSUED,
    InvoiceStatus.PARTIAL,
    InvoiceStatus.OVERDUE,
)


class PaymentStatus(str, Enum):
    """Payment lifecycle states (see ``workflow.PAYMENT_WORKFLOW``)."""
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


# Payments in these statuses can no longer receive allocations
NON_ALLOCATABLE_PAYMENT_STATUSES: frozenset[PaymentStatus] = frozenset({
    PaymentStatus.CANCELLED,
    PaymentStatus.FAILED,
    PaymentStatus.REFUNDED,
})


def coerce_id(value: UUID | str | None, field_name: str) -> UUID:
    """Parse an id argument, raising ValidationError when missing or malformed."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(field_name, "is required")
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as e:
        raise ValidationError(field_name, f"not a valid id: {value!r}") from e


def coerce_optional_id(value: UUID | str | None, field_name: str) -> UUID | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return coerce_id(value, field_name)


@dataclass(frozen=True)
class Invoice:
    """A billable rent obligation."""
    id: UUID
    tenant_id: UUID
    property_id: UUID
    invoice_number: str
    due_date: date
    total_amount: Decimal
    amount_paid: Decimal
    balance_remaining: Decimal
    status: InvoiceStatus
    currency: str = "USD"
    lease_id: UUID | None = None
    version: int = 1
    created_at: datetime | None = None

    def __post_init__(self):
        if self.balance_remaining != self.total_amount - self.amount_paid:
            raise ValueError(
                f"Invoice {self.invoice_number}: balance_remaining "
                f"{self.balance_remaining} != total {self.total_amount} - paid {self.amount_paid}"
            )
        if self.balance_remaining < 0:
            raise ValueError(
                f"Invoice {self.invoice_number}: balance_remaining cannot be negative"
            )

    @property
    def is_outstanding(self) -> bool:
        return (
            self.balance_remaining > 0
            and self.status in OUTSTANDING_INVOICE_STATUSES
        )


@dataclass(frozen=True)
class PaymentAllocation:
    """A recorded application of part of a payment to one invoice."""
    id: UUID
    payment_id: UUID
    invoice_id: UUID
    sequence: int
    amount_applied: Decimal
    applied_at: datetime
    reversed_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.reversed_at is None


@dataclass(frozen=True)
class AuditEntry:
    """One append-only entry in a payment's audit trail."""
    action: str
    from_status: PaymentStatus
    to_status: PaymentStatus
    reason: str | None
    timestamp: datetime
    performed_by: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def is_transition(self) -> bool:
        return self.from_status != self.to_status


@dataclass(frozen=True)
class Payment:
    """A rent payment and everything recorded against it."""
    id: UUID
    tenant_id: UUID
    property_id: UUID
    amount: Decimal
    status: PaymentStatus
    payment_method: str
    due_date: date
    currency: str = "USD"
    lease_id: UUID | None = None
    paid_date: datetime | None = None
    notes: str | None = None
    source: str = "online"
    gateway_reference: str | None = None
    failure_reason: str | None = None
    retry_count: int = 0
    late_fee_amount: Decimal | None = None
    late_fee_applied_at: datetime | None = None
    late_fee_grace_period_end: date | None = None
    late_fee_auto_applied: bool = False
    late_fee_structure: dict[str, Any] | None = None
    allocations: tuple[PaymentAllocation, ...] = ()
    audit_trail: tuple[AuditEntry, ...] = ()

    @property
    def active_allocations(self) -> tuple[PaymentAllocation, ...]:
        return tuple(a for a in self.allocations if a.is_active)

    @property
    def allocated_amount(self) -> Decimal:
        return sum((a.amount_applied for a in self.active_allocations), Decimal("0"))

    @property
    def unallocated_amount(self) -> Decimal:
        return self.amount - self.allocated_amount


@dataclass(frozen=True)
class PaymentDraft:
    """Input for creating a payment row."""
    tenant_id: UUID
    property_id: UUID
    amount: Decimal
    payment_method: str
    due_date: date
    currency: str = "USD"
    lease_id: UUID | None = None
    status: PaymentStatus = PaymentStatus.PENDING
    notes: str | None = None
    source: str = "online"

    def __post_init__(self):
        if self.amount <= 0:
            raise ValidationError("amount", "must be positive")
        if not self.payment_method or not self.payment_method.strip():
            raise ValidationError("payment_method", "is required")


@dataclass(frozen=True)
class Lease:
    """The lease context a payment or invoice belongs to."""
    id: UUID
    tenant_id: UUID
    property_id: UUID
    monthly_rent: Decimal
    start_date: date
    end_date: date | None = None
    currency: str = "USD"
