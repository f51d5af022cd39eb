"""
Payment ORM Models (``billing_kernel.models.payment``).

Responsibility
--------------
SQLAlchemy persistence for payments, their allocation records and their
append-only audit trail.

Architecture position
---------------------
**Kernel models layer**.  Imports from ``billing_kernel.db.base`` and the
domain records.  Written only through ``SqlPaymentStore``.

Invariants enforced
-------------------
* ``status`` changes only through the store's compare-and-set update.
* Allocation rows are never deleted; reversal stamps ``reversed_at``.
* Audit rows are insert-only and ordered by ``sequence`` per payment.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import Base, TrackedBase
from billing_kernel.domain.dtos import (
    AuditEntry,
    Payment,
    PaymentAllocation,
    PaymentStatus,
)
from billing_kernel.domain.values import quantize_amount
from billing_kernel.models._time import ensure_utc


class PaymentModel(TrackedBase):
    """
    ORM model for rent payments.

    Guarantees:
        - amount is positive (ck_payments_amount_positive).
        - late_fee_* columns are written together by the late-fee flow.
    """

    __tablename__ = "payments"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        Index("idx_payments_tenant_id", "tenant_id"),
        Index("idx_payments_status", "status"),
        Index("idx_payments_lease_id", "lease_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    property_id: Mapped[UUID] = mapped_column(nullable=False)
    lease_id: Mapped[UUID | None] = mapped_column(nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    due_date: Mapped[date] = mapped_column(nullable=False)
    paid_date: Mapped[datetime | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="online")
    gateway_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(nullable=False, default=0)

    late_fee_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    late_fee_applied_at: Mapped[datetime | None] = mapped_column(nullable=True)
    late_fee_grace_period_end: Mapped[date | None] = mapped_column(nullable=True)
    late_fee_auto_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    late_fee_structure: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def to_dto(
        self,
        allocations: tuple[PaymentAllocation, ...] = (),
        audit_trail: tuple[AuditEntry, ...] = (),
    ) -> Payment:
        """Convert ORM model to frozen dataclass."""
        return Payment(
            id=self.id,
            tenant_id=self.tenant_id,
            property_id=self.property_id,
            lease_id=self.lease_id,
            amount=quantize_amount(self.amount, self.currency),
            currency=self.currency,
            status=PaymentStatus(self.status),
            payment_method=self.payment_method,
            due_date=self.due_date,
            paid_date=ensure_utc(self.paid_date),
            notes=self.notes,
            source=self.source,
            gateway_reference=self.gateway_reference,
            failure_reason=self.failure_reason,
            retry_count=self.retry_count,
            late_fee_amount=(
                quantize_amount(self.late_fee_amount, self.currency)
                if self.late_fee_amount is not None else None
            ),
            late_fee_applied_at=ensure_utc(self.late_fee_applied_at),
            late_fee_grace_period_end=self.late_fee_grace_period_end,
            late_fee_auto_applied=self.late_fee_auto_applied,
            late_fee_structure=self.late_fee_structure,
            allocations=allocations,
            audit_trail=audit_trail,
        )

    def __repr__(self) -> str:
        return f"<PaymentModel {self.id}: {self.amount} {self.status}>"


class PaymentAllocationModel(Base):
    """
    One application of part of a payment to one invoice.

    Guarantees:
        - (payment_id, sequence) is unique; sequence records application order.
        - amount_applied is positive.
    """

    __tablename__ = "payment_allocations"

    __table_args__ = (
        UniqueConstraint("payment_id", "sequence", name="uq_payment_allocations_sequence"),
        CheckConstraint("amount_applied > 0", name="ck_payment_allocations_amount_positive"),
        Index("idx_payment_allocations_invoice_id", "invoice_id"),
    )

    payment_id: Mapped[UUID] = mapped_column(ForeignKey("payments.id"), nullable=False)
    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)
    amount_applied: Mapped[Decimal] = mapped_column(nullable=False)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reversed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_dto(self, currency: str = "USD") -> PaymentAllocation:
        return PaymentAllocation(
            id=self.id,
            payment_id=self.payment_id,
            invoice_id=self.invoice_id,
            sequence=self.sequence,
            amount_applied=quantize_amount(self.amount_applied, currency),
            applied_at=ensure_utc(self.applied_at),
            reversed_at=ensure_utc(self.reversed_at),
        )


class PaymentAuditEntryModel(Base):
    """Append-only audit row for a payment status change or noteworthy event."""

    __tablename__ = "payment_audit_entries"

    __table_args__ = (
        UniqueConstraint("payment_id", "sequence", name="uq_payment_audit_entries_sequence"),
    )

    payment_id: Mapped[UUID] = mapped_column(ForeignKey("payments.id"), nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    from_status: Mapped[str] = mapped_column(String(20), nullable=False)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    performed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_dto(self) -> AuditEntry:
        return AuditEntry(
            action=self.action,
            from_status=PaymentStatus(self.from_status),
            to_status=PaymentStatus(self.to_status),
            reason=self.reason,
            timestamp=ensure_utc(self.timestamp),
            performed_by=self.performed_by,
            details=dict(self.details or {}),
        )
