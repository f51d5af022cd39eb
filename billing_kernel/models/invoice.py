"""
Invoice ORM Models (``billing_kernel.models.invoice``).

Maps the ``Invoice`` record to the ``invoices`` table.  Balance columns
are written only by the InvoiceLedger through ``SqlInvoiceStore``; the
``version`` counter backs the compare-and-set that turns lost updates into
``AllocationConflictError``.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import Base, TrackedBase
from billing_kernel.domain.dtos import Invoice, InvoiceStatus
from billing_kernel.domain.values import quantize_amount
from billing_kernel.models._time import ensure_utc


class InvoiceModel(TrackedBase):
    """
    ORM model for rent invoices.

    Guarantees:
        - invoice_number is unique (uq_invoices_invoice_number).
        - balance_remaining = total_amount - amount_paid, never negative
          (ck_invoices_balance_non_negative).
        - version increments on every balance change.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        CheckConstraint("balance_remaining >= 0", name="ck_invoices_balance_non_negative"),
        Index("idx_invoices_tenant_status", "tenant_id", "status"),
        Index("idx_invoices_lease_id", "lease_id"),
        Index("idx_invoices_due_date", "due_date"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    property_id: Mapped[UUID] = mapped_column(nullable=False)
    lease_id: Mapped[UUID | None] = mapped_column(nullable=True)
    invoice_number: Mapped[str] = mapped_column(String(100), nullable=False)
    due_date: Mapped[date] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    balance_remaining: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=InvoiceStatus.ISSUED.value)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    def to_dto(self) -> Invoice:
        """Convert ORM model to frozen dataclass."""
        return Invoice(
            id=self.id,
            tenant_id=self.tenant_id,
            property_id=self.property_id,
            lease_id=self.lease_id,
            invoice_number=self.invoice_number,
            due_date=self.due_date,
            currency=self.currency,
            total_amount=quantize_amount(self.total_amount, self.currency),
            amount_paid=quantize_amount(self.amount_paid, self.currency),
            balance_remaining=quantize_amount(self.balance_remaining, self.currency),
            status=InvoiceStatus(self.status),
            version=self.version,
            created_at=ensure_utc(self.created_at),
        )

    def __repr__(self) -> str:
        return f"<InvoiceModel {self.invoice_number}: {self.balance_remaining}/{self.total_amount} {self.status}>"


class InvoicePaymentLinkModel(Base):
    """
    Which payments have touched an invoice.

    Written by the ledger alongside every balance change.  Reversal of
    legacy payments that lack allocation rows falls back to these links.
    """

    __tablename__ = "invoice_payment_links"

    __table_args__ = (
        UniqueConstraint("invoice_id", "payment_id", name="uq_invoice_payment_links_pair"),
        Index("idx_invoice_payment_links_payment_id", "payment_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    payment_id: Mapped[UUID] = mapped_column(nullable=False)
    linked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
