"""
SqlInvoiceStore -- SQLAlchemy implementation of ``InvoiceStore``.

Balance writes go through ``update_balance``, a conditional UPDATE keyed on
``(id, version)``.  When another transaction got there first the UPDATE
matches no row and ``AllocationConflictError`` is raised; nothing is
overwritten.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, select, update

from billing_kernel.domain.dtos import (
    OUTSTANDING_INVOICE_STATUSES,
    Invoice,
    InvoiceStatus,
)
from billing_kernel.exceptions import AllocationConflictError, InvoiceNotFoundError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.invoice import InvoiceModel, InvoicePaymentLinkModel
from billing_kernel.stores.base import BaseStore

logger = get_logger("stores.invoice")

_DUE_ORDER = (InvoiceModel.due_date, InvoiceModel.created_at, InvoiceModel.invoice_number)


class SqlInvoiceStore(BaseStore):
    """Invoice persistence over the caller's session."""

    def _load(self, invoice_id: UUID) -> InvoiceModel | None:
        return self.session.get(InvoiceModel, invoice_id, populate_existing=True)

    def get_invoice(self, invoice_id: UUID) -> Invoice | None:
        model = self._load(invoice_id)
        return model.to_dto() if model is not None else None

    def create_invoice(
        self,
        tenant_id: UUID,
        property_id: UUID,
        invoice_number: str,
        due_date: date,
        total_amount: Decimal,
        lease_id: UUID | None = None,
        currency: str = "USD",
        status: InvoiceStatus = InvoiceStatus.ISSUED,
    ) -> Invoice:
        model = InvoiceModel(
            tenant_id=tenant_id,
            property_id=property_id,
            lease_id=lease_id,
            invoice_number=invoice_number,
            due_date=due_date,
            currency=currency,
            total_amount=total_amount,
            amount_paid=Decimal("0"),
            balance_remaining=total_amount,
            status=status.value,
            version=1,
        )
        self.session.add(model)
        self.session.flush()
        logger.debug(
            "invoice_created",
            extra={"invoice_id": str(model.id), "invoice_number": invoice_number},
        )
        return model.to_dto()

    def find_outstanding_invoices(
        self, tenant_id: UUID, lease_id: UUID | None = None,
    ) -> list[Invoice]:
        """Invoices that can still receive money, oldest due first."""
        stmt = select(InvoiceModel).where(
            InvoiceModel.tenant_id == tenant_id,
            InvoiceModel.balance_remaining > 0,
            InvoiceModel.status.in_([s.value for s in OUTSTANDING_INVOICE_STATUSES]),
        )
        if lease_id is not None:
            stmt = stmt.where(InvoiceModel.lease_id == lease_id)
        stmt = stmt.order_by(*_DUE_ORDER).execution_options(populate_existing=True)
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def find_open_balances(
        self, tenant_id: UUID, lease_id: UUID | None = None,
    ) -> list[Invoice]:
        """Every non-cancelled invoice with money still owed, oldest due first."""
        stmt = select(InvoiceModel).where(
            InvoiceModel.tenant_id == tenant_id,
            InvoiceModel.balance_remaining > 0,
            InvoiceModel.status != InvoiceStatus.CANCELLED.value,
        )
        if lease_id is not None:
            stmt = stmt.where(InvoiceModel.lease_id == lease_id)
        stmt = stmt.order_by(*_DUE_ORDER).execution_options(populate_existing=True)
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def find_invoices_linked_to_payment(self, payment_id: UUID) -> list[Invoice]:
        stmt = (
            select(InvoiceModel)
            .join(
                InvoicePaymentLinkModel,
                InvoicePaymentLinkModel.invoice_id == InvoiceModel.id,
            )
            .where(InvoicePaymentLinkModel.payment_id == payment_id)
            .order_by(InvoicePaymentLinkModel.linked_at, InvoiceModel.invoice_number)
            .execution_options(populate_existing=True)
        )
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def update_balance(
        self,
        invoice_id: UUID,
        expected_version: int,
        amount_paid: Decimal,
        balance_remaining: Decimal,
        status: InvoiceStatus,
    ) -> Invoice:
        """
        Compare-and-set the invoice balance.

        Raises:
            InvoiceNotFoundError: If the invoice does not exist.
            AllocationConflictError: If the stored version is no longer
                ``expected_version``.
        """
        stmt = (
            update(InvoiceModel)
            .where(
                InvoiceModel.id == invoice_id,
                InvoiceModel.version == expected_version,
            )
            .values(
                amount_paid=amount_paid,
                balance_remaining=balance_remaining,
                status=status.value,
                version=InvoiceModel.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if result.rowcount == 0:
            current = self._load(invoice_id)
            if current is None:
                raise InvoiceNotFoundError(str(invoice_id))
            logger.warning(
                "invoice_version_conflict",
                extra={
                    "invoice_id": str(invoice_id),
                    "expected_version": expected_version,
                    "actual_version": current.version,
                },
            )
            raise AllocationConflictError(str(invoice_id), expected_version)

        self.session.flush()
        updated = self._load(invoice_id)
        return updated.to_dto()

    def link_payment(self, invoice_id: UUID, payment_id: UUID) -> None:
        existing = self.session.scalar(
            select(InvoicePaymentLinkModel).where(
                InvoicePaymentLinkModel.invoice_id == invoice_id,
                InvoicePaymentLinkModel.payment_id == payment_id,
            )
        )
        if existing is not None:
            return
        self.session.add(
            InvoicePaymentLinkModel(invoice_id=invoice_id, payment_id=payment_id)
        )
        self.session.flush()

    def unlink_payment(self, invoice_id: UUID, payment_id: UUID) -> None:
        self.session.execute(
            delete(InvoicePaymentLinkModel)
            .where(
                InvoicePaymentLinkModel.invoice_id == invoice_id,
                InvoicePaymentLinkModel.payment_id == payment_id,
            )
            .execution_options(synchronize_session=False)
        )
        self.session.flush()
