"""
SqlPaymentStore -- SQLAlchemy implementation of ``PaymentStore``.

Status changes are a conditional UPDATE keyed on ``(id, status)`` so two
writers racing on the same payment cannot both win; the loser gets
``PaymentConflictError``.  Allocation rows and audit rows are insert-only
(allocation reversal only stamps ``reversed_at``).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update

from billing_kernel.domain.dtos import (
    AuditEntry,
    Payment,
    PaymentAllocation,
    PaymentDraft,
    PaymentStatus,
)
from billing_kernel.exceptions import PaymentConflictError, PaymentNotFoundError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.payment import (
    PaymentAllocationModel,
    PaymentAuditEntryModel,
    PaymentModel,
)
from billing_kernel.stores.base import BaseStore

logger = get_logger("stores.payment")

# Columns writable through update_payment(); status has its own CAS path
_UPDATABLE_FIELDS = frozenset({
    "notes",
    "gateway_reference",
    "failure_reason",
    "retry_count",
    "late_fee_amount",
    "late_fee_applied_at",
    "late_fee_grace_period_end",
    "late_fee_auto_applied",
    "late_fee_structure",
})


class SqlPaymentStore(BaseStore):
    """Payment persistence over the caller's session."""

    def _load(self, payment_id: UUID) -> PaymentModel | None:
        return self.session.get(PaymentModel, payment_id, populate_existing=True)

    def create_payment(self, draft: PaymentDraft) -> Payment:
        model = PaymentModel(
            tenant_id=draft.tenant_id,
            property_id=draft.property_id,
            lease_id=draft.lease_id,
            amount=draft.amount,
            currency=draft.currency,
            status=draft.status.value,
            payment_method=draft.payment_method,
            due_date=draft.due_date,
            notes=draft.notes,
            source=draft.source,
            retry_count=0,
            late_fee_auto_applied=False,
        )
        self.session.add(model)
        self.session.flush()
        logger.debug(
            "payment_created",
            extra={"payment_id": str(model.id), "amount": str(draft.amount)},
        )
        return model.to_dto()

    def get_payment(self, payment_id: UUID) -> Payment | None:
        model = self._load(payment_id)
        if model is None:
            return None
        return model.to_dto(
            allocations=tuple(self.list_allocations(payment_id, include_reversed=True)),
            audit_trail=tuple(self.list_audit_entries(payment_id)),
        )

    def update_status(
        self,
        payment_id: UUID,
        expected_status: PaymentStatus,
        new_status: PaymentStatus,
        paid_date: datetime | None = None,
    ) -> None:
        """
        Compare-and-set the payment status.

        Raises:
            PaymentNotFoundError: If the payment does not exist.
            PaymentConflictError: If the stored status is no longer
                ``expected_status``.
        """
        values: dict[str, Any] = {"status": new_status.value}
        if paid_date is not None:
            values["paid_date"] = paid_date
        result = self.session.execute(
            update(PaymentModel)
            .where(
                PaymentModel.id == payment_id,
                PaymentModel.status == expected_status.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = self._load(payment_id)
            if current is None:
                raise PaymentNotFoundError(str(payment_id))
            logger.warning(
                "payment_status_conflict",
                extra={
                    "payment_id": str(payment_id),
                    "expected_status": expected_status.value,
                    "actual_status": current.status,
                },
            )
            raise PaymentConflictError(str(payment_id), expected_status.value)
        self.session.flush()

    def update_payment(self, payment_id: UUID, **fields: Any) -> Payment:
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update payment fields: {sorted(unknown)}")
        model = self._load(payment_id)
        if model is None:
            raise PaymentNotFoundError(str(payment_id))
        for name, value in fields.items():
            setattr(model, name, value)
        self.session.flush()
        return self.get_payment(payment_id)

    def append_audit_entry(self, payment_id: UUID, entry: AuditEntry) -> AuditEntry:
        next_sequence = self._next_sequence(PaymentAuditEntryModel, payment_id)
        model = PaymentAuditEntryModel(
            payment_id=payment_id,
            sequence=next_sequence,
            action=entry.action,
            from_status=entry.from_status.value,
            to_status=entry.to_status.value,
            reason=entry.reason,
            performed_by=entry.performed_by,
            details=dict(entry.details),
            timestamp=entry.timestamp,
        )
        self.session.add(model)
        self.session.flush()
        return entry

    def list_audit_entries(self, payment_id: UUID) -> list[AuditEntry]:
        stmt = (
            select(PaymentAuditEntryModel)
            .where(PaymentAuditEntryModel.payment_id == payment_id)
            .order_by(PaymentAuditEntryModel.sequence)
        )
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def add_allocation(
        self,
        payment_id: UUID,
        invoice_id: UUID,
        amount: Decimal,
        applied_at: datetime,
    ) -> PaymentAllocation:
        model = PaymentAllocationModel(
            payment_id=payment_id,
            invoice_id=invoice_id,
            sequence=self._next_sequence(PaymentAllocationModel, payment_id),
            amount_applied=amount,
            applied_at=applied_at,
        )
        self.session.add(model)
        self.session.flush()
        return model.to_dto(self._currency_of(payment_id))

    def list_allocations(
        self, payment_id: UUID, include_reversed: bool = False,
    ) -> list[PaymentAllocation]:
        stmt = select(PaymentAllocationModel).where(
            PaymentAllocationModel.payment_id == payment_id
        )
        if not include_reversed:
            stmt = stmt.where(PaymentAllocationModel.reversed_at.is_(None))
        stmt = stmt.order_by(PaymentAllocationModel.sequence).execution_options(
            populate_existing=True
        )
        currency = self._currency_of(payment_id)
        return [m.to_dto(currency) for m in self.session.scalars(stmt)]

    def mark_allocation_reversed(self, allocation_id: UUID, reversed_at: datetime) -> bool:
        """Stamp ``reversed_at``; False when the allocation was already reversed."""
        result = self.session.execute(
            update(PaymentAllocationModel)
            .where(
                PaymentAllocationModel.id == allocation_id,
                PaymentAllocationModel.reversed_at.is_(None),
            )
            .values(reversed_at=reversed_at)
            .execution_options(synchronize_session=False)
        )
        self.session.flush()
        return result.rowcount == 1

    def _next_sequence(self, model_cls, payment_id: UUID) -> int:
        current = self.session.scalar(
            select(func.max(model_cls.sequence)).where(model_cls.payment_id == payment_id)
        )
        return (current or 0) + 1

    def _currency_of(self, payment_id: UUID) -> str:
        currency = self.session.scalar(
            select(PaymentModel.currency).where(PaymentModel.id == payment_id)
        )
        return currency or "USD"
