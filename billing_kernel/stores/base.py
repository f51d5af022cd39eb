"""
Store contracts (``billing_kernel.stores.base``).

Responsibility
--------------
Protocols for the persistence collaborators the billing services depend
on, plus ``BaseStore`` for the SQLAlchemy implementations.  Services are
written against the protocols so tests and alternative backends can
supply their own stores.

Architecture position
---------------------
**Kernel stores layer**.  Imports domain records only; MUST NOT import
from ``billing_engines`` or ``billing_services``.

Invariants enforced
-------------------
* Stores accept the caller's Session and only ``flush()``; the caller owns
  commit and rollback.
* Stores return frozen domain records, never ORM instances.
* Compare-and-set writes raise a ``ConcurrencyError`` subclass when the
  precondition no longer holds.
"""

from __future__ import annotations

from abc import ABC
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

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
from billing_kernel.domain.fees import LateFeeConfig


class BaseStore(ABC):
    """
    Base class for SQLAlchemy-backed stores.

    Contract:
        Holds the caller's session; subclasses flush, never commit.
    """

    def __init__(self, session: Session):
        self.session = session


@runtime_checkable
class InvoiceStore(Protocol):
    """Invoice persistence used by the ledger and the linking orchestrator."""

    def get_invoice(self, invoice_id: UUID) -> Invoice | None: ...

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
    ) -> Invoice: ...

    def find_outstanding_invoices(
        self, tenant_id: UUID, lease_id: UUID | None = None,
    ) -> list[Invoice]: ...

    def find_open_balances(
        self, tenant_id: UUID, lease_id: UUID | None = None,
    ) -> list[Invoice]: ...

    def find_invoices_linked_to_payment(self, payment_id: UUID) -> list[Invoice]: ...

    def update_balance(
        self,
        invoice_id: UUID,
        expected_version: int,
        amount_paid: Decimal,
        balance_remaining: Decimal,
        status: InvoiceStatus,
    ) -> Invoice: ...

    def link_payment(self, invoice_id: UUID, payment_id: UUID) -> None: ...

    def unlink_payment(self, invoice_id: UUID, payment_id: UUID) -> None: ...


@runtime_checkable
class PaymentStore(Protocol):
    """Payment persistence: status, allocation records and audit trail."""

    def create_payment(self, draft: PaymentDraft) -> Payment: ...

    def get_payment(self, payment_id: UUID) -> Payment | None: ...

    def update_status(
        self,
        payment_id: UUID,
        expected_status: PaymentStatus,
        new_status: PaymentStatus,
        paid_date: datetime | None = None,
    ) -> None: ...

    def update_payment(self, payment_id: UUID, **fields: Any) -> Payment: ...

    def append_audit_entry(self, payment_id: UUID, entry: AuditEntry) -> AuditEntry: ...

    def list_audit_entries(self, payment_id: UUID) -> list[AuditEntry]: ...

    def add_allocation(
        self,
        payment_id: UUID,
        invoice_id: UUID,
        amount: Decimal,
        applied_at: datetime,
    ) -> PaymentAllocation: ...

    def list_allocations(
        self, payment_id: UUID, include_reversed: bool = False,
    ) -> list[PaymentAllocation]: ...

    def mark_allocation_reversed(self, allocation_id: UUID, reversed_at: datetime) -> bool: ...


@runtime_checkable
class LeaseStore(Protocol):
    """Lease lookups used to resolve a payment's property."""

    def get_lease(self, lease_id: UUID) -> Lease | None: ...

    def create_lease(
        self,
        tenant_id: UUID,
        property_id: UUID,
        monthly_rent: Decimal,
        start_date: date,
        end_date: date | None = None,
        currency: str = "USD",
    ) -> Lease: ...


@runtime_checkable
class FeeConfigProvider(Protocol):
    """Per-property late-fee policy lookup."""

    def get_fee_config(self, property_id: UUID) -> LateFeeConfig: ...
