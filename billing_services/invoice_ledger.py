"""
InvoiceLedger -- the only writer of invoice balances.

Responsibility:
    Applies and reverses amounts against a single invoice, keeping
    ``amount_paid``, ``balance_remaining`` and ``status`` consistent, and
    records which payments touched the invoice.

Architecture position:
    Services -- imperative shell over ``InvoiceStore``.  Called by the
    linking orchestrator; never calls it back.

Invariants enforced:
    - ``balance_remaining == total_amount - amount_paid`` and ``>= 0``
      after every operation.
    - Every mutation re-reads the invoice first and writes through a
      compare-and-set on its version, so a concurrent writer surfaces as
      ``AllocationConflictError`` instead of a lost update.
    - Status is derived from the resulting balance: ``paid`` at zero,
      ``partial`` strictly between zero and total, otherwise ``issued``
      (apply leaves the status unchanged when the balance still equals
      the total).

Failure modes:
    - ValidationError: amount is not positive or has sub-cent precision.
    - InvoiceNotFoundError: the invoice does not exist.
    - AllocationError: amount exceeds the balance (apply) or the amount
      paid (reverse), or the invoice is cancelled.
    - AllocationConflictError: the invoice changed between read and write.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from billing_kernel.domain.dtos import Invoice, InvoiceStatus
from billing_kernel.domain.values import require_precision
from billing_kernel.exceptions import (
    AllocationConflictError,
    AllocationError,
    InvoiceNotFoundError,
    ValidationError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.stores.base import InvoiceStore

logger = get_logger("services.invoice_ledger")


@dataclass(frozen=True)
class LedgerApplication:
    """Outcome of one apply or reverse against an invoice."""

    invoice: Invoice
    amount: Decimal

    @property
    def remaining_balance(self) -> Decimal:
        return self.invoice.balance_remaining

    @property
    def fully_paid(self) -> bool:
        return self.invoice.balance_remaining == 0


class InvoiceLedger:
    """
    Apply/reverse operations on one invoice at a time.

    Non-goals:
        - Does NOT track per-payment allocation history; the orchestrator
          records allocations and only asks the ledger to reverse amounts
          it recorded.
        - Does NOT commit.
    """

    def __init__(self, invoice_store: InvoiceStore):
        self._invoices = invoice_store

    def get_invoice(self, invoice_id: UUID) -> Invoice:
        invoice = self._invoices.get_invoice(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

    def apply_payment(
        self,
        invoice_id: UUID,
        payment_id: UUID,
        amount: Decimal,
        expected_version: int | None = None,
    ) -> LedgerApplication:
        """
        Apply ``amount`` of ``payment_id`` to the invoice.

        Preconditions:
            0 < amount <= freshly-read balance_remaining.
            When ``expected_version`` is given, the invoice still has it;
            otherwise ``AllocationConflictError`` is raised before the
            balance check, since ``amount`` was sized from that version.
        Postconditions:
            amount_paid += amount; balance_remaining -= amount; the payment
            is linked to the invoice.
        """
        invoice = self.get_invoice(invoice_id)
        if expected_version is not None and invoice.version != expected_version:
            raise AllocationConflictError(str(invoice_id), expected_version)
        amount = self._validate_amount(amount, invoice.currency)

        if invoice.status == InvoiceStatus.CANCELLED:
            raise AllocationError(str(invoice_id), "invoice is cancelled", amount=amount)
        if amount > invoice.balance_remaining:
            logger.warning("ledger_amount_exceeds_balance", extra={
                "invoice_id": str(invoice_id),
                "amount": str(amount),
                "balance_remaining": str(invoice.balance_remaining),
            })
            raise AllocationError(str(invoice_id), "amount exceeds balance", amount=amount)

        new_paid = invoice.amount_paid + amount
        new_balance = invoice.balance_remaining - amount
        if new_balance == 0:
            new_status = InvoiceStatus.PAID
        elif new_balance < invoice.total_amount:
            new_status = InvoiceStatus.PARTIAL
        else:
            new_status = invoice.status

        updated = self._invoices.update_balance(
            invoice_id=invoice.id,
            expected_version=invoice.version,
            amount_paid=new_paid,
            balance_remaining=new_balance,
            status=new_status,
        )
        self._invoices.link_payment(invoice.id, payment_id)

        logger.info("ledger_payment_applied", extra={
            "invoice_id": str(invoice.id),
            "payment_id": str(payment_id),
            "amount": str(amount),
            "balance_remaining": str(updated.balance_remaining),
            "status": updated.status.value,
        })
        return LedgerApplication(invoice=updated, amount=amount)

    def reverse_allocation(
        self,
        invoice_id: UUID,
        payment_id: UUID,
        amount: Decimal,
    ) -> LedgerApplication:
        """
        Give ``amount`` back to the invoice balance.

        Preconditions:
            0 < amount <= freshly-read amount_paid.
        Postconditions:
            amount_paid -= amount; balance_remaining += amount; status is
            re-derived from the resulting balance; the payment link is
            removed.
        """
        invoice = self.get_invoice(invoice_id)
        amount = self._validate_amount(amount, invoice.currency)

        if amount > invoice.amount_paid:
            raise AllocationError(
                str(invoice_id),
                f"reversal amount {amount} exceeds amount paid {invoice.amount_paid}",
                amount=amount,
            )

        new_paid = invoice.amount_paid - amount
        new_balance = invoice.balance_remaining + amount
        if invoice.status == InvoiceStatus.CANCELLED:
            new_status = InvoiceStatus.CANCELLED
        elif new_balance == invoice.total_amount:
            new_status = InvoiceStatus.ISSUED
        else:
            new_status = InvoiceStatus.PARTIAL

        updated = self._invoices.update_balance(
            invoice_id=invoice.id,
            expected_version=invoice.version,
            amount_paid=new_paid,
            balance_remaining=new_balance,
            status=new_status,
        )
        self._invoices.unlink_payment(invoice.id, payment_id)

        logger.info("ledger_allocation_reversed", extra={
            "invoice_id": str(invoice.id),
            "payment_id": str(payment_id),
            "amount": str(amount),
            "balance_remaining": str(updated.balance_remaining),
            "status": updated.status.value,
        })
        return LedgerApplication(invoice=updated, amount=amount)

    @staticmethod
    def _validate_amount(amount: Decimal, currency: str) -> Decimal:
        amount = require_precision(amount, currency)
        if amount <= 0:
            raise ValidationError("amount", "must be positive")
        return amount
