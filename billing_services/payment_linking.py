"""
PaymentLinkingService -- applies payments to a tenant's invoices.

Responsibility:
    Takes a payment and spreads it across the tenant's outstanding
    invoices oldest-obligation-first, records each application on the
    payment, reverses those applications for refunds and corrections, and
    records operator-entered (manual) payments.

Architecture position:
    Services -- top-level orchestrator.  Consumes InvoiceLedger (invoice
    balances), PaymentStateMachine (status and audit trail) and the
    payment/invoice/lease stores.  It is the only writer of payment
    allocation rows.

Invariants enforced:
    - Invoices are processed strictly in ascending
      ``(due_date, created_at, invoice_number)`` order and allocations are
      recorded in that order.
    - Each per-invoice step (ledger apply + allocation row) runs inside a
      savepoint: a failing step leaves neither half behind, so invoice
      balances and allocation rows always agree.
    - Each step is sized against a fresh read of the invoice, not the
      outstanding list; a change between that read and the write is a
      retryable ``AllocationConflictError``.
    - A payment's active allocations never exceed its amount.
    - Reversal gives back exactly the recorded per-invoice amounts and
      marks each allocation reversed, so reversing twice is a no-op.

Failure modes:
    - Multi-invoice allocation: per-invoice ``BillingError``s are recorded
      on the result (``errors`` and ``failures``) and in the payment's
      audit trail; the loop continues.
    - Single-invoice allocation, reversal and manual recording raise
      immediately after writing an audit entry.
    - PropertyResolutionError: manual payment without lease or invoice
      context; nothing is written.

Audit relevance:
    Every allocation failure and every reversal is visible in the
    payment's audit trail.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import UUID

from billing_engines.allocation import (
    AllocationEngine,
    AllocationMethod,
    AllocationResult,
    AllocationTarget,
)
from billing_kernel.db.unit_of_work import UnitOfWork
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.dates import days_overdue
from billing_kernel.domain.dtos import (
    NON_ALLOCATABLE_PAYMENT_STATUSES,
    Invoice,
    InvoiceStatus,
    Payment,
    PaymentDraft,
    PaymentStatus,
    coerce_id,
    coerce_optional_id,
)
from billing_kernel.domain.values import Money, require_precision
from billing_kernel.exceptions import (
    AllocationConflictError,
    BillingError,
    InsufficientInvoiceBalanceError,
    PaymentConflictError,
    PropertyResolutionError,
    ValidationError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.stores.base import InvoiceStore, LeaseStore, PaymentStore
from billing_services.invoice_ledger import InvoiceLedger
from billing_services.payment_state_machine import PaymentStateMachine

logger = get_logger("services.payment_linking")

NO_OUTSTANDING_INVOICES = "No outstanding invoices found for this tenant"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def allocation_order_key(invoice: Invoice) -> tuple[date, datetime, str]:
    """Oldest obligation first; creation time then invoice number break ties."""
    return (invoice.due_date, invoice.created_at or _EPOCH, invoice.invoice_number)


class LinkingOutcome(str, Enum):
    COMPLETED = "completed"
    PARTIALLY_APPLIED = "partially_applied"
    FAILED = "failed"


@dataclass(frozen=True)
class PaymentApplication:
    """Money moved between one payment and one invoice."""

    invoice_id: UUID
    invoice_number: str
    amount_applied: Decimal
    remaining_balance: Decimal
    fully_paid: bool


@dataclass(frozen=True)
class AllocationFailure:
    """One invoice that could not accept its share."""

    invoice_id: UUID
    code: str
    message: str
    retryable: bool


@dataclass(frozen=True)
class PaymentLinkingResult:
    payment_id: UUID
    success: bool
    outcome: LinkingOutcome
    total_amount_applied: Decimal
    remaining_payment_amount: Decimal
    applications: tuple[PaymentApplication, ...] = ()
    errors: tuple[str, ...] = ()
    failures: tuple[AllocationFailure, ...] = ()


@dataclass(frozen=True)
class ReversalResult:
    payment_id: UUID
    success: bool
    invoices_affected: int
    total_reversed: Decimal
    payment_status: PaymentStatus
    reversals: tuple[PaymentApplication, ...] = ()
    used_even_split_fallback: bool = False


@dataclass(frozen=True)
class ManualPaymentRequest:
    """Operator-entered payment.

    Property context comes from ``lease_id`` or, failing that, from
    ``specific_invoice_id``; with neither the request is rejected.
    """

    tenant_id: UUID | str
    amount: Decimal
    payment_method: str
    payment_date: date | None = None
    lease_id: UUID | str | None = None
    specific_invoice_id: UUID | str | None = None
    notes: str | None = None
    performed_by: str | None = None


@dataclass(frozen=True)
class OutstandingInvoice:
    invoice_id: UUID
    invoice_number: str
    due_date: date
    total_amount: Decimal
    amount_paid: Decimal
    balance_remaining: Decimal
    status: InvoiceStatus
    days_overdue: int


@dataclass(frozen=True)
class OutstandingBalanceReport:
    tenant_id: UUID
    as_of: date
    invoices: tuple[OutstandingInvoice, ...] = field(default_factory=tuple)
    total_outstanding: Decimal = Decimal("0")


class PaymentLinkingService:
    """
    Payment-to-invoice reconciliation.

    Contract:
        Flushes within the caller's transaction and never commits.
        Stateless between calls; all per-call data is passed explicitly.
    """

    def __init__(
        self,
        invoice_store: InvoiceStore,
        payment_store: PaymentStore,
        lease_store: LeaseStore,
        ledger: InvoiceLedger,
        state_machine: PaymentStateMachine,
        unit_of_work: UnitOfWork,
        clock: Clock | None = None,
        allocation_engine: AllocationEngine | None = None,
    ):
        self._invoices = invoice_store
        self._payments = payment_store
        self._leases = lease_store
        self._ledger = ledger
        self._state_machine = state_machine
        self._uow = unit_of_work
        self._clock = clock or SystemClock()
        self._engine = allocation_engine or AllocationEngine()

    # ------------------------------------------------------------------
    # Priority allocation
    # ------------------------------------------------------------------

    def apply_payment_to_invoices(
        self,
        payment_id: UUID | str,
        tenant_id: UUID | str,
        amount: Decimal,
        lease_id: UUID | str | None = None,
    ) -> PaymentLinkingResult:
        """
        Spread ``amount`` over the tenant's outstanding invoices, oldest first.

        Raises:
            ValidationError: malformed ids, non-positive amount, or amount
                above the payment's unallocated balance.
            PaymentNotFoundError: payment does not exist.
        """
        payment_id = coerce_id(payment_id, "payment_id")
        tenant_id = coerce_id(tenant_id, "tenant_id")
        lease_id = coerce_optional_id(lease_id, "lease_id")

        with LogContext.bind(payment_id=payment_id, tenant_id=tenant_id):
            payment = self._load_allocatable_payment(payment_id, tenant_id)
            amount = self._validate_new_allocation(payment, amount)

            logger.info("payment_allocation_started", extra={
                "amount": str(amount),
                "lease_id": str(lease_id) if lease_id else None,
            })
            t0 = time.monotonic()

            invoices = sorted(
                self._invoices.find_outstanding_invoices(tenant_id, lease_id),
                key=allocation_order_key,
            )
            if not invoices:
                logger.warning("payment_allocation_no_invoices")
                return PaymentLinkingResult(
                    payment_id=payment_id,
                    success=False,
                    outcome=LinkingOutcome.FAILED,
                    total_amount_applied=Decimal("0"),
                    remaining_payment_amount=amount,
                    errors=(NO_OUTSTANDING_INVOICES,),
                )

            remaining = amount
            applications: list[PaymentApplication] = []
            errors: list[str] = []
            failures: list[AllocationFailure] = []

            for invoice in invoices:
                if remaining <= 0:
                    break
                try:
                    application = self._apply_available(payment_id, invoice.id, remaining)
                except BillingError as exc:
                    errors.append(
                        f"Failed to apply payment to invoice {invoice.invoice_number}: {exc}"
                    )
                    failures.append(AllocationFailure(
                        invoice_id=invoice.id,
                        code=exc.code,
                        message=str(exc),
                        retryable=exc.retryable,
                    ))
                    logger.warning("payment_allocation_step_failed", extra={
                        "invoice_id": str(invoice.id),
                        "error_code": exc.code,
                        "retryable": exc.retryable,
                    })
                    self._state_machine.record_event(
                        payment_id,
                        action="allocation_failed",
                        reason=str(exc),
                        details={
                            "invoice_id": str(invoice.id),
                            "available": str(remaining),
                            "error_code": exc.code,
                        },
                    )
                    continue
                applications.append(application)
                remaining -= application.amount_applied

            total_applied = amount - remaining
            if total_applied == 0:
                outcome = LinkingOutcome.FAILED
            elif remaining > 0:
                outcome = LinkingOutcome.PARTIALLY_APPLIED
            else:
                outcome = LinkingOutcome.COMPLETED

            logger.info("payment_allocation_completed", extra={
                "outcome": outcome.value,
                "total_applied": str(total_applied),
                "remaining": str(remaining),
                "invoices_paid": len(applications),
                "failures": len(failures),
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            })

            return PaymentLinkingResult(
                payment_id=payment_id,
                success=total_applied > 0,
                outcome=outcome,
                total_amount_applied=total_applied,
                remaining_payment_amount=remaining,
                applications=tuple(applications),
                errors=tuple(errors),
                failures=tuple(failures),
            )

    # ------------------------------------------------------------------
    # Direct allocation
    # ------------------------------------------------------------------

    def apply_payment_to_single_invoice(
        self,
        payment_id: UUID | str,
        invoice_id: UUID | str,
        amount: Decimal,
    ) -> PaymentApplication:
        """
        Apply ``amount`` to one operator-chosen invoice, bypassing priority.

        Raises:
            InsufficientInvoiceBalanceError: amount exceeds the balance.
            InvoiceNotFoundError, PaymentNotFoundError, ValidationError,
            AllocationConflictError.
        """
        payment_id = coerce_id(payment_id, "payment_id")
        invoice_id = coerce_id(invoice_id, "invoice_id")

        with LogContext.bind(payment_id=payment_id, invoice_id=invoice_id):
            payment = self._load_allocatable_payment(payment_id)
            amount = self._validate_new_allocation(payment, amount)
            try:
                invoice = self._ledger.get_invoice(invoice_id)
                if invoice.tenant_id != payment.tenant_id:
                    raise ValidationError("invoice_id", "belongs to a different tenant")
                if amount > invoice.balance_remaining:
                    raise InsufficientInvoiceBalanceError(
                        str(invoice_id), amount, invoice.balance_remaining,
                    )
                application = self._apply_step(payment_id, invoice_id, amount)
            except BillingError as exc:
                logger.warning("single_invoice_allocation_failed", extra={
                    "error_code": exc.code,
                    "amount": str(amount),
                })
                self._state_machine.record_event(
                    payment_id,
                    action="allocation_failed",
                    reason=str(exc),
                    details={
                        "invoice_id": str(invoice_id),
                        "amount": str(amount),
                        "error_code": exc.code,
                    },
                )
                raise

            logger.info("single_invoice_allocation_completed", extra={
                "amount": str(amount),
                "remaining_balance": str(application.remaining_balance),
            })
            return application

    def _apply_available(
        self, payment_id: UUID, invoice_id: UUID, available: Decimal,
    ) -> PaymentApplication:
        """Apply up to ``available``, sized against a fresh read of the invoice."""
        fresh = self._ledger.get_invoice(invoice_id)
        if fresh.balance_remaining <= 0:
            # Paid off since the outstanding list was read
            raise AllocationConflictError(str(invoice_id), fresh.version)
        return self._apply_step(
            payment_id,
            invoice_id,
            min(available, fresh.balance_remaining),
            expected_version=fresh.version,
        )

    def _apply_step(
        self,
        payment_id: UUID,
        invoice_id: UUID,
        amount: Decimal,
        expected_version: int | None = None,
    ) -> PaymentApplication:
        with self._uow.savepoint():
            applied = self._ledger.apply_payment(
                invoice_id, payment_id, amount, expected_version=expected_version,
            )
            self._payments.add_allocation(
                payment_id=payment_id,
                invoice_id=invoice_id,
                amount=applied.amount,
                applied_at=self._clock.now(),
            )
        return PaymentApplication(
            invoice_id=invoice_id,
            invoice_number=applied.invoice.invoice_number,
            amount_applied=applied.amount,
            remaining_balance=applied.remaining_balance,
            fully_paid=applied.fully_paid,
        )

    # ------------------------------------------------------------------
    # Reversal
    # ------------------------------------------------------------------

    def reverse_payment_application(
        self,
        payment_id: UUID | str,
        reason: str = "Payment application reversed",
        performed_by: str | None = None,
    ) -> ReversalResult:
        """
        Give back every recorded allocation of the payment.

        A paid payment becomes refunded; a payment in any other status keeps
        its status and gets an ``allocations_reversed`` audit entry.  A
        payment with nothing to reverse is a successful no-op.

        Legacy payments with invoice links but no allocation records are
        reversed with an even split of the payment amount across the linked
        invoices.
        """
        payment_id = coerce_id(payment_id, "payment_id")

        with LogContext.bind(payment_id=payment_id):
            payment = self._state_machine.get_payment(payment_id)
            allocations = self._payments.list_allocations(payment_id)
            used_fallback = False

            logger.info("payment_reversal_started", extra={
                "allocation_count": len(allocations),
            })

            if allocations:
                plan = [(a.invoice_id, a.amount_applied, a.id) for a in allocations]
            else:
                plan = self._even_split_plan(payment)
                used_fallback = bool(plan)

            reversals: list[PaymentApplication] = []
            for invoice_id, amount, allocation_id in plan:
                try:
                    reversals.append(
                        self._reverse_step(payment, invoice_id, amount, allocation_id)
                    )
                except BillingError as exc:
                    self._state_machine.record_event(
                        payment_id,
                        action="reversal_failed",
                        reason=str(exc),
                        details={
                            "invoice_id": str(invoice_id),
                            "amount": str(amount),
                            "error_code": exc.code,
                        },
                        performed_by=performed_by,
                    )
                    logger.error("payment_reversal_step_failed", extra={
                        "invoice_id": str(invoice_id),
                        "error_code": exc.code,
                    })
                    raise

            total_reversed = sum((r.amount_applied for r in reversals), Decimal("0"))

            if not reversals:
                logger.info("payment_reversal_nothing_to_reverse")
                return ReversalResult(
                    payment_id=payment_id,
                    success=True,
                    invoices_affected=0,
                    total_reversed=Decimal("0"),
                    payment_status=payment.status,
                )

            details = {
                "invoices_affected": len({r.invoice_id for r in reversals}),
                "total_reversed": str(total_reversed),
                "even_split_fallback": used_fallback,
            }
            if payment.status == PaymentStatus.PAID:
                payment = self._state_machine.transition(
                    payment_id,
                    PaymentStatus.REFUNDED,
                    reason,
                    performed_by=performed_by,
                    details=details,
                )
            else:
                self._state_machine.record_event(
                    payment_id,
                    action="allocations_reversed",
                    reason=reason,
                    details=details,
                    performed_by=performed_by,
                )

            logger.info("payment_reversal_completed", extra={
                "invoices_affected": details["invoices_affected"],
                "total_reversed": str(total_reversed),
                "payment_status": payment.status.value,
                "even_split_fallback": used_fallback,
            })

            return ReversalResult(
                payment_id=payment_id,
                success=True,
                invoices_affected=details["invoices_affected"],
                total_reversed=total_reversed,
                payment_status=payment.status,
                reversals=tuple(reversals),
                used_even_split_fallback=used_fallback,
            )

    def _reverse_step(
        self,
        payment: Payment,
        invoice_id: UUID,
        amount: Decimal,
        allocation_id: UUID | None,
    ) -> PaymentApplication:
        with self._uow.savepoint():
            reversed_ = self._ledger.reverse_allocation(invoice_id, payment.id, amount)
            if allocation_id is not None:
                now = self._clock.now()
                if not self._payments.mark_allocation_reversed(allocation_id, now):
                    raise PaymentConflictError(str(payment.id), payment.status.value)
        return PaymentApplication(
            invoice_id=invoice_id,
            invoice_number=reversed_.invoice.invoice_number,
            amount_applied=reversed_.amount,
            remaining_balance=reversed_.remaining_balance,
            fully_paid=reversed_.fully_paid,
        )

    def _even_split_plan(self, payment: Payment) -> list[tuple[UUID, Decimal, None]]:
        linked = self._invoices.find_invoices_linked_to_payment(payment.id)
        if not linked:
            return []
        logger.warning("payment_reversal_even_split_fallback", extra={
            "linked_invoices": len(linked),
            "amount": str(payment.amount),
        })
        split = self._engine.allocate(
            amount=Money.of(payment.amount, payment.currency),
            targets=[
                AllocationTarget(
                    target_id=invoice.id,
                    eligible_amount=Money.of(invoice.amount_paid, invoice.currency),
                )
                for invoice in linked
            ],
            method=AllocationMethod.EQUAL,
        )
        return [(line.target_id, line.allocated.amount, None) for line in split.funded_lines]

    # ------------------------------------------------------------------
    # Manual payments
    # ------------------------------------------------------------------

    def record_manual_payment(self, request: ManualPaymentRequest) -> PaymentLinkingResult:
        """
        Create a paid payment from operator input and allocate it.

        With ``specific_invoice_id`` the whole amount goes to that invoice;
        otherwise it is spread oldest-first.  Runs inside a savepoint, so a
        raised error leaves no payment row behind.

        Raises:
            PropertyResolutionError: neither lease nor invoice context given.
            InsufficientInvoiceBalanceError: amount exceeds the target
                invoice's balance.
        """
        tenant_id = coerce_id(request.tenant_id, "tenant_id")
        lease_id = coerce_optional_id(request.lease_id, "lease_id")
        invoice_id = coerce_optional_id(request.specific_invoice_id, "specific_invoice_id")

        with LogContext.bind(tenant_id=tenant_id, actor_id=request.performed_by):
            property_id, lease_id, target = self._resolve_context(tenant_id, lease_id, invoice_id)
            currency = target.currency if target is not None else "USD"
            amount = require_precision(request.amount, currency)
            if amount <= 0:
                raise ValidationError("amount", "must be positive")
            if target is not None and amount > target.balance_remaining:
                raise InsufficientInvoiceBalanceError(
                    str(target.id), amount, target.balance_remaining,
                )

            with self._uow.savepoint():
                payment = self._payments.create_payment(PaymentDraft(
                    tenant_id=tenant_id,
                    property_id=property_id,
                    lease_id=lease_id,
                    amount=amount,
                    currency=currency,
                    payment_method=request.payment_method,
                    due_date=request.payment_date or self._clock.today(),
                    notes=request.notes,
                    source="manual",
                ))
                self._state_machine.transition(
                    payment.id, PaymentStatus.PROCESSING,
                    "Manual payment recorded", performed_by=request.performed_by,
                )
                self._state_machine.transition(
                    payment.id, PaymentStatus.PAID,
                    "Manual payment received", performed_by=request.performed_by,
                )
                logger.info("manual_payment_recorded", extra={
                    "payment_id": str(payment.id),
                    "amount": str(amount),
                    "specific_invoice": target is not None,
                })

                if target is None:
                    return self.apply_payment_to_invoices(payment.id, tenant_id, amount, lease_id)

                application = self.apply_payment_to_single_invoice(payment.id, target.id, amount)
                return PaymentLinkingResult(
                    payment_id=payment.id,
                    success=True,
                    outcome=LinkingOutcome.COMPLETED,
                    total_amount_applied=application.amount_applied,
                    remaining_payment_amount=amount - application.amount_applied,
                    applications=(application,),
                )

    def _resolve_context(
        self,
        tenant_id: UUID,
        lease_id: UUID | None,
        invoice_id: UUID | None,
    ) -> tuple[UUID, UUID | None, Invoice | None]:
        """(property_id, lease_id, target invoice) or PropertyResolutionError."""
        target = None
        if invoice_id is not None:
            target = self._invoices.get_invoice(invoice_id)
            if target is not None and target.tenant_id != tenant_id:
                raise ValidationError("specific_invoice_id", "belongs to a different tenant")

        if lease_id is not None:
            lease = self._leases.get_lease(lease_id)
            if lease is None:
                raise PropertyResolutionError(str(tenant_id))
            if lease.tenant_id != tenant_id:
                raise ValidationError("lease_id", "belongs to a different tenant")
            return lease.property_id, lease.id, target

        if target is not None:
            return target.property_id, target.lease_id, target

        logger.warning("manual_payment_property_unresolved", extra={
            "specific_invoice_id": str(invoice_id) if invoice_id else None,
        })
        raise PropertyResolutionError(str(tenant_id))

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def get_payment_allocation(
        self,
        tenant_id: UUID | str,
        lease_id: UUID | str | None = None,
    ) -> OutstandingBalanceReport:
        """Open balances for the tenant, oldest due first, with days overdue."""
        tenant_id = coerce_id(tenant_id, "tenant_id")
        lease_id = coerce_optional_id(lease_id, "lease_id")
        as_of = self._clock.today()

        invoices = sorted(
            self._invoices.find_open_balances(tenant_id, lease_id),
            key=allocation_order_key,
        )
        rows = tuple(
            OutstandingInvoice(
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                due_date=invoice.due_date,
                total_amount=invoice.total_amount,
                amount_paid=invoice.amount_paid,
                balance_remaining=invoice.balance_remaining,
                status=invoice.status,
                days_overdue=days_overdue(invoice.due_date, as_of),
            )
            for invoice in invoices
        )
        return OutstandingBalanceReport(
            tenant_id=tenant_id,
            as_of=as_of,
            invoices=rows,
            total_outstanding=sum((r.balance_remaining for r in rows), Decimal("0")),
        )

    def preview_payment_application(
        self,
        tenant_id: UUID | str,
        amount: Decimal,
        lease_id: UUID | str | None = None,
        currency: str = "USD",
    ) -> AllocationResult:
        """FIFO plan for ``amount`` without writing anything."""
        tenant_id = coerce_id(tenant_id, "tenant_id")
        lease_id = coerce_optional_id(lease_id, "lease_id")
        amount = require_precision(amount, currency)
        if amount <= 0:
            raise ValidationError("amount", "must be positive")

        invoices = sorted(
            self._invoices.find_outstanding_invoices(tenant_id, lease_id),
            key=allocation_order_key,
        )
        return self._engine.allocate(
            amount=Money.of(amount, currency),
            targets=[
                AllocationTarget(
                    target_id=invoice.id,
                    eligible_amount=Money.of(invoice.balance_remaining, invoice.currency),
                    date=invoice.due_date,
                    priority=position,
                )
                for position, invoice in enumerate(invoices)
            ],
            method=AllocationMethod.FIFO,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_allocatable_payment(
        self, payment_id: UUID, tenant_id: UUID | None = None,
    ) -> Payment:
        payment = self._state_machine.get_payment(payment_id)
        if tenant_id is not None and payment.tenant_id != tenant_id:
            raise ValidationError("tenant_id", "does not match the payment's tenant")
        if payment.status in NON_ALLOCATABLE_PAYMENT_STATUSES:
            raise ValidationError(
                "payment_id",
                f"payment in status {payment.status.value} cannot receive allocations",
            )
        return payment

    @staticmethod
    def _validate_new_allocation(payment: Payment, amount: Decimal) -> Decimal:
        amount = require_precision(amount, payment.currency)
        if amount <= 0:
            raise ValidationError("amount", "must be positive")
        if amount > payment.unallocated_amount:
            raise ValidationError(
                "amount",
                f"{amount} exceeds unallocated payment amount {payment.unallocated_amount}",
            )
        return amount
