"""
CorePaymentService -- the public payment operations.

Responsibility:
    Charges payments through the gateway adapter and maps the tri-state
    outcome onto the payment lifecycle, exposes status transitions, late
    fee calculation and application, proration, and recurring payment
    generation.  Successful charges are handed to the linking service for
    allocation when auto-apply is on.

Architecture position:
    Services -- facade over PaymentStateMachine, PaymentLinkingService and
    the pure engines in ``billing_engines``.

Invariants enforced:
    - Gateway failures never escape ``process_payment``: they are
      classified, written onto the payment (failure reason, retry count),
      the payment moves to ``failed`` and the tenant is notified.
    - Non-gateway errors propagate unchanged.
    - Notifications are fire-and-forget (``SafeNotifier``).
    - Late-fee application is explicit; calculation writes nothing.

Failure modes:
    - ValidationError, PaymentNotFoundError, InvoiceNotFoundError,
      InvalidTransitionError, PaymentConflictError from the layers below.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from billing_engines.late_fee import LateFeeCalculation, LateFeeCalculator
from billing_engines.proration import (
    ProrationCalculation,
    ProrationCalculator,
    ProrationMethod,
)
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.dates import first_day_of_next_month
from billing_kernel.domain.dtos import (
    Invoice,
    Payment,
    PaymentDraft,
    PaymentStatus,
    coerce_id,
    coerce_optional_id,
)
from billing_kernel.domain.values import require_precision
from billing_kernel.exceptions import (
    GatewayError,
    InvoiceNotFoundError,
    ValidationError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.stores.base import FeeConfigProvider, InvoiceStore, PaymentStore
from billing_services.gateway import (
    MAX_PAYMENT_RETRIES,
    ChargeOutcome,
    GatewayErrorInfo,
    PaymentGateway,
    classify_gateway_error,
    log_gateway_error,
    should_retry_payment,
)
from billing_services.notifications import LoggingNotifier, Notifier, SafeNotifier
from billing_services.payment_linking import PaymentLinkingResult, PaymentLinkingService
from billing_services.payment_state_machine import PaymentStateMachine

logger = get_logger("services.payment")


@dataclass(frozen=True)
class PaymentProcessingResult:
    """Outcome of one ``process_payment`` call."""

    payment_id: UUID
    success: bool
    status: PaymentStatus
    outcome: ChargeOutcome
    gateway_reference: str | None = None
    error: GatewayErrorInfo | None = None
    should_retry: bool = False
    linking: PaymentLinkingResult | None = None


class CorePaymentService:
    """
    Payment processing facade.

    Contract:
        Flushes within the caller's transaction and never commits.
    """

    def __init__(
        self,
        payment_store: PaymentStore,
        invoice_store: InvoiceStore,
        state_machine: PaymentStateMachine,
        fee_config_provider: FeeConfigProvider,
        gateway: PaymentGateway | None = None,
        notifier: Notifier | None = None,
        linking: PaymentLinkingService | None = None,
        clock: Clock | None = None,
        late_fee_calculator: LateFeeCalculator | None = None,
        proration_calculator: ProrationCalculator | None = None,
        auto_apply_on_success: bool = True,
        max_payment_retries: int = MAX_PAYMENT_RETRIES,
    ):
        self._payments = payment_store
        self._invoices = invoice_store
        self._state_machine = state_machine
        self._fee_configs = fee_config_provider
        self._gateway = gateway
        self._notifier = SafeNotifier(notifier or LoggingNotifier())
        self._linking = linking
        self._clock = clock or SystemClock()
        self._late_fees = late_fee_calculator or LateFeeCalculator()
        self._proration = proration_calculator or ProrationCalculator()
        self._auto_apply = auto_apply_on_success
        self._max_retries = max_payment_retries

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_payment(
        self,
        payment_id: UUID | str,
        payment_method_id: str,
        amount: Decimal,
        tenant_id: UUID | str,
    ) -> PaymentProcessingResult:
        """
        Charge the payment through the gateway and record the outcome.

        Raises:
            ValidationError: bad ids, amount, tenant mismatch, or no
                gateway configured.
            InvalidTransitionError: payment is not in a chargeable status.
        """
        payment_id = coerce_id(payment_id, "payment_id")
        tenant_id = coerce_id(tenant_id, "tenant_id")
        if not payment_method_id:
            raise ValidationError("payment_method_id", "is required")
        if self._gateway is None:
            raise ValidationError("gateway", "no payment gateway configured")

        with LogContext.bind(payment_id=payment_id, tenant_id=tenant_id):
            payment = self._state_machine.get_payment(payment_id)
            if payment.tenant_id != tenant_id:
                raise ValidationError("tenant_id", "does not match the payment's tenant")
            amount = require_precision(amount, payment.currency)
            if amount <= 0:
                raise ValidationError("amount", "must be positive")
            if amount > payment.amount:
                raise ValidationError("amount", f"{amount} exceeds payment amount {payment.amount}")

            if payment.status != PaymentStatus.PROCESSING:
                # Only pending, failed and overdue may enter processing
                self._state_machine.transition(
                    payment_id, PaymentStatus.PROCESSING, "Payment processing initiated",
                )

            logger.info("payment_charge_started", extra={
                "amount": str(amount),
                "retry_count": payment.retry_count,
            })

            try:
                charge = self._gateway.charge(
                    payment_id=payment_id,
                    payment_method_id=payment_method_id,
                    amount=amount,
                    currency=payment.currency,
                )
            except GatewayError as exc:
                info = classify_gateway_error(exc)
                return self._record_failure(payment, info)

            if charge.reference:
                self._payments.update_payment(payment_id, gateway_reference=charge.reference)

            match charge.outcome:
                case ChargeOutcome.SUCCEEDED:
                    updated = self._state_machine.apply_gateway_outcome(
                        payment_id, ChargeOutcome.SUCCEEDED,
                    )
                    self._notifier.notify_payment_confirmation(payment_id)
                    linking = None
                    if self._linking is not None and self._auto_apply:
                        linking = self._linking.apply_payment_to_invoices(
                            payment_id, tenant_id, amount, payment.lease_id,
                        )
                    logger.info("payment_charge_succeeded", extra={
                        "gateway_reference": charge.reference,
                        "auto_applied": linking is not None,
                    })
                    return PaymentProcessingResult(
                        payment_id=payment_id,
                        success=True,
                        status=updated.status,
                        outcome=ChargeOutcome.SUCCEEDED,
                        gateway_reference=charge.reference,
                        linking=linking,
                    )
                case ChargeOutcome.REQUIRES_ACTION:
                    updated = self._state_machine.apply_gateway_outcome(
                        payment_id, ChargeOutcome.REQUIRES_ACTION,
                    )
                    logger.info("payment_charge_requires_action")
                    return PaymentProcessingResult(
                        payment_id=payment_id,
                        success=False,
                        status=updated.status,
                        outcome=ChargeOutcome.REQUIRES_ACTION,
                        gateway_reference=charge.reference,
                    )
                case ChargeOutcome.FAILED:
                    info = classify_gateway_error(GatewayError(
                        "card_error",
                        charge.failure_message or "Charge failed",
                        error_code="card_declined",
                    ))
                    return self._record_failure(payment, info, charge.reference)
                case _:
                    raise ValueError(f"Unknown charge outcome: {charge.outcome}")

    def _record_failure(
        self,
        payment: Payment,
        info: GatewayErrorInfo,
        reference: str | None = None,
    ) -> PaymentProcessingResult:
        log_gateway_error(info, payment.id)
        attempts = payment.retry_count + 1
        self._payments.update_payment(
            payment.id,
            failure_reason=info.message,
            retry_count=attempts,
        )
        updated = self._state_machine.transition(
            payment.id,
            PaymentStatus.FAILED,
            info.message,
            details={
                "error_code": info.code,
                "error_type": info.error_type,
                "severity": info.severity.value,
                "retryable": info.retryable,
            },
        )
        self._notifier.notify_payment_failure(payment.id, info.user_message)
        return PaymentProcessingResult(
            payment_id=payment.id,
            success=False,
            status=updated.status,
            outcome=ChargeOutcome.FAILED,
            gateway_reference=reference,
            error=info,
            should_retry=should_retry_payment(info, attempts, self._max_retries),
        )

    def transition_payment_status(
        self,
        payment_id: UUID | str,
        new_status: PaymentStatus | str,
        reason: str,
        performed_by: str | None = None,
    ) -> Payment:
        payment_id = coerce_id(payment_id, "payment_id")
        try:
            status = PaymentStatus(new_status)
        except ValueError as e:
            raise ValidationError("new_status", f"unknown payment status {new_status!r}") from e
        with LogContext.bind(payment_id=payment_id, actor_id=performed_by):
            return self._state_machine.transition(
                payment_id, status, reason, performed_by=performed_by,
            )

    # ------------------------------------------------------------------
    # Late fees
    # ------------------------------------------------------------------

    def calculate_late_fee(
        self,
        payment_id: UUID | str,
        invoice_id: UUID | str | None = None,
    ) -> LateFeeCalculation | None:
        """Late fee owed today under the property's policy; writes nothing."""
        payment, invoice = self._late_fee_inputs(payment_id, invoice_id)
        return self._late_fees.calculate(
            payment=payment,
            fee_config=self._fee_configs.get_fee_config(payment.property_id),
            as_of=self._clock.today(),
            invoice=invoice,
        )

    def apply_late_fee(
        self,
        payment_id: UUID | str,
        invoice_id: UUID | str | None = None,
        performed_by: str | None = None,
    ) -> LateFeeCalculation | None:
        """
        Calculate and record the late fee on the payment, then notify.

        Returns None (and writes nothing) when no fee applies.

        Raises:
            ValidationError: a late fee was already applied to the payment.
        """
        payment, invoice = self._late_fee_inputs(payment_id, invoice_id)
        with LogContext.bind(payment_id=payment.id, actor_id=performed_by):
            if payment.late_fee_applied_at is not None:
                raise ValidationError("payment_id", "late fee already applied")

            calculation = self._late_fees.calculate(
                payment=payment,
                fee_config=self._fee_configs.get_fee_config(payment.property_id),
                as_of=self._clock.today(),
                invoice=invoice,
            )
            if calculation is None or calculation.amount == 0:
                logger.info("late_fee_not_applicable")
                return calculation

            self._payments.update_payment(
                payment.id,
                late_fee_amount=calculation.amount,
                late_fee_applied_at=self._clock.now(),
                late_fee_grace_period_end=calculation.grace_period_end,
                late_fee_auto_applied=True,
                late_fee_structure=calculation.fee_structure,
            )
            self._state_machine.record_event(
                payment.id,
                action="late_fee_applied",
                reason=f"Late fee of {calculation.amount} applied",
                details={
                    "amount": str(calculation.amount),
                    "days_late": calculation.days_late,
                    "grace_period_end": calculation.grace_period_end.isoformat(),
                    "invoice_id": str(invoice.id) if invoice else None,
                },
                performed_by=performed_by,
            )
            self._notifier.notify_late_fee(payment.id, calculation.amount)

            logger.info("late_fee_applied", extra={
                "amount": str(calculation.amount),
                "days_late": calculation.days_late,
            })
            return calculation

    def _late_fee_inputs(
        self,
        payment_id: UUID | str,
        invoice_id: UUID | str | None,
    ) -> tuple[Payment, Invoice | None]:
        payment = self._state_machine.get_payment(coerce_id(payment_id, "payment_id"))
        invoice_uuid = coerce_optional_id(invoice_id, "invoice_id")
        invoice = None
        if invoice_uuid is not None:
            invoice = self._invoices.get_invoice(invoice_uuid)
            if invoice is None:
                raise InvoiceNotFoundError(str(invoice_uuid))
        return payment, invoice

    # ------------------------------------------------------------------
    # Proration and recurring payments
    # ------------------------------------------------------------------

    def calculate_proration(
        self,
        monthly_rent: Decimal,
        move_in_date: date,
        move_out_date: date | None = None,
        method: ProrationMethod | str = ProrationMethod.DAILY,
    ) -> ProrationCalculation:
        return self._proration.calculate(
            monthly_rent=require_precision(monthly_rent, field="monthly_rent"),
            move_in_date=move_in_date,
            move_out_date=move_out_date,
            method=ProrationMethod(method),
        )

    def generate_recurring_payment(
        self,
        tenant_id: UUID | str,
        property_id: UUID | str,
        monthly_rent: Decimal,
        payment_method: str,
        lease_id: UUID | str | None = None,
    ) -> Payment:
        """Create next month's pending rent payment, due on the 1st."""
        draft = PaymentDraft(
            tenant_id=coerce_id(tenant_id, "tenant_id"),
            property_id=coerce_id(property_id, "property_id"),
            lease_id=coerce_optional_id(lease_id, "lease_id"),
            amount=require_precision(monthly_rent, field="monthly_rent"),
            payment_method=payment_method,
            due_date=first_day_of_next_month(self._clock.today()),
            source="recurring",
        )
        payment = self._payments.create_payment(draft)
        logger.info("recurring_payment_generated", extra={
            "payment_id": str(payment.id),
            "due_date": payment.due_date.isoformat(),
            "amount": str(payment.amount),
        })
        return payment
