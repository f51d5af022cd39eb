"""
PaymentStateMachine -- the only writer of payment status and audit trail.

Responsibility:
    Validates every status change against ``PAYMENT_WORKFLOW``, writes it
    through a compare-and-set on the current status and appends an audit
    entry.  Non-transition events (late fee applied, allocation failure,
    reversal) are appended through ``record_event`` so the audit trail has
    a single writer.

Architecture position:
    Services -- imperative shell over ``PaymentStore``.

Invariants enforced:
    - A transition not in the workflow raises ``InvalidTransitionError``
      and writes nothing.
    - A lost race on the status CAS raises ``PaymentConflictError``.
    - Every successful transition appends exactly one audit entry
      ``{from, to, reason, timestamp}``.
    - Entering ``paid`` stamps ``paid_date = clock.now()``.

Failure modes:
    - PaymentNotFoundError: payment id does not exist.
    - InvalidTransitionError, PaymentConflictError as above.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.dtos import AuditEntry, Payment, PaymentStatus
from billing_kernel.domain.workflow import PAYMENT_WORKFLOW, Workflow
from billing_kernel.exceptions import InvalidTransitionError, PaymentNotFoundError
from billing_kernel.logging_config import get_logger
from billing_kernel.stores.base import PaymentStore
from billing_services.gateway import ChargeOutcome

logger = get_logger("services.payment_state_machine")


class PaymentStateMachine:
    """Guarded payment status transitions with an append-only audit trail."""

    def __init__(
        self,
        payment_store: PaymentStore,
        clock: Clock | None = None,
        workflow: Workflow = PAYMENT_WORKFLOW,
    ):
        self._payments = payment_store
        self._clock = clock or SystemClock()
        self._workflow = workflow

    @property
    def workflow(self) -> Workflow:
        return self._workflow

    def get_payment(self, payment_id: UUID) -> Payment:
        payment = self._payments.get_payment(payment_id)
        if payment is None:
            raise PaymentNotFoundError(str(payment_id))
        return payment

    def can_transition(self, from_status: PaymentStatus, to_status: PaymentStatus) -> bool:
        return self._workflow.is_valid_transition(
            PaymentStatus(from_status).value, PaymentStatus(to_status).value
        )

    def transition(
        self,
        payment_id: UUID,
        new_status: PaymentStatus,
        reason: str,
        performed_by: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> Payment:
        """
        Move the payment to ``new_status``.

        Raises:
            PaymentNotFoundError: payment does not exist.
            InvalidTransitionError: ``(status, new_status)`` is not allowed.
            PaymentConflictError: status changed since it was read.
        """
        new_status = PaymentStatus(new_status)
        payment = self.get_payment(payment_id)
        current = payment.status

        transition = self._workflow.find_transition(current.value, new_status.value)
        if transition is None:
            logger.warning("payment_transition_rejected", extra={
                "payment_id": str(payment_id),
                "from_status": current.value,
                "to_status": new_status.value,
            })
            raise InvalidTransitionError(str(payment_id), current.value, new_status.value)

        now = self._clock.now()
        self._payments.update_status(
            payment_id,
            expected_status=current,
            new_status=new_status,
            paid_date=now if new_status == PaymentStatus.PAID else None,
        )
        self._payments.append_audit_entry(
            payment_id,
            AuditEntry(
                action=transition.action,
                from_status=current,
                to_status=new_status,
                reason=reason,
                timestamp=now,
                performed_by=performed_by,
                details=details or {},
            ),
        )

        logger.info("payment_status_changed", extra={
            "payment_id": str(payment_id),
            "from_status": current.value,
            "to_status": new_status.value,
            "action": transition.action,
            "administrative": transition.administrative,
        })
        return self.get_payment(payment_id)

    def record_event(
        self,
        payment_id: UUID,
        action: str,
        reason: str,
        details: dict[str, Any] | None = None,
        performed_by: str | None = None,
    ) -> AuditEntry:
        """Append a non-transition audit entry (status unchanged)."""
        payment = self.get_payment(payment_id)
        entry = AuditEntry(
            action=action,
            from_status=payment.status,
            to_status=payment.status,
            reason=reason,
            timestamp=self._clock.now(),
            performed_by=performed_by,
            details=details or {},
        )
        self._payments.append_audit_entry(payment_id, entry)
        logger.info("payment_event_recorded", extra={
            "payment_id": str(payment_id),
            "action": action,
            "status": payment.status.value,
        })
        return entry

    def history(self, payment_id: UUID) -> list[AuditEntry]:
        self.get_payment(payment_id)
        return self._payments.list_audit_entries(payment_id)

    def apply_gateway_outcome(
        self,
        payment_id: UUID,
        outcome: ChargeOutcome,
        reason: str | None = None,
    ) -> Payment:
        """
        Consume the gateway tri-state for a payment in ``processing``.

        ``succeeded`` settles to paid, ``failed`` moves to failed and
        ``requires_action`` leaves the payment processing with an audit
        entry recording that the customer must act.
        """
        match ChargeOutcome(outcome):
            case ChargeOutcome.SUCCEEDED:
                return self.transition(
                    payment_id, PaymentStatus.PAID, reason or "Gateway charge succeeded",
                )
            case ChargeOutcome.FAILED:
                return self.transition(
                    payment_id, PaymentStatus.FAILED, reason or "Gateway charge failed",
                )
            case ChargeOutcome.REQUIRES_ACTION:
                self.record_event(
                    payment_id,
                    action="requires_action",
                    reason=reason or "Gateway requires customer action",
                )
                return self.get_payment(payment_id)
