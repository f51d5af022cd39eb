"""
Tests for PaymentLinkingService.

Verifies:
- Oldest-obligation-first ordering and allocation records
- Partial outcomes, missing invoices and per-invoice failure isolation
- Direct single-invoice allocation
- Reversal round-trip, idempotence and the legacy even-split path
- Manual payments and their zero-side-effect failures
- Read-only balance report and allocation preview
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from billing_kernel.domain.dtos import Invoice, InvoiceStatus, PaymentStatus
from billing_kernel.exceptions import (
    AllocationConflictError,
    InsufficientInvoiceBalanceError,
    PropertyResolutionError,
    ValidationError,
)
from billing_kernel.models import PaymentModel
from billing_services.payment_linking import (
    NO_OUTSTANDING_INVOICES,
    LinkingOutcome,
    ManualPaymentRequest,
    allocation_order_key,
)


def _payment_count(session) -> int:
    return session.scalar(select(func.count()).select_from(PaymentModel))


# =============================================================================
# Priority allocation
# =============================================================================


class TestApplyPaymentToInvoices:

    def test_oldest_due_first(self, services, make_invoice, make_payment, tenant_id):
        march = make_invoice(due_date=date(2024, 3, 1), invoice_number="INV-MAR")
        jan = make_invoice(due_date=date(2024, 1, 1), invoice_number="INV-JAN")
        feb = make_invoice(due_date=date(2024, 2, 1), invoice_number="INV-FEB")
        payment = make_payment(amount="150.00")

        result = services.linking.apply_payment_to_invoices(
            payment.id, tenant_id, Decimal("150.00"),
        )

        assert result.success
        assert result.outcome == LinkingOutcome.COMPLETED
        assert result.total_amount_applied == Decimal("150.00")
        assert result.remaining_payment_amount == Decimal("0")
        assert [(a.invoice_number, a.amount_applied) for a in result.applications] == [
            ("INV-JAN", Decimal("100.00")),
            ("INV-FEB", Decimal("50.00")),
        ]
        assert result.applications[0].fully_paid

        ledger = services.ledger
        assert ledger.get_invoice(jan.id).status == InvoiceStatus.PAID
        assert ledger.get_invoice(feb.id).balance_remaining == Decimal("50.00")
        assert ledger.get_invoice(march.id).balance_remaining == Decimal("100.00")
        assert ledger.get_invoice(march.id).version == 1

    def test_allocations_recorded_in_order(self, services, make_invoice, make_payment, tenant_id):
        jan = make_invoice(due_date=date(2024, 1, 1))
        feb = make_invoice(due_date=date(2024, 2, 1))
        payment = make_payment(amount="150.00")

        services.linking.apply_payment_to_invoices(payment.id, tenant_id, Decimal("150.00"))

        allocations = services.state_machine.get_payment(payment.id).active_allocations
        assert [(a.sequence, a.invoice_id, a.amount_applied) for a in allocations] == [
            (1, jan.id, Decimal("100.00")),
            (2, feb.id, Decimal("50.00")),
        ]

    def test_same_due_date_ordered_by_creation(
        self, services, make_invoice, make_payment, tenant_id,
    ):
        make_invoice(invoice_number="INV-A")
        make_invoice(invoice_number="INV-B")
        payment = make_payment(amount="50.00")

        result = services.linking.apply_payment_to_invoices(
            payment.id, tenant_id, Decimal("50.00"),
        )
        assert result.applications[0].invoice_number == "INV-A"

    def test_overpayment_is_partially_applied(
        self, services, make_invoice, make_payment, tenant_id,
    ):
        make_invoice(total="100.00")
        payment = make_payment(amount="250.00")

        result = services.linking.apply_payment_to_invoices(
            payment.id, tenant_id, Decimal("250.00"),
        )

        assert result.success
        assert result.outcome == LinkingOutcome.PARTIALLY_APPLIED
        assert result.total_amount_applied == Decimal("100.00")
        assert result.remaining_payment_amount == Decimal("150.00")

    def test_no_outstanding_invoices(self, services, make_payment, tenant_id, captured_logs):
        payment = make_payment()

        result = services.linking.apply_payment_to_invoices(
            payment.id, tenant_id, Decimal("100.00"),
        )

        assert not result.success
        assert result.outcome == LinkingOutcome.FAILED
        assert result.errors == (NO_OUTSTANDING_INVOICES,)
        assert result.remaining_payment_amount == Decimal("100.00")
        assert any(r["message"] == "payment_allocation_no_invoices" for r in captured_logs())

    def test_lease_scope(self, services, make_invoice, make_lease, make_payment, tenant_id):
        lease = make_lease()
        other = make_invoice(due_date=date(2023, 12, 1))
        on_lease = make_invoice(due_date=date(2024, 1, 1), lease_id=lease.id)
        payment = make_payment(amount="100.00", lease_id=lease.id)

        result = services.linking.apply_payment_to_invoices(
            payment.id, tenant_id, Decimal("100.00"), lease_id=lease.id,
        )

        assert [a.invoice_id for a in result.applications] == [on_lease.id]
        assert services.ledger.get_invoice(other.id).balance_remaining == Decimal("100.00")

    def test_amount_above_unallocated_rejected(
        self, services, make_invoice, make_payment, tenant_id,
    ):
        make_invoice(total="500.00")
        payment = make_payment(amount="100.00")
        services.linking.apply_payment_to_invoices(payment.id, tenant_id, Decimal("60.00"))

        with pytest.raises(ValidationError, match="unallocated"):
            services.linking.apply_payment_to_invoices(payment.id, tenant_id, Decimal("40.01"))

    def test_tenant_mismatch_rejected(self, services, make_invoice, make_payment):
        make_invoice()
        payment = make_payment()
        with pytest.raises(ValidationError, match="tenant"):
            services.linking.apply_payment_to_invoices(payment.id, uuid4(), Decimal("10.00"))

    @pytest.mark.parametrize("status", [PaymentStatus.FAILED, PaymentStatus.CANCELLED])
    def test_non_allocatable_payment_rejected(
        self, services, make_invoice, make_payment, tenant_id, status,
    ):
        make_invoice()
        payment = make_payment(status=status)
        with pytest.raises(ValidationError, match="cannot receive allocations"):
            services.linking.apply_payment_to_invoices(payment.id, tenant_id, Decimal("10.00"))

    def test_failed_step_is_rolled_back_and_loop_continues(
        self, services, make_invoice, make_payment, tenant_id, monkeypatch,
    ):
        jan = make_invoice(due_date=date(2024, 1, 1))
        feb = make_invoice(due_date=date(2024, 2, 1))
        payment = make_payment(amount="150.00")

        store = services.payment_store
        original = store.add_allocation
        calls = {"n": 0}

        def flaky_add_allocation(**kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise AllocationConflictError(str(kwargs["invoice_id"]), 1)
            return original(**kwargs)

        monkeypatch.setattr(store, "add_allocation", flaky_add_allocation)

        result = services.linking.apply_payment_to_invoices(
            payment.id, tenant_id, Decimal("150.00"),
        )

        assert result.outcome == LinkingOutcome.PARTIALLY_APPLIED
        assert result.total_amount_applied == Decimal("100.00")
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Failed to apply payment to invoice INV-0001")
        assert result.failures[0].invoice_id == jan.id
        assert result.failures[0].code == "ALLOCATION_CONFLICT"
        assert result.failures[0].retryable

        # The ledger half of the failed step was rolled back with it
        restored = services.ledger.get_invoice(jan.id)
        assert restored.balance_remaining == Decimal("100.00")
        assert restored.version == 1
        linked = services.invoice_store.find_invoices_linked_to_payment(payment.id)
        assert [i.id for i in linked] == [feb.id]

        refreshed = services.state_machine.get_payment(payment.id)
        assert [a.invoice_id for a in refreshed.active_allocations] == [feb.id]
        failure_events = [e for e in refreshed.audit_trail if e.action == "allocation_failed"]
        assert len(failure_events) == 1
        assert failure_events[0].details["error_code"] == "ALLOCATION_CONFLICT"


# =============================================================================
# Direct allocation
# =============================================================================


class TestApplyPaymentToSingleInvoice:

    def test_bypasses_priority(self, services, make_invoice, make_payment):
        make_invoice(due_date=date(2024, 1, 1))
        later = make_invoice(due_date=date(2024, 6, 1))
        payment = make_payment(amount="40.00")

        application = services.linking.apply_payment_to_single_invoice(
            payment.id, later.id, Decimal("40.00"),
        )

        assert application.invoice_id == later.id
        assert application.remaining_balance == Decimal("60.00")

    def test_insufficient_balance(self, services, make_invoice, make_payment):
        invoice = make_invoice(total="100.00")
        payment = make_payment(amount="150.00")

        with pytest.raises(InsufficientInvoiceBalanceError) as exc_info:
            services.linking.apply_payment_to_single_invoice(
                payment.id, invoice.id, Decimal("150.00"),
            )

        assert exc_info.value.balance_remaining == Decimal("100.00")
        refreshed = services.state_machine.get_payment(payment.id)
        assert refreshed.allocations == ()
        assert refreshed.audit_trail[-1].action == "allocation_failed"
        assert refreshed.audit_trail[-1].details["error_code"] == "INSUFFICIENT_INVOICE_BALANCE"

    def test_other_tenants_invoice_rejected(self, services, make_invoice, make_payment):
        invoice = make_invoice(tenant=uuid4())
        payment = make_payment()
        with pytest.raises(ValidationError, match="different tenant"):
            services.linking.apply_payment_to_single_invoice(
                payment.id, invoice.id, Decimal("10.00"),
            )


# =============================================================================
# Reversal
# =============================================================================


class TestReversePaymentApplication:

    def test_round_trip_restores_balances(self, services, make_invoice, make_payment, tenant_id):
        jan = make_invoice(total="100.00", due_date=date(2024, 1, 1))
        feb = make_invoice(total="80.00", due_date=date(2024, 2, 1))
        payment = make_payment(amount="130.00")
        services.linking.apply_payment_to_invoices(payment.id, tenant_id, Decimal("130.00"))

        result = services.linking.reverse_payment_application(payment.id, performed_by="ops")

        assert result.success
        assert result.invoices_affected == 2
        assert result.total_reversed == Decimal("130.00")
        assert result.payment_status == PaymentStatus.REFUNDED
        assert not result.used_even_split_fallback

        for invoice in (jan, feb):
            restored = services.ledger.get_invoice(invoice.id)
            assert restored.balance_remaining == invoice.total_amount
            assert restored.amount_paid == Decimal("0.00")
            assert restored.status == InvoiceStatus.ISSUED

        refreshed = services.state_machine.get_payment(payment.id)
        assert refreshed.active_allocations == ()
        assert all(a.reversed_at is not None for a in refreshed.allocations)
        assert refreshed.audit_trail[-1].action == "refund"
        assert refreshed.audit_trail[-1].performed_by == "ops"

    def test_second_reversal_is_a_no_op(self, services, make_invoice, make_payment, tenant_id):
        invoice = make_invoice()
        payment = make_payment()
        services.linking.apply_payment_to_invoices(payment.id, tenant_id, Decimal("100.00"))
        services.linking.reverse_payment_application(payment.id)

        again = services.linking.reverse_payment_application(payment.id)

        assert again.success
        assert again.invoices_affected == 0
        assert again.total_reversed == Decimal("0")
        assert services.ledger.get_invoice(invoice.id).balance_remaining == Decimal("100.00")

    def test_unpaid_payment_keeps_status(self, services, make_invoice, make_payment, tenant_id):
        make_invoice()
        payment = make_payment(status=PaymentStatus.PROCESSING)
        services.linking.apply_payment_to_invoices(payment.id, tenant_id, Decimal("100.00"))

        result = services.linking.reverse_payment_application(payment.id)

        assert result.payment_status == PaymentStatus.PROCESSING
        trail = services.state_machine.history(payment.id)
        assert trail[-1].action == "allocations_reversed"
        assert trail[-1].details["invoices_affected"] == 1

    def test_legacy_links_use_even_split(
        self, services, make_invoice, make_payment, captured_logs,
    ):
        first = make_invoice(total="100.00")
        second = make_invoice(total="100.00")
        payment = make_payment(amount="100.00")
        # Pre-existing data: balances moved and links written, no allocation rows
        services.ledger.apply_payment(first.id, payment.id, Decimal("50.00"))
        services.ledger.apply_payment(second.id, payment.id, Decimal("50.00"))

        result = services.linking.reverse_payment_application(payment.id)

        assert result.used_even_split_fallback
        assert result.total_reversed == Decimal("100.00")
        assert services.ledger.get_invoice(first.id).balance_remaining == Decimal("100.00")
        assert services.ledger.get_invoice(second.id).balance_remaining == Decimal("100.00")
        assert any(
            r["message"] == "payment_reversal_even_split_fallback" for r in captured_logs()
        )

    def test_uneven_allocations_use_recorded_amounts(
        self, services, make_invoice, make_payment, tenant_id,
    ):
        big = make_invoice(total="90.00", due_date=date(2024, 1, 1))
        small = make_invoice(total="100.00", due_date=date(2024, 2, 1))
        payment = make_payment(amount="100.00")
        services.linking.apply_payment_to_invoices(payment.id, tenant_id, Decimal("100.00"))

        result = services.linking.reverse_payment_application(payment.id)

        assert [r.amount_applied for r in result.reversals] == [Decimal("90.00"), Decimal("10.00")]
        assert services.ledger.get_invoice(big.id).balance_remaining == Decimal("90.00")
        assert services.ledger.get_invoice(small.id).balance_remaining == Decimal("100.00")


# =============================================================================
# Manual payments
# =============================================================================


class TestRecordManualPayment:

    def test_without_context_fails_without_side_effects(self, services, session, tenant_id):
        with pytest.raises(PropertyResolutionError) as exc_info:
            services.linking.record_manual_payment(ManualPaymentRequest(
                tenant_id=tenant_id,
                amount=Decimal("100.00"),
                payment_method="check",
            ))
        assert exc_info.value.code == "PROPERTY_RESOLUTION_FAILED"
        assert _payment_count(session) == 0

    def test_unknown_lease_fails_without_side_effects(self, services, session, tenant_id):
        with pytest.raises(PropertyResolutionError):
            services.linking.record_manual_payment(ManualPaymentRequest(
                tenant_id=tenant_id,
                amount=Decimal("100.00"),
                payment_method="check",
                lease_id=uuid4(),
            ))
        assert _payment_count(session) == 0

    def test_specific_invoice(self, services, make_invoice, tenant_id, property_id):
        make_invoice(due_date=date(2024, 1, 1))
        target = make_invoice(due_date=date(2024, 5, 1))

        result = services.linking.record_manual_payment(ManualPaymentRequest(
            tenant_id=tenant_id,
            amount=Decimal("60.00"),
            payment_method="cash",
            payment_date=date(2024, 5, 3),
            specific_invoice_id=target.id,
            notes="front desk",
            performed_by="manager",
        ))

        assert result.outcome == LinkingOutcome.COMPLETED
        assert [a.invoice_id for a in result.applications] == [target.id]

        payment = services.state_machine.get_payment(result.payment_id)
        assert payment.status == PaymentStatus.PAID
        assert payment.source == "manual"
        assert payment.property_id == property_id
        assert payment.due_date == date(2024, 5, 3)
        assert payment.notes == "front desk"
        assert [e.performed_by for e in payment.audit_trail[:2]] == ["manager", "manager"]

    def test_specific_invoice_over_balance(self, services, session, make_invoice, tenant_id):
        target = make_invoice(total="50.00")
        with pytest.raises(InsufficientInvoiceBalanceError):
            services.linking.record_manual_payment(ManualPaymentRequest(
                tenant_id=tenant_id,
                amount=Decimal("75.00"),
                payment_method="cash",
                specific_invoice_id=target.id,
            ))
        assert _payment_count(session) == 0

    def test_lease_context_uses_priority_allocation(
        self, services, make_invoice, make_lease, tenant_id, deterministic_clock,
    ):
        lease = make_lease()
        jan = make_invoice(due_date=date(2024, 1, 1), lease_id=lease.id)
        feb = make_invoice(due_date=date(2024, 2, 1), lease_id=lease.id)

        result = services.linking.record_manual_payment(ManualPaymentRequest(
            tenant_id=tenant_id,
            amount=Decimal("120.00"),
            payment_method="check",
            lease_id=lease.id,
        ))

        assert [(a.invoice_id, a.amount_applied) for a in result.applications] == [
            (jan.id, Decimal("100.00")),
            (feb.id, Decimal("20.00")),
        ]
        payment = services.state_machine.get_payment(result.payment_id)
        assert payment.lease_id == lease.id
        assert payment.due_date == deterministic_clock.today()

    def test_invoice_of_another_tenant_rejected(self, services, session, make_invoice, tenant_id):
        foreign = make_invoice(tenant=uuid4())
        with pytest.raises(ValidationError):
            services.linking.record_manual_payment(ManualPaymentRequest(
                tenant_id=tenant_id,
                amount=Decimal("10.00"),
                payment_method="cash",
                specific_invoice_id=foreign.id,
            ))
        assert _payment_count(session) == 0

    def test_lease_of_another_tenant_rejected(self, services, session, make_lease, tenant_id):
        foreign = make_lease(tenant=uuid4())
        with pytest.raises(ValidationError, match="different tenant"):
            services.linking.record_manual_payment(ManualPaymentRequest(
                tenant_id=tenant_id,
                amount=Decimal("10.00"),
                payment_method="cash",
                lease_id=foreign.id,
            ))
        assert _payment_count(session) == 0


# =============================================================================
# Read-only views
# =============================================================================


class TestReports:

    def test_outstanding_balance_report(
        self, services, make_invoice, deterministic_clock, tenant_id,
    ):
        deterministic_clock.set_date(date(2024, 2, 15))
        make_invoice(due_date=date(2024, 1, 1), invoice_number="INV-JAN")
        make_invoice(due_date=date(2024, 3, 1), invoice_number="INV-MAR")
        make_invoice(status=InvoiceStatus.CANCELLED)

        report = services.linking.get_payment_allocation(tenant_id)

        assert report.as_of == date(2024, 2, 15)
        assert [r.invoice_number for r in report.invoices] == ["INV-JAN", "INV-MAR"]
        assert [r.days_overdue for r in report.invoices] == [45, 0]
        assert report.total_outstanding == Decimal("200.00")

    def test_preview_writes_nothing(self, services, make_invoice, tenant_id):
        jan = make_invoice(due_date=date(2024, 1, 1))
        feb = make_invoice(due_date=date(2024, 2, 1))

        plan = services.linking.preview_payment_application(tenant_id, Decimal("150.00"))

        assert [line.target_id for line in plan.funded_lines] == [jan.id, feb.id]
        assert plan.funded_lines[1].allocated.amount == Decimal("50.00")
        assert services.ledger.get_invoice(jan.id).balance_remaining == Decimal("100.00")


class TestAllocationOrderKey:

    def _invoice(self, number, due, created):
        return Invoice(
            id=uuid4(),
            tenant_id=uuid4(),
            property_id=uuid4(),
            invoice_number=number,
            due_date=due,
            total_amount=Decimal("10.00"),
            amount_paid=Decimal("0"),
            balance_remaining=Decimal("10.00"),
            status=InvoiceStatus.ISSUED,
            created_at=created,
        )

    def test_due_date_then_created_at_then_number(self):
        early = datetime(2024, 1, 1, 8, tzinfo=timezone.utc)
        late = datetime(2024, 1, 1, 9, tzinfo=timezone.utc)
        invoices = [
            self._invoice("INV-3", date(2024, 2, 1), early),
            self._invoice("INV-2", date(2024, 1, 1), late),
            self._invoice("INV-9", date(2024, 1, 1), early),
            self._invoice("INV-1", date(2024, 1, 1), late),
        ]
        ordered = sorted(invoices, key=allocation_order_key)
        assert [i.invoice_number for i in ordered] == ["INV-9", "INV-1", "INV-2", "INV-3"]
