"""
Hypothesis property tests for payment allocation.

Boundaries fuzzed here:
- AllocationEngine conservation: allocated + unallocated == source amount
- Eligible caps are never exceeded under FIFO or EQUAL
- Linking: invoice balances stay consistent and never go negative
- Linking: total applied never exceeds the payment or the open balance
- Apply followed by reverse restores every invoice
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from billing_engines.allocation import AllocationEngine, AllocationMethod, AllocationTarget
from billing_kernel.domain.clock import DeterministicClock
from billing_kernel.domain.dtos import InvoiceStatus, PaymentDraft, PaymentStatus
from billing_kernel.domain.values import Money
from billing_services.wiring import build_billing_services

pytestmark = pytest.mark.fuzzing

amounts = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("5000.00"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)

invoice_totals = st.lists(amounts, min_size=1, max_size=6)


class TestAllocationEngineProperties:

    @given(amount=amounts, eligible=invoice_totals)
    @settings(max_examples=200, deadline=None)
    def test_fifo_conserves_amount(self, amount, eligible):
        result = AllocationEngine().allocate(
            amount=Money.of(amount, "USD"),
            targets=[
                AllocationTarget(str(i), Money.of(e, "USD"), date=date(2024, 1, 1) + timedelta(days=i))
                for i, e in enumerate(eligible)
            ],
            method=AllocationMethod.FIFO,
        )
        assert result.total_allocated.amount + result.unallocated.amount == amount
        assert result.total_allocated.amount == min(amount, sum(eligible))
        for line, cap in zip(result.lines, eligible):
            assert Decimal("0") <= line.allocated.amount <= cap

    @given(amount=amounts, count=st.integers(min_value=1, max_value=7))
    @settings(max_examples=200, deadline=None)
    def test_equal_split_is_exact_and_near_even(self, amount, count):
        result = AllocationEngine().allocate(
            amount=Money.of(amount, "USD"),
            targets=[AllocationTarget(str(i)) for i in range(count)],
            method=AllocationMethod.EQUAL,
        )
        shares = [line.allocated.amount for line in result.lines]
        assert sum(shares) == amount
        assert result.unallocated.is_zero
        assert all(share >= 0 for share in shares)
        # Only the rounding target differs, by less than one penny per target.
        assert len(set(shares[:-1])) <= 1
        assert Decimal("0") <= shares[-1] - shares[0] < Decimal("0.01") * count

    @given(amount=amounts, eligible=invoice_totals)
    @settings(max_examples=200, deadline=None)
    def test_equal_split_respects_caps(self, amount, eligible):
        result = AllocationEngine().allocate(
            amount=Money.of(amount, "USD"),
            targets=[AllocationTarget(str(i), Money.of(e, "USD")) for i, e in enumerate(eligible)],
            method=AllocationMethod.EQUAL,
        )
        assert result.total_allocated.amount + result.unallocated.amount == amount
        for line, cap in zip(result.lines, eligible):
            assert line.allocated.amount <= cap


class TestLinkingProperties:

    @given(payment_amount=amounts, totals=invoice_totals)
    @settings(
        max_examples=25,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture, HealthCheck.too_slow],
    )
    def test_apply_then_reverse(self, session_maker, payment_amount, totals):
        with session_maker() as session:
            services = build_billing_services(session, clock=DeterministicClock())
            tenant_id, property_id = uuid4(), uuid4()

            invoices = [
                services.invoice_store.create_invoice(
                    tenant_id=tenant_id,
                    property_id=property_id,
                    invoice_number=f"FZ-{i:03d}",
                    due_date=date(2024, 1, 1) + timedelta(days=30 * i),
                    total_amount=total,
                )
                for i, total in enumerate(totals)
            ]
            payment = services.payment_store.create_payment(PaymentDraft(
                tenant_id=tenant_id,
                property_id=property_id,
                amount=payment_amount,
                payment_method="card",
                due_date=date(2024, 1, 1),
            ))
            services.state_machine.transition(payment.id, PaymentStatus.PROCESSING, "fuzz")
            services.state_machine.transition(payment.id, PaymentStatus.PAID, "fuzz")

            result = services.linking.apply_payment_to_invoices(
                payment.id, tenant_id, payment_amount,
            )

            expected_applied = min(payment_amount, sum(totals))
            assert result.total_amount_applied == expected_applied
            assert result.remaining_payment_amount == payment_amount - expected_applied
            assert not result.failures

            allocations = services.payment_store.list_allocations(payment.id)
            assert sum(a.amount_applied for a in allocations) == expected_applied

            for invoice in invoices:
                current = services.ledger.get_invoice(invoice.id)
                assert current.balance_remaining >= 0
                assert current.amount_paid + current.balance_remaining == current.total_amount

            # Oldest invoices are paid in full before any later one is touched.
            paid_flags = [
                services.ledger.get_invoice(i.id).status == InvoiceStatus.PAID for i in invoices
            ]
            assert paid_flags == sorted(paid_flags, reverse=True)

            reversal = services.linking.reverse_payment_application(payment.id)
            assert reversal.total_reversed == expected_applied
            assert reversal.payment_status == PaymentStatus.REFUNDED

            for invoice in invoices:
                current = services.ledger.get_invoice(invoice.id)
                assert current.amount_paid == Decimal("0")
                assert current.balance_remaining == invoice.total_amount
                assert current.status == InvoiceStatus.ISSUED
            assert services.payment_store.list_allocations(payment.id) == []
