"""Tests for the payment lifecycle workflow definition."""

import pytest

from billing_kernel.domain.dtos import PaymentStatus
from billing_kernel.domain.workflow import PAYMENT_WORKFLOW, Transition, Workflow

P = PaymentStatus


class TestPaymentWorkflow:

    @pytest.mark.parametrize("from_status,to_status", [
        (P.PENDING, P.PROCESSING),
        (P.PENDING, P.CANCELLED),
        (P.PENDING, P.OVERDUE),
        (P.PROCESSING, P.PAID),
        (P.PROCESSING, P.FAILED),
        (P.PAID, P.REFUNDED),
        (P.FAILED, P.PENDING),
        (P.FAILED, P.PROCESSING),
        (P.OVERDUE, P.PROCESSING),
        (P.OVERDUE, P.PAID),
        (P.OVERDUE, P.CANCELLED),
    ])
    def test_allowed(self, from_status, to_status):
        assert PAYMENT_WORKFLOW.is_valid_transition(from_status.value, to_status.value)

    @pytest.mark.parametrize("from_status,to_status", [
        (P.PAID, P.PROCESSING),
        (P.PAID, P.PENDING),
        (P.PENDING, P.PAID),
        (P.PROCESSING, P.PENDING),
        (P.REFUNDED, P.PAID),
        (P.CANCELLED, P.PENDING),
    ])
    def test_rejected(self, from_status, to_status):
        assert not PAYMENT_WORKFLOW.is_valid_transition(from_status.value, to_status.value)

    def test_terminal_states_have_no_targets(self):
        for state in PAYMENT_WORKFLOW.terminal_states:
            assert PAYMENT_WORKFLOW.allowed_targets(state) == frozenset()

    def test_refund_is_administrative(self):
        refund = PAYMENT_WORKFLOW.find_transition(P.PAID.value, P.REFUNDED.value)
        assert refund.action == "refund"
        assert refund.administrative

    def test_every_status_is_a_state(self):
        assert set(PAYMENT_WORKFLOW.states) == {s.value for s in PaymentStatus}


class TestWorkflowValidation:

    def test_unknown_state_in_transition(self):
        with pytest.raises(ValueError, match="unknown state"):
            Workflow(
                name="w",
                description="",
                initial_state="a",
                states=("a",),
                transitions=(Transition("a", "b", action="go"),),
            )

    def test_terminal_state_cannot_leave(self):
        with pytest.raises(ValueError, match="Terminal state"):
            Workflow(
                name="w",
                description="",
                initial_state="a",
                states=("a", "b"),
                transitions=(Transition("b", "a", action="back"),),
                terminal_states=("b",),
            )
