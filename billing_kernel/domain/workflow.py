"""
Canonical workflow types (``billing_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for status state machines, plus the payment lifecycle
workflow itself.  The PaymentStateMachine service validates every status
change against ``PAYMENT_WORKFLOW``.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
"""

from __future__ import annotations

from dataclasses import dataclass

from billing_kernel.domain.dtos import PaymentStatus


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    ``administrative=True`` marks side-channel transitions (refunds) that are
    driven by reversal rather than by the forward business flow.
    """
    from_state: str
    to_state: str
    action: str
    administrative: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"initial_state {self.initial_state!r} not in workflow {self.name}"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Transition {t.from_state}->{t.to_state} references unknown state"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Terminal state {t.from_state!r} cannot have outgoing transitions"
                )

    def allowed_targets(self, from_state: str) -> frozenset[str]:
        return frozenset(
            t.to_state for t in self.transitions if t.from_state == from_state
        )

    def find_transition(self, from_state: str, to_state: str) -> Transition | None:
        for t in self.transitions:
            if t.from_state == from_state and t.to_state == to_state:
                return t
        return None

    def is_valid_transition(self, from_state: str, to_state: str) -> bool:
        return self.find_transition(from_state, to_state) is not None


_P = PaymentStatus

PAYMENT_WORKFLOW = Workflow(
    name="rent_payment",
    description="Rent payment lifecycle",
    initial_state=_P.PENDING.value,
    states=tuple(s.value for s in PaymentStatus),
    transitions=(
        Transition(_P.PENDING.value, _P.PROCESSING.value, action="initiate"),
        Transition(_P.PENDING.value, _P.CANCELLED.value, action="cancel"),
        Transition(_P.PENDING.value, _P.OVERDUE.value, action="mark_overdue"),
        Transition(_P.PROCESSING.value, _P.PAID.value, action="settle"),
        Transition(_P.PROCESSING.value, _P.FAILED.value, action="fail"),
        Transition(_P.PAID.value, _P.REFUNDED.value, action="refund", administrative=True),
        Transition(_P.FAILED.value, _P.PENDING.value, action="reset"),
        Transition(_P.FAILED.value, _P.PROCESSING.value, action="retry"),
        Transition(_P.OVERDUE.value, _P.PROCESSING.value, action="initiate"),
        Transition(_P.OVERDUE.value, _P.PAID.value, action="settle"),
        Transition(_P.OVERDUE.value, _P.CANCELLED.value, action="cancel"),
    ),
    terminal_states=(_P.CANCELLED.value, _P.REFUNDED.value),
)
