"""
Module: billing_engines.allocation
Responsibility:
    Plan how a payment amount spreads across a tenant's invoices, either
    oldest-obligation-first (FIFO) or as an even split, with deterministic
    rounding.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import billing_kernel.domain and billing_kernel.logging_config.

Invariants enforced:
    - Conservation: total_allocated + unallocated == source_amount.
    - No target receives more than its eligible amount.
    - Even-split shares round down and the residue lands on exactly one
      target (the last by default), so no share is ever negative.
    - All targets share the source currency.

Failure modes:
    - ValueError on currency mismatch between source and targets.
    - ValueError on an unknown allocation method.

Usage:
    from billing_engines.allocation import AllocationEngine, AllocationMethod, AllocationTarget
    from billing_kernel.domain.values import Money

    plan = AllocationEngine().allocate(
        amount=Money.of("150.00", "USD"),
        targets=[
            AllocationTarget(target_id=jan.id, eligible_amount=Money.of("100.00", "USD"), date=jan.due_date),
            AllocationTarget(target_id=feb.id, eligible_amount=Money.of("100.00", "USD"), date=feb.due_date),
        ],
        method=AllocationMethod.FIFO,
    )
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from uuid import UUID

from billing_engines.tracer import traced_engine
from billing_kernel.domain.values import Money
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")


class AllocationMethod(str, Enum):
    """Method for allocating amounts."""

    FIFO = "fifo"  # Oldest due date first
    EQUAL = "equal"  # Split evenly


@dataclass(frozen=True)
class AllocationTarget:
    """
    An invoice that can receive part of a payment.

    ``priority`` breaks ties between equal due dates (lower goes first);
    callers pass the position from their own stable ordering.
    """

    target_id: str | UUID
    eligible_amount: Money | None = None
    date: date | None = None
    priority: int = 0


@dataclass(frozen=True)
class AllocationLine:
    """
    Planned allocation to a single target.

    Guarantees:
        - ``allocated + remaining == eligible_amount`` (when eligible is set).
    """

    target_id: str | UUID
    allocated: Money
    remaining: Money
    is_fully_allocated: bool


@dataclass(frozen=True)
class AllocationResult:
    """
    Complete allocation plan.

    Guarantees:
        - ``total_allocated + unallocated == source_amount``.
    """

    source_amount: Money
    method: AllocationMethod
    lines: tuple[AllocationLine, ...]
    total_allocated: Money
    unallocated: Money
    rounding_adjustment: Money

    @property
    def is_fully_allocated(self) -> bool:
        """True if entire source amount was allocated."""
        return self.unallocated.is_zero

    @property
    def funded_lines(self) -> tuple[AllocationLine, ...]:
        """Lines that actually receive money, in allocation order."""
        return tuple(line for line in self.lines if not line.allocated.is_zero)


class AllocationEngine:
    """
    Allocate amounts across invoices.

    Contract:
        Pure functions with deterministic rounding.  No I/O, no database
        access, no clock.
    Non-goals:
        - Does not apply anything; the linking orchestrator turns a plan
          into ledger calls.
    """

    @traced_engine("allocation", "1.0", fingerprint_fields=("amount", "method"))
    def allocate(
        self,
        amount: Money,
        targets: Sequence[AllocationTarget],
        method: AllocationMethod,
        rounding_target_index: int | None = None,
    ) -> AllocationResult:
        """
        Allocate amount to targets using specified method.

        Args:
            amount: Amount to allocate.
            targets: Candidate invoices.
            method: FIFO or EQUAL.
            rounding_target_index: Which target absorbs even-split rounding
                (default: last).
        """
        logger.info("allocation_started", extra={
            "amount": str(amount.amount),
            "currency": amount.currency.code,
            "method": method.value,
            "target_count": len(targets),
        })

        for target in targets:
            if (
                target.eligible_amount is not None
                and target.eligible_amount.currency != amount.currency
            ):
                raise ValueError(
                    f"Currency mismatch: {target.eligible_amount.currency} vs {amount.currency}"
                )

        if not targets:
            logger.warning("allocation_no_targets", extra={
                "amount": str(amount.amount),
                "method": method.value,
            })
            return AllocationResult(
                source_amount=amount,
                method=method,
                lines=(),
                total_allocated=Money.zero(amount.currency),
                unallocated=amount,
                rounding_adjustment=Money.zero(amount.currency),
            )

        match method:
            case AllocationMethod.FIFO:
                return self._allocate_fifo(amount, targets)
            case AllocationMethod.EQUAL:
                return self._allocate_equal(amount, targets, rounding_target_index)
            case _:
                logger.error("allocation_unknown_method", extra={"method": str(method)})
                raise ValueError(f"Unknown allocation method: {method}")

    def _allocate_fifo(
        self,
        amount: Money,
        targets: Sequence[AllocationTarget],
    ) -> AllocationResult:
        """Allocate to oldest first (by date), then by priority."""
        sorted_targets = sorted(
            targets,
            key=lambda t: (t.date or date.min, t.priority),
        )
        currency = amount.currency
        remaining_to_allocate = amount.amount
        lines: list[AllocationLine] = []

        for target in sorted_targets:
            eligible = (
                target.eligible_amount.amount
                if target.eligible_amount is not None
                else remaining_to_allocate
            )
            to_allocate = max(Decimal("0"), min(remaining_to_allocate, eligible))
            remaining_to_allocate -= to_allocate
            target_remaining = Money.of(eligible - to_allocate, currency)

            lines.append(
                AllocationLine(
                    target_id=target.target_id,
                    allocated=Money.of(to_allocate, currency),
                    remaining=target_remaining,
                    is_fully_allocated=target_remaining.is_zero,
                )
            )

        total_allocated = amount.amount - remaining_to_allocate

        logger.info("allocation_fifo_completed", extra={
            "source_amount": str(amount.amount),
            "total_allocated": str(total_allocated),
            "unallocated": str(remaining_to_allocate),
            "targets_funded": sum(1 for line in lines if not line.allocated.is_zero),
        })

        return AllocationResult(
            source_amount=amount,
            method=AllocationMethod.FIFO,
            lines=tuple(lines),
            total_allocated=Money.of(total_allocated, currency),
            unallocated=Money.of(remaining_to_allocate, currency),
            rounding_adjustment=Money.zero(currency),
        )

    def _allocate_equal(
        self,
        amount: Money,
        targets: Sequence[AllocationTarget],
        rounding_target_index: int | None,
    ) -> AllocationResult:
        """Allocate equally to all targets."""
        count = Decimal(len(targets))
        return self._allocate_by_ratio(
            amount=amount,
            targets=targets,
            get_ratio=lambda t: Decimal("1") / count,
            rounding_target_index=rounding_target_index,
        )

    def _allocate_by_ratio(
        self,
        amount: Money,
        targets: Sequence[AllocationTarget],
        get_ratio: Callable[[AllocationTarget], Decimal],
        rounding_target_index: int | None,
    ) -> AllocationResult:
        """Ratio-based split; the rounding target receives the remainder."""
        if rounding_target_index is None:
            rounding_target_index = len(targets) - 1

        currency = amount.currency
        quantum = currency.quantum
        lines: list[AllocationLine] = []

        shares = [
            (amount.amount * get_ratio(t)).quantize(quantum, rounding=ROUND_DOWN)
            for t in targets
        ]
        shares[rounding_target_index] = amount.amount - sum(
            (s for i, s in enumerate(shares) if i != rounding_target_index),
            Decimal("0"),
        )

        for target, allocated_amount in zip(targets, shares):
            allocated_money = Money.of(allocated_amount, currency)

            if target.eligible_amount is not None:
                remaining = target.eligible_amount - allocated_money
                if remaining.is_negative:
                    # Cap at eligible; the excess stays unallocated
                    allocated_money = target.eligible_amount
                    remaining = Money.zero(currency)
                is_fully = remaining.is_zero
            else:
                remaining = Money.zero(currency)
                is_fully = True

            lines.append(
                AllocationLine(
                    target_id=target.target_id,
                    allocated=allocated_money,
                    remaining=remaining,
                    is_fully_allocated=is_fully,
                )
            )

        total_allocated = sum((line.allocated.amount for line in lines), Decimal("0"))
        total_allocated_money = Money.of(total_allocated, currency)
        unallocated = amount - total_allocated_money

        naive_total = sum(
            (amount.amount * get_ratio(t)).quantize(quantum, rounding=ROUND_DOWN)
            for t in targets
        )
        rounding_adjustment = Money.of(amount.amount - naive_total, currency)

        logger.info("allocation_by_ratio_completed", extra={
            "source_amount": str(amount.amount),
            "total_allocated": str(total_allocated),
            "unallocated": str(unallocated.amount),
            "rounding_adjustment": str(rounding_adjustment.amount),
            "line_count": len(lines),
        })

        return AllocationResult(
            source_amount=amount,
            method=AllocationMethod.EQUAL,
            lines=tuple(lines),
            total_allocated=total_allocated_money,
            unallocated=unallocated,
            rounding_adjustment=rounding_adjustment,
        )
