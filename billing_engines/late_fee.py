"""
Module: billing_engines.late_fee
Responsibility:
    Decide whether a late fee applies to a payment (and optionally the
    invoice it settles) and how much, given a property's late-fee policy.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    The evaluation date is passed in; the engine never reads a clock.

Invariants enforced:
    - No fee while ``as_of <= due_date + grace_period_days``.
    - ``days_late`` is always >= 1 when a calculation is returned.  The
      first day after the grace window counts as one day late.
    - The fee is clamped to ``maximum_fee`` before it is rounded half-up
      to the currency precision.
    - Decimal-only arithmetic.

Failure modes:
    - ValueError from Money when the currency code is unknown.

Usage:
    from billing_engines.late_fee import LateFeeCalculator

    calc = LateFeeCalculator().calculate(
        payment=payment,
        invoice=invoice,
        fee_config=config,
        as_of=date(2024, 1, 10),
    )
    if calc is not None:
        print(calc.amount, calc.days_late)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from billing_engines.tracer import traced_engine
from billing_kernel.domain.dates import add_days, days_between
from billing_kernel.domain.dtos import Invoice, Payment
from billing_kernel.domain.fees import (
    DailyFee,
    FixedFee,
    LateFeeConfig,
    PercentageFee,
    TieredFee,
)
from billing_kernel.domain.values import Money
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.late_fee")

_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class LateFeeCalculation:
    """
    Derived late-fee figures for one payment.

    ``fee_structure`` is a JSON-ready snapshot of the policy that produced
    the amount, stored on the payment when the fee is applied.
    """

    amount: Decimal
    currency: str
    grace_period_end: date
    days_late: int
    fee_structure: dict[str, Any]
    base_amount: Decimal
    waived: bool = False
    capped: bool = False


class LateFeeCalculator:
    """Pure late-fee computation over a ``LateFeeConfig``."""

    @traced_engine("late_fee", "1.0", fingerprint_fields=("fee_config", "as_of"))
    def calculate(
        self,
        payment: Payment,
        fee_config: LateFeeConfig,
        as_of: date,
        invoice: Invoice | None = None,
    ) -> LateFeeCalculation | None:
        """
        Compute the late fee owed on ``as_of``, or None when none applies.

        The due date and base amount come from the invoice when one is
        supplied, otherwise from the payment.
        """
        if not fee_config.enabled:
            return None

        due_date = invoice.due_date if invoice is not None else payment.due_date
        base_amount = invoice.total_amount if invoice is not None else payment.amount
        currency = invoice.currency if invoice is not None else payment.currency

        grace_period_end = add_days(due_date, fee_config.grace_period_days)
        if as_of <= grace_period_end:
            return None

        # Inclusive: due 01-01 with 5 grace days is 5 days late on 01-10.
        days_late = days_between(grace_period_end, as_of) + 1
        raw_fee = self._fee_for(fee_config, base_amount, days_late)

        capped = False
        if fee_config.maximum_fee is not None and raw_fee > fee_config.maximum_fee:
            raw_fee = fee_config.maximum_fee
            capped = True

        amount = Money.of(raw_fee, currency).round().amount

        logger.info("late_fee_calculated", extra={
            "payment_id": str(payment.id),
            "fee_type": fee_config.fee_structure.type,
            "days_late": days_late,
            "amount": str(amount),
            "capped": capped,
        })

        return LateFeeCalculation(
            amount=amount,
            currency=currency,
            grace_period_end=grace_period_end,
            days_late=days_late,
            fee_structure=fee_config.fee_structure.snapshot(),
            base_amount=base_amount,
            capped=capped,
        )

    @staticmethod
    def _fee_for(fee_config: LateFeeConfig, base_amount: Decimal, days_late: int) -> Decimal:
        match fee_config.fee_structure:
            case FixedFee(amount=amount):
                return amount
            case PercentageFee(rate=rate):
                return base_amount * rate / _HUNDRED
            case DailyFee(amount=amount):
                return amount * days_late
            case TieredFee() as tiered:
                tier = tiered.select_tier(days_late)
                return tier.amount if tier is not None else Decimal("0")
            case _:
                raise ValueError(
                    f"Unknown fee structure: {type(fee_config.fee_structure).__name__}"
                )
