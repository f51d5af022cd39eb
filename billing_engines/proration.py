"""
Module: billing_engines.proration
Responsibility:
    Compute partial-month rent for move-ins and move-outs.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - The period is the calendar month of the move-in date; it ends on the
      move-out date when one is given, otherwise on the last day of that
      month.
    - ``days_occupied`` counts move-in and period end inclusively.
    - ``prorated_amount = monthly_rent / days_in_period * days_occupied``,
      rounded half-up to 2 decimal places.
    - ``DAILY`` and ``CALENDAR_MONTH`` produce identical amounts; the method
      is recorded on the result as a label only.

Failure modes:
    - ValidationError when monthly_rent is negative or move_out_date is
      before move_in_date.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from billing_engines.tracer import traced_engine
from billing_kernel.domain.dates import (
    days_in_month,
    first_day_of_month,
    inclusive_day_count,
    last_day_of_month,
)
from billing_kernel.exceptions import ValidationError
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.proration")

_CENT = Decimal("0.01")


class ProrationMethod(str, Enum):
    DAILY = "daily"
    CALENDAR_MONTH = "calendar_month"


class ProrationType(str, Enum):
    MOVE_IN = "move_in"
    MOVE_OUT = "move_out"


@dataclass(frozen=True)
class ProrationCalculation:
    """Partial-period rent and the figures it was derived from."""

    original_amount: Decimal
    prorated_amount: Decimal
    period_start: date
    period_end: date
    days_in_period: int
    days_occupied: int
    daily_rate: Decimal
    calculation_method: ProrationMethod
    proration_type: ProrationType


class ProrationCalculator:

    @traced_engine(
        "proration",
        "1.0",
        fingerprint_fields=("monthly_rent", "move_in_date", "move_out_date", "method"),
    )
    def calculate(
        self,
        monthly_rent: Decimal,
        move_in_date: date,
        move_out_date: date | None = None,
        method: ProrationMethod = ProrationMethod.DAILY,
    ) -> ProrationCalculation:
        if monthly_rent < 0:
            raise ValidationError("monthly_rent", "cannot be negative")
        if move_out_date is not None and move_out_date < move_in_date:
            raise ValidationError("move_out_date", "cannot be before move_in_date")

        method = ProrationMethod(method)
        period_start = first_day_of_month(move_in_date)
        period_end = move_out_date if move_out_date is not None else last_day_of_month(move_in_date)
        period_days = days_in_month(move_in_date)
        days_occupied = inclusive_day_count(move_in_date, period_end)

        daily_rate = monthly_rent / Decimal(period_days)
        prorated = (daily_rate * days_occupied).quantize(_CENT, rounding=ROUND_HALF_UP)
        proration_type = ProrationType.MOVE_OUT if move_out_date is not None else ProrationType.MOVE_IN

        logger.info("proration_calculated", extra={
            "monthly_rent": str(monthly_rent),
            "days_in_period": period_days,
            "days_occupied": days_occupied,
            "prorated_amount": str(prorated),
            "method": method.value,
            "proration_type": proration_type.value,
        })

        return ProrationCalculation(
            original_amount=monthly_rent,
            prorated_amount=prorated,
            period_start=period_start,
            period_end=period_end,
            days_in_period=period_days,
            days_occupied=days_occupied,
            daily_rate=daily_rate,
            calculation_method=method,
            proration_type=proration_type,
        )
