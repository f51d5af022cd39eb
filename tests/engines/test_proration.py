"""Tests for the ProrationCalculator."""

from datetime import date
from decimal import Decimal

import pytest

from billing_engines.proration import ProrationCalculator, ProrationMethod, ProrationType
from billing_kernel.exceptions import ValidationError


class TestProration:

    def setup_method(self):
        self.calculator = ProrationCalculator()

    def test_mid_month_move_in(self):
        calc = self.calculator.calculate(
            monthly_rent=Decimal("3000"),
            move_in_date=date(2024, 6, 16),
        )
        assert calc.days_in_period == 30
        assert calc.days_occupied == 15
        assert calc.prorated_amount == Decimal("1500.00")
        assert calc.period_start == date(2024, 6, 1)
        assert calc.period_end == date(2024, 6, 30)
        assert calc.proration_type == ProrationType.MOVE_IN

    def test_move_in_on_first_day_is_full_rent(self):
        calc = self.calculator.calculate(
            monthly_rent=Decimal("1850.00"),
            move_in_date=date(2024, 3, 1),
        )
        assert calc.days_occupied == 31
        assert calc.prorated_amount == Decimal("1850.00")

    def test_move_out_ends_period(self):
        calc = self.calculator.calculate(
            monthly_rent=Decimal("3100"),
            move_in_date=date(2024, 1, 1),
            move_out_date=date(2024, 1, 10),
        )
        assert calc.period_end == date(2024, 1, 10)
        assert calc.days_occupied == 10
        assert calc.prorated_amount == Decimal("1000.00")
        assert calc.proration_type == ProrationType.MOVE_OUT

    def test_rounds_half_up_to_cents(self):
        calc = self.calculator.calculate(
            monthly_rent=Decimal("1000"),
            move_in_date=date(2024, 2, 15),
        )
        # 1000 / 29 * 15 = 517.241...
        assert calc.prorated_amount == Decimal("517.24")

    def test_methods_produce_identical_amounts(self):
        daily = self.calculator.calculate(
            monthly_rent=Decimal("1234.56"),
            move_in_date=date(2024, 7, 9),
            method=ProrationMethod.DAILY,
        )
        calendar = self.calculator.calculate(
            monthly_rent=Decimal("1234.56"),
            move_in_date=date(2024, 7, 9),
            method=ProrationMethod.CALENDAR_MONTH,
        )
        assert daily.prorated_amount == calendar.prorated_amount
        assert calendar.calculation_method == ProrationMethod.CALENDAR_MONTH

    def test_negative_rent_rejected(self):
        with pytest.raises(ValidationError):
            self.calculator.calculate(
                monthly_rent=Decimal("-1"),
                move_in_date=date(2024, 1, 1),
            )

    def test_move_out_before_move_in_rejected(self):
        with pytest.raises(ValidationError, match="move_out_date"):
            self.calculator.calculate(
                monthly_rent=Decimal("1000"),
                move_in_date=date(2024, 1, 10),
                move_out_date=date(2024, 1, 5),
            )
