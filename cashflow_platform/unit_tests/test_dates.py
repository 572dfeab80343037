"""
Date Utility Tests
==================

Tests for day-count year fractions, business-day adjustment and month
arithmetic used by every engine.
"""

from datetime import date

import pytest

from cashflow_platform.engine.dates import (
    BusinessDayConvention,
    DayCount,
    PaymentFrequency,
    add_months,
    adjust_business_day,
    months_between,
    year_fraction,
)


# =============================================================================
# Year Fractions
# =============================================================================

class TestYearFraction:
    """Day-count conventions."""

    def test_thirty_360_full_month(self):
        assert year_fraction(date(2024, 1, 15), date(2024, 2, 15), DayCount.THIRTY_360) == pytest.approx(30 / 360)

    def test_thirty_360_caps_day_31(self):
        """31st is treated as the 30th on both ends."""
        yf = year_fraction(date(2024, 1, 31), date(2024, 3, 31), DayCount.THIRTY_360)
        assert yf == pytest.approx(60 / 360)

    def test_thirty_360_full_year(self):
        assert year_fraction(date(2023, 6, 1), date(2024, 6, 1), DayCount.THIRTY_360) == pytest.approx(1.0)

    def test_act_360_and_act_365(self):
        start, end = date(2024, 1, 1), date(2024, 4, 1)  # 91 days
        assert year_fraction(start, end, DayCount.ACT_360) == pytest.approx(91 / 360)
        assert year_fraction(start, end, DayCount.ACT_365) == pytest.approx(91 / 365)

    def test_act_act_uses_start_year_length(self):
        assert year_fraction(date(2024, 1, 1), date(2025, 1, 1), DayCount.ACT_ACT) == pytest.approx(1.0)
        assert year_fraction(date(2023, 1, 1), date(2023, 7, 2), DayCount.ACT_ACT) == pytest.approx(182 / 365)

    def test_reversed_dates_give_negative_fraction(self):
        assert year_fraction(date(2024, 2, 1), date(2024, 1, 1), DayCount.ACT_365) == pytest.approx(-31 / 365)

    def test_accepts_string_convention(self):
        assert year_fraction(date(2024, 1, 1), date(2024, 2, 1), "30/360") == pytest.approx(1 / 12)


# =============================================================================
# Business Days
# =============================================================================

class TestBusinessDayAdjustment:
    """Weekend roll conventions."""

    def test_weekday_unchanged(self):
        wednesday = date(2024, 5, 15)
        for convention in BusinessDayConvention:
            assert adjust_business_day(wednesday, convention) == wednesday

    def test_following_rolls_forward(self):
        assert adjust_business_day(date(2024, 6, 15), BusinessDayConvention.FOLLOWING) == date(2024, 6, 17)

    def test_previous_rolls_back(self):
        assert adjust_business_day(date(2024, 6, 16), BusinessDayConvention.PREVIOUS) == date(2024, 6, 14)

    def test_modified_following_stays_in_month(self):
        """Saturday 2024-08-31 would roll into September, so it rolls back."""
        assert adjust_business_day(date(2024, 8, 31), BusinessDayConvention.MODIFIED_FOLLOWING) == date(2024, 8, 30)

    def test_modified_following_rolls_forward_within_month(self):
        assert adjust_business_day(date(2024, 6, 15), BusinessDayConvention.MODIFIED_FOLLOWING) == date(2024, 6, 17)

    def test_none_leaves_weekend(self):
        assert adjust_business_day(date(2024, 6, 15), BusinessDayConvention.NONE) == date(2024, 6, 15)


# =============================================================================
# Month Arithmetic
# =============================================================================

class TestMonthArithmetic:

    def test_add_months_clips_to_month_end(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)

    def test_add_months_negative(self):
        assert add_months(date(2024, 3, 1), -1) == date(2024, 2, 1)

    def test_months_between(self):
        assert months_between(date(2024, 2, 1), date(2026, 7, 1)) == 29

    @pytest.mark.parametrize(
        "frequency,periods,months",
        [
            (PaymentFrequency.MONTHLY, 12, 1),
            (PaymentFrequency.QUARTERLY, 4, 3),
            (PaymentFrequency.SEMI_ANNUAL, 2, 6),
            (PaymentFrequency.ANNUAL, 1, 12),
        ],
    )
    def test_frequency_properties(self, frequency, periods, months):
        assert frequency.periods_per_year == periods
        assert frequency.months == months
