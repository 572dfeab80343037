"""
Day Count and Calendar Utilities
================================

Pure date arithmetic used by every engine:

- :func:`year_fraction`: accrual fraction under a :class:`DayCount` basis.
- :func:`adjust_business_day`: weekend roll under a
  :class:`BusinessDayConvention`.
- :func:`add_months` / :func:`months_between`: calendar month stepping with
  end-of-month clipping.

Holidays are not modelled; only Saturdays and Sundays are non-business days.

Example
-------
>>> from datetime import date
>>> from cashflow_platform.engine.dates import DayCount, year_fraction
>>> year_fraction(date(2024, 1, 15), date(2024, 2, 15), DayCount.THIRTY_360)
0.08333333333333333
"""

from __future__ import annotations

import calendar
from datetime import date, timedelta
from enum import Enum

from dateutil.relativedelta import relativedelta


class DayCount(str, Enum):
    """
    Supported day count conventions for interest accrual.

    Attributes
    ----------
    THIRTY_360 : str
        30/360 (both day-of-month values capped at 30, 360-day year).
    ACT_360 : str
        Actual days over a 360-day year.
    ACT_365 : str
        Actual days over a 365-day year.
    ACT_ACT : str
        Actual days over the length of the start date's year.
    """

    THIRTY_360 = "30/360"
    ACT_360 = "ACT/360"
    ACT_365 = "ACT/365"
    ACT_ACT = "ACT/ACT"


class BusinessDayConvention(str, Enum):
    """Roll conventions for payment dates that fall on a weekend."""

    FOLLOWING = "Following"
    MODIFIED_FOLLOWING = "ModifiedFollowing"
    PREVIOUS = "Previous"
    NONE = "None"


class PaymentFrequency(str, Enum):
    """
    Scheduled payment frequency of an amortizing instrument.

    ``periods_per_year`` is the divisor applied to an annual coupon to get the
    periodic rate; ``months`` is the calendar step between payments.
    """

    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    SEMI_ANNUAL = "SemiAnnual"
    ANNUAL = "Annual"

    @property
    def periods_per_year(self) -> int:
        return _PERIODS_PER_YEAR[self]

    @property
    def months(self) -> int:
        return 12 // _PERIODS_PER_YEAR[self]


_PERIODS_PER_YEAR = {
    PaymentFrequency.MONTHLY: 12,
    PaymentFrequency.QUARTERLY: 4,
    PaymentFrequency.SEMI_ANNUAL: 2,
    PaymentFrequency.ANNUAL: 1,
}


def year_fraction(start: date, end: date, day_count: DayCount) -> float:
    """
    Compute the accrual year fraction between two dates.

    Parameters
    ----------
    start : date
        Accrual start.
    end : date
        Accrual end.
    day_count : DayCount
        Convention to apply.

    Returns
    -------
    float
        Signed year fraction; negative when ``end`` precedes ``start``.

    Notes
    -----
    30/360 uses ``360·Δyear + 30·Δmonth + (min(d2, 30) − min(d1, 30))``.
    ACT/ACT divides by 366 when the start year is a leap year, else 365.
    """
    day_count = DayCount(day_count)
    if day_count is DayCount.THIRTY_360:
        d1 = min(30, start.day)
        d2 = min(30, end.day)
        days = 360 * (end.year - start.year) + 30 * (end.month - start.month) + (d2 - d1)
        return days / 360.0

    actual_days = (end - start).days
    if day_count is DayCount.ACT_360:
        return actual_days / 360.0
    if day_count is DayCount.ACT_365:
        return actual_days / 365.0
    days_in_year = 366 if calendar.isleap(start.year) else 365
    return actual_days / float(days_in_year)


def is_weekend(value: date) -> bool:
    """Return True for Saturdays and Sundays."""
    return value.weekday() >= 5


def adjust_business_day(value: date, convention: BusinessDayConvention) -> date:
    """
    Roll a date off a weekend according to a business-day convention.

    Parameters
    ----------
    value : date
        Unadjusted date.
    convention : BusinessDayConvention
        Roll rule. ``None`` returns the date unchanged.

    Returns
    -------
    date
        The adjusted business day.
    """
    convention = BusinessDayConvention(convention)
    if convention is BusinessDayConvention.NONE or not is_weekend(value):
        return value

    if convention is BusinessDayConvention.FOLLOWING:
        return _roll(value, 1)
    if convention is BusinessDayConvention.PREVIOUS:
        return _roll(value, -1)

    adjusted = _roll(value, 1)
    if adjusted.month != value.month:
        adjusted = _roll(value, -1)
    return adjusted


def _roll(value: date, step: int) -> date:
    while is_weekend(value):
        value += timedelta(days=step)
    return value


def add_months(value: date, months: int) -> date:
    """Shift a date by whole months, clipping to the last day of short months."""
    return value + relativedelta(months=months)


def months_between(start: date, end: date) -> int:
    """Whole calendar months from ``start`` to ``end`` (day of month ignored)."""
    return (end.year - start.year) * 12 + (end.month - start.month)
