"""
Rate Engine
===========

Registry of named discount curves, forward-rate series and rate indices,
answering discount-factor, forward-rate and fixing-date queries.

Each engine instance owns three lookup tables:

- curves, keyed by :attr:`RateCurve.name`
- forward rates, keyed by ``"<index>_<tenor>"``
- indices, keyed by :attr:`RateIndex.name`

Registration overwrites by key. Rates between dated knots are linearly
interpolated, and flat beyond the first and last knot (see
:class:`~cashflow_platform.engine.curves.FlatInterpolator`).

Example
-------
>>> from datetime import date
>>> engine = RateEngine()
>>> engine.add_curve(RateCurve(
...     name="USD-OIS",
...     dates=[date(2025, 1, 1), date(2030, 1, 1)],
...     rates=[0.04, 0.045],
...     day_count=DayCount.ACT_365,
... ))
>>> df = engine.get_discount_factor("USD-OIS", date(2027, 1, 1), date(2025, 1, 1))

See Also
--------
pricing.PricingEngine : Consumes :meth:`RateEngine.rate_curve_function`.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence

from .curves import FlatInterpolator, RateCurveFunction, rate_curve_from_points
from .dates import DayCount, year_fraction
from .errors import ConfigurationError, NotFoundError

logger = logging.getLogger("CFP.Rates")


def _validate_dated_series(label: str, dates: Sequence[date], rates: Sequence[float]) -> None:
    errors = []
    if len(dates) != len(rates):
        errors.append((label, "dates and rates arrays must have same length"))
    if not dates:
        errors.append((label, "at least one point is required"))
    if any(later < earlier for earlier, later in zip(dates, dates[1:])):
        errors.append((label, "dates must be non-decreasing"))
    if errors:
        raise ConfigurationError.from_errors(f"Invalid rate series '{label}'", errors)


@dataclass
class RateCurve:
    """
    Dated discount curve.

    Attributes
    ----------
    name : str
        Registry key.
    dates : list of date
        Knot dates, non-decreasing.
    rates : list of float
        Continuously-compounded zero rates (decimal) at each knot.
    day_count : DayCount
        Basis used to turn dates into year fractions.
    """

    name: str
    dates: List[date]
    rates: List[float]
    day_count: DayCount = DayCount.ACT_365
    _interp: FlatInterpolator = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.day_count = DayCount(self.day_count)
        _validate_dated_series(self.name, self.dates, self.rates)
        self._interp = FlatInterpolator([d.toordinal() for d in self.dates], self.rates)

    def rate_at(self, when: date) -> float:
        """Interpolated zero rate at ``when``."""
        return self._interp(when.toordinal())


@dataclass
class ForwardRates:
    """
    Dated forward-rate projection for one index tenor.

    Attributes
    ----------
    index : str
        Index name, e.g. ``"SOFR"``.
    tenor : str
        Tenor label, e.g. ``"1M"``.
    dates, rates : list
        Parallel knot arrays (dates non-decreasing).
    """

    index: str
    tenor: str
    dates: List[date]
    rates: List[float]
    _interp: FlatInterpolator = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        _validate_dated_series(self.key, self.dates, self.rates)
        self._interp = FlatInterpolator([d.toordinal() for d in self.dates], self.rates)

    @property
    def key(self) -> str:
        return f"{self.index}_{self.tenor}"

    def rate_at(self, when: date) -> float:
        return self._interp(when.toordinal())


@dataclass(frozen=True)
class RateIndex:
    """Floating-rate index definition (fixing lag in calendar days)."""

    name: str
    fixing_days: int
    tenor: str
    day_count: DayCount = DayCount.ACT_360

    def __post_init__(self) -> None:
        if self.fixing_days < 0:
            raise ConfigurationError(
                f"Index '{self.name}': fixing days must be non-negative",
                [("fixing_days", "must be non-negative")],
            )


class RateEngine:
    """
    Owns curves, forward rates and indices for one valuation context.

    Instances are independent; nothing is shared between engines.
    """

    def __init__(self) -> None:
        self._curves: Dict[str, RateCurve] = {}
        self._forward_rates: Dict[str, ForwardRates] = {}
        self._indices: Dict[str, RateIndex] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def add_curve(self, curve: RateCurve) -> None:
        """Register (or replace) a discount curve by name."""
        if curve.name in self._curves:
            logger.debug(f"Replacing curve '{curve.name}'")
        self._curves[curve.name] = curve

    def add_forward_rates(self, rates: ForwardRates) -> None:
        """Register (or replace) a forward-rate series under ``index_tenor``."""
        self._forward_rates[rates.key] = rates

    def add_index(self, index: RateIndex) -> None:
        """Register (or replace) an index definition by name."""
        self._indices[index.name] = index

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def get_curve(self, name: str) -> RateCurve:
        try:
            return self._curves[name]
        except KeyError:
            raise NotFoundError(f"Curve {name} not found") from None

    def get_index(self, name: str) -> RateIndex:
        try:
            return self._indices[name]
        except KeyError:
            raise NotFoundError(f"Index {name} not found") from None

    def get_discount_factor(
        self,
        curve_name: str,
        when: date,
        reference_date: date,
    ) -> float:
        """
        Discount factor ``exp(-r · τ)`` from ``reference_date`` to ``when``.

        Parameters
        ----------
        curve_name : str
            Registered curve name.
        when : date
            Cashflow date; the zero rate is interpolated at this date.
        reference_date : date
            Valuation date; time zero for the year fraction.

        Returns
        -------
        float
            Discount factor. ``τ`` is measured under the curve's day count.

        Raises
        ------
        NotFoundError
            If the curve is not registered.
        """
        curve = self.get_curve(curve_name)
        tau = year_fraction(reference_date, when, curve.day_count)
        return math.exp(-curve.rate_at(when) * tau)

    def get_forward_rate(
        self,
        index: str,
        tenor: str,
        when: date,
        fallback: Optional[float] = None,
    ) -> float:
        """
        Projected forward rate for ``index``/``tenor`` at ``when``.

        Parameters
        ----------
        index, tenor : str
            Series key components.
        when : date
            Observation date.
        fallback : float, optional
            Returned when no series is registered for the key.

        Raises
        ------
        NotFoundError
            If the series is unknown and no fallback was supplied.
        """
        key = f"{index}_{tenor}"
        series = self._forward_rates.get(key)
        if series is None:
            if fallback is not None:
                logger.debug(f"No forward rates for {key}; using fallback {fallback}")
                return fallback
            raise NotFoundError(f"No forward rates found for {key}")
        return series.rate_at(when)

    def get_fixing_date(self, index: str, accrual_start_date: date) -> date:
        """Accrual start minus the index's fixing lag (calendar days)."""
        index_config = self.get_index(index)
        return accrual_start_date - timedelta(days=index_config.fixing_days)

    def rate_curve_function(self, curve_name: str, reference_date: date) -> RateCurveFunction:
        """
        Express a dated curve as a function of time in years.

        The curve's knot dates are converted to year fractions from
        ``reference_date`` under the curve's day count. The result can be
        passed as ``base_rate_curve`` or ``discount_curve`` to the pricing
        engine.
        """
        curve = self.get_curve(curve_name)
        points = [
            (year_fraction(reference_date, d, curve.day_count), r)
            for d, r in zip(curve.dates, curve.rates)
        ]
        return rate_curve_from_points(points)
