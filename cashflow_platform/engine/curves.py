"""
Rate Curve Functions
====================

Builders for rate curves expressed as callables of time (in years), plus the
single interpolation policy shared by every engine that samples a curve:

- before the first knot: first value (flat extrapolation)
- after the last knot: last value (flat extrapolation)
- between knots: linear interpolation

Curve builders
--------------
- :func:`step_rate_curve`: ``rates[floor(t)]`` with the index clamped.
- :func:`linear_rate_curve`: linear on the integer-year grid ``0..n-1``.
- :func:`flat_rate_curve`: constant.
- :func:`rate_curve_from_points`: arbitrary ``(time, rate)`` knots.

Example
-------
>>> from cashflow_platform.engine.curves import rate_curve_from_points
>>> curve = rate_curve_from_points([(1.0, 0.04), (5.0, 0.05)])
>>> curve(0.5), round(curve(3.0), 6), curve(10.0)
(0.04, 0.045, 0.05)
"""

from __future__ import annotations

import math
from typing import Callable, Iterable, Sequence, Tuple

import numpy as np
from scipy.interpolate import interp1d

from .errors import ConfigurationError

RateCurveFunction = Callable[[float], float]


class FlatInterpolator:
    """
    Piecewise-linear interpolator with flat extrapolation.

    Parameters
    ----------
    xs : sequence of float
        Knot abscissae, non-decreasing. Where several knots share an
        abscissa, the last one wins.
    ys : sequence of float
        Knot values, same length as ``xs``.

    Raises
    ------
    ConfigurationError
        If the inputs are empty, of different lengths or decreasing.

    Notes
    -----
    Interpolation at a knot returns exactly that knot's value. The heavy
    lifting is delegated to :func:`scipy.interpolate.interp1d` with the
    boundary values as fill.
    """

    def __init__(self, xs: Sequence[float], ys: Sequence[float]) -> None:
        x = np.asarray(xs, dtype=float)
        y = np.asarray(ys, dtype=float)
        if x.size == 0:
            raise ConfigurationError("At least one point is required for interpolation")
        if x.size != y.size:
            raise ConfigurationError(
                f"Interpolation inputs differ in length ({x.size} vs {y.size})"
            )
        if np.any(np.diff(x) < 0):
            raise ConfigurationError("Interpolation abscissae must be non-decreasing")

        # Collapse repeated abscissae, keeping the last value for each.
        keep = np.append(np.diff(x) > 0, True)
        self.xs = x[keep]
        self.ys = y[keep]

        if self.xs.size == 1:
            self._fn = None
        else:
            self._fn = interp1d(
                self.xs,
                self.ys,
                kind="linear",
                bounds_error=False,
                fill_value=(self.ys[0], self.ys[-1]),
                assume_sorted=True,
            )

    def __call__(self, x: float) -> float:
        if self._fn is None:
            return float(self.ys[0])
        idx = int(np.searchsorted(self.xs, x))
        if idx < self.xs.size and self.xs[idx] == x:
            return float(self.ys[idx])
        return float(self._fn(x))


def step_rate_curve(rates: Sequence[float]) -> RateCurveFunction:
    """
    Step curve: the rate for year ``floor(t)``, clamped to the table.

    Parameters
    ----------
    rates : sequence of float
        One rate per whole year, starting at year 0.
    """
    table = [float(r) for r in rates]
    if not table:
        raise ConfigurationError("Step curve requires at least one rate")
    last = len(table) - 1

    def curve(time_to_maturity: float) -> float:
        index = min(int(math.floor(time_to_maturity)), last)
        return table[max(0, index)]

    return curve


def linear_rate_curve(rates: Sequence[float]) -> RateCurveFunction:
    """Linear curve on the integer-year grid ``0, 1, ..., len(rates) - 1``."""
    if not len(rates):
        raise ConfigurationError("Linear curve requires at least one rate")
    return FlatInterpolator(range(len(rates)), rates)


def flat_rate_curve(rate: float) -> RateCurveFunction:
    """Constant curve."""
    value = float(rate)
    return lambda _time: value


def rate_curve_from_points(points: Iterable[Tuple[float, float]]) -> RateCurveFunction:
    """
    Curve through arbitrary ``(time, rate)`` knots.

    Points are sorted by time first, so callers may pass them in any order.

    Raises
    ------
    ConfigurationError
        If ``points`` is empty.
    """
    ordered = sorted((float(t), float(r)) for t, r in points)
    if not ordered:
        raise ConfigurationError("Rate curve requires at least one point")
    return FlatInterpolator([t for t, _ in ordered], [r for _, r in ordered])
