"""
Cashflow Pricing Engine
=======================

Prices a projected cashflow schedule from a quoted yield and derives the
standard risk measures by finite differences.

Components:
1. Yield → price (per 100 of face)
2. Modified duration and convexity (yield bumps)
3. Effective duration and convexity (parallel shifts of a base-rate curve)
4. Spread duration (spread bumps over a base-rate curve)
5. DV01 and convexity01 (1bp bumps, per-100 price)

Pricing formula
---------------
With ``k`` periods per year for the yield basis and ``t`` the year fraction
from settlement to each payment date::

    PV(y) = Σ CF_t × (1 + y/k) ** (-t × k)
    price = PV × 100 / face

``CF_t`` is scheduled principal plus net interest. Payments on or before the
settlement date are excluded.

Not implemented
---------------
Solving for a spread or discount margin and OAS analytics are not
implemented. They are returned as 0.0 and named in
:attr:`PricingResult.unsupported`; the ``Price``, ``Spread`` and
``DiscountMargin`` methods fall back to the yield path with a warning and
report ``method_used == PricingMethod.YIELD``.

Example
-------
>>> cashflows = CashflowEngine(loan, ScenarioAssumptions()).generate_cashflows()
>>> config = PricingConfig(method=PricingMethod.YIELD, value=5.0,
...                        yield_basis=YieldBasis.SEMI_ANNUAL,
...                        settle_date=date(2024, 1, 1))
>>> result = PricingEngine(cashflows.periods, config, DayCount.ACT_365).calculate()
>>> result.price, result.modified_duration
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from ..config import settings
from .collateral import CashflowPeriod
from .curves import RateCurveFunction
from .dates import DayCount, year_fraction
from .errors import ConfigurationError, NotFoundError

logger = logging.getLogger("CFP.Pricing")


class PricingMethod(str, Enum):
    PRICE = "Price"
    YIELD = "Yield"
    SPREAD = "Spread"
    DISCOUNT_MARGIN = "DiscountMargin"


class YieldBasis(str, Enum):
    BOND_EQUIVALENT = "BondEquivalent"
    ANNUAL = "Annual"
    SEMI_ANNUAL = "SemiAnnual"
    MONTHLY = "Monthly"

    @property
    def periods_per_year(self) -> int:
        return _BASIS_PERIODS[self]


_BASIS_PERIODS = {
    YieldBasis.BOND_EQUIVALENT: 2,
    YieldBasis.ANNUAL: 1,
    YieldBasis.SEMI_ANNUAL: 2,
    YieldBasis.MONTHLY: 12,
}


MARKET_CONVENTIONS: Dict[str, Dict[str, Any]] = {
    "US_TREASURY": {
        "yield_basis": YieldBasis.SEMI_ANNUAL,
        "day_count": DayCount.ACT_ACT,
        "settlement_days": 1,
    },
    "US_CORPORATE": {
        "yield_basis": YieldBasis.SEMI_ANNUAL,
        "day_count": DayCount.THIRTY_360,
        "settlement_days": 2,
    },
    "EURO_GOVERNMENT": {
        "yield_basis": YieldBasis.ANNUAL,
        "day_count": DayCount.ACT_ACT,
        "settlement_days": 2,
    },
}


@dataclass(frozen=True)
class PricingConfig:
    """
    Pricing inputs.

    Attributes
    ----------
    method : PricingMethod
        Quoted input type. Only ``Yield`` has its own path.
    value : float
        The quoted value; for ``Yield`` an annual yield in percent.
    yield_basis : YieldBasis
        Compounding basis of the quoted yield.
    settle_date : date
        Settlement date; time zero for discounting.
    accrued : float
        Accrued interest, passed through to the result.
    base_rate_curve : callable, optional
        Annual rate (decimal) as a function of time in years. Enables
        effective duration/convexity and spread duration.
    discount_curve : callable, optional
        Discount curve for spread/OAS work (not yet consumed).
    face_value : float, optional
        Face used for the per-100 quote. Defaults to the first period's
        beginning balance.
    """

    method: PricingMethod
    value: float
    yield_basis: YieldBasis
    settle_date: date
    accrued: float = 0.0
    base_rate_curve: Optional[RateCurveFunction] = None
    discount_curve: Optional[RateCurveFunction] = None
    face_value: Optional[float] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", PricingMethod(self.method))
        object.__setattr__(self, "yield_basis", YieldBasis(self.yield_basis))
        if self.face_value is not None and self.face_value <= 0:
            raise ConfigurationError("face_value must be positive", [("face_value", "must be positive")])


@dataclass
class PricingResult:
    """
    Price and risk analytics.

    ``price`` is per 100 of face; ``yield_`` is in percent; ``spread`` and
    ``discount_margin`` are in basis points. Durations are in years and
    DV01/convexity01 are in price points per 100 of face.
    """

    price: float
    yield_: float
    spread: float
    discount_margin: float
    accrued: float
    modified_duration: float
    modified_convexity: float
    effective_duration: float
    effective_convexity: float
    spread_duration: float
    dv01: float
    convexity01: float
    oas_duration: float
    oas_convexity: float
    method_used: PricingMethod = PricingMethod.YIELD
    unsupported: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "price": self.price,
            "yield": self.yield_,
            "spread": self.spread,
            "discount_margin": self.discount_margin,
            "accrued": self.accrued,
            "modified_duration": self.modified_duration,
            "modified_convexity": self.modified_convexity,
            "effective_duration": self.effective_duration,
            "effective_convexity": self.effective_convexity,
            "spread_duration": self.spread_duration,
            "dv01": self.dv01,
            "convexity01": self.convexity01,
            "oas_duration": self.oas_duration,
            "oas_convexity": self.oas_convexity,
            "method_used": self.method_used.value,
            "unsupported": list(self.unsupported),
        }


def pricing_config_for_convention(
    convention: str,
    method: PricingMethod,
    value: float,
    trade_date: date,
    **overrides: Any,
) -> PricingConfig:
    """
    Build a :class:`PricingConfig` from a named market convention.

    The settlement date is ``trade_date`` plus the convention's settlement
    days (calendar days). Returns the config; the convention's day count is
    available from ``MARKET_CONVENTIONS[convention]["day_count"]``.

    Raises
    ------
    NotFoundError
        If the convention name is unknown.
    """
    try:
        spec = MARKET_CONVENTIONS[convention]
    except KeyError:
        raise NotFoundError(f"Market convention {convention} not found") from None
    settle = date.fromordinal(trade_date.toordinal() + spec["settlement_days"])
    config = PricingConfig(
        method=method,
        value=value,
        yield_basis=spec["yield_basis"],
        settle_date=settle,
    )
    return replace(config, **overrides) if overrides else config


class PricingEngine:
    """
    Price a cashflow schedule and compute risk analytics.

    Parameters
    ----------
    cashflows : sequence of CashflowPeriod
        Projected schedule, typically ``CashflowResult.periods``.
    config : PricingConfig
        Quote and curves.
    day_count : DayCount
        Day count used for time-to-payment.
    """

    def __init__(
        self,
        cashflows: Sequence[CashflowPeriod],
        config: PricingConfig,
        day_count: DayCount,
    ) -> None:
        self.cashflows = list(cashflows)
        self.config = config
        self.day_count = DayCount(day_count)
        self.epsilon = settings.pricing_epsilon
        self.basis_point = settings.basis_point

        future = [cf for cf in self.cashflows if cf.payment_date > config.settle_date]
        self._times = np.array(
            [year_fraction(config.settle_date, cf.payment_date, self.day_count) for cf in future],
            dtype=float,
        )
        self._amounts = np.array(
            [cf.scheduled_principal + cf.net_interest for cf in future], dtype=float
        )
        if config.face_value is not None:
            self.face = float(config.face_value)
        elif self.cashflows:
            self.face = float(self.cashflows[0].beginning_balance)
        else:
            self.face = 0.0

    def calculate(self) -> PricingResult:
        """Dispatch on the configured method."""
        method = self.config.method
        if method is PricingMethod.YIELD:
            return self._calculate_from_yield()
        logger.warning(
            f"Pricing method {method.value} is not implemented; using the yield path "
            f"with value {self.config.value}"
        )
        result = self._calculate_from_yield()
        result.unsupported.insert(0, f"pricing_method:{method.value}")
        return result

    # ------------------------------------------------------------------
    # Yield path
    # ------------------------------------------------------------------
    def _calculate_from_yield(self) -> PricingResult:
        y = self.config.value / 100.0
        h = self.epsilon
        base = self.present_value(y)
        up = self.present_value(y + h)
        down = self.present_value(y - h)

        unsupported = ["spread", "discount_margin", "oas_duration", "oas_convexity"]
        if self.config.base_rate_curve is None:
            unsupported.append("spread_duration")

        result = PricingResult(
            price=self._per_100(base),
            yield_=self.config.value,
            spread=0.0,
            discount_margin=0.0,
            accrued=self.config.accrued,
            modified_duration=_duration(base, up, down, h),
            modified_convexity=_convexity(base, up, down, h),
            effective_duration=self._effective_duration(y),
            effective_convexity=self._effective_convexity(y),
            spread_duration=self._spread_duration(),
            dv01=self._dv01(y),
            convexity01=self._convexity01(y),
            oas_duration=0.0,
            oas_convexity=0.0,
            method_used=PricingMethod.YIELD,
            unsupported=unsupported,
        )
        logger.info(
            f"Priced {len(self._amounts)} cashflows at {self.config.value}% "
            f"({self.config.yield_basis.value}): price {result.price:.6f}, "
            f"mod duration {result.modified_duration:.4f}"
        )
        return result

    def present_value(self, annual_yield: float) -> float:
        """PV in currency units at a decimal annual yield on the configured basis."""
        k = self.config.yield_basis.periods_per_year
        factors = np.power(1.0 + annual_yield / k, -self._times * k)
        return float(np.dot(self._amounts, factors))

    def present_value_with_curve_shift(self, shift: float) -> float:
        """
        PV discounting each flow at ``base_rate_curve(t) + shift`` annually.

        Falls back to :meth:`present_value` at the quoted yield when no base
        curve is configured.
        """
        curve = self.config.base_rate_curve
        if curve is None:
            return self.present_value(self.config.value / 100.0)
        rates = np.array([curve(t) for t in self._times], dtype=float) + shift
        factors = np.power(1.0 + rates, -self._times)
        return float(np.dot(self._amounts, factors))

    def _per_100(self, pv: float) -> float:
        return pv * 100.0 / self.face if self.face > 0 else 0.0

    # ------------------------------------------------------------------
    # Risk measures
    # ------------------------------------------------------------------
    def _effective_duration(self, y: float) -> float:
        h = self.epsilon
        if self.config.base_rate_curve is None:
            return _duration(self.present_value(y), self.present_value(y + h), self.present_value(y - h), h)
        return _duration(
            self.present_value_with_curve_shift(0.0),
            self.present_value_with_curve_shift(h),
            self.present_value_with_curve_shift(-h),
            h,
        )

    def _effective_convexity(self, y: float) -> float:
        h = self.epsilon
        if self.config.base_rate_curve is None:
            return _convexity(self.present_value(y), self.present_value(y + h), self.present_value(y - h), h)
        return _convexity(
            self.present_value_with_curve_shift(0.0),
            self.present_value_with_curve_shift(h),
            self.present_value_with_curve_shift(-h),
            h,
        )

    def _spread_duration(self) -> float:
        # The spread itself is not solved for, so bumps are taken around zero.
        if self.config.base_rate_curve is None:
            return 0.0
        h = self.epsilon
        return _duration(
            self.present_value_with_curve_shift(0.0),
            self.present_value_with_curve_shift(h),
            self.present_value_with_curve_shift(-h),
            h,
        )

    def _dv01(self, y: float) -> float:
        bp = self.basis_point
        up = self._per_100(self.present_value(y + bp))
        down = self._per_100(self.present_value(y - bp))
        return (down - up) / 2.0

    def _convexity01(self, y: float) -> float:
        bp = self.basis_point
        base = self._per_100(self.present_value(y))
        up = self._per_100(self.present_value(y + bp))
        down = self._per_100(self.present_value(y - bp))
        return (up + down - 2.0 * base) / 2.0


def _duration(base: float, up: float, down: float, h: float) -> float:
    if base == 0:
        return 0.0
    return -(up - down) / (2.0 * h * base)


def _convexity(base: float, up: float, down: float, h: float) -> float:
    if base == 0:
        return 0.0
    return (up + down - 2.0 * base) / (h * h * base)
