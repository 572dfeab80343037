"""
Pricing Engine Tests
====================

Tests for yield-to-price, finite-difference risk measures, market
conventions and the reporting of unimplemented analytics.
"""

from datetime import date

import pytest

from cashflow_platform.engine.collateral import CashflowPeriod
from cashflow_platform.engine.curves import flat_rate_curve
from cashflow_platform.engine.dates import DayCount, year_fraction
from cashflow_platform.engine.errors import ConfigurationError, NotFoundError
from cashflow_platform.engine.pricing import (
    MARKET_CONVENTIONS,
    PricingConfig,
    PricingEngine,
    PricingMethod,
    YieldBasis,
    pricing_config_for_convention,
)

SETTLE = date(2024, 1, 1)


def _period(payment_date, principal, interest, beginning_balance=100.0, number=1):
    """Minimal period carrying only the fields pricing reads."""
    return CashflowPeriod(
        period=number,
        start_date=payment_date,
        end_date=payment_date,
        payment_date=payment_date,
        days_in_period=0,
        year_fraction=0.0,
        coupon_rate=0.0,
        beginning_balance=beginning_balance,
        scheduled_principal=principal,
        prepayments=0.0,
        default_amount=0.0,
        losses=0.0,
        gross_interest=interest,
        net_interest=interest,
        interest_shortfall=0.0,
        accumulated_shortfall=0.0,
        shortfall_recovered=0.0,
        defaulted_interest=0.0,
        recoveries=0.0,
        ending_balance=beginning_balance - principal,
    )


def _config(value, basis=YieldBasis.ANNUAL, **overrides):
    return PricingConfig(method=PricingMethod.YIELD, value=value, yield_basis=basis, settle_date=SETTLE, **overrides)


@pytest.fixture
def zero_coupon():
    """Single payment of 100 five years after settlement."""
    return [_period(date(2029, 1, 1), principal=100.0, interest=0.0)]


@pytest.fixture
def annual_bond():
    """Three annual 5% coupons on 100 face, principal at the end."""
    return [
        _period(date(2025, 1, 1), 0.0, 5.0, number=1),
        _period(date(2026, 1, 1), 0.0, 5.0, number=2),
        _period(date(2027, 1, 1), 100.0, 5.0, number=3),
    ]


# =============================================================================
# Price from Yield
# =============================================================================

class TestPriceFromYield:

    def test_par_bond_prices_at_par(self, annual_bond):
        """On 30/360 each coupon is exactly one year apart."""
        result = PricingEngine(annual_bond, _config(5.0), DayCount.THIRTY_360).calculate()
        assert result.price == pytest.approx(100.0, rel=1e-9)
        assert result.yield_ == 5.0
        assert result.method_used is PricingMethod.YIELD

    def test_zero_coupon_price(self, zero_coupon):
        t = year_fraction(SETTLE, date(2029, 1, 1), DayCount.ACT_365)
        result = PricingEngine(zero_coupon, _config(4.0), DayCount.ACT_365).calculate()
        assert result.price == pytest.approx(100.0 * 1.04 ** -t)

    def test_semi_annual_compounding(self, zero_coupon):
        t = year_fraction(SETTLE, date(2029, 1, 1), DayCount.ACT_365)
        result = PricingEngine(zero_coupon, _config(4.0, YieldBasis.SEMI_ANNUAL), DayCount.ACT_365).calculate()
        assert result.price == pytest.approx(100.0 * 1.02 ** (-2 * t))

    def test_zero_yield_price_is_sum_of_flows(self, annual_bond):
        result = PricingEngine(annual_bond, _config(0.0), DayCount.THIRTY_360).calculate()
        assert result.price == pytest.approx(115.0)

    def test_past_flows_excluded(self, annual_bond):
        config = PricingConfig(
            method=PricingMethod.YIELD,
            value=0.0,
            yield_basis=YieldBasis.ANNUAL,
            settle_date=date(2025, 1, 1),
        )
        result = PricingEngine(annual_bond, config, DayCount.THIRTY_360).calculate()
        assert result.price == pytest.approx(110.0)

    def test_face_value_override(self, annual_bond):
        result = PricingEngine(annual_bond, _config(0.0, face_value=200.0), DayCount.THIRTY_360).calculate()
        assert result.price == pytest.approx(57.5)

    def test_empty_schedule(self):
        result = PricingEngine([], _config(5.0), DayCount.ACT_365).calculate()
        assert result.price == 0.0
        assert result.modified_duration == 0.0

    def test_accrued_passed_through(self, annual_bond):
        result = PricingEngine(annual_bond, _config(5.0, accrued=1.25), DayCount.THIRTY_360).calculate()
        assert result.accrued == 1.25


# =============================================================================
# Risk Measures
# =============================================================================

class TestRiskMeasures:

    def test_zero_coupon_duration_at_zero_yield(self, zero_coupon):
        """A zero's modified duration at 0% equals its time to payment."""
        t = year_fraction(SETTLE, date(2029, 1, 1), DayCount.ACT_365)
        result = PricingEngine(zero_coupon, _config(0.0), DayCount.ACT_365).calculate()
        assert result.modified_duration == pytest.approx(t, rel=1e-6)

    def test_zero_coupon_duration_and_convexity(self, zero_coupon):
        t = year_fraction(SETTLE, date(2029, 1, 1), DayCount.ACT_365)
        result = PricingEngine(zero_coupon, _config(4.0), DayCount.ACT_365).calculate()
        assert result.modified_duration == pytest.approx(t / 1.04, rel=1e-6)
        assert result.modified_convexity == pytest.approx(t * (t + 1) / 1.04 ** 2, rel=1e-4)

    def test_effective_equals_modified_without_curve(self, annual_bond):
        result = PricingEngine(annual_bond, _config(5.0), DayCount.THIRTY_360).calculate()
        assert result.effective_duration == pytest.approx(result.modified_duration)
        assert result.effective_convexity == pytest.approx(result.modified_convexity)
        assert result.spread_duration == 0.0
        assert "spread_duration" in result.unsupported

    def test_curve_drives_effective_duration(self, zero_coupon):
        """A flat 4% annual curve reproduces the annual-basis yield risk."""
        t = year_fraction(SETTLE, date(2029, 1, 1), DayCount.ACT_365)
        config = _config(4.0, base_rate_curve=flat_rate_curve(0.04))
        result = PricingEngine(zero_coupon, config, DayCount.ACT_365).calculate()
        assert result.effective_duration == pytest.approx(t / 1.04, rel=1e-6)
        assert result.spread_duration == pytest.approx(result.effective_duration)
        assert "spread_duration" not in result.unsupported

    def test_dv01_positive_and_scaled(self, annual_bond):
        result = PricingEngine(annual_bond, _config(5.0), DayCount.THIRTY_360).calculate()
        assert result.dv01 > 0
        assert result.dv01 == pytest.approx(result.modified_duration * result.price * 1e-4, rel=1e-3)
        assert result.convexity01 > 0


# =============================================================================
# Methods, Conventions and Configuration
# =============================================================================

class TestPricingConfiguration:

    def test_unsupported_markers(self, annual_bond):
        result = PricingEngine(annual_bond, _config(5.0), DayCount.THIRTY_360).calculate()
        for name in ("spread", "discount_margin", "oas_duration", "oas_convexity"):
            assert name in result.unsupported
        assert result.spread == 0.0
        assert result.oas_duration == 0.0

    @pytest.mark.parametrize("method", [PricingMethod.PRICE, PricingMethod.SPREAD, PricingMethod.DISCOUNT_MARGIN])
    def test_other_methods_fall_back_to_yield(self, annual_bond, method):
        config = PricingConfig(method=method, value=5.0, yield_basis="Annual", settle_date=SETTLE)
        result = PricingEngine(annual_bond, config, DayCount.THIRTY_360).calculate()
        assert result.method_used is PricingMethod.YIELD
        assert result.unsupported[0] == f"pricing_method:{method.value}"
        assert result.price == pytest.approx(100.0, rel=1e-9)

    def test_convention_settlement(self):
        config = pricing_config_for_convention("US_CORPORATE", PricingMethod.YIELD, 5.0, date(2024, 3, 1))
        assert config.settle_date == date(2024, 3, 3)
        assert config.yield_basis is YieldBasis.SEMI_ANNUAL
        assert MARKET_CONVENTIONS["US_CORPORATE"]["day_count"] is DayCount.THIRTY_360

    def test_convention_overrides(self):
        config = pricing_config_for_convention(
            "EURO_GOVERNMENT", PricingMethod.YIELD, 3.0, date(2024, 3, 1), accrued=0.5
        )
        assert config.yield_basis is YieldBasis.ANNUAL
        assert config.accrued == 0.5

    def test_unknown_convention(self):
        with pytest.raises(NotFoundError):
            pricing_config_for_convention("JGB", PricingMethod.YIELD, 1.0, date(2024, 3, 1))

    def test_non_positive_face_rejected(self):
        with pytest.raises(ConfigurationError):
            _config(5.0, face_value=0.0)

    def test_to_dict_uses_yield_key(self, annual_bond):
        payload = PricingEngine(annual_bond, _config(5.0), DayCount.THIRTY_360).calculate().to_dict()
        assert payload["yield"] == 5.0
        assert payload["method_used"] == "Yield"
