"""
Collateral Cashflow Engine Tests
================================

Tests for the period-by-period loan projection: amortization, prepayments,
defaults and losses, interest shortfall, recoveries and termination.
"""

from datetime import date

import pytest

from cashflow_platform.engine import DEFAULT_WATERFALL_CONFIG, run_projection
from cashflow_platform.engine.assumptions import ScenarioAssumptions
from cashflow_platform.engine.collateral import (
    CashflowEngine,
    DateConfig,
    InterestConfig,
    LoanCharacteristics,
    ShortfallRecoveryPriority,
)
from cashflow_platform.engine.dates import BusinessDayConvention, PaymentFrequency
from cashflow_platform.engine.errors import (
    ConfigurationError,
    IterationLimitError,
    UnsupportedFeatureError,
)
from cashflow_platform.engine.timing import (
    END_OF_PERIOD,
    GRADUAL,
    IMMEDIATE,
    MID_PERIOD,
    TimingConfig,
    TimingEngine,
)


def _loan(**overrides):
    values = dict(
        current_balance=100_000.0,
        gross_coupon=0.05,
        payment_frequency=PaymentFrequency.MONTHLY,
        next_payment_date=date(2024, 2, 1),
        maturity_date=date(2026, 7, 1),
        date_config=DateConfig(start_date=date(2024, 1, 1)),
    )
    values.update(overrides)
    return LoanCharacteristics(**values)


@pytest.fixture
def loan():
    """100k, 5% fixed, 30 monthly payments, 30/360."""
    return _loan()


# =============================================================================
# Amortization
# =============================================================================

class TestAmortization:
    """Scheduled principal and interest with no prepayments or defaults."""

    def test_fully_amortizes_over_schedule(self, loan):
        """
        Scenario: 100k at 5%, monthly from 2024-02-01 to 2026-07-01.
        Expected: 30 periods, balance reaches zero on the final period.
        """
        result = CashflowEngine(loan, ScenarioAssumptions()).generate_cashflows()
        assert len(result.periods) == 30
        assert result.periods[-1].ending_balance == 0.0
        assert result.total_principal == pytest.approx(100_000.0)

    def test_level_payment(self, loan):
        """Scheduled principal plus interest matches the annuity formula each period."""
        r = 0.05 / 12
        payment = 100_000 * r / (1 - (1 + r) ** -30)
        result = CashflowEngine(loan, ScenarioAssumptions()).generate_cashflows()
        for period in result.periods:
            assert period.scheduled_principal + period.gross_interest == pytest.approx(payment, rel=1e-9)

    def test_period_fields(self, loan):
        first = CashflowEngine(loan, ScenarioAssumptions()).generate_cashflows().periods[0]
        assert first.period == 1
        assert first.start_date == date(2024, 1, 1)
        assert first.end_date == date(2024, 2, 1)
        assert first.days_in_period == 31
        assert first.year_fraction == pytest.approx(30 / 360)
        assert first.coupon_rate == 0.05
        assert first.gross_interest == pytest.approx(100_000 * 0.05 / 12)

    def test_balance_roll_forward(self, loan):
        assumptions = ScenarioAssumptions(prepay_rate=10.0, default_rate=3.0, severity=40.0)
        result = CashflowEngine(loan, assumptions).generate_cashflows()
        previous_end = loan.current_balance
        for period in result.periods:
            assert period.beginning_balance == pytest.approx(previous_end)
            expected = (
                period.beginning_balance
                - period.scheduled_principal
                - period.prepayments
                - period.default_amount
            )
            assert period.ending_balance == pytest.approx(max(expected, 0.0), abs=1e-8)
            assert period.ending_balance >= 0
            previous_end = period.ending_balance

    def test_zero_coupon_is_straight_line(self):
        loan = _loan(gross_coupon=0.0)
        result = CashflowEngine(loan, ScenarioAssumptions()).generate_cashflows()
        assert len(result.periods) == 30
        assert all(p.scheduled_principal == pytest.approx(100_000 / 30) for p in result.periods)

    def test_quarterly_schedule(self):
        loan = _loan(
            payment_frequency=PaymentFrequency.QUARTERLY,
            next_payment_date=date(2024, 3, 1),
            maturity_date=date(2025, 12, 1),
        )
        result = CashflowEngine(loan, ScenarioAssumptions()).generate_cashflows()
        assert len(result.periods) == 8
        assert result.periods[0].start_date == date(2023, 12, 1)
        assert result.periods[1].end_date == date(2024, 6, 1)
        assert result.periods[-1].ending_balance == 0.0

    def test_accrual_start_override_first_period_only(self, loan):
        config = InterestConfig(accrual_start_date=date(2024, 1, 15))
        periods = CashflowEngine(loan, ScenarioAssumptions(), interest_config=config).generate_cashflows().periods
        assert periods[0].start_date == date(2024, 1, 15)
        assert periods[0].year_fraction == pytest.approx(16 / 360)
        assert periods[1].start_date == date(2024, 2, 1)

    def test_business_day_adjusted_payment_date(self):
        """2024-06-01 is a Saturday; the accrual end stays unadjusted."""
        loan = _loan(
            date_config=DateConfig(
                start_date=date(2024, 1, 1),
                business_day_convention=BusinessDayConvention.FOLLOWING,
            )
        )
        june = CashflowEngine(loan, ScenarioAssumptions()).generate_cashflows().periods[4]
        assert june.end_date == date(2024, 6, 1)
        assert june.payment_date == date(2024, 6, 3)

    def test_zero_balance_produces_no_periods(self):
        result = CashflowEngine(_loan(current_balance=0.0), ScenarioAssumptions()).generate_cashflows()
        assert result.periods == []
        assert result.metrics.wal == 0.0

    def test_wal_of_level_pay_loan(self, loan):
        result = CashflowEngine(loan, ScenarioAssumptions()).generate_cashflows()
        assert 1.0 < result.metrics.wal < 1.5
        assert result.metrics.duration == 0.0
        assert {"macaulay_duration", "modified_duration"} <= set(result.unsupported)


class TestOffGridMaturity:
    """Maturity dates that do not fall on the payment-date grid."""

    def test_monthly_maturity_between_payment_dates(self):
        """
        Scenario: payments on the 15th, maturity on 2026-07-01.
        Expected: 29 level payments ending 2026-06-15 retire the balance.
        """
        loan = _loan(next_payment_date=date(2024, 2, 15))
        result = CashflowEngine(loan, ScenarioAssumptions()).generate_cashflows()

        r = 0.05 / 12
        payment = 100_000 * r / (1 - (1 + r) ** -29)
        assert len(result.periods) == 29
        assert result.periods[-1].end_date == date(2026, 6, 15)
        assert result.periods[-1].ending_balance == pytest.approx(0.0, abs=1e-6)
        assert result.total_principal == pytest.approx(100_000.0)
        for period in result.periods:
            assert period.scheduled_principal + period.gross_interest == pytest.approx(payment, rel=1e-9)

    def test_quarterly_maturity_between_payment_dates(self):
        """
        Scenario: quarterly from 2024-03-01, maturity on 2026-04-15.
        Expected: 9 payments, the last on 2026-03-01 paying off the balance.
        """
        loan = _loan(
            payment_frequency=PaymentFrequency.QUARTERLY,
            next_payment_date=date(2024, 3, 1),
            maturity_date=date(2026, 4, 15),
        )
        result = CashflowEngine(loan, ScenarioAssumptions()).generate_cashflows()

        r = 0.05 / 4
        payment = 100_000 * r / (1 - (1 + r) ** -9)
        assert len(result.periods) == 9
        assert result.periods[-1].end_date == date(2026, 3, 1)
        assert result.periods[-1].ending_balance == pytest.approx(0.0, abs=1e-6)
        assert result.periods[0].scheduled_principal + result.periods[0].gross_interest == pytest.approx(payment)

    def test_final_period_retires_balance_with_prepayments(self):
        loan = _loan(next_payment_date=date(2024, 2, 20))
        assumptions = ScenarioAssumptions(prepay_rate=15.0, default_rate=2.0, severity=40.0)
        result = CashflowEngine(loan, assumptions).generate_cashflows()
        last = result.periods[-1]
        assert last.ending_balance == 0.0
        assert last.scheduled_principal == pytest.approx(last.beginning_balance)
        assert last.prepayments == 0.0
        assert last.default_amount == 0.0


class TestNonPositiveCoupon:
    """Coupons at or below zero accrue nothing and amortize straight-line."""

    @pytest.fixture
    def negative_coupon_loan(self):
        """100k at -0.5%, 30 monthly payments."""
        return _loan(gross_coupon=-0.005)

    def test_no_negative_interest(self, negative_coupon_loan):
        assumptions = ScenarioAssumptions(default_rate=5.0, severity=40.0)
        result = CashflowEngine(negative_coupon_loan, assumptions).generate_cashflows()
        assert len(result.periods) == 30
        for period in result.periods:
            assert period.gross_interest == 0.0
            assert period.net_interest == 0.0
            assert period.defaulted_interest == 0.0
            assert period.interest_shortfall == 0.0
        assert result.periods[-1].ending_balance == 0.0

    def test_straight_line_principal(self, negative_coupon_loan):
        result = CashflowEngine(negative_coupon_loan, ScenarioAssumptions()).generate_cashflows()
        assert all(p.scheduled_principal == pytest.approx(100_000 / 30) for p in result.periods)

    def test_projection_runs_through_waterfall(self, negative_coupon_loan):
        """
        Scenario: negative coupon loan fed through the default waterfall.
        Expected: every period is processed and cash is conserved.
        """
        result = run_projection(
            negative_coupon_loan, ScenarioAssumptions(), waterfall=DEFAULT_WATERFALL_CONFIG
        )
        assert len(result.waterfall) == 30
        paid = sum(r.total_paid for r in result.waterfall)
        assert paid + result.waterfall[-1].unallocated_funds == pytest.approx(100_000.0)


# =============================================================================
# Prepayments and Defaults
# =============================================================================

class TestPrepaymentsAndDefaults:

    def test_prepayment_on_beginning_balance(self, loan):
        assumptions = ScenarioAssumptions(prepay_rate=12.0)
        first = CashflowEngine(loan, assumptions).generate_cashflows().periods[0]
        assert first.prepayments == pytest.approx(100_000 * (1 - 0.88 ** (1 / 12)))

    def test_default_and_loss(self, loan):
        assumptions = ScenarioAssumptions(default_rate=6.0, severity=40.0)
        first = CashflowEngine(loan, assumptions).generate_cashflows().periods[0]
        default = 100_000 * (1 - 0.94 ** (1 / 12))
        assert first.default_amount == pytest.approx(default)
        assert first.losses == pytest.approx(default * 0.4)

    def test_smm_full_prepayment_caps_at_balance(self, loan):
        """A 100% SMM prepays whatever scheduled principal leaves, then stops."""
        assumptions = ScenarioAssumptions(prepay_units="SMM", prepay_rate=100.0, default_rate=50.0)
        result = CashflowEngine(loan, assumptions).generate_cashflows()
        assert len(result.periods) == 1
        first = result.periods[0]
        assert first.scheduled_principal + first.prepayments == pytest.approx(100_000.0)
        assert first.default_amount == pytest.approx(0.0)
        assert first.ending_balance == 0.0

    def test_losses_never_exceed_defaults(self, loan):
        result = CashflowEngine(loan, ScenarioAssumptions(default_rate=20.0, severity=100.0)).generate_cashflows()
        assert all(p.losses <= p.default_amount + 1e-12 for p in result.periods)
        assert result.total_recoveries == 0.0

    def test_assumption_vector_holds_last(self, loan):
        vector = [ScenarioAssumptions(prepay_rate=0.0), ScenarioAssumptions(prepay_units="SMM", prepay_rate=1.0)]
        engine = CashflowEngine(loan, vector)
        assert engine.assumptions_for(25).prepay_rate == 1.0
        periods = engine.generate_cashflows().periods
        assert periods[0].prepayments == 0.0
        assert periods[1].prepayments == pytest.approx(periods[1].beginning_balance * 0.01)
        assert periods[5].prepayments == pytest.approx(periods[5].beginning_balance * 0.01)


# =============================================================================
# Interest Shortfall
# =============================================================================

class TestInterestShortfall:

    def test_defaulted_interest_creates_shortfall(self, loan):
        assumptions = ScenarioAssumptions(default_rate=6.0, severity=40.0)
        first = CashflowEngine(loan, assumptions).generate_cashflows().periods[0]
        expected = first.default_amount * 0.05 * (30 / 360) * 0.6
        assert first.defaulted_interest == pytest.approx(expected)
        assert first.interest_shortfall == pytest.approx(expected)
        assert first.net_interest == pytest.approx(first.gross_interest - expected)
        assert first.accumulated_shortfall == pytest.approx(expected)

    def test_shortfall_first_recovers_carried_amount(self, loan):
        """
        Scenario: 100 of shortfall carried in, no defaults, ShortfallFirst.
        Expected: first period pays the 100 out of collected interest.
        """
        config = InterestConfig(
            accrued_interest=100.0,
            shortfall_recovery_priority=ShortfallRecoveryPriority.SHORTFALL_FIRST,
        )
        periods = CashflowEngine(loan, ScenarioAssumptions(), interest_config=config).generate_cashflows().periods
        first = periods[0]
        assert first.shortfall_recovered == pytest.approx(100.0)
        assert first.net_interest == pytest.approx(first.gross_interest - 100.0)
        assert first.interest_collected == pytest.approx(first.gross_interest)
        assert first.accumulated_shortfall == pytest.approx(0.0)
        assert periods[1].shortfall_recovered == 0.0

    def test_current_interest_needs_excess(self, loan):
        """Collected interest never exceeds scheduled interest, so nothing is recovered."""
        config = InterestConfig(accrued_interest=100.0)
        first = CashflowEngine(loan, ScenarioAssumptions(), interest_config=config).generate_cashflows().periods[0]
        assert first.shortfall_recovered == 0.0
        assert first.accumulated_shortfall == pytest.approx(100.0)

    def test_tracking_disabled_keeps_carried_amount(self, loan):
        assumptions = ScenarioAssumptions(default_rate=6.0, interest_shortfall=False)
        first = CashflowEngine(loan, assumptions).generate_cashflows().periods[0]
        assert first.interest_shortfall > 0
        assert first.accumulated_shortfall == 0.0


# =============================================================================
# Recoveries
# =============================================================================

class TestRecoveries:

    def test_released_after_lag(self, loan):
        assumptions = ScenarioAssumptions(default_rate=6.0, severity=40.0, recovery_lag=3)
        periods = CashflowEngine(loan, assumptions).generate_cashflows().periods
        assert all(p.recoveries == 0.0 for p in periods[:3])
        first = periods[0]
        assert periods[3].recoveries == pytest.approx(first.default_amount - first.losses)

    def test_zero_lag_same_period(self, loan):
        assumptions = ScenarioAssumptions(default_rate=6.0, severity=25.0, recovery_lag=0)
        first = CashflowEngine(loan, assumptions).generate_cashflows().periods[0]
        assert first.recoveries == pytest.approx(first.default_amount * 0.75)

    def test_unreleased_recoveries_reported(self, loan):
        """Recoveries due after the last period are reported, not dropped."""
        assumptions = ScenarioAssumptions(default_rate=6.0, severity=40.0, recovery_lag=100)
        result = CashflowEngine(loan, assumptions).generate_cashflows()
        expected = sum(p.default_amount - p.losses for p in result.periods)
        assert result.total_recoveries == 0.0
        assert result.unreleased_recoveries == pytest.approx(expected)

    def test_recoveries_plus_unreleased_match_recoverable(self, loan):
        assumptions = ScenarioAssumptions(default_rate=10.0, severity=30.0, recovery_lag=6)
        result = CashflowEngine(loan, assumptions).generate_cashflows()
        recoverable = sum(p.default_amount - p.losses for p in result.periods)
        assert result.total_recoveries + result.unreleased_recoveries == pytest.approx(recoverable)

    def test_timing_engine_spreads_recoveries(self, loan):
        """GRADUAL timing releases 20/50/30 percent starting at the timing lag."""
        timing = TimingEngine(
            TimingConfig(
                prepayment_timing=END_OF_PERIOD,
                default_timing=MID_PERIOD,
                recovery_lag=2,
                recovery_timing=GRADUAL,
                liquidation_timing=IMMEDIATE,
            )
        )
        assumptions = [ScenarioAssumptions(default_rate=6.0, severity=40.0), ScenarioAssumptions()]
        periods = CashflowEngine(loan, assumptions, timing=timing).generate_cashflows().periods
        cohort = periods[0].default_amount - periods[0].losses
        assert [p.recoveries for p in periods[:2]] == [0.0, 0.0]
        assert periods[2].recoveries == pytest.approx(cohort * 0.2)
        assert periods[3].recoveries == pytest.approx(cohort * 0.5)
        assert periods[4].recoveries == pytest.approx(cohort * 0.3)
        assert periods[5].recoveries == pytest.approx(0.0, abs=1e-9)


# =============================================================================
# Termination and Validation
# =============================================================================

class TestEngineLimits:

    def test_iteration_limit(self, loan):
        with pytest.raises(IterationLimitError):
            CashflowEngine(loan, ScenarioAssumptions(), max_periods=5).generate_cashflows()

    def test_exact_limit_is_allowed(self, loan):
        assert len(CashflowEngine(loan, ScenarioAssumptions(), max_periods=30).generate_cashflows().periods) == 30

    def test_empty_assumption_vector(self, loan):
        with pytest.raises(ConfigurationError):
            CashflowEngine(loan, [])

    def test_bad_max_periods(self, loan):
        with pytest.raises(ConfigurationError):
            CashflowEngine(loan, ScenarioAssumptions(), max_periods=0)

    def test_psa_rejected(self, loan):
        with pytest.raises(UnsupportedFeatureError):
            CashflowEngine(loan, ScenarioAssumptions(prepay_units="PSA", prepay_rate=100))

    def test_floating_rate_flagged(self):
        loan = _loan(is_fixed_rate=False, index="SOFR", margin=0.02)
        result = CashflowEngine(loan, ScenarioAssumptions()).generate_cashflows()
        assert "floating_rate_reset" in result.unsupported
        assert result.periods[0].coupon_rate == 0.05

    def test_invalid_loan(self):
        with pytest.raises(ConfigurationError) as excinfo:
            _loan(current_balance=-1.0, gross_coupon=float("nan"), maturity_date=date(2023, 1, 1))
        fields = {name for name, _ in excinfo.value.errors}
        assert fields == {"current_balance", "gross_coupon", "maturity_date"}

    def test_to_dataframe(self, loan):
        frame = CashflowEngine(loan, ScenarioAssumptions()).generate_cashflows().to_dataframe()
        assert len(frame) == 30
        assert {"period", "beginning_balance", "net_interest", "ending_balance"} <= set(frame.columns)
