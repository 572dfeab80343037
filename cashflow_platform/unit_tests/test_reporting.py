"""
Reporting and Projection Pipeline Tests
=======================================

Tests for the pandas report tables and for :func:`run_projection`, which
chains the collateral, waterfall and pricing engines.
"""

from datetime import date

import pandas as pd
import pytest

from cashflow_platform.engine import (
    DEFAULT_WATERFALL_CONFIG,
    CashflowEngine,
    DateConfig,
    LoanCharacteristics,
    PaymentFrequency,
    PricingConfig,
    PricingMethod,
    ReportGenerator,
    ScenarioAssumptions,
    ScenarioGenerator,
    WaterfallEngine,
    YieldBasis,
    load_waterfall_config,
    run_projection,
)


@pytest.fixture
def loan():
    return LoanCharacteristics(
        current_balance=250_000,
        gross_coupon=0.055,
        payment_frequency=PaymentFrequency.MONTHLY,
        next_payment_date=date(2024, 2, 1),
        maturity_date=date(2027, 1, 1),
        date_config=DateConfig(start_date=date(2024, 1, 1)),
    )


@pytest.fixture
def assumptions():
    return ScenarioAssumptions(prepay_rate=10, default_rate=2, severity=40, recovery_lag=2)


@pytest.fixture
def simple_waterfall():
    """Senior fee then a single pass-through class."""
    return load_waterfall_config(
        {
            "accounts": [
                {"name": "Principal", "type": "Principal"},
                {"name": "Interest", "type": "Interest"},
            ],
            "payments": [
                {"priority": 1, "type": "Sequential", "recipients": [{"name": "Servicing", "cap": 50}]},
                {"priority": 2, "type": "Sequential", "recipients": [{"name": "Class A"}]},
            ],
        }
    )


# =============================================================================
# Report Tables
# =============================================================================

class TestCashflowReport:

    def test_columns_and_rows(self, loan, assumptions):
        result = CashflowEngine(loan, assumptions).generate_cashflows()
        df = ReportGenerator(result).generate_cashflow_report()
        assert len(df) == len(result.periods)
        assert list(df.columns[:4]) == ["Period", "PaymentDate", "BeginBalance", "SchedPrincipal"]
        assert df["PaymentDate"].iloc[0] == "2024-02-01"
        assert df["CumLoss"].iloc[-1] == pytest.approx(result.total_losses)

    def test_principal_column_includes_prepayments(self, loan, assumptions):
        df = ReportGenerator(CashflowEngine(loan, assumptions).generate_cashflows()).generate_cashflow_report()
        assert (df["Principal"] - df["SchedPrincipal"] - df["Prepayment"]).abs().max() < 1e-9

    def test_empty_inputs(self):
        generator = ReportGenerator()
        assert generator.generate_cashflow_report().empty
        assert generator.generate_waterfall_report().empty
        assert generator.summary() == {}


class TestWaterfallReport:

    def test_one_column_per_payee_account_and_trigger(self, loan, assumptions):
        cashflows = CashflowEngine(loan, assumptions).generate_cashflows()
        results = WaterfallEngine(DEFAULT_WATERFALL_CONFIG).run_schedule(
            cashflows, lambda period: {"OC": 1.3, "IC": 1.0}
        )
        df = ReportGenerator(cashflows, results).generate_waterfall_report()
        assert len(df) == len(results)
        for column in (
            "Paid.Reserve Account",
            "Account.Reserve Account.Balance",
            "Trigger.OC Test",
            "Trigger.IC Test",
            "TotalPaid",
            "Unallocated",
        ):
            assert column in df.columns
        assert not df["Trigger.OC Test"].any()
        assert df["Trigger.IC Test"].all()

    def test_missing_payees_filled_with_zero(self, simple_waterfall):
        engine = WaterfallEngine(simple_waterfall)
        results = [engine.process_period(40, 0, 0, 0), engine.process_period(500, 0, 0, 0)]
        df = ReportGenerator(waterfall=results).generate_waterfall_report()
        assert df["Paid.Class A"].tolist() == [0.0, 450.0]
        assert df["Paid.Servicing"].tolist() == [40.0, 50.0]

    def test_scenario_report(self):
        vectors = ScenarioGenerator(24).generate_standard_scenarios()
        df = ReportGenerator.generate_scenario_report(vectors)
        assert df.columns[0] == "Period"
        assert df["Period"].tolist() == list(range(24))
        assert "Combined Stress" in df.columns
        assert ReportGenerator.generate_scenario_report({}).empty


class TestSummaryAndExport:

    def test_summary_totals(self, loan, assumptions, simple_waterfall):
        cashflows = CashflowEngine(loan, assumptions).generate_cashflows()
        results = WaterfallEngine(simple_waterfall).run_schedule(cashflows)
        summary = ReportGenerator(cashflows, results).summary()
        assert summary["periods"] == len(cashflows.periods)
        assert summary["total_principal"] == pytest.approx(cashflows.total_principal)
        assert summary["wal"] == cashflows.metrics.wal
        assert summary["total_paid"] + summary["ending_unallocated"] == pytest.approx(
            cashflows.total_principal + cashflows.total_interest + cashflows.total_recoveries
        )

    def test_save_to_csv(self, loan, assumptions, tmp_path):
        generator = ReportGenerator(CashflowEngine(loan, assumptions).generate_cashflows())
        df = generator.generate_cashflow_report()
        target = tmp_path / "cashflows.csv"
        generator.save_to_csv(df, str(target))
        reloaded = pd.read_csv(target)
        assert len(reloaded) == len(df)
        assert list(reloaded.columns) == list(df.columns)

    def test_save_to_missing_directory_raises(self, tmp_path):
        generator = ReportGenerator()
        with pytest.raises(OSError):
            generator.save_to_csv(pd.DataFrame({"a": [1]}), str(tmp_path / "missing" / "out.csv"))


# =============================================================================
# Projection Pipeline
# =============================================================================

class TestRunProjection:

    def test_cashflows_only(self, loan, assumptions):
        result = run_projection(loan, assumptions)
        assert result.waterfall == []
        assert result.pricing is None
        assert result.unsupported == ["macaulay_duration", "modified_duration"]

    def test_full_pipeline(self, loan, assumptions, simple_waterfall):
        pricing = PricingConfig(
            method=PricingMethod.YIELD,
            value=5.5,
            yield_basis=YieldBasis.MONTHLY,
            settle_date=date(2024, 1, 1),
        )
        result = run_projection(loan, assumptions, waterfall=simple_waterfall, pricing=pricing)
        assert len(result.waterfall) == len(result.cashflows.periods)
        assert result.pricing.price > 0
        assert "spread" in result.unsupported
        assert len(result.unsupported) == len(set(result.unsupported))
        assert len(result.cashflow_report()) == len(result.cashflows.periods)
        assert "Paid.Class A" in result.waterfall_report().columns

    def test_markers_merged_once(self, loan, assumptions):
        result = run_projection(loan, assumptions, waterfall=DEFAULT_WATERFALL_CONFIG)
        assert result.unsupported.count("trigger_metric:OC") == 1
        assert "trigger_metric:IC" in result.unsupported
