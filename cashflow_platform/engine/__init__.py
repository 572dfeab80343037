"""
Cashflow Projection Engine
==========================

This package provides the projection, pricing and waterfall engines. A full
run proceeds in three steps:

1. **Collateral Projection**: :class:`CashflowEngine` rolls a loan forward
   period by period under scenario assumptions.
2. **Waterfall Execution**: :class:`WaterfallEngine` allocates each period's
   collections through the configured payment tiers.
3. **Valuation**: :class:`PricingEngine` prices the projected schedule and
   computes risk measures.

The main entry point is :func:`run_projection`, which runs whichever of the
three steps are configured and returns a :class:`ProjectionResult`.

Example
-------
>>> from cashflow_platform.engine import run_projection
>>> result = run_projection(loan, create_scenario(prepay_rate=8.0),
...                         waterfall=DEFAULT_WATERFALL_CONFIG)
>>> print(result.cashflows.metrics.wal, result.waterfall[-1].unallocated_funds)

See Also
--------
collateral.CashflowEngine : Period-by-period loan simulation.
waterfall.WaterfallEngine : Priority-ordered allocation of collections.
pricing.PricingEngine : Yield-based pricing and risk analytics.
scenarios.ScenarioEngine : Scenario vector generation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import pandas as pd

from .assumptions import (
    STANDARD_ASSUMPTIONS,
    DefaultUnits,
    PrepaymentUnits,
    Scenario,
    ScenarioAssumptions,
    ScenarioManager,
    create_scenario,
)
from .collateral import (
    AssumptionInput,
    CashflowEngine,
    CashflowPeriod,
    CashflowResult,
    DateConfig,
    InterestConfig,
    LoanCharacteristics,
    ShortfallRecoveryPriority,
)
from .dates import BusinessDayConvention, DayCount, PaymentFrequency
from .errors import (
    CashflowPlatformError,
    ConfigurationError,
    EvaluationError,
    IterationLimitError,
    NotFoundError,
    UnsupportedFeatureError,
)
from .loader import DEFAULT_WATERFALL_CONFIG, WaterfallConfig, load_waterfall_config
from .pricing import PricingConfig, PricingEngine, PricingMethod, PricingResult, YieldBasis
from .rates import RateEngine
from .reporting import ReportGenerator
from .scenarios import ScenarioConfig, ScenarioEngine, ScenarioGenerator, ScenarioType
from .timing import TimingEngine
from .waterfall import WaterfallEngine, WaterfallResult

logger = logging.getLogger("CFP.Engine")

__all__ = [
    "BusinessDayConvention",
    "CashflowEngine",
    "CashflowPeriod",
    "CashflowPlatformError",
    "CashflowResult",
    "ConfigurationError",
    "DEFAULT_WATERFALL_CONFIG",
    "DateConfig",
    "DayCount",
    "DefaultUnits",
    "EvaluationError",
    "InterestConfig",
    "IterationLimitError",
    "LoanCharacteristics",
    "NotFoundError",
    "PaymentFrequency",
    "PrepaymentUnits",
    "PricingConfig",
    "PricingEngine",
    "PricingMethod",
    "PricingResult",
    "ProjectionResult",
    "RateEngine",
    "ReportGenerator",
    "STANDARD_ASSUMPTIONS",
    "Scenario",
    "ScenarioAssumptions",
    "ScenarioConfig",
    "ScenarioEngine",
    "ScenarioGenerator",
    "ScenarioManager",
    "ScenarioType",
    "ShortfallRecoveryPriority",
    "TimingEngine",
    "UnsupportedFeatureError",
    "WaterfallConfig",
    "WaterfallEngine",
    "WaterfallResult",
    "YieldBasis",
    "create_scenario",
    "load_waterfall_config",
    "run_projection",
]


@dataclass
class ProjectionResult:
    """
    Output of :func:`run_projection`.

    Attributes
    ----------
    cashflows : CashflowResult
        Projected schedule and metrics.
    waterfall : list of WaterfallResult
        One result per period; empty when no waterfall was configured.
    pricing : PricingResult, optional
        Present when a pricing config was supplied.
    unsupported : list of str
        Union of the ``unsupported`` markers of every stage.
    """

    cashflows: CashflowResult
    waterfall: List[WaterfallResult] = field(default_factory=list)
    pricing: Optional[PricingResult] = None
    unsupported: List[str] = field(default_factory=list)

    def cashflow_report(self) -> pd.DataFrame:
        return ReportGenerator(self.cashflows, self.waterfall).generate_cashflow_report()

    def waterfall_report(self) -> pd.DataFrame:
        return ReportGenerator(self.cashflows, self.waterfall).generate_waterfall_report()


def run_projection(
    loan: LoanCharacteristics,
    assumptions: AssumptionInput,
    interest_config: Optional[InterestConfig] = None,
    waterfall: Optional[WaterfallConfig] = None,
    pricing: Optional[PricingConfig] = None,
    timing: Optional[TimingEngine] = None,
) -> ProjectionResult:
    """
    Run cashflow projection, then the waterfall and pricing when configured.

    Parameters
    ----------
    loan : LoanCharacteristics
        Loan terms.
    assumptions : ScenarioAssumptions or sequence
        One set of assumptions or one per period.
    interest_config : InterestConfig, optional
        Accrual and shortfall settings.
    waterfall : WaterfallConfig, optional
        Waterfall to run over the projected collections. A fresh engine is
        built for each call.
    pricing : PricingConfig, optional
        Pricing inputs; the loan's day count is used for discounting.
    timing : TimingEngine, optional
        Recovery timing.

    Returns
    -------
    ProjectionResult

    Raises
    ------
    ConfigurationError, UnsupportedFeatureError, IterationLimitError
        Propagated from the engines.
    """
    cashflows = CashflowEngine(
        loan, assumptions, interest_config=interest_config, timing=timing
    ).generate_cashflows()
    result = ProjectionResult(cashflows=cashflows, unsupported=list(cashflows.unsupported))

    if waterfall is not None:
        result.waterfall = WaterfallEngine(waterfall).run_schedule(cashflows)
        for period_result in result.waterfall:
            for marker in period_result.unsupported:
                if marker not in result.unsupported:
                    result.unsupported.append(marker)

    if pricing is not None:
        result.pricing = PricingEngine(
            cashflows.periods, pricing, loan.date_config.day_count
        ).calculate()
        result.unsupported.extend(m for m in result.pricing.unsupported if m not in result.unsupported)

    logger.info(
        f"Projection complete: {len(cashflows.periods)} periods, "
        f"waterfall={'yes' if waterfall is not None else 'no'}, "
        f"pricing={'yes' if pricing is not None else 'no'}"
    )
    return result
