"""
API Request/Response Models
===========================

Pydantic models for API request validation and response serialization.
These models provide:

1. **Input Validation**: Automatic validation of request payloads.
2. **Documentation**: OpenAPI schema generation with examples.
3. **Type Safety**: Runtime type checking for API contracts.

Enumerated fields accept the engine's string values (``"Monthly"``,
``"30/360"``, ``"CPR"`` ...). Domain invariants (rate ranges, maturity
after the first payment date, waterfall uniqueness rules) are checked by
the engines and surface as HTTP 422 responses.

See Also
--------
api_main : Endpoints using these models.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from .engine.assumptions import DefaultUnits, PrepaymentUnits
from .engine.collateral import ShortfallRecoveryPriority
from .engine.dates import BusinessDayConvention, DayCount, PaymentFrequency
from .engine.pricing import PricingMethod, YieldBasis
from .engine.scenarios import ScenarioType


# =============================================================================
# Health Check Models
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response for monitoring systems."""

    status: str = Field(description="Overall service health", examples=["healthy"])
    version: str = Field(description="API version", examples=["1.0.0"])
    timestamp: str = Field(description="Current UTC timestamp")
    settings: Dict[str, Any] = Field(description="Non-secret engine settings")


# =============================================================================
# Cashflow Models
# =============================================================================


class LoanModel(BaseModel):
    """Contractual loan terms."""

    current_balance: float = Field(ge=0, description="Outstanding principal", examples=[100000.0])
    gross_coupon: float = Field(description="Annual coupon as a decimal", examples=[0.05])
    payment_frequency: PaymentFrequency = Field(
        default=PaymentFrequency.MONTHLY, description="Payment frequency"
    )
    next_payment_date: date = Field(description="First projected payment date", examples=["2024-02-01"])
    maturity_date: date = Field(description="Final scheduled payment date", examples=["2026-07-01"])
    start_date: Optional[date] = Field(
        default=None, description="Loan start date; defaults to next_payment_date"
    )
    day_count: DayCount = Field(default=DayCount.THIRTY_360, description="Accrual day count")
    business_day_convention: BusinessDayConvention = Field(
        default=BusinessDayConvention.NONE, description="Payment date adjustment"
    )
    remaining_term: Optional[int] = Field(default=None, ge=0, description="Remaining payments")
    original_term: Optional[int] = Field(default=None, ge=0, description="Original term in payments")
    original_balance: Optional[float] = Field(default=None, ge=0)
    is_fixed_rate: bool = Field(default=True, description="False for floating-rate loans")
    index: Optional[str] = Field(default=None, examples=["SOFR"])
    margin: Optional[float] = Field(default=None, description="Floating margin as a decimal")


class AssumptionsModel(BaseModel):
    """Scenario assumptions; rates, severity in percent."""

    prepay_units: PrepaymentUnits = Field(default=PrepaymentUnits.CPR)
    prepay_rate: float = Field(default=0.0, examples=[8.0])
    default_units: DefaultUnits = Field(default=DefaultUnits.CDR)
    default_rate: float = Field(default=0.0, examples=[1.0])
    severity: Optional[float] = Field(default=None, description="Defaults to the configured severity")
    recovery_lag: Optional[int] = Field(default=None, description="Defaults to the configured lag")
    interest_shortfall: bool = Field(default=True, description="Track interest shortfall")


class InterestConfigModel(BaseModel):
    accrual_start_date: Optional[date] = None
    accrued_interest: float = Field(default=0.0, ge=0)
    shortfall_recovery_priority: ShortfallRecoveryPriority = Field(
        default=ShortfallRecoveryPriority.CURRENT_INTEREST
    )


class CashflowRequest(BaseModel):
    """
    Cashflow projection request.

    Supply either ``assumptions`` for the whole run or ``assumption_vector``
    with one entry per period (the last entry is held).
    """

    loan: LoanModel
    assumptions: AssumptionsModel = Field(default_factory=AssumptionsModel)
    assumption_vector: Optional[List[AssumptionsModel]] = Field(
        default=None, description="Per-period assumptions; overrides 'assumptions'"
    )
    interest: Optional[InterestConfigModel] = None
    max_periods: Optional[int] = Field(default=None, ge=1)

    class Config:
        json_schema_extra = {
            "example": {
                "loan": {
                    "current_balance": 100000,
                    "gross_coupon": 0.05,
                    "payment_frequency": "Monthly",
                    "next_payment_date": "2024-02-01",
                    "maturity_date": "2026-07-01",
                    "day_count": "30/360",
                },
                "assumptions": {"prepay_rate": 8, "default_rate": 1, "severity": 40},
            }
        }


class CashflowResponse(BaseModel):
    periods: List[Dict[str, Any]] = Field(description="One record per projected period")
    metrics: Dict[str, float] = Field(description="WAL and duration placeholders")
    unsupported: List[str] = Field(description="Metrics or paths not computed")
    unreleased_recoveries: float = Field(description="Recoveries falling after the last period")


# =============================================================================
# Pricing Models
# =============================================================================


class PricingRequest(BaseModel):
    """
    Pricing request: project cashflows, then price them.

    ``convention`` (e.g. ``US_TREASURY``) sets the yield basis and derives
    the settlement date from ``trade_date``; otherwise ``yield_basis`` and
    ``settle_date`` are used as given.
    """

    cashflow: CashflowRequest
    method: PricingMethod = Field(default=PricingMethod.YIELD)
    value: float = Field(description="Quoted value; annual yield in percent for Yield", examples=[5.0])
    yield_basis: YieldBasis = Field(default=YieldBasis.SEMI_ANNUAL)
    settle_date: Optional[date] = Field(default=None, description="Defaults to the loan start date")
    convention: Optional[str] = Field(default=None, examples=["US_TREASURY"])
    trade_date: Optional[date] = None
    accrued: float = 0.0
    face_value: Optional[float] = Field(default=None, gt=0)
    base_rate_curve: Optional[List[Tuple[float, float]]] = Field(
        default=None,
        description="(years, annual decimal rate) points for effective duration",
        examples=[[[1.0, 0.04], [5.0, 0.045], [10.0, 0.05]]],
    )


class PricingResponse(BaseModel):
    price: float = Field(description="Price per 100 of face")
    yield_: float = Field(alias="yield", description="Yield in percent")
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
    method_used: str
    unsupported: List[str]


# =============================================================================
# Waterfall Models
# =============================================================================


class CollectionsModel(BaseModel):
    principal: float = Field(default=0.0, ge=0)
    interest: float = Field(default=0.0, ge=0)
    prepayment: float = Field(default=0.0, ge=0)
    recovery: float = Field(default=0.0, ge=0)


class WaterfallRequest(BaseModel):
    """
    Waterfall run request.

    Collections come from ``collections`` (one entry per period) or, when
    absent, from projecting ``cashflow``. ``config`` follows the loader's
    dictionary format; the default waterfall is used when omitted.
    """

    config: Optional[Dict[str, Any]] = Field(default=None, description="Waterfall definition")
    collections: Optional[List[CollectionsModel]] = None
    cashflow: Optional[CashflowRequest] = None
    trigger_metrics: Optional[Dict[str, float]] = Field(
        default=None,
        description="Measured value per trigger type, applied every period",
        examples=[{"OC": 1.3, "IC": 1.2}],
    )


class PaymentModel(BaseModel):
    recipient: str
    amount: float
    source: str
    priority: int
    type: str
    to_account: bool


class WaterfallPeriodModel(BaseModel):
    period: int
    payments: List[PaymentModel]
    ending_balances: Dict[str, float]
    triggers_state: Dict[str, bool]
    unallocated_funds: float
    total_paid: float
    unsupported: List[str]


class WaterfallResponse(BaseModel):
    periods: List[WaterfallPeriodModel]
    total_paid: float


# =============================================================================
# Scenario Models
# =============================================================================


class RampModel(BaseModel):
    start_value: float
    end_value: float
    ramp_periods: int
    hold_periods: int = 0


class PointModel(BaseModel):
    period: int
    value: float


class ShockModel(BaseModel):
    timing: int
    magnitude: float
    duration: Optional[int] = None


class ScenarioVectorRequest(BaseModel):
    """Scenario definition; see ``ScenarioConfig``."""

    type: ScenarioType = Field(examples=["CPR"])
    horizon: Optional[int] = Field(default=None, ge=0, description="Defaults to the configured horizon")
    initial_value: Optional[float] = None
    ramps: List[RampModel] = Field(default_factory=list)
    vectors: List[PointModel] = Field(default_factory=list)
    seasonal_adjustments: Optional[Dict[int, float]] = None
    shock: Optional[ShockModel] = None
    conditional_logic: Optional[str] = Field(
        default=None, examples=["if period > 36 and value > 5 then value = value * 0.9"]
    )


class ScenarioVectorResponse(BaseModel):
    type: str
    horizon: int
    values: List[float]


class StandardScenariosResponse(BaseModel):
    horizon: int
    scenarios: Dict[str, List[float]]


class StandardAssumptionsResponse(BaseModel):
    assumptions: Dict[str, Dict[str, Any]]
