"""
Cashflow Engine API
===================

Stateless JSON service over the projection, pricing, waterfall and scenario
engines. Every request builds fresh engine instances; nothing is kept
between requests.

Endpoints
---------
- ``GET /health``
- ``POST /cashflows``
- ``POST /pricing``
- ``POST /waterfall``
- ``POST /scenarios/vector``
- ``GET /scenarios/standard``
- ``GET /assumptions/standard``

Engine errors map to HTTP status codes: ``ConfigurationError`` and
``EvaluationError`` → 422, ``NotFoundError`` → 404,
``UnsupportedFeatureError`` → 501, ``IterationLimitError`` → 422.

Run locally with::

    uvicorn cashflow_platform.api_main:app --reload

or through the ``cashflow-api`` console script, which reads host and port
from the environment.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import __version__
from .api_models import (
    AssumptionsModel,
    CashflowRequest,
    CashflowResponse,
    HealthResponse,
    PricingRequest,
    PricingResponse,
    ScenarioVectorRequest,
    ScenarioVectorResponse,
    StandardAssumptionsResponse,
    StandardScenariosResponse,
    WaterfallPeriodModel,
    WaterfallRequest,
    WaterfallResponse,
)
from .config import settings
from .engine.assumptions import STANDARD_ASSUMPTIONS, ScenarioAssumptions, create_scenario
from .engine.collateral import (
    CashflowEngine,
    CashflowResult,
    DateConfig,
    InterestConfig,
    LoanCharacteristics,
)
from .engine.curves import rate_curve_from_points
from .engine.errors import (
    ConfigurationError,
    EvaluationError,
    IterationLimitError,
    NotFoundError,
    UnsupportedFeatureError,
)
from .engine.loader import DEFAULT_WATERFALL_CONFIG, load_waterfall_config
from .engine.pricing import (
    MARKET_CONVENTIONS,
    PricingConfig,
    PricingEngine,
    pricing_config_for_convention,
)
from .engine.scenarios import ScenarioConfig, ScenarioEngine, ScenarioGenerator, ScenarioType
from .engine.waterfall import WaterfallEngine, WaterfallResult

settings.configure_logging()
logger = logging.getLogger("CFP.API")

app = FastAPI(title="Cashflow Engine API", version=__version__)


# --- ERROR MAPPING ---
@app.exception_handler(ConfigurationError)
async def _configuration_error(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.warning(f"{request.url.path}: {exc}")
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc), "errors": [{"field": f, "message": m} for f, m in exc.errors]},
    )


@app.exception_handler(EvaluationError)
async def _evaluation_error(request: Request, exc: EvaluationError) -> JSONResponse:
    logger.warning(f"{request.url.path}: {exc}")
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(IterationLimitError)
async def _iteration_limit(request: Request, exc: IterationLimitError) -> JSONResponse:
    logger.warning(f"{request.url.path}: {exc}")
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(UnsupportedFeatureError)
async def _unsupported(request: Request, exc: UnsupportedFeatureError) -> JSONResponse:
    return JSONResponse(status_code=501, content={"detail": str(exc)})


# --- HELPERS ---
def _sanitize_json(value: Any) -> Any:
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, dict):
        return {k: _sanitize_json(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_sanitize_json(v) for v in value]
    return value


def _to_assumptions(model: AssumptionsModel) -> ScenarioAssumptions:
    overrides = model.model_dump(exclude_none=True)
    return create_scenario(**overrides)


def _run_cashflows(req: CashflowRequest) -> tuple:
    loan_req = req.loan
    loan = LoanCharacteristics(
        current_balance=loan_req.current_balance,
        gross_coupon=loan_req.gross_coupon,
        payment_frequency=loan_req.payment_frequency,
        next_payment_date=loan_req.next_payment_date,
        maturity_date=loan_req.maturity_date,
        date_config=DateConfig(
            start_date=loan_req.start_date or loan_req.next_payment_date,
            day_count=loan_req.day_count,
            business_day_convention=loan_req.business_day_convention,
        ),
        remaining_term=loan_req.remaining_term,
        original_term=loan_req.original_term,
        original_balance=loan_req.original_balance,
        is_fixed_rate=loan_req.is_fixed_rate,
        index=loan_req.index,
        margin=loan_req.margin,
    )
    if req.assumption_vector:
        assumptions: Any = [_to_assumptions(a) for a in req.assumption_vector]
    else:
        assumptions = _to_assumptions(req.assumptions)
    interest = InterestConfig(**req.interest.model_dump()) if req.interest else None

    result = CashflowEngine(
        loan, assumptions, interest_config=interest, max_periods=req.max_periods
    ).generate_cashflows()
    return loan, result


def _period_records(result: CashflowResult) -> List[Dict[str, Any]]:
    records = []
    for period in result.periods:
        record = period.to_dict()
        for key in ("start_date", "end_date", "payment_date"):
            record[key] = record[key].isoformat()
        records.append(record)
    return records


def _waterfall_period(result: WaterfallResult) -> WaterfallPeriodModel:
    return WaterfallPeriodModel(
        period=result.period,
        payments=[
            {
                "recipient": p.recipient,
                "amount": p.amount,
                "source": p.source.value,
                "priority": p.priority,
                "type": p.type.value,
                "to_account": p.to_account,
            }
            for p in result.payments
        ],
        ending_balances=result.ending_balances,
        triggers_state=result.triggers_state,
        unallocated_funds=result.unallocated_funds,
        total_paid=result.total_paid,
        unsupported=result.unsupported,
    )


# --- ENDPOINTS ---
@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        version=__version__,
        timestamp=datetime.now(timezone.utc).isoformat(),
        settings=settings.as_dict(),
    )


@app.post("/cashflows", response_model=CashflowResponse, tags=["Projection"])
def project_cashflows(req: CashflowRequest) -> Dict[str, Any]:
    _, result = _run_cashflows(req)
    return _sanitize_json(
        {
            "periods": _period_records(result),
            "metrics": asdict(result.metrics),
            "unsupported": result.unsupported,
            "unreleased_recoveries": result.unreleased_recoveries,
        }
    )


@app.post("/pricing", response_model=PricingResponse, tags=["Valuation"])
def price_cashflows(req: PricingRequest) -> Dict[str, Any]:
    loan, cashflows = _run_cashflows(req.cashflow)
    curve = rate_curve_from_points(req.base_rate_curve) if req.base_rate_curve else None

    if req.convention is not None:
        config = pricing_config_for_convention(
            req.convention,
            req.method,
            req.value,
            req.trade_date or loan.date_config.start_date,
            accrued=req.accrued,
            face_value=req.face_value,
            base_rate_curve=curve,
        )
        day_count = MARKET_CONVENTIONS[req.convention]["day_count"]
    else:
        config = PricingConfig(
            method=req.method,
            value=req.value,
            yield_basis=req.yield_basis,
            settle_date=req.settle_date or loan.date_config.start_date,
            accrued=req.accrued,
            face_value=req.face_value,
            base_rate_curve=curve,
        )
        day_count = loan.date_config.day_count

    result = PricingEngine(cashflows.periods, config, day_count).calculate()
    return _sanitize_json(result.to_dict())


@app.post("/waterfall", response_model=WaterfallResponse, tags=["Waterfall"])
def run_waterfall(req: WaterfallRequest) -> WaterfallResponse:
    config = load_waterfall_config(req.config) if req.config is not None else DEFAULT_WATERFALL_CONFIG
    engine = WaterfallEngine(config)

    if req.collections is not None:
        results = [
            engine.process_period(
                principal=c.principal,
                interest=c.interest,
                prepayment=c.prepayment,
                recovery=c.recovery,
                trigger_metrics=req.trigger_metrics,
            )
            for c in req.collections
        ]
    elif req.cashflow is not None:
        _, cashflows = _run_cashflows(req.cashflow)
        metrics = req.trigger_metrics
        results = engine.run_schedule(cashflows, (lambda _period: metrics) if metrics else None)
    else:
        raise ConfigurationError(
            "Either collections or cashflow is required",
            [("collections", "Either collections or cashflow is required")],
        )

    return WaterfallResponse(
        periods=[_waterfall_period(r) for r in results],
        total_paid=sum(r.total_paid for r in results),
    )


@app.post("/scenarios/vector", response_model=ScenarioVectorResponse, tags=["Scenarios"])
def scenario_vector(req: ScenarioVectorRequest) -> ScenarioVectorResponse:
    horizon = req.horizon if req.horizon is not None else settings.default_scenario_horizon
    config = ScenarioConfig.from_dict(req.model_dump(exclude={"horizon"}, exclude_none=True))
    values = ScenarioEngine(config, horizon).generate_vector()
    return ScenarioVectorResponse(type=ScenarioType(config.type).value, horizon=horizon, values=values)


@app.get("/scenarios/standard", response_model=StandardScenariosResponse, tags=["Scenarios"])
def standard_scenarios(horizon: Optional[int] = None) -> StandardScenariosResponse:
    horizon = horizon if horizon is not None else settings.default_scenario_horizon
    if horizon < 0:
        raise ConfigurationError("Horizon must be non-negative", [("horizon", "must be non-negative")])
    return StandardScenariosResponse(
        horizon=horizon,
        scenarios=ScenarioGenerator(horizon).generate_standard_scenarios(),
    )


@app.get("/assumptions/standard", response_model=StandardAssumptionsResponse, tags=["Scenarios"])
def standard_assumptions() -> StandardAssumptionsResponse:
    return StandardAssumptionsResponse(
        assumptions={
            name: {k: (v.value if hasattr(v, "value") else v) for k, v in asdict(a).items()}
            for name, a in STANDARD_ASSUMPTIONS.items()
        }
    )


def main() -> None:
    """Serve the API with uvicorn using the configured host and port."""
    import uvicorn

    uvicorn.run(
        "cashflow_platform.api_main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
