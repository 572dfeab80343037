"""
Collateral Cashflow Generation
==============================

This module provides :class:`CashflowEngine`, the period-by-period simulator
for a single amortizing loan (or a pool represented as one rep-line loan).

Each period the engine:

1. Computes the accrual period and its year fraction under the loan's day
   count, and the business-day adjusted payment date.
2. Determines the period coupon (fixed coupon; floating coupons use the
   gross coupon as a placeholder and are flagged).
3. Computes scheduled interest (``balance × rate × year fraction``) and
   scheduled principal from the level-payment formula over the payment
   dates left before maturity. Non-positive coupons accrue no interest and
   amortize straight-line; the last payment date on or before maturity
   retires the whole balance.
4. Applies prepayments (CPR → SMM or direct SMM) and defaults (CDR → MDR or
   direct MDR) to the beginning balance; loss is ``default × severity``.
5. Tracks interest shortfall from defaulted interest and recovers carried
   shortfall according to :class:`ShortfallRecoveryPriority`.
6. Rolls the balance forward and releases recoveries of earlier defaults.

The loop stops when the balance reaches zero or the payment date passes
maturity, and never runs more than ``max_periods`` periods.

Example
-------
>>> from datetime import date
>>> loan = LoanCharacteristics(
...     current_balance=100_000,
...     gross_coupon=0.05,
...     payment_frequency=PaymentFrequency.MONTHLY,
...     next_payment_date=date(2024, 2, 1),
...     maturity_date=date(2026, 7, 1),
...     date_config=DateConfig(start_date=date(2024, 1, 1)),
... )
>>> result = CashflowEngine(loan, ScenarioAssumptions()).generate_cashflows()
>>> len(result.periods), round(result.periods[-1].ending_balance, 6)
(30, 0.0)

See Also
--------
assumptions.ScenarioManager : Builds per-period assumption vectors.
timing.TimingEngine : Optional recovery timing.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

import pandas as pd

from ..config import settings
from .assumptions import PrepaymentUnits, ScenarioAssumptions
from .dates import (
    BusinessDayConvention,
    DayCount,
    PaymentFrequency,
    add_months,
    adjust_business_day,
    year_fraction,
)
from .errors import ConfigurationError, IterationLimitError, UnsupportedFeatureError
from .timing import TimingEngine

logger = logging.getLogger("CFP.Collateral")

# Balances below this are treated as fully repaid.
BALANCE_TOLERANCE = 1e-8


class ShortfallRecoveryPriority(str, Enum):
    """
    How carried interest shortfall is recovered.

    SHORTFALL_FIRST
        Carried shortfall is paid out of this period's collected interest
        before current interest.
    CURRENT_INTEREST
        Carried shortfall is only recovered from interest collected in
        excess of this period's scheduled interest.
    """

    CURRENT_INTEREST = "CurrentInterest"
    SHORTFALL_FIRST = "ShortfallFirst"


@dataclass(frozen=True)
class DateConfig:
    start_date: date
    day_count: DayCount = DayCount.THIRTY_360
    business_day_convention: BusinessDayConvention = BusinessDayConvention.NONE
    payment_day: Optional[int] = None


@dataclass(frozen=True)
class LoanCharacteristics:
    """
    Contractual terms of the loan being projected.

    Attributes
    ----------
    current_balance : float
        Outstanding principal at the projection start.
    gross_coupon : float
        Annual coupon as a decimal (0.05 for 5%).
    payment_frequency : PaymentFrequency
        Scheduled payment frequency.
    next_payment_date : date
        First projected payment date.
    maturity_date : date
        Final scheduled payment date.
    date_config : DateConfig
        Day count and business-day convention.
    remaining_term, original_term : int, optional
        Informational terms in payments; the schedule is driven by dates.
    original_balance : float, optional
        Balance at origination.
    is_fixed_rate : bool
        False marks a floating-rate loan (coupon reset not implemented).
    index, margin : optional
        Floating-rate index name and margin (decimal).
    """

    current_balance: float
    gross_coupon: float
    payment_frequency: PaymentFrequency
    next_payment_date: date
    maturity_date: date
    date_config: DateConfig
    remaining_term: Optional[int] = None
    original_term: Optional[int] = None
    original_balance: Optional[float] = None
    is_fixed_rate: bool = True
    index: Optional[str] = None
    margin: Optional[float] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "payment_frequency", PaymentFrequency(self.payment_frequency))
        errors = []
        if self.current_balance < 0:
            errors.append(("current_balance", "Current balance must be non-negative"))
        if not math.isfinite(self.gross_coupon):
            errors.append(("gross_coupon", "Coupon must be a finite number"))
        if self.maturity_date < self.next_payment_date:
            errors.append(("maturity_date", "Maturity date precedes next payment date"))
        if errors:
            raise ConfigurationError.from_errors("Invalid loan characteristics", errors)


@dataclass(frozen=True)
class InterestConfig:
    """
    Interest accrual settings.

    Attributes
    ----------
    accrual_start_date : date, optional
        Accrual start of the first projected period. Defaults to one
        payment period before ``next_payment_date``.
    accrued_interest : float
        Interest shortfall already outstanding at the projection start.
    shortfall_recovery_priority : ShortfallRecoveryPriority
        Recovery rule for carried shortfall.
    """

    accrual_start_date: Optional[date] = None
    accrued_interest: float = 0.0
    shortfall_recovery_priority: ShortfallRecoveryPriority = ShortfallRecoveryPriority.CURRENT_INTEREST


@dataclass(frozen=True)
class CashflowPeriod:
    """
    One simulated period. Amounts are in currency units.

    ``net_interest`` is interest collected for the current period after
    defaulted interest, excluding any carried shortfall recovered this
    period (reported separately as ``shortfall_recovered``). ``recoveries``
    are releases of earlier defaults and do not affect the balance
    roll-forward.
    """

    period: int
    start_date: date
    end_date: date
    payment_date: date
    days_in_period: int
    year_fraction: float
    coupon_rate: float
    beginning_balance: float
    scheduled_principal: float
    prepayments: float
    default_amount: float
    losses: float
    gross_interest: float
    net_interest: float
    interest_shortfall: float
    accumulated_shortfall: float
    shortfall_recovered: float
    defaulted_interest: float
    recoveries: float
    ending_balance: float

    @property
    def principal_paid(self) -> float:
        return self.scheduled_principal + self.prepayments

    @property
    def interest_collected(self) -> float:
        """Interest cash received: current interest plus shortfall recovered."""
        return self.net_interest + self.shortfall_recovered

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CashflowMetrics:
    """
    Summary metrics. ``duration`` and ``modified_duration`` are not computed
    and are always 0.0; see :attr:`CashflowResult.unsupported`.
    """

    wal: float
    duration: float = 0.0
    modified_duration: float = 0.0


@dataclass
class CashflowResult:
    periods: List[CashflowPeriod]
    metrics: CashflowMetrics
    unsupported: List[str] = field(default_factory=list)
    unreleased_recoveries: float = 0.0

    def to_dataframe(self) -> pd.DataFrame:
        """One row per period, snake_case columns."""
        return pd.DataFrame([p.to_dict() for p in self.periods])

    def total(self, attribute: str) -> float:
        """Sum one numeric :class:`CashflowPeriod` attribute over all periods."""
        return float(sum(getattr(p, attribute) for p in self.periods))

    @property
    def total_principal(self) -> float:
        return self.total("principal_paid")

    @property
    def total_interest(self) -> float:
        return self.total("interest_collected")

    @property
    def total_losses(self) -> float:
        return self.total("losses")

    @property
    def total_recoveries(self) -> float:
        return self.total("recoveries")


AssumptionInput = Union[ScenarioAssumptions, Sequence[ScenarioAssumptions]]


@dataclass
class _RecoveryCohort:
    period_index: int
    total: float
    remaining: float
    release_index: int


class CashflowEngine:
    """
    Project a loan's cashflows under scenario assumptions.

    Parameters
    ----------
    loan : LoanCharacteristics
        Contractual terms.
    assumptions : ScenarioAssumptions or sequence of ScenarioAssumptions
        One set for the whole run, or one per period (the last element is
        held once the sequence is exhausted).
    interest_config : InterestConfig, optional
        Accrual and shortfall settings.
    timing : TimingEngine, optional
        When supplied, recoveries of each default cohort are spread by the
        engine's recovery factors instead of released in one amount after
        the assumption's recovery lag.
    max_periods : int, optional
        Hard period ceiling (defaults to ``settings.max_cashflow_periods``).

    Raises
    ------
    ConfigurationError
        If the assumption sequence is empty or ``max_periods`` < 1.
    UnsupportedFeatureError
        If any assumption uses PSA prepayment units.
    """

    def __init__(
        self,
        loan: LoanCharacteristics,
        assumptions: AssumptionInput,
        interest_config: Optional[InterestConfig] = None,
        timing: Optional[TimingEngine] = None,
        max_periods: Optional[int] = None,
    ) -> None:
        if isinstance(assumptions, ScenarioAssumptions):
            self._assumptions: List[ScenarioAssumptions] = [assumptions]
        else:
            self._assumptions = list(assumptions)
        if not self._assumptions:
            raise ConfigurationError("At least one set of scenario assumptions is required")
        if any(a.prepay_units is PrepaymentUnits.PSA for a in self._assumptions):
            raise UnsupportedFeatureError("PSA prepayment conversion is not implemented")

        self.loan = loan
        self.interest_config = interest_config or InterestConfig()
        self.timing = timing
        self.max_periods = max_periods if max_periods is not None else settings.max_cashflow_periods
        if self.max_periods < 1:
            raise ConfigurationError("max_periods must be at least 1")

    def assumptions_for(self, period_index: int) -> ScenarioAssumptions:
        """Assumptions in force for a 0-based period index."""
        return self._assumptions[min(period_index, len(self._assumptions) - 1)]

    def generate_cashflows(self) -> CashflowResult:
        """
        Run the projection.

        Returns
        -------
        CashflowResult
            Ordered periods plus summary metrics.

        Raises
        ------
        IterationLimitError
            If the schedule would exceed ``max_periods``.
        """
        loan = self.loan
        frequency = loan.payment_frequency
        day_count = loan.date_config.day_count
        convention = loan.date_config.business_day_convention
        priority = self.interest_config.shortfall_recovery_priority

        unsupported: List[str] = []
        if not loan.is_fixed_rate:
            unsupported.append("floating_rate_reset")
            logger.warning(
                f"Floating-rate coupon reset is not implemented; "
                f"projecting index {loan.index!r} at the gross coupon {loan.gross_coupon}"
            )

        periods: List[CashflowPeriod] = []
        cohorts: List[_RecoveryCohort] = []
        balance = float(loan.current_balance)
        accumulated_shortfall = float(self.interest_config.accrued_interest)
        current_date = loan.next_payment_date
        scheduled_payments = self._scheduled_payment_count()

        while balance > BALANCE_TOLERANCE and current_date <= loan.maturity_date:
            index = len(periods)
            if index >= self.max_periods:
                raise IterationLimitError(
                    f"Cashflow projection exceeded {self.max_periods} periods "
                    f"(balance {balance:,.2f} remaining at {current_date})"
                )
            assumptions = self.assumptions_for(index)

            # 1. Period boundaries
            if index == 0 and self.interest_config.accrual_start_date is not None:
                start_date = self.interest_config.accrual_start_date
            else:
                start_date = add_months(current_date, -frequency.months)
            end_date = current_date
            payment_date = adjust_business_day(current_date, convention)
            yf = year_fraction(start_date, end_date, day_count)

            # 2. Coupon and scheduled amounts
            rate = self._period_rate(start_date)
            # Non-positive coupons accrue nothing and amortize straight-line.
            accrual_rate = rate if rate / frequency.periods_per_year > 0 else 0.0
            scheduled_interest = balance * accrual_rate * yf
            remaining_payments = max(1, scheduled_payments - index)
            if remaining_payments == 1:
                scheduled_principal = balance
            else:
                scheduled_principal = min(
                    balance, self._scheduled_principal(balance, rate, remaining_payments)
                )

            # 3. Prepayments and defaults on the beginning balance
            prepayment = min(
                balance * assumptions.prepayment_fraction(frequency.months),
                balance - scheduled_principal,
            )
            default_amount = min(
                balance * assumptions.default_fraction(frequency.months),
                balance - scheduled_principal - prepayment,
            )
            severity = assumptions.severity / 100.0
            loss = default_amount * severity

            # 4. Interest shortfall
            defaulted_interest = default_amount * accrual_rate * yf * (1.0 - severity)
            interest_collected = scheduled_interest - defaulted_interest
            interest_shortfall = scheduled_interest - interest_collected
            shortfall_recovered = 0.0
            if assumptions.interest_shortfall:
                if accumulated_shortfall > 0 and interest_collected > 0:
                    if priority is ShortfallRecoveryPriority.SHORTFALL_FIRST:
                        shortfall_recovered = min(accumulated_shortfall, interest_collected)
                        interest_collected -= shortfall_recovered
                    else:
                        excess = max(0.0, interest_collected - scheduled_interest)
                        shortfall_recovered = min(accumulated_shortfall, excess)
                        interest_collected -= shortfall_recovered
                accumulated_shortfall = accumulated_shortfall - shortfall_recovered + interest_shortfall

            # 5. Balance roll-forward
            ending_balance = balance - scheduled_principal - prepayment - default_amount
            if ending_balance < BALANCE_TOLERANCE:
                ending_balance = 0.0

            # 6. Recoveries of this and earlier default cohorts
            if default_amount > loss:
                recoverable = default_amount - loss
                lag = self.timing.recovery_lag if self.timing else assumptions.recovery_lag
                cohorts.append(_RecoveryCohort(index, recoverable, recoverable, index + lag))
            recoveries = self._release_recoveries(cohorts, index)

            periods.append(
                CashflowPeriod(
                    period=index + 1,
                    start_date=start_date,
                    end_date=end_date,
                    payment_date=payment_date,
                    days_in_period=(end_date - start_date).days,
                    year_fraction=yf,
                    coupon_rate=rate,
                    beginning_balance=balance,
                    scheduled_principal=scheduled_principal,
                    prepayments=prepayment,
                    default_amount=default_amount,
                    losses=loss,
                    gross_interest=scheduled_interest,
                    net_interest=interest_collected,
                    interest_shortfall=interest_shortfall,
                    accumulated_shortfall=accumulated_shortfall,
                    shortfall_recovered=shortfall_recovered,
                    defaulted_interest=defaulted_interest,
                    recoveries=recoveries,
                    ending_balance=ending_balance,
                )
            )
            logger.debug(
                f"Period {index + 1}: begin {balance:,.2f} sched {scheduled_principal:,.2f} "
                f"prepay {prepayment:,.2f} default {default_amount:,.2f} end {ending_balance:,.2f}"
            )

            balance = ending_balance
            current_date = add_months(loan.next_payment_date, frequency.months * (index + 1))

        unsupported.extend(["macaulay_duration", "modified_duration"])
        result = CashflowResult(
            periods=periods,
            metrics=CashflowMetrics(wal=self._weighted_average_life(periods)),
            unsupported=unsupported,
            unreleased_recoveries=sum(c.remaining for c in cohorts),
        )
        logger.info(
            f"Generated {len(periods)} periods; WAL {result.metrics.wal:.3f} years, "
            f"ending balance {balance:,.2f}"
        )
        return result

    def _period_rate(self, accrual_start: date) -> float:
        # Floating coupons are projected at the gross coupon until reset logic exists.
        return self.loan.gross_coupon

    def _scheduled_payment_count(self) -> int:
        """
        Payment dates on the grid from ``next_payment_date`` up to maturity.

        The count stops one past ``max_periods``; a longer schedule raises
        :class:`IterationLimitError` in the projection loop anyway.
        """
        loan = self.loan
        step = loan.payment_frequency.months
        count = 0
        while (
            count <= self.max_periods
            and add_months(loan.next_payment_date, step * count) <= loan.maturity_date
        ):
            count += 1
        return count

    def _scheduled_principal(self, balance: float, rate: float, remaining_payments: int) -> float:
        """Principal portion of the level payment (straight-line for rates <= 0)."""
        periodic_rate = rate / self.loan.payment_frequency.periods_per_year
        if periodic_rate <= 0:
            return balance / remaining_payments
        growth = (1.0 + periodic_rate) ** remaining_payments
        payment = balance * periodic_rate * growth / (growth - 1.0)
        return payment - balance * periodic_rate

    def _release_recoveries(self, cohorts: List[_RecoveryCohort], index: int) -> float:
        released = 0.0
        for cohort in cohorts:
            if cohort.remaining <= 0:
                continue
            if self.timing is None:
                if index == cohort.release_index:
                    amount = cohort.remaining
                else:
                    continue
            else:
                factor = self.timing.recovery_factor(index - cohort.period_index)
                amount = min(cohort.remaining, cohort.total * factor)
            cohort.remaining -= amount
            released += amount
        return released

    @staticmethod
    def _weighted_average_life(periods: Sequence[CashflowPeriod]) -> float:
        """Σ(principal × t) / Σ principal with t the cumulative year fraction."""
        weighted = 0.0
        total_principal = 0.0
        elapsed = 0.0
        for period in periods:
            elapsed += period.year_fraction
            principal = period.principal_paid
            weighted += principal * elapsed
            total_principal += principal
        return weighted / total_principal if total_principal > 0 else 0.0
