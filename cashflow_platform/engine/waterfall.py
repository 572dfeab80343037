"""
Waterfall Execution Engine
==========================

This module provides :class:`WaterfallEngine`, which allocates each period's
collateral collections through a priority-ordered set of payment tiers,
gated by triggers and preceded by reserve-account rules.

Period processing
-----------------
1. Credit principal, prepayment and recovery collections to the Principal
   account and interest collections to the Interest account.
2. Re-evaluate every trigger against its measured metric.
3. Run reserve rules in ascending replenishment priority: top up accounts
   below target from available funds, and release any excess above target
   to the Principal account when the rule allows it.
4. Run payment tiers in ascending priority. A tier runs only when every
   trigger named in its ``trigger_conditions`` is active.

Available funds are the Principal plus Interest account balances; every
payment draws Principal first, then Interest, and is bounded by what is
available, so the engine never creates or destroys cash::

    external payments + ending balances == collections + opening balances

Trigger metrics (OC, IC, delinquency and cumulative-loss ratios) are not
derived by the engine. Callers pass them in ``trigger_metrics``; a metric
that is not supplied is measured as 0.0 and named in
:attr:`WaterfallResult.unsupported`. Modified pro-rata tiers are skipped
with a warning and likewise reported.

Example
-------
>>> engine = WaterfallEngine(DEFAULT_WATERFALL_CONFIG)
>>> result = engine.process_period(principal=100_000, interest=40_000,
...                               prepayment=20_000, recovery=0)
>>> [(p.recipient, round(p.amount)) for p in result.payments]
[('Reserve Account', 160000)]

See Also
--------
loader.WaterfallConfig : Validated configuration consumed by the engine.
state.WaterfallState : Account and trigger tables mutated each period.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Union

from .collateral import CashflowPeriod, CashflowResult
from .errors import ConfigurationError
from .loader import (
    AccountType,
    Payment,
    PaymentType,
    ReserveAccountRule,
    TriggerType,
    WaterfallConfig,
    validate_waterfall_config,
)
from .state import WaterfallState

logger = logging.getLogger("CFP.Waterfall")

TriggerMetrics = Mapping[Union[TriggerType, str], float]


@dataclass(frozen=True)
class PaymentResult:
    """
    One payment made during a period.

    Attributes
    ----------
    recipient : str
        Payee name.
    amount : float
        Amount paid.
    source : AccountType
        Account type that supplied the larger part of the payment.
    priority : int
        Tier priority, or replenishment priority for reserve top-ups.
    type : PaymentType
        Tier type.
    to_account : bool
        True when the recipient is a configured account and the payment is
        an internal transfer.
    """

    recipient: str
    amount: float
    source: AccountType
    priority: int
    type: PaymentType
    to_account: bool = False


@dataclass
class WaterfallResult:
    period: int
    payments: List[PaymentResult]
    ending_balances: Dict[str, float]
    triggers_state: Dict[str, bool]
    unallocated_funds: float
    recipient_totals: Dict[str, float] = field(default_factory=dict)
    unsupported: List[str] = field(default_factory=list)

    @property
    def total_paid(self) -> float:
        """Payments leaving the waterfall (internal transfers excluded)."""
        return sum(p.amount for p in self.payments if not p.to_account)


class WaterfallEngine:
    """
    Allocate periodic collections through a payment waterfall.

    Parameters
    ----------
    config : WaterfallConfig
        Waterfall definition. It is validated here; any violation raises
        before a period can be processed.

    Raises
    ------
    ConfigurationError
        If the configuration is invalid.

    Notes
    -----
    The engine owns mutable account and trigger state that carries from one
    period to the next. Use a fresh instance per independent simulation.
    """

    def __init__(self, config: WaterfallConfig) -> None:
        validate_waterfall_config(config)
        self.config = config
        self.state = WaterfallState(config)
        self.period_index = 0
        self._payments = sorted(config.payments, key=lambda p: p.priority)
        self._reserve_rules = sorted(
            config.reserve_account_rules, key=lambda r: r.replenishment_priority
        )
        self._period_cashflows: Dict[str, float] = {}
        self._unsupported: List[str] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def process_period(
        self,
        principal: float,
        interest: float,
        prepayment: float,
        recovery: float,
        trigger_metrics: Optional[TriggerMetrics] = None,
    ) -> WaterfallResult:
        """
        Distribute one period's collections.

        Parameters
        ----------
        principal, interest, prepayment, recovery : float
            Non-negative collection amounts.
        trigger_metrics : mapping, optional
            Measured value per trigger type (``TriggerType`` or its string
            value), e.g. ``{"OC": 1.31}``.

        Returns
        -------
        WaterfallResult
            Payments made, ending balances, trigger states and unallocated
            funds for the period.

        Raises
        ------
        ConfigurationError
            If any collection amount is negative.
        """
        collections = {
            "principal": principal,
            "interest": interest,
            "prepayment": prepayment,
            "recovery": recovery,
        }
        negative = [(k, "Collections must be non-negative") for k, v in collections.items() if v < 0]
        if negative:
            raise ConfigurationError.from_errors("Invalid collections", negative)

        self.period_index += 1
        self._period_cashflows = {}
        self._unsupported = []
        payments: List[PaymentResult] = []

        self._distribute_collections(principal + prepayment + recovery, interest)
        self._update_triggers(trigger_metrics or {})
        payments.extend(self._process_reserve_rules())

        for payment in self._payments:
            if self._should_process(payment):
                payments.extend(self._process_payment(payment))
            else:
                logger.debug(f"Tier {payment.priority} skipped: trigger conditions not met")

        result = WaterfallResult(
            period=self.period_index,
            payments=payments,
            ending_balances=self.state.balances(),
            triggers_state=self.state.trigger_states(),
            unallocated_funds=self.state.total_balance(),
            recipient_totals=dict(self._period_cashflows),
            unsupported=list(self._unsupported),
        )
        logger.debug(
            f"Period {self.period_index}: collected {sum(collections.values()):,.2f}, "
            f"paid {result.total_paid:,.2f}, unallocated {result.unallocated_funds:,.2f}"
        )
        return result

    def run_schedule(
        self,
        cashflows: CashflowResult,
        trigger_metrics: Optional[Callable[[CashflowPeriod], TriggerMetrics]] = None,
    ) -> List[WaterfallResult]:
        """
        Feed every projected period through :meth:`process_period` in order.

        Parameters
        ----------
        cashflows : CashflowResult
            Output of :class:`~cashflow_platform.engine.collateral.CashflowEngine`.
        trigger_metrics : callable, optional
            Returns the trigger metrics for a period.
        """
        results = []
        for period in cashflows.periods:
            results.append(
                self.process_period(
                    principal=period.scheduled_principal,
                    interest=period.interest_collected,
                    prepayment=period.prepayments,
                    recovery=period.recoveries,
                    trigger_metrics=trigger_metrics(period) if trigger_metrics else None,
                )
            )
        logger.info(
            f"Waterfall ran {len(results)} periods; paid "
            f"{sum(r.total_paid for r in results):,.2f}"
        )
        return results

    # ------------------------------------------------------------------
    # Period steps
    # ------------------------------------------------------------------
    def _distribute_collections(self, principal_cash: float, interest_cash: float) -> None:
        # Validation guarantees both accounts exist.
        principal_account = self.state.find_account_by_type(AccountType.PRINCIPAL)
        interest_account = self.state.find_account_by_type(AccountType.INTEREST)
        self.state.deposit(principal_account.name, principal_cash)
        self.state.deposit(interest_account.name, interest_cash)

    def _update_triggers(self, metrics: TriggerMetrics) -> None:
        for trigger in self.state.triggers.values():
            value = self._metric_for(trigger.type, metrics)
            trigger.update(value)

    def _metric_for(self, trigger_type: TriggerType, metrics: TriggerMetrics) -> float:
        if trigger_type in metrics:
            return float(metrics[trigger_type])
        if trigger_type.value in metrics:
            return float(metrics[trigger_type.value])
        marker = f"trigger_metric:{trigger_type.value}"
        if marker not in self._unsupported:
            self._unsupported.append(marker)
            logger.warning(f"No {trigger_type.value} metric supplied; measuring trigger as 0.0")
        return 0.0

    def _process_reserve_rules(self) -> List[PaymentResult]:
        results: List[PaymentResult] = []
        for rule in self._reserve_rules:
            account = self.state.accounts[rule.account_name]

            if account.balance < rule.target_balance:
                shortfall = rule.target_balance - account.balance
                available = self.state.available_funds()
                if available > 0:
                    result = self._make_payment(
                        rule.account_name,
                        min(shortfall, available),
                        rule.replenishment_priority,
                        PaymentType.SEQUENTIAL,
                    )
                    if result is not None:
                        results.append(result)

            if rule.release_excess and account.balance > rule.target_balance:
                self._release_excess(rule)
        return results

    def _release_excess(self, rule: ReserveAccountRule) -> None:
        account = self.state.accounts[rule.account_name]
        principal_account = self.state.find_account_by_type(AccountType.PRINCIPAL)
        excess = account.balance - rule.target_balance
        if principal_account.name != account.name:
            self.state.transfer(account.name, principal_account.name, excess)
            logger.debug(f"Released {excess:,.2f} from {account.name} to {principal_account.name}")

    def _should_process(self, payment: Payment) -> bool:
        return all(self.state.triggers[name].is_active for name in payment.trigger_conditions)

    def _process_payment(self, payment: Payment) -> List[PaymentResult]:
        if payment.type is PaymentType.SEQUENTIAL:
            return self._process_sequential(payment)
        if payment.type is PaymentType.PRO_RATA:
            return self._process_pro_rata(payment)
        if payment.type is PaymentType.MODIFIED_PRO_RATA:
            logger.warning(f"Modified pro-rata tier {payment.priority} is not implemented; skipped")
            self._unsupported.append(f"modified_pro_rata:{payment.priority}")
            return []
        raise ConfigurationError(f"Unknown payment type {payment.type}")

    def _process_sequential(self, payment: Payment) -> List[PaymentResult]:
        results: List[PaymentResult] = []
        for recipient in payment.recipients:
            available = self.state.available_funds()
            if available <= 0:
                break
            cap = recipient.cap if recipient.cap is not None else float("inf")
            floor = recipient.floor if recipient.floor is not None else 0.0
            amount = max(min(available, cap), floor)
            result = self._make_payment(recipient.name, min(amount, available), payment.priority, payment.type)
            if result is not None:
                results.append(result)
        return results

    def _process_pro_rata(self, payment: Payment) -> List[PaymentResult]:
        results: List[PaymentResult] = []
        pool = self.state.available_funds()
        if pool <= 0:
            return results
        total_shares = sum(r.share if r.share is not None else 1.0 for r in payment.recipients)
        for recipient in payment.recipients:
            share = recipient.share if recipient.share is not None else 1.0
            cap = recipient.cap if recipient.cap is not None else float("inf")
            floor = recipient.floor if recipient.floor is not None else 0.0
            amount = max(min(pool * share / total_shares, cap), floor)
            amount = min(amount, self.state.available_funds())
            result = self._make_payment(recipient.name, amount, payment.priority, payment.type)
            if result is not None:
                results.append(result)
        return results

    def _make_payment(
        self, recipient: str, amount: float, priority: int, payment_type: PaymentType
    ) -> Optional[PaymentResult]:
        if amount <= 0:
            return None
        drawn, source = self.state.draw(amount)
        if drawn <= 0:
            return None
        to_account = recipient in self.state.accounts
        if to_account:
            self.state.deposit(recipient, drawn)
        self._period_cashflows[recipient] = self._period_cashflows.get(recipient, 0.0) + drawn
        return PaymentResult(
            recipient=recipient,
            amount=drawn,
            source=source,
            priority=priority,
            type=payment_type,
            to_account=to_account,
        )
