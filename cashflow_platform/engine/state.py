"""
Waterfall State Management
==========================

Mutable state tracked by a :class:`~cashflow_platform.engine.waterfall.WaterfallEngine`
across periods: account balances and trigger activity.

Key Classes
-----------
- :class:`WaterfallState`: Owns the account and trigger tables of one engine.
- :class:`AccountState`: Current balance of one account.
- :class:`TriggerState`: Latest measured value and active flag of one trigger.

A state is built from a validated :class:`~cashflow_platform.engine.loader.WaterfallConfig`
and must not be shared between independent simulations.

Example
-------
>>> state = WaterfallState(DEFAULT_WATERFALL_CONFIG)
>>> state.deposit("Principal Collection Account", 1_000.0)
>>> state.available_funds()
1000.0
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .loader import AccountType, Trigger, TriggerOperator, TriggerType, WaterfallConfig

logger = logging.getLogger("CFP.State")

# Tolerance for floating-point overdraws.
_CENT_TOLERANCE = 1e-5


@dataclass
class AccountState:
    name: str
    type: AccountType
    balance: float


@dataclass
class TriggerState:
    """
    Track a trigger's latest measurement.

    Attributes
    ----------
    name : str
        Trigger name.
    type : TriggerType
        Metric the trigger tests.
    threshold : float
        Level compared against the measured value.
    operator : TriggerOperator
        Comparison; the trigger is active when ``value <op> threshold``.
    value : float
        Last measured value.
    is_active : bool
        Result of the last evaluation.
    """

    name: str
    type: TriggerType
    threshold: float
    operator: TriggerOperator
    value: float = 0.0
    is_active: bool = False

    @classmethod
    def from_trigger(cls, trigger: Trigger) -> "TriggerState":
        return cls(
            name=trigger.name,
            type=trigger.type,
            threshold=trigger.threshold,
            operator=trigger.operator,
            is_active=trigger.is_active,
        )

    def update(self, value: float) -> None:
        """Record a new measurement and re-evaluate the active flag."""
        was_active = self.is_active
        self.value = value
        self.is_active = self.operator.compare(value, self.threshold)
        if self.is_active != was_active:
            logger.info(
                f"Trigger '{self.name}' {'activated' if self.is_active else 'deactivated'} "
                f"({self.type.value} {value} {self.operator.value} {self.threshold})"
            )


class WaterfallState:
    """
    Mutable account and trigger tables for one waterfall simulation.

    Parameters
    ----------
    config : WaterfallConfig
        Validated configuration; opening balances come from its accounts.
    """

    def __init__(self, config: WaterfallConfig) -> None:
        self.accounts: Dict[str, AccountState] = {
            a.name: AccountState(a.name, a.type, float(a.balance)) for a in config.accounts
        }
        self.triggers: Dict[str, TriggerState] = {
            t.name: TriggerState.from_trigger(t) for t in config.triggers
        }

    def find_account_by_type(self, account_type: AccountType) -> Optional[AccountState]:
        """First account of ``account_type`` in configuration order."""
        for account in self.accounts.values():
            if account.type is account_type:
                return account
        return None

    def deposit(self, account_name: str, amount: float) -> None:
        """
        Credit an account.

        Raises
        ------
        ValueError
            If ``amount`` is negative.
        KeyError
            If the account does not exist.
        """
        if amount < 0:
            raise ValueError(f"Negative deposit: {amount}")
        self.accounts[account_name].balance += amount

    def withdraw(self, account_name: str, amount: float) -> None:
        account = self.accounts[account_name]
        if account.balance < amount - _CENT_TOLERANCE:
            raise ValueError(f"Insufficient funds in {account_name}")
        account.balance = max(0.0, account.balance - amount)

    def transfer(self, from_name: str, to_name: str, amount: float) -> None:
        self.withdraw(from_name, amount)
        self.deposit(to_name, amount)

    def available_funds(self) -> float:
        """Combined balance of the Principal and Interest accounts."""
        total = 0.0
        for account_type in (AccountType.PRINCIPAL, AccountType.INTEREST):
            account = self.find_account_by_type(account_type)
            if account is not None:
                total += account.balance
        return total

    def draw(self, amount: float) -> Tuple[float, AccountType]:
        """
        Withdraw up to ``amount``, Principal account first, then Interest.

        Returns
        -------
        tuple of (float, AccountType)
            Amount actually drawn and the account type that supplied the
            larger part of it (Principal on ties).
        """
        portions = {AccountType.PRINCIPAL: 0.0, AccountType.INTEREST: 0.0}
        remaining = amount
        for account_type in (AccountType.PRINCIPAL, AccountType.INTEREST):
            account = self.find_account_by_type(account_type)
            if account is None or account.balance <= 0 or remaining <= 0:
                continue
            portion = min(remaining, account.balance)
            account.balance -= portion
            portions[account_type] = portion
            remaining -= portion

        drawn = amount - remaining
        source = (
            AccountType.INTEREST
            if portions[AccountType.INTEREST] > portions[AccountType.PRINCIPAL]
            else AccountType.PRINCIPAL
        )
        return drawn, source

    def balances(self) -> Dict[str, float]:
        return {name: account.balance for name, account in self.accounts.items()}

    def trigger_states(self) -> Dict[str, bool]:
        return {name: trigger.is_active for name, trigger in self.triggers.items()}

    def total_balance(self) -> float:
        return sum(account.balance for account in self.accounts.values())
