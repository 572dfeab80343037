"""
Waterfall Definition Loader and Validator
=========================================

This module defines the typed waterfall configuration consumed by
:class:`~cashflow_platform.engine.waterfall.WaterfallEngine` and the loader
that builds it from JSON-like dictionaries (API payloads, files). Loading
performs:

1. **Syntactic Validation**: JSON Schema compliance via ``jsonschema``.
2. **Hydration**: Convert raw dictionaries into typed, immutable objects.
3. **Semantic Validation**: Uniqueness, bounds and cross-references.

Semantic validation collects every violation and raises a single
:class:`~cashflow_platform.engine.errors.ConfigurationError`. It also runs
when a :class:`WaterfallConfig` built in code is handed to the engine.

Example
-------
>>> config = load_waterfall_config({
...     "accounts": [
...         {"name": "Principal", "type": "Principal"},
...         {"name": "Interest", "type": "Interest"},
...     ],
...     "payments": [
...         {"priority": 1, "type": "Sequential", "recipients": [{"name": "Class A"}]},
...     ],
... })
>>> [a.name for a in config.accounts]
['Principal', 'Interest']

See Also
--------
state.WaterfallState : Mutable balances initialised from a WaterfallConfig.
waterfall.WaterfallEngine : Runs a validated config period by period.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from jsonschema import ValidationError, validate

from .errors import ConfigurationError

logger = logging.getLogger("CFP.Loader")


# --- ENUMS (Type Safety) ---
class AccountType(str, Enum):
    """
    Account categories.

    Collections are credited to the first ``Principal`` and ``Interest``
    accounts; payments draw only from those two. ``Reserve`` accounts are
    managed by reserve rules; ``Fees`` accounts hold balances passively.
    """

    PRINCIPAL = "Principal"
    INTEREST = "Interest"
    RESERVE = "Reserve"
    FEES = "Fees"


class TriggerType(str, Enum):
    OC = "OC"
    IC = "IC"
    DELINQUENCY = "Delinquency"
    CUMULATIVE_LOSS = "Cumulative Loss"


class PaymentType(str, Enum):
    SEQUENTIAL = "Sequential"
    PRO_RATA = "Pro Rata"
    MODIFIED_PRO_RATA = "Modified Pro Rata"


class TriggerOperator(str, Enum):
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="

    def compare(self, value: float, threshold: float) -> bool:
        if self is TriggerOperator.GT:
            return value > threshold
        if self is TriggerOperator.LT:
            return value < threshold
        if self is TriggerOperator.GE:
            return value >= threshold
        return value <= threshold


# --- DOMAIN OBJECTS ---
@dataclass(frozen=True)
class Account:
    """
    A cash account with its opening balance.

    Attributes
    ----------
    name : str
        Unique account name; payments to a recipient of the same name
        credit this account.
    type : AccountType
        Account category.
    balance : float
        Opening balance.
    minimum_balance, maximum_balance, target_balance : float, optional
        Informational limits; reserve behaviour is driven by
        :class:`ReserveAccountRule`.
    release_excess : bool
        Informational; see :attr:`ReserveAccountRule.release_excess`.
    """

    name: str
    type: AccountType
    balance: float = 0.0
    minimum_balance: Optional[float] = None
    maximum_balance: Optional[float] = None
    target_balance: Optional[float] = None
    release_excess: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", AccountType(self.type))


@dataclass(frozen=True)
class Trigger:
    name: str
    type: TriggerType
    threshold: float
    operator: TriggerOperator
    is_active: bool = False
    description: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", TriggerType(self.type))
        object.__setattr__(self, "operator", TriggerOperator(self.operator))


@dataclass(frozen=True)
class PaymentRecipient:
    """
    One payee of a payment tier.

    ``share`` (0 < share <= 1, default 1) weights pro-rata splits; ``cap``
    and ``floor`` bound the amount paid.
    """

    name: str
    share: Optional[float] = None
    cap: Optional[float] = None
    floor: Optional[float] = None
    target_balance: Optional[float] = None


@dataclass(frozen=True)
class Payment:
    priority: int
    type: PaymentType
    recipients: Tuple[PaymentRecipient, ...]
    trigger_conditions: Tuple[str, ...] = ()
    description: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", PaymentType(self.type))
        object.__setattr__(self, "recipients", tuple(self.recipients))
        object.__setattr__(self, "trigger_conditions", tuple(self.trigger_conditions or ()))


@dataclass(frozen=True)
class ReserveAccountRule:
    """
    Replenishment and release rule for one account.

    Rules run in ascending ``replenishment_priority`` before any payment
    tier. A balance below ``target_balance`` is topped up from available
    funds; with ``release_excess`` a balance above target is moved to the
    Principal account.
    """

    account_name: str
    replenishment_priority: int
    target_balance: float
    release_excess: bool = False
    minimum_balance: Optional[float] = None
    release_conditions: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "release_conditions", tuple(self.release_conditions or ()))


@dataclass(frozen=True)
class WaterfallConfig:
    accounts: Tuple[Account, ...]
    triggers: Tuple[Trigger, ...] = ()
    payments: Tuple[Payment, ...] = ()
    reserve_account_rules: Tuple[ReserveAccountRule, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "accounts", tuple(self.accounts))
        object.__setattr__(self, "triggers", tuple(self.triggers))
        object.__setattr__(self, "payments", tuple(self.payments))
        object.__setattr__(self, "reserve_account_rules", tuple(self.reserve_account_rules))


# --- JSON SCHEMA ---
_NUMBER_OR_NULL = {"type": ["number", "null"]}

WATERFALL_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["accounts"],
    "properties": {
        "accounts": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "type"],
                "properties": {
                    "name": {"type": "string"},
                    "type": {"enum": [t.value for t in AccountType]},
                    "balance": {"type": "number"},
                    "minimum_balance": _NUMBER_OR_NULL,
                    "maximum_balance": _NUMBER_OR_NULL,
                    "target_balance": _NUMBER_OR_NULL,
                    "release_excess": {"type": "boolean"},
                },
            },
        },
        "triggers": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "type", "threshold", "operator"],
                "properties": {
                    "name": {"type": "string"},
                    "type": {"enum": [t.value for t in TriggerType]},
                    "threshold": {"type": "number"},
                    "operator": {"enum": [o.value for o in TriggerOperator]},
                    "is_active": {"type": "boolean"},
                },
            },
        },
        "payments": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["priority", "type", "recipients"],
                "properties": {
                    "priority": {"type": "integer"},
                    "type": {"enum": [p.value for p in PaymentType]},
                    "recipients": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["name"],
                            "properties": {
                                "name": {"type": "string"},
                                "share": _NUMBER_OR_NULL,
                                "cap": _NUMBER_OR_NULL,
                                "floor": _NUMBER_OR_NULL,
                                "target_balance": _NUMBER_OR_NULL,
                            },
                        },
                    },
                    "trigger_conditions": {"type": ["array", "null"], "items": {"type": "string"}},
                },
            },
        },
        "reserve_account_rules": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["account_name", "replenishment_priority", "target_balance"],
                "properties": {
                    "account_name": {"type": "string"},
                    "replenishment_priority": {"type": "integer"},
                    "target_balance": {"type": "number"},
                    "release_excess": {"type": "boolean"},
                    "minimum_balance": _NUMBER_OR_NULL,
                },
            },
        },
    },
}


# --- VALIDATION ---
def validate_waterfall_config(config: WaterfallConfig) -> None:
    """
    Check uniqueness, bounds and cross-references of a waterfall config.

    Raises
    ------
    ConfigurationError
        Listing every violation found.
    """
    errors: List[Tuple[str, str]] = []

    if not config.accounts:
        errors.append(("accounts", "At least one account is required"))

    account_names: Set[str] = set()
    for account in config.accounts:
        if account.name in account_names:
            errors.append(("accounts", f"Account names must be unique: '{account.name}'"))
        account_names.add(account.name)

    account_types = {a.type for a in config.accounts}
    if config.accounts and AccountType.PRINCIPAL not in account_types:
        errors.append(("accounts", "A Principal account is required to receive principal collections"))
    if config.accounts and AccountType.INTEREST not in account_types:
        errors.append(("accounts", "An Interest account is required to receive interest collections"))

    trigger_names: Set[str] = set()
    for trigger in config.triggers:
        if trigger.name in trigger_names:
            errors.append(("triggers", f"Trigger names must be unique: '{trigger.name}'"))
        trigger_names.add(trigger.name)

    priorities: Set[int] = set()
    for payment in config.payments:
        ref = f"payments[priority={payment.priority}]"
        if payment.priority in priorities:
            errors.append(("payments", f"Payment priorities must be unique: {payment.priority}"))
        priorities.add(payment.priority)

        for name in payment.trigger_conditions:
            if name not in trigger_names:
                errors.append((ref, f"Trigger condition references unknown trigger '{name}'"))

        for recipient in payment.recipients:
            rref = f"{ref}.{recipient.name}"
            if recipient.share is not None and not 0 < recipient.share <= 1:
                errors.append((rref, "Recipient shares must be between 0 and 1"))
            if recipient.cap is not None and recipient.cap < 0:
                errors.append((rref, "Recipient caps must be non-negative"))
            if recipient.floor is not None and recipient.floor < 0:
                errors.append((rref, "Recipient floors must be non-negative"))
            if (
                recipient.floor is not None
                and recipient.cap is not None
                and recipient.floor > recipient.cap
            ):
                errors.append((rref, "Recipient floor cannot be greater than cap"))

    for rule in config.reserve_account_rules:
        if rule.account_name not in account_names:
            errors.append(
                ("reserve_account_rules", f"Reserve rule references non-existent account: {rule.account_name}")
            )
        if rule.target_balance <= 0:
            errors.append(
                ("reserve_account_rules", f"Reserve target for {rule.account_name} must be positive")
            )

    if errors:
        for name, message in errors:
            logger.error(f"Waterfall validation failed at {name}: {message}")
        raise ConfigurationError.from_errors("Invalid waterfall configuration", errors)


# --- LOADING ---
def load_waterfall_config(data: Mapping[str, Any]) -> WaterfallConfig:
    """
    Validate and hydrate a waterfall definition from a dictionary.

    Parameters
    ----------
    data : mapping
        Raw definition with ``accounts`` and optional ``triggers``,
        ``payments`` and ``reserve_account_rules`` lists (snake_case keys).

    Returns
    -------
    WaterfallConfig
        Hydrated, validated configuration.

    Raises
    ------
    ConfigurationError
        On schema violations or semantic validation failures.
    """
    try:
        validate(instance=dict(data), schema=WATERFALL_SCHEMA)
    except ValidationError as e:
        location = ".".join(str(p) for p in e.path) or "waterfall"
        logger.error(f"Schema validation failed at {location}: {e.message}")
        raise ConfigurationError(f"Invalid waterfall structure: {e.message}", [(location, e.message)]) from e

    accounts = tuple(
        Account(
            name=a["name"],
            type=a["type"],
            balance=float(a.get("balance", 0.0)),
            minimum_balance=a.get("minimum_balance"),
            maximum_balance=a.get("maximum_balance"),
            target_balance=a.get("target_balance"),
            release_excess=a.get("release_excess", False),
        )
        for a in data.get("accounts", [])
    )
    triggers = tuple(
        Trigger(
            name=t["name"],
            type=t["type"],
            threshold=float(t["threshold"]),
            operator=t["operator"],
            is_active=t.get("is_active", False),
            description=t.get("description"),
        )
        for t in data.get("triggers", [])
    )
    payments = tuple(
        Payment(
            priority=p["priority"],
            type=p["type"],
            recipients=tuple(
                PaymentRecipient(
                    name=r["name"],
                    share=r.get("share"),
                    cap=r.get("cap"),
                    floor=r.get("floor"),
                    target_balance=r.get("target_balance"),
                )
                for r in p["recipients"]
            ),
            trigger_conditions=tuple(p.get("trigger_conditions") or ()),
            description=p.get("description"),
        )
        for p in data.get("payments", [])
    )
    rules = tuple(
        ReserveAccountRule(
            account_name=r["account_name"],
            replenishment_priority=r["replenishment_priority"],
            target_balance=float(r["target_balance"]),
            release_excess=r.get("release_excess", False),
            minimum_balance=r.get("minimum_balance"),
            release_conditions=tuple(r.get("release_conditions") or ()),
        )
        for r in data.get("reserve_account_rules", [])
    )

    config = WaterfallConfig(
        accounts=accounts,
        triggers=triggers,
        payments=payments,
        reserve_account_rules=rules,
    )
    validate_waterfall_config(config)
    logger.info(
        f"Waterfall loaded: {len(accounts)} accounts, {len(triggers)} triggers, "
        f"{len(payments)} payment tiers, {len(rules)} reserve rules"
    )
    return config


DEFAULT_WATERFALL_CONFIG = WaterfallConfig(
    accounts=(
        Account(name="Principal Collection Account", type=AccountType.PRINCIPAL),
        Account(name="Interest Collection Account", type=AccountType.INTEREST),
        Account(
            name="Reserve Account",
            type=AccountType.RESERVE,
            minimum_balance=1_000_000,
            target_balance=2_000_000,
        ),
    ),
    triggers=(
        Trigger(name="OC Test", type=TriggerType.OC, threshold=1.25, operator=TriggerOperator.LT),
        Trigger(name="IC Test", type=TriggerType.IC, threshold=1.1, operator=TriggerOperator.LT),
    ),
    payments=(
        Payment(
            priority=1,
            type=PaymentType.SEQUENTIAL,
            recipients=(PaymentRecipient(name="Senior Fees", cap=100_000),),
            description="Senior Fees Payment",
        ),
        Payment(
            priority=2,
            type=PaymentType.SEQUENTIAL,
            recipients=(PaymentRecipient(name="Class A Interest"),),
            description="Class A Interest Payment",
        ),
        Payment(
            priority=3,
            type=PaymentType.SEQUENTIAL,
            recipients=(PaymentRecipient(name="Class A Principal"),),
            description="Class A Principal Payment",
        ),
    ),
    reserve_account_rules=(
        ReserveAccountRule(
            account_name="Reserve Account",
            replenishment_priority=1,
            target_balance=2_000_000,
            release_excess=True,
            minimum_balance=1_000_000,
        ),
    ),
)
