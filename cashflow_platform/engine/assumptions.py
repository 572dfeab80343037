"""
Scenario Assumptions
====================

Prepayment, default and severity assumptions consumed by the cashflow
engine, the standard assumption sets, and a named scenario registry.

Rate conventions
----------------
All rates are in percent. Annual rates convert to a per-period rate with

    r_period = 1 - (1 - r_annual / 100) ** (months_per_period / 12)

which for monthly payments is the familiar CPR → SMM and CDR → MDR
conversion. SMM and MDR inputs are used as-is. PSA prepayment units are not
implemented and are rejected by the cashflow engine.

Example
-------
>>> cpr_to_smm(6.0)
0.005143...
>>> stress = STANDARD_ASSUMPTIONS["stress"]
>>> stress.prepay_rate, stress.default_rate, stress.severity
(2.0, 5.0, 50.0)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..config import settings
from .errors import ConfigurationError, NotFoundError, UnsupportedFeatureError

logger = logging.getLogger("CFP.Assumptions")


class PrepaymentUnits(str, Enum):
    CPR = "CPR"
    SMM = "SMM"
    PSA = "PSA"


class DefaultUnits(str, Enum):
    CDR = "CDR"
    MDR = "MDR"


def annual_to_period_rate(annual_rate: float, months: int = 1) -> float:
    """
    Convert an annual percentage rate into a decimal per-period rate.

    Parameters
    ----------
    annual_rate : float
        Annual rate in percent (e.g. 6 for 6 CPR).
    months : int
        Months per period.

    Returns
    -------
    float
        Decimal per-period rate; 100 percent maps to 1.
    """
    survival = max(0.0, 1.0 - annual_rate / 100.0)
    return 1.0 - survival ** (months / 12.0)


def cpr_to_smm(cpr: float) -> float:
    """Monthly SMM (decimal) for an annual CPR in percent."""
    return annual_to_period_rate(cpr, 1)


def cdr_to_mdr(cdr: float) -> float:
    """Monthly MDR (decimal) for an annual CDR in percent."""
    return annual_to_period_rate(cdr, 1)


@dataclass(frozen=True)
class ScenarioAssumptions:
    """
    Forward-looking collateral assumptions for one period (or a whole run).

    Attributes
    ----------
    prepay_units : PrepaymentUnits
        CPR, SMM or PSA.
    prepay_rate : float
        Prepayment rate in percent.
    default_units : DefaultUnits
        CDR or MDR.
    default_rate : float
        Default rate in percent.
    severity : float
        Loss severity in percent of the defaulted balance.
    recovery_lag : int
        Periods between a default and the recovery of its non-lost part.
    interest_shortfall : bool
        Track and carry forward interest shortfalls.
    """

    prepay_units: PrepaymentUnits = PrepaymentUnits.CPR
    prepay_rate: float = 0.0
    default_units: DefaultUnits = DefaultUnits.CDR
    default_rate: float = 0.0
    severity: float = 35.0
    recovery_lag: int = 12
    interest_shortfall: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "prepay_units", PrepaymentUnits(self.prepay_units))
        object.__setattr__(self, "default_units", DefaultUnits(self.default_units))
        errors = []
        if not 0 <= self.prepay_rate <= 100:
            errors.append(("prepay_rate", "Prepayment rate must be between 0 and 100"))
        if not 0 <= self.default_rate <= 100:
            errors.append(("default_rate", "Default rate must be between 0 and 100"))
        if not 0 <= self.severity <= 100:
            errors.append(("severity", "Severity must be between 0 and 100"))
        if self.recovery_lag < 0:
            errors.append(("recovery_lag", "Recovery lag must be non-negative"))
        if errors:
            raise ConfigurationError.from_errors("Invalid scenario assumptions", errors)

    def prepayment_fraction(self, months: int = 1) -> float:
        """Decimal share of the balance prepaid in one period."""
        if self.prepay_units is PrepaymentUnits.CPR:
            return annual_to_period_rate(self.prepay_rate, months)
        if self.prepay_units is PrepaymentUnits.SMM:
            return self.prepay_rate / 100.0
        raise UnsupportedFeatureError("PSA prepayment conversion is not implemented")

    def default_fraction(self, months: int = 1) -> float:
        """Decimal share of the balance defaulting in one period."""
        if self.default_units is DefaultUnits.CDR:
            return annual_to_period_rate(self.default_rate, months)
        return self.default_rate / 100.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScenarioAssumptions":
        return create_scenario(**dict(data))


def create_scenario(**overrides: Any) -> ScenarioAssumptions:
    """
    Build assumptions from the configured defaults plus ``overrides``.

    Severity and recovery lag default to ``settings.default_severity`` and
    ``settings.default_recovery_lag``.
    """
    values: Dict[str, Any] = {
        "severity": settings.default_severity,
        "recovery_lag": settings.default_recovery_lag,
    }
    values.update(overrides)
    return ScenarioAssumptions(**values)


STANDARD_ASSUMPTIONS: Dict[str, ScenarioAssumptions] = {
    "base": ScenarioAssumptions(),
    "fast": ScenarioAssumptions(prepay_rate=20.0, default_rate=1.0),
    "slow": ScenarioAssumptions(prepay_rate=5.0, default_rate=2.0),
    "stress": ScenarioAssumptions(prepay_rate=2.0, default_rate=5.0, severity=50.0),
}


@dataclass(frozen=True)
class Scenario:
    name: str
    assumptions: ScenarioAssumptions
    description: Optional[str] = None


class ScenarioManager:
    """
    Named registry of assumption scenarios.

    Registration overwrites by name. Each manager owns its own table.

    Example
    -------
    >>> manager = ScenarioManager()
    >>> manager.add_scenario(Scenario("stress", STANDARD_ASSUMPTIONS["stress"]))
    >>> [s.name for s in manager.list_scenarios()]
    ['stress']
    """

    def __init__(self) -> None:
        self._scenarios: Dict[str, Scenario] = {}

    def add_scenario(self, scenario: Scenario) -> None:
        self._scenarios[scenario.name] = scenario

    def remove_scenario(self, name: str) -> None:
        """Remove a scenario; unknown names are ignored."""
        self._scenarios.pop(name, None)

    def get_scenario(self, name: str) -> Scenario:
        try:
            return self._scenarios[name]
        except KeyError:
            raise NotFoundError(f"Scenario {name} not found") from None

    def list_scenarios(self) -> List[Scenario]:
        return list(self._scenarios.values())

    @staticmethod
    def create_vector(
        base: ScenarioAssumptions,
        changes: Sequence[Mapping[str, Any]],
        intervals: Sequence[int],
    ) -> List[ScenarioAssumptions]:
        """
        Build a per-period assumption list from step changes.

        The base assumptions are repeated for ``intervals[0]`` periods, then
        ``changes[0]`` is applied and held for ``intervals[1]`` periods, and
        so on. The final change is applied after the last interval but not
        emitted; the cashflow engine holds the last element beyond the end.

        Raises
        ------
        ConfigurationError
            If ``changes`` and ``intervals`` differ in length.
        """
        if len(changes) != len(intervals):
            raise ConfigurationError("Number of changes must match number of intervals")
        vector: List[ScenarioAssumptions] = []
        current = base
        for change, interval in zip(changes, intervals):
            vector.extend([current] * int(interval))
            current = replace(current, **dict(change))
        return vector

    @staticmethod
    def from_rate_vectors(
        base: ScenarioAssumptions,
        prepay: Optional[Sequence[float]] = None,
        default: Optional[Sequence[float]] = None,
        severity: Optional[Sequence[float]] = None,
    ) -> List[ScenarioAssumptions]:
        """
        Combine scenario vectors into per-period assumptions.

        Each supplied vector overrides the matching field of ``base``
        period by period, in the units already set on ``base``. Vectors may
        differ in length; the output is as long as the longest and shorter
        vectors hold their last value.
        """
        series = {
            "prepay_rate": list(prepay or ()),
            "default_rate": list(default or ()),
            "severity": list(severity or ()),
        }
        length = max((len(v) for v in series.values()), default=0)
        vector: List[ScenarioAssumptions] = []
        for i in range(length):
            overrides = {
                name: float(values[min(i, len(values) - 1)])
                for name, values in series.items()
                if values
            }
            vector.append(replace(base, **overrides))
        logger.debug(f"Built {length} per-period assumptions from scenario vectors")
        return vector
