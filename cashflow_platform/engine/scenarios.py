"""
Scenario Vector Engine
======================

Expands a declarative :class:`ScenarioConfig` into a numeric vector over a
projection horizon, and builds the standard named scenario catalogue.

Generation order
----------------
1. Fill the horizon with ``initial_value`` (default 0).
2. Apply ramps. Each ramp interpolates linearly from its start value to its
   end value over ``ramp_periods`` and then holds the end value for
   ``hold_periods``. Ramps share one cursor, so they run back to back.
3. Overwrite explicit ``(period, value)`` points.
4. Multiply by the seasonal adjustment for month ``(period mod 12) + 1``.
5. Add the shock magnitude over ``[timing, timing + duration)``.
6. Apply the conditional-override rule period by period.
7. Clamp to the scenario type's bounds.

Example
-------
>>> config = ScenarioConfig(
...     type=ScenarioType.CDR,
...     ramps=[ScenarioRamp(start_value=1, end_value=5, ramp_periods=4, hold_periods=2)],
... )
>>> ScenarioEngine(config, horizon=8).generate_vector()
[1.0, 2.0, 3.0, 4.0, 5.0, 5.0, 0.0, 0.0]

See Also
--------
assumptions.ScenarioManager.from_rate_vectors : Turns vectors into
    per-period cashflow assumptions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .compute import ConditionalRule, ExpressionEngine
from .errors import ConfigurationError, EvaluationError

logger = logging.getLogger("CFP.Scenarios")


class ScenarioType(str, Enum):
    """Quantity a scenario vector describes (all in percent)."""

    CPR = "CPR"
    CDR = "CDR"
    LOSS_SEVERITY = "Loss Severity"
    DELINQUENCY = "Delinquency"
    INTEREST_RATE = "Interest Rate"
    DRAW_RATE = "Draw Rate"


SCENARIO_LIMITS: Dict[ScenarioType, Tuple[float, float]] = {
    ScenarioType.CPR: (0.0, 100.0),
    ScenarioType.CDR: (0.0, 100.0),
    ScenarioType.LOSS_SEVERITY: (0.0, 100.0),
    ScenarioType.DELINQUENCY: (0.0, 100.0),
    ScenarioType.INTEREST_RATE: (-10.0, 50.0),
    ScenarioType.DRAW_RATE: (0.0, 100.0),
}

# March through September carry the seasonal prepayment uplift.
DEFAULT_SEASONAL_ADJUSTMENTS: Dict[int, float] = {
    3: 1.2,
    4: 1.3,
    5: 1.3,
    6: 1.4,
    7: 1.3,
    8: 1.2,
    9: 1.1,
}


@dataclass(frozen=True)
class ScenarioRamp:
    start_value: float
    end_value: float
    ramp_periods: int
    hold_periods: int = 0


@dataclass(frozen=True)
class ScenarioPoint:
    period: int
    value: float


@dataclass(frozen=True)
class ScenarioShock:
    """Additive shock starting at ``timing``; no duration means to the horizon."""

    timing: int
    magnitude: float
    duration: Optional[int] = None


@dataclass(frozen=True)
class ScenarioConfig:
    """
    Declarative scenario definition.

    Attributes
    ----------
    type : ScenarioType
        Quantity described; selects the clamping bounds.
    initial_value : float, optional
        Fill value before ramps (default 0).
    ramps : sequence of ScenarioRamp
        Applied back to back from period 0.
    vectors : sequence of ScenarioPoint
        Explicit per-period overrides.
    seasonal_adjustments : dict, optional
        Multiplier per calendar month 1-12; missing months use 1.
    shock : ScenarioShock, optional
        Single additive shock.
    conditional_logic : str, optional
        Rule in the :mod:`~cashflow_platform.engine.compute` grammar.
    """

    type: ScenarioType
    initial_value: Optional[float] = None
    ramps: Sequence[ScenarioRamp] = field(default_factory=tuple)
    vectors: Sequence[ScenarioPoint] = field(default_factory=tuple)
    seasonal_adjustments: Optional[Mapping[int, float]] = None
    shock: Optional[ScenarioShock] = None
    conditional_logic: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScenarioConfig":
        """
        Hydrate a config from a JSON-like mapping.

        Keys follow the attribute names; ``ramps``, ``vectors`` and ``shock``
        hold nested mappings. Month keys of ``seasonal_adjustments`` may be
        strings. The scenario type is validated later by the engine.
        """
        shock = data.get("shock")
        seasonal = data.get("seasonal_adjustments")
        return cls(
            type=data["type"],
            initial_value=data.get("initial_value"),
            ramps=tuple(ScenarioRamp(**ramp) for ramp in data.get("ramps") or ()),
            vectors=tuple(ScenarioPoint(**point) for point in data.get("vectors") or ()),
            seasonal_adjustments=(
                {month: float(adj) for month, adj in seasonal.items()} if seasonal else None
            ),
            shock=ScenarioShock(**shock) if shock else None,
            conditional_logic=data.get("conditional_logic"),
        )


class ScenarioEngine:
    """
    Generate one bounded vector from a validated :class:`ScenarioConfig`.

    Parameters
    ----------
    config : ScenarioConfig
        Scenario definition.
    horizon : int
        Number of periods in the output vector.
    expression_engine : ExpressionEngine, optional
        Parser for ``conditional_logic``; a fresh one by default.

    Raises
    ------
    ConfigurationError
        Listing every violation found in the config (bad type, out-of-range
        initial/ramp/point values, non-positive ramp length, negative hold,
        bad seasonal month or multiplier, bad shock timing/duration, or an
        unparseable conditional rule).
    """

    def __init__(
        self,
        config: ScenarioConfig,
        horizon: int,
        expression_engine: Optional[ExpressionEngine] = None,
    ) -> None:
        self._expressions = expression_engine or ExpressionEngine()
        self._rule: Optional[ConditionalRule] = None
        errors = self._validate(config, horizon)
        if errors:
            raise ConfigurationError.from_errors("Invalid scenario configuration", errors)
        self.config = config
        self.scenario_type = ScenarioType(config.type)
        self.horizon = int(horizon)

    @property
    def bounds(self) -> Tuple[float, float]:
        return SCENARIO_LIMITS[self.scenario_type]

    def _validate(self, config: ScenarioConfig, horizon: int) -> List[Tuple[str, str]]:
        errors: List[Tuple[str, str]] = []
        if horizon < 0:
            errors.append(("horizon", "Horizon must be non-negative"))

        try:
            lo, hi = SCENARIO_LIMITS[ScenarioType(config.type)]
        except ValueError:
            errors.append(("type", f"Invalid scenario type: {config.type}"))
            lo, hi = float("-inf"), float("inf")

        def out_of_range(value: float) -> bool:
            return value < lo or value > hi

        if config.initial_value is not None and out_of_range(config.initial_value):
            errors.append(("initial_value", f"Initial value must be between {lo} and {hi}"))

        for i, ramp in enumerate(config.ramps):
            if out_of_range(ramp.start_value):
                errors.append((f"ramps[{i}].start_value", f"Ramp start value must be between {lo} and {hi}"))
            if out_of_range(ramp.end_value):
                errors.append((f"ramps[{i}].end_value", f"Ramp end value must be between {lo} and {hi}"))
            if ramp.ramp_periods <= 0:
                errors.append((f"ramps[{i}].ramp_periods", "Ramp periods must be positive"))
            if ramp.hold_periods < 0:
                errors.append((f"ramps[{i}].hold_periods", "Hold periods must be non-negative"))

        for i, point in enumerate(config.vectors):
            if point.period < 0:
                errors.append((f"vectors[{i}].period", "Vector period must be non-negative"))
            if out_of_range(point.value):
                errors.append((f"vectors[{i}].value", f"Vector value must be between {lo} and {hi}"))

        for month, adjustment in (config.seasonal_adjustments or {}).items():
            try:
                month_number = int(month)
            except (TypeError, ValueError):
                month_number = 0
            if not 1 <= month_number <= 12:
                errors.append((f"seasonal_adjustments[{month}]", "Month must be an integer between 1 and 12"))
            if adjustment <= 0:
                errors.append((f"seasonal_adjustments[{month}]", "Seasonal adjustment must be positive"))

        if config.shock is not None:
            if config.shock.timing < 0:
                errors.append(("shock.timing", "Shock timing must be non-negative"))
            if config.shock.duration is not None and config.shock.duration <= 0:
                errors.append(("shock.duration", "Shock duration must be positive"))

        if config.conditional_logic:
            try:
                self._rule = self._expressions.parse_rule(config.conditional_logic)
            except EvaluationError as exc:
                errors.append(("conditional_logic", str(exc)))

        return errors

    def generate_vector(self) -> List[float]:
        """
        Build the scenario vector.

        Returns
        -------
        list of float
            ``horizon`` values, each within the type's bounds.

        Raises
        ------
        EvaluationError
            If the conditional rule fails at evaluation time.
        """
        cfg = self.config
        n = self.horizon
        initial = cfg.initial_value if cfg.initial_value is not None else 0.0
        vector = np.full(n, float(initial))

        cursor = 0
        for ramp in cfg.ramps:
            increment = (ramp.end_value - ramp.start_value) / ramp.ramp_periods
            for i in range(ramp.ramp_periods):
                if cursor >= n:
                    break
                vector[cursor] = ramp.start_value + increment * i
                cursor += 1
            for _ in range(ramp.hold_periods):
                if cursor >= n:
                    break
                vector[cursor] = ramp.end_value
                cursor += 1

        for point in cfg.vectors:
            if point.period < n:
                vector[point.period] = point.value

        if cfg.seasonal_adjustments:
            adjustments = {int(m): float(a) for m, a in cfg.seasonal_adjustments.items()}
            months = np.arange(n) % 12 + 1
            vector *= np.array([adjustments.get(int(m), 1.0) for m in months])

        if cfg.shock is not None:
            end = cfg.shock.timing + cfg.shock.duration if cfg.shock.duration else n
            vector[cfg.shock.timing:min(end, n)] += cfg.shock.magnitude

        if self._rule is not None:
            for i in range(n):
                vector[i] = self._rule.apply(i, float(vector[i]))

        lo, hi = self.bounds
        return np.clip(vector, lo, hi).tolist()


class ScenarioGenerator:
    """
    Build the standard named scenario catalogue for a horizon.

    The catalogue holds the base case, four stress cases, two recovery
    paths and two interest-rate paths.

    Example
    -------
    >>> vectors = ScenarioGenerator(120).generate_standard_scenarios()
    >>> list(vectors)[:3]
    ['Base', 'High Prepay', 'High Default']
    """

    def __init__(self, horizon: int) -> None:
        self.horizon = horizon

    @staticmethod
    def standard_configs() -> Dict[str, ScenarioConfig]:
        """Return the catalogue definitions in presentation order."""
        return {
            "Base": ScenarioConfig(
                type=ScenarioType.CPR,
                initial_value=8,
                seasonal_adjustments=DEFAULT_SEASONAL_ADJUSTMENTS,
            ),
            "High Prepay": ScenarioConfig(
                type=ScenarioType.CPR,
                ramps=(ScenarioRamp(10, 25, ramp_periods=12, hold_periods=24),),
                seasonal_adjustments={3: 1.3, 4: 1.4, 5: 1.4, 6: 1.5, 7: 1.4, 8: 1.3, 9: 1.2},
            ),
            "High Default": ScenarioConfig(
                type=ScenarioType.CDR,
                ramps=(ScenarioRamp(1, 5, ramp_periods=12, hold_periods=24),),
                shock=ScenarioShock(timing=36, magnitude=2, duration=6),
            ),
            "High Severity": ScenarioConfig(
                type=ScenarioType.LOSS_SEVERITY,
                initial_value=35,
                ramps=(ScenarioRamp(35, 60, ramp_periods=18),),
            ),
            "Combined Stress": ScenarioConfig(
                type=ScenarioType.CDR,
                ramps=(ScenarioRamp(2, 8, ramp_periods=12, hold_periods=18),),
                shock=ScenarioShock(timing=24, magnitude=3, duration=6),
                conditional_logic="if period > 36 and value > 5 then value = value * 0.9",
            ),
            "Fast Recovery": ScenarioConfig(
                type=ScenarioType.CDR,
                ramps=(
                    ScenarioRamp(5, 8, ramp_periods=6, hold_periods=6),
                    ScenarioRamp(8, 1, ramp_periods=12, hold_periods=24),
                ),
            ),
            "Slow Recovery": ScenarioConfig(
                type=ScenarioType.CDR,
                ramps=(
                    ScenarioRamp(5, 8, ramp_periods=6, hold_periods=12),
                    ScenarioRamp(8, 2, ramp_periods=24, hold_periods=12),
                ),
                conditional_logic="if period > 48 then value = Math.max(1, value)",
            ),
            "Rising Rates": ScenarioConfig(
                type=ScenarioType.INTEREST_RATE,
                initial_value=3,
                ramps=(ScenarioRamp(3, 6, ramp_periods=24, hold_periods=12),),
                shock=ScenarioShock(timing=30, magnitude=1, duration=3),
            ),
            "Falling Rates": ScenarioConfig(
                type=ScenarioType.INTEREST_RATE,
                initial_value=5,
                ramps=(ScenarioRamp(5, 2, ramp_periods=18, hold_periods=12),),
                shock=ScenarioShock(timing=24, magnitude=-0.5, duration=3),
            ),
        }

    def generate_standard_scenarios(self) -> Dict[str, List[float]]:
        """Generate every catalogue vector, keyed by scenario name."""
        expressions = ExpressionEngine()
        scenarios = {
            name: ScenarioEngine(config, self.horizon, expressions).generate_vector()
            for name, config in self.standard_configs().items()
        }
        logger.info(f"Generated {len(scenarios)} standard scenarios over {self.horizon} periods")
        return scenarios
