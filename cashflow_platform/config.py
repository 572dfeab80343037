"""
Cashflow Platform Configuration
===============================

Runtime settings read once from ``CFP_``-prefixed environment variables.
Nothing is read from files; an unset or malformed variable leaves the
built-in default in place.

Environment Variables
---------------------
CFP_API_HOST, CFP_API_PORT, CFP_API_RELOAD
    Bind address, port and auto-reload flag for ``cashflow-api``.
CFP_LOG_LEVEL, CFP_LOG_FORMAT
    Root logger level name and record format.
CFP_MAX_CASHFLOW_PERIODS : int
    Ceiling on the periods a single projection may generate (default 1200).
CFP_DEFAULT_SCENARIO_HORIZON : int
    Vector length used when a scenario request omits one (default 360).
CFP_DEFAULT_SEVERITY, CFP_DEFAULT_RECOVERY_LAG
    Loss severity (percent) and recovery lag (periods) of a bare
    ``ScenarioAssumptions``.
CFP_PRICING_EPSILON, CFP_BASIS_POINT
    Yield bump for finite-difference durations and the bump behind DV01.

Example
-------
::

    export CFP_MAX_CASHFLOW_PERIODS=480
    export CFP_LOG_LEVEL=DEBUG
    cashflow-api

    from cashflow_platform.config import settings
    settings.max_cashflow_periods
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any, Dict

_ENV_PREFIX = "CFP_"
_TRUE_VALUES = ("true", "1", "yes", "on")


def _get_env(key: str, default: Any, value_type: type = str) -> Any:
    """
    Read ``CFP_<KEY>`` and coerce it to ``value_type``.

    Booleans accept true/1/yes/on (case-insensitive); anything else is
    False. A value that fails int/float coercion yields ``default``.
    """
    raw = os.environ.get(f"{_ENV_PREFIX}{key.upper()}")
    if raw is None:
        return default
    if value_type is bool:
        return raw.strip().lower() in _TRUE_VALUES
    try:
        return value_type(raw)
    except (ValueError, TypeError):
        return default


class Settings:
    """
    Process-wide settings.

    Attributes are plain values resolved at construction, so a new
    ``Settings()`` picks up environment changes while the cached
    :data:`settings` instance does not.
    """

    def __init__(self) -> None:
        # Service
        self.api_host: str = _get_env("API_HOST", "127.0.0.1", str)
        self.api_port: int = _get_env("API_PORT", 8000, int)
        self.api_reload: bool = _get_env("API_RELOAD", False, bool)

        # Logging
        self.log_level: str = _get_env("LOG_LEVEL", "INFO", str)
        self.log_format: str = _get_env(
            "LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s", str
        )

        # Projection
        self.max_cashflow_periods: int = _get_env("MAX_CASHFLOW_PERIODS", 1200, int)
        self.default_scenario_horizon: int = _get_env("DEFAULT_SCENARIO_HORIZON", 360, int)
        self.default_severity: float = _get_env("DEFAULT_SEVERITY", 35.0, float)
        self.default_recovery_lag: int = _get_env("DEFAULT_RECOVERY_LAG", 12, int)

        # Pricing
        self.pricing_epsilon: float = _get_env("PRICING_EPSILON", 1e-4, float)
        self.basis_point: float = _get_env("BASIS_POINT", 1e-4, float)

    @property
    def log_level_int(self) -> int:
        return getattr(logging, self.log_level.upper(), logging.INFO)

    def configure_logging(self) -> None:
        """
        Install the root handler.

        Engine modules only create ``CFP.*`` loggers; the service calls this
        once at import.
        """
        logging.basicConfig(level=self.log_level_int, format=self.log_format)
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    def as_dict(self) -> Dict[str, Any]:
        """Engine-facing settings, as reported by ``GET /health``."""
        return {
            "log_level": self.log_level,
            "max_cashflow_periods": self.max_cashflow_periods,
            "default_scenario_horizon": self.default_scenario_horizon,
            "default_severity": self.default_severity,
            "default_recovery_lag": self.default_recovery_lag,
            "pricing_epsilon": self.pricing_epsilon,
            "basis_point": self.basis_point,
        }


@lru_cache()
def get_settings() -> Settings:
    """Return the shared :class:`Settings` instance."""
    return Settings()


settings = get_settings()
