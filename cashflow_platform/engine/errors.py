"""
Engine Exceptions
=================

Exception taxonomy shared by every engine in :mod:`cashflow_platform.engine`.

- :class:`ConfigurationError`: invalid or inconsistent construction input.
  Always raised at construction time, never coerced.
- :class:`NotFoundError`: unknown curve, index, forward-rate key or
  scenario name.
- :class:`UnsupportedFeatureError`: a modelling path that has no
  implementation and no defensible placeholder (for example PSA prepayment
  units).
- :class:`IterationLimitError`: a projection loop hit its hard ceiling.
- :class:`EvaluationError`: a conditional-override expression could not be
  parsed or evaluated.

Engines never retry or self-recover; all of these propagate to the caller.

Example
-------
>>> from cashflow_platform.engine.errors import ConfigurationError
>>> try:
...     TimingEngine(bad_config)
... except ConfigurationError as exc:
...     for field, message in exc.errors:
...         print(field, message)
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple


class CashflowPlatformError(Exception):
    """
    Base exception for all engine failures.

    Callers can catch every engine-specific error with a single handler.
    """

    pass


class ConfigurationError(CashflowPlatformError, ValueError):
    """
    Raised when construction input violates an invariant.

    Validators collect every violation before raising, so ``errors`` holds
    all of them as ``(field, message)`` pairs.

    Parameters
    ----------
    message : str
        Summary message.
    errors : sequence of (str, str), optional
        Individual violations. Defaults to a single ``("", message)`` entry.
    """

    def __init__(
        self, message: str, errors: Optional[Sequence[Tuple[str, str]]] = None
    ) -> None:
        super().__init__(message)
        self.errors: List[Tuple[str, str]] = list(errors) if errors else [("", message)]

    @classmethod
    def from_errors(cls, prefix: str, errors: Sequence[Tuple[str, str]]) -> "ConfigurationError":
        """Build a single error whose message lists every violation."""
        detail = "; ".join(f"{field}: {msg}" if field else msg for field, msg in errors)
        return cls(f"{prefix}: {detail}", errors)


class NotFoundError(CashflowPlatformError, LookupError):
    """Raised when a named curve, index, rate series or scenario is unknown."""

    pass


class UnsupportedFeatureError(CashflowPlatformError, NotImplementedError):
    """Raised when a requested modelling path is not implemented."""

    pass


class IterationLimitError(CashflowPlatformError, RuntimeError):
    """Raised when a projection exceeds its configured period ceiling."""

    pass


class EvaluationError(CashflowPlatformError):
    """
    Raised when a conditional-override expression cannot be evaluated.

    Wraps parse failures, disallowed syntax and arithmetic faults with the
    offending expression in the message.
    """

    pass
