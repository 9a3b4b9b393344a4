"""
chartsense — Error Taxonomy

Engines raise these internally; every public boundary (``get_indicators``,
``detect``, ``score_trend``, ``analyze``) converts them into ``None`` fields or
neutral results instead of letting them reach the caller.
"""

from __future__ import annotations


class ChartsenseError(Exception):
    """Base class for all chartsense errors."""


class InsufficientDataError(ChartsenseError):
    """Series is shorter than a computation requires."""

    def __init__(self, what: str, required: int, available: int):
        self.what = what
        self.required = required
        self.available = available
        super().__init__(
            f"{what} needs {required} values, got {available}"
        )


class InvalidValueError(ChartsenseError):
    """Non-finite, non-positive or implausible numeric input/output."""


class OptimizationError(ChartsenseError):
    """The parameter optimizer failed to produce a usable ParamSet."""


class OptimizationTimeoutError(OptimizationError):
    """The parameter optimizer did not finish within its time budget."""

    def __init__(self, key: str, timeout: float):
        self.key = key
        self.timeout = timeout
        super().__init__(f"Optimization for '{key}' exceeded {timeout:.1f}s")
