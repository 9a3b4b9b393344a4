"""
chartsense — Numeric Helpers

Small numpy routines shared by the pattern and trend engines: trendline
regression, single-bar returns, return volatility and Pearson correlation.
All helpers degrade to neutral values (0.0) on degenerate input.
"""

from __future__ import annotations

import math
from typing import NamedTuple, Sequence

import numpy as np


class Regression(NamedTuple):
    slope: float
    intercept: float
    r2: float


def linear_regression(values: Sequence[float]) -> Regression:
    """Ordinary least squares of ``values`` against their index.

    Returns ``(slope, intercept, r2)``; fewer than two points or a constant
    series yields ``r2 = 0``.
    """
    y = np.asarray(values, dtype=float)
    n = len(y)
    if n < 2 or not np.all(np.isfinite(y)):
        return Regression(0.0, 0.0, 0.0)

    x = np.arange(n, dtype=float)
    slope, intercept = np.polyfit(x, y, 1)

    ss_total = float(np.sum((y - y.mean()) ** 2))
    ss_res = float(np.sum((y - (slope * x + intercept)) ** 2))
    r2 = 1.0 - ss_res / ss_total if ss_total > 0 else 0.0
    return Regression(float(slope), float(intercept), r2)


def pct_returns(prices: Sequence[float], log: bool = False) -> list[float]:
    """Single-bar returns; non-positive previous prices yield NaN."""
    out: list[float] = []
    for prev, cur in zip(prices[:-1], prices[1:]):
        if prev is None or cur is None or prev <= 0:
            out.append(math.nan)
        elif log:
            out.append(math.log(cur / prev) if cur > 0 else math.nan)
        else:
            out.append((cur - prev) / prev)
    return out


def return_volatility(prices: Sequence[float]) -> float:
    """Population standard deviation of single-bar returns."""
    returns = np.asarray(pct_returns(prices), dtype=float)
    returns = returns[np.isfinite(returns)]
    if returns.size == 0:
        return 0.0
    return float(np.std(returns))


def pearson_correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """Pearson coefficient of two sequences aligned from their ends.

    Pairs with a non-finite member are dropped. Fewer than two remaining
    pairs or zero variance returns exactly ``0.0``; otherwise the result is
    clipped to ``[-1, 1]``.
    """
    n = min(len(x), len(y))
    if n == 0:
        return 0.0
    a = np.asarray(list(x)[-n:], dtype=float)
    b = np.asarray(list(y)[-n:], dtype=float)
    mask = np.isfinite(a) & np.isfinite(b)
    a, b = a[mask], b[mask]
    if a.size < 2:
        return 0.0

    da = a - a.mean()
    db = b - b.mean()
    denominator = math.sqrt(float(np.sum(da * da)) * float(np.sum(db * db)))
    if denominator == 0 or not math.isfinite(denominator):
        return 0.0
    r = float(np.sum(da * db)) / denominator
    return max(-1.0, min(1.0, r))


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
