"""
chartsense — Shared Formatters

Human-readable formatting for prices, percentages and signed adjustments.
Used by analysis summaries and correlation recommendations.
"""

from __future__ import annotations

import math
from typing import Optional


def _missing(value: Optional[float]) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def format_pct(value: Optional[float], decimals: int = 2, show_sign: bool = True) -> str:
    """Percentage with a leading ``+`` on gains unless ``show_sign`` is off.

    >>> format_pct(12.345)
    '+12.35%'
    >>> format_pct(-3.1, decimals=1)
    '-3.1%'
    """
    if _missing(value):
        return "N/A"
    sign = "+" if show_sign and value > 0 else ""
    return f"{value:{sign}.{decimals}f}%"


def format_price(value: Optional[float], decimals: Optional[int] = None) -> str:
    """Format a price, widening precision for sub-dollar assets.

    >>> format_price(43125.5)
    '43,125.50'
    >>> format_price(0.000123)
    '0.000123'
    """
    if _missing(value):
        return "N/A"
    if decimals is None:
        decimals = 2 if abs(value) >= 1 else 6
    return f"{value:,.{decimals}f}"


def format_signed(value: float | int) -> str:
    """Signed integer adjustment, e.g. ``+24`` / ``-8`` / ``0``.

    >>> format_signed(24)
    '+24'
    """
    value = int(value)
    return f"+{value}" if value > 0 else str(value)
