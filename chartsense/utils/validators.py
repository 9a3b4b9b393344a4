"""
chartsense — Input Validators

Validation helpers for symbols, timeframes and OHLC windows. ``validate_*``
raise ValueError on invalid input; ``check_ohlc_window`` reports instead of
raising so the pattern engine can fail soft.
"""

from __future__ import annotations

import math
import re
from typing import Optional, Sequence

from chartsense.models import OHLCVSeries, TimeFrame

# Plain tickers (AAPL, BRK.B) or exchange pairs (BTC/USDT, 1000PEPE/USDT)
_SYMBOL_RE = re.compile(r"^[A-Z0-9]{1,12}([./][A-Z0-9]{1,10})?$")

_TIMEFRAME_ALIASES = {
    "1wk": "1w",
    "60m": "1h",
    "24h": "1d",
}


def validate_symbol(raw: str) -> str:
    """Clean and validate a market symbol.

    >>> validate_symbol(' btc/usdt ')
    'BTC/USDT'
    """
    symbol = raw.strip().upper()
    if not symbol:
        raise ValueError("Symbol cannot be empty")
    if not _SYMBOL_RE.match(symbol):
        raise ValueError(
            f"Invalid symbol '{symbol}'. Expected a ticker (AAPL, BRK.B) "
            f"or a BASE/QUOTE pair (BTC/USDT)"
        )
    return symbol


def validate_timeframe(raw: str | TimeFrame) -> str:
    """Normalize a timeframe string to a :class:`TimeFrame` value.

    >>> validate_timeframe('1WK')
    '1w'
    """
    if isinstance(raw, TimeFrame):
        return raw.value
    tf = raw.strip().lower()
    tf = _TIMEFRAME_ALIASES.get(tf, tf)
    if tf not in {t.value for t in TimeFrame}:
        raise ValueError(f"Unsupported timeframe '{raw}'")
    return tf


def is_valid_candle(o: float, h: float, l: float, c: float) -> bool:
    """Finite, positive and OHLC-consistent bar."""
    values = (o, h, l, c)
    if any(not isinstance(v, (int, float)) or not math.isfinite(v) or v <= 0 for v in values):
        return False
    return h >= l and h >= max(o, c) and l <= min(o, c)


def _all_positive_finite(values: Sequence[float]) -> int:
    """Count of invalid entries."""
    return sum(
        1 for v in values
        if not isinstance(v, (int, float)) or not math.isfinite(v) or v <= 0
    )


def check_ohlc_window(
    series: Optional[OHLCVSeries],
    min_length: int,
    sample: int = 5,
) -> tuple[bool, str]:
    """Check the pattern-detection preconditions for an OHLC window.

    All four arrays must be present with at least ``min_length`` values, every
    value finite and positive, and the first/last ``sample`` bars consistent.

    Returns:
        ``(ok, reason)``.
    """
    if series is None:
        return False, "no data"

    arrays = {
        "open": series.open,
        "high": series.high,
        "low": series.low,
        "close": series.close,
    }
    for name, values in arrays.items():
        if values is None:
            return False, f"{name} missing"
        if len(values) < min_length:
            return False, f"{name} has {len(values)} values (minimum {min_length})"
        bad = _all_positive_finite(values)
        if bad:
            return False, f"{name} has {bad} invalid values"

    n = len(series.close)
    if any(len(v) != n for v in arrays.values()):
        return False, "OHLC arrays differ in length"

    indices = sorted(set(range(min(sample, n))) | set(range(max(0, n - sample), n)))
    for i in indices:
        if not is_valid_candle(series.open[i], series.high[i], series.low[i], series.close[i]):
            return False, f"inconsistent OHLC at index {i}"

    return True, "ok"
