"""
chartsense — Indicator Library

Thin, stateless wrapper over the `ta` library for the indicators the cache
needs: RSI, MACD, SMA (current and previous bar) and ATR as a percentage of
price. Each call either returns finite values or raises:

  InsufficientDataError: series shorter than the period requires
  InvalidValueError:     non-finite inputs/outputs or undefined results

so that a computed zero is never confused with "could not compute".
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np
import pandas as pd
from ta.momentum import RSIIndicator
from ta.trend import MACD, SMAIndicator
from ta.volatility import AverageTrueRange

from chartsense.errors import InsufficientDataError, InvalidValueError
from chartsense.models import MACDValue


def _to_series(values: Sequence[float], name: str) -> pd.Series:
    arr = np.asarray(values, dtype=float)
    if arr.size and not np.all(np.isfinite(arr)):
        raise InvalidValueError(f"{name} contains non-finite values")
    return pd.Series(arr)


def _last_finite(series: pd.Series, what: str, offset: int = 1) -> float:
    value = float(series.iloc[-offset])
    if not math.isfinite(value):
        raise InvalidValueError(f"{what} produced a non-finite value")
    return value


class IndicatorLibrary:
    """Deterministic indicator math consumed by period parameters.

    Usage:
        lib = IndicatorLibrary()
        rsi = lib.rsi(closes, period=14)
        macd = lib.macd(closes, fast=12, slow=26, signal=9)
    """

    def rsi(self, values: Sequence[float], period: int) -> float:
        """Wilder RSI of the last bar."""
        if len(values) < period + 1:
            raise InsufficientDataError(f"RSI({period})", period + 1, len(values))
        close = _to_series(values, "close")

        # `ta` reports 100 when there are no losses at all, including a
        # perfectly flat series where RSI is undefined.
        if not np.any(np.diff(close.to_numpy()) != 0):
            raise InvalidValueError(f"RSI({period}) undefined for a flat series")

        return _last_finite(RSIIndicator(close, window=period).rsi(), f"RSI({period})")

    def macd(self, values: Sequence[float], fast: int, slow: int, signal: int) -> MACDValue:
        """MACD line, signal line and histogram of the last bar."""
        required = slow + signal - 1
        if len(values) < required:
            raise InsufficientDataError(f"MACD({fast},{slow},{signal})", required, len(values))
        close = _to_series(values, "close")

        macd = MACD(close, window_slow=slow, window_fast=fast, window_sign=signal)
        what = f"MACD({fast},{slow},{signal})"
        return MACDValue(
            macd=_last_finite(macd.macd(), what),
            signal=_last_finite(macd.macd_signal(), what),
            histogram=_last_finite(macd.macd_diff(), what),
        )

    def sma(self, values: Sequence[float], period: int, offset: int = 0) -> float:
        """Simple moving average ending ``offset`` bars before the last one."""
        required = period + offset
        if len(values) < required:
            raise InsufficientDataError(f"SMA({period})", required, len(values))
        close = _to_series(values, "close")
        return _last_finite(SMAIndicator(close, window=period).sma_indicator(), f"SMA({period})", offset + 1)

    def atr_percent(
        self,
        high: Sequence[float],
        low: Sequence[float],
        close: Sequence[float],
        period: int = 14,
    ) -> float:
        """Average true range of the last bar as a percentage of the last close."""
        n = len(close)
        if n < period + 1 or len(high) != n or len(low) != n:
            raise InsufficientDataError(f"ATR({period})", period + 1, n)
        h = _to_series(high, "high")
        l = _to_series(low, "low")
        c = _to_series(close, "close")

        atr = _last_finite(
            AverageTrueRange(h, l, c, window=period).average_true_range(),
            f"ATR({period})",
        )
        last = float(c.iloc[-1])
        if last <= 0:
            raise InvalidValueError("ATR% needs a positive last close")
        return atr / last * 100
