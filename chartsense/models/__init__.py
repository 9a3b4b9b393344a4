"""
chartsense — Pydantic Models

Shared schemas for the scoring pipeline. The indicator cache, the trend engine
and the signal engine exchange these; pattern results are plain dataclasses
owned by the pattern engine.
"""

from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Any, NamedTuple, Optional

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, model_validator


# ──────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────

class TimeFrame(str, Enum):
    """Supported candle timeframes."""
    M1 = "1m"
    M3 = "3m"
    M5 = "5m"
    M15 = "15m"
    M30 = "30m"
    H1 = "1h"
    H2 = "2h"
    H4 = "4h"
    H6 = "6h"
    H12 = "12h"
    D1 = "1d"
    W1 = "1w"


class Trend(str, Enum):
    """Trend label, also used as pattern bias."""
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class Alignment(str, Enum):
    """How an asset's trend relates to the reference asset's trend."""
    ALIGNED = "ALIGNED"
    AGAINST = "AGAINST"
    NEUTRAL = "NEUTRAL"


class VolatilityLevel(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"


# ──────────────────────────────────────────────
# Market Data Models
# ──────────────────────────────────────────────

class OHLCV(BaseModel):
    """Single OHLCV bar."""
    timestamp: Optional[datetime] = None
    open: float
    high: float
    low: float
    close: float
    volume: float = 1.0


class OHLCVSeries(BaseModel):
    """Parallel OHLCV arrays in ascending time order (index -1 is the latest bar).

    A missing volume array is replaced by ones so volume-confirmed rules can
    still run. OHLC consistency is not enforced here; consumers validate the
    slice they actually use.
    """
    open: list[float] = []
    high: list[float] = []
    low: list[float] = []
    close: list[float] = []
    volume: Optional[list[float]] = None

    @model_validator(mode="after")
    def _fill_volume(self) -> "OHLCVSeries":
        if self.volume is None or len(self.volume) != len(self.close):
            self.volume = [1.0] * len(self.close)
        return self

    @classmethod
    def from_bars(cls, bars: list[OHLCV]) -> "OHLCVSeries":
        return cls(
            open=[b.open for b in bars],
            high=[b.high for b in bars],
            low=[b.low for b in bars],
            close=[b.close for b in bars],
            volume=[b.volume for b in bars],
        )

    def __len__(self) -> int:
        return len(self.close)

    @property
    def last_close(self) -> Optional[float]:
        return self.close[-1] if self.close else None

    def tail(self, n: int) -> "OHLCVSeries":
        """Trailing slice of the last ``n`` bars."""
        return OHLCVSeries(
            open=self.open[-n:],
            high=self.high[-n:],
            low=self.low[-n:],
            close=self.close[-n:],
            volume=list(self.volume or [])[-n:],
        )

    def to_frame(self) -> pd.DataFrame:
        """Convert to a DataFrame for the `ta` indicator classes."""
        return pd.DataFrame({
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        })


# ──────────────────────────────────────────────
# Indicator Models
# ──────────────────────────────────────────────

def _first(*values: Any) -> Any:
    for v in values:
        if v is not None:
            return v
    return None


class ParamSet(BaseModel):
    """Indicator periods used for one (symbol, timeframe) computation.

    Legacy optimizer payloads arrive in several shapes (flat, nested by
    indicator, volatility as a number or as ``{value, level}``); they are all
    normalized here so nothing downstream branches on shape.
    """
    model_config = ConfigDict(frozen=True)

    rsi_period: int = Field(default=10, ge=2)
    macd_fast: int = Field(default=10, ge=2)
    macd_slow: int = Field(default=22, ge=3)
    macd_signal: int = Field(default=7, ge=2)
    ma_short: int = Field(default=14, ge=2)
    ma_long: int = Field(default=180, ge=2)
    volatility: float = 1.3
    volatility_level: VolatilityLevel = VolatilityLevel.NORMAL

    @model_validator(mode="before")
    @classmethod
    def _normalize_shape(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)

        rsi = data.pop("RSI", None)
        if isinstance(rsi, dict):
            data.setdefault("rsi_period", rsi.get("period"))
        macd = data.pop("MACD", None)
        if isinstance(macd, dict):
            data.setdefault("macd_fast", _first(macd.get("fastPeriod"), macd.get("fast")))
            data.setdefault("macd_slow", _first(macd.get("slowPeriod"), macd.get("slow")))
            data.setdefault("macd_signal", _first(macd.get("signalPeriod"), macd.get("signal")))
        ma = data.pop("MA", None)
        if isinstance(ma, dict):
            data.setdefault("ma_short", _first(ma.get("shortPeriod"), ma.get("short")))
            data.setdefault("ma_long", _first(ma.get("longPeriod"), ma.get("long")))

        vol = data.pop("VOLATILITY", None)
        if vol is not None and "volatility" not in data:
            data["volatility"] = vol
        vol = data.get("volatility")
        if isinstance(vol, dict):
            data["volatility"] = vol.get("value", 1.3)
            if vol.get("level") is not None:
                data.setdefault("volatility_level", str(vol["level"]).upper())

        # Drop keys that were present but empty so field defaults apply
        return {k: v for k, v in data.items() if v is not None}

    @model_validator(mode="after")
    def _check_periods(self) -> "ParamSet":
        if self.macd_slow <= self.macd_fast:
            raise ValueError("macd_slow must be greater than macd_fast")
        if not math.isfinite(self.volatility):
            raise ValueError("volatility must be finite")
        return self

    @classmethod
    def coerce(cls, value: Any) -> Optional["ParamSet"]:
        """Accept a ParamSet, any supported mapping shape, or None."""
        if value is None or isinstance(value, ParamSet):
            return value
        if isinstance(value, BaseModel):
            value = value.model_dump()
        return cls.model_validate(value)


class MACDValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    macd: float
    signal: float
    histogram: float


class IndicatorSet(BaseModel):
    """Last computed indicators for one cache entry. Replaced, never mutated."""
    model_config = ConfigDict(frozen=True)

    rsi: Optional[float] = None
    macd: Optional[MACDValue] = None
    ma_short: Optional[float] = None
    ma_long: Optional[float] = None
    ma_long_prev: Optional[float] = None
    volatility: float = 1.3
    params: ParamSet = Field(default_factory=ParamSet)


class Fingerprint(NamedTuple):
    """Cheap coherency check standing in for a full series comparison."""
    length: int
    last_close: float

    @classmethod
    def of(cls, series: OHLCVSeries) -> "Fingerprint":
        return cls(len(series.close), float(series.close[-1]))


class CacheEntry(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    indicators: IndicatorSet
    computed_at: float
    fingerprint: Fingerprint
    generation: int = 0


# ──────────────────────────────────────────────
# Scoring Models
# ──────────────────────────────────────────────

class TrendScore(BaseModel):
    """Trend consensus and de-saturated strength for one series."""
    trend: Trend = Trend.NEUTRAL
    strength: int = Field(default=50, ge=0, le=100)
    bull_votes: int = 0
    bear_votes: int = 0
    price_vs_ma_pct: Optional[float] = None
    caps: list[str] = []


class CorrelationResult(BaseModel):
    """Signal adjustment from the reference asset. Derived fresh, never cached."""
    reference_trend: Trend = Trend.NEUTRAL
    reference_strength: float = 0.0
    alignment: Alignment = Alignment.NEUTRAL
    bonus: int = 0
    penalty: int = 0
    price_correlation: float = Field(default=0.0, ge=-1.0, le=1.0)
    confidence: int = 50
    recommendation: str = ""


class ReferenceTrend(BaseModel):
    """Trend snapshot of the reference asset (e.g. BTC/USDT)."""
    symbol: str
    timeframe: str
    trend: Trend = Trend.NEUTRAL
    strength: int = 0
    price: float = 0.0
    cached: bool = False


CacheKey = tuple[str, str]


def cache_key(symbol: str, timeframe: Any) -> CacheKey:
    """Normalize (symbol, timeframe) into the key shared by cache and optimizer."""
    tf = getattr(timeframe, "value", timeframe)
    return (str(symbol), str(tf))
