"""
chartsense — Signal Engine

Orchestrates one scoring pass:

    series → IndicatorCache → TrendEngine ─┐
           → PatternEngine ────────────────┼→ SignalAnalysis
    reference series → ReferenceTrendTracker → correlation adjustment

The reference asset (BTC/USDT by default) is scored with the same cache and
trend engine and its trend is reused for 15 minutes.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

import structlog

from chartsense.cache import IndicatorCache, get_indicator_cache
from chartsense.config import ReferenceConfig, get_settings
from chartsense.engines.pattern_engine import PatternEngine, PatternScanResult
from chartsense.engines.trend_engine import TrendEngine, summarize_correlation
from chartsense.models import (
    CorrelationResult,
    Fingerprint,
    IndicatorSet,
    OHLCVSeries,
    ReferenceTrend,
    Trend,
    TrendScore,
)
from chartsense.observability import engine_metrics, trace_span
from chartsense.utils.formatters import format_pct, format_price
from chartsense.utils.stats import clamp
from chartsense.utils.validators import validate_symbol, validate_timeframe

log = structlog.get_logger(__name__)


class SeriesProvider(Protocol):
    """Exchange client collaborator."""

    async def get_ohlcv(self, symbol: str, timeframe: str, lookback: int) -> OHLCVSeries:
        ...


# ──────────────────────────────────────────────
# Reference Trend
# ──────────────────────────────────────────────

@dataclass
class _ReferenceEntry:
    trend: ReferenceTrend
    series: OHLCVSeries
    fetched_at: float


class ReferenceTrendTracker:
    """Trend/strength of the reference asset, cached per (symbol, timeframe)."""

    def __init__(
        self,
        cache: IndicatorCache,
        trend_engine: TrendEngine,
        provider: Optional[SeriesProvider] = None,
        config: Optional[ReferenceConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cache = cache
        self.trend_engine = trend_engine
        self.provider = provider
        self.config = config or get_settings().reference
        self._clock = clock
        self._entries: dict[tuple[str, str], _ReferenceEntry] = {}

    async def get(
        self,
        symbol: Optional[str] = None,
        timeframe: Optional[str] = None,
        series: Optional[OHLCVSeries] = None,
    ) -> ReferenceTrend:
        """Reference trend, fetched through the provider when no series is given.

        Insufficient data or a provider failure yields ``NEUTRAL`` with
        strength 0.
        """
        symbol = symbol or self.config.symbol
        timeframe = timeframe or self.config.timeframe
        key = (symbol, timeframe)

        entry = self._entries.get(key)
        if entry is not None and self._clock() - entry.fetched_at < self.config.ttl_seconds:
            if series is None or (series.close and Fingerprint.of(entry.series) == Fingerprint.of(series)):
                log.debug("reference.cache_hit", symbol=symbol, trend=entry.trend.trend.value)
                return entry.trend.model_copy(update={"cached": True})

        if series is None:
            series = await self._fetch(symbol, timeframe)
        if series is None or len(series) < self.config.min_bars:
            log.info(
                "reference.insufficient_data",
                symbol=symbol,
                bars=len(series) if series is not None else 0,
                required=self.config.min_bars,
            )
            return ReferenceTrend(symbol=symbol, timeframe=timeframe)

        indicators = await self.cache.get_indicators(symbol, timeframe, series)
        score = self.trend_engine.score_trend(indicators, series, timeframe)
        trend = ReferenceTrend(
            symbol=symbol,
            timeframe=timeframe,
            trend=score.trend,
            strength=score.strength,
            price=float(series.close[-1]),
        )
        self._entries[key] = _ReferenceEntry(trend=trend, series=series, fetched_at=self._clock())
        log.info("reference.updated", symbol=symbol, trend=trend.trend.value, strength=trend.strength)
        return trend

    def series_for(self, symbol: Optional[str] = None, timeframe: Optional[str] = None) -> Optional[OHLCVSeries]:
        entry = self._entries.get((symbol or self.config.symbol, timeframe or self.config.timeframe))
        return entry.series if entry is not None else None

    def clear(self) -> None:
        self._entries.clear()
        log.info("reference.cleared")

    async def _fetch(self, symbol: str, timeframe: str) -> Optional[OHLCVSeries]:
        if self.provider is None:
            return None
        try:
            return await self.provider.get_ohlcv(symbol, timeframe, self.config.lookback)
        except Exception as exc:
            log.warning("reference.fetch_failed", symbol=symbol, error=str(exc))
            return None


# ──────────────────────────────────────────────
# Analysis Result
# ──────────────────────────────────────────────

@dataclass
class SignalAnalysis:
    """Combined scoring output for one (symbol, timeframe)."""
    symbol: str
    timeframe: str
    indicators: Optional[IndicatorSet] = None
    trend: TrendScore = field(default_factory=TrendScore)
    patterns: PatternScanResult = field(default_factory=PatternScanResult.empty)
    correlation: Optional[CorrelationResult] = None
    reference: Optional[ReferenceTrend] = None
    adjusted_strength: int = 50
    price: Optional[float] = None

    @property
    def pattern_bias(self) -> Trend:
        return self.patterns.overall_bias

    def summary(self) -> str:
        line = (
            f"{self.symbol} {self.timeframe}: {self.trend.trend.value} "
            f"{self.trend.strength} → {self.adjusted_strength}, patterns {self.pattern_bias.value}"
        )
        if self.price is not None:
            line += f", price {format_price(self.price)}"
            if self.trend.price_vs_ma_pct is not None:
                line += f" ({format_pct(self.trend.price_vs_ma_pct)} vs MA)"
        if self.correlation is not None:
            line += f" | {summarize_correlation(self.symbol, self.correlation)}"
        return line

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "indicators": self.indicators.model_dump() if self.indicators else None,
            "trend": self.trend.model_dump(),
            "patterns": self.patterns.to_dict(),
            "pattern_bias": self.pattern_bias.value,
            "correlation": self.correlation.model_dump() if self.correlation else None,
            "reference": self.reference.model_dump() if self.reference else None,
            "adjusted_strength": self.adjusted_strength,
            "price": self.price,
        }


# ──────────────────────────────────────────────
# Engine
# ──────────────────────────────────────────────

class SignalEngine:
    """Indicator → trend/pattern → correlation pipeline.

    Usage:
        engine = SignalEngine(provider=exchange_client)
        analysis = await engine.analyze("ETH/USDT", "1h", series)
        analysis.adjusted_strength, analysis.patterns.candlesticks
    """

    def __init__(
        self,
        cache: Optional[IndicatorCache] = None,
        patterns: Optional[PatternEngine] = None,
        trend: Optional[TrendEngine] = None,
        reference: Optional[ReferenceTrendTracker] = None,
        reference_symbol: Optional[str] = None,
        provider: Optional[SeriesProvider] = None,
    ):
        self.cache = cache or get_indicator_cache()
        self.patterns = patterns or PatternEngine()
        self.trend = trend or TrendEngine()
        self.reference = reference or ReferenceTrendTracker(self.cache, self.trend, provider=provider)
        self.reference_symbol = reference_symbol or self.reference.config.symbol

    async def analyze(
        self,
        symbol: str,
        timeframe: Any,
        series: Optional[OHLCVSeries],
        reference_series: Optional[OHLCVSeries] = None,
    ) -> SignalAnalysis:
        """Score one series. Degrades to a neutral analysis instead of raising."""
        symbol = self._symbol(symbol)
        tf = self._timeframe(timeframe)
        start = time.perf_counter()
        success = True
        try:
            with trace_span("signal.analyze", symbol=symbol, timeframe=tf):
                return await self._analyze(symbol, tf, series, reference_series)
        except Exception as exc:
            success = False
            log.error("signal.analyze_failed", symbol=symbol, timeframe=tf, error=str(exc))
            return SignalAnalysis(symbol=symbol, timeframe=tf)
        finally:
            engine_metrics.record_call(
                "signal.analyze", (time.perf_counter() - start) * 1000, success=success
            )

    async def _analyze(
        self,
        symbol: str,
        timeframe: str,
        series: Optional[OHLCVSeries],
        reference_series: Optional[OHLCVSeries],
    ) -> SignalAnalysis:
        indicators = await self.cache.get_indicators(symbol, timeframe, series)
        score = self.trend.score_trend(indicators, series, timeframe)
        scan = self.patterns.detect(series)

        analysis = SignalAnalysis(
            symbol=symbol,
            timeframe=timeframe,
            indicators=indicators,
            trend=score,
            patterns=scan,
            adjusted_strength=score.strength,
            price=float(series.close[-1]) if series is not None and series.close else None,
        )

        if series is None or not series.close or symbol == self.reference_symbol:
            return analysis

        reference = await self.reference.get(self.reference_symbol, series=reference_series)
        ref_series = reference_series or self.reference.series_for(self.reference_symbol)
        correlation = self.trend.adjust_for_correlation(
            score.trend,
            reference.trend,
            reference.strength,
            series,
            ref_series,
        )
        analysis.reference = reference
        analysis.correlation = correlation
        analysis.adjusted_strength = int(clamp(
            score.strength + correlation.bonus + correlation.penalty, 0, 100
        ))
        log.info("signal.correlation", summary=summarize_correlation(symbol, correlation))
        return analysis

    @staticmethod
    def _timeframe(timeframe: Any) -> str:
        try:
            return validate_timeframe(timeframe)
        except (ValueError, AttributeError):
            log.warning("signal.unknown_timeframe", timeframe=str(timeframe))
            return str(timeframe)

    @staticmethod
    def _symbol(symbol: Any) -> str:
        try:
            return validate_symbol(symbol)
        except (ValueError, AttributeError):
            log.warning("signal.unknown_symbol", symbol=str(symbol))
            return str(symbol)
