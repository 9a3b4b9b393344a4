"""
chartsense — Trend Consensus Engine

Turns an IndicatorSet into a trend label and a bounded 0–100 strength, then
adjusts a dependent asset's signal by its alignment and return correlation
with a reference asset.

Strength is a weighted sum around 50 followed by context-sensitive caps
(de-saturation), so ordinary sideways action never reads as 0 or 100:

  near the long MA (±1.5%)      → cap 55
  away from the long MA         → floor 60, trend follows price
  consolidation (low ATR+slope) → cap 70
  1d / 1w timeframes            → ceiling 80 (95 on extreme confluence)
"""

from __future__ import annotations

import math
from typing import Any, Optional

import structlog

from chartsense.config import CorrelationConfig, TrendConfig, get_settings
from chartsense.engines.indicator_engine import IndicatorLibrary
from chartsense.errors import ChartsenseError
from chartsense.models import (
    Alignment,
    CorrelationResult,
    IndicatorSet,
    OHLCVSeries,
    Trend,
    TrendScore,
)
from chartsense.utils.formatters import format_signed
from chartsense.utils.stats import clamp, pct_returns, pearson_correlation, round_half_up

log = structlog.get_logger(__name__)


class TrendEngine:
    """Trend consensus, strength scoring and cross-asset correlation adjustment.

    Usage:
        engine = TrendEngine()
        score = engine.score_trend(indicators, series, "4h")
        corr = engine.adjust_for_correlation(score.trend, Trend.BULLISH, 80, series, btc)
    """

    def __init__(
        self,
        config: Optional[TrendConfig] = None,
        correlation: Optional[CorrelationConfig] = None,
        library: Optional[IndicatorLibrary] = None,
    ):
        settings = None
        if config is None or correlation is None:
            settings = get_settings()
        self.config = config or settings.trend
        self.correlation = correlation or settings.correlation
        self.library = library or IndicatorLibrary()

    # ──────────────────────────────────────────
    # Trend Consensus
    # ──────────────────────────────────────────

    def score_trend(
        self,
        indicators: Optional[IndicatorSet],
        series: Optional[OHLCVSeries],
        timeframe: Any,
    ) -> TrendScore:
        """Trend label and de-saturated strength. Never raises."""
        if indicators is None or series is None or not series.close:
            return TrendScore()
        try:
            return self._score(indicators, series, str(getattr(timeframe, "value", timeframe)))
        except (ChartsenseError, ValueError, ArithmeticError, IndexError) as exc:
            log.warning("trend.score_failed", error=str(exc))
            return TrendScore()

    def votes(self, indicators: IndicatorSet, price: float) -> tuple[int, int]:
        """Bullish and bearish votes from the four MA/MACD signals."""
        cfg = self.config
        bull = bear = 0
        ma_long, ma_short = indicators.ma_long, indicators.ma_short

        if ma_long is not None:
            if price > ma_long * (1 + cfg.price_ma_band):
                bull += 1
            elif price < ma_long * (1 - cfg.price_ma_band):
                bear += 1

        if ma_short is not None and ma_long is not None:
            if ma_short > ma_long:
                bull += 1
            elif ma_short < ma_long:
                bear += 1

        if ma_long is not None and indicators.ma_long_prev is not None:
            if ma_long > indicators.ma_long_prev:
                bull += 1
            elif ma_long < indicators.ma_long_prev:
                bear += 1

        if indicators.macd is not None:
            if indicators.macd.histogram > 0:
                bull += 1
            elif indicators.macd.histogram < 0:
                bear += 1

        return bull, bear

    def _score(self, ind: IndicatorSet, series: OHLCVSeries, timeframe: str) -> TrendScore:
        cfg = self.config
        price = float(series.close[-1])
        if not math.isfinite(price) or price <= 0:
            return TrendScore()

        bull, bear = self.votes(ind, price)
        high_tf = timeframe in cfg.high_timeframes
        caps: list[str] = []

        if (
            high_tf
            and ind.ma_long is not None
            and ind.ma_short is not None
            and price < ind.ma_long
            and ind.ma_short < ind.ma_long
        ):
            trend = Trend.BEARISH
            caps.append("high_timeframe_downtrend")
        elif bull - bear >= cfg.min_vote_margin:
            trend = Trend.BULLISH
        elif bear - bull >= cfg.min_vote_margin:
            trend = Trend.BEARISH
        else:
            trend = Trend.NEUTRAL

        # ── Weighted strength ──
        directional = self._directional_points(ind, price)
        if trend is Trend.BULLISH:
            sign = 1
        elif trend is Trend.BEARISH:
            sign = -1
        else:
            sign = 1 if directional >= 0 else -1
        strength = 50 + sign * directional + self._volume_points(series)
        strength = clamp(strength, 0, 100)

        # ── De-saturation ──
        price_vs_ma = None
        if ind.ma_long is not None and ind.ma_long > 0:
            price_vs_ma = (price - ind.ma_long) / ind.ma_long * 100
            if abs(price_vs_ma) <= cfg.near_ma_pct:
                if strength > cfg.near_ma_cap:
                    caps.append("near_ma")
                strength = min(strength, cfg.near_ma_cap)
            else:
                strength = max(strength, cfg.away_from_ma_floor)
                trend = Trend.BULLISH if price_vs_ma > 0 else Trend.BEARISH
                caps.append("away_from_ma")

        if self._consolidating(series) and strength > cfg.consolidation_cap:
            strength = cfg.consolidation_cap
            caps.append("consolidation")

        if high_tf:
            ceiling = cfg.extreme_ceiling if self._extreme_confluence(ind, price, price_vs_ma) else cfg.high_timeframe_ceiling
            if strength > ceiling:
                strength = ceiling
                caps.append(f"high_timeframe_ceiling_{ceiling}")

        score = TrendScore(
            trend=trend,
            strength=int(clamp(round_half_up(strength), 0, 100)),
            bull_votes=bull,
            bear_votes=bear,
            price_vs_ma_pct=round(price_vs_ma, 4) if price_vs_ma is not None else None,
            caps=caps,
        )
        log.debug(
            "trend.scored",
            timeframe=timeframe,
            trend=score.trend.value,
            strength=score.strength,
            votes=f"{bull}/{bear}",
            caps=caps,
        )
        return score

    def _directional_points(self, ind: IndicatorSet, price: float) -> float:
        """Bullish-positive sum of the RSI, MACD and MA-spread contributions."""
        cfg = self.config
        points = 0.0

        if ind.rsi is not None:
            if ind.rsi > cfg.rsi_extreme_high:
                points += cfg.rsi_extreme_points
            elif ind.rsi > cfg.rsi_moderate_high:
                points += cfg.rsi_moderate_points
            elif ind.rsi < cfg.rsi_extreme_low:
                points -= cfg.rsi_extreme_points
            elif ind.rsi < cfg.rsi_moderate_low:
                points -= cfg.rsi_moderate_points

        if ind.macd is not None:
            diff = (ind.macd.macd - ind.macd.signal) / price * cfg.macd_scale
            points += clamp(diff, -cfg.macd_cap, cfg.macd_cap)

        if ind.ma_short is not None and ind.ma_long is not None and ind.ma_long > 0:
            spread = (ind.ma_short - ind.ma_long) / ind.ma_long * 100
            if spread > cfg.ma_strong_spread_pct:
                points += cfg.ma_strong_points
            elif spread > cfg.ma_moderate_spread_pct:
                points += cfg.ma_moderate_points
            elif spread < -cfg.ma_strong_spread_pct:
                points -= cfg.ma_strong_points
            elif spread < -cfg.ma_moderate_spread_pct:
                points -= cfg.ma_moderate_points

        return points

    def _volume_points(self, series: OHLCVSeries) -> float:
        cfg = self.config
        volume = series.volume or []
        if len(volume) < cfg.volume_lookback:
            return 0.0
        recent = volume[-cfg.volume_lookback:]
        avg = sum(recent) / len(recent)
        if avg <= 0:
            return 0.0
        ratio = volume[-1] / avg
        if ratio >= cfg.volume_high_ratio:
            return cfg.volume_high_points
        if ratio < cfg.volume_low_ratio:
            return -cfg.volume_low_points
        return 0.0

    def _consolidating(self, series: OHLCVSeries) -> bool:
        """Sideways market: low ATR% and a small net move over the slope window."""
        cfg = self.config
        closes = series.close
        if len(closes) < max(cfg.consolidation_slope_bars, cfg.consolidation_atr_bars + 1):
            return False
        try:
            atr_pct = self.library.atr_percent(series.high, series.low, closes, cfg.consolidation_atr_bars)
        except ChartsenseError as exc:
            log.debug("trend.atr_unavailable", error=str(exc))
            return False

        start = closes[-cfg.consolidation_slope_bars]
        if start <= 0:
            return False
        slope_pct = (closes[-1] - start) / start * 100
        return atr_pct < cfg.consolidation_atr_pct and abs(slope_pct) < cfg.consolidation_slope_pct

    def _extreme_confluence(self, ind: IndicatorSet, price: float, price_vs_ma: Optional[float]) -> bool:
        cfg = self.config
        if price_vs_ma is None or abs(price_vs_ma) <= cfg.extreme_price_vs_ma_pct:
            return False
        if ind.rsi is None or cfg.extreme_rsi_low <= ind.rsi <= cfg.extreme_rsi_high:
            return False
        if ind.macd is None:
            return False
        return abs(ind.macd.histogram) / price * 100 > cfg.extreme_histogram_pct

    # ──────────────────────────────────────────
    # Correlation Adjustment
    # ──────────────────────────────────────────

    def price_correlation(
        self,
        asset_series: Optional[OHLCVSeries],
        reference_series: Optional[OHLCVSeries],
    ) -> float:
        """Pearson correlation of recent returns; 0.0 when either side is missing."""
        if asset_series is None or reference_series is None:
            return 0.0
        n = self.correlation.lookback
        log_returns = self.correlation.use_log_returns
        asset = pct_returns(asset_series.close[-n:], log=log_returns)
        reference = pct_returns(reference_series.close[-n:], log=log_returns)
        return pearson_correlation(asset, reference)

    def adjust_for_correlation(
        self,
        asset_trend: Trend,
        reference_trend: Trend,
        reference_strength: float,
        asset_series: Optional[OHLCVSeries] = None,
        reference_series: Optional[OHLCVSeries] = None,
        correlation: Optional[float] = None,
    ) -> CorrelationResult:
        """Bonus/penalty for trading with or against the reference asset.

        Args:
            correlation: Precomputed return correlation; computed from the two
                series when omitted.
        """
        cfg = self.correlation
        asset_trend, reference_trend = Trend(asset_trend), Trend(reference_trend)
        if correlation is None:
            correlation = self.price_correlation(asset_series, reference_series)
        correlation = clamp(correlation, -1.0, 1.0) if math.isfinite(correlation) else 0.0

        confidence = int(clamp(
            round_half_up(50 + (reference_strength - 50) * 0.5 + abs(correlation) * 30),
            cfg.confidence_floor,
            cfg.confidence_ceiling,
        ))
        result = CorrelationResult(
            reference_trend=reference_trend,
            reference_strength=reference_strength,
            price_correlation=correlation,
            confidence=confidence,
        )

        if reference_strength < cfg.min_reference_strength:
            result.recommendation = "Reference trend too weak; asset technicals prevail"
            return result
        if asset_trend is Trend.NEUTRAL or reference_trend is Trend.NEUTRAL:
            result.recommendation = "Neutral alignment; asset technicals prevail"
            return result

        strong = reference_strength > cfg.strong_strength
        moderate = reference_strength > cfg.moderate_strength
        scale = 0.5 + 0.5 * min(1.0, abs(correlation))
        side = "buying" if asset_trend is Trend.BULLISH else "selling"

        if asset_trend is reference_trend:
            base = cfg.aligned_bonus[0] if strong else cfg.aligned_bonus[1] if moderate else cfg.aligned_bonus[2]
            result.alignment = Alignment.ALIGNED
            result.bonus = round_half_up(base * scale)
            result.recommendation = f"{'Strong ' if strong else ''}{reference_trend.value.lower()} reference favors {side}"
        else:
            result.alignment = Alignment.AGAINST
            if strong or moderate:
                base = cfg.against_penalty[0] if strong else cfg.against_penalty[1]
                result.penalty = round_half_up(base * scale)
                result.recommendation = f"{side.capitalize()} against a {reference_trend.value.lower()} reference is risky"
            else:
                result.bonus = round_half_up(cfg.weak_against_bonus * scale)
                result.recommendation = "Weak reference trend; independent move tolerated"

        log.debug(
            "trend.correlation_adjusted",
            alignment=result.alignment.value,
            bonus=result.bonus,
            penalty=result.penalty,
            correlation=round(correlation, 3),
        )
        return result


def summarize_correlation(symbol: str, result: Optional[CorrelationResult]) -> str:
    """One-line log summary of a correlation adjustment."""
    if result is None or result.alignment is Alignment.NEUTRAL:
        return f"{symbol}: neutral correlation with reference"
    impact = result.bonus + result.penalty
    direction = "FAVORS" if impact > 0 else "PENALIZES" if impact < 0 else "NEUTRAL"
    return f"{symbol}: {direction} signal ({format_signed(impact)}) - {result.recommendation}"


# Name used where the engine is thought of as a consensus scorer
TrendConsensusScorer = TrendEngine
