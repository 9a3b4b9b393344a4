"""
chartsense — Trend Engine Tests

Tests for:
- Vote consensus and the high-timeframe downtrend override
- Strength weighting and de-saturation caps
- Correlation tiers, scaling, floors and neutral handling
"""

import math

import pytest

from chartsense.cache import IndicatorCache
from chartsense.config import CacheConfig, CorrelationConfig, TrendConfig
from chartsense.engines.trend_engine import TrendConsensusScorer, TrendEngine, summarize_correlation
from chartsense.models import Alignment, IndicatorSet, MACDValue, ParamSet, Trend

from conftest import flat, make_series, trending, wave


@pytest.fixture
def engine():
    return TrendEngine(TrendConfig(), CorrelationConfig())


def uptrend_to(price, n=61):
    start = price - 0.5 * (n - 1)
    return make_series([start + 0.5 * i for i in range(n)])


def bullish_set(rsi=75.0, ma_long=100.0, ma_short=105.0):
    return IndicatorSet(
        rsi=rsi,
        macd=MACDValue(macd=1.0, signal=0.5, histogram=0.5),
        ma_short=ma_short,
        ma_long=ma_long,
        ma_long_prev=ma_long - 1,
    )


# ════════════════════════════════════════════════
#  TREND CONSENSUS
# ════════════════════════════════════════════════


class TestTrendConsensus:

    def test_flat_series_is_capped_neutral(self, engine):
        cache = IndicatorCache(config=CacheConfig(optimizer_enabled=False))
        series = flat(200)
        indicators = cache.compute(series, ParamSet())
        score = engine.score_trend(indicators, series, "1h")
        assert score.trend is Trend.NEUTRAL
        assert score.strength <= 55

    def test_missing_inputs_neutral(self, engine):
        score = engine.score_trend(None, trending(30), "1h")
        assert score.trend is Trend.NEUTRAL
        assert score.strength == 50
        assert engine.score_trend(bullish_set(), None, "1h").strength == 50

    def test_strong_uptrend(self, engine):
        score = engine.score_trend(bullish_set(), uptrend_to(110.0), "4h")
        assert score.trend is Trend.BULLISH
        assert score.bull_votes == 4 and score.bear_votes == 0
        assert score.strength == 100
        assert "away_from_ma" in score.caps

    def test_high_timeframe_ceiling(self, engine):
        score = engine.score_trend(bullish_set(rsi=75.0), uptrend_to(110.0), "1d")
        assert score.strength == 80

    def test_extreme_confluence_relaxes_ceiling(self, engine):
        score = engine.score_trend(bullish_set(rsi=80.0), uptrend_to(110.0), "1w")
        assert score.strength == 95

    def test_high_timeframe_downtrend_override(self, engine):
        indicators = IndicatorSet(
            rsi=50.0,
            macd=MACDValue(macd=0.2, signal=0.1, histogram=0.1),
            ma_short=98.5,
            ma_long=100.0,
            ma_long_prev=99.0,
        )
        series = make_series([100.0] * 40 + [99.0])
        assert engine.score_trend(indicators, series, "4h").trend is Trend.NEUTRAL
        daily = engine.score_trend(indicators, series, "1d")
        assert daily.trend is Trend.BEARISH
        assert "high_timeframe_downtrend" in daily.caps

    def test_near_ma_cap(self, engine):
        score = engine.score_trend(bullish_set(ma_long=100.0), uptrend_to(101.0), "4h")
        assert score.strength <= 55
        assert "near_ma" in score.caps

    def test_away_from_ma_forces_price_direction(self, engine):
        # Bearish indicators but price well above the long MA
        indicators = IndicatorSet(
            rsi=35.0,
            macd=MACDValue(macd=-0.5, signal=0.0, histogram=-0.5),
            ma_short=99.0,
            ma_long=100.0,
            ma_long_prev=101.0,
        )
        score = engine.score_trend(indicators, uptrend_to(104.0), "4h")
        assert score.trend is Trend.BULLISH
        assert score.strength >= 60

    def test_consolidation_cap(self, engine):
        closes = [100.0 + 0.05 * math.sin(i) for i in range(60)]
        series = make_series(closes, spread=0.1)
        indicators = bullish_set(ma_long=98.0, ma_short=100.0)
        score = engine.score_trend(indicators, series, "4h")
        assert score.strength == 70
        assert "consolidation" in score.caps

    def test_strength_bounds(self, engine):
        cache = IndicatorCache(config=CacheConfig(optimizer_enabled=False))
        for amplitude in (0.5, 3.0, 10.0):
            for drift in (-0.4, 0.0, 0.4):
                series = wave(220, amplitude=amplitude, drift=drift)
                indicators = cache.compute(series, ParamSet())
                for tf in ("15m", "1d"):
                    score = engine.score_trend(indicators, series, tf)
                    assert 0 <= score.strength <= 100
                    assert score.trend in (Trend.BULLISH, Trend.BEARISH, Trend.NEUTRAL)

    def test_alias(self):
        assert TrendConsensusScorer is TrendEngine


# ════════════════════════════════════════════════
#  CORRELATION ADJUSTMENT
# ════════════════════════════════════════════════


class TestCorrelationAdjustment:

    def test_aligned_strong_scaled_bonus(self, engine):
        result = engine.adjust_for_correlation(Trend.BULLISH, Trend.BULLISH, 80, correlation=0.9)
        assert result.alignment is Alignment.ALIGNED
        assert result.bonus == 24
        assert result.penalty == 0
        assert result.confidence == 92

    def test_weak_reference_skipped(self, engine):
        for asset in Trend:
            for ref in Trend:
                result = engine.adjust_for_correlation(asset, ref, 25, correlation=1.0)
                assert (result.bonus, result.penalty) == (0, 0)

    def test_neutral_asset_never_adjusted(self, engine):
        for ref in Trend:
            for strength in (0, 35, 55, 90):
                for corr in (-1.0, 0.0, 0.5, 1.0):
                    result = engine.adjust_for_correlation(Trend.NEUTRAL, ref, strength, correlation=corr)
                    assert result.bonus == 0
                    assert result.penalty == 0

    def test_against_tiers(self, engine):
        strong = engine.adjust_for_correlation(Trend.BEARISH, Trend.BULLISH, 80, correlation=1.0)
        assert strong.alignment is Alignment.AGAINST
        assert strong.penalty == -15

        moderate = engine.adjust_for_correlation(Trend.BEARISH, Trend.BULLISH, 60, correlation=0.0)
        assert moderate.penalty == -4

        weak = engine.adjust_for_correlation(Trend.BULLISH, Trend.BEARISH, 40, correlation=0.0)
        assert weak.penalty == 0
        assert weak.bonus == 2    # 3 × 0.5 rounded half away from zero

    def test_aligned_tiers(self, engine):
        assert engine.adjust_for_correlation(Trend.BEARISH, Trend.BEARISH, 60, correlation=1.0).bonus == 15
        assert engine.adjust_for_correlation(Trend.BEARISH, Trend.BEARISH, 45, correlation=1.0).bonus == 8

    def test_correlation_from_series(self, engine):
        series = wave(40)
        assert engine.price_correlation(series, series) == pytest.approx(1.0)
        result = engine.adjust_for_correlation(Trend.BULLISH, Trend.BULLISH, 90, series, series)
        assert result.bonus == 25

    def test_correlation_bounds(self, engine):
        a = wave(40, amplitude=2.0, period=7.0)
        b = wave(40, amplitude=5.0, period=11.0, drift=0.2)
        value = engine.price_correlation(a, b)
        assert -1.0 <= value <= 1.0

    def test_degenerate_correlation_is_zero(self, engine):
        assert engine.price_correlation(flat(30), wave(30)) == 0.0
        assert engine.price_correlation(None, wave(30)) == 0.0

    def test_log_returns_option(self):
        engine = TrendEngine(TrendConfig(), CorrelationConfig(use_log_returns=True))
        series = wave(40)
        assert engine.price_correlation(series, series) == pytest.approx(1.0)

    def test_summary(self, engine):
        result = engine.adjust_for_correlation(Trend.BULLISH, Trend.BULLISH, 80, correlation=0.9)
        line = summarize_correlation("ETH/USDT", result)
        assert line.startswith("ETH/USDT: FAVORS signal (+24)")
        neutral = engine.adjust_for_correlation(Trend.NEUTRAL, Trend.BULLISH, 80, correlation=0.9)
        assert "neutral" in summarize_correlation("ETH/USDT", neutral)
