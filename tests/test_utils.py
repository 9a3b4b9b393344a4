"""
chartsense — Utility & Settings Tests

Tests for:
- Settings loading from CHARTSENSE_* environment variables
- Symbol/timeframe validators and the OHLC window check
- Formatters and numeric helpers
- Span timing and engine metrics
"""

import asyncio
import math

import pytest
from structlog.testing import capture_logs

from chartsense.config import Settings, get_settings
from chartsense.models import TimeFrame
from chartsense.observability import EngineMetrics, trace_span, traced
from chartsense.utils.formatters import format_pct, format_price, format_signed
from chartsense.utils.stats import (
    clamp,
    linear_regression,
    pct_returns,
    pearson_correlation,
    return_volatility,
    round_half_up,
)
from chartsense.utils.validators import check_ohlc_window, is_valid_candle, validate_symbol, validate_timeframe

from conftest import wave


# ════════════════════════════════════════════════
#  SETTINGS
# ════════════════════════════════════════════════


class TestSettings:

    def test_defaults(self):
        settings = Settings()
        assert settings.patterns.min_data_length == 20
        assert settings.reference.symbol == "BTC/USDT"
        assert settings.cache.ttl_seconds["4h"] == 1800
        assert settings.is_production is False

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("CHARTSENSE_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("CHARTSENSE_PATTERNS__MIN_DATA_LENGTH", "30")
        monkeypatch.setenv("CHARTSENSE_REFERENCE__SYMBOL", "ETH/USDT")
        get_settings.cache_clear()
        try:
            settings = get_settings()
            assert settings.log_level == "DEBUG"
            assert settings.patterns.min_data_length == 30
            assert settings.reference.symbol == "ETH/USDT"
            assert get_settings() is settings
        finally:
            get_settings.cache_clear()


# ════════════════════════════════════════════════
#  VALIDATORS
# ════════════════════════════════════════════════


class TestValidators:

    def test_symbol(self):
        assert validate_symbol(" btc/usdt ") == "BTC/USDT"
        assert validate_symbol("brk.b") == "BRK.B"
        with pytest.raises(ValueError):
            validate_symbol("   ")
        with pytest.raises(ValueError):
            validate_symbol("BTC-USDT!")

    def test_timeframe(self):
        assert validate_timeframe("1WK") == "1w"
        assert validate_timeframe(" 4H ") == "4h"
        assert validate_timeframe(TimeFrame.D1) == "1d"
        with pytest.raises(ValueError):
            validate_timeframe("7m")

    def test_candle(self):
        assert is_valid_candle(100, 101, 99, 100.5)
        assert not is_valid_candle(100, 99, 101, 100)       # high below low
        assert not is_valid_candle(100, 100.2, 99, 100.5)   # close above high
        assert not is_valid_candle(100, math.inf, 99, 100)
        assert not is_valid_candle(0, 1, 0, 1)

    def test_window_ok(self):
        assert check_ohlc_window(wave(30), 20) == (True, "ok")

    def test_window_rejections(self):
        assert check_ohlc_window(None, 20) == (False, "no data")

        ok, reason = check_ohlc_window(wave(10), 20)
        assert not ok and "minimum 20" in reason

        series = wave(25)
        short_open = series.model_copy(update={"open": series.open[1:]})
        assert check_ohlc_window(short_open, 20) == (False, "OHLC arrays differ in length")

        lows = list(series.low)
        lows[2] = -1.0
        ok, reason = check_ohlc_window(series.model_copy(update={"low": lows}), 20)
        assert not ok and "low" in reason

    def test_window_only_samples_ends(self):
        series = wave(30)
        highs = list(series.high)
        highs[15] = series.low[15] - 1     # middle bar is not sampled
        assert check_ohlc_window(series.model_copy(update={"high": highs}), 20)[0] is True


# ════════════════════════════════════════════════
#  FORMATTERS & STATS
# ════════════════════════════════════════════════


class TestFormatters:

    def test_pct(self):
        assert format_pct(12.345) == "+12.35%"
        assert format_pct(-3.1, decimals=1) == "-3.1%"
        assert format_pct(5, show_sign=False) == "5.00%"
        assert format_pct(0.0) == "0.00%"
        assert format_pct(None) == "N/A"
        assert format_pct(math.nan) == "N/A"

    def test_price(self):
        assert format_price(43125.5) == "43,125.50"
        assert format_price(0.000123) == "0.000123"
        assert format_price(None) == "N/A"

    def test_signed(self):
        assert format_signed(24) == "+24"
        assert format_signed(-8) == "-8"
        assert format_signed(0) == "0"


class TestStats:

    def test_regression(self):
        fit = linear_regression([1.0, 3.0, 5.0, 7.0])
        assert fit.slope == pytest.approx(2.0)
        assert fit.intercept == pytest.approx(1.0)
        assert fit.r2 == pytest.approx(1.0)
        assert linear_regression([4.0, 4.0, 4.0]).r2 == 0.0
        assert linear_regression([1.0]) == (0.0, 0.0, 0.0)

    def test_returns(self):
        returns = pct_returns([100.0, 110.0, 0.0, 5.0])
        assert returns[0] == pytest.approx(0.1)
        assert returns[1] == pytest.approx(-1.0)
        assert math.isnan(returns[2])
        assert pct_returns([100.0, 100.0], log=True) == [0.0]

    def test_volatility(self):
        assert return_volatility([100.0] * 10) == 0.0
        assert return_volatility([100.0, 102.0] * 10) > 0.01

    def test_pearson(self):
        assert pearson_correlation([1, 2, 3, 4], [2, 4, 6, 8]) == pytest.approx(1.0)
        assert pearson_correlation([1, 2, 3, 4], [8, 6, 4, 2]) == pytest.approx(-1.0)
        assert pearson_correlation([1, 1, 1], [1, 2, 3]) == 0.0
        assert pearson_correlation([], [1, 2]) == 0.0
        # Aligned from the ends; NaN pairs dropped
        assert pearson_correlation([9, 1, 2, 3], [2, 4, 6]) == pytest.approx(1.0)
        assert pearson_correlation([1, math.nan, 3, 4], [1, 5, 3, 4]) == pytest.approx(1.0)

    def test_rounding(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(-2.5) == -3
        assert round_half_up(1.49) == 1
        assert clamp(120, 0, 100) == 100
        assert clamp(-5, 0, 100) == 0


# ════════════════════════════════════════════════
#  OBSERVABILITY
# ════════════════════════════════════════════════


class TestObservability:

    def test_slow_span_warns(self):
        with capture_logs() as logs:
            with trace_span("patterns.detect", slow_after=-1.0, symbol="ETH/USDT"):
                pass
        events = [entry["event"] for entry in logs]
        assert "trace_span_end" in events
        assert "trace_span_slow" in events
        assert logs[-1]["symbol"] == "ETH/USDT"

    def test_traced_async(self):
        @traced("test.double")
        async def double(x):
            return x * 2

        assert asyncio.run(double(21)) == 42

    def test_traced_sync(self):
        @traced()
        def summed(*values):
            return sum(values)

        assert summed(1, 2, 3) == 6

    def test_engine_metrics(self):
        metrics = EngineMetrics()
        metrics.record_call("cache.get", 10.0)
        metrics.record_call("cache.get", 20.0, success=False)
        stats = metrics.get_stats()["cache.get"]
        assert stats["total_calls"] == 2
        assert stats["avg_latency_ms"] == 15.0
        assert stats["error_rate"] == 0.5
        metrics.reset()
        assert metrics.get_stats() == {}

    def test_configure_logging(self):
        import structlog
        from chartsense.observability import configure_logging

        try:
            configure_logging("debug", json=True)
            config = structlog.get_config()
            assert isinstance(config["processors"][-1], structlog.processors.JSONRenderer)
        finally:
            structlog.reset_defaults()
