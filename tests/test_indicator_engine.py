"""
chartsense — Indicator Library Tests

Tests for:
- RSI / MACD / SMA / ATR% values and ranges
- InsufficientDataError vs InvalidValueError signalling
"""

import pytest

from chartsense.engines.indicator_engine import IndicatorLibrary
from chartsense.errors import InsufficientDataError, InvalidValueError

from conftest import trending, wave


@pytest.fixture
def lib():
    return IndicatorLibrary()


# ════════════════════════════════════════════════
#  RSI
# ════════════════════════════════════════════════


class TestRSI:

    def test_range(self, lib):
        closes = wave(60).close
        value = lib.rsi(closes, 14)
        assert 0 <= value <= 100

    def test_uptrend_is_high(self, lib):
        closes = [100 + i + (0.3 if i % 3 == 0 else 0) for i in range(40)]
        assert lib.rsi(closes, 10) > 70

    def test_insufficient_data(self, lib):
        with pytest.raises(InsufficientDataError) as exc:
            lib.rsi([1, 2, 3], 14)
        assert exc.value.required == 15
        assert exc.value.available == 3

    def test_flat_series_undefined(self, lib):
        with pytest.raises(InvalidValueError):
            lib.rsi([100.0] * 30, 10)

    def test_non_finite_input(self, lib):
        closes = [100.0] * 20 + [float("nan")]
        with pytest.raises(InvalidValueError):
            lib.rsi(closes, 10)


# ════════════════════════════════════════════════
#  MACD
# ════════════════════════════════════════════════


class TestMACD:

    def test_histogram_is_difference(self, lib):
        m = lib.macd(wave(80).close, 12, 26, 9)
        assert m.histogram == pytest.approx(m.macd - m.signal)

    def test_uptrend_positive(self, lib):
        m = lib.macd(trending(60).close, 10, 22, 7)
        assert m.macd > 0

    def test_insufficient_data(self, lib):
        with pytest.raises(InsufficientDataError):
            lib.macd([1.0] * 20, 10, 22, 7)


# ════════════════════════════════════════════════
#  SMA & ATR
# ════════════════════════════════════════════════


class TestSMAandATR:

    def test_sma_last(self, lib):
        assert lib.sma([1, 2, 3, 4, 5], 5) == pytest.approx(3.0)

    def test_sma_offset(self, lib):
        assert lib.sma([1, 2, 3, 4, 5, 6], 5, offset=1) == pytest.approx(3.0)

    def test_sma_insufficient(self, lib):
        with pytest.raises(InsufficientDataError):
            lib.sma([1, 2, 3], 5, offset=1)

    def test_atr_percent_positive(self, lib):
        s = wave(40)
        assert lib.atr_percent(s.high, s.low, s.close, 14) > 0

    def test_atr_insufficient(self, lib):
        s = wave(10)
        with pytest.raises(InsufficientDataError):
            lib.atr_percent(s.high, s.low, s.close, 14)
