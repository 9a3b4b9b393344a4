"""Shared builders for OHLCV series, fake clocks and fake optimizers."""

import asyncio
import math

import pytest

from chartsense.config import CacheConfig
from chartsense.models import OHLCVSeries, ParamSet


def make_series(closes, spread=0.5, volume=None):
    """Bars with open = previous close and a symmetric high/low spread."""
    closes = [float(c) for c in closes]
    opens = [closes[0]] + closes[:-1]
    highs = [max(o, c) + spread for o, c in zip(opens, closes)]
    lows = [min(o, c) - spread for o, c in zip(opens, closes)]
    return OHLCVSeries(open=opens, high=highs, low=lows, close=closes, volume=volume)


def trending(n, start=100.0, step=0.5):
    return make_series([start + step * i for i in range(n)])


def wave(n, base=100.0, amplitude=3.0, period=9.0, drift=0.0):
    return make_series([
        base + drift * i + amplitude * math.sin(2 * math.pi * i / period) for i in range(n)
    ])


def flat(n, price=100.0):
    values = [price] * n
    return OHLCVSeries(open=values, high=values, low=values, close=values)


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class StaticOptimizer:
    """Returns a fixed result and counts calls."""

    def __init__(self, result=None):
        self.result = result if result is not None else ParamSet(rsi_period=12, macd_fast=9, macd_slow=21, macd_signal=6)
        self.calls = 0

    def optimize(self, series, symbol, timeframe):
        self.calls += 1
        return self.result


class GatedOptimizer:
    """Async optimizer that blocks until released."""

    def __init__(self, result=None):
        self.result = result or ParamSet(rsi_period=12)
        self.calls = 0
        self.release = asyncio.Event()
        self.started = asyncio.Event()

    async def optimize(self, series, symbol, timeframe):
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return self.result


class FailingOptimizer:
    def __init__(self):
        self.calls = 0

    def optimize(self, series, symbol, timeframe):
        self.calls += 1
        raise RuntimeError("search exploded")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def quiet_config():
    """Cache config with background optimization disabled."""
    return CacheConfig(optimizer_enabled=False)
