"""
chartsense — Background Optimizer

Searches better indicator periods for a (symbol, timeframe) without blocking
the caller, then hands the winning ParamSet back to the indicator cache.

Per-key state machine:
    IDLE     → a request starts an attempt (unless the key is cooling down)
    RUNNING  → further requests are no-ops until the attempt settles
    COOLDOWN → overlay, ``cooldown`` seconds after every attempt, success or not

The optimizer call races a timer (``asyncio.wait_for``). A sync optimizer
runs in a worker thread that cannot be killed; whatever it returns after the
deadline is dropped with the abandoned future.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol

import numpy as np
import structlog

from chartsense.engines.indicator_engine import IndicatorLibrary
from chartsense.errors import (
    ChartsenseError,
    InsufficientDataError,
    OptimizationError,
    OptimizationTimeoutError,
)
from chartsense.models import CacheKey, OHLCVSeries, ParamSet, VolatilityLevel, cache_key

if TYPE_CHECKING:
    from chartsense.cache import IndicatorCache

log = structlog.get_logger(__name__)


class OptimizerState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"


class Optimizer(Protocol):
    """Search strategy collaborator. May be sync or async, may run long."""

    def optimize(self, series: OHLCVSeries, symbol: str, timeframe: str) -> Any:
        ...


class BackgroundOptimizer:
    """At-most-one-in-flight, cooled-down optimizer runner keyed by (symbol, timeframe).

    Usage::

        runner = BackgroundOptimizer(cache, GridSearchOptimizer())
        await runner.run("ETH/USDT", "1h", series, generation=entry.generation)
    """

    def __init__(
        self,
        cache: "IndicatorCache",
        optimizer: Optional[Optimizer] = None,
        timeout: float = 5.0,
        cooldown: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cache = cache
        self.optimizer = optimizer or GridSearchOptimizer()
        self.timeout = timeout
        self.cooldown = cooldown
        self._clock = clock

        self._running: set[CacheKey] = set()
        self._last_attempt: dict[CacheKey, float] = {}
        self._successes = 0
        self._failures = 0
        self._timeouts = 0
        self._skipped = 0

    # ── State ─────────────────────────────────────

    def state(self, symbol: str, timeframe: Any) -> OptimizerState:
        if cache_key(symbol, timeframe) in self._running:
            return OptimizerState.RUNNING
        return OptimizerState.IDLE

    def in_cooldown(self, symbol: str, timeframe: Any) -> bool:
        last = self._last_attempt.get(cache_key(symbol, timeframe))
        return last is not None and self._clock() - last < self.cooldown

    def snapshot(self) -> dict:
        return {
            "running": sorted(f"{s}:{tf}" for s, tf in self._running),
            "cooling_down": sorted(
                f"{s}:{tf}" for (s, tf) in self._last_attempt
                if self.in_cooldown(s, tf)
            ),
            "successes": self._successes,
            "failures": self._failures,
            "timeouts": self._timeouts,
            "skipped": self._skipped,
        }

    # ── Execution ─────────────────────────────────

    async def run(
        self,
        symbol: str,
        timeframe: Any,
        series: OHLCVSeries,
        generation: Optional[int] = None,
    ) -> None:
        """Run one optimization attempt for the key. Never raises."""
        key = cache_key(symbol, timeframe)
        if key in self._running:
            self._skipped += 1
            log.debug("optimizer.already_running", key=key)
            return
        if self.in_cooldown(symbol, timeframe):
            self._skipped += 1
            log.debug("optimizer.cooldown", key=key)
            return

        # Marked before the first await so concurrent callers see RUNNING
        self._running.add(key)
        try:
            params = await self._attempt(key, symbol, timeframe, series)
            if params is None:
                return
            applied = await self.cache.apply_optimized(
                symbol, timeframe, series, params, generation=generation
            )
            log.info("optimizer.completed", key=key, applied=applied)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._failures += 1
            log.warning("optimizer.apply_failed", key=key, error=str(exc))
        finally:
            self._last_attempt[key] = self._clock()
            self._running.discard(key)

    async def _attempt(
        self,
        key: CacheKey,
        symbol: str,
        timeframe: Any,
        series: OHLCVSeries,
    ) -> Optional[ParamSet]:
        tf = key[1]
        try:
            result = await asyncio.wait_for(self._invoke(series, symbol, tf), timeout=self.timeout)
        except asyncio.TimeoutError:
            self._timeouts += 1
            err = OptimizationTimeoutError(f"{symbol}:{tf}", self.timeout)
            log.warning("optimizer.timeout", key=key, error=str(err))
            return None
        except Exception as exc:
            self._failures += 1
            log.warning("optimizer.failed", key=key, error=str(exc), error_type=type(exc).__name__)
            return None

        try:
            params = ParamSet.coerce(result)
        except ValueError as exc:
            self._failures += 1
            log.warning("optimizer.invalid_result", key=key, error=str(exc))
            return None
        if params is None:
            log.debug("optimizer.no_result", key=key)
            return None

        self._successes += 1
        return params

    async def _invoke(self, series: OHLCVSeries, symbol: str, timeframe: str) -> Any:
        optimize = self.optimizer.optimize
        if inspect.iscoroutinefunction(optimize):
            return await optimize(series, symbol, timeframe)
        return await asyncio.to_thread(optimize, series, symbol, timeframe)


# ──────────────────────────────────────────────
# Default Search Strategy
# ──────────────────────────────────────────────

class GridSearchOptimizer:
    """Exhaustive search over small RSI/MACD period grids.

    RSI periods are scored by ``rsi / period * volatility`` and nudged by the
    volatility level; MACD triples are scored by ``histogram / volatility``.
    Volatility is ATR(14) as a percentage of the last close. The moving
    averages stay at 14/180.
    """

    MIN_BARS = 50
    RSI_PERIODS = range(8, 13)
    MACD_FAST = range(8, 13)
    MACD_SLOW = range(20, 25)
    MACD_SIGNAL = range(6, 10)
    MA_SHORT = 14
    MA_LONG = 180
    LOW_VOLATILITY = 0.5
    HIGH_VOLATILITY = 2.0

    def __init__(self, library: Optional[IndicatorLibrary] = None):
        self.library = library or IndicatorLibrary()

    def optimize(self, series: OHLCVSeries, symbol: str = "", timeframe: str = "") -> ParamSet:
        n = len(series.close)
        if n < self.MIN_BARS:
            raise InsufficientDataError("grid search", self.MIN_BARS, n)
        arrays = (series.open, series.high, series.low, series.close, series.volume or [])
        if any(len(a) != n for a in arrays):
            raise OptimizationError("OHLCV arrays differ in length")

        volatility = self.library.atr_percent(series.high, series.low, series.close, period=14)
        level = self._volatility_level(volatility)
        rsi_period = self._best_rsi_period(series.close, volatility, level)
        fast, slow, signal = self._best_macd(series.close, volatility)

        log.debug(
            "optimizer.grid_result",
            symbol=symbol,
            timeframe=timeframe,
            rsi_period=rsi_period,
            macd=f"{fast}/{slow}/{signal}",
            volatility=round(volatility, 3),
            level=level.value,
        )
        return ParamSet(
            rsi_period=rsi_period,
            macd_fast=fast,
            macd_slow=slow,
            macd_signal=signal,
            ma_short=self.MA_SHORT,
            ma_long=self.MA_LONG,
            volatility=volatility,
            volatility_level=level,
        )

    def _volatility_level(self, volatility: float) -> VolatilityLevel:
        if volatility < self.LOW_VOLATILITY:
            return VolatilityLevel.LOW
        if volatility > self.HIGH_VOLATILITY:
            return VolatilityLevel.HIGH
        return VolatilityLevel.NORMAL

    def _best_rsi_period(self, closes: list[float], volatility: float, level: VolatilityLevel) -> int:
        best_period, best_score = 10, -np.inf
        for period in self.RSI_PERIODS:
            try:
                rsi = self.library.rsi(closes, period)
            except ChartsenseError:
                continue
            score = rsi / period * volatility
            if score > best_score:
                best_period, best_score = period, score

        if level is VolatilityLevel.HIGH:
            return min(30, best_period + 2)
        if level is VolatilityLevel.LOW:
            return max(7, best_period - 2)
        return best_period

    def _best_macd(self, closes: list[float], volatility: float) -> tuple[int, int, int]:
        best, best_score = (10, 22, 7), -np.inf
        divisor = volatility if volatility > 0 else 1.0
        for fast in self.MACD_FAST:
            for slow in self.MACD_SLOW:
                for signal in self.MACD_SIGNAL:
                    try:
                        macd = self.library.macd(closes, fast, slow, signal)
                    except ChartsenseError:
                        continue
                    score = macd.histogram / divisor
                    if score > best_score:
                        best, best_score = (fast, slow, signal), score
        return best
