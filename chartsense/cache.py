"""
chartsense — Indicator Cache

In-memory get-or-compute cache of IndicatorSets keyed by (symbol, timeframe).

A hit needs three things: an entry, an age below the timeframe TTL, and a
fingerprint (series length + last close) equal to the incoming series. Any
mismatch recomputes, so a newer candle that closes inside the TTL window
never gets indicators from the previous one.

Entries are frozen models swapped by a single dict assignment. With asyncio
there is no await between the checks and the write, so readers see either
the old entry or the new one, never a mix.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Optional

import structlog

from chartsense.config import CacheConfig, get_settings
from chartsense.engines.indicator_engine import IndicatorLibrary
from chartsense.engines.optimizer_engine import BackgroundOptimizer, GridSearchOptimizer, Optimizer
from chartsense.errors import ChartsenseError, InsufficientDataError
from chartsense.models import (
    CacheEntry,
    CacheKey,
    Fingerprint,
    IndicatorSet,
    OHLCVSeries,
    ParamSet,
    cache_key as make_key,
)

log = structlog.get_logger(__name__)


class IndicatorCache:
    """Per-(symbol, timeframe) indicator cache with background re-optimization.

    Usage::

        cache = IndicatorCache()
        indicators = await cache.get_indicators("ETH/USDT", "1h", series)
        await cache.drain()   # wait for scheduled optimizations (tests/shutdown)
    """

    def __init__(
        self,
        library: Optional[IndicatorLibrary] = None,
        optimizer: Optional[Optimizer] = None,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or get_settings().cache
        self.library = library or IndicatorLibrary()
        self._clock = clock

        self._entries: dict[CacheKey, CacheEntry] = {}
        self._generation = 0
        self._tasks: set[asyncio.Task] = set()
        self._hits = 0
        self._misses = 0
        self._stale = 0

        self.background: BackgroundOptimizer = BackgroundOptimizer(
            cache=self,
            optimizer=optimizer or GridSearchOptimizer(self.library),
            timeout=self.config.optimizer_timeout,
            cooldown=self.config.optimizer_cooldown,
            clock=clock,
        )

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def ttl_for(self, timeframe: Any) -> float:
        """TTL in seconds for a timeframe (shorter for low timeframes)."""
        tf = getattr(timeframe, "value", timeframe)
        return float(self.config.ttl_seconds.get(str(tf), self.config.default_ttl))

    async def get_indicators(
        self,
        symbol: str,
        timeframe: Any,
        series: Optional[OHLCVSeries],
    ) -> Optional[IndicatorSet]:
        """Return cached indicators for the series, recomputing when stale.

        Returns None only when the close series is absent or empty. Never raises.
        """
        if series is None or not series.close:
            log.warning("cache.no_data", symbol=symbol, timeframe=str(timeframe))
            return None

        key = make_key(symbol, timeframe)
        try:
            fingerprint = Fingerprint.of(series)
        except (TypeError, ValueError) as exc:
            log.warning("cache.bad_series", key=key, error=str(exc))
            return None

        entry = self._entries.get(key)
        now = self._clock()
        if entry is not None:
            fresh = now - entry.computed_at < self.ttl_for(timeframe)
            if fresh and entry.fingerprint == fingerprint:
                self._hits += 1
                log.debug("cache.hit", key=key)
                return entry.indicators
            if fresh:
                self._stale += 1
                log.debug(
                    "cache.fingerprint_mismatch",
                    key=key,
                    cached=tuple(entry.fingerprint),
                    current=tuple(fingerprint),
                )

        self._misses += 1
        params = entry.indicators.params if entry is not None else ParamSet()
        try:
            indicators = await asyncio.to_thread(self.compute, series, params)
        except Exception as exc:
            log.error("cache.compute_failed", key=key, error=str(exc))
            return None

        stored = self._store(key, indicators, fingerprint)
        if stored is not None and self.config.optimizer_enabled:
            self._schedule_optimization(symbol, timeframe, series, stored.generation)
        return indicators

    def compute(self, series: OHLCVSeries, params: ParamSet) -> IndicatorSet:
        """Compute a full IndicatorSet; failed indicators become None."""
        closes = series.close
        price = float(closes[-1])

        rsi = self._soft("rsi", lambda: self.library.rsi(closes, params.rsi_period))
        macd = self._soft(
            "macd",
            lambda: self.library.macd(closes, params.macd_fast, params.macd_slow, params.macd_signal),
        )
        ma_short = self._soft("ma_short", lambda: self.library.sma(closes, params.ma_short))
        ma_long, ma_long_prev = self._long_ma(closes, params.ma_long)

        ma_short = self._within_band("ma_short", ma_short, price, self.config.ma_short_band)
        ma_long = self._within_band("ma_long", ma_long, price, self.config.ma_long_band)
        if ma_long is None:
            ma_long_prev = None

        return IndicatorSet(
            rsi=rsi,
            macd=macd,
            ma_short=ma_short,
            ma_long=ma_long,
            ma_long_prev=ma_long_prev,
            volatility=params.volatility,
            params=params,
        )

    async def apply_optimized(
        self,
        symbol: str,
        timeframe: Any,
        series: OHLCVSeries,
        params: ParamSet,
        generation: Optional[int] = None,
    ) -> bool:
        """Recompute with optimized params and swap the entry if still current.

        The swap is skipped when a newer entry (different generation or
        fingerprint) replaced the one the optimization started from.
        """
        key = make_key(symbol, timeframe)
        indicators = await asyncio.to_thread(self.compute, series, params)

        current = self._entries.get(key)
        fingerprint = Fingerprint.of(series)
        if current is None or current.fingerprint != fingerprint or (
            generation is not None and current.generation != generation
        ):
            log.info(
                "cache.optimized_discarded",
                key=key,
                expected_generation=generation,
                current_generation=current.generation if current else None,
            )
            return False

        self._generation += 1
        self._entries[key] = CacheEntry(
            indicators=indicators,
            computed_at=self._clock(),
            fingerprint=fingerprint,
            generation=self._generation,
        )
        log.info(
            "cache.optimized_applied",
            key=key,
            rsi_period=params.rsi_period,
            macd=f"{params.macd_fast}/{params.macd_slow}/{params.macd_signal}",
        )
        return True

    def peek(self, symbol: str, timeframe: Any) -> Optional[CacheEntry]:
        """Current entry without freshness checks."""
        return self._entries.get(make_key(symbol, timeframe))

    def invalidate(self, symbol: str, timeframe: Any) -> bool:
        return self._entries.pop(make_key(symbol, timeframe), None) is not None

    def clear(self, symbol: Optional[str] = None) -> int:
        """Drop all entries, or only those for one symbol. Returns count removed."""
        if symbol is None:
            count = len(self._entries)
            self._entries.clear()
        else:
            keys = [k for k in self._entries if k[0] == symbol]
            for k in keys:
                del self._entries[k]
            count = len(keys)
        log.info("cache.cleared", symbol=symbol, removed=count)
        return count

    def stats(self) -> dict:
        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "stale": self._stale,
            "pending_optimizations": len(self._tasks),
            "optimizer": self.background.snapshot(),
        }

    async def drain(self) -> None:
        """Wait for every scheduled background optimization to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ──────────────────────────────────────────
    # Internal Helpers
    # ──────────────────────────────────────────

    def _store(
        self,
        key: CacheKey,
        indicators: IndicatorSet,
        fingerprint: Fingerprint,
    ) -> Optional[CacheEntry]:
        current = self._entries.get(key)
        if current is not None and current.fingerprint.length > fingerprint.length:
            # A newer series landed while this one was computing
            log.debug("cache.store_superseded", key=key)
            return None

        self._generation += 1
        entry = CacheEntry(
            indicators=indicators,
            computed_at=self._clock(),
            fingerprint=fingerprint,
            generation=self._generation,
        )
        self._entries[key] = entry
        log.debug("cache.set", key=key, generation=entry.generation)
        return entry

    def _schedule_optimization(
        self,
        symbol: str,
        timeframe: Any,
        series: OHLCVSeries,
        generation: int,
    ) -> None:
        try:
            task = asyncio.get_running_loop().create_task(
                self.background.run(symbol, timeframe, series, generation=generation)
            )
        except RuntimeError as exc:
            log.warning("cache.optimizer_not_scheduled", error=str(exc))
            return
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.warning("cache.optimizer_task_failed", error=str(exc))

    def _soft(self, name: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except InsufficientDataError as exc:
            log.debug("indicator.insufficient_data", indicator=name, error=str(exc))
        except ChartsenseError as exc:
            log.warning("indicator.invalid_value", indicator=name, error=str(exc))
        except (ValueError, ArithmeticError, IndexError) as exc:
            log.warning("indicator.failed", indicator=name, error=str(exc))
        return None

    def _long_ma(self, closes: list[float], period: int) -> tuple[Optional[float], Optional[float]]:
        """Long MA and its previous-bar value, falling back to a shorter period."""
        periods = [period]
        fallback = self.config.ma_long_fallback_period
        if fallback and fallback < period:
            periods.append(fallback)

        for p in periods:
            if len(closes) < p:
                continue
            current = self._soft("ma_long", lambda p=p: self.library.sma(closes, p))
            if current is None:
                continue
            if p != period:
                log.debug("indicator.ma_long_fallback", period=period, fallback=p)
            previous = self._soft("ma_long_prev", lambda p=p: self.library.sma(closes, p, offset=1))
            return current, previous
        return None, None

    @staticmethod
    def _within_band(
        name: str,
        value: Optional[float],
        price: float,
        band: tuple[float, float],
    ) -> Optional[float]:
        if value is None or price <= 0:
            return value
        ratio = value / price
        low, high = band
        if ratio < low or ratio > high:
            log.warning("indicator.out_of_band", indicator=name, ratio=round(ratio, 3), band=band)
            return None
        return value


# ──────────────────────────────────────────────
# Singleton
# ──────────────────────────────────────────────

_cache: Optional[IndicatorCache] = None


def get_indicator_cache() -> IndicatorCache:
    """Get or create the process-wide indicator cache."""
    global _cache
    if _cache is None:
        _cache = IndicatorCache()
    return _cache
