"""
chartsense — Pattern Detection Engine

Rule-based chart and candlestick pattern detection on a fixed trailing window
of OHLCV bars. Deterministic, no state between calls.

Chart patterns (at most one of each per scan):
  Breakout (volume confirmed), Ascending/Descending Triangle,
  Rising/Falling Wedge, Bull/Bear Flag, Double Top/Bottom, Head & Shoulders

Candlestick patterns (last two bars, zero or more per scan):
  Doji, Bullish/Bearish Engulfing, Hammer, Hanging Man,
  Inverted Hammer, Shooting Star

Flatness and convergence tests use a tolerance picked per scan from the
return volatility of the window (tight / default / wide). Rising and
falling trendlines go by the sign of the slope.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Optional

import numpy as np
import structlog

from chartsense.config import PatternConfig, get_settings
from chartsense.models import OHLCVSeries, Trend
from chartsense.utils.stats import Regression, clamp, linear_regression, return_volatility
from chartsense.utils.validators import check_ohlc_window, is_valid_candle

log = structlog.get_logger(__name__)


# ──────────────────────────────────────────────
# Pattern Result Data Models
# ──────────────────────────────────────────────

class PatternKind(str, Enum):
    BREAKOUT = "BREAKOUT"
    TRIANGLE = "TRIANGLE"
    FLAG = "FLAG"
    WEDGE = "WEDGE"
    DOUBLE = "DOUBLE"
    HEAD_SHOULDERS = "HEAD_SHOULDERS"
    CANDLESTICK = "CANDLESTICK"


@dataclass(frozen=True)
class Pattern:
    """A single detected pattern."""
    kind: PatternKind
    type: str              # e.g. "BULLISH_BREAKOUT", "DOJI"
    bias: Trend
    confidence: int        # 0 – 100

    def to_dict(self) -> dict:
        d = {k: v for k, v in asdict(self).items() if v is not None}
        d["kind"] = self.kind.value
        d["bias"] = self.bias.value
        return d


@dataclass(frozen=True)
class Breakout(Pattern):
    level: float
    volume_ratio: float


@dataclass(frozen=True)
class TrendlinePattern(Pattern):
    """Triangle or wedge built from the high/low regression lines."""
    resistance_slope: float
    support_slope: float
    resistance_r2: float
    support_r2: float


@dataclass(frozen=True)
class Flag(Pattern):
    move_pct: float


@dataclass(frozen=True)
class DoublePattern(Pattern):
    level: float
    separation: int
    touches: int


@dataclass(frozen=True)
class HeadShoulders(Pattern):
    neckline: float
    target: float
    left_shoulder: float
    head: float
    right_shoulder: float


@dataclass(frozen=True)
class Candlestick(Pattern):
    body_ratio: float
    prior_trend: Trend

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["prior_trend"] = self.prior_trend.value
        return d


@dataclass
class PatternScanResult:
    """Full scan result for one window."""
    support: float = 0.0
    resistance: float = 0.0
    pivot: float = 0.0
    r1: float = 0.0
    s1: float = 0.0
    tolerance: float = 0.0
    volatility: float = 0.0
    breakout: Optional[Breakout] = None
    triangle: Optional[TrendlinePattern] = None
    flag: Optional[Flag] = None
    wedge: Optional[TrendlinePattern] = None
    double: Optional[DoublePattern] = None
    head_shoulders: Optional[HeadShoulders] = None
    candlesticks: list[Candlestick] = field(default_factory=list)
    valid: bool = True
    reason: str = ""
    high_confidence: int = 80

    @classmethod
    def empty(cls, reason: str = "") -> "PatternScanResult":
        return cls(valid=False, reason=reason)

    def patterns(self) -> list[Pattern]:
        """Every detected pattern, chart patterns first."""
        singles = [
            self.breakout,
            self.triangle,
            self.flag,
            self.wedge,
            self.double,
            self.head_shoulders,
        ]
        return [p for p in singles if p is not None] + list(self.candlesticks)

    @property
    def overall_bias(self) -> Trend:
        found = self.patterns()
        bullish = sum(1 for p in found if p.bias is Trend.BULLISH)
        bearish = sum(1 for p in found if p.bias is Trend.BEARISH)
        if bullish > bearish:
            return Trend.BULLISH
        if bearish > bullish:
            return Trend.BEARISH
        return Trend.NEUTRAL

    def stats(self, high_confidence: Optional[int] = None) -> dict:
        if high_confidence is None:
            high_confidence = self.high_confidence
        found = self.patterns()
        types: dict[str, int] = {}
        for p in found:
            types[p.type] = types.get(p.type, 0) + 1
        return {
            "total": len(found),
            "bullish": sum(1 for p in found if p.bias is Trend.BULLISH),
            "bearish": sum(1 for p in found if p.bias is Trend.BEARISH),
            "neutral": sum(1 for p in found if p.bias is Trend.NEUTRAL),
            "high_confidence": sum(1 for p in found if p.confidence >= high_confidence),
            "types": types,
        }

    def to_dict(self) -> dict:
        singles = ("breakout", "triangle", "flag", "wedge", "double", "head_shoulders")
        d = {
            "support": self.support,
            "resistance": self.resistance,
            "pivot": self.pivot,
            "r1": self.r1,
            "s1": self.s1,
            "tolerance": self.tolerance,
            "volatility": self.volatility,
            "valid": self.valid,
            "reason": self.reason,
            "overall_bias": self.overall_bias.value,
        }
        for name in singles:
            pattern = getattr(self, name)
            d[name] = pattern.to_dict() if pattern is not None else None
        d["candlesticks"] = [c.to_dict() for c in self.candlesticks]
        return d


# ──────────────────────────────────────────────
# Engine
# ──────────────────────────────────────────────

class PatternEngine:
    """Chart and candlestick pattern detector.

    Usage:
        engine = PatternEngine()
        result = engine.detect(series)
        result.breakout, result.candlesticks, result.stats()
    """

    def __init__(self, config: Optional[PatternConfig] = None):
        self.config = config or get_settings().patterns

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def detect(self, series: Optional[OHLCVSeries]) -> PatternScanResult:
        """Scan the trailing window of ``series``. Never raises."""
        cfg = self.config
        if series is None:
            log.warning("patterns.invalid_input", reason="no data")
            return PatternScanResult.empty("no data")

        window = series.tail(cfg.min_data_length)
        ok, reason = check_ohlc_window(window, cfg.min_data_length, sample=cfg.consistency_check_bars)
        if not ok:
            log.warning("patterns.invalid_input", reason=reason, length=len(series))
            return PatternScanResult.empty(reason)

        try:
            return self._scan(window)
        except (ValueError, ArithmeticError, IndexError, TypeError) as exc:
            log.error("patterns.scan_failed", error=str(exc))
            return PatternScanResult.empty(f"scan failed: {exc}")

    def tolerance_for(self, closes: list[float]) -> tuple[float, float]:
        """Adaptive tolerance band and the return volatility it was picked from."""
        cfg = self.config
        volatility = return_volatility(closes)
        if not cfg.volatility_adjustment:
            return cfg.tolerance, volatility
        if volatility > cfg.high_volatility:
            return cfg.wide_tolerance, volatility
        if volatility < cfg.low_volatility:
            return cfg.tight_tolerance, volatility
        return cfg.tolerance, volatility

    # ──────────────────────────────────────────
    # Scan
    # ──────────────────────────────────────────

    def _scan(self, w: OHLCVSeries) -> PatternScanResult:
        tol, volatility = self.tolerance_for(w.close)

        resistance = float(max(w.high))
        support = float(min(w.low))
        pivot = (w.high[-1] + w.low[-1] + w.close[-1]) / 3

        highs = w.high[-self.config.trendline_window:]
        lows = w.low[-self.config.trendline_window:]
        high_line = linear_regression(highs)
        low_line = linear_regression(lows)

        result = PatternScanResult(
            support=support,
            resistance=resistance,
            pivot=pivot,
            r1=2 * pivot - w.low[-1],
            s1=2 * pivot - w.high[-1],
            tolerance=tol,
            volatility=volatility,
            breakout=self._breakout(w),
            triangle=self._triangle(high_line, low_line, tol),
            flag=self._flag(w.close),
            wedge=self._wedge(high_line, low_line, tol),
            double=self._double(w, support, resistance, tol),
            head_shoulders=self._head_shoulders(w, tol),
            candlesticks=self._candlesticks(w),
            high_confidence=self.config.high_confidence,
        )
        log.debug(
            "patterns.detected",
            tolerance=tol,
            volatility=round(volatility, 5),
            found=[p.type for p in result.patterns()],
        )
        return result

    # ── Breakout ──────────────────────────────

    def _breakout(self, w: OHLCVSeries) -> Optional[Breakout]:
        # Levels from the bars before the current one; the current high/low
        # would otherwise always contain its own close
        resistance = float(max(w.high[:-1]))
        support = float(min(w.low[:-1]))
        current, previous = w.close[-1], w.close[-2]
        volume = w.volume or [1.0] * len(w.close)
        avg_volume = float(np.mean(volume))
        if avg_volume <= 0:
            return None
        ratio = volume[-1] / avg_volume
        if ratio <= self.config.breakout_volume_threshold:
            return None

        if current > resistance and previous <= resistance:
            return Breakout(
                kind=PatternKind.BREAKOUT, type="BULLISH_BREAKOUT", bias=Trend.BULLISH,
                confidence=self.config.breakout_confidence, level=resistance, volume_ratio=ratio,
            )
        if current < support and previous >= support:
            return Breakout(
                kind=PatternKind.BREAKOUT, type="BEARISH_BREAKOUT", bias=Trend.BEARISH,
                confidence=self.config.breakout_confidence, level=support, volume_ratio=ratio,
            )
        return None

    # ── Trendlines ────────────────────────────

    def _fits(self, line: Regression) -> bool:
        return line.r2 > self.config.regression_min_r2

    def _flat(self, line: Regression, tol: float) -> bool:
        return abs(line.slope) < tol and self._fits(line)

    # Direction is the sign of the slope; tolerance only decides flatness
    def _rising(self, line: Regression) -> bool:
        return line.slope > 0 and self._fits(line)

    def _falling(self, line: Regression) -> bool:
        return line.slope < 0 and self._fits(line)

    def _trendline(self, kind: PatternKind, name: str, bias: Trend, confidence: int,
                   high_line: Regression, low_line: Regression) -> TrendlinePattern:
        return TrendlinePattern(
            kind=kind, type=name, bias=bias, confidence=confidence,
            resistance_slope=high_line.slope, support_slope=low_line.slope,
            resistance_r2=high_line.r2, support_r2=low_line.r2,
        )

    def _triangle(self, high_line: Regression, low_line: Regression, tol: float) -> Optional[TrendlinePattern]:
        conf = self.config.triangle_confidence
        if self._flat(high_line, tol) and self._rising(low_line):
            return self._trendline(PatternKind.TRIANGLE, "ASCENDING_TRIANGLE", Trend.BULLISH, conf, high_line, low_line)
        if self._flat(low_line, tol) and self._falling(high_line):
            return self._trendline(PatternKind.TRIANGLE, "DESCENDING_TRIANGLE", Trend.BEARISH, conf, high_line, low_line)
        return None

    def _wedge(self, high_line: Regression, low_line: Regression, tol: float) -> Optional[TrendlinePattern]:
        conf = self.config.wedge_confidence
        converging = abs(high_line.slope - low_line.slope) > tol
        if not converging:
            return None
        if self._rising(high_line) and self._rising(low_line) and high_line.slope < low_line.slope:
            return self._trendline(PatternKind.WEDGE, "RISING_WEDGE", Trend.BEARISH, conf, high_line, low_line)
        if self._falling(high_line) and self._falling(low_line) and high_line.slope > low_line.slope:
            return self._trendline(PatternKind.WEDGE, "FALLING_WEDGE", Trend.BULLISH, conf, high_line, low_line)
        return None

    # ── Flag ──────────────────────────────────

    def _flag(self, closes: list[float]) -> Optional[Flag]:
        n = len(closes)
        last, mid, quarter = closes[-1], closes[n // 2], closes[int(n * 0.75)]
        move = (last - mid) / mid
        consolidation = abs(last - quarter) / quarter
        if abs(move) <= self.config.flag_move_pct or consolidation >= self.config.flag_consolidation_pct:
            return None

        bias = Trend.BULLISH if move > 0 else Trend.BEARISH
        return Flag(
            kind=PatternKind.FLAG, type=f"{bias.value}_FLAG", bias=bias,
            confidence=self.config.flag_confidence, move_pct=round(abs(move) * 100, 4),
        )

    # ── Double Top / Bottom ───────────────────

    def _touches(self, values: list[float], level: float, tol: float) -> list[int]:
        band = level * tol
        return [i for i, v in enumerate(values) if abs(v - level) < band]

    def _double(self, w: OHLCVSeries, support: float, resistance: float, tol: float) -> Optional[DoublePattern]:
        candidates = (
            ("DOUBLE_TOP", Trend.BEARISH, w.high, resistance),
            ("DOUBLE_BOTTOM", Trend.BULLISH, w.low, support),
        )
        for name, bias, values, level in candidates:
            hits = self._touches(values, level, tol)
            if len(hits) < 2:
                continue
            separation = hits[-1] - hits[0]
            if separation >= self.config.min_separation:
                return DoublePattern(
                    kind=PatternKind.DOUBLE, type=name, bias=bias,
                    confidence=self.config.double_confidence,
                    level=level, separation=separation, touches=len(hits),
                )
        return None

    # ── Head & Shoulders ──────────────────────

    def _head_shoulders(self, w: OHLCVSeries, tol: float) -> Optional[HeadShoulders]:
        bars = self.config.head_shoulders_bars
        if len(w.high) < bars:
            return None
        highs, lows = w.high[-bars:], w.low[-bars:]
        left, head, right = highs[1], highs[3], highs[5]
        if not (head > left and head > right and abs(left - right) < left * tol):
            return None

        neckline = min(lows[2], lows[4])
        return HeadShoulders(
            kind=PatternKind.HEAD_SHOULDERS, type="HEAD_AND_SHOULDERS", bias=Trend.BEARISH,
            confidence=self.config.head_shoulders_confidence,
            neckline=neckline, target=neckline - (head - neckline),
            left_shoulder=left, head=head, right_shoulder=right,
        )

    # ── Candlesticks ──────────────────────────

    def prior_trend(self, closes: list[float]) -> Trend:
        """Majority of up/down moves over the closes before the current bar."""
        span = min(self.config.prior_trend_bars, len(closes) - 1)
        if span < 2:
            return Trend.NEUTRAL
        prices = closes[-span - 1:-1]
        up = sum(1 for a, b in zip(prices, prices[1:]) if b > a)
        down = sum(1 for a, b in zip(prices, prices[1:]) if b < a)
        if up > down:
            return Trend.BULLISH
        if down > up:
            return Trend.BEARISH
        return Trend.NEUTRAL

    def candle_confidence(
        self,
        base: int,
        o: float, h: float, l: float, c: float,
        prior: Trend,
        bias: Optional[Trend] = None,
    ) -> tuple[int, float]:
        """Base confidence adjusted by body/range and reversal context, clamped."""
        cfg = self.config
        rng = h - l
        body_ratio = abs(c - o) / rng if rng > 0 else 0.0

        confidence = base
        if body_ratio > cfg.body_ratio_large:
            confidence += cfg.body_ratio_adjust
        elif body_ratio < cfg.body_ratio_small:
            confidence -= cfg.body_ratio_adjust

        if bias is not None and bias is not Trend.NEUTRAL and prior is not Trend.NEUTRAL and bias is not prior:
            confidence += cfg.reversal_bonus

        return int(clamp(confidence, cfg.confidence_floor, cfg.confidence_ceiling)), body_ratio

    def _candle(self, name: str, bias: Trend, base: int, bar: tuple, prior: Trend,
                expected: Optional[Trend]) -> Candlestick:
        confidence, body_ratio = self.candle_confidence(base, *bar, prior, expected)
        return Candlestick(
            kind=PatternKind.CANDLESTICK, type=name, bias=bias, confidence=confidence,
            body_ratio=round(body_ratio, 4), prior_trend=prior,
        )

    def _candlesticks(self, w: OHLCVSeries) -> list[Candlestick]:
        cfg = self.config
        o, h, l, c = w.open, w.high, w.low, w.close
        cur = (o[-1], h[-1], l[-1], c[-1])
        prev = (o[-2], h[-2], l[-2], c[-2])
        if not (is_valid_candle(*cur) and is_valid_candle(*prev)):
            return []

        prior = self.prior_trend(c)
        co, ch, cl, cc = cur
        po, _, _, pc = prev
        found: list[Candlestick] = []

        if abs(co - cc) < cc * cfg.candlestick_tolerance:
            found.append(self._candle("DOJI", Trend.NEUTRAL, cfg.doji_confidence, cur, prior, None))

        if pc < po and cc > co and co < pc and cc > po:
            found.append(self._candle(
                "BULLISH_ENGULFING", Trend.BULLISH, cfg.engulfing_confidence, cur, prior, Trend.BULLISH,
            ))
        if pc > po and cc < co and co > pc and cc < po:
            found.append(self._candle(
                "BEARISH_ENGULFING", Trend.BEARISH, cfg.engulfing_confidence, cur, prior, Trend.BEARISH,
            ))

        body = abs(cc - co)
        lower = min(co, cc) - cl
        upper = ch - max(co, cc)

        if lower >= body * 2 and upper < body * 0.5:
            if prior is Trend.BULLISH:
                found.append(self._candle(
                    "HANGING_MAN", Trend.BEARISH, cfg.hammer_confidence, cur, prior, Trend.BEARISH,
                ))
            else:
                found.append(self._candle(
                    "HAMMER", Trend.BULLISH, cfg.hammer_confidence, cur, prior, Trend.BULLISH,
                ))

        if upper >= body * 2 and lower < body * 0.5:
            if prior is Trend.BEARISH:
                found.append(self._candle(
                    "INVERTED_HAMMER", Trend.BULLISH, cfg.hammer_confidence, cur, prior, Trend.BULLISH,
                ))
            else:
                found.append(self._candle(
                    "SHOOTING_STAR", Trend.BEARISH, cfg.hammer_confidence, cur, prior, Trend.BEARISH,
                ))

        return found


# Name used by callers that think in terms of detection rather than scanning
PatternDetector = PatternEngine
