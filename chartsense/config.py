"""
chartsense — Configuration Management

Pydantic Settings: loads from .env / CHARTSENSE_* environment variables.
All scoring heuristics (tolerance bands, weights, caps) live here as named,
overridable fields; engines take their section as a constructor argument.

Nested values use ``__`` as delimiter, e.g. ``CHARTSENSE_PATTERNS__MIN_DATA_LENGTH=30``.
"""

from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CacheConfig(BaseModel):
    """Indicator cache and background optimizer knobs."""

    # Seconds per timeframe; low timeframes go stale faster
    ttl_seconds: dict[str, float] = Field(default_factory=lambda: {
        "1m": 30,
        "3m": 45,
        "5m": 60,
        "15m": 120,
        "30m": 300,
        "1h": 600,
        "2h": 900,
        "4h": 1800,
        "6h": 2700,
        "12h": 3600,
        "1d": 7200,
        "1w": 21600,
    })
    default_ttl: float = 300.0

    ma_long_fallback_period: int = 50   # used when the series is too short for ma_long
    ma_short_band: tuple[float, float] = (0.8, 1.2)   # ma_short / price
    ma_long_band: tuple[float, float] = (0.6, 1.4)    # ma_long / price

    optimizer_enabled: bool = True
    optimizer_timeout: float = 5.0
    optimizer_cooldown: float = 30.0


class PatternConfig(BaseModel):
    """Pattern detection thresholds and base confidences."""

    min_data_length: int = 20
    breakout_volume_threshold: float = 1.5
    candlestick_tolerance: float = 0.001
    min_separation: int = 3
    regression_min_r2: float = 0.3
    trendline_window: int = 10
    consistency_check_bars: int = 5

    volatility_adjustment: bool = True
    tolerance: float = 0.02           # default band
    tight_tolerance: float = 0.01
    wide_tolerance: float = 0.03
    low_volatility: float = 0.01      # σ of single-bar returns
    high_volatility: float = 0.05

    flag_move_pct: float = 0.05
    flag_consolidation_pct: float = 0.02
    head_shoulders_bars: int = 7
    prior_trend_bars: int = 5

    breakout_confidence: int = 85
    triangle_confidence: int = 70
    flag_confidence: int = 65
    wedge_confidence: int = 60
    double_confidence: int = 75
    head_shoulders_confidence: int = 80
    doji_confidence: int = 70
    engulfing_confidence: int = 80
    hammer_confidence: int = 75

    body_ratio_large: float = 0.7
    body_ratio_small: float = 0.3
    body_ratio_adjust: int = 5
    reversal_bonus: int = 10
    confidence_floor: int = 50
    confidence_ceiling: int = 95
    high_confidence: int = 80


class TrendConfig(BaseModel):
    """Trend consensus votes, strength weights and de-saturation caps."""

    high_timeframes: tuple[str, ...] = ("1d", "1w")
    price_ma_band: float = 0.002       # ±0.2% around the long MA counts as no vote
    min_vote_margin: int = 2

    rsi_extreme_high: float = 70.0
    rsi_extreme_low: float = 30.0
    rsi_moderate_high: float = 60.0
    rsi_moderate_low: float = 40.0
    rsi_extreme_points: float = 20.0
    rsi_moderate_points: float = 10.0

    macd_scale: float = 1000.0         # applied to (macd - signal) / price
    macd_cap: float = 15.0

    ma_strong_spread_pct: float = 2.0
    ma_moderate_spread_pct: float = 0.5
    ma_strong_points: float = 25.0
    ma_moderate_points: float = 15.0

    volume_lookback: int = 20
    volume_high_ratio: float = 1.5
    volume_low_ratio: float = 0.7
    volume_high_points: float = 8.0
    volume_low_points: float = 5.0

    near_ma_pct: float = 1.5
    near_ma_cap: int = 55
    away_from_ma_floor: int = 60

    consolidation_atr_bars: int = 14
    consolidation_slope_bars: int = 20
    consolidation_atr_pct: float = 1.0
    consolidation_slope_pct: float = 1.0
    consolidation_cap: int = 70

    high_timeframe_ceiling: int = 80
    extreme_ceiling: int = 95
    extreme_price_vs_ma_pct: float = 5.0
    extreme_rsi_high: float = 75.0
    extreme_rsi_low: float = 25.0
    extreme_histogram_pct: float = 0.1


class CorrelationConfig(BaseModel):
    """Cross-asset alignment tiers and correlation scaling."""

    lookback: int = 20
    use_log_returns: bool = False
    min_reference_strength: float = 30.0
    strong_strength: float = 70.0
    moderate_strength: float = 50.0

    aligned_bonus: tuple[int, int, int] = (25, 15, 8)     # strong, moderate, weak
    against_penalty: tuple[int, int] = (-15, -8)          # strong, moderate
    weak_against_bonus: int = 3

    confidence_floor: int = 30
    confidence_ceiling: int = 95


class ReferenceConfig(BaseModel):
    """Reference asset used for correlation adjustment."""

    symbol: str = "BTC/USDT"
    timeframe: str = "1h"
    lookback: int = 100
    min_bars: int = 50
    ttl_seconds: float = 900.0


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CHARTSENSE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Core ──
    app_env: str = "development"
    log_level: str = "INFO"
    log_json: bool = False

    # ── Engines ──
    cache: CacheConfig = Field(default_factory=CacheConfig)
    patterns: PatternConfig = Field(default_factory=PatternConfig)
    trend: TrendConfig = Field(default_factory=TrendConfig)
    correlation: CorrelationConfig = Field(default_factory=CorrelationConfig)
    reference: ReferenceConfig = Field(default_factory=ReferenceConfig)

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance, created once and reused."""
    return Settings()
