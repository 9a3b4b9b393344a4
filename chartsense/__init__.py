"""chartsense — OHLCV signal scoring: cached indicators, patterns, trend consensus."""

__version__ = "0.1.0"

from chartsense.cache import IndicatorCache, get_indicator_cache
from chartsense.config import Settings, get_settings
from chartsense.engines.optimizer_engine import BackgroundOptimizer, GridSearchOptimizer
from chartsense.engines.pattern_engine import PatternDetector, PatternEngine, PatternScanResult
from chartsense.engines.signal_engine import ReferenceTrendTracker, SignalAnalysis, SignalEngine
from chartsense.engines.trend_engine import TrendConsensusScorer, TrendEngine, summarize_correlation
from chartsense.models import IndicatorSet, OHLCVSeries, ParamSet, Trend, TrendScore

__all__ = [
    "BackgroundOptimizer",
    "GridSearchOptimizer",
    "IndicatorCache",
    "IndicatorSet",
    "OHLCVSeries",
    "ParamSet",
    "PatternDetector",
    "PatternEngine",
    "PatternScanResult",
    "ReferenceTrendTracker",
    "Settings",
    "SignalAnalysis",
    "SignalEngine",
    "Trend",
    "TrendConsensusScorer",
    "TrendEngine",
    "TrendScore",
    "get_indicator_cache",
    "get_settings",
    "summarize_correlation",
]
