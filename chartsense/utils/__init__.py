# Shared utilities: numeric helpers, validators, formatters
from chartsense.utils.formatters import format_pct, format_price, format_signed
from chartsense.utils.stats import (
    clamp,
    linear_regression,
    pct_returns,
    pearson_correlation,
    return_volatility,
    round_half_up,
)
from chartsense.utils.validators import (
    check_ohlc_window,
    is_valid_candle,
    validate_symbol,
    validate_timeframe,
)

__all__ = [
    "check_ohlc_window",
    "clamp",
    "format_pct",
    "format_price",
    "format_signed",
    "is_valid_candle",
    "linear_regression",
    "pct_returns",
    "pearson_correlation",
    "return_volatility",
    "round_half_up",
    "validate_symbol",
    "validate_timeframe",
]
