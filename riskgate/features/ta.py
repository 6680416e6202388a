"""Technical analysis indicators.

Used by strategies to derive entry signals and ATR-based order sizes.
"""

from collections.abc import Sequence

import numpy as np
import pandas as pd

from riskgate.data.bars import Bar


def calculate_sma(prices: pd.Series, period: int) -> pd.Series:
    """Calculate Simple Moving Average.

    Args:
        prices: Price series.
        period: SMA period.

    Returns:
        SMA series (NaN until ``period`` observations are available).
    """
    return prices.rolling(window=period, min_periods=period).mean()


def calculate_atr(
    high: pd.Series,
    low: pd.Series,
    close: pd.Series,
    period: int = 14,
) -> pd.Series:
    """Calculate Average True Range.

    Args:
        high: High price series.
        low: Low price series.
        close: Close price series.
        period: ATR period.

    Returns:
        ATR series.
    """
    prev_close = close.shift(1)

    tr1 = high - low
    tr2 = (high - prev_close).abs()
    tr3 = (low - prev_close).abs()

    true_range = pd.concat([tr1, tr2, tr3], axis=1).max(axis=1)

    # Wilder smoothing
    alpha = 1.0 / period
    return true_range.ewm(alpha=alpha, min_periods=period, adjust=False).mean()


def latest_atr(bars: Sequence[Bar], period: int = 14) -> float:
    """ATR at the last bar of a sequence, or NaN if there is not enough history."""
    if len(bars) < period:
        return float("nan")

    high = pd.Series([b.high for b in bars], dtype=float)
    low = pd.Series([b.low for b in bars], dtype=float)
    close = pd.Series([b.close for b in bars], dtype=float)
    value = calculate_atr(high, low, close, period).iloc[-1]
    return float(value) if not np.isnan(value) else float("nan")
