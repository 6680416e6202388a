"""Feature engineering modules for trading signals."""

from riskgate.features.ta import calculate_atr, calculate_sma, latest_atr

__all__ = [
    "calculate_sma",
    "calculate_atr",
    "latest_atr",
]
