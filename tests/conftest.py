"""Pytest configuration and fixtures."""

from collections.abc import Callable, Generator
from datetime import datetime, timedelta
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from riskgate.config import reset_config
from riskgate.data.bars import Bar
from riskgate.logging_setup import reset_logging


@pytest.fixture(autouse=True)
def reset_globals() -> Generator[None, None, None]:
    """Reset global state before each test."""
    reset_config()
    reset_logging()
    yield
    reset_config()
    reset_logging()


def _make_bars(
    closes: list[float],
    start: datetime = datetime(2024, 1, 2),
    step: timedelta = timedelta(days=1),
    spread: float = 1.0,
) -> list[Bar]:
    """Build bars from closing prices with a fixed high/low spread."""
    return [
        Bar(
            timestamp=start + i * step,
            open=close,
            high=close + spread,
            low=close - spread,
            close=close,
            volume=1000.0,
        )
        for i, close in enumerate(closes)
    ]


@pytest.fixture
def make_bars() -> Callable[..., list[Bar]]:
    """Factory for bar sequences built from closing prices."""
    return _make_bars


@pytest.fixture
def sample_ohlcv_df() -> pd.DataFrame:
    """Create sample OHLCV DataFrame."""
    np.random.seed(42)

    dates = pd.date_range(start="2023-01-03", periods=30, freq="B")
    n = len(dates)

    # Generate price data
    close = 100 * np.exp(np.cumsum(np.random.randn(n) * 0.02))

    return pd.DataFrame(
        {
            "date": dates,
            "open": close * (1 + np.random.randn(n) * 0.005),
            "high": close * (1 + np.abs(np.random.randn(n) * 0.01)),
            "low": close * (1 - np.abs(np.random.randn(n) * 0.01)),
            "close": close,
            "volume": np.random.randint(1000000, 10000000, n),
        }
    )


@pytest.fixture
def tmp_data_dir(tmp_path: Path) -> Path:
    """Create temporary data directory."""
    data_dir = tmp_path / "data" / "ohlcv"
    data_dir.mkdir(parents=True)
    return data_dir
