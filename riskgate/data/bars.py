"""Price bars and the historical data source interface."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Protocol

import pandas as pd

from riskgate.errors import DataUnavailable
from riskgate.logging_setup import get_logger

logger = get_logger("data.bars")

OHLCV_COLUMNS = ["open", "high", "low", "close", "volume"]


@dataclass(frozen=True)
class Bar:
    """One OHLCV price bar."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


class HistoricalDataSource(Protocol):
    """Anything that can serve a time-ordered bar sequence for an instrument.

    Implementations raise DataUnavailable when the range cannot be served.
    """

    def get_bars(
        self,
        instrument: str,
        start: date | datetime | str | None = None,
        end: date | datetime | str | None = None,
    ) -> list[Bar]: ...


def normalize_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Return a copy with a naive datetime ``date`` column, sorted by time."""
    df = df.copy()
    if "date" not in df.columns:
        if "timestamp" in df.columns:
            df = df.rename(columns={"timestamp": "date"})
        elif df.index.name in ("date", "timestamp"):
            df = df.reset_index().rename(columns={"timestamp": "date"})
        else:
            raise ValueError("OHLCV frame needs a 'date' or 'timestamp' column")

    df["date"] = pd.to_datetime(df["date"])
    if df["date"].dt.tz is not None:
        df["date"] = df["date"].dt.tz_localize(None)

    missing = [c for c in OHLCV_COLUMNS if c not in df.columns and c != "volume"]
    if missing:
        raise ValueError(f"OHLCV frame missing columns: {missing}")
    if "volume" not in df.columns:
        df["volume"] = 0.0

    return df.sort_values("date").reset_index(drop=True)


def bars_from_frame(df: pd.DataFrame) -> list[Bar]:
    """Convert an OHLCV DataFrame into time-ordered bars.

    Args:
        df: Frame with a ``date`` (or ``timestamp``) column and OHLC(V) columns.

    Returns:
        List of Bar sorted by timestamp.
    """
    df = normalize_frame(df)
    return [
        Bar(
            timestamp=row.date.to_pydatetime(),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in df.itertuples(index=False)
    ]


def bars_to_frame(bars: Sequence[Bar]) -> pd.DataFrame:
    """Convert bars to an OHLCV DataFrame with a ``date`` column."""
    return pd.DataFrame(
        {
            "date": [b.timestamp for b in bars],
            "open": [b.open for b in bars],
            "high": [b.high for b in bars],
            "low": [b.low for b in bars],
            "close": [b.close for b in bars],
            "volume": [b.volume for b in bars],
        },
        columns=["date", *OHLCV_COLUMNS],
    )


def to_datetime(value: date | datetime | str, end_of_day: bool = False) -> datetime:
    """Coerce a date-like value to a naive datetime.

    Plain dates become midnight, or the last microsecond of the day when
    ``end_of_day`` is set so that inclusive end filters work.
    """
    if isinstance(value, str):
        parsed = pd.Timestamp(value)
        if parsed.tzinfo is not None:
            parsed = parsed.tz_localize(None)
        is_date_only = len(value) <= 10
        value = parsed.to_pydatetime()
        if is_date_only and end_of_day:
            value = value + timedelta(days=1) - timedelta(microseconds=1)
        return value
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    start = datetime.combine(value, datetime.min.time())
    if end_of_day:
        return start + timedelta(days=1) - timedelta(microseconds=1)
    return start


def filter_frame(
    df: pd.DataFrame,
    start: date | datetime | str | None = None,
    end: date | datetime | str | None = None,
) -> pd.DataFrame:
    """Filter a normalized frame to an inclusive date range."""
    if start is not None:
        df = df[df["date"] >= to_datetime(start)]
    if end is not None:
        df = df[df["date"] <= to_datetime(end, end_of_day=True)]
    return df.reset_index(drop=True)


class FrameDataSource:
    """In-memory historical data source over OHLCV DataFrames."""

    def __init__(self, frames: dict[str, pd.DataFrame]):
        self._frames = {symbol: normalize_frame(df) for symbol, df in frames.items()}

    def get_bars(
        self,
        instrument: str,
        start: date | datetime | str | None = None,
        end: date | datetime | str | None = None,
    ) -> list[Bar]:
        if instrument not in self._frames:
            raise DataUnavailable(instrument, "no data loaded for instrument")

        df = filter_frame(self._frames[instrument], start, end)
        if df.empty:
            raise DataUnavailable(instrument, f"no bars between {start} and {end}")
        return bars_from_frame(df)


@dataclass
class DataIssue:
    """One data quality finding."""

    type: str  # MISSING_DATA, PRICE_ANOMALY, NEGATIVE_PRICE, NON_MONOTONIC
    description: str
    severity: str  # WARNING or ERROR


@dataclass
class DataQualityReport:
    """Data quality analysis for a bar sequence."""

    instrument: str
    total_bars: int
    start: datetime | None
    end: datetime | None
    issues: list[DataIssue] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(issue.severity == "ERROR" for issue in self.issues)


def check_bar_quality(
    bars: Sequence[Bar],
    instrument: str,
    expected_interval: timedelta | None = None,
    min_coverage: float = 0.95,
) -> DataQualityReport:
    """Scan bars for gaps, inverted ranges, negative prices and ordering errors.

    Args:
        bars: Bars to check.
        instrument: Instrument name for the report.
        expected_interval: Nominal bar spacing. Enables the MISSING_DATA check.
        min_coverage: Fraction of expected bars that must be present.

    Returns:
        DataQualityReport listing all issues found.
    """
    report = DataQualityReport(
        instrument=instrument,
        total_bars=len(bars),
        start=bars[0].timestamp if bars else None,
        end=bars[-1].timestamp if bars else None,
    )

    if expected_interval is not None and len(bars) >= 2:
        expected = int((bars[-1].timestamp - bars[0].timestamp) / expected_interval) + 1
        if len(bars) < expected * min_coverage:
            report.issues.append(
                DataIssue(
                    type="MISSING_DATA",
                    description=f"Expected {expected} bars, got {len(bars)}",
                    severity="WARNING",
                )
            )

    prev: Bar | None = None
    for i, bar in enumerate(bars):
        if bar.high < bar.low:
            report.issues.append(
                DataIssue(
                    type="PRICE_ANOMALY",
                    description=f"Bar {i}: High ({bar.high:.2f}) < Low ({bar.low:.2f})",
                    severity="ERROR",
                )
            )
        if min(bar.open, bar.high, bar.low, bar.close) < 0:
            report.issues.append(
                DataIssue(
                    type="NEGATIVE_PRICE",
                    description=f"Bar {i}: Negative price detected",
                    severity="ERROR",
                )
            )
        if prev is not None and bar.timestamp <= prev.timestamp:
            report.issues.append(
                DataIssue(
                    type="NON_MONOTONIC",
                    description=f"Bar {i}: timestamp {bar.timestamp} not after {prev.timestamp}",
                    severity="ERROR",
                )
            )
        prev = bar

    if report.issues:
        logger.warning(f"Data quality: {len(report.issues)} issue(s) for {instrument}")

    return report
