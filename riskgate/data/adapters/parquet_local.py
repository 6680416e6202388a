"""Local Parquet data adapter.

Loads OHLCV data from local parquet files.
"""

from datetime import date, datetime
from pathlib import Path

import pandas as pd

from riskgate.config import get_config
from riskgate.data.bars import Bar, bars_from_frame, filter_frame, normalize_frame
from riskgate.errors import DataUnavailable
from riskgate.logging_setup import get_logger

logger = get_logger("data.adapters.parquet_local")


class ParquetLocalAdapter:
    """Historical data source backed by local parquet files.

    Files are expected at: {data_dir}/{INSTRUMENT}.parquet

    Each parquet file should have columns:
    - date or timestamp (datetime)
    - open, high, low, close, volume
    """

    def __init__(self, data_dir: Path | str | None = None):
        """Initialize the adapter.

        Args:
            data_dir: Base directory for data. Defaults to config value.
        """
        if data_dir is None:
            data_dir = get_config().data.ohlcv_dir
        self._data_dir = Path(data_dir)
        self._cache: dict[str, pd.DataFrame] = {}

    def _get_file_path(self, instrument: str) -> Path:
        """Get the parquet file path for an instrument."""
        return self._data_dir / f"{instrument}.parquet"

    def load(
        self,
        instrument: str,
        start: date | datetime | str | None = None,
        end: date | datetime | str | None = None,
    ) -> pd.DataFrame:
        """Load OHLCV data for an instrument.

        Args:
            instrument: Instrument symbol.
            start: Optional start date filter (inclusive).
            end: Optional end date filter (inclusive).

        Returns:
            DataFrame with a ``date`` column and OHLCV columns.

        Raises:
            DataUnavailable: If the parquet file does not exist or cannot be read.
        """
        file_path = self._get_file_path(instrument)

        if instrument not in self._cache:
            if not file_path.exists():
                logger.warning(f"Parquet file not found: {file_path}")
                raise DataUnavailable(instrument, f"no data file at {file_path}")

            logger.info(f"Loading data for {instrument} from {file_path}")
            try:
                raw = pd.read_parquet(file_path)
                self._cache[instrument] = normalize_frame(raw)
            except (OSError, ValueError) as e:
                raise DataUnavailable(instrument, f"unreadable data file {file_path}: {e}") from e

        return filter_frame(self._cache[instrument].copy(), start, end)

    def get_bars(
        self,
        instrument: str,
        start: date | datetime | str | None = None,
        end: date | datetime | str | None = None,
    ) -> list[Bar]:
        """Load bars for an instrument over an inclusive range.

        Raises:
            DataUnavailable: If the file is missing or the range has no bars.
        """
        df = self.load(instrument, start, end)
        if df.empty:
            raise DataUnavailable(instrument, f"no bars between {start} and {end}")
        return bars_from_frame(df)

    def available_instruments(self) -> list[str]:
        """List instruments with a parquet file in the data directory."""
        if not self._data_dir.exists():
            return []
        return sorted(p.stem for p in self._data_dir.glob("*.parquet"))

    def clear_cache(self) -> None:
        self._cache.clear()
