"""Configuration management for riskgate.

Loads configuration from environment variables with sane defaults.
Uses python-dotenv to load from .env file if present.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


def _get_env_float(key: str, default: float) -> float:
    """Get float from environment variable."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_env_int(key: str, default: int) -> int:
    """Get int from environment variable."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_env_str(key: str, default: str) -> str:
    """Get string from environment variable."""
    return os.getenv(key, default)


def _get_env_bool(key: str, default: bool) -> bool:
    """Get bool from environment variable ("true"/"1"/"yes")."""
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class DataConfig:
    """Data-related configuration."""

    data_dir: Path
    ohlcv_dir: Path

    @classmethod
    def from_env(cls) -> "DataConfig":
        """Create DataConfig from environment variables."""
        data_dir = Path(_get_env_str("DATA_DIR", "./data"))
        ohlcv_dir = Path(_get_env_str("OHLCV_DIR", "./data/ohlcv"))
        return cls(data_dir=data_dir, ohlcv_dir=ohlcv_dir)


@dataclass(frozen=True)
class LoggingConfig:
    """Logging-related configuration."""

    level: str
    format: str

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        """Create LoggingConfig from environment variables."""
        return cls(
            level=_get_env_str("LOG_LEVEL", "INFO"),
            format=_get_env_str("LOG_FORMAT", "json"),
        )


@dataclass(frozen=True)
class RiskConfig:
    """Risk engine configuration.

    All percentages are in percent units (10.0 means 10% of account equity).
    """

    max_position_size_pct: float
    max_daily_loss_pct: float
    max_weekly_loss_pct: float
    max_drawdown_pct: float
    max_concurrent_positions: int
    risk_per_trade_pct: float
    flip_policy: str  # "discard" or "reverse"

    @classmethod
    def from_env(cls) -> "RiskConfig":
        """Create RiskConfig from environment variables."""
        return cls(
            max_position_size_pct=_get_env_float("RISK_MAX_POSITION_SIZE_PCT", 10.0),
            max_daily_loss_pct=_get_env_float("RISK_MAX_DAILY_LOSS_PCT", 2.0),
            max_weekly_loss_pct=_get_env_float("RISK_MAX_WEEKLY_LOSS_PCT", 5.0),
            max_drawdown_pct=_get_env_float("RISK_MAX_DRAWDOWN_PCT", 15.0),
            max_concurrent_positions=_get_env_int("RISK_MAX_CONCURRENT_POSITIONS", 5),
            risk_per_trade_pct=_get_env_float("RISK_PER_TRADE_PCT", 0.25),
            flip_policy=_get_env_str("RISK_FLIP_POLICY", "discard"),
        )


@dataclass(frozen=True)
class BacktestConfig:
    """Backtesting-related configuration."""

    initial_balance: float
    commission_bps: float
    slippage_bps: float
    bar_interval: str
    halt_on_drawdown: bool

    @classmethod
    def from_env(cls) -> "BacktestConfig":
        """Create BacktestConfig from environment variables."""
        return cls(
            initial_balance=_get_env_float("BACKTEST_INITIAL_BALANCE", 100000.0),
            commission_bps=_get_env_float("BACKTEST_COMMISSION_BPS", 0.0),
            slippage_bps=_get_env_float("BACKTEST_SLIPPAGE_BPS", 0.0),
            bar_interval=_get_env_str("BACKTEST_BAR_INTERVAL", "1d"),
            halt_on_drawdown=_get_env_bool("BACKTEST_HALT_ON_DRAWDOWN", True),
        )


@dataclass(frozen=True)
class Config:
    """Main configuration container."""

    data: DataConfig
    logging: LoggingConfig
    risk: RiskConfig
    backtest: BacktestConfig
    runs_dir: Path

    @classmethod
    def from_env(cls) -> "Config":
        """Create Config from environment variables."""
        return cls(
            data=DataConfig.from_env(),
            logging=LoggingConfig.from_env(),
            risk=RiskConfig.from_env(),
            backtest=BacktestConfig.from_env(),
            runs_dir=Path(_get_env_str("RUNS_DIR", "./runs")),
        )


# Global configuration instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _config
    _config = None
