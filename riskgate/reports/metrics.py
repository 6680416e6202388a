"""Performance metrics for finished backtest runs.

Pure functions over the equity curve and the closed-trade ledger. Every
degenerate input (no points, no trades, zero variance, zero equity)
resolves to 0.0 rather than NaN or inf.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    from riskgate.engine.backtest import EquityPoint, TradeRecord

HOURS_PER_YEAR = 8760.0
TRADING_DAYS_PER_YEAR = 252
TRADING_HOURS_PER_DAY = 6.5

# Bars per year for common bar intervals (US equity session calendar)
BARS_PER_YEAR: dict[str, float] = {
    "1m": TRADING_DAYS_PER_YEAR * TRADING_HOURS_PER_DAY * 60,
    "5m": TRADING_DAYS_PER_YEAR * TRADING_HOURS_PER_DAY * 12,
    "15m": TRADING_DAYS_PER_YEAR * TRADING_HOURS_PER_DAY * 4,
    "30m": TRADING_DAYS_PER_YEAR * TRADING_HOURS_PER_DAY * 2,
    "1h": TRADING_DAYS_PER_YEAR * TRADING_HOURS_PER_DAY,
    "4h": TRADING_DAYS_PER_YEAR * 2,
    "1d": TRADING_DAYS_PER_YEAR,
    "1w": 52,
}


@dataclass
class PerformanceSummary:
    """Summary statistics for one backtest run.

    Returns and drawdown are fractions (0.05 == 5%).
    """

    total_return: float = 0.0
    annualized_return: float = 0.0
    cagr: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    sqn: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    final_equity: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


def _finite_or_zero(value: float) -> float:
    return float(value) if np.isfinite(value) else 0.0


def annualization_factor(
    bar_interval: str | None = None,
    timestamps: Sequence[datetime] | None = None,
) -> float:
    """Number of bars per year implied by the bar interval.

    A known interval string wins. Otherwise the factor is inferred from the
    median spacing of ``timestamps`` over a calendar year. Falls back to
    252 (daily bars).

    Args:
        bar_interval: Interval label such as "1m", "1h" or "1d".
        timestamps: Bar timestamps used for inference.

    Returns:
        Bars per year.
    """
    if bar_interval and bar_interval in BARS_PER_YEAR:
        return float(BARS_PER_YEAR[bar_interval])

    if timestamps is not None and len(timestamps) >= 2:
        deltas = pd.Series(pd.to_datetime(list(timestamps))).diff().dropna()
        median_seconds = deltas.dt.total_seconds().median()
        if median_seconds and median_seconds > 0:
            return HOURS_PER_YEAR * 3600.0 / median_seconds

    return float(TRADING_DAYS_PER_YEAR)


def years_between(start: datetime, end: datetime) -> float:
    """Elapsed time in years (8760-hour years)."""
    return (end - start).total_seconds() / 3600.0 / HOURS_PER_YEAR


def total_return(initial_equity: float, final_equity: float) -> float:
    """Total return as a fraction of initial equity."""
    if initial_equity <= 0:
        return 0.0
    return (final_equity - initial_equity) / initial_equity


def compound_annual_rate(growth: float, years: float) -> float:
    """Annualize a growth multiple (final/initial) over ``years``.

    Returns -1.0 for a wiped-out account and 0.0 when undefined.
    """
    if years <= 0:
        return 0.0
    if growth <= 0:
        return -1.0
    with np.errstate(over="ignore"):
        rate = np.power(growth, 1.0 / years) - 1.0
    return _finite_or_zero(rate)


def max_drawdown(equity: pd.Series, initial_equity: float | None = None) -> float:
    """Maximum drawdown from the running peak, as a fraction.

    Args:
        equity: Equity values over time.
        initial_equity: Optional starting equity that seeds the running peak.

    Returns:
        Maximum drawdown (0.1 for a 10% decline).
    """
    if len(equity) == 0:
        return 0.0

    running_max = equity.cummax()
    if initial_equity is not None:
        running_max = running_max.clip(lower=initial_equity)

    with np.errstate(divide="ignore", invalid="ignore"):
        drawdown = (running_max - equity) / running_max
    drawdown = drawdown.where(running_max > 0, 0.0)

    return _finite_or_zero(drawdown.max())


def sharpe_ratio(equity: pd.Series, bars_per_year: float = TRADING_DAYS_PER_YEAR) -> float:
    """Annualized Sharpe ratio of per-bar simple returns (zero risk-free rate).

    Args:
        equity: Equity values, one per bar.
        bars_per_year: Annualization factor.

    Returns:
        Sharpe ratio, 0.0 for fewer than two points or zero variance.
    """
    if len(equity) < 2:
        return 0.0

    returns = equity.astype(float).pct_change().replace([np.inf, -np.inf], np.nan).dropna()
    if len(returns) < 2:
        return 0.0

    mean_return = returns.mean()
    std_return = returns.std()

    if not np.isfinite(std_return) or std_return < 1e-12:
        return 0.0

    return _finite_or_zero((mean_return / std_return) * np.sqrt(bars_per_year))


def system_quality_number(pnls: Sequence[float]) -> float:
    """Van Tharp's SQN: mean(pnl) / std(pnl) * sqrt(n). 0.0 below two trades."""
    if len(pnls) < 2:
        return 0.0

    values = np.asarray(pnls, dtype=float)
    std = values.std(ddof=1)
    if not np.isfinite(std) or std == 0:
        return 0.0

    return _finite_or_zero(values.mean() / std * np.sqrt(len(values)))


def win_rate(pnls: Sequence[float]) -> float:
    """Fraction of trades with positive P&L."""
    if len(pnls) == 0:
        return 0.0
    return sum(1 for p in pnls if p > 0) / len(pnls)


def profit_factor(pnls: Sequence[float]) -> float:
    """Gross profit over gross loss.

    Returns 0.0 when there are no losing trades, so the figure stays finite
    and JSON-serializable.
    """
    gross_profit = sum(p for p in pnls if p > 0)
    gross_loss = abs(sum(p for p in pnls if p < 0))
    if gross_loss == 0:
        return 0.0
    return gross_profit / gross_loss


def compute_performance(
    equity_curve: Sequence[EquityPoint],
    trades: Sequence[TradeRecord],
    initial_equity: float,
    bars_per_year: float | None = None,
) -> PerformanceSummary:
    """Reduce an equity curve and trade ledger to summary statistics.

    Args:
        equity_curve: Equity points in time order, with drawdown already set.
        trades: Closed round-trip trades.
        initial_equity: Starting balance.
        bars_per_year: Sharpe annualization factor. Inferred from the
            curve's timestamps if omitted.

    Returns:
        PerformanceSummary.
    """
    pnls = [t.pnl for t in trades]
    winning = sum(1 for p in pnls if p > 0)
    losing = sum(1 for p in pnls if p < 0)

    if not equity_curve:
        return PerformanceSummary(
            win_rate=win_rate(pnls),
            profit_factor=profit_factor(pnls),
            sqn=system_quality_number(pnls),
            total_trades=len(pnls),
            winning_trades=winning,
            losing_trades=losing,
            final_equity=initial_equity,
        )

    equity = pd.Series([p.equity for p in equity_curve], dtype=float)
    final_equity = float(equity.iloc[-1])
    first_ts = equity_curve[0].timestamp
    last_ts = equity_curve[-1].timestamp

    if bars_per_year is None:
        bars_per_year = annualization_factor(timestamps=[p.timestamp for p in equity_curve])

    ret = total_return(initial_equity, final_equity)
    years = years_between(first_ts, last_ts)
    if initial_equity <= 0:
        years = 0.0
    growth = final_equity / initial_equity if initial_equity > 0 else 0.0

    return PerformanceSummary(
        total_return=ret,
        annualized_return=compound_annual_rate(1.0 + ret, years),
        cagr=compound_annual_rate(growth, years),
        sharpe_ratio=sharpe_ratio(equity, bars_per_year),
        max_drawdown=_finite_or_zero(max(p.drawdown for p in equity_curve)),
        win_rate=win_rate(pnls),
        profit_factor=profit_factor(pnls),
        sqn=system_quality_number(pnls),
        total_trades=len(pnls),
        winning_trades=winning,
        losing_trades=losing,
        final_equity=final_equity,
    )
