"""Backtest CLI.

Replays local parquet bars for one instrument through the SMA crossover
strategy and the risk engine, then writes the run artifacts:

    {out}/results.json       settings, risk limits, performance, trades
    {out}/equity_curve.csv   timestamp, equity, drawdown
    {out}/trades.csv         closed round-trips
"""

import argparse
import json
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import yaml

from riskgate.config import get_config
from riskgate.data.adapters.parquet_local import ParquetLocalAdapter
from riskgate.engine.backtest import BacktestResult, BacktestSettings, BacktestSimulator
from riskgate.engine.risk import RiskLimits, RiskManager
from riskgate.engine.strategy_sma import SmaCrossStrategy
from riskgate.errors import DataUnavailable
from riskgate.logging_setup import get_logger, reset_logging, setup_logging

logger = get_logger("cli.backtest")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_DATA_UNAVAILABLE = 2


def run_backtest(
    instrument: str,
    start: str | None = None,
    end: str | None = None,
    data_dir: Path | None = None,
    risk_config: Path | None = None,
    initial_balance: float | None = None,
    fast: int = 10,
    slow: int = 30,
) -> tuple[BacktestResult, RiskLimits]:
    """Run one SMA crossover backtest over local parquet data.

    Raises:
        DataUnavailable: If no bars exist for the instrument and range.
    """
    limits = RiskLimits.from_yaml(risk_config) if risk_config else RiskLimits.from_config()
    risk_manager = RiskManager(limits=limits)

    settings = BacktestSettings.from_config(instrument)
    if initial_balance is not None:
        settings.initial_balance = initial_balance

    adapter = ParquetLocalAdapter(data_dir=data_dir)
    strategy = SmaCrossStrategy(risk_manager, fast_period=fast, slow_period=slow)
    simulator = BacktestSimulator(settings, risk_manager=risk_manager)

    result = simulator.run_from_source(adapter, start, end, strategy)
    return result, limits


def write_artifacts(result: BacktestResult, limits: RiskLimits, out_dir: Path) -> None:
    """Write results.json, equity_curve.csv and trades.csv to ``out_dir``."""
    out_dir.mkdir(parents=True, exist_ok=True)

    payload: dict[str, Any] = result.to_dict()
    payload["risk_limits"] = limits.to_dict()
    with open(out_dir / "results.json", "w") as f:
        json.dump(payload, f, indent=2, default=str)

    result.equity_frame().to_csv(out_dir / "equity_curve.csv", index=False)
    result.trades_frame().to_csv(out_dir / "trades.csv", index=False)

    logger.info(f"Artifacts written to {out_dir}")


def print_summary(result: BacktestResult) -> None:
    perf = result.performance
    status = "cancelled" if result.cancelled else "completed"
    lines = [
        f"Backtest {status}: {result.settings.instrument} ({result.bars_processed} bars)",
        f"  Final equity:      {perf.final_equity:,.2f}",
        f"  Total return:      {perf.total_return:.2%}",
        f"  CAGR:              {perf.cagr:.2%}",
        f"  Sharpe ratio:      {perf.sharpe_ratio:.3f}",
        f"  Max drawdown:      {perf.max_drawdown:.2%}",
        f"  Trades:            {perf.total_trades} (win rate {perf.win_rate:.1%})",
        f"  Profit factor:     {perf.profit_factor:.2f}",
        f"  Rejected orders:   {result.rejected_orders}",
    ]
    print("\n".join(lines))


def main(argv: list[str] | None = None) -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description="Backtest an SMA crossover strategy through the risk engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m riskgate.cli.backtest --instrument AAPL --start 2023-01-01 --end 2023-12-31
  riskgate-backtest --instrument EURUSD --risk-config risk.yaml --fast 5 --slow 20
        """,
    )
    parser.add_argument(
        "--instrument",
        required=True,
        help="Instrument symbol ({data-dir}/{INSTRUMENT}.parquet)",
    )
    parser.add_argument(
        "--start",
        default=None,
        help="Start date (YYYY-MM-DD, inclusive)",
    )
    parser.add_argument(
        "--end",
        default=None,
        help="End date (YYYY-MM-DD, inclusive)",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Directory of OHLCV parquet files (default: OHLCV_DIR)",
    )
    parser.add_argument(
        "--risk-config",
        type=Path,
        default=None,
        help="YAML file with risk limits (default: RISK_* environment)",
    )
    parser.add_argument(
        "--initial-balance",
        type=float,
        default=None,
        help="Starting account balance (default: BACKTEST_INITIAL_BALANCE)",
    )
    parser.add_argument(
        "--fast",
        type=int,
        default=10,
        help="Fast SMA period (default: 10)",
    )
    parser.add_argument(
        "--slow",
        type=int,
        default=30,
        help="Slow SMA period (default: 30)",
    )
    parser.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Output directory (default: {RUNS_DIR}/backtest_{timestamp})",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: LOG_LEVEL)",
    )

    args = parser.parse_args(argv)

    if args.log_level:
        reset_logging()
        setup_logging(level=args.log_level)

    if args.fast >= args.slow:
        parser.error(f"--fast ({args.fast}) must be less than --slow ({args.slow})")

    out_dir = args.out
    if out_dir is None:
        stamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S")
        out_dir = get_config().runs_dir / f"backtest_{stamp}"

    try:
        result, limits = run_backtest(
            instrument=args.instrument,
            start=args.start,
            end=args.end,
            data_dir=args.data_dir,
            risk_config=args.risk_config,
            initial_balance=args.initial_balance,
            fast=args.fast,
            slow=args.slow,
        )
    except DataUnavailable as e:
        logger.error(f"Data unavailable: {e}")
        print(f"error: {e}", file=sys.stderr)
        return EXIT_DATA_UNAVAILABLE
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Backtest failed: {e}")
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR

    write_artifacts(result, limits, out_dir)
    print_summary(result)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
