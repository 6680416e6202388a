"""Backtesting engine.

Replays a time-ordered bar sequence for one instrument. Each bar marks the
open position to market, extends the equity curve, asks the strategy for an
order, and routes that order through the same risk engine used for live
trading before filling it.
"""

import threading
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, date, datetime
from typing import Any

import pandas as pd

from riskgate.config import get_config
from riskgate.data.bars import Bar, HistoricalDataSource, check_bar_quality
from riskgate.engine.circuit_breaker import BreakerKind
from riskgate.engine.orders import Order, OrderSide, OrderType
from riskgate.engine.positions import FlipPolicy, PositionSide
from riskgate.engine.risk import RiskManager
from riskgate.engine.strategy_base import (
    PositionView,
    StateSnapshot,
    StrategyBase,
    StrategyCallback,
)
from riskgate.errors import DataUnavailable
from riskgate.logging_setup import bind_logger, get_logger
from riskgate.reports.metrics import PerformanceSummary, annualization_factor, compute_performance

logger = get_logger("engine.backtest")


@dataclass
class BacktestSettings:
    """Configuration for one backtest run."""

    instrument: str
    initial_balance: float = 100000.0
    commission_bps: float = 0.0
    slippage_bps: float = 0.0
    bar_interval: str | None = "1d"
    halt_on_drawdown: bool = True

    @classmethod
    def from_config(cls, instrument: str) -> "BacktestSettings":
        """Create BacktestSettings from config."""
        config = get_config()
        return cls(
            instrument=instrument,
            initial_balance=config.backtest.initial_balance,
            commission_bps=config.backtest.commission_bps,
            slippage_bps=config.backtest.slippage_bps,
            bar_interval=config.backtest.bar_interval,
            halt_on_drawdown=config.backtest.halt_on_drawdown,
        )


@dataclass(frozen=True)
class EquityPoint:
    """Mark-to-market equity at one bar close."""

    timestamp: datetime
    equity: float
    drawdown: float


@dataclass(frozen=True)
class TradeRecord:
    """One closed round-trip. P&L is net of commission."""

    trade_id: str
    instrument: str
    side: PositionSide
    quantity: float
    entry_price: float
    entry_time: datetime
    exit_price: float
    exit_time: datetime
    pnl: float
    commission: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        data["side"] = self.side.value
        data["entry_time"] = self.entry_time.isoformat()
        data["exit_time"] = self.exit_time.isoformat()
        return data


@dataclass
class BacktestPosition:
    """Open position inside the simulator."""

    instrument: str
    side: PositionSide
    quantity: float
    entry_price: float
    entry_time: datetime
    opened_quantity: float
    commission: float = 0.0
    gross_realized: float = 0.0  # Realized on partial reductions
    exit_value: float = 0.0
    exit_quantity: float = 0.0

    def unrealized_pnl(self, price: float) -> float:
        if self.side == PositionSide.LONG:
            return (price - self.entry_price) * self.quantity
        return (self.entry_price - price) * self.quantity

    def view(self) -> PositionView:
        return PositionView(
            instrument=self.instrument,
            side=self.side,
            quantity=self.quantity,
            entry_price=self.entry_price,
            entry_time=self.entry_time,
        )


@dataclass
class BacktestState:
    """Mutable simulator state for one run."""

    balance: float
    equity: float
    peak_equity: float
    position: BacktestPosition | None = None
    trades: list[TradeRecord] = field(default_factory=list)
    equity_curve: list[EquityPoint] = field(default_factory=list)
    bar_index: int = -1
    rejected_orders: int = 0

    @property
    def drawdown(self) -> float:
        return self.equity_curve[-1].drawdown if self.equity_curve else 0.0


@dataclass
class BacktestResult:
    """Results from a backtest run."""

    settings: BacktestSettings
    trades: list[TradeRecord]
    equity_curve: list[EquityPoint]
    performance: PerformanceSummary
    cancelled: bool = False
    bars_processed: int = 0
    rejected_orders: int = 0
    open_position: PositionView | None = None
    completed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def equity_frame(self) -> pd.DataFrame:
        """Equity curve as a DataFrame (timestamp, equity, drawdown)."""
        return pd.DataFrame(
            [asdict(p) for p in self.equity_curve],
            columns=["timestamp", "equity", "drawdown"],
        )

    def trades_frame(self) -> pd.DataFrame:
        """Trade ledger as a DataFrame."""
        columns = [
            "trade_id",
            "instrument",
            "side",
            "quantity",
            "entry_price",
            "entry_time",
            "exit_price",
            "exit_time",
            "pnl",
            "commission",
        ]
        return pd.DataFrame([t.to_dict() for t in self.trades], columns=columns)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        open_position = None
        if self.open_position is not None:
            open_position = {
                "instrument": self.open_position.instrument,
                "side": self.open_position.side.value,
                "quantity": self.open_position.quantity,
                "entry_price": self.open_position.entry_price,
                "entry_time": self.open_position.entry_time.isoformat(),
            }
        return {
            "settings": asdict(self.settings),
            "performance": self.performance.to_dict(),
            "cancelled": self.cancelled,
            "bars_processed": self.bars_processed,
            "rejected_orders": self.rejected_orders,
            "total_trades": len(self.trades),
            "open_position": open_position,
            "trades": [t.to_dict() for t in self.trades],
            "completed_at": self.completed_at.isoformat(),
        }


class BacktestSimulator:
    """Bar-by-bar replay loop for one instrument and one strategy.

    Coordinates:
    - Mark-to-market equity and running drawdown
    - Strategy decisions
    - Pre-trade risk checks via RiskManager
    - Simulated fills, trade ledger and realized loss reporting
    - Performance summary at the end of the run

    Processing is single-threaded: a bar is fully handled before the next
    begins. Cancellation is polled at each bar boundary.
    """

    def __init__(
        self,
        settings: BacktestSettings,
        risk_manager: RiskManager | None = None,
    ):
        """Initialize simulator.

        Args:
            settings: Run configuration.
            risk_manager: Risk engine to consult. A private one is created
                from config if not provided.
        """
        self.settings = settings
        self._log = bind_logger(logger, instrument=settings.instrument)
        self._owns_risk_manager = risk_manager is None
        self.risk_manager = risk_manager or RiskManager()
        self._state = self._initial_state()
        self._trade_seq = 0

    def _initial_state(self) -> BacktestState:
        balance = self.settings.initial_balance
        return BacktestState(balance=balance, equity=balance, peak_equity=balance)

    @property
    def state(self) -> BacktestState:
        return self._state

    def run_from_source(
        self,
        source: HistoricalDataSource,
        start: date | datetime | str | None,
        end: date | datetime | str | None,
        strategy: StrategyCallback,
        cancel_event: threading.Event | None = None,
    ) -> BacktestResult:
        """Fetch bars from a data source and replay them.

        Quality issues in the fetched bars are logged, not raised.

        Raises:
            DataUnavailable: If the source cannot serve the range.
        """
        instrument = self.settings.instrument
        bars = source.get_bars(instrument, start, end)
        if not bars:
            raise DataUnavailable(instrument, f"no bars between {start} and {end}")

        check_bar_quality(bars, instrument)
        return self.run(bars, strategy, cancel_event=cancel_event)

    def run(
        self,
        bars: Sequence[Bar],
        strategy: StrategyCallback,
        cancel_event: threading.Event | None = None,
    ) -> BacktestResult:
        """Replay bars through the strategy and the risk engine.

        Args:
            bars: Time-ordered bars for ``settings.instrument``.
            strategy: Decision callback returning at most one order per bar.
            cancel_event: Optional event checked at each bar boundary.

        Returns:
            BacktestResult. ``cancelled`` is set if the run stopped early.

        Raises:
            ValueError: If bars are out of order, or an injected risk engine
                still holds a position in ``settings.instrument``.
        """
        _check_ordering(bars)

        if self._owns_risk_manager:
            self.risk_manager.reset()
        elif self.risk_manager.get_position(self.settings.instrument) is not None:
            raise ValueError(
                f"Risk engine already holds a {self.settings.instrument} position; "
                "reset it before replaying"
            )

        self._state = self._initial_state()
        self._trade_seq = 0
        if isinstance(strategy, StrategyBase):
            strategy.reset()

        self._log.info(
            f"Starting backtest: {self.settings.instrument}, {len(bars)} bars, "
            f"initial balance {self.settings.initial_balance:,.2f}"
        )

        cancelled = False
        bars_processed = 0
        for bar in bars:
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                self._log.info(f"Backtest cancelled after {bars_processed} bars")
                break
            self._process_bar(bar, strategy)
            bars_processed += 1

        return self._finish(bars_processed, cancelled)

    def _process_bar(self, bar: Bar, strategy: StrategyCallback) -> None:
        """Process a single bar: equity update, strategy, risk check, fill."""
        state = self._state
        state.bar_index += 1

        self._update_equity(bar)
        self._check_drawdown_halt(bar)

        snapshot = self._snapshot(bar)
        order = strategy(bar, snapshot)
        if order is None:
            return

        if order.instrument != self.settings.instrument:
            self._log.warning(
                f"Ignoring order for {order.instrument}: simulator trades "
                f"{self.settings.instrument} only"
            )
            return

        result = self.risk_manager.authorize(
            order,
            account_equity=state.equity,
            reference_price=bar.close,
            as_of=bar.timestamp,
        )
        if not result.passed:
            state.rejected_orders += 1
            self._log.debug(f"Order rejected by risk at {bar.timestamp}: {result.reason}")
            return

        self._execute(order, bar)

    def _update_equity(self, bar: Bar) -> None:
        """Mark to market at the bar close and append an equity point."""
        state = self._state

        equity = state.balance
        if state.position is not None:
            equity += state.position.unrealized_pnl(bar.close)
        state.equity = equity

        if equity > state.peak_equity:
            state.peak_equity = equity
        peak = state.peak_equity
        drawdown = (peak - equity) / peak if peak > 0 else 0.0

        state.equity_curve.append(
            EquityPoint(timestamp=bar.timestamp, equity=equity, drawdown=drawdown)
        )

    def _check_drawdown_halt(self, bar: Bar) -> None:
        """Trip a DRAWDOWN breaker once drawdown exceeds the configured maximum."""
        if not self.settings.halt_on_drawdown:
            return

        instrument = self.settings.instrument
        drawdown_pct = self._state.drawdown * 100.0
        limit = self.risk_manager.limits.max_drawdown_pct
        if drawdown_pct > limit and not self.risk_manager.is_breaker_tripped(instrument):
            self.risk_manager.trip_breaker(
                instrument,
                BreakerKind.DRAWDOWN,
                f"drawdown {drawdown_pct:.2f}% exceeds limit {limit:.2f}%",
                as_of=bar.timestamp,
            )

    def _snapshot(self, bar: Bar) -> StateSnapshot:
        state = self._state
        return StateSnapshot(
            instrument=self.settings.instrument,
            bar_index=state.bar_index,
            timestamp=bar.timestamp,
            balance=state.balance,
            equity=state.equity,
            drawdown=state.drawdown,
            position=state.position.view() if state.position is not None else None,
        )

    def _fill_price(self, order: Order, bar: Bar) -> float | None:
        """Simulated execution price, or None if a limit order would not fill."""
        if order.order_type == OrderType.LIMIT and order.limit_price is not None:
            if order.side == OrderSide.BUY and bar.low <= order.limit_price:
                return order.limit_price
            if order.side == OrderSide.SELL and bar.high >= order.limit_price:
                return order.limit_price
            return None

        slippage = bar.close * (self.settings.slippage_bps / 10000.0)
        if order.side == OrderSide.BUY:
            return bar.close + slippage
        return bar.close - slippage

    def _execute(self, order: Order, bar: Bar) -> None:
        """Fill an authorized order and update position, cash and ledger."""
        state = self._state
        price = self._fill_price(order, bar)
        if price is None:
            self._log.debug(f"Limit order {order.order_id} not reached on {bar.timestamp}")
            return

        side = order.side.position_side
        quantity = order.quantity
        position = state.position

        # Under DISCARD an oversized closing order only fills the open quantity
        if (
            position is not None
            and position.side != side
            and quantity > position.quantity
            and self.risk_manager.limits.flip_policy == FlipPolicy.DISCARD
        ):
            quantity = position.quantity

        commission = price * quantity * (self.settings.commission_bps / 10000.0)
        self.risk_manager.on_fill(order.instrument, quantity, price, side, as_of=bar.timestamp)
        state.balance -= commission

        self._log.debug(
            f"Fill: {order.instrument} {order.side.value} {quantity:g}@{price:.4f}, "
            f"commission={commission:.2f}"
        )

        if position is None:
            state.position = self._open_position(order.instrument, side, quantity, price, bar)
            state.position.commission = commission
            return

        if position.side == side:
            total_value = position.quantity * position.entry_price + quantity * price
            position.quantity += quantity
            position.opened_quantity += quantity
            position.entry_price = total_value / position.quantity
            position.commission += commission
            return

        close_qty = min(quantity, position.quantity)
        close_commission = commission * close_qty / quantity
        if position.side == PositionSide.LONG:
            gross = (price - position.entry_price) * close_qty
        else:
            gross = (position.entry_price - price) * close_qty

        state.balance += gross
        position.gross_realized += gross
        position.commission += close_commission
        position.exit_value += price * close_qty
        position.exit_quantity += close_qty
        position.quantity -= close_qty

        if position.quantity > 0:
            return

        self._close_position(position, bar)

        excess = quantity - close_qty
        if excess > 0:
            state.position = self._open_position(order.instrument, side, excess, price, bar)
            state.position.commission = commission - close_commission

    def _open_position(
        self,
        instrument: str,
        side: PositionSide,
        quantity: float,
        price: float,
        bar: Bar,
    ) -> BacktestPosition:
        return BacktestPosition(
            instrument=instrument,
            side=side,
            quantity=quantity,
            entry_price=price,
            entry_time=bar.timestamp,
            opened_quantity=quantity,
        )

    def _close_position(self, position: BacktestPosition, bar: Bar) -> None:
        """Append the round-trip to the ledger and report its realized P&L."""
        state = self._state
        self._trade_seq += 1
        pnl = position.gross_realized - position.commission

        trade = TradeRecord(
            trade_id=f"{position.instrument}-{self._trade_seq}",
            instrument=position.instrument,
            side=position.side,
            quantity=position.opened_quantity,
            entry_price=position.entry_price,
            entry_time=position.entry_time,
            exit_price=position.exit_value / position.exit_quantity,
            exit_time=bar.timestamp,
            pnl=pnl,
            commission=position.commission,
        )
        state.trades.append(trade)
        state.position = None

        self.risk_manager.record_realized_pnl(pnl, as_of=bar.timestamp)
        self._log.info(
            f"Trade closed: {trade.instrument} {trade.side.value} {trade.quantity:g} "
            f"{trade.entry_price:.4f} -> {trade.exit_price:.4f}, pnl={pnl:.2f}"
        )

    def _finish(self, bars_processed: int, cancelled: bool) -> BacktestResult:
        """Compute the performance summary and package the result."""
        state = self._state
        bars_per_year = annualization_factor(
            self.settings.bar_interval,
            [p.timestamp for p in state.equity_curve],
        )
        performance = compute_performance(
            state.equity_curve,
            state.trades,
            initial_equity=self.settings.initial_balance,
            bars_per_year=bars_per_year,
        )

        self._log.info(
            f"Backtest completed. Total return: {performance.total_return:.2%}, "
            f"Max drawdown: {performance.max_drawdown:.2%}, trades: {performance.total_trades}"
        )

        return BacktestResult(
            settings=replace(self.settings),
            trades=list(state.trades),
            equity_curve=list(state.equity_curve),
            performance=performance,
            cancelled=cancelled,
            bars_processed=bars_processed,
            rejected_orders=state.rejected_orders,
            open_position=state.position.view() if state.position is not None else None,
        )


def _check_ordering(bars: Sequence[Bar]) -> None:
    for prev, cur in zip(bars, bars[1:]):
        if cur.timestamp < prev.timestamp:
            raise ValueError(
                f"Bars must be time-ordered: {cur.timestamp} follows {prev.timestamp}"
            )
