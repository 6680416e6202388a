"""Tests for the backtest simulator."""

import threading
from collections.abc import Callable
from datetime import datetime, timedelta

import pytest

from riskgate.data.bars import Bar, FrameDataSource, bars_to_frame
from riskgate.engine.backtest import BacktestSettings, BacktestSimulator
from riskgate.engine.circuit_breaker import BreakerKind
from riskgate.engine.orders import Order, OrderSide, OrderType
from riskgate.engine.positions import FlipPolicy, PositionSide
from riskgate.engine.risk import RiskLimits, RiskManager
from riskgate.engine.strategy_base import StateSnapshot, StrategyBase
from riskgate.errors import DataUnavailable

MakeBars = Callable[..., list[Bar]]


class ScriptedStrategy(StrategyBase):
    """Emits pre-planned orders keyed by bar index."""

    def __init__(self, plan: dict[int, tuple[OrderSide, float]], order_type=OrderType.MARKET):
        super().__init__("scripted")
        self.plan = plan
        self.order_type = order_type
        self.snapshots: list[StateSnapshot] = []
        self.limit_price: float | None = None

    def reset(self) -> None:
        self.snapshots = []

    def on_bar(self, bar: Bar, snapshot: StateSnapshot) -> Order | None:
        self.snapshots.append(snapshot)
        step = self.plan.get(snapshot.bar_index)
        if step is None:
            return None
        side, quantity = step
        return Order(
            instrument=snapshot.instrument,
            side=side,
            quantity=quantity,
            order_type=self.order_type,
            limit_price=self.limit_price,
        )


def _simulator(
    limits: RiskLimits | None = None,
    **settings: float | str | bool,
) -> BacktestSimulator:
    risk_manager = RiskManager(limits=limits or RiskLimits(max_concurrent_positions=1))
    return BacktestSimulator(
        BacktestSettings(instrument="EURUSD", initial_balance=100000.0, **settings),
        risk_manager=risk_manager,
    )


class TestEquityTracking:
    """Tests for mark-to-market equity and drawdown."""

    def test_flat_series_without_trades(self, make_bars: MakeBars) -> None:
        """Test an idle run has flat equity and no drawdown."""
        sim = _simulator()

        result = sim.run(make_bars([100.0] * 10), lambda bar, snap: None)

        assert len(result.equity_curve) == 10
        assert all(p.equity == pytest.approx(100000.0) for p in result.equity_curve)
        assert result.performance.max_drawdown == 0.0
        assert result.performance.total_return == 0.0
        assert result.performance.sharpe_ratio == 0.0
        assert result.trades == []

    def test_rising_series_holding_long(self, make_bars: MakeBars) -> None:
        """Test a monotonic rise has no drawdown and marks the open position."""
        closes = [100.0 + i for i in range(10)]
        sim = _simulator()

        result = sim.run(make_bars(closes), ScriptedStrategy({0: (OrderSide.BUY, 10)}))

        assert result.performance.max_drawdown == 0.0
        assert result.performance.total_return == pytest.approx((109.0 - 100.0) * 10 / 100000.0)
        assert result.equity_curve[-1].equity == pytest.approx(100090.0)
        assert result.open_position is not None
        assert result.open_position.quantity == 10
        assert result.trades == []

    def test_drawdown_uses_running_peak(self, make_bars: MakeBars) -> None:
        """Test drawdown is measured from the highest equity so far."""
        sim = _simulator()

        result = sim.run(
            make_bars([100.0, 200.0, 150.0, 180.0]),
            ScriptedStrategy({0: (OrderSide.BUY, 100)}),
        )

        # Peak equity 110000 at bar 1; bar 2 equity 105000
        assert result.equity_curve[2].drawdown == pytest.approx(5000.0 / 110000.0)
        assert result.equity_curve[3].drawdown == pytest.approx(2000.0 / 110000.0)
        assert result.performance.max_drawdown == pytest.approx(5000.0 / 110000.0)

    def test_snapshot_reflects_state(self, make_bars: MakeBars) -> None:
        """Test the strategy sees equity after the bar's mark-to-market."""
        strategy = ScriptedStrategy({0: (OrderSide.BUY, 10)})
        sim = _simulator()

        sim.run(make_bars([100.0, 105.0]), strategy)

        first, second = strategy.snapshots
        assert first.is_flat
        assert first.equity == pytest.approx(100000.0)
        assert second.position is not None
        assert second.position.side == PositionSide.LONG
        assert second.equity == pytest.approx(100050.0)
        assert second.bar_index == 1


class TestTrades:
    """Tests for fills and the trade ledger."""

    def test_losing_round_trip(self, make_bars: MakeBars) -> None:
        """Test a 100 -> 90 long of 10 units loses 100."""
        sim = _simulator()

        result = sim.run(
            make_bars([100.0, 90.0]),
            ScriptedStrategy({0: (OrderSide.BUY, 10), 1: (OrderSide.SELL, 10)}),
        )

        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.pnl == pytest.approx(-100.0)
        assert trade.entry_price == pytest.approx(100.0)
        assert trade.exit_price == pytest.approx(90.0)
        assert trade.side == PositionSide.LONG
        assert result.performance.win_rate == 0.0
        assert result.performance.profit_factor == 0.0
        assert result.performance.losing_trades == 1

    def test_profitable_full_size_long_closes(self, make_bars: MakeBars) -> None:
        """Test an exit passes after a gain pushed the position past the size cap."""
        sim = _simulator()

        result = sim.run(
            make_bars([100.0, 125.0]),
            ScriptedStrategy({0: (OrderSide.BUY, 100), 1: (OrderSide.SELL, 100)}),
        )

        assert result.rejected_orders == 0
        assert result.open_position is None
        assert len(result.trades) == 1
        assert result.trades[0].pnl == pytest.approx(2500.0)
        assert sim.risk_manager.get_positions() == {}
        assert sim.state.balance == pytest.approx(99900.0)
        assert sim.risk_manager.daily_loss(as_of=trade.exit_time) == pytest.approx(100.0)
        assert sim.risk_manager.get_positions() == {}

    def test_short_round_trip(self, make_bars: MakeBars) -> None:
        """Test a short profits when price falls."""
        sim = _simulator()

        result = sim.run(
            make_bars([100.0, 95.0]),
            ScriptedStrategy({0: (OrderSide.SELL, 10), 1: (OrderSide.BUY, 10)}),
        )

        assert result.trades[0].side == PositionSide.SHORT
        assert result.trades[0].pnl == pytest.approx(50.0)

    def test_commission_and_slippage(self, make_bars: MakeBars) -> None:
        """Test fills pay slippage and net P&L deducts commission."""
        sim = _simulator(commission_bps=10.0, slippage_bps=100.0)

        result = sim.run(
            make_bars([100.0, 110.0]),
            ScriptedStrategy({0: (OrderSide.BUY, 10), 1: (OrderSide.SELL, 10)}),
        )

        trade = result.trades[0]
        assert trade.entry_price == pytest.approx(101.0)
        assert trade.exit_price == pytest.approx(108.9)
        expected_commission = (101.0 * 10 + 108.9 * 10) * 0.001
        assert trade.commission == pytest.approx(expected_commission)
        assert trade.pnl == pytest.approx((108.9 - 101.0) * 10 - expected_commission)
        assert sim.state.balance == pytest.approx(100000.0 + trade.pnl)

    def test_partial_exits_make_one_trade(self, make_bars: MakeBars) -> None:
        """Test scaling out produces a single round-trip with VWAP exit."""
        sim = _simulator()

        result = sim.run(
            make_bars([100.0, 110.0, 120.0]),
            ScriptedStrategy(
                {0: (OrderSide.BUY, 10), 1: (OrderSide.SELL, 5), 2: (OrderSide.SELL, 5)}
            ),
        )

        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.quantity == 10
        assert trade.exit_price == pytest.approx(115.0)
        assert trade.pnl == pytest.approx(150.0)

    def test_oversized_exit_discarded(self, make_bars: MakeBars) -> None:
        """Test DISCARD clips an oversized exit to the open quantity."""
        sim = _simulator()

        result = sim.run(
            make_bars([100.0, 110.0]),
            ScriptedStrategy({0: (OrderSide.BUY, 10), 1: (OrderSide.SELL, 15)}),
        )

        assert len(result.trades) == 1
        assert result.open_position is None
        assert sim.risk_manager.get_positions() == {}

    def test_oversized_exit_reverses(self, make_bars: MakeBars) -> None:
        """Test REVERSE opens the excess on the other side."""
        limits = RiskLimits(max_concurrent_positions=1, flip_policy=FlipPolicy.REVERSE)
        sim = _simulator(limits=limits)

        result = sim.run(
            make_bars([100.0, 110.0]),
            ScriptedStrategy({0: (OrderSide.BUY, 10), 1: (OrderSide.SELL, 15)}),
        )

        assert result.trades[0].pnl == pytest.approx(100.0)
        assert result.open_position is not None
        assert result.open_position.side == PositionSide.SHORT
        assert result.open_position.quantity == 5
        ledger_position = sim.risk_manager.get_position("EURUSD")
        assert ledger_position is not None
        assert ledger_position.side == PositionSide.SHORT

    def test_limit_order_fills_when_traded_through(self, make_bars: MakeBars) -> None:
        """Test a buy limit fills only once the bar's low reaches it."""
        strategy = ScriptedStrategy(
            {0: (OrderSide.BUY, 10), 1: (OrderSide.BUY, 10)}, order_type=OrderType.LIMIT
        )
        strategy.limit_price = 95.0
        sim = _simulator()

        result = sim.run(make_bars([100.0, 95.5]), strategy)

        assert result.open_position is not None
        assert result.open_position.quantity == 10
        assert result.open_position.entry_price == pytest.approx(95.0)

    def test_trades_frame(self, make_bars: MakeBars) -> None:
        """Test trade ledger export."""
        sim = _simulator()
        result = sim.run(
            make_bars([100.0, 90.0]),
            ScriptedStrategy({0: (OrderSide.BUY, 10), 1: (OrderSide.SELL, 10)}),
        )

        df = result.trades_frame()

        assert len(df) == 1
        assert df["side"].iloc[0] == "LONG"
        assert df["pnl"].iloc[0] == pytest.approx(-100.0)


class TestRiskIntegration:
    """Tests for orders routed through the risk engine."""

    def test_oversized_order_rejected(self, make_bars: MakeBars) -> None:
        """Test a 15% order is refused and counted."""
        sim = _simulator()

        result = sim.run(make_bars([100.0, 100.0]), ScriptedStrategy({0: (OrderSide.BUY, 150)}))

        assert result.rejected_orders == 1
        assert result.open_position is None
        assert sim.risk_manager.get_positions() == {}

    def test_drawdown_trips_breaker(self, make_bars: MakeBars) -> None:
        """Test exceeding max drawdown halts further orders."""
        limits = RiskLimits(max_concurrent_positions=1, max_drawdown_pct=1.0)
        sim = _simulator(limits=limits)

        result = sim.run(
            make_bars([100.0, 80.0, 80.0]),
            ScriptedStrategy({0: (OrderSide.BUY, 100), 2: (OrderSide.BUY, 1)}),
        )

        breaker = sim.risk_manager.get_circuit_breakers()["EURUSD"]
        assert breaker.kind == BreakerKind.DRAWDOWN
        assert result.rejected_orders == 1

    def test_drawdown_halt_disabled(self, make_bars: MakeBars) -> None:
        """Test no breaker is tripped when the halt is switched off."""
        limits = RiskLimits(max_concurrent_positions=1, max_drawdown_pct=1.0)
        sim = _simulator(limits=limits, halt_on_drawdown=False)

        sim.run(make_bars([100.0, 80.0]), ScriptedStrategy({0: (OrderSide.BUY, 100)}))

        assert not sim.risk_manager.is_breaker_tripped("EURUSD")

    def test_daily_loss_blocks_same_day(self, make_bars: MakeBars) -> None:
        """Test a realized loss over the daily limit blocks the rest of that day."""
        limits = RiskLimits(max_concurrent_positions=1, max_daily_loss_pct=0.1)
        start = datetime(2024, 3, 4, 10, 0)
        bars = make_bars([100.0, 80.0, 80.0], start=start, step=timedelta(hours=1))
        sim = _simulator(limits=limits, bar_interval="1h")

        result = sim.run(
            bars,
            ScriptedStrategy(
                {0: (OrderSide.BUY, 100), 1: (OrderSide.SELL, 100), 2: (OrderSide.BUY, 1)}
            ),
        )

        assert result.trades[0].pnl == pytest.approx(-2000.0)
        assert result.rejected_orders == 1

    def test_foreign_instrument_ignored(self, make_bars: MakeBars) -> None:
        """Test orders for other instruments are not filled."""
        sim = _simulator()

        def strategy(bar: Bar, snapshot: StateSnapshot) -> Order | None:
            return Order(instrument="GBPUSD", side=OrderSide.BUY, quantity=1)

        result = sim.run(make_bars([100.0]), strategy)

        assert result.open_position is None
        assert sim.risk_manager.get_positions() == {}


class TestRunControl:
    """Tests for ordering, cancellation and data sources."""

    def test_out_of_order_bars_rejected(self, make_bars: MakeBars) -> None:
        """Test replaying bars backwards raises."""
        bars = make_bars([100.0, 101.0])

        with pytest.raises(ValueError, match="time-ordered"):
            _simulator().run(list(reversed(bars)), lambda bar, snap: None)

    def test_cancellation_stops_at_bar_boundary(self, make_bars: MakeBars) -> None:
        """Test a cancel request ends the run before the next bar."""
        cancel = threading.Event()

        def strategy(bar: Bar, snapshot: StateSnapshot) -> Order | None:
            if snapshot.bar_index == 2:
                cancel.set()
            return None

        result = _simulator().run(make_bars([100.0] * 10), strategy, cancel_event=cancel)

        assert result.cancelled
        assert result.bars_processed == 3
        assert len(result.equity_curve) == 3

    def test_cancellation_keeps_open_position(self, make_bars: MakeBars) -> None:
        """Test an open position is reported, not force-closed, on cancel."""
        cancel = threading.Event()
        scripted = ScriptedStrategy({0: (OrderSide.BUY, 10)})

        def strategy(bar: Bar, snapshot: StateSnapshot) -> Order | None:
            order = scripted(bar, snapshot)
            cancel.set()
            return order

        result = _simulator().run(make_bars([100.0] * 5), strategy, cancel_event=cancel)

        assert result.cancelled
        assert result.trades == []
        assert result.open_position is not None

    def test_rerun_resets_state(self, make_bars: MakeBars) -> None:
        """Test a simulator owning its risk manager starts each run clean."""
        sim = BacktestSimulator(
            BacktestSettings(instrument="EURUSD", initial_balance=100000.0),
        )
        strategy = ScriptedStrategy({0: (OrderSide.BUY, 10), 1: (OrderSide.SELL, 10)})
        bars = make_bars([100.0, 90.0])

        first = sim.run(bars, strategy)
        second = sim.run(bars, strategy)

        assert first.to_dict()["performance"] == second.to_dict()["performance"]
        assert second.trades[0].trade_id == "EURUSD-1"

    def test_rerun_with_injected_engine_holding_position(self, make_bars: MakeBars) -> None:
        """Test a shared engine left holding the instrument blocks a rerun."""
        sim = _simulator()
        bars = make_bars([100.0, 101.0])
        sim.run(bars, ScriptedStrategy({0: (OrderSide.BUY, 10)}))

        with pytest.raises(ValueError, match="already holds"):
            sim.run(bars, ScriptedStrategy({0: (OrderSide.BUY, 10), 1: (OrderSide.SELL, 10)}))

        sim.risk_manager.reset()
        result = sim.run(
            bars, ScriptedStrategy({0: (OrderSide.BUY, 10), 1: (OrderSide.SELL, 10)})
        )

        assert result.open_position is None
        assert sim.risk_manager.get_positions() == {}

    def test_rerun_with_injected_engine_after_close(self, make_bars: MakeBars) -> None:
        """Test a shared engine that ended flat can be replayed again."""
        sim = _simulator()
        bars = make_bars([100.0, 101.0])
        strategy = ScriptedStrategy({0: (OrderSide.BUY, 10), 1: (OrderSide.SELL, 10)})

        sim.run(bars, strategy)
        second = sim.run(bars, strategy)

        assert len(second.trades) == 1
        assert sim.risk_manager.get_positions() == {}

    def test_run_from_source(self, make_bars: MakeBars) -> None:
        """Test bars are fetched from a data source."""
        bars = make_bars([100.0, 101.0, 102.0])
        source = FrameDataSource({"EURUSD": bars_to_frame(bars)})

        result = _simulator().run_from_source(
            source, "2024-01-02", "2024-01-03", lambda bar, snap: None
        )

        assert result.bars_processed == 2

    def test_run_from_source_missing_data(self) -> None:
        """Test DataUnavailable propagates from the source."""
        source = FrameDataSource({})

        with pytest.raises(DataUnavailable):
            _simulator().run_from_source(source, None, None, lambda bar, snap: None)

    def test_result_to_dict(self, make_bars: MakeBars) -> None:
        """Test result serialization."""
        result = _simulator().run(make_bars([100.0, 101.0]), lambda bar, snap: None)

        data = result.to_dict()

        assert data["settings"]["instrument"] == "EURUSD"
        assert data["bars_processed"] == 2
        assert data["cancelled"] is False
        assert "sharpe_ratio" in data["performance"]
        assert list(result.equity_frame().columns) == ["timestamp", "equity", "drawdown"]
