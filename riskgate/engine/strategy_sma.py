"""SMA crossover strategy.

Long-only: enters when the fast SMA crosses above the slow SMA and exits
on the opposite cross. Entries are sized from ATR via the risk engine so
that one ATR of adverse movement costs ``risk_per_trade_pct`` of equity.
"""

import math

import pandas as pd

from riskgate.data.bars import Bar
from riskgate.engine.orders import Order, OrderSide
from riskgate.engine.risk import RiskManager
from riskgate.engine.strategy_base import StateSnapshot, StrategyBase
from riskgate.features.ta import calculate_sma, latest_atr
from riskgate.logging_setup import get_logger

logger = get_logger("engine.strategy_sma")


class SmaCrossStrategy(StrategyBase):
    """Fast/slow simple moving average crossover."""

    def __init__(
        self,
        risk_manager: RiskManager,
        fast_period: int = 10,
        slow_period: int = 30,
        atr_period: int = 14,
        name: str = "sma_cross",
    ):
        """Initialize strategy.

        Args:
            risk_manager: Risk engine used for ATR position sizing.
            fast_period: Fast SMA period.
            slow_period: Slow SMA period.
            atr_period: ATR period for sizing.
            name: Strategy name.
        """
        if fast_period <= 0 or slow_period <= 0:
            raise ValueError("SMA periods must be positive")
        if fast_period >= slow_period:
            raise ValueError(
                f"fast_period ({fast_period}) must be less than slow_period ({slow_period})"
            )

        super().__init__(name)
        self.risk_manager = risk_manager
        self.fast_period = fast_period
        self.slow_period = slow_period
        self.atr_period = atr_period

        self._history: list[Bar] = []
        self._prev_fast: float | None = None
        self._prev_slow: float | None = None

    def reset(self) -> None:
        self._history = []
        self._prev_fast = None
        self._prev_slow = None

    def on_bar(self, bar: Bar, snapshot: StateSnapshot) -> Order | None:
        self._history.append(bar)
        if len(self._history) < self.slow_period:
            return None

        close = pd.Series([b.close for b in self._history[-(self.slow_period + 1) :]])
        fast = float(calculate_sma(close, self.fast_period).iloc[-1])
        slow = float(calculate_sma(close, self.slow_period).iloc[-1])

        prev_fast, prev_slow = self._prev_fast, self._prev_slow
        self._prev_fast, self._prev_slow = fast, slow
        if prev_fast is None or prev_slow is None:
            return None

        crossed_up = prev_fast <= prev_slow and fast > slow
        crossed_down = prev_fast >= prev_slow and fast < slow

        if snapshot.position is not None:
            if crossed_down:
                logger.debug(f"{snapshot.instrument}: bearish cross at {bar.timestamp}, exiting")
                return Order(
                    instrument=snapshot.instrument,
                    side=OrderSide.SELL,
                    quantity=snapshot.position.quantity,
                    reference_price=bar.close,
                    timestamp=bar.timestamp,
                )
            return None

        if not crossed_up:
            return None

        quantity = self._entry_size(snapshot.instrument, bar, snapshot.equity)
        if quantity <= 0:
            return None

        logger.debug(
            f"{snapshot.instrument}: bullish cross at {bar.timestamp}, buying {quantity:g}"
        )
        return Order(
            instrument=snapshot.instrument,
            side=OrderSide.BUY,
            quantity=quantity,
            reference_price=bar.close,
            timestamp=bar.timestamp,
        )

    def _entry_size(self, instrument: str, bar: Bar, equity: float) -> float:
        """ATR-risk size, capped at the per-position notional limit."""
        atr = latest_atr(self._history[-(self.atr_period * 3) :], self.atr_period)
        if math.isnan(atr) or atr <= 0 or bar.close <= 0:
            return 0.0

        quantity = self.risk_manager.size_for_risk(instrument, atr, equity)
        max_notional = equity * self.risk_manager.limits.max_position_size_pct / 100.0
        quantity = min(quantity, max_notional / bar.close)

        return float(math.floor(quantity))
