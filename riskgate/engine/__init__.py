"""Risk engine and backtest simulator.

Pre-trade risk checks, position and loss tracking, circuit breakers, and
the bar replay loop that drives strategies through them.
"""

from riskgate.engine.backtest import (
    BacktestResult,
    BacktestSettings,
    BacktestSimulator,
    EquityPoint,
    TradeRecord,
)
from riskgate.engine.circuit_breaker import BreakerKind, CircuitBreaker, CircuitBreakerRegistry
from riskgate.engine.loss_window import LossWindowTracker
from riskgate.engine.orders import Order, OrderSide, OrderType
from riskgate.engine.positions import FlipPolicy, Position, PositionLedger, PositionSide
from riskgate.engine.risk import RiskCheckResult, RiskLimits, RiskManager
from riskgate.engine.strategy_base import StateSnapshot, StrategyBase, StrategyCallback
from riskgate.engine.strategy_sma import SmaCrossStrategy

__all__ = [
    "RiskManager",
    "RiskLimits",
    "RiskCheckResult",
    "Order",
    "OrderSide",
    "OrderType",
    "Position",
    "PositionSide",
    "PositionLedger",
    "FlipPolicy",
    "LossWindowTracker",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "BreakerKind",
    "StrategyBase",
    "StrategyCallback",
    "StateSnapshot",
    "SmaCrossStrategy",
    "BacktestSimulator",
    "BacktestSettings",
    "BacktestResult",
    "EquityPoint",
    "TradeRecord",
]
