"""Risk management module.

Pre-trade authorization and post-fill bookkeeping for every order, whether
it comes from a live request handler or the backtest replay loop.
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import yaml

from riskgate.config import get_config
from riskgate.engine.circuit_breaker import BreakerKind, CircuitBreaker, CircuitBreakerRegistry
from riskgate.engine.loss_window import LossWindowTracker
from riskgate.engine.orders import Order, OrderSide
from riskgate.engine.positions import FlipPolicy, Position, PositionLedger, PositionSide
from riskgate.errors import RiskViolation, ViolationKind
from riskgate.logging_setup import get_logger

logger = get_logger("engine.risk")


@dataclass(frozen=True)
class RiskLimits:
    """Risk limit configuration. Percentages are in percent units."""

    max_position_size_pct: float = 10.0  # Max order notional as % of equity
    max_daily_loss_pct: float = 2.0  # Max realized loss today as % of equity
    max_weekly_loss_pct: float = 5.0  # Max realized loss this ISO week as % of equity
    max_drawdown_pct: float = 15.0  # Drawdown that trips a DRAWDOWN breaker in backtests
    max_concurrent_positions: int = 5  # Max distinct instruments held at once
    risk_per_trade_pct: float = 0.25  # Equity risked per trade for ATR sizing
    flip_policy: FlipPolicy = FlipPolicy.DISCARD

    @classmethod
    def from_config(cls) -> "RiskLimits":
        """Create RiskLimits from config."""
        config = get_config()
        return cls(
            max_position_size_pct=config.risk.max_position_size_pct,
            max_daily_loss_pct=config.risk.max_daily_loss_pct,
            max_weekly_loss_pct=config.risk.max_weekly_loss_pct,
            max_drawdown_pct=config.risk.max_drawdown_pct,
            max_concurrent_positions=config.risk.max_concurrent_positions,
            risk_per_trade_pct=config.risk.risk_per_trade_pct,
            flip_policy=FlipPolicy(config.risk.flip_policy.lower()),
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "RiskLimits":
        """Load limits from a YAML file.

        Keys missing from the file fall back to config values. An optional
        top-level ``risk:`` mapping is unwrapped.
        """
        data = yaml.safe_load(Path(path).read_text()) or {}
        if "risk" in data and isinstance(data["risk"], dict):
            data = data["risk"]

        base = cls.from_config()
        return cls(
            max_position_size_pct=float(
                data.get("max_position_size_pct", base.max_position_size_pct)
            ),
            max_daily_loss_pct=float(data.get("max_daily_loss_pct", base.max_daily_loss_pct)),
            max_weekly_loss_pct=float(data.get("max_weekly_loss_pct", base.max_weekly_loss_pct)),
            max_drawdown_pct=float(data.get("max_drawdown_pct", base.max_drawdown_pct)),
            max_concurrent_positions=int(
                data.get("max_concurrent_positions", base.max_concurrent_positions)
            ),
            risk_per_trade_pct=float(data.get("risk_per_trade_pct", base.risk_per_trade_pct)),
            flip_policy=FlipPolicy(str(data.get("flip_policy", base.flip_policy.value)).lower()),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "max_position_size_pct": self.max_position_size_pct,
            "max_daily_loss_pct": self.max_daily_loss_pct,
            "max_weekly_loss_pct": self.max_weekly_loss_pct,
            "max_drawdown_pct": self.max_drawdown_pct,
            "max_concurrent_positions": self.max_concurrent_positions,
            "risk_per_trade_pct": self.risk_per_trade_pct,
            "flip_policy": self.flip_policy.value,
        }


@dataclass
class RiskCheckResult:
    """Result of a risk check."""

    passed: bool
    reason: str = ""
    violation: RiskViolation | None = None

    @classmethod
    def ok(cls) -> "RiskCheckResult":
        return cls(passed=True)

    @classmethod
    def reject(cls, violation: RiskViolation) -> "RiskCheckResult":
        return cls(passed=False, reason=violation.message, violation=violation)

    @property
    def kind(self) -> ViolationKind | None:
        return self.violation.kind if self.violation is not None else None

    def raise_for_violation(self) -> None:
        """Raise the carried RiskViolation, if any."""
        if self.violation is not None:
            raise self.violation


class RiskManager:
    """Risk engine shared by live trading and the backtest simulator.

    Owns:
    - Position ledger (open position per instrument)
    - Loss window tracker (daily / ISO-week realized losses)
    - Circuit breaker registry (per-instrument trading halts)

    Every public operation holds one engine-wide lock for its full
    duration, so an authorization sees a consistent view across position
    count, breakers and both loss windows, and no fill interleaves with it.
    """

    def __init__(
        self,
        limits: RiskLimits | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize risk manager.

        Args:
            limits: Risk limits to use. Defaults to config values.
            clock: Time source for loss windows and timestamps. Defaults to UTC now.
        """
        self.limits = limits or RiskLimits.from_config()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = threading.RLock()
        self._ledger = PositionLedger(flip_policy=self.limits.flip_policy)
        self._losses = LossWindowTracker(now=self._clock())
        self._breakers = CircuitBreakerRegistry()

    def _now(self, as_of: datetime | None) -> datetime:
        return as_of if as_of is not None else self._clock()

    def reset(self) -> None:
        """Clear positions, loss windows and breakers."""
        with self._lock:
            self._ledger.clear()
            self._losses.reset(self._clock())
            self._breakers.clear()

    # ------------------------------------------------------------------
    # Pre-trade authorization
    # ------------------------------------------------------------------

    def authorize(
        self,
        order: Order,
        account_equity: float,
        reference_price: float | None = None,
        as_of: datetime | None = None,
    ) -> RiskCheckResult:
        """Run all pre-trade checks against an order.

        Checks run in fixed order and stop at the first failure:
        position size, concurrent positions, circuit breaker, daily loss,
        weekly loss. A rejected order leaves engine state untouched.

        Args:
            order: Order intent to authorize.
            account_equity: Current account equity.
            reference_price: Mark price used to size orders without a limit price.
            as_of: Evaluation time for the loss windows. Defaults to the clock.

        Returns:
            RiskCheckResult (first failure or pass).
        """
        with self._lock:
            now = self._now(as_of)
            for check in (
                lambda: self._check_position_size(order, account_equity, reference_price),
                lambda: self._check_concurrent_positions(order),
                lambda: self._check_circuit_breaker(order.instrument),
                lambda: self._check_daily_loss(order.instrument, account_equity, now),
                lambda: self._check_weekly_loss(order.instrument, account_equity, now),
            ):
                violation = check()
                if violation is not None:
                    logger.warning(
                        f"Order {order.order_id} rejected: {violation.message}",
                        extra={"extra_fields": violation.to_dict()},
                    )
                    return RiskCheckResult.reject(violation)

            logger.debug(f"Order {order.order_id} authorized for {order.instrument}")
            return RiskCheckResult.ok()

    def check_order(
        self,
        order: Order,
        account_equity: float,
        reference_price: float | None = None,
        as_of: datetime | None = None,
    ) -> None:
        """Authorize an order, raising RiskViolation on rejection."""
        self.authorize(order, account_equity, reference_price, as_of).raise_for_violation()

    def _check_position_size(
        self,
        order: Order,
        account_equity: float,
        reference_price: float | None,
    ) -> RiskViolation | None:
        price = order.effective_price(reference_price)
        if price is None:
            return RiskViolation(
                ViolationKind.UNPRICED_ORDER,
                order.instrument,
                f"cannot size {order.order_type.value} order for {order.instrument} "
                "without a limit or reference price",
            )

        if account_equity <= 0:
            return RiskViolation(
                ViolationKind.INVALID_EQUITY,
                order.instrument,
                f"account equity {account_equity:.2f} must be positive",
                value=account_equity,
                limit=0.0,
            )

        quantity = self._opening_quantity(order)
        if quantity <= 0:
            return None

        position_size_pct = quantity * price / account_equity * 100.0
        limit = self.limits.max_position_size_pct
        if position_size_pct > limit:
            return RiskViolation(
                ViolationKind.POSITION_SIZE,
                order.instrument,
                f"position size {position_size_pct:.2f}% exceeds limit {limit:.2f}%",
                value=position_size_pct,
                limit=limit,
            )
        return None

    def _opening_quantity(self, order: Order) -> float:
        """Part of the order that adds exposure.

        An opposite-side order first offsets the held position, so only the
        quantity beyond it is sized. A full or partial close sizes to 0.
        """
        position = self._ledger.get(order.instrument)
        if position is None or position.side is order.side.position_side:
            return order.quantity
        return max(order.quantity - position.quantity, 0.0)

    def _check_concurrent_positions(self, order: Order) -> RiskViolation | None:
        if order.instrument in self._ledger:
            return None

        current = self._ledger.count
        limit = self.limits.max_concurrent_positions
        if current >= limit:
            return RiskViolation(
                ViolationKind.CONCURRENT_POSITIONS,
                order.instrument,
                f"{current} open positions already at concurrent limit {limit}",
                value=float(current),
                limit=float(limit),
            )
        return None

    def _check_circuit_breaker(self, instrument: str) -> RiskViolation | None:
        breaker = self._breakers.get(instrument)
        if breaker is not None and breaker.triggered:
            return RiskViolation(
                ViolationKind.CIRCUIT_BREAKER,
                instrument,
                f"circuit breaker {breaker.kind.value} triggered for {instrument}: "
                f"{breaker.reason}",
            )
        return None

    def _check_daily_loss(
        self, instrument: str, account_equity: float, now: datetime
    ) -> RiskViolation | None:
        daily_pct = self._losses.daily_loss_percent(account_equity, now)
        limit = self.limits.max_daily_loss_pct
        if daily_pct > limit:
            return RiskViolation(
                ViolationKind.DAILY_LOSS,
                instrument,
                f"daily loss {daily_pct:.2f}% exceeds limit {limit:.2f}%",
                value=daily_pct,
                limit=limit,
            )
        return None

    def _check_weekly_loss(
        self, instrument: str, account_equity: float, now: datetime
    ) -> RiskViolation | None:
        weekly_pct = self._losses.weekly_loss_percent(account_equity, now)
        limit = self.limits.max_weekly_loss_pct
        if weekly_pct > limit:
            return RiskViolation(
                ViolationKind.WEEKLY_LOSS,
                instrument,
                f"weekly loss {weekly_pct:.2f}% exceeds limit {limit:.2f}%",
                value=weekly_pct,
                limit=limit,
            )
        return None

    # ------------------------------------------------------------------
    # Post-fill updates
    # ------------------------------------------------------------------

    def on_fill(
        self,
        instrument: str,
        quantity: float,
        price: float,
        side: PositionSide | OrderSide,
        as_of: datetime | None = None,
    ) -> Position | None:
        """Apply a confirmed fill to the position ledger.

        Args:
            instrument: Filled instrument.
            quantity: Filled quantity.
            price: Fill price.
            side: Position side the fill builds (BUY maps to LONG, SELL to SHORT).
            as_of: Fill time. Defaults to the clock.

        Returns:
            Copy of the resulting position, or None if now flat.
        """
        if isinstance(side, OrderSide):
            side = side.position_side

        with self._lock:
            position = self._ledger.apply_fill(
                instrument, quantity, price, side, as_of=self._now(as_of)
            )

        logger.debug(f"Fill applied: {instrument} {side.value} {quantity:g}@{price:.4f}")
        return position

    def record_realized_pnl(self, amount: float, as_of: datetime | None = None) -> None:
        """Record realized P&L of one closed trade. Only losses accumulate."""
        with self._lock:
            self._losses.record_realized_pnl(amount, self._now(as_of))
        if amount < 0:
            logger.info(f"Realized loss recorded: {-amount:.2f}")

    # ------------------------------------------------------------------
    # Circuit breakers
    # ------------------------------------------------------------------

    def trip_breaker(
        self,
        instrument: str,
        kind: BreakerKind,
        reason: str,
        as_of: datetime | None = None,
    ) -> CircuitBreaker:
        """Trip the circuit breaker to halt trading in an instrument."""
        with self._lock:
            breaker = self._breakers.trip(instrument, kind, reason, now=self._now(as_of))
        logger.error(f"Circuit breaker triggered for {instrument}: {kind.value} - {reason}")
        return breaker

    def reset_breaker(self, instrument: str) -> None:
        """Reset the circuit breaker for an instrument."""
        with self._lock:
            removed = self._breakers.reset(instrument)
        if removed:
            logger.info(f"Circuit breaker reset for {instrument}")

    def is_breaker_tripped(self, instrument: str) -> bool:
        with self._lock:
            return self._breakers.is_tripped(instrument)

    # ------------------------------------------------------------------
    # Sizing
    # ------------------------------------------------------------------

    def size_for_risk(self, instrument: str, atr: float, account_equity: float) -> float:
        """Suggest an order quantity that risks ``risk_per_trade_pct`` of equity per ATR.

        Advisory only: the resulting order must still pass ``authorize``.

        Args:
            instrument: Instrument being sized.
            atr: Average true range in price units.
            account_equity: Current account equity.

        Returns:
            Suggested quantity (0.0 if ATR or equity is not positive).
        """
        if atr <= 0 or account_equity <= 0:
            logger.debug(f"Cannot size {instrument}: atr={atr}, equity={account_equity}")
            return 0.0

        risk_amount = account_equity * self.limits.risk_per_trade_pct / 100.0
        return risk_amount / atr

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    def get_position(self, instrument: str) -> Position | None:
        with self._lock:
            return self._ledger.get(instrument)

    def get_positions(self) -> dict[str, Position]:
        with self._lock:
            return self._ledger.positions()

    def get_circuit_breakers(self) -> dict[str, CircuitBreaker]:
        with self._lock:
            return self._breakers.breakers()

    def daily_loss(self, as_of: datetime | None = None) -> float:
        with self._lock:
            return self._losses.daily_loss(self._now(as_of))

    def weekly_loss(self, as_of: datetime | None = None) -> float:
        with self._lock:
            return self._losses.weekly_loss(self._now(as_of))

    def daily_loss_percent(self, account_equity: float, as_of: datetime | None = None) -> float:
        with self._lock:
            return self._losses.daily_loss_percent(account_equity, self._now(as_of))

    def weekly_loss_percent(self, account_equity: float, as_of: datetime | None = None) -> float:
        with self._lock:
            return self._losses.weekly_loss_percent(account_equity, self._now(as_of))

    def snapshot(self, as_of: datetime | None = None) -> dict[str, Any]:
        """Consistent view of engine state taken under the lock."""
        with self._lock:
            now = self._now(as_of)
            return {
                "positions": self._ledger.positions(),
                "circuit_breakers": self._breakers.breakers(),
                "daily_loss": self._losses.daily_loss(now),
                "weekly_loss": self._losses.weekly_loss(now),
                "limits": self.limits.to_dict(),
            }
