"""Error taxonomy for the risk engine and backtest simulator."""

from enum import Enum


class RiskGateError(Exception):
    """Base class for riskgate errors."""


class ViolationKind(Enum):
    """Reason an order was refused by the risk engine."""

    POSITION_SIZE = "position_size"
    CONCURRENT_POSITIONS = "concurrent_positions"
    CIRCUIT_BREAKER = "circuit_breaker"
    DAILY_LOSS = "daily_loss"
    WEEKLY_LOSS = "weekly_loss"
    UNPRICED_ORDER = "unpriced_order"
    INVALID_EQUITY = "invalid_equity"


class RiskViolation(RiskGateError):
    """An order failed a pre-trade risk check.

    Always recoverable: the order is simply not placed and the engine
    state is left untouched.

    Attributes:
        kind: Which check failed.
        instrument: Instrument of the rejected order.
        value: Measured metric (percent, count, or price).
        limit: Configured limit the metric was compared against.
    """

    def __init__(
        self,
        kind: ViolationKind,
        instrument: str,
        message: str,
        value: float | None = None,
        limit: float | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.instrument = instrument
        self.value = value
        self.limit = limit

    @property
    def message(self) -> str:
        """Human-readable description of the violation."""
        return str(self)

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary."""
        return {
            "kind": self.kind.value,
            "instrument": self.instrument,
            "value": self.value,
            "limit": self.limit,
            "message": self.message,
        }


class DataUnavailable(RiskGateError):
    """The historical data source cannot serve the requested range."""

    def __init__(self, instrument: str, message: str):
        super().__init__(f"{instrument}: {message}")
        self.instrument = instrument
