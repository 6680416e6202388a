"""Order intents submitted to the risk engine."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from itertools import count

from riskgate.engine.positions import PositionSide

_order_ids = count(1)


class OrderType(Enum):
    """Order type enumeration."""

    MARKET = "market"
    LIMIT = "limit"


class OrderSide(Enum):
    """Order side enumeration."""

    BUY = "buy"
    SELL = "sell"

    @property
    def position_side(self) -> PositionSide:
        """Position direction this side builds when opening."""
        return PositionSide.LONG if self is OrderSide.BUY else PositionSide.SHORT


@dataclass
class Order:
    """An order intent awaiting authorization.

    ``reference_price`` is the caller-supplied mark used to size market
    orders. A market order without one cannot be sized.
    """

    instrument: str
    side: OrderSide
    quantity: float
    order_type: OrderType = OrderType.MARKET
    limit_price: float | None = None
    reference_price: float | None = None
    order_id: str = ""
    timestamp: datetime | None = None
    metadata: dict[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError(f"Order quantity must be positive, got {self.quantity}")
        if self.order_type == OrderType.LIMIT and self.limit_price is None:
            raise ValueError("Limit order requires a limit_price")
        if not self.order_id:
            self.order_id = f"{self.instrument}-{next(_order_ids)}"

    def effective_price(self, reference_price: float | None = None) -> float | None:
        """Price used to size the order.

        Limit price wins, then the explicit ``reference_price`` argument,
        then the order's own reference price. Returns None if unpriced.
        """
        if self.limit_price is not None:
            return self.limit_price
        if reference_price is not None:
            return reference_price
        return self.reference_price

    def notional(self, reference_price: float | None = None) -> float | None:
        """Order notional (quantity x effective price), or None if unpriced."""
        price = self.effective_price(reference_price)
        if price is None:
            return None
        return self.quantity * price
