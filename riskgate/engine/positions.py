"""Position ledger.

Net open position per instrument, mutated only by confirmed fills.
"""

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum

from riskgate.logging_setup import get_logger

logger = get_logger("engine.positions")


class PositionSide(Enum):
    """Position direction."""

    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def opposite(self) -> "PositionSide":
        return PositionSide.SHORT if self is PositionSide.LONG else PositionSide.LONG


class FlipPolicy(Enum):
    """What to do with an opposite-side fill larger than the open position.

    DISCARD closes the position and drops the excess quantity.
    REVERSE closes the position and opens the excess on the other side.
    """

    DISCARD = "discard"
    REVERSE = "reverse"


@dataclass
class Position:
    """Open position in one instrument. Quantity is always > 0."""

    instrument: str
    quantity: float
    side: PositionSide
    avg_price: float
    opened_at: datetime
    updated_at: datetime

    @property
    def notional(self) -> float:
        """Position value at the average entry price."""
        return self.quantity * self.avg_price


class PositionLedger:
    """Tracks net open positions keyed by instrument.

    A position is removed, never zeroed, when fully closed. The ledger does
    no locking of its own; the owning risk engine serializes access.
    """

    def __init__(self, flip_policy: FlipPolicy = FlipPolicy.DISCARD):
        self.flip_policy = flip_policy
        self._positions: dict[str, Position] = {}

    def apply_fill(
        self,
        instrument: str,
        quantity: float,
        price: float,
        side: PositionSide,
        as_of: datetime | None = None,
    ) -> Position | None:
        """Apply a confirmed fill.

        Args:
            instrument: Filled instrument.
            quantity: Fill quantity (magnitude; direction comes from ``side``).
            price: Fill price.
            side: Direction the fill pushes the position (BUY -> LONG).
            as_of: Fill time. Defaults to now (UTC).

        Returns:
            Copy of the resulting position, or None if the instrument is flat.
        """
        quantity = abs(quantity)
        if quantity == 0:
            return self.get(instrument)

        now = as_of or datetime.now(UTC)
        position = self._positions.get(instrument)

        if position is None:
            position = Position(
                instrument=instrument,
                quantity=quantity,
                side=side,
                avg_price=price,
                opened_at=now,
                updated_at=now,
            )
            self._positions[instrument] = position
            return replace(position)

        if position.side == side:
            total_value = position.quantity * position.avg_price + quantity * price
            position.quantity += quantity
            position.avg_price = total_value / position.quantity
            position.updated_at = now
            return replace(position)

        if quantity < position.quantity:
            position.quantity -= quantity
            position.updated_at = now
            return replace(position)

        # Opposite-side fill at least as large as the open position closes it
        del self._positions[instrument]
        excess = quantity - position.quantity

        if excess > 0:
            if self.flip_policy == FlipPolicy.REVERSE:
                flipped = Position(
                    instrument=instrument,
                    quantity=excess,
                    side=side,
                    avg_price=price,
                    opened_at=now,
                    updated_at=now,
                )
                self._positions[instrument] = flipped
                return replace(flipped)
            logger.warning(
                f"Discarding {excess:g} excess {side.value} quantity on {instrument} "
                f"after closing {position.side.value} position"
            )

        return None

    def get(self, instrument: str) -> Position | None:
        """Get a copy of the position for an instrument, if any."""
        position = self._positions.get(instrument)
        return replace(position) if position is not None else None

    def positions(self) -> dict[str, Position]:
        """Get copies of all open positions."""
        return {symbol: replace(p) for symbol, p in self._positions.items()}

    @property
    def count(self) -> int:
        """Number of distinct instruments with an open position."""
        return len(self._positions)

    def __contains__(self, instrument: object) -> bool:
        return instrument in self._positions

    def __len__(self) -> int:
        return len(self._positions)

    def clear(self) -> None:
        """Drop all positions."""
        self._positions.clear()
