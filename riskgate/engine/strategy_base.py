"""Base strategy class.

A strategy is the decision callback the replay loop invokes once per bar.
It sees the bar and a read-only snapshot of the simulator state and returns
at most one order intent.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from riskgate.data.bars import Bar
from riskgate.engine.orders import Order
from riskgate.engine.positions import PositionSide


@dataclass(frozen=True)
class PositionView:
    """Read-only view of the simulator's open position."""

    instrument: str
    side: PositionSide
    quantity: float
    entry_price: float
    entry_time: datetime


@dataclass(frozen=True)
class StateSnapshot:
    """Read-only simulator state handed to the strategy each bar."""

    instrument: str
    bar_index: int
    timestamp: datetime
    balance: float
    equity: float
    drawdown: float
    position: PositionView | None = None

    @property
    def is_flat(self) -> bool:
        return self.position is None


StrategyCallback = Callable[[Bar, StateSnapshot], Order | None]


class StrategyBase(ABC):
    """Abstract base class for trading strategies.

    Subclasses must implement ``on_bar``. Instances are callable, so they
    can be passed anywhere a plain ``StrategyCallback`` is accepted.
    """

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    def on_bar(self, bar: Bar, snapshot: StateSnapshot) -> Order | None:
        """Decide what to do on the current bar.

        Must not block: the replay loop calls it synchronously.

        Args:
            bar: Current bar.
            snapshot: Simulator state after this bar's equity update.

        Returns:
            An order intent, or None to do nothing.
        """

    def reset(self) -> None:  # noqa: B027
        """Reset strategy state before a new run."""

    def __call__(self, bar: Bar, snapshot: StateSnapshot) -> Order | None:
        return self.on_bar(bar, snapshot)
