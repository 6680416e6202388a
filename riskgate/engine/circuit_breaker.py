"""Per-instrument circuit breakers.

A breaker is absent until tripped, blocks new orders while present, and is
removed only by an explicit reset. There is no automatic expiry.
"""

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum


class BreakerKind(Enum):
    """Circuit breaker type."""

    LOSS_LIMIT = "LOSS_LIMIT"
    DRAWDOWN = "DRAWDOWN"
    VOLATILITY = "VOLATILITY"
    NEWS = "NEWS"
    MANUAL = "MANUAL"


@dataclass
class CircuitBreaker:
    """Trip record for one instrument."""

    instrument: str
    kind: BreakerKind
    triggered: bool
    triggered_at: datetime
    reason: str


class CircuitBreakerRegistry:
    """Holds the breaker state for every instrument."""

    def __init__(self) -> None:
        self._breakers: dict[str, CircuitBreaker] = {}

    def trip(
        self,
        instrument: str,
        kind: BreakerKind,
        reason: str,
        now: datetime | None = None,
    ) -> CircuitBreaker:
        """Trip the breaker, overwriting any existing record."""
        breaker = CircuitBreaker(
            instrument=instrument,
            kind=kind,
            triggered=True,
            triggered_at=now or datetime.now(UTC),
            reason=reason,
        )
        self._breakers[instrument] = breaker
        return replace(breaker)

    def is_tripped(self, instrument: str) -> bool:
        breaker = self._breakers.get(instrument)
        return breaker is not None and breaker.triggered

    def get(self, instrument: str) -> CircuitBreaker | None:
        breaker = self._breakers.get(instrument)
        return replace(breaker) if breaker is not None else None

    def reset(self, instrument: str) -> bool:
        """Remove the breaker. Returns False if none was present."""
        return self._breakers.pop(instrument, None) is not None

    def breakers(self) -> dict[str, CircuitBreaker]:
        """Copies of all breaker records."""
        return {symbol: replace(b) for symbol, b in self._breakers.items()}

    def clear(self) -> None:
        self._breakers.clear()
