"""Tests for the circuit breaker registry."""

from datetime import datetime

from riskgate.engine.circuit_breaker import BreakerKind, CircuitBreakerRegistry

T0 = datetime(2024, 3, 1, 10, 0)


class TestCircuitBreakerRegistry:
    """Tests for trip/reset semantics."""

    def test_trip_and_query(self) -> None:
        """Test a tripped breaker is reported with its details."""
        registry = CircuitBreakerRegistry()

        registry.trip("AAPL", BreakerKind.NEWS, "earnings surprise", now=T0)

        assert registry.is_tripped("AAPL")
        assert not registry.is_tripped("MSFT")
        breaker = registry.get("AAPL")
        assert breaker is not None
        assert breaker.kind == BreakerKind.NEWS
        assert breaker.reason == "earnings surprise"
        assert breaker.triggered_at == T0

    def test_trip_overwrites(self) -> None:
        """Test tripping again replaces the previous record."""
        registry = CircuitBreakerRegistry()
        registry.trip("AAPL", BreakerKind.NEWS, "first", now=T0)

        registry.trip("AAPL", BreakerKind.VOLATILITY, "second", now=T0)

        breaker = registry.get("AAPL")
        assert breaker is not None
        assert breaker.kind == BreakerKind.VOLATILITY
        assert breaker.reason == "second"
        assert len(registry.breakers()) == 1

    def test_reset_removes_breaker(self) -> None:
        """Test reset clears the breaker and reports whether one existed."""
        registry = CircuitBreakerRegistry()
        registry.trip("AAPL", BreakerKind.MANUAL, "halt")

        assert registry.reset("AAPL") is True
        assert not registry.is_tripped("AAPL")
        assert registry.get("AAPL") is None

    def test_reset_unknown_is_noop(self) -> None:
        """Test resetting an untripped instrument is a no-op."""
        registry = CircuitBreakerRegistry()

        assert registry.reset("AAPL") is False
        assert registry.breakers() == {}
