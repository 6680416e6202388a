"""Rolling daily and ISO-week realized loss accumulators.

Windows roll lazily: every read or write first compares the supplied time
against the last reset and zeroes whichever accumulator changed period.
"""

from dataclasses import dataclass, replace
from datetime import UTC, datetime


def _day_key(ts: datetime) -> tuple[int, int]:
    return ts.year, ts.timetuple().tm_yday


def _week_key(ts: datetime) -> tuple[int, int]:
    iso = ts.isocalendar()
    return iso[0], iso[1]


@dataclass
class LossWindowState:
    """Loss window state. Accumulators hold loss magnitudes, always >= 0."""

    daily_loss: float
    weekly_loss: float
    last_daily_reset: datetime
    last_weekly_reset: tuple[int, int]  # (ISO year, ISO week)


class LossWindowTracker:
    """Tracks realized losses for the current calendar day and ISO week.

    Profits never reduce the accumulators: loss limits are one-directional
    brakes, not net P&L limits.
    """

    def __init__(self, now: datetime | None = None):
        self._state = _fresh_state(now or datetime.now(UTC))

    def roll(self, now: datetime | None = None) -> None:
        """Zero the daily and/or weekly accumulator if its period changed."""
        now = now or datetime.now(UTC)
        state = self._state

        if _day_key(now) != _day_key(state.last_daily_reset):
            state.daily_loss = 0.0
            state.last_daily_reset = now

        week = _week_key(now)
        if week != state.last_weekly_reset:
            state.weekly_loss = 0.0
            state.last_weekly_reset = week

    def record_realized_pnl(self, amount: float, now: datetime | None = None) -> None:
        """Record a closed trade's realized P&L; only losses accumulate."""
        self.roll(now)
        if amount < 0:
            loss = -amount
            self._state.daily_loss += loss
            self._state.weekly_loss += loss

    def daily_loss(self, now: datetime | None = None) -> float:
        self.roll(now)
        return self._state.daily_loss

    def weekly_loss(self, now: datetime | None = None) -> float:
        self.roll(now)
        return self._state.weekly_loss

    def daily_loss_percent(self, account_equity: float, now: datetime | None = None) -> float:
        """Daily realized loss as a percent of account equity."""
        return _as_percent(self.daily_loss(now), account_equity)

    def weekly_loss_percent(self, account_equity: float, now: datetime | None = None) -> float:
        """Weekly realized loss as a percent of account equity."""
        return _as_percent(self.weekly_loss(now), account_equity)

    @property
    def state(self) -> LossWindowState:
        """Copy of the current state, without rolling."""
        return replace(self._state)

    def reset(self, now: datetime | None = None) -> None:
        """Zero both accumulators and restart both windows."""
        self._state = _fresh_state(now or datetime.now(UTC))


def _fresh_state(now: datetime) -> LossWindowState:
    return LossWindowState(
        daily_loss=0.0,
        weekly_loss=0.0,
        last_daily_reset=now,
        last_weekly_reset=_week_key(now),
    )


def _as_percent(loss: float, account_equity: float) -> float:
    if loss == 0:
        return 0.0
    if account_equity <= 0:
        # No equity left to lose against: treat as unbounded
        return float("inf")
    return loss / account_equity * 100.0
