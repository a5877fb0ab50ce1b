"""Weekly trading-session calendar.

A ``TradingCalendar`` maps each weekday to a half-open session ``[start, end)``
in exchange-local time. It answers whether an instant is in session, snaps
instants forward/backward onto the schedule, and produces lazy session-aware
time series used for stepping trials and sampling historical prices.

All instants are naive ``pd.Timestamp`` values. Series are generator methods:
each call returns a fresh, infinite, strictly monotonic iterator.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from itertools import islice
from typing import Any, Iterator, Mapping, Optional, Tuple

import pandas as pd

from stocksim.core.exceptions import ScheduleError
from stocksim.core.timeutils import ONE_TICK, Period, is_positive

Session = Tuple[dt.time, dt.time]

DEFAULT_SESSION_START = dt.time(8, 30)
DEFAULT_SESSION_END = dt.time(15, 0)

_DAY_NAMES = {
    "mon": 0,
    "monday": 0,
    "tue": 1,
    "tuesday": 1,
    "wed": 2,
    "wednesday": 2,
    "thu": 3,
    "thursday": 3,
    "fri": 4,
    "friday": 4,
    "sat": 5,
    "saturday": 5,
    "sun": 6,
    "sunday": 6,
}

# a week always contains every weekday, so day walks never need more steps
_MAX_DAY_WALK = 7


def _to_time(value: Any) -> dt.time:
    if isinstance(value, dt.time):
        return value
    if isinstance(value, str):
        return dt.time.fromisoformat(value.strip())
    raise ScheduleError(f"invalid session time: {value!r}")


def _to_weekday(key: Any) -> int:
    if isinstance(key, int) and 0 <= key <= 6:
        return key
    if isinstance(key, str) and key.strip().lower() in _DAY_NAMES:
        return _DAY_NAMES[key.strip().lower()]
    raise ScheduleError(f"invalid weekday: {key!r}")


@dataclass(frozen=True)
class TradingCalendar:
    """Immutable weekly schedule; index 0 is Monday, 6 is Sunday."""

    sessions: Tuple[Optional[Session], ...]

    def __post_init__(self) -> None:
        if len(self.sessions) != 7:
            raise ScheduleError("a weekly schedule needs exactly 7 entries")
        if not any(self.sessions):
            raise ScheduleError("trading schedule has no trading days")
        for session in self.sessions:
            if session is not None and not session[0] < session[1]:
                raise ScheduleError(f"session start must precede end: {session}")

    # ------------------------------------------------------------------
    # construction
    # ------------------------------------------------------------------

    @classmethod
    def weekdays(
        cls,
        start: dt.time | str = DEFAULT_SESSION_START,
        end: dt.time | str = DEFAULT_SESSION_END,
    ) -> "TradingCalendar":
        """Monday–Friday sessions sharing the same hours (default 08:30–15:00)."""
        session = (_to_time(start), _to_time(end))
        return cls(sessions=(session,) * 5 + (None, None))

    @classmethod
    def from_mapping(cls, schedule: Mapping[Any, Any]) -> "TradingCalendar":
        """Build from ``{"mon": ["08:30", "15:00"], ...}`` style config."""
        sessions: list[Optional[Session]] = [None] * 7
        for key, hours in schedule.items():
            if hours is None:
                continue
            try:
                start, end = hours
            except (TypeError, ValueError) as exc:
                raise ScheduleError(f"session for {key!r} must be [start, end]") from exc
            sessions[_to_weekday(key)] = (_to_time(start), _to_time(end))
        return cls(sessions=tuple(sessions))

    def to_mapping(self) -> dict[str, list[str]]:
        names = ["mon", "tue", "wed", "thu", "fri", "sat", "sun"]
        return {
            names[i]: [s[0].isoformat(timespec="minutes"), s[1].isoformat(timespec="minutes")]
            for i, s in enumerate(self.sessions)
            if s is not None
        }

    # ------------------------------------------------------------------
    # classification
    # ------------------------------------------------------------------

    def in_session(self, instant: pd.Timestamp) -> bool:
        """True iff *instant* falls inside its weekday's ``[start, end)`` session."""
        session = self.sessions[instant.weekday()]
        if session is None:
            return False
        return session[0] <= instant.time() < session[1]

    # ------------------------------------------------------------------
    # snapping
    # ------------------------------------------------------------------

    def _start_of_following_day(self, instant: pd.Timestamp) -> pd.Timestamp:
        day = instant.date()
        for _ in range(_MAX_DAY_WALK):
            day += dt.timedelta(days=1)
            session = self.sessions[day.weekday()]
            if session is not None:
                return pd.Timestamp.combine(day, session[0])
        raise ScheduleError("no trading day found within one week")

    def _end_of_preceding_day(self, instant: pd.Timestamp) -> pd.Timestamp:
        day = instant.date()
        for _ in range(_MAX_DAY_WALK):
            day -= dt.timedelta(days=1)
            session = self.sessions[day.weekday()]
            if session is not None:
                return pd.Timestamp.combine(day, session[1]) - ONE_TICK
        raise ScheduleError("no trading day found within one week")

    def next_session_instant(self, instant: pd.Timestamp) -> pd.Timestamp:
        """Start of the next session, treating *instant* as out of session."""
        session = self.sessions[instant.weekday()]
        if session is not None:
            start = pd.Timestamp.combine(instant.date(), session[0])
            if instant < start:
                return start
        return self._start_of_following_day(instant)

    def previous_session_instant(self, instant: pd.Timestamp) -> pd.Timestamp:
        """One tick before the previous session end, treating *instant* as out of session."""
        session = self.sessions[instant.weekday()]
        if session is not None:
            end = pd.Timestamp.combine(instant.date(), session[1])
            if instant >= end:
                return end - ONE_TICK
        return self._end_of_preceding_day(instant)

    def soonest_session_instant(self, instant: pd.Timestamp) -> pd.Timestamp:
        """Earliest in-session instant >= *instant*."""
        if self.in_session(instant):
            return instant
        return self.next_session_instant(instant)

    def most_recent_session_instant(self, instant: pd.Timestamp) -> pd.Timestamp:
        """Latest in-session instant <= *instant*."""
        if self.in_session(instant):
            return instant
        return self.previous_session_instant(instant)

    # ------------------------------------------------------------------
    # series
    # ------------------------------------------------------------------

    def session_series(
        self, start: pd.Timestamp, increment: Period
    ) -> Iterator[pd.Timestamp]:
        """Strictly increasing in-session instants, at least *increment* apart."""
        if not is_positive(increment):
            raise ScheduleError(f"increment must be positive: {increment!r}")
        current = self.soonest_session_instant(start)
        while True:
            yield current
            current = self.soonest_session_instant(current + increment)

    def reverse_session_series(
        self, start: pd.Timestamp, decrement: Period
    ) -> Iterator[pd.Timestamp]:
        """Strictly decreasing in-session instants, at least *decrement* apart."""
        if not is_positive(decrement):
            raise ScheduleError(f"decrement must be positive: {decrement!r}")
        current = self.most_recent_session_instant(start)
        while True:
            yield current
            current = self.most_recent_session_instant(current - decrement)

    def mixed_series(
        self, start: pd.Timestamp, increment: Period, lookback: int
    ) -> Iterator[pd.Timestamp]:
        """*lookback* instants before *start* (oldest first), then the forward series."""
        if lookback < 0:
            raise ValueError("lookback must be >= 0")
        past = list(islice(self.reverse_session_series(start, increment), 1, lookback + 1))
        past.reverse()
        yield from past
        yield from self.session_series(start, increment)

    def n_periods_prior(
        self, n: int, period: Period, reference: pd.Timestamp
    ) -> pd.Timestamp:
        """The instant *n* steps back along the reverse series from *reference*."""
        if n < 0:
            raise ValueError("n must be >= 0")
        return next(islice(self.reverse_session_series(reference, period), n, None))

    def estimated_duration_for_periods(
        self, n: int, period: Period, reference: pd.Timestamp
    ) -> pd.Timedelta:
        """Wall-clock span covered by *n* schedule-aware periods ending at *reference*."""
        return reference - self.n_periods_prior(n, period, reference)


__all__ = ["TradingCalendar", "Session", "DEFAULT_SESSION_START", "DEFAULT_SESSION_END"]
