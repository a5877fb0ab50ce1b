"""Instant and period helpers shared by the calendar, the data layer and the runner.

Instants are naive ``pd.Timestamp`` values in exchange-local time. Periods are
either fixed spans (``pd.Timedelta``) or calendar spans (``pd.DateOffset``) so
that "one year before 2005-01-01" lands on 2004-01-01.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Any, Mapping, Union

import numpy as np
import pandas as pd

from stocksim.core.exceptions import ConfigError

Period = Union[pd.Timedelta, pd.DateOffset, timedelta]
Instant = pd.Timestamp

ZERO = pd.Timedelta(0)
ONE_TICK = pd.Timedelta(seconds=1)

_REFERENCE = pd.Timestamp("2000-01-03")

_PERIOD_RE = re.compile(r"^\s*(\d+)\s*([a-zA-Z]+)\s*$")

_CALENDAR_UNITS = {
    "y": "years",
    "yr": "years",
    "year": "years",
    "years": "years",
    "mo": "months",
    "mon": "months",
    "month": "months",
    "months": "months",
}

_FIXED_UNITS = {
    "w": "weeks",
    "wk": "weeks",
    "week": "weeks",
    "weeks": "weeks",
    "d": "days",
    "day": "days",
    "days": "days",
    "h": "hours",
    "hr": "hours",
    "hour": "hours",
    "hours": "hours",
    "m": "minutes",
    "min": "minutes",
    "minute": "minutes",
    "minutes": "minutes",
    "s": "seconds",
    "sec": "seconds",
    "second": "seconds",
    "seconds": "seconds",
}


def parse_instant(value: Any) -> pd.Timestamp:
    """Coerce strings, dates and datetimes into a naive ``pd.Timestamp``.

    Accepts ISO strings as well as the compact ``yyyymmdd[HHMM[SS]]`` form used
    by price-history files.
    """
    if isinstance(value, pd.Timestamp):
        ts = value
    elif isinstance(value, (datetime, date)):
        ts = pd.Timestamp(value)
    elif isinstance(value, str):
        raw = value.strip()
        if raw.isdigit() and len(raw) in (8, 12, 14):
            fmt = {8: "%Y%m%d", 12: "%Y%m%d%H%M", 14: "%Y%m%d%H%M%S"}[len(raw)]
            ts = pd.Timestamp(datetime.strptime(raw, fmt))
        else:
            try:
                ts = pd.Timestamp(raw)
            except ValueError as exc:
                raise ConfigError(f"invalid instant: {value!r}") from exc
    else:
        raise ConfigError(f"invalid instant: {value!r}")
    if pd.isna(ts):
        raise ConfigError(f"invalid instant: {value!r}")
    if ts.tzinfo is not None:
        ts = ts.tz_localize(None)
    return ts


def parse_period(value: Any) -> Period:
    """Coerce config values into a period.

    Examples: ``"1y"``, ``"6 months"``, ``"1d"``, ``"30min"``,
    ``{"years": 1}``, a ``timedelta`` or a ``pd.DateOffset``.
    """
    if isinstance(value, pd.DateOffset):
        return value
    if isinstance(value, timedelta):
        return pd.Timedelta(value)
    if isinstance(value, Mapping):
        kwargs = {str(k): int(v) for k, v in value.items()}
        if set(kwargs) & {"years", "months"}:
            return pd.DateOffset(**kwargs)
        try:
            return pd.Timedelta(**kwargs)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid period: {value!r}") from exc
    if isinstance(value, str):
        match = _PERIOD_RE.match(value)
        if not match:
            raise ConfigError(f"invalid period: {value!r}")
        amount = int(match.group(1))
        unit = match.group(2).lower()
        if unit in _CALENDAR_UNITS:
            return pd.DateOffset(**{_CALENDAR_UNITS[unit]: amount})
        if unit in _FIXED_UNITS:
            return pd.Timedelta(**{_FIXED_UNITS[unit]: amount})
        raise ConfigError(f"unknown period unit in {value!r}")
    raise ConfigError(f"invalid period: {value!r}")


def is_positive(period: Period) -> bool:
    """True when adding *period* moves an instant forward."""
    return (_REFERENCE + period) > _REFERENCE


def latest(a: pd.Timestamp, b: pd.Timestamp) -> pd.Timestamp:
    return a if a >= b else b


def earliest(a: pd.Timestamp, b: pd.Timestamp) -> pd.Timestamp:
    return a if a <= b else b


def random_instant(
    rng: np.random.Generator, lower: pd.Timestamp, upper: pd.Timestamp
) -> pd.Timestamp:
    """Draw a whole-second instant uniformly from ``[lower, upper]``."""
    if upper < lower:
        raise ValueError(f"empty interval [{lower}, {upper}]")
    lo = -(-lower.value // 1_000_000_000)
    hi = upper.value // 1_000_000_000
    if hi < lo:
        return lower
    seconds = int(rng.integers(lo, hi, endpoint=True))
    return pd.Timestamp(seconds, unit="s")


__all__ = [
    "Period",
    "Instant",
    "ZERO",
    "ONE_TICK",
    "parse_instant",
    "parse_period",
    "is_positive",
    "latest",
    "earliest",
    "random_instant",
]
