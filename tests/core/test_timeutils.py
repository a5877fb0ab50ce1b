from __future__ import annotations

import datetime as dt

import numpy as np
import pandas as pd
import pytest

from stocksim.core.exceptions import ConfigError
from stocksim.core.timeutils import is_positive, parse_instant, parse_period, random_instant


def test_parse_period_calendar_units_use_date_offsets():
    one_year = parse_period("1y")
    assert isinstance(one_year, pd.DateOffset)
    assert pd.Timestamp("2005-01-01") - one_year == pd.Timestamp("2004-01-01")
    assert pd.Timestamp("2004-01-31") + parse_period("1 month") == pd.Timestamp("2004-02-29")


def test_parse_period_fixed_units():
    assert parse_period("1d") == pd.Timedelta(days=1)
    assert parse_period("30min") == pd.Timedelta(minutes=30)
    assert parse_period({"hours": 2}) == pd.Timedelta(hours=2)
    assert parse_period(dt.timedelta(seconds=5)) == pd.Timedelta(seconds=5)


@pytest.mark.parametrize("bad", ["", "soon", "3 fortnights", 12])
def test_parse_period_rejects_garbage(bad):
    with pytest.raises(ConfigError):
        parse_period(bad)


def test_parse_instant_formats():
    assert parse_instant("19800101120000") == pd.Timestamp("1980-01-01 12:00")
    assert parse_instant("20100104") == pd.Timestamp("2010-01-04")
    assert parse_instant("2010-01-04T09:30:00+00:00") == pd.Timestamp("2010-01-04 09:30")
    assert parse_instant(dt.date(2010, 1, 4)) == pd.Timestamp("2010-01-04")
    with pytest.raises(ConfigError):
        parse_instant("not a date")


def test_is_positive():
    assert is_positive(pd.Timedelta(seconds=1))
    assert is_positive(pd.DateOffset(months=1))
    assert not is_positive(pd.Timedelta(0))
    assert not is_positive(pd.Timedelta(days=-1))


def test_random_instant_stays_in_bounds_and_is_reproducible():
    lo, hi = pd.Timestamp("2000-01-01"), pd.Timestamp("2000-01-02")
    a = [random_instant(np.random.default_rng(3), lo, hi) for _ in range(3)]
    assert a[0] == a[1] == a[2]
    rng = np.random.default_rng(11)
    for _ in range(200):
        t = random_instant(rng, lo, hi)
        assert lo <= t <= hi
    assert random_instant(rng, lo, lo) == lo
