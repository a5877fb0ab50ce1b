from __future__ import annotations

import os
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
from dotenv import load_dotenv

from stocksim.core.calendar import TradingCalendar
from stocksim.dal.price_history import PriceHistoryIndex
from stocksim.logging_utils import setup_test_logging

os.environ.setdefault("ENV", "test")


@pytest.fixture(scope="session", autouse=True)
def load_env():
    load_dotenv(override=False)


@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    setup_test_logging(Path("stocksim-logs/"))
    yield


@pytest.fixture(scope="session")
def weekdays() -> TradingCalendar:
    return TradingCalendar.weekdays()


def make_daily_frame(start: str, end: str, *, price: float | None = None, seed: int = 7) -> pd.DataFrame:
    """One 12:00 quote per business day; a random walk unless *price* is fixed."""
    idx = pd.bdate_range(start, end) + pd.Timedelta(hours=12)
    n = len(idx)
    if price is not None:
        close = np.full(n, float(price))
    else:
        rng = np.random.default_rng(seed)
        close = 100.0 * np.cumprod(1 + rng.normal(0.0003, 0.01, n))
    return pd.DataFrame(
        {
            "timestamp": idx,
            "open": close,
            "high": close * 1.01,
            "low": close * 0.99,
            "close": close,
        }
    )


@pytest.fixture
def flat_index() -> PriceHistoryIndex:
    return PriceHistoryIndex.from_frame(make_daily_frame("2000-01-03", "2000-03-31", price=100.0))


@pytest.fixture
def daily_frame():
    """Factory fixture: ``daily_frame(start, end, price=None, seed=7)``."""
    return make_daily_frame
