from __future__ import annotations

from dataclasses import replace

import numpy as np
import pandas as pd
import pytest

from stocksim.backtest.params import ExperimentParams, TrialParams, TrialSetParams
from stocksim.backtest.state_machine import run_trial
from stocksim.dal.price_history import PriceHistoryStore
from stocksim.dal.sources import FramePriceSource
from stocksim.strats.common import identity_final_state


@pytest.fixture(scope="module")
def sine_store() -> PriceHistoryStore:
    """
    Deterministic oscillating daily closes around 100:
    a 20-day sine wave of amplitude 10 plus small noise, so band and
    crossover strategies both enter and exit several times.
    """
    rng = np.random.default_rng(seed=42)
    idx = pd.bdate_range("2000-01-03", "2002-12-31") + pd.Timedelta(hours=12)
    k = np.arange(len(idx))
    close = 100.0 + 10.0 * np.sin(2 * np.pi * k / 20) + rng.normal(0.0, 0.2, len(idx))
    frame = pd.DataFrame(
        {"timestamp": idx, "open": close, "high": close + 0.5, "low": close - 0.5, "close": close}
    )
    return PriceHistoryStore(FramePriceSource({"SINE": frame}))


@pytest.fixture
def run_single_trial(sine_store):
    """Run one trial on SINE over a fixed window and return the final current state."""

    def _run(sparams, start="2001-01-02 12:00", months=6):
        window_start = pd.Timestamp(start)
        window_end = window_start + pd.DateOffset(months=months)
        eparams = ExperimentParams(
            instruments=("SINE",), trial_count=1, start=pd.Timestamp("2000-06-01"), end=pd.Timestamp("2002-12-31")
        )
        tsparams = TrialSetParams(("SINE",), 1)
        tparams = TrialParams(
            histories=sine_store.load(["SINE"]), earliest_start=window_start, latest_start=window_start
        )
        sparams = replace(sparams, plugin=replace(sparams.plugin, build_return_state=identity_final_state))
        return run_trial(eparams, sparams, tsparams, tparams, window_start, window_end), tparams

    return _run
