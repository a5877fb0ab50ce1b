from __future__ import annotations

from dataclasses import replace

import numpy as np
import pandas as pd
import pytest

from stocksim.backtest.experiment import (
    experiment_stats,
    fitness,
    run_experiment,
    run_trial_set,
    trial_set_stats,
    valid_start_window,
)
from stocksim.backtest.allocation import passthrough_trial_count
from stocksim.backtest.params import ExperimentParams, TrialSetParams
from stocksim.core.exceptions import NoUsableDataError
from stocksim.core.timeutils import ZERO, parse_period
from stocksim.dal.price_history import PriceHistoryStore
from stocksim.dal.sources import FramePriceSource
from stocksim.features.stats import SampleDistribution
from stocksim.strats import buy_and_hold
from stocksim.strats.common import FinalState

TS = pd.Timestamp


def test_valid_start_window_scenario():
    window = valid_start_window(
        (TS("2000-01-01"), TS("2005-01-01")),
        TS("1999-01-01"),
        TS("2006-01-01"),
        parse_period("1y"),
        ZERO,
    )
    assert window == (TS("2000-01-01"), TS("2004-01-01"))


def test_valid_start_window_respects_lookback_and_experiment_bounds():
    cdr = (TS("2000-01-01"), TS("2005-01-01"))
    assert valid_start_window(cdr, TS("1999-01-01"), TS("2003-06-01"), parse_period("1y"), parse_period("6 months")) == (
        TS("2000-07-01"),
        TS("2002-06-01"),
    )
    assert valid_start_window(cdr, TS("1999-01-01"), TS("2006-01-01"), parse_period("5y"), pd.Timedelta(days=1)) is None
    assert valid_start_window(None, TS("1999-01-01"), TS("2006-01-01"), parse_period("1y"), ZERO) is None


@pytest.fixture
def store(daily_frame):
    frames = {
        "FLAT": daily_frame("2000-01-03", "2003-12-31", price=100.0),
        "WALK": daily_frame("2000-01-03", "2003-12-31", seed=3),
        "SHORT": daily_frame("2000-01-03", "2000-03-31", price=10.0),
    }
    return PriceHistoryStore(FramePriceSource(frames))


def _eparams(instruments, trial_count=8, **kwargs):
    return ExperimentParams(
        instruments=tuple(instruments),
        trial_count=trial_count,
        start=TS("2000-01-01"),
        end=TS("2003-12-31"),
        distribute_trial_count=passthrough_trial_count,
        seed=kwargs.pop("seed", 1234),
        **kwargs,
    )


def test_buy_and_hold_on_flat_prices_loses_one_commission(store):
    sparams = buy_and_hold.strategy_params()
    stats = run_trial_set(
        _eparams(["FLAT"]), sparams, TrialSetParams(("FLAT",), 6), store, np.random.default_rng(0)
    )
    assert stats.count == 6
    # 99 shares at 100 from 10000 cash, minus one 7.00 commission
    assert stats.mean == pytest.approx(9993.0)
    assert stats.std_dev == pytest.approx(0.0)


def test_trial_set_without_window_returns_none(store):
    sparams = buy_and_hold.strategy_params()
    assert run_trial_set(_eparams(["SHORT"]), sparams, TrialSetParams(("SHORT",), 3), store, np.random.default_rng(0)) is None
    assert run_trial_set(_eparams(["MISSING"]), sparams, TrialSetParams(("MISSING",), 3), store, np.random.default_rng(0)) is None


def test_trial_set_is_deterministic_across_worker_counts(store):
    sparams = buy_and_hold.strategy_params(time_increment="1d")
    tsparams = TrialSetParams(("WALK",), 12)
    single = run_trial_set(_eparams(["WALK"], max_workers=1), sparams, tsparams, store, np.random.default_rng(42))
    pooled = run_trial_set(_eparams(["WALK"], max_workers=4), sparams, tsparams, store, np.random.default_rng(42))
    assert single == pooled


def test_trial_failure_aborts_the_set(store):
    def boom(*args):
        raise RuntimeError("plugin bug")

    plugin = replace(buy_and_hold.PLUGIN, build_next_state=boom)
    sparams = replace(buy_and_hold.strategy_params(), plugin=plugin)
    with pytest.raises(RuntimeError):
        run_trial_set(_eparams(["FLAT"]), sparams, TrialSetParams(("FLAT",), 4), store, np.random.default_rng(0))


def test_run_experiment_filters_sets_without_results(store):
    sparams = buy_and_hold.strategy_params()
    pairs = run_experiment(_eparams(["FLAT", "SHORT", "MISSING", "WALK"]), sparams, store=store)
    assert [p[0] for p in pairs] == [("FLAT",), ("WALK",)]
    assert all(isinstance(p[1], SampleDistribution) and p[1].count == 8 for p in pairs)


def test_run_experiment_is_reproducible_for_a_seed(store):
    sparams = buy_and_hold.strategy_params()
    a = run_experiment(_eparams(["WALK"], seed=5), sparams, store=store)
    b = run_experiment(_eparams(["WALK"], seed=5), sparams, store=store)
    assert a == b


def test_failing_instrument_set_is_isolated_unless_fail_fast(store):
    base = buy_and_hold.PLUGIN

    def picky_next_state(ep, sp, tsp, tp, const, state):
        if tsp.instrument == "WALK":
            raise RuntimeError("bad data")
        return base.build_next_state(ep, sp, tsp, tp, const, state)

    sparams = replace(buy_and_hold.strategy_params(), plugin=replace(base, build_next_state=picky_next_state))
    pairs = run_experiment(_eparams(["FLAT", "WALK"]), sparams, store=store)
    assert [p[0] for p in pairs] == [("FLAT",)]
    with pytest.raises(RuntimeError):
        run_experiment(_eparams(["FLAT", "WALK"], fail_fast=True), sparams, store=store)


def test_process_final_states_override(store):
    sparams = buy_and_hold.strategy_params()
    eparams = _eparams(["FLAT"], trial_count=3, process_final_states=len)
    assert run_experiment(eparams, sparams, store=store) == [(("FLAT",), 3)]


def test_stats_helpers_accept_objects_and_mappings():
    stats = trial_set_stats([FinalState(10.0), {"portfolio_value": 20.0}])
    assert stats.mean == pytest.approx(15.0)
    pooled = experiment_stats([(("A",), stats), (("B",), SampleDistribution(25.0, 0.0, 2))])
    assert pooled.mean == pytest.approx(20.0)
    with pytest.raises(NoUsableDataError):
        experiment_stats([])


def test_fitness_is_experiment_mean(store):
    sparams = buy_and_hold.strategy_params()
    assert fitness(_eparams(["FLAT"]), sparams, store=store) == pytest.approx(9993.0)
    with pytest.raises(NoUsableDataError):
        fitness(_eparams(["SHORT"]), sparams, store=store)
