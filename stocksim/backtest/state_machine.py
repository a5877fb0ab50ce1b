"""
Generic trial driver.

A strategy is a ``StrategyPlugin``: a record of five callables (plus an
optional lookback estimate) that the driver calls in a fixed order::

    constant = build_constant_state(ep, sp, tsp, tp, window_start, window_end)
    state = build_initial_state(ep, sp, tsp, tp, constant)
    while not is_final_state(ep, sp, tsp, tp, constant, state):
        state = build_next_state(ep, sp, tsp, tp, constant, state)
    return build_return_state(ep, sp, tsp, tp, constant, state)

States are values; each step returns a new one. Termination belongs to the
plugin, the driver imposes no step limit.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np
import pandas as pd
from loguru import logger

from stocksim.backtest.params import (
    ExperimentParams,
    StrategyParams,
    TrialParams,
    TrialSetParams,
)
from stocksim.core.timeutils import ZERO, Period, random_instant

BuildConstantState = Callable[..., Any]
BuildInitialState = Callable[..., Any]
IsFinalState = Callable[..., bool]
BuildNextState = Callable[..., Any]
BuildReturnState = Callable[..., Any]
RequiredLookback = Callable[[ExperimentParams, StrategyParams, TrialSetParams], Period]


@dataclass(frozen=True)
class StrategyPlugin:
    name: str
    build_constant_state: BuildConstantState
    build_initial_state: BuildInitialState
    is_final_state: IsFinalState
    build_next_state: BuildNextState
    build_return_state: BuildReturnState
    required_lookback: Optional[RequiredLookback] = None

    def lookback(
        self, eparams: ExperimentParams, sparams: StrategyParams, tsparams: TrialSetParams
    ) -> Period:
        """History needed before a trial start; experiment override wins."""
        if eparams.prior_price_history is not None:
            return eparams.prior_price_history(eparams, sparams, tsparams)
        if self.required_lookback is None:
            return ZERO
        return self.required_lookback(eparams, sparams, tsparams)


def run_trial(
    eparams: ExperimentParams,
    sparams: StrategyParams,
    tsparams: TrialSetParams,
    tparams: TrialParams,
    window_start: pd.Timestamp,
    window_end: pd.Timestamp,
) -> Any:
    """Drive one trial over ``[window_start, window_end]`` and return its result."""
    plugin = sparams.plugin
    args = (eparams, sparams, tsparams, tparams)
    constant = plugin.build_constant_state(*args, window_start, window_end)
    state = plugin.build_initial_state(*args, constant)
    steps = 0
    while not plugin.is_final_state(*args, constant, state):
        state = plugin.build_next_state(*args, constant, state)
        steps += 1
    logger.trace(
        "[trial] {} {} window=[{}, {}] steps={}",
        plugin.name,
        tsparams.instruments,
        window_start,
        window_end,
        steps,
    )
    return plugin.build_return_state(*args, constant, state)


def run_randomized_trial(
    eparams: ExperimentParams,
    sparams: StrategyParams,
    tsparams: TrialSetParams,
    tparams: TrialParams,
    rng: np.random.Generator,
) -> Any:
    """Run a trial whose start is drawn uniformly from the trial-set start window."""
    window_start = random_instant(rng, tparams.earliest_start, tparams.latest_start)
    window_end = window_start + sparams.trading_period_length
    return run_trial(eparams, sparams, tsparams, tparams, window_start, window_end)


__all__ = ["StrategyPlugin", "run_trial", "run_randomized_trial"]
