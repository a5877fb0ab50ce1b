"""
Trial-set and experiment orchestration.

An experiment turns its instrument list into instrument sets, splits the
trial count across them and runs one trial set per instrument set. A trial
set picks the window of valid start instants from data coverage, loads the
price histories that window needs and runs its trials on a thread pool.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from time import perf_counter
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from loguru import logger

from stocksim.backtest.allocation import InstrumentSet
from stocksim.backtest.params import (
    ExperimentParams,
    StrategyParams,
    TrialParams,
    TrialSetParams,
)
from stocksim.backtest.state_machine import run_randomized_trial
from stocksim.core.exceptions import NoUsableDataError
from stocksim.core.timeutils import Period, earliest, latest
from stocksim.dal.price_history import PriceHistoryStore
from stocksim.dal.sources import CsvPriceSource
from stocksim.features.stats import (
    SampleDistribution,
    combine_distributions,
    sample_distribution,
)
from stocksim.settings import get_simulation_settings

Interval = Tuple[pd.Timestamp, pd.Timestamp]
ExperimentResult = List[Tuple[InstrumentSet, Any]]


def valid_start_window(
    cdr: Optional[Interval],
    experiment_start: pd.Timestamp,
    experiment_end: pd.Timestamp,
    trading_period_length: Period,
    required_lookback: Period,
) -> Optional[Interval]:
    """
    Interval of instants a trial may start at, or None.

    ``[max(experiment_start, cdr_start + lookback),
    min(experiment_end - period, cdr_end - period)]``
    """
    if cdr is None:
        return None
    cdr_start, cdr_end = cdr
    lower = latest(experiment_start, cdr_start + required_lookback)
    upper = earliest(experiment_end - trading_period_length, cdr_end - trading_period_length)
    if lower > upper:
        return None
    return lower, upper


# -------- Aggregation --------
def _portfolio_value(state: Any) -> float:
    if isinstance(state, Mapping):
        return float(state["portfolio_value"])
    return float(getattr(state, "portfolio_value"))


def trial_set_stats(final_states: Iterable[Any]) -> SampleDistribution:
    """Sample distribution of the trials' final portfolio values."""
    return sample_distribution([_portfolio_value(s) for s in final_states])


def experiment_stats(pairs: Sequence[Tuple[InstrumentSet, SampleDistribution]]) -> SampleDistribution:
    """Pool the per-trial-set distributions of an experiment result."""
    if not pairs:
        raise NoUsableDataError("experiment produced no trial-set results")
    return combine_distributions(stats for _, stats in pairs)


# -------- Execution --------
def default_store() -> PriceHistoryStore:
    return PriceHistoryStore(CsvPriceSource(get_simulation_settings().data_dir))


def _resolve_workers(eparams: ExperimentParams, trial_count: int) -> int | None:
    workers = eparams.max_workers or get_simulation_settings().max_workers
    if workers is None:
        return None
    return max(1, min(workers, trial_count))


def run_trial_set(
    eparams: ExperimentParams,
    sparams: StrategyParams,
    tsparams: TrialSetParams,
    store: PriceHistoryStore,
    rng: np.random.Generator,
) -> Optional[Any]:
    """
    Run ``tsparams.trial_count`` randomized trials on one instrument set.

    Returns ``process_final_states(final_states)``, or None when the set has
    no valid start window. Each trial gets its own generator spawned from
    *rng*, and final states keep submission order, so results for a fixed
    seed do not depend on thread scheduling. A failing trial aborts the set.
    """
    instruments = tsparams.instruments
    cdr = store.common_date_range(instruments)
    if cdr is None:
        logger.debug("[experiment] {} skipped: no common date range", instruments)
        return None

    lookback = sparams.plugin.lookback(eparams, sparams, tsparams)
    window = valid_start_window(
        cdr, eparams.start, eparams.end, sparams.trading_period_length, lookback
    )
    if window is None:
        logger.debug(
            "[experiment] {} skipped: no valid start window cdr={} lookback={}",
            instruments,
            cdr,
            lookback,
        )
        return None

    lower, upper = window
    histories = store.load(
        instruments, lower - lookback, upper + sparams.trading_period_length
    )
    tparams = TrialParams(histories=histories, earliest_start=lower, latest_start=upper)
    trial_rngs = rng.spawn(tsparams.trial_count)

    started = perf_counter()
    with ThreadPoolExecutor(
        max_workers=_resolve_workers(eparams, tsparams.trial_count),
        thread_name_prefix="trial",
    ) as executor:
        futures = [
            executor.submit(run_randomized_trial, eparams, sparams, tsparams, tparams, trial_rng)
            for trial_rng in trial_rngs
        ]
        try:
            final_states = [f.result() for f in futures]
        except Exception:
            for f in futures:
                f.cancel()
            raise

    logger.debug(
        "[experiment] {} trials={} window=[{}, {}] elapsed={:.3f}s",
        instruments,
        len(final_states),
        lower,
        upper,
        perf_counter() - started,
    )
    process = eparams.process_final_states or trial_set_stats
    return process(final_states)


def run_experiment(
    eparams: ExperimentParams,
    sparams: StrategyParams,
    store: Optional[PriceHistoryStore] = None,
    rng: Optional[np.random.Generator] = None,
) -> ExperimentResult:
    """
    Run every trial set of an experiment and return ``(instrument_set, result)`` pairs.

    Instrument sets without a valid window are dropped. An exception inside
    one set is logged and that set is dropped too, unless
    ``eparams.fail_fast`` is set.
    """
    store = store or default_store()
    if rng is None:
        seed = eparams.seed if eparams.seed is not None else get_simulation_settings().seed
        rng = np.random.default_rng(seed)

    instrument_sets = eparams.instrument_set_gen(eparams.instruments, rng)
    allocations = eparams.distribute_trial_count(instrument_sets, eparams.trial_count, rng)
    set_rngs = rng.spawn(len(allocations)) if allocations else []
    logger.info(
        "[experiment] strategy={} instruments={} sets={} trials={}",
        sparams.name,
        len(eparams.instruments),
        len(allocations),
        sum(c for _, c in allocations),
    )

    started = perf_counter()
    results: ExperimentResult = []
    skipped = failed = 0
    for (instrument_set, count), set_rng in zip(allocations, set_rngs):
        tsparams = TrialSetParams(instruments=instrument_set, trial_count=count)
        try:
            outcome = run_trial_set(eparams, sparams, tsparams, store, set_rng)
        except Exception as exc:
            if eparams.fail_fast:
                raise
            failed += 1
            logger.exception("[experiment] trial set {} failed: {}", instrument_set, exc)
            continue
        if outcome is None:
            skipped += 1
            continue
        results.append((tsparams.instruments, outcome))

    logger.info(
        "[experiment] done strategy={} results={} skipped={} failed={} elapsed={:.2f}s",
        sparams.name,
        len(results),
        skipped,
        failed,
        perf_counter() - started,
    )
    return results


def fitness(
    eparams: ExperimentParams,
    sparams: StrategyParams,
    store: Optional[PriceHistoryStore] = None,
    rng: Optional[np.random.Generator] = None,
) -> float:
    """Mean final portfolio value across all trials of the experiment."""
    pairs = run_experiment(eparams, sparams, store=store, rng=rng)
    return experiment_stats(pairs).mean


__all__ = [
    "valid_start_window",
    "run_trial_set",
    "run_experiment",
    "trial_set_stats",
    "experiment_stats",
    "fitness",
    "default_store",
]
