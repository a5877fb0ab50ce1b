"""
Immutable parameter bundles for experiments, strategies, trial sets and trials.

Each bundle validates itself at construction and raises ``ConfigError`` on
bad input, so a malformed YAML config fails before any trial runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional, Sequence, Tuple

import pandas as pd

from stocksim.backtest.allocation import (
    InstrumentSet,
    InstrumentSetGen,
    TrialDistributor,
    randomly_distribute_trial_count,
    singletons,
)
from stocksim.backtest.ledger import DEFAULT_COMMISSION, DEFAULT_PRINCIPAL
from stocksim.core.calendar import TradingCalendar
from stocksim.core.exceptions import ConfigError
from stocksim.core.timeutils import Period, is_positive
from stocksim.dal.price_history import PriceHistoryIndex

if TYPE_CHECKING:
    from stocksim.backtest.state_machine import StrategyPlugin

LookbackFn = Callable[["ExperimentParams", "StrategyParams", "TrialSetParams"], Period]
FinalStatesFn = Callable[[Sequence[Any]], Any]


@dataclass(frozen=True)
class ExperimentParams:
    """
    Experiment-wide settings.

    Attributes:
        instruments: Instrument keys (price-history files) available to the experiment.
        trial_count: Total number of trials; its meaning depends on ``distribute_trial_count``.
        start / end: Trials never trade outside ``[start, end]``.
        instrument_set_gen: Turns ``instruments`` into instrument sets.
        distribute_trial_count: Assigns trial counts to instrument sets.
        prior_price_history: Overrides the strategy's required lookback when set.
        process_final_states: Reduces a trial set's final states (default: portfolio-value stats).
        max_workers: Thread pool size for one trial set (None: executor default).
        seed: Seed for the experiment's random generator (None: fresh entropy).
        fail_fast: Re-raise a failing instrument set instead of skipping it.
    """

    instruments: Tuple[str, ...]
    trial_count: int
    start: pd.Timestamp
    end: pd.Timestamp
    instrument_set_gen: InstrumentSetGen = singletons
    distribute_trial_count: TrialDistributor = randomly_distribute_trial_count
    prior_price_history: Optional[LookbackFn] = None
    process_final_states: Optional[FinalStatesFn] = None
    max_workers: Optional[int] = None
    seed: Optional[int] = None
    fail_fast: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "instruments", tuple(self.instruments))
        if self.trial_count < 0:
            raise ConfigError("trial_count must be >= 0")
        if not isinstance(self.start, pd.Timestamp) or not isinstance(self.end, pd.Timestamp):
            raise ConfigError("start and end must be pandas Timestamps")
        if self.start > self.end:
            raise ConfigError(f"experiment start {self.start} is after end {self.end}")
        if self.max_workers is not None and self.max_workers < 1:
            raise ConfigError("max_workers must be >= 1")


@dataclass(frozen=True)
class StrategyParams:
    """
    Strategy settings shared by every trial of an experiment.

    ``extra`` carries the strategy-specific parameters (see ``stocksim.strats.params``).
    """

    plugin: "StrategyPlugin"
    trading_period_length: Period
    time_increment: Period
    calendar: TradingCalendar = field(default_factory=TradingCalendar.weekdays)
    commission: float = DEFAULT_COMMISSION
    principal: float = DEFAULT_PRINCIPAL
    extra: Any = None

    def __post_init__(self) -> None:
        if self.commission < 0:
            raise ConfigError("commission must be >= 0")
        if self.principal < 0:
            raise ConfigError("principal must be >= 0")
        if not is_positive(self.trading_period_length):
            raise ConfigError("trading_period_length must be positive")
        if not is_positive(self.time_increment):
            raise ConfigError("time_increment must be positive")

    @property
    def name(self) -> str:
        return self.plugin.name

    def describe(self) -> dict:
        """Plain-data view used in logs and summaries."""
        extra = self.extra
        if hasattr(extra, "__dataclass_fields__"):
            extra = {k: getattr(extra, k) for k in extra.__dataclass_fields__}
        return {
            "strategy": self.plugin.name,
            "commission": self.commission,
            "principal": self.principal,
            "trading_period_length": str(self.trading_period_length),
            "time_increment": str(self.time_increment),
            "extra": extra,
        }


@dataclass(frozen=True)
class TrialSetParams:
    instruments: InstrumentSet
    trial_count: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "instruments", tuple(self.instruments))
        if not self.instruments:
            raise ConfigError("a trial set needs at least one instrument")
        if self.trial_count < 1:
            raise ConfigError("trial_count must be >= 1")

    @property
    def instrument(self) -> str:
        """The first instrument; single-instrument strategies trade only this one."""
        return self.instruments[0]


@dataclass(frozen=True)
class TrialParams:
    """Price histories and the start-time window shared by all trials in a set."""

    histories: Mapping[str, PriceHistoryIndex]
    earliest_start: pd.Timestamp
    latest_start: pd.Timestamp

    def __post_init__(self) -> None:
        if self.earliest_start > self.latest_start:
            raise ConfigError(
                f"empty start window [{self.earliest_start}, {self.latest_start}]"
            )


__all__ = [
    "ExperimentParams",
    "StrategyParams",
    "TrialSetParams",
    "TrialParams",
    "LookbackFn",
    "FinalStatesFn",
]
