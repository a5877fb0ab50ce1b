"""Callbacks and state types shared by the reference strategy plugins."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable, Optional, Tuple

import pandas as pd

from stocksim.backtest.ledger import Portfolio, new_portfolio, portfolio_value
from stocksim.backtest.params import (
    ExperimentParams,
    StrategyParams,
    TrialParams,
    TrialSetParams,
)
from stocksim.core.calendar import TradingCalendar
from stocksim.core.timeutils import Period, parse_period

ONE_MONTH = parse_period("1 month")


@dataclass(frozen=True)
class ConstantState:
    window_start: pd.Timestamp
    window_end: pd.Timestamp
    commission: float
    time_increment: Period
    calendar: TradingCalendar
    instruments: Tuple[str, ...]

    @property
    def instrument(self) -> str:
        return self.instruments[0]


@dataclass(frozen=True)
class TrialState:
    current_time: pd.Timestamp
    portfolio: Portfolio
    portfolio_value: Optional[float] = None


@dataclass(frozen=True)
class FinalState:
    portfolio_value: float


def default_constant_state(
    eparams: ExperimentParams,
    sparams: StrategyParams,
    tsparams: TrialSetParams,
    tparams: TrialParams,
    window_start: pd.Timestamp,
    window_end: pd.Timestamp,
) -> ConstantState:
    return ConstantState(
        window_start=window_start,
        window_end=window_end,
        commission=sparams.commission,
        time_increment=sparams.time_increment,
        calendar=sparams.calendar,
        instruments=tsparams.instruments,
    )


def initial_state_builder(state_cls: type = TrialState, **fields: Any) -> Callable[..., TrialState]:
    """Initial-state callback: principal in cash, clock at the window start."""

    def build(eparams, sparams, tsparams, tparams, constant_state):
        return state_cls(
            current_time=constant_state.window_start,
            portfolio=new_portfolio(sparams.principal),
            **fields,
        )

    return build


def trading_period_expired(
    eparams, sparams, tsparams, tparams, constant_state: ConstantState, current_state: TrialState
) -> bool:
    return not current_state.current_time < constant_state.window_end


def next_time(constant_state: ConstantState, current_time: pd.Timestamp) -> pd.Timestamp:
    return constant_state.calendar.soonest_session_instant(
        current_time + constant_state.time_increment
    )


def _value(tparams: TrialParams, state: TrialState) -> float:
    return portfolio_value(state.portfolio, state.current_time, tparams.histories)


def pv_final_state(eparams, sparams, tsparams, tparams, constant_state, current_state) -> FinalState:
    """Only the portfolio value at the end of the trading period."""
    return FinalState(portfolio_value=_value(tparams, current_state))


def default_final_state(eparams, sparams, tsparams, tparams, constant_state, current_state) -> TrialState:
    """The last state with its portfolio value filled in."""
    return replace(current_state, portfolio_value=_value(tparams, current_state))


def identity_final_state(eparams, sparams, tsparams, tparams, constant_state, current_state):
    return current_state


# returns true if last <= reference < current
def upcross(reference: float, last: float, current: float) -> bool:
    return last <= reference < current


# returns true if last >= reference > current
def downcross(reference: float, last: float, current: float) -> bool:
    return last >= reference > current


def periods_lookback(
    n_periods: int, n_period_duration: Period, reference: pd.Timestamp, calendar: TradingCalendar
) -> Period:
    """Wall-clock estimate of *n_periods* schedule-aware periods, plus one month of slack."""
    span = calendar.estimated_duration_for_periods(n_periods, n_period_duration, reference)
    return pd.DateOffset(months=1, seconds=int(span.total_seconds()))


def one_month_lookback(eparams, sparams, tsparams) -> Period:
    return ONE_MONTH
