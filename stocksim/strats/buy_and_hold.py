"""Buy as many shares as cash allows at the window start, then hold."""

from __future__ import annotations

from dataclasses import replace

from stocksim.backtest.ledger import DEFAULT_COMMISSION, DEFAULT_PRINCIPAL, buy_max_affordable
from stocksim.backtest.params import StrategyParams
from stocksim.backtest.state_machine import StrategyPlugin
from stocksim.core.calendar import TradingCalendar
from stocksim.core.timeutils import parse_period

from .common import (
    ConstantState,
    TrialState,
    default_constant_state,
    initial_state_builder,
    next_time,
    one_month_lookback,
    pv_final_state,
    trading_period_expired,
)
from .params import BuyAndHoldParams


def next_state(eparams, sparams, tsparams, tparams, constant_state: ConstantState, current_state: TrialState) -> TrialState:
    t = current_state.current_time
    portfolio = current_state.portfolio
    if t == constant_state.window_start:
        portfolio = buy_max_affordable(
            portfolio, constant_state.commission, constant_state.instrument, t, tparams.histories
        )
    return replace(current_state, portfolio=portfolio, current_time=next_time(constant_state, t))


def build_plugin() -> StrategyPlugin:
    return StrategyPlugin(
        name="buy_and_hold",
        build_constant_state=default_constant_state,
        build_initial_state=initial_state_builder(TrialState),
        is_final_state=trading_period_expired,
        build_next_state=next_state,
        build_return_state=pv_final_state,
        required_lookback=one_month_lookback,
    )


PLUGIN = build_plugin()


def strategy_params(
    trading_period_length="1y",
    time_increment="1y",
    calendar: TradingCalendar | None = None,
    commission: float = DEFAULT_COMMISSION,
    principal: float = DEFAULT_PRINCIPAL,
) -> StrategyParams:
    return StrategyParams(
        plugin=PLUGIN,
        trading_period_length=parse_period(trading_period_length),
        time_increment=parse_period(time_increment),
        calendar=calendar or TradingCalendar.weekdays(),
        commission=commission,
        principal=principal,
        extra=BuyAndHoldParams(),
    )
