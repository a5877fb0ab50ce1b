"""
Average-band crossover strategy.

Each step samples the last ``n_periods`` closes (one per ``n_period_duration``
along the trading calendar) and splits them around their SMA: the low band
is the mean of closes below the SMA, the high band the mean of closes above.

* price up-crosses the low band: buy as many shares as cash allows
* price down-crosses the high band: sell everything
* price down-crosses the low band while holding: sell everything
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, Sequence, Tuple

import pandas as pd

from stocksim.backtest.ledger import (
    DEFAULT_COMMISSION,
    DEFAULT_PRINCIPAL,
    Portfolio,
    buy_max_affordable,
    holds_shares,
    sell_all,
)
from stocksim.backtest.params import StrategyParams
from stocksim.backtest.state_machine import StrategyPlugin
from stocksim.core.calendar import TradingCalendar
from stocksim.core.timeutils import parse_period
from stocksim.dal.price_history import PriceHistories, price_close, recent_closes
from stocksim.features.stats import mean, sma_update

from .common import (
    ConstantState,
    TrialState,
    default_constant_state,
    downcross,
    initial_state_builder,
    next_time,
    periods_lookback,
    pv_final_state,
    trading_period_expired,
    upcross,
)
from .params import AverageBandsParams


@dataclass(frozen=True)
class BandsState(TrialState):
    last_price: Optional[float] = None
    last_sma: Optional[float] = None
    last_window: Optional[Tuple[float, ...]] = None


def average_bands(window: Sequence[float], ma: float) -> Tuple[float, float]:
    """(low, high) band; a side with no closes collapses onto the SMA."""
    below = [p for p in window if p < ma]
    above = [p for p in window if p > ma]
    low = mean(below) if below else ma
    high = mean(above) if above else ma
    return low, high


def apply_band_signals(
    portfolio: Portfolio,
    constant_state: ConstantState,
    histories: PriceHistories,
    time: pd.Timestamp,
    low: float,
    high: float,
    last_price: float,
    price: float,
) -> Portfolio:
    """Band crossover rules shared by the band strategies; first matching rule wins."""
    commission = constant_state.commission
    instrument = constant_state.instrument
    if upcross(low, last_price, price):
        return buy_max_affordable(portfolio, commission, instrument, time, histories)
    if downcross(high, last_price, price):
        return sell_all(portfolio, commission, instrument, time, histories)
    if holds_shares(portfolio, instrument) and downcross(low, last_price, price):
        return sell_all(portfolio, commission, instrument, time, histories)
    return portfolio


def next_state(eparams, sparams, tsparams, tparams, constant_state: ConstantState, current_state: BandsState) -> BandsState:
    opts: AverageBandsParams = sparams.extra
    histories = tparams.histories
    t = current_state.current_time
    instrument = constant_state.instrument

    price = price_close(histories, instrument, t)
    last_price = price if current_state.last_price is None else current_state.last_price

    window = recent_closes(
        histories, instrument, opts.n_periods, t, opts.n_period_duration, constant_state.calendar
    )
    ma = sma_update(window, opts.n_periods, current_state.last_sma, current_state.last_window)
    low, high = average_bands(window, ma)

    portfolio = apply_band_signals(
        current_state.portfolio, constant_state, histories, t, low, high, last_price, price
    )
    return replace(
        current_state,
        portfolio=portfolio,
        current_time=next_time(constant_state, t),
        last_price=price,
        last_sma=ma,
        last_window=window,
    )


def required_lookback(eparams, sparams, tsparams):
    opts: AverageBandsParams = sparams.extra
    return periods_lookback(opts.n_periods, opts.n_period_duration, eparams.start, sparams.calendar)


def build_plugin() -> StrategyPlugin:
    return StrategyPlugin(
        name="average_bands",
        build_constant_state=default_constant_state,
        build_initial_state=initial_state_builder(BandsState),
        is_final_state=trading_period_expired,
        build_next_state=next_state,
        build_return_state=pv_final_state,
        required_lookback=required_lookback,
    )


PLUGIN = build_plugin()


def strategy_params(
    trading_period_length="1y",
    time_increment="1d",
    calendar: TradingCalendar | None = None,
    commission: float = DEFAULT_COMMISSION,
    principal: float = DEFAULT_PRINCIPAL,
    **options,
) -> StrategyParams:
    return StrategyParams(
        plugin=PLUGIN,
        trading_period_length=parse_period(trading_period_length),
        time_increment=parse_period(time_increment),
        calendar=calendar or TradingCalendar.weekdays(),
        commission=commission,
        principal=principal,
        extra=AverageBandsParams(**options),
    )
