"""Bollinger-band crossover strategy: bands at SMA +/- k population std-devs."""

from __future__ import annotations

from dataclasses import replace
from typing import Sequence, Tuple

from stocksim.backtest.ledger import DEFAULT_COMMISSION, DEFAULT_PRINCIPAL
from stocksim.backtest.params import StrategyParams
from stocksim.backtest.state_machine import StrategyPlugin
from stocksim.core.calendar import TradingCalendar
from stocksim.core.timeutils import parse_period
from stocksim.dal.price_history import price_close, recent_closes
from stocksim.features.stats import population_std_dev, sma_update

from .average_bands import BandsState, apply_band_signals
from .common import (
    ConstantState,
    default_constant_state,
    initial_state_builder,
    next_time,
    periods_lookback,
    pv_final_state,
    trading_period_expired,
)
from .params import BollingerBandsParams


def bollinger_bands(window: Sequence[float], ma: float, k: float) -> Tuple[float, float]:
    width = k * population_std_dev(window, ma)
    return ma - width, ma + width


def next_state(eparams, sparams, tsparams, tparams, constant_state: ConstantState, current_state: BandsState) -> BandsState:
    opts: BollingerBandsParams = sparams.extra
    histories = tparams.histories
    t = current_state.current_time
    instrument = constant_state.instrument

    price = price_close(histories, instrument, t)
    last_price = price if current_state.last_price is None else current_state.last_price

    window = recent_closes(
        histories, instrument, opts.n_periods, t, opts.n_period_duration, constant_state.calendar
    )
    ma = sma_update(window, opts.n_periods, current_state.last_sma, current_state.last_window)
    lower, upper = bollinger_bands(window, ma, opts.k_multiplier)

    portfolio = apply_band_signals(
        current_state.portfolio, constant_state, histories, t, lower, upper, last_price, price
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
    opts: BollingerBandsParams = sparams.extra
    return periods_lookback(opts.n_periods, opts.n_period_duration, eparams.start, sparams.calendar)


def build_plugin() -> StrategyPlugin:
    return StrategyPlugin(
        name="bollinger_bands",
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
        extra=BollingerBandsParams(**options),
    )
