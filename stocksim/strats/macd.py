"""
MACD signal-line crossover strategy.

MACD is the fast EMA of closes minus the slow EMA; the signal line is an EMA
of MACD. A MACD up-cross of the signal line buys as many shares as cash
allows, a down-cross sells everything.

The first step seeds both EMAs and the signal line from sampled history;
later steps update them in O(1) from the current close. The incremental form
assumes ``time_increment == n_period_duration`` so successive closes are
successive samples.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

from stocksim.backtest.ledger import (
    DEFAULT_COMMISSION,
    DEFAULT_PRINCIPAL,
    buy_max_affordable,
    sell_all,
)
from stocksim.backtest.params import StrategyParams
from stocksim.backtest.state_machine import StrategyPlugin
from stocksim.core.calendar import TradingCalendar
from stocksim.core.timeutils import parse_period
from stocksim.dal.price_history import price_close, recent_closes
from stocksim.features.stats import ema, ema_update

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
from .params import MacdParams


@dataclass(frozen=True)
class MacdState(TrialState):
    last_macd: Optional[float] = None
    last_fast_ema: Optional[float] = None
    last_slow_ema: Optional[float] = None
    last_signal: Optional[float] = None


def seed_macd(closes: Sequence[float], opts: MacdParams) -> Tuple[float, float, float]:
    """
    (fast_ema, slow_ema, signal) from chronological closes.

    The EMAs are computed in full over the oldest prefix and then updated once
    per remaining close, giving ``macd_ema_n`` MACD values for the signal EMA.
    """
    k = min(opts.macd_ema_n, len(closes))
    base = closes[: len(closes) - k + 1]
    fast = ema(base, opts.fast_ema_n, opts.fast_alpha)
    slow = ema(base, opts.slow_ema_n, opts.slow_alpha)
    macds: List[float] = [fast - slow]
    for close in closes[len(closes) - k + 1 :]:
        fast = ema_update(close, opts.fast_alpha, fast)
        slow = ema_update(close, opts.slow_alpha, slow)
        macds.append(fast - slow)
    signal = ema(macds, opts.macd_ema_n, opts.signal_alpha)
    return fast, slow, signal


def next_state(eparams, sparams, tsparams, tparams, constant_state: ConstantState, current_state: MacdState) -> MacdState:
    opts: MacdParams = sparams.extra
    histories = tparams.histories
    t = current_state.current_time
    instrument = constant_state.instrument

    if current_state.last_fast_ema is None or current_state.last_signal is None:
        closes = recent_closes(
            histories, instrument, opts.history_periods, t, opts.n_period_duration, constant_state.calendar
        )
        fast, slow, signal = seed_macd(closes, opts)
        macd = fast - slow
    else:
        price = price_close(histories, instrument, t)
        fast = ema_update(price, opts.fast_alpha, current_state.last_fast_ema)
        slow = ema_update(price, opts.slow_alpha, current_state.last_slow_ema)
        macd = fast - slow
        signal = ema_update(macd, opts.signal_alpha, current_state.last_signal)

    last_macd = macd if current_state.last_macd is None else current_state.last_macd
    portfolio = current_state.portfolio
    if upcross(signal, last_macd, macd):
        portfolio = buy_max_affordable(portfolio, constant_state.commission, instrument, t, histories)
    elif downcross(signal, last_macd, macd):
        portfolio = sell_all(portfolio, constant_state.commission, instrument, t, histories)

    return replace(
        current_state,
        portfolio=portfolio,
        current_time=next_time(constant_state, t),
        last_macd=macd,
        last_fast_ema=fast,
        last_slow_ema=slow,
        last_signal=signal,
    )


def required_lookback(eparams, sparams, tsparams):
    opts: MacdParams = sparams.extra
    n = opts.macd_ema_n + max(opts.fast_ema_n, opts.slow_ema_n)
    return periods_lookback(n, opts.n_period_duration, eparams.start, sparams.calendar)


def build_plugin() -> StrategyPlugin:
    return StrategyPlugin(
        name="macd",
        build_constant_state=default_constant_state,
        build_initial_state=initial_state_builder(MacdState),
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
        extra=MacdParams(**options),
    )
