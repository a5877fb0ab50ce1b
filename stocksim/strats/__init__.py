from __future__ import annotations

# Public API for strategies

from dataclasses import dataclass
from typing import Callable, Dict

from stocksim.backtest.params import StrategyParams
from stocksim.backtest.state_machine import StrategyPlugin

from . import average_bands, bollinger_bands, buy_and_hold, macd
from .params import AverageBandsParams, BollingerBandsParams, BuyAndHoldParams, MacdParams


@dataclass(frozen=True)
class StrategyEntry:
    plugin: StrategyPlugin
    params_cls: type
    strategy_params: Callable[..., StrategyParams]


STRATEGIES: Dict[str, StrategyEntry] = {
    "buy_and_hold": StrategyEntry(buy_and_hold.PLUGIN, BuyAndHoldParams, buy_and_hold.strategy_params),
    "average_bands": StrategyEntry(average_bands.PLUGIN, AverageBandsParams, average_bands.strategy_params),
    "bollinger_bands": StrategyEntry(bollinger_bands.PLUGIN, BollingerBandsParams, bollinger_bands.strategy_params),
    "macd": StrategyEntry(macd.PLUGIN, MacdParams, macd.strategy_params),
}


def get_strategy(name: str) -> StrategyEntry:
    try:
        return STRATEGIES[name]
    except KeyError:
        raise KeyError(f"unknown strategy {name!r}; known: {sorted(STRATEGIES)}") from None


__all__ = [
    "STRATEGIES",
    "StrategyEntry",
    "get_strategy",
    "AverageBandsParams",
    "BollingerBandsParams",
    "BuyAndHoldParams",
    "MacdParams",
]
