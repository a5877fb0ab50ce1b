from __future__ import annotations

from dataclasses import dataclass, field

from stocksim.core.exceptions import ConfigError
from stocksim.core.timeutils import Period, is_positive, parse_period
from stocksim.features.stats import ema_alpha


def _period(value) -> Period:
    return parse_period(value) if isinstance(value, (str, dict)) else value


@dataclass(frozen=True)
class BuyAndHoldParams:
    pass


@dataclass(frozen=True)
class AverageBandsParams:
    n_periods: int = 248  # ~1y of daily closes
    n_period_duration: Period = field(default_factory=lambda: parse_period("1d"))

    def __post_init__(self) -> None:
        object.__setattr__(self, "n_period_duration", _period(self.n_period_duration))
        if self.n_periods < 1:
            raise ConfigError("n_periods must be >= 1")
        if not is_positive(self.n_period_duration):
            raise ConfigError("n_period_duration must be positive")


@dataclass(frozen=True)
class BollingerBandsParams:
    n_periods: int = 20
    n_period_duration: Period = field(default_factory=lambda: parse_period("1d"))
    k_multiplier: float = 2.0  # band width in std-devs

    def __post_init__(self) -> None:
        object.__setattr__(self, "n_period_duration", _period(self.n_period_duration))
        if self.n_periods < 1:
            raise ConfigError("n_periods must be >= 1")
        if not is_positive(self.n_period_duration):
            raise ConfigError("n_period_duration must be positive")
        if self.k_multiplier < 0:
            raise ConfigError("k_multiplier must be >= 0")


@dataclass(frozen=True)
class MacdParams:
    fast_ema_n: int = 12
    slow_ema_n: int = 26
    macd_ema_n: int = 9  # signal line
    n_period_duration: Period = field(default_factory=lambda: parse_period("1d"))

    def __post_init__(self) -> None:
        object.__setattr__(self, "n_period_duration", _period(self.n_period_duration))
        for name in ("fast_ema_n", "slow_ema_n", "macd_ema_n"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be >= 1")
        if not is_positive(self.n_period_duration):
            raise ConfigError("n_period_duration must be positive")

    @property
    def fast_alpha(self) -> float:
        return ema_alpha(self.fast_ema_n)

    @property
    def slow_alpha(self) -> float:
        return ema_alpha(self.slow_ema_n)

    @property
    def signal_alpha(self) -> float:
        return ema_alpha(self.macd_ema_n)

    @property
    def history_periods(self) -> int:
        """Closes needed to seed the signal line on the first step."""
        return self.macd_ema_n + max(self.fast_ema_n, self.slow_ema_n) - 1
