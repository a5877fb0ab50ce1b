class StockSimError(Exception):
    """Base class for all stocksim exceptions."""


class ConfigError(StockSimError):
    """Raised for missing/malformed configuration."""


class ScheduleError(ConfigError):
    """Raised when a trading schedule cannot produce session instants."""


class DataValidationError(StockSimError):
    """Raised when price history fails sanity or schema validation."""


class MissingQuoteError(DataValidationError):
    """Raised when no quote exists at or before a requested instant."""

    def __init__(self, instrument: str, time) -> None:
        super().__init__(f"no quote for {instrument!r} at or before {time}")
        self.instrument = instrument
        self.time = time


class NoUsableDataError(StockSimError):
    """Raised when an experiment produced no trial-set results at all."""


__all__ = [
    "StockSimError",
    "ConfigError",
    "ScheduleError",
    "DataValidationError",
    "MissingQuoteError",
    "NoUsableDataError",
]
