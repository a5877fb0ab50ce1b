"""Centralized runtime settings powered by Pydantic.

Environment matrix:

| Section    | Environment Variable     | Default   | Purpose                                       |
|------------|--------------------------|-----------|-----------------------------------------------|
| Simulation | `STOCKSIM_DATA_DIR`      | `data`    | Directory holding `<instrument>.csv` files    |
| Simulation | `STOCKSIM_MAX_WORKERS`   | `None`    | Thread pool size for trials (None = cpu count)|
| Simulation | `STOCKSIM_SEED`          | `None`    | Seed for the experiment random generator      |
| Simulation | `STOCKSIM_SWEEP_WORKERS` | `2`       | Concurrent parameter sets in a sweep          |
| Logging    | `LOG_LEVEL`              | `INFO`    | Loguru sink level                             |
| Logging    | `ENV`                    | `local`   | Deployment environment label                  |

Settings are read from the environment at construction time and are frozen.
Call `reload_settings()` after changing the environment (tests do this through
`monkeypatch`).
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class _SettingsBase(BaseSettings):
    """Common configuration for BaseSettings subclasses."""

    model_config = SettingsConfigDict(
        env_prefix="",
        populate_by_name=True,
        extra="ignore",
        case_sensitive=True,
        frozen=True,
    )


class SimulationSettings(_SettingsBase):
    """Defaults for experiment execution."""

    data_dir: Path = Field(default=Path("data"), alias="STOCKSIM_DATA_DIR")
    max_workers: int | None = Field(default=None, alias="STOCKSIM_MAX_WORKERS")
    seed: int | None = Field(default=None, alias="STOCKSIM_SEED")
    sweep_workers: int = Field(default=2, alias="STOCKSIM_SWEEP_WORKERS")

    @field_validator("max_workers", "seed", mode="before")
    @classmethod
    def _blank_is_none(cls, value: int | str | None) -> int | str | None:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("max_workers")
    @classmethod
    def _positive_workers(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("STOCKSIM_MAX_WORKERS must be >= 1")
        return value

    @field_validator("sweep_workers", mode="before")
    @classmethod
    def _coerce_sweep_workers(cls, value: int | str | None) -> int:
        if value in (None, ""):
            return 2
        try:
            return max(1, int(value))
        except (TypeError, ValueError):
            return 2


class LoggingSettings(_SettingsBase):
    """Loguru sink configuration."""

    level: str = Field(default="INFO", alias="LOG_LEVEL")
    environment: str = Field(default="local", alias="ENV")

    @field_validator("level", mode="before")
    @classmethod
    def _upper_level(cls, value: str | None) -> str:
        return (value or "INFO").strip().upper()


class Settings(BaseModel):
    """Aggregate accessor for domain-specific settings."""

    simulation: SimulationSettings = Field(default_factory=SimulationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = {
        "frozen": True,
        "arbitrary_types_allowed": True,
    }


def get_settings() -> Settings:
    """Instantiate settings from the current environment."""
    return Settings()


def reload_settings() -> Settings:
    """Alias for get_settings to maintain a consistent API."""
    return get_settings()


def get_simulation_settings() -> SimulationSettings:
    return get_settings().simulation


def get_logging_settings() -> LoggingSettings:
    return get_settings().logging


__all__ = [
    "Settings",
    "SimulationSettings",
    "LoggingSettings",
    "get_settings",
    "reload_settings",
    "get_simulation_settings",
    "get_logging_settings",
]
