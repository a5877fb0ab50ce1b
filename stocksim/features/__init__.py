"""Incremental statistics and moving-average math used by strategies and aggregation."""

from .stats import (
    SampleDistribution,
    combine_distributions,
    ema,
    ema_alpha,
    ema_update,
    mean,
    population_std_dev,
    sample_distribution,
    sample_std_dev,
    sma,
    sma_update,
)

__all__ = [
    "SampleDistribution",
    "mean",
    "sample_std_dev",
    "population_std_dev",
    "sample_distribution",
    "combine_distributions",
    "sma",
    "sma_update",
    "ema_alpha",
    "ema",
    "ema_update",
]
