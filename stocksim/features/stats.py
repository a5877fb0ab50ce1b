"""
Running statistics and O(1) moving-average updates.

Windows are chronological: ``window[0]`` is the oldest observation and
``window[-1]`` the newest. Strategies keep the previous window and average in
their state and call ``sma_update`` / ``ema_update`` at each step instead of
recomputing over the full history.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, Optional, Sequence

import numpy as np


@dataclass(frozen=True)
class SampleDistribution:
    mean: float
    variance: float
    count: int

    @property
    def std_dev(self) -> float:
        return math.sqrt(self.variance) if self.variance > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["std_dev"] = self.std_dev
        return d


def _as_array(values: Iterable[float]) -> np.ndarray:
    if isinstance(values, np.ndarray):
        return values.astype(float, copy=False)
    return np.fromiter((float(v) for v in values), dtype=float)


def mean(values: Iterable[float]) -> float:
    arr = _as_array(values)
    if arr.size == 0:
        raise ValueError("mean of an empty sequence")
    return float(arr.mean())


def sample_std_dev(values: Iterable[float], mean_: Optional[float] = None) -> float:
    """Standard deviation with the n-1 divisor; 0.0 for fewer than two values."""
    arr = _as_array(values)
    if arr.size < 2:
        return 0.0
    m = float(arr.mean()) if mean_ is None else float(mean_)
    return math.sqrt(float(np.sum((arr - m) ** 2)) / (arr.size - 1))


def population_std_dev(values: Iterable[float], mean_: Optional[float] = None) -> float:
    """Standard deviation with the n divisor (band indicators)."""
    arr = _as_array(values)
    if arr.size == 0:
        raise ValueError("std-dev of an empty sequence")
    m = float(arr.mean()) if mean_ is None else float(mean_)
    return math.sqrt(float(np.sum((arr - m) ** 2)) / arr.size)


def sample_distribution(values: Iterable[float]) -> SampleDistribution:
    arr = _as_array(values)
    if arr.size == 0:
        raise ValueError("distribution of an empty sequence")
    m = float(arr.mean())
    var = float(np.sum((arr - m) ** 2)) / (arr.size - 1) if arr.size > 1 else 0.0
    return SampleDistribution(mean=m, variance=var, count=int(arr.size))


def combine_distributions(dists: Iterable[SampleDistribution]) -> SampleDistribution:
    """
    Pool independent sample distributions into one.

    The pooled variance is the total sum of squares over all observations
    (within-set ``(n-1)*s^2`` plus between-set ``n*(m-M)^2``) divided by
    ``N-1``, so the result equals ``sample_distribution`` over the union of
    the underlying samples. The result does not depend on input order.
    """
    items = [d for d in dists if d.count > 0]
    if not items:
        raise ValueError("no distributions to combine")
    total = sum(d.count for d in items)
    grand_mean = sum(d.count * d.mean for d in items) / total
    if total < 2:
        return SampleDistribution(mean=grand_mean, variance=0.0, count=total)
    within = sum((d.count - 1) * d.variance for d in items)
    between = sum(d.count * (d.mean - grand_mean) ** 2 for d in items)
    return SampleDistribution(
        mean=grand_mean, variance=(within + between) / (total - 1), count=total
    )


# -------- Moving averages --------
def sma(window: Sequence[float]) -> float:
    """Simple moving average of the window."""
    return mean(window)


def sma_update(
    window: Sequence[float],
    n: int,
    last_average: Optional[float] = None,
    last_window: Optional[Sequence[float]] = None,
) -> float:
    """
    Slide an SMA by one observation.

    When the previous window has the same length and overlaps the current one
    shifted by one step, the new average is
    ``last_average + (window[-1] - last_window[0]) / n``. Anything else (first
    step, short or unrelated windows) falls back to ``mean(window)``.
    """
    if n <= 0:
        raise ValueError("n must be positive")
    if len(window) == 0:
        raise ValueError("window must not be empty")
    if n == 1:
        return float(window[-1])
    if (
        last_average is None
        or last_window is None
        or len(window) != n
        or len(last_window) != n
        or tuple(window[:-1]) != tuple(last_window[1:])
    ):
        return sma(window)
    return last_average + (float(window[-1]) - float(last_window[0])) / n


def ema_alpha(n: int, smoothing: float = 2.0) -> float:
    if n < 0:
        raise ValueError("n must be >= 0")
    return smoothing / (n + 1)


def ema_update(new_value: float, alpha: float, last_ema: float) -> float:
    return last_ema + alpha * (float(new_value) - last_ema)


def ema(values: Sequence[float], n: int, alpha: Optional[float] = None) -> float:
    """
    EMA of a chronological series, seeded with the SMA of the first *n* values.

    Shorter series return their plain mean.
    """
    if len(values) == 0:
        raise ValueError("ema of an empty sequence")
    a = ema_alpha(n) if alpha is None else alpha
    seed = max(1, min(n, len(values)))
    result = mean(values[:seed])
    for v in values[seed:]:
        result = ema_update(v, a, result)
    return result


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
