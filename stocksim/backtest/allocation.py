"""
Instrument-set generators and trial-count distributors.

Generators take ``(instruments, rng)`` and return a list of instrument sets
(tuples). Distributors take ``(instrument_sets, trial_count, rng)`` and return
``(instrument_set, count)`` pairs; sets that would receive no trials are
omitted.
"""

from __future__ import annotations

from typing import Callable, List, Sequence, Tuple

import numpy as np

InstrumentSet = Tuple[str, ...]
InstrumentSetGen = Callable[[Sequence[str], np.random.Generator], List[InstrumentSet]]
TrialDistributor = Callable[
    [Sequence[InstrumentSet], int, np.random.Generator], List[Tuple[InstrumentSet, int]]
]


def singletons(instruments: Sequence[str], rng: np.random.Generator | None = None) -> List[InstrumentSet]:
    """One set per instrument, in input order."""
    return [(i,) for i in instruments]


def random_groups(n: int) -> InstrumentSetGen:
    """Shuffle the instruments and cut them into groups of *n* (last may be short)."""
    if n <= 0:
        raise ValueError("group size must be positive")

    def _gen(instruments: Sequence[str], rng: np.random.Generator) -> List[InstrumentSet]:
        order = rng.permutation(len(instruments))
        shuffled = [instruments[i] for i in order]
        return [tuple(shuffled[k : k + n]) for k in range(0, len(shuffled), n)]

    _gen.__name__ = f"random_groups_{n}"
    return _gen


def n_per_set(n: int) -> InstrumentSetGen:
    """*n* singleton sets drawn at random (with replacement) from the instruments."""
    if n <= 0:
        raise ValueError("n must be positive")

    def _gen(instruments: Sequence[str], rng: np.random.Generator) -> List[InstrumentSet]:
        if not instruments:
            return []
        picks = rng.integers(0, len(instruments), size=n)
        return [(instruments[int(i)],) for i in picks]

    _gen.__name__ = f"n_per_set_{n}"
    return _gen


def passthrough_trial_count(
    instrument_sets: Sequence[InstrumentSet],
    trial_count: int,
    rng: np.random.Generator | None = None,
) -> List[Tuple[InstrumentSet, int]]:
    """Every set gets the full *trial_count*."""
    if trial_count <= 0:
        return []
    return [(s, trial_count) for s in instrument_sets]


def evenly_distribute_trial_count(
    instrument_sets: Sequence[InstrumentSet],
    trial_count: int,
    rng: np.random.Generator | None = None,
) -> List[Tuple[InstrumentSet, int]]:
    """Split *trial_count* as evenly as possible; earlier sets take the remainder."""
    if not instrument_sets:
        return []
    base, extra = divmod(trial_count, len(instrument_sets))
    pairs = [(s, base + (1 if k < extra else 0)) for k, s in enumerate(instrument_sets)]
    return [(s, c) for s, c in pairs if c > 0]


def randomly_distribute_trial_count(
    instrument_sets: Sequence[InstrumentSet],
    trial_count: int,
    rng: np.random.Generator,
) -> List[Tuple[InstrumentSet, int]]:
    """Assign each of *trial_count* trials to a uniformly random set (multinomial)."""
    if not instrument_sets or trial_count <= 0:
        return []
    k = len(instrument_sets)
    counts = rng.multinomial(trial_count, [1.0 / k] * k)
    return [(s, int(c)) for s, c in zip(instrument_sets, counts) if c > 0]


INSTRUMENT_SET_GENERATORS = {
    "singletons": singletons,
}

TRIAL_DISTRIBUTORS = {
    "passthrough": passthrough_trial_count,
    "evenly": evenly_distribute_trial_count,
    "randomly": randomly_distribute_trial_count,
}


def resolve_instrument_set_gen(choice: str | dict | None) -> InstrumentSetGen:
    """Map config (``"singletons"``, ``{"random_groups": 3}``, ``{"n_per_set": 5}``) to a generator."""
    if choice is None:
        return singletons
    if isinstance(choice, str):
        try:
            return INSTRUMENT_SET_GENERATORS[choice]
        except KeyError:
            raise ValueError(f"unknown instrument set generator: {choice!r}") from None
    if isinstance(choice, dict) and len(choice) == 1:
        (name, n), = choice.items()
        if name == "random_groups":
            return random_groups(int(n))
        if name == "n_per_set":
            return n_per_set(int(n))
    raise ValueError(f"unknown instrument set generator: {choice!r}")


def resolve_trial_distributor(name: str | None) -> TrialDistributor:
    if name is None:
        return randomly_distribute_trial_count
    try:
        return TRIAL_DISTRIBUTORS[name]
    except KeyError:
        raise ValueError(f"unknown trial distributor: {name!r}") from None


__all__ = [
    "InstrumentSet",
    "InstrumentSetGen",
    "TrialDistributor",
    "singletons",
    "random_groups",
    "n_per_set",
    "passthrough_trial_count",
    "evenly_distribute_trial_count",
    "randomly_distribute_trial_count",
    "resolve_instrument_set_gen",
    "resolve_trial_distributor",
]
