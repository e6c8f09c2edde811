# src/outbreak_trees/sampling/downsample.py
"""
Select a subset of infected individuals to mimic incomplete ascertainment.

Strategies:
- "proportional": each individual is included independently with probability p
- "fixed-count":  exactly k individuals, uniformly without replacement

The same SampleSet restricts both the line list and (when given) the
phylogeny, so the epidemiological and genetic views always agree.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Tuple

import numpy as np
import pandas as pd

from ..errors import InvalidParameter, SampleSizeExceedsPopulation
from ..simulate.epidemic import Outbreak
from ..simulate.random_variate import RandomVariate
from ..trees.phylogeny import Phylogeny

logger = logging.getLogger(__name__)

PROPORTIONAL = "proportional"
FIXED_COUNT = "fixed-count"
STRATEGIES = (PROPORTIONAL, FIXED_COUNT)


@dataclass(frozen=True)
class SampleSet:
    ids: Tuple[int, ...]
    strategy: str
    parameter: float
    seed: Optional[int] = None
    _members: FrozenSet[int] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_members", frozenset(int(i) for i in self.ids))

    def __len__(self) -> int:
        return len(self.ids)

    def __contains__(self, i) -> bool:
        return int(i) in self._members

    def as_array(self) -> np.ndarray:
        return np.asarray(self.ids, dtype=np.int64)


@dataclass(frozen=True)
class Downsample:
    sample_set: SampleSet
    line_list: pd.DataFrame
    phylogeny: Optional[Phylogeny] = None


def _check_strategy(strategy: str, parameter, population: int) -> None:
    if strategy == PROPORTIONAL:
        if not 0.0 <= float(parameter) <= 1.0:
            raise InvalidParameter(f"Sampling probability must be in [0, 1], got {parameter}")
    elif strategy == FIXED_COUNT:
        if int(parameter) != parameter or parameter < 0:
            raise InvalidParameter(f"Sample size must be a non-negative integer, got {parameter}")
        if parameter > population:
            raise SampleSizeExceedsPopulation(
                f"Cannot sample {int(parameter)} individuals from an outbreak of {population}"
            )
    else:
        raise InvalidParameter(f"Unknown sampling strategy {strategy!r}; expected one of {STRATEGIES}")


def draw_sample(population: int, strategy: str, parameter, seed=None, rng: Optional[RandomVariate] = None) -> SampleSet:
    """Choose sampled ids out of 0..population-1.

    Raises:
        InvalidParameter, SampleSizeExceedsPopulation (before any draw)
    """
    _check_strategy(strategy, parameter, population)
    if rng is None:
        rng = RandomVariate(seed)

    if strategy == PROPORTIONAL:
        ids = np.flatnonzero(rng.bernoulli(float(parameter), population))
    else:
        ids = np.sort(rng.sample_without_replacement(np.arange(population), int(parameter)))

    return SampleSet(
        ids=tuple(int(i) for i in ids),
        strategy=strategy,
        parameter=parameter,
        seed=seed,
    )


def downsample(
    outbreak: Outbreak,
    strategy: str,
    parameter,
    seed=None,
    phylogeny: Optional[Phylogeny] = None,
    rng: Optional[RandomVariate] = None,
) -> Downsample:
    """Sample an outbreak and restrict its line list (and phylogeny) to the sample.

    Args:
        outbreak: tracked outbreak
        strategy: "proportional" or "fixed-count"
        parameter: inclusion probability, or sample size
        seed: seed for the sampling stream, ignored when rng is given
        phylogeny: optional full phylogeny to prune with the same sample
    Returns:
        Downsample(sample_set, line_list, phylogeny)
    """
    if outbreak.individuals is None:
        raise InvalidParameter("Downsampling needs an outbreak simulated with transmission tracking")
    sample = draw_sample(outbreak.total_infected, strategy, parameter, seed=seed, rng=rng)

    registry = outbreak.individuals.with_sampled(sample.ids)
    line_list = registry.to_frame()
    line_list = line_list[line_list["sampled"]].reset_index(drop=True)

    pruned = phylogeny.restrict(sample.ids) if phylogeny is not None else None
    logger.info(
        "Downsampled %d of %d individuals (%s, %s)",
        len(sample), outbreak.total_infected, strategy, parameter,
    )
    return Downsample(sample_set=sample, line_list=line_list, phylogeny=pruned)
