# src/outbreak_trees/simulate/random_variate.py
"""
Random draws used by the simulator and the downsampler.

One ``RandomVariate`` wraps one numpy ``Generator``; it is passed explicitly
to every function that draws, so a seed fully determines an outbreak.

Negative binomial draws use the (mean, dispersion) parameterisation common in
epidemiology: for mean ``m`` and size ``k``,

    p = k / (k + m),   E[X] = m,   Var[X] = m * (1 + m / k)

numpy itself expects (n, p) with n = k.
"""

from __future__ import annotations

from typing import List, Optional

import numpy as np
from numpy.random import Generator, SeedSequence, default_rng

from ..errors import InvalidParameter


class RandomVariate:
    """Seeded source of binomial, negative binomial and uniform draws."""

    def __init__(self, seed=None, generator: Optional[Generator] = None):
        if generator is not None:
            self.rng = generator
        else:
            self.rng = default_rng(seed)

    @classmethod
    def from_seed_sequence(cls, seq: SeedSequence) -> "RandomVariate":
        return cls(generator=np.random.Generator(np.random.PCG64(seq)))

    @staticmethod
    def spawn(seed, n: int) -> List["RandomVariate"]:
        """Create n statistically independent streams from one master seed.

        Args:
            seed: master seed (int or None for OS entropy)
            n: number of child streams
        Returns:
            list of RandomVariate, one per stream, in a fixed order
        """
        if n < 0:
            raise InvalidParameter("Number of streams must be >= 0")
        children = SeedSequence(seed).spawn(n)
        return [RandomVariate.from_seed_sequence(c) for c in children]

    def binomial(self, n: int, p: float) -> int:
        """Number of successes out of n trials with probability p."""
        if not 0.0 <= p <= 1.0:
            raise InvalidParameter(f"Binomial probability must be in [0, 1], got {p}")
        if n < 0:
            raise InvalidParameter(f"Binomial trial count must be >= 0, got {n}")
        if n == 0:
            return 0
        return int(self.rng.binomial(n, p))

    def negative_binomial(self, mean: float, size: float) -> int:
        """Draw from NB(mean, size).

        A zero (or negative) mean or size is the degenerate distribution at 0,
        which is what the simulator needs on steps with no recoveries.
        """
        if mean <= 0.0 or size <= 0.0:
            return 0
        p = size / (size + mean)
        return int(self.rng.negative_binomial(size, p))

    def negative_binomial_array(self, mean: float, size: float, count: int) -> np.ndarray:
        """Vectorised version of negative_binomial, used for moment checks."""
        if mean <= 0.0 or size <= 0.0:
            return np.zeros(count, dtype=np.int64)
        p = size / (size + mean)
        return self.rng.negative_binomial(size, p, size=count)

    def choice_index(self, n: int, size: Optional[int] = None):
        """Uniform index(es) in [0, n), with replacement."""
        if n <= 0:
            raise InvalidParameter("Cannot choose from an empty set")
        return self.rng.integers(0, n, size=size)

    def shrinking_choice_indices(self, n: int, count: int) -> np.ndarray:
        """Index j in [0, n - j) for j = 0..count-1, for removals from a shrinking set."""
        if count > n:
            raise InvalidParameter(f"Cannot remove {count} items from a set of {n}")
        return self.rng.integers(0, n - np.arange(count))

    def sample_without_replacement(self, population, k: int) -> np.ndarray:
        population = np.asarray(population)
        if k > population.size:
            raise InvalidParameter(
                f"Cannot draw {k} items without replacement from {population.size}"
            )
        return self.rng.choice(population, size=k, replace=False)

    def bernoulli(self, p: float, size: int) -> np.ndarray:
        """Boolean mask of independent inclusions with probability p."""
        if not 0.0 <= p <= 1.0:
            raise InvalidParameter(f"Inclusion probability must be in [0, 1], got {p}")
        return self.rng.random(size) < p
