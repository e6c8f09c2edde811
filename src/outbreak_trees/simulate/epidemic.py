# src/outbreak_trees/simulate/epidemic.py
"""
Discrete-time stochastic SIR simulation with negative binomial offspring.

Purpose: advance (S, I, R) in steps of ``dt`` and, when transmission tracking
is on, record who infected whom and when every individual was removed.

Per step, with I infected and S susceptible out of N:

    recoveries ~ Binomial(I, gamma * dt)
    infections ~ NegBin(mean = recoveries * R0 * S / N, size = recoveries * k)

capped at S. New infections are attributed to infectors drawn uniformly from
the individuals infected at the start of the step.

Functions:
- simulate_outbreak()

  - Input: EpidemicParameters, a seed or a RandomVariate.
  - Output: Outbreak (OutbreakState + optional IndividualRegistry).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, Iterator, List, NamedTuple, Optional

import numpy as np
import pandas as pd

from ..errors import InsufficientEpidemicSize, InvalidParameter
from .random_variate import RandomVariate

logger = logging.getLogger(__name__)

# Relative slack when turning total_dt / dt into a step count
_STEP_EPS = 1e-9


class Termination(str, Enum):
    EXTINCTION = "extinction"
    SATURATION = "saturation"
    MAX_STEPS = "max_steps"
    MAX_ATTEMPTS = "max_attempts"


@dataclass(frozen=True)
class EpidemicParameters:
    """Inputs of one simulation call.

    Exactly one of ``Tg`` (mean generation time) and ``gamma`` (recovery rate)
    is needed; if both are given they must agree. ``total_dt`` is the total
    simulated time, so the step budget is ``ceil(total_dt / dt)``.
    """

    R0: float
    k: float
    N: int
    S: int
    dt: float
    total_dt: float
    Tg: Optional[float] = None
    gamma: Optional[float] = None
    min_epi_size: int = 0
    max_attempts: int = 1
    track_transmissions: bool = True

    @property
    def recovery_rate(self) -> float:
        if self.gamma is not None:
            return float(self.gamma)
        return 1.0 / float(self.Tg)

    @property
    def n_index(self) -> int:
        return int(self.N) - int(self.S)

    @property
    def n_steps(self) -> int:
        return int(math.ceil(self.total_dt / self.dt - _STEP_EPS))

    def validate(self) -> None:
        """Raise InvalidParameter for anything the step loop cannot handle."""
        if self.R0 < 0:
            raise InvalidParameter(f"R0 must be >= 0, got {self.R0}")
        if self.k <= 0:
            raise InvalidParameter(f"Dispersion k must be > 0, got {self.k}")
        if self.N < 1:
            raise InvalidParameter(f"Population size N must be >= 1, got {self.N}")
        if self.S < 0 or self.S > self.N:
            raise InvalidParameter(f"Initial susceptibles must be in [0, N], got S={self.S}, N={self.N}")
        if self.n_index < 1:
            raise InvalidParameter("N - S must leave at least one initially infected individual")
        if self.Tg is None and self.gamma is None:
            raise InvalidParameter("Either Tg or gamma must be provided")
        if self.Tg is not None and self.Tg <= 0:
            raise InvalidParameter(f"Mean generation time Tg must be > 0, got {self.Tg}")
        if self.gamma is not None and self.gamma <= 0:
            raise InvalidParameter(f"Recovery rate gamma must be > 0, got {self.gamma}")
        if self.Tg is not None and self.gamma is not None:
            if not math.isclose(self.gamma, 1.0 / self.Tg, rel_tol=1e-9):
                raise InvalidParameter("gamma and Tg are both given but gamma != 1 / Tg")
        if self.dt <= 0:
            raise InvalidParameter(f"Step size dt must be > 0, got {self.dt}")
        if self.total_dt <= 0:
            raise InvalidParameter(f"Total simulated time must be > 0, got {self.total_dt}")
        p = self.recovery_rate * self.dt
        if not 0.0 <= p <= 1.0:
            raise InvalidParameter(f"gamma * dt must be in [0, 1], got {p}")
        if self.min_epi_size < 0:
            raise InvalidParameter("min_epi_size must be >= 0")
        if self.max_attempts < 1:
            raise InvalidParameter("max_attempts must be >= 1")


class Individual(NamedTuple):
    id: int
    infector: Optional[int]
    infection_time: float
    removal_time: Optional[float]
    sampled: bool = False


class IndividualRegistry:
    """Column store of everyone infected during one outbreak.

    Row ``i`` is individual ``i``. ``infector`` is -1 for index cases and
    ``removal_time`` is NaN for individuals still infected when the run ended.
    """

    def __init__(self, infector, infection_time, removal_time, sampled=None, end_time=None):
        self.infector = np.asarray(infector, dtype=np.int64)
        self.infection_time = np.asarray(infection_time, dtype=float)
        self.removal_time = np.asarray(removal_time, dtype=float)
        n = self.infector.size
        if self.infection_time.size != n or self.removal_time.size != n:
            raise InvalidParameter("Registry columns must have equal length")
        if sampled is None:
            sampled = np.zeros(n, dtype=bool)
        self.sampled = np.asarray(sampled, dtype=bool)
        self.end_time = end_time
        for arr in (self.infector, self.infection_time, self.removal_time, self.sampled):
            arr.setflags(write=False)

    @classmethod
    def from_records(cls, records: Iterable, end_time=None) -> "IndividualRegistry":
        """Build from Individual-like tuples; ids must be 0..n-1 in some order."""
        rows = sorted(records, key=lambda r: r[0])
        for expected, row in enumerate(rows):
            if row[0] != expected:
                raise InvalidParameter(f"Individual ids must be 0..n-1, missing {expected}")
        infector = [-1 if r[1] is None else r[1] for r in rows]
        removal = [np.nan if r[3] is None else r[3] for r in rows]
        sampled = [bool(r[4]) if len(r) > 4 else False for r in rows]
        return cls(infector, [r[2] for r in rows], removal, sampled, end_time=end_time)

    @classmethod
    def from_frame(cls, df: pd.DataFrame, end_time=None) -> "IndividualRegistry":
        df = df.sort_values("id")
        if not np.array_equal(df["id"].to_numpy(), np.arange(len(df))):
            raise InvalidParameter("Line list ids must be 0..n-1")
        sampled = df["sampled"].to_numpy() if "sampled" in df.columns else None
        return cls(
            df["infector"].fillna(-1).to_numpy(),
            df["infection_time"].to_numpy(),
            df["removal_time"].to_numpy(),
            sampled,
            end_time=end_time,
        )

    def __len__(self) -> int:
        return int(self.infector.size)

    def __getitem__(self, i: int) -> Individual:
        inf = int(self.infector[i])
        rem = float(self.removal_time[i])
        return Individual(
            id=int(i),
            infector=None if inf < 0 else inf,
            infection_time=float(self.infection_time[i]),
            removal_time=None if np.isnan(rem) else rem,
            sampled=bool(self.sampled[i]),
        )

    def __iter__(self) -> Iterator[Individual]:
        for i in range(len(self)):
            yield self[i]

    @property
    def ids(self) -> np.ndarray:
        return np.arange(len(self), dtype=np.int64)

    @property
    def index_cases(self) -> np.ndarray:
        return np.flatnonzero(self.infector < 0)

    def observed_removal_times(self) -> np.ndarray:
        """Removal times, with end_time standing in for individuals never removed."""
        out = self.removal_time.copy()
        missing = np.isnan(out)
        if missing.any():
            if self.end_time is None:
                raise InvalidParameter("Registry has unremoved individuals but no end_time")
            out[missing] = self.end_time
        return out

    def with_sampled(self, ids) -> "IndividualRegistry":
        mask = np.zeros(len(self), dtype=bool)
        mask[np.asarray(list(ids), dtype=np.int64)] = True
        return IndividualRegistry(
            self.infector, self.infection_time, self.removal_time, mask, end_time=self.end_time
        )

    def to_frame(self) -> pd.DataFrame:
        """Line list, one row per individual."""
        return pd.DataFrame(
            {
                "id": self.ids,
                "infector": self.infector,
                "infection_time": self.infection_time,
                "removal_time": self.removal_time,
                "sampled": self.sampled,
            }
        )


@dataclass(frozen=True)
class OutbreakState:
    """Per-step record of one accepted (or last discarded) realisation.

    Row 0 is the initial condition at t = 0; its incidence is the number of
    index cases, so ``incidence.sum() == total_infected``.
    """

    time: np.ndarray
    susceptible: np.ndarray
    infected: np.ndarray
    removed: np.ndarray
    incidence: np.ndarray
    total_infected: int
    termination: Termination
    dt: float
    attempts: int = 1

    @property
    def prevalence(self) -> np.ndarray:
        return self.infected

    @property
    def end_time(self) -> float:
        return float(self.time[-1])

    @property
    def n_steps(self) -> int:
        return int(self.time.size - 1)

    def steps(self) -> List[tuple]:
        """(incidence, prevalence) pairs in chronological order."""
        return list(zip(self.incidence.tolist(), self.infected.tolist()))

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "time": self.time,
                "S": self.susceptible,
                "I": self.infected,
                "R": self.removed,
                "incidence": self.incidence,
            }
        )


@dataclass(frozen=True)
class Outbreak:
    state: OutbreakState
    individuals: Optional[IndividualRegistry]
    parameters: EpidemicParameters

    @property
    def total_infected(self) -> int:
        return self.state.total_infected

    def line_list(self) -> pd.DataFrame:
        if self.individuals is None:
            raise InvalidParameter("Outbreak was simulated without transmission tracking")
        return self.individuals.to_frame()


def _run_once(params: EpidemicParameters, rv: RandomVariate):
    """Simulate a single realisation, no retry."""
    N = int(params.N)
    S = int(params.S)
    I = params.n_index
    R = 0
    p_rec = params.recovery_rate * params.dt
    track = params.track_transmissions
    n_steps = params.n_steps

    # Step 0 is the initial condition
    time = [0.0]
    s_hist, i_hist, r_hist, inc_hist = [S], [I], [R], [I]
    total = I

    infector: List[int] = []
    infection_time: List[float] = []
    removal_time: List[float] = []
    # Live individuals; removal is swap-with-last then pop
    live: List[int] = []
    if track:
        for _ in range(I):
            live.append(len(infector))
            infector.append(-1)
            infection_time.append(0.0)
            removal_time.append(np.nan)

    termination = Termination.MAX_STEPS
    for t in range(1, n_steps + 1):
        now = t * params.dt
        recoveries = rv.binomial(I, p_rec)
        R_t = params.R0 * S / N
        infections = rv.negative_binomial(recoveries * R_t, recoveries * params.k)
        infections = min(infections, S)

        if track:
            if infections > 0:
                picks = rv.choice_index(len(live), size=infections)
                sources = [live[j] for j in picks]
            else:
                sources = []
            if recoveries > 0:
                for j in rv.shrinking_choice_indices(len(live), recoveries):
                    removal_time[live[j]] = now
                    live[j] = live[-1]
                    live.pop()
            for src in sources:
                live.append(len(infector))
                infector.append(src)
                infection_time.append(now)
                removal_time.append(np.nan)

        S -= infections
        I += infections - recoveries
        R += recoveries
        total += infections

        time.append(now)
        s_hist.append(S)
        i_hist.append(I)
        r_hist.append(R)
        inc_hist.append(infections)

        if I == 0:
            termination = Termination.SATURATION if S == 0 else Termination.EXTINCTION
            break

    state = OutbreakState(
        time=np.asarray(time, dtype=float),
        susceptible=np.asarray(s_hist, dtype=np.int64),
        infected=np.asarray(i_hist, dtype=np.int64),
        removed=np.asarray(r_hist, dtype=np.int64),
        incidence=np.asarray(inc_hist, dtype=np.int64),
        total_infected=int(total),
        termination=termination,
        dt=float(params.dt),
    )
    registry = None
    if track:
        registry = IndividualRegistry(infector, infection_time, removal_time, end_time=state.end_time)
    return state, registry


def simulate_outbreak(params: EpidemicParameters, seed=None, rng: Optional[RandomVariate] = None) -> Outbreak:
    """Simulate until an outbreak of adequate size is produced.

    Args:
        params: simulation parameters (validated before any draw)
        seed: seed for a fresh RandomVariate, ignored when rng is given
        rng: RandomVariate to draw from; retries continue the same stream
    Returns:
        Outbreak with the accepted state and, if tracking, the registry
    Raises:
        InvalidParameter, InsufficientEpidemicSize
    """
    params.validate()
    if rng is None:
        rng = RandomVariate(seed)

    state = None
    for attempt in range(1, params.max_attempts + 1):
        state, registry = _run_once(params, rng)
        burned_out = state.termination != Termination.MAX_STEPS
        if burned_out and state.total_infected < params.min_epi_size:
            logger.debug(
                "Attempt %d burned out at t=%.3f with %d infected (< %d); retrying",
                attempt, state.end_time, state.total_infected, params.min_epi_size,
            )
            continue

        state = replace(state, attempts=attempt)
        logger.info(
            "Outbreak accepted after %d attempt(s): %d infected, termination=%s, t_end=%.3f",
            attempt, state.total_infected, state.termination.value, state.end_time,
        )
        return Outbreak(state=state, individuals=registry, parameters=params)

    failed = replace(state, termination=Termination.MAX_ATTEMPTS, attempts=params.max_attempts)
    raise InsufficientEpidemicSize(
        f"Failed to produce an epidemic of adequate size (>= {params.min_epi_size}) "
        f"in {params.max_attempts} attempts",
        state=failed,
        attempts=params.max_attempts,
    )
