# src/outbreak_trees/timeseries/aggregate.py
"""
Turn event times into fixed-step time series for the inference program.

Bins are half-open, [n * step, (n + 1) * step), so an event on a boundary is
counted in the later bin. Event times are products of the simulation step
(e.g. 7 * 0.1 = 0.7000000000000001 or 0.6999999999999999), so the bin index
is taken with a small tolerance before flooring.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import pandas as pd

from ..errors import InvalidParameter
from ..simulate.epidemic import OutbreakState
from ..trees.phylogeny import Phylogeny

logger = logging.getLogger(__name__)

_BOUNDARY_EPS = 1e-9


@dataclass(frozen=True)
class TimeSeries:
    """Counts per bin in chronological order.

    ``time`` holds the left edge of each bin. ``prevalence`` is only set for
    series built from an OutbreakState.
    """

    time: np.ndarray
    counts: np.ndarray
    step: float
    prevalence: Optional[np.ndarray] = None

    def __len__(self) -> int:
        return int(self.counts.size)

    @property
    def total(self) -> int:
        return int(self.counts.sum())

    def pairs(self) -> List[tuple]:
        return list(zip(self.time.tolist(), self.counts.tolist()))

    def to_frame(self) -> pd.DataFrame:
        data = {"time": self.time, "incidence": self.counts}
        if self.prevalence is not None:
            data["prevalence"] = self.prevalence
        return pd.DataFrame(data)


def _check_step(step: float) -> float:
    step = float(step)
    if not step > 0.0:
        raise InvalidParameter(f"Time-series step must be > 0, got {step}")
    return step


def bin_index(times, step: float) -> np.ndarray:
    """Index n of the bin [n * step, (n + 1) * step) holding each time."""
    step = _check_step(step)
    t = np.asarray(times, dtype=float)
    return np.floor(t / step + _BOUNDARY_EPS).astype(np.int64)


def aggregate_events(times, step: float, end_time: Optional[float] = None) -> TimeSeries:
    """Count events per bin.

    Args:
        times: event times (>= 0); NaN entries are ignored
        step: bin width
        end_time: extend the series with empty bins up to the bin holding this time
    Returns:
        TimeSeries starting at t = 0
    """
    step = _check_step(step)
    t = np.asarray(times, dtype=float)
    t = t[~np.isnan(t)]
    if np.any(t < 0):
        raise InvalidParameter("Event times must be >= 0")

    idx = bin_index(t, step)
    n_bins = int(idx.max()) + 1 if idx.size else 0
    if end_time is not None:
        n_bins = max(n_bins, int(bin_index(end_time, step)) + 1)

    counts = np.bincount(idx, minlength=n_bins).astype(np.int64)
    return TimeSeries(time=np.arange(n_bins) * step, counts=counts, step=step)


def line_list_time_series(
    line_list: pd.DataFrame,
    step: float,
    column: str = "infection_time",
    end_time: Optional[float] = None,
) -> TimeSeries:
    """Incidence of one event column of a (possibly downsampled) line list."""
    if column not in line_list.columns:
        raise InvalidParameter(f"Line list has no column {column!r}")
    return aggregate_events(line_list[column].to_numpy(dtype=float), step, end_time=end_time)


def phylogeny_time_series(phylogeny: Phylogeny, step: float, end_time: Optional[float] = None) -> TimeSeries:
    """Number of phylogeny tips (sampling times) per bin."""
    return aggregate_events(phylogeny.tip_times(), step, end_time=end_time)


def outbreak_time_series(state: OutbreakState, step: float) -> TimeSeries:
    """Incidence and prevalence of a simulated outbreak at a coarser step.

    Incidence is the per-step record summed into bins; prevalence is the
    infected count at each bin's left boundary, read from the state.

    Raises:
        InvalidParameter: if step is not a positive multiple of the simulation dt
    """
    step = _check_step(step)
    ratio = step / state.dt
    m = int(round(ratio))
    if m < 1 or abs(ratio - m) > _BOUNDARY_EPS * max(1.0, ratio):
        raise InvalidParameter(f"Step {step} is not a multiple of the simulation dt {state.dt}")

    rows = np.arange(state.time.size)
    idx = rows // m
    n_bins = int(idx[-1]) + 1
    counts = np.bincount(idx, weights=state.incidence, minlength=n_bins).astype(np.int64)
    prevalence = state.infected[np.arange(n_bins) * m]
    logger.debug("Aggregated %d steps into %d bins of width %g", rows.size, n_bins, step)
    return TimeSeries(time=np.arange(n_bins) * step, counts=counts, step=step, prevalence=prevalence)
