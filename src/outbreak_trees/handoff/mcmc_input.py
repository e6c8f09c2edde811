# src/outbreak_trees/handoff/mcmc_input.py
"""
Input files for the external MCMC / particle-filter inference program.

This module only checks that values are well formed and writes them out;
priors, proposals and likelihood modes are interpreted by the inference
program, not here.

Files written by write_handoff():
- parameters.csv   one row per estimated parameter
- options.csv      run options as option,value rows
- time_series.csv  incidence (and prevalence) per bin, epidemiological modes
- phylogeny.nwk    Newick tree(s), genetic modes
"""

from __future__ import annotations

import csv
import logging
import math
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

import pandas as pd

from ..errors import InvalidParameter
from ..timeseries.aggregate import TimeSeries
from ..trees.phylogeny import Phylogeny

logger = logging.getLogger(__name__)

TRANSFORMS = ("none", "inverse")
PRIOR_FAMILIES = ("uniform", "normal", "lognormal", "gamma", "exponential", "beta")
LIKELIHOOD_MODES = ("epi+gen", "epi", "gen")


@dataclass(frozen=True)
class ParameterSpec:
    name: str
    initial: float
    prior: str
    prior_params: Tuple[float, ...]
    proposal_width: float
    lower: float = -math.inf
    upper: float = math.inf
    transform: str = "none"

    def __post_init__(self):
        if not self.name:
            raise InvalidParameter("Parameter name must not be empty")
        if self.transform not in TRANSFORMS:
            raise InvalidParameter(f"{self.name}: transform must be one of {TRANSFORMS}, got {self.transform!r}")
        if self.prior not in PRIOR_FAMILIES:
            raise InvalidParameter(f"{self.name}: unknown prior family {self.prior!r}")
        if self.proposal_width <= 0:
            raise InvalidParameter(f"{self.name}: proposal width must be > 0")
        if self.lower >= self.upper:
            raise InvalidParameter(f"{self.name}: lower bound must be below upper bound")
        if not self.lower <= self.initial <= self.upper:
            raise InvalidParameter(f"{self.name}: initial value {self.initial} outside [{self.lower}, {self.upper}]")
        if self.transform == "inverse" and self.initial == 0:
            raise InvalidParameter(f"{self.name}: inverse transform needs a non-zero initial value")


@dataclass(frozen=True)
class RunOptions:
    particles: int = 1000
    iterations: int = 10000
    log_every: int = 100
    resample_every: int = 1
    mode: str = "epi+gen"
    ess_threshold: float = 0.5
    trace_path: str = "trace.csv"
    log_path: str = "mcmc.log"

    def __post_init__(self):
        for name in ("particles", "iterations", "log_every", "resample_every"):
            if getattr(self, name) < 1:
                raise InvalidParameter(f"{name} must be >= 1")
        if self.mode not in LIKELIHOOD_MODES:
            raise InvalidParameter(f"Likelihood mode must be one of {LIKELIHOOD_MODES}, got {self.mode!r}")
        if not 0.0 < self.ess_threshold <= 1.0:
            raise InvalidParameter("Resampling efficiency threshold must be in (0, 1]")

    @property
    def uses_epi(self) -> bool:
        return self.mode in ("epi+gen", "epi")

    @property
    def uses_gen(self) -> bool:
        return self.mode in ("epi+gen", "gen")


def parameters_frame(specs: Iterable[ParameterSpec]) -> pd.DataFrame:
    rows = []
    for s in specs:
        rows.append(
            {
                "name": s.name,
                "initial": s.initial,
                "transform": s.transform,
                "prior": s.prior,
                "prior_params": " ".join(repr(float(p)) for p in s.prior_params),
                "proposal_width": s.proposal_width,
                "lower": s.lower,
                "upper": s.upper,
            }
        )
    df = pd.DataFrame(rows, columns=["name", "initial", "transform", "prior", "prior_params", "proposal_width", "lower", "upper"])
    if df["name"].duplicated().any():
        raise InvalidParameter("Parameter names must be unique")
    return df


def write_parameter_file(specs: Iterable[ParameterSpec], path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    parameters_frame(specs).to_csv(path, index=False)
    return path


def write_run_options(options: RunOptions, path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="") as fh:
        writer = csv.writer(fh)
        writer.writerow(["option", "value"])
        for key, value in asdict(options).items():
            writer.writerow([key, value])
    return path


def write_time_series(ts: TimeSeries, path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    ts.to_frame().to_csv(path, index=False)
    return path


def write_phylogeny(phylogeny: Phylogeny, path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(phylogeny.to_newick() + "\n")
    return path


def write_handoff(
    out_dir,
    specs: Iterable[ParameterSpec],
    options: RunOptions,
    time_series: Optional[TimeSeries] = None,
    phylogeny: Optional[Phylogeny] = None,
) -> Dict[str, Path]:
    """Write everything the inference program needs for one run.

    The likelihood mode decides which data files are required.
    """
    if options.uses_epi and time_series is None:
        raise InvalidParameter(f"Mode {options.mode!r} needs a time series")
    if options.uses_gen and phylogeny is None:
        raise InvalidParameter(f"Mode {options.mode!r} needs a phylogeny")

    out = Path(out_dir)
    paths = {
        "parameters": write_parameter_file(list(specs), out / "parameters.csv"),
        "options": write_run_options(options, out / "options.csv"),
    }
    if options.uses_epi:
        paths["time_series"] = write_time_series(time_series, out / "time_series.csv")
    if options.uses_gen:
        paths["phylogeny"] = write_phylogeny(phylogeny, out / "phylogeny.nwk")
    logger.info("Inference inputs written to %s (%s)", out, ", ".join(sorted(paths)))
    return paths
