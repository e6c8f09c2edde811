# src/outbreak_trees/simulate/batch_processing.py
# Run many independent outbreak realisations and summarise them to a CSV.
#
# Functions:
# - simulate_ensemble()
#   - Input: EpidemicParameters, number of realisations, master seed, worker count
#   - Output: list of Outbreak, ordered by realisation index
# - generate_batch()
#   - Same inputs plus output path; also writes one summary row per outbreak

import csv
import logging
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import numpy as np

from .epidemic import EpidemicParameters, simulate_outbreak
from .random_variate import RandomVariate
from ..errors import InvalidParameter

logger = logging.getLogger(__name__)

SUMMARY_HEADER = [
    "sim_id",
    "total_infected",
    "termination",
    "attempts",
    "end_time",
    "peak_prevalence",
    "peak_time",
]


def default_csv_path(use_tempfile=True):
    """Define the filepath of csv"""
    if use_tempfile:
        tf = tempfile.NamedTemporaryFile(prefix="simulated_outbreaks_", suffix=".csv")
        p = Path(tf.name)
        tf.close()
        return p
    else:
        return Path("simulated_outbreaks.csv")


def simulate_ensemble(params: EpidemicParameters, n, seed=None, workers=1):
    """Simulate n independent outbreaks.

    Each realisation owns an RNG stream spawned from the master seed, so the
    result does not depend on the number of workers.
    """
    if n < 1:
        raise InvalidParameter("Number of realisations must be >= 1")
    if workers < 1:
        raise InvalidParameter("workers must be >= 1")
    params.validate()
    streams = RandomVariate.spawn(seed, n)

    if workers == 1:
        return [simulate_outbreak(params, rng=rv) for rv in streams]

    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(simulate_outbreak, params, None, rv) for rv in streams]
        return [f.result() for f in futures]


def summary_row(sim_id, outbreak):
    state = outbreak.state
    peak = int(np.argmax(state.infected))
    return [
        sim_id,
        state.total_infected,
        state.termination.value,
        state.attempts,
        state.end_time,
        int(state.infected[peak]),
        float(state.time[peak]),
    ]


def generate_batch(
    params: EpidemicParameters,
    n,
    seed=None,
    workers=1,
    out_path=None,
    use_tempfile=True,
):
    """Simulate n outbreaks and write one summary row per outbreak."""
    outbreaks = simulate_ensemble(params, n, seed=seed, workers=workers)

    # Do file pathing
    if out_path is None:
        csv_path = default_csv_path(use_tempfile=use_tempfile)
    else:
        csv_path = Path(out_path)
    csv_path.parent.mkdir(parents=True, exist_ok=True)

    with csv_path.open("w", newline="") as fh:
        writer = csv.writer(fh)
        writer.writerow(SUMMARY_HEADER)
        for sim_id, outbreak in enumerate(outbreaks, start=1):
            writer.writerow(summary_row(sim_id, outbreak))

    logger.info("Wrote %d outbreak summaries to %s", len(outbreaks), csv_path)
    return outbreaks, csv_path
