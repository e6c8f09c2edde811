import csv

import pytest

from outbreak_trees.errors import InvalidParameter
from outbreak_trees.simulate.batch_processing import SUMMARY_HEADER, generate_batch, simulate_ensemble

from .factories import small_params


def test_ensemble_independent_of_workers():
    """Spawned streams make the ensemble identical for serial and threaded runs."""
    params = small_params(min_epi_size=0)
    serial = simulate_ensemble(params, 6, seed=123, workers=1)
    threaded = simulate_ensemble(params, 6, seed=123, workers=3)
    assert [o.total_infected for o in serial] == [o.total_infected for o in threaded]
    assert [o.state.n_steps for o in serial] == [o.state.n_steps for o in threaded]


def test_ensemble_members_differ():
    outbreaks = simulate_ensemble(small_params(), 5, seed=9)
    sizes = [o.total_infected for o in outbreaks]
    assert all(s >= 30 for s in sizes)
    assert len({tuple(o.state.incidence.tolist()) for o in outbreaks}) > 1


def test_generate_batch_csv(tmp_path):
    out_csv = tmp_path / "summary.csv"
    outbreaks, csv_path = generate_batch(small_params(), 4, seed=5, out_path=str(out_csv), use_tempfile=False)

    assert csv_path == out_csv
    rows = list(csv.DictReader(csv_path.open()))
    assert len(rows) == 4
    assert list(rows[0].keys()) == SUMMARY_HEADER
    for row, outbreak in zip(rows, outbreaks):
        assert int(row["total_infected"]) == outbreak.total_infected
        assert row["termination"] == outbreak.state.termination.value
        assert int(row["peak_prevalence"]) == int(outbreak.state.infected.max())


def test_bad_ensemble_arguments():
    with pytest.raises(InvalidParameter):
        simulate_ensemble(small_params(), 0)
    with pytest.raises(InvalidParameter):
        simulate_ensemble(small_params(), 2, workers=0)
