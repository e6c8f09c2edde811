import numpy as np
import pandas as pd
import pytest

from outbreak_trees.errors import InvalidParameter
from outbreak_trees.timeseries.aggregate import (
    aggregate_events,
    bin_index,
    line_list_time_series,
    outbreak_time_series,
    phylogeny_time_series,
)
from outbreak_trees.trees.phylogeny import build_phylogeny


def test_half_open_bins():
    """Events on a boundary fall into the later bin."""
    ts = aggregate_events([0.0, 0.5, 1.0, 1.0, 2.7], step=1.0)
    assert ts.counts.tolist() == [2, 2, 1]
    assert ts.time.tolist() == [0.0, 1.0, 2.0]
    assert ts.pairs() == [(0.0, 2), (1.0, 2), (2.0, 1)]


def test_floating_point_boundaries():
    """Products of dt land in the bin they name."""
    times = [t * 0.1 for t in range(20)]
    assert bin_index(times, 0.1).tolist() == list(range(20))
    assert bin_index([0.7, 0.3, 0.6], 0.1).tolist() == [7, 3, 6]


def test_end_time_extends_series():
    ts = aggregate_events([0.2], step=1.0, end_time=3.5)
    assert ts.counts.tolist() == [1, 0, 0, 0]


def test_nan_ignored_and_empty():
    ts = aggregate_events([np.nan, 0.1], step=1.0)
    assert ts.total == 1
    assert len(aggregate_events([], step=1.0)) == 0


def test_invalid_inputs():
    with pytest.raises(InvalidParameter):
        aggregate_events([1.0], step=0.0)
    with pytest.raises(InvalidParameter):
        aggregate_events([-1.0], step=1.0)


def test_outbreak_series_sums_to_total(outbreak):
    state = outbreak.state
    for step in (0.1, 1.0, 2.5):
        ts = outbreak_time_series(state, step)
        assert ts.total == state.total_infected


def test_outbreak_series_prevalence_from_state(outbreak):
    state = outbreak.state
    ts = outbreak_time_series(state, 1.0)
    # 1.0 / 0.1 = 10 simulation steps per bin
    assert ts.prevalence.tolist() == state.infected[np.arange(len(ts)) * 10].tolist()
    assert ts.prevalence[0] == outbreak.parameters.n_index
    assert list(ts.to_frame().columns) == ["time", "incidence", "prevalence"]


def test_outbreak_series_matches_line_list(outbreak):
    """Incidence from the per-step record equals binning the infection times."""
    state = outbreak.state
    a = outbreak_time_series(state, 1.0)
    b = line_list_time_series(outbreak.line_list(), 1.0, end_time=state.end_time)
    assert a.counts.tolist() == b.counts.tolist()


def test_step_must_be_multiple_of_dt(outbreak):
    with pytest.raises(InvalidParameter):
        outbreak_time_series(outbreak.state, 0.25)
    with pytest.raises(InvalidParameter):
        outbreak_time_series(outbreak.state, 0.05)


def test_line_list_removal_column():
    df = pd.DataFrame({"id": [0, 1, 2], "removal_time": [0.5, np.nan, 1.5]})
    ts = line_list_time_series(df, 1.0, column="removal_time")
    assert ts.counts.tolist() == [1, 1]
    with pytest.raises(InvalidParameter):
        line_list_time_series(df, 1.0, column="report_time")


def test_phylogeny_tip_series(hand_registry):
    phylo = build_phylogeny(hand_registry)
    ts = phylogeny_time_series(phylo, 2.0)
    # Tips at 3, 4, 5, 6, 7
    assert ts.counts.tolist() == [0, 1, 2, 2]
    assert ts.total == phylo.n_tips
