import numpy as np
import pytest

from outbreak_trees.errors import InconsistentTransmissionData, InvalidParameter
from outbreak_trees.simulate.epidemic import IndividualRegistry, simulate_outbreak
from outbreak_trees.trees.transmission import TransmissionEdge, build_transmission_tree

from .factories import small_params


def test_hand_tree_edges(hand_registry):
    tree = build_transmission_tree(hand_registry)
    assert tree.index_cases == (0,)
    assert tree.edges == (
        TransmissionEdge(0, 1, 1.0),
        TransmissionEdge(1, 3, 2.0),
        TransmissionEdge(0, 2, 3.0),
        TransmissionEdge(2, 4, 4.0),
    )
    assert tree.children(0) == [(1.0, 1), (3.0, 2)]
    assert tree.children(3) == []
    assert tree.out_degree().tolist() == [2, 1, 1, 0, 0]
    assert tree.generations().tolist() == [0, 1, 1, 2, 2]


def test_single_incoming_edge_and_acyclic(outbreak):
    """Every non-index individual has exactly one infector; the order covers everyone."""
    tree = build_transmission_tree(outbreak)
    indeg = tree.in_degree()
    index = np.asarray(tree.index_cases)
    assert np.all(indeg[index] == 0)
    others = np.setdiff1d(np.arange(tree.n_individuals), index)
    assert np.all(indeg[others] == 1)
    assert len(tree.edges) == tree.n_individuals - len(index)

    # Parents are listed before children in the topological order
    position = np.empty(tree.n_individuals, dtype=int)
    position[tree.order] = np.arange(tree.n_individuals)
    for e in tree.edges:
        assert position[e.source] < position[e.target]


def test_edges_sorted_by_time(outbreak):
    tree = build_transmission_tree(outbreak)
    times = [e.time for e in tree.edges]
    assert times == sorted(times)


def test_frame_round_trip(outbreak):
    """A line list rebuilt from its DataFrame gives the same tree."""
    tree_a = build_transmission_tree(outbreak)
    tree_b = build_transmission_tree(outbreak.line_list())
    assert tree_a.edges == tree_b.edges
    assert tree_a.to_frame().shape == (len(tree_a.edges), 3)


def test_multiple_index_cases():
    res = simulate_outbreak(small_params(S=396, min_epi_size=0), seed=31)
    tree = build_transmission_tree(res)
    assert len(tree.index_cases) == 4
    assert len(tree.edges) == res.total_infected - 4


def test_dangling_infector():
    reg = IndividualRegistry([-1, 7], [0.0, 1.0], [2.0, 3.0])
    with pytest.raises(InconsistentTransmissionData):
        build_transmission_tree(reg)


def test_self_infection():
    reg = IndividualRegistry([-1, 1], [0.0, 1.0], [2.0, 3.0])
    with pytest.raises(InconsistentTransmissionData):
        build_transmission_tree(reg)


def test_cycle_detected():
    """1 and 2 name each other as infector; neither is reachable from the index case."""
    reg = IndividualRegistry([-1, 2, 1], [0.0, 1.0, 1.0], [2.0, 3.0, 3.0])
    with pytest.raises(InconsistentTransmissionData):
        build_transmission_tree(reg)


def test_infectee_before_infector():
    reg = IndividualRegistry([-1, 2, 0], [0.0, 0.5, 1.0], [2.0, 3.0, 3.0])
    with pytest.raises(InconsistentTransmissionData):
        build_transmission_tree(reg)


def test_transmission_after_removal():
    reg = IndividualRegistry([-1, 0], [0.0, 3.0], [2.0, 4.0])
    with pytest.raises(InconsistentTransmissionData):
        build_transmission_tree(reg)


def test_untracked_outbreak_rejected():
    res = simulate_outbreak(small_params(track_transmissions=False), seed=2)
    with pytest.raises(InvalidParameter):
        build_transmission_tree(res)
