import pytest

from outbreak_trees.simulate.epidemic import IndividualRegistry, simulate_outbreak

from .factories import small_params


@pytest.fixture(scope="module")
def outbreak():
    return simulate_outbreak(small_params(), seed=2024)


@pytest.fixture
def hand_registry():
    """
    Five individuals with a known history:

    0 (index) infected at 0, infects 1 at t=1 and 2 at t=3, removed at 5
    1 infects 3 at t=2, removed at 4
    2 infects 4 at t=4, removed at 6
    3 removed at 3, 4 removed at 7
    """
    return IndividualRegistry(
        infector=[-1, 0, 0, 1, 2],
        infection_time=[0.0, 1.0, 3.0, 2.0, 4.0],
        removal_time=[5.0, 4.0, 6.0, 3.0, 7.0],
    )
