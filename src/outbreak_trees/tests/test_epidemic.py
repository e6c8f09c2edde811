import numpy as np
import pytest

from outbreak_trees.errors import InsufficientEpidemicSize, InvalidParameter
from outbreak_trees.simulate.epidemic import (
    Termination,
    simulate_outbreak,
)

from .factories import REFERENCE_SEED, reference_params, small_params


def test_reference_scenario_is_deterministic():
    """
    Seeded reference run: the recorded outcome (3865 infected after 4
    attempts, dying out at t=113.2), and a second run with the same seed
    reproduces the state exactly.
    """
    first = simulate_outbreak(reference_params(), seed=REFERENCE_SEED)
    second = simulate_outbreak(reference_params(), seed=REFERENCE_SEED)

    assert first.total_infected == 3865
    assert first.state.attempts == 4
    assert first.state.termination == Termination.EXTINCTION
    assert first.state.end_time == pytest.approx(113.2)
    assert len(first.individuals) == 3865
    assert first.total_infected == second.total_infected
    assert first.state.attempts == second.state.attempts
    assert np.array_equal(first.state.incidence, second.state.incidence)
    assert np.array_equal(first.individuals.infector, second.individuals.infector)
    assert np.array_equal(first.individuals.removal_time, second.individuals.removal_time, equal_nan=True)


def test_different_seeds_differ():
    a = simulate_outbreak(small_params(), seed=1)
    b = simulate_outbreak(small_params(), seed=2)
    assert not (
        a.total_infected == b.total_infected
        and np.array_equal(a.state.incidence, b.state.incidence)
    )


def test_incidence_sums_to_total(outbreak):
    state = outbreak.state
    assert int(state.incidence.sum()) == state.total_infected
    # Row 0 holds the index cases
    assert state.incidence[0] == outbreak.parameters.n_index


def test_compartments_conserve_population(outbreak):
    state = outbreak.state
    total = state.susceptible + state.infected + state.removed
    assert np.all(total == outbreak.parameters.N)
    assert np.all(np.diff(state.susceptible) <= 0)
    assert np.all(np.diff(state.removed) >= 0)
    assert state.susceptible[0] == outbreak.parameters.S


def test_registry_matches_counts(outbreak):
    reg = outbreak.individuals
    state = outbreak.state
    assert len(reg) == state.total_infected
    assert int(np.count_nonzero(~np.isnan(reg.removal_time))) == state.removed[-1]
    # Still-infected individuals at the end match the final prevalence
    assert int(np.count_nonzero(np.isnan(reg.removal_time))) == state.infected[-1]


def test_infectors_precede_infectees(outbreak):
    reg = outbreak.individuals
    non_index = np.flatnonzero(reg.infector >= 0)
    assert np.all(reg.infector[non_index] < non_index)
    assert np.all(reg.infection_time[non_index] > reg.infection_time[reg.infector[non_index]])
    # Transmission happens no later than the infector's removal
    rem = reg.removal_time[reg.infector[non_index]]
    removed = ~np.isnan(rem)
    assert np.all(reg.infection_time[non_index][removed] <= rem[removed])


def test_removal_after_infection(outbreak):
    reg = outbreak.individuals
    removed = ~np.isnan(reg.removal_time)
    assert np.all(reg.removal_time[removed] > reg.infection_time[removed])


def test_burnout_termination(outbreak):
    state = outbreak.state
    if state.termination in (Termination.EXTINCTION, Termination.SATURATION):
        assert state.infected[-1] == 0
    else:
        assert state.termination == Termination.MAX_STEPS


def test_saturation_when_no_susceptibles():
    """One index case and nobody left to infect: burns out by saturation."""
    params = small_params(N=1, S=0, min_epi_size=0)
    res = simulate_outbreak(params, seed=3)
    assert res.total_infected == 1
    assert res.state.termination == Termination.SATURATION
    assert res.individuals[0].infector is None


def test_max_steps_leaves_individuals_unremoved():
    """With a negligible recovery rate nobody recovers inside the step budget."""
    params = small_params(Tg=None, gamma=1e-9, total_dt=1.0, min_epi_size=0)
    res = simulate_outbreak(params, seed=11)
    assert res.state.termination == Termination.MAX_STEPS
    assert res.state.n_steps == 10
    assert res.state.end_time == pytest.approx(1.0)
    assert res.individuals[0].removal_time is None


def test_untracked_run_has_no_registry():
    res = simulate_outbreak(small_params(track_transmissions=False), seed=2024)
    assert res.individuals is None
    with pytest.raises(InvalidParameter):
        res.line_list()


def test_tracking_does_not_change_counts_when_no_transmission():
    """R0 = 0: only the index cases are ever infected, tracked or not."""
    for track in (True, False):
        res = simulate_outbreak(small_params(R0=0.0, min_epi_size=0, track_transmissions=track), seed=8)
        assert res.total_infected == 1
        assert res.state.termination == Termination.EXTINCTION


def test_retry_exhaustion_raises():
    """R0 = 0 can never reach 5 infections; every attempt is discarded."""
    params = small_params(R0=0.0, min_epi_size=5, max_attempts=4)
    with pytest.raises(InsufficientEpidemicSize) as info:
        simulate_outbreak(params, seed=1)
    assert info.value.attempts == 4
    assert info.value.state.termination == Termination.MAX_ATTEMPTS
    assert info.value.state.total_infected == 1


def test_retry_records_attempts():
    res = simulate_outbreak(small_params(min_epi_size=0), seed=5)
    assert res.state.attempts == 1


@pytest.mark.parametrize(
    "overrides",
    [
        dict(Tg=0.05),             # gamma * dt = 2
        dict(Tg=None, gamma=20.0),  # gamma * dt = 2
        dict(k=0.0),
        dict(k=-1.0),
        dict(R0=-0.5),
        dict(S=401),
        dict(S=-1),
        dict(S=400),               # nobody infected
        dict(N=0, S=0),
        dict(dt=0.0),
        dict(total_dt=0.0),
        dict(Tg=None, gamma=None),
        dict(Tg=2.0, gamma=0.25),  # inconsistent
        dict(min_epi_size=-1),
        dict(max_attempts=0),
    ],
)
def test_invalid_parameters(overrides):
    with pytest.raises(InvalidParameter):
        simulate_outbreak(small_params(**overrides), seed=0)


def test_step_budget():
    assert small_params(total_dt=1500.0, dt=0.1).n_steps == 15000
    assert small_params(total_dt=1.05, dt=0.1).n_steps == 11


def test_gamma_and_tg_consistent_allowed():
    params = small_params(Tg=4.0, gamma=0.25)
    params.validate()
    assert params.recovery_rate == pytest.approx(0.25)
