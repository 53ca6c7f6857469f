"""Tests for the EM estimator."""

import numpy as np
import pandas as pd
import pytest

from mnopop.estimation import (
    run_em,
    run_df,
    em_step,
    log_likelihood,
    initial_estimate,
    informative_prior,
    uniform_prior,
    PriorSpec,
)
from mnopop.estimation.em import iterate, is_monotone
from mnopop.observation import build_observation_model, observation_model_from_matrix
from mnopop.utils import (
    DataInconsistencyError,
    NonConvergenceWarning,
    NonMonotoneLikelihoodWarning,
)


def test_end_to_end_fixed_point(toy_2x2):
    result = run_em(toy_2x2, prior=[1, 1], n_iter=400, ldt=0, verbose=False)
    # exact fit: P u = c with u >= 0
    assert np.allclose(result.estimate, [40 / 3, 20 / 3], atol=1e-3)
    assert np.allclose(toy_2x2.P @ result.estimate, [10, 10], atol=1e-3)
    assert result.n_iter == 400
    assert not result.converged


def test_stops_at_threshold(toy_2x2):
    result = run_em(toy_2x2, n_iter=5000, ldt=1e-12, verbose=False)
    assert result.converged
    assert result.n_iter < 5000


def test_mass_conservation_at_checkpoints(toy_5x2):
    result = run_em(toy_5x2, n_iter=200, ldt=0, checkpoints=[1, 10, 50, 200], verbose=False)
    for k, u in result.snapshots.items():
        assert u.sum() == pytest.approx(50.0, rel=1e-9)
    assert result.mass_error < 1e-9


def test_monotone_on_stochastic_model(stochastic_model):
    result = run_em(stochastic_model, n_iter=100, ldt=0, verbose=False)
    assert result.monotone
    assert np.all(np.diff(result.loglik) >= -1e-9)
    assert len(result.loglik) == 101


def test_zero_prior_is_absorbing(toy_2x2):
    result = run_em(toy_2x2, prior=[0, 1], n_iter=20, ldt=0, checkpoints=[0, 1, 5, 20], verbose=False)
    for u in result.snapshots.values():
        assert u[0] == 0.0
    assert result.estimate.sum() == pytest.approx(20.0)


def test_tile_without_positive_cell_is_zero():
    # tile 3 only reaches cell 3, which has no devices
    model = observation_model_from_matrix(
        [[0.5, 0.5, 0.0], [0.2, 0.8, 0.0], [0.0, 0.0, 1.0]], [12, 8, 0]
    )
    result = run_em(model, n_iter=50, ldt=0, checkpoints=[0, 1, 50], verbose=False)
    for u in result.snapshots.values():
        assert u[2] == 0.0


def test_data_inconsistency():
    model = observation_model_from_matrix([[1.0, 0.0], [1.0, 0.0]], [3, 5])
    with pytest.raises(DataInconsistencyError) as excinfo:
        run_em(model, n_iter=10, verbose=False)
    assert excinfo.value.cell_ids == [2]
    assert isinstance(excinfo.value, ValueError)


def test_starved_by_prior():
    model = observation_model_from_matrix([[1.0, 0.0], [0.0, 1.0]], [3, 5])
    with pytest.raises(DataInconsistencyError):
        run_em(model, prior=[1.0, 0.0], n_iter=10, verbose=False)


def test_early_stop_checkpoints_carry_final_estimate():
    model = observation_model_from_matrix([[1.0, 0.0], [0.0, 1.0]], [3, 7])
    result = run_em(model, n_iter=500, ldt=1e-9, checkpoints=[1, 100], verbose=False)
    assert result.converged
    assert result.checkpoints_reached == [1]
    assert np.array_equal(result.snapshots[100], result.estimate)
    assert np.allclose(result.estimate, [3, 7])


def test_snapshots_read_only(toy_2x2):
    result = run_em(toy_2x2, n_iter=3, ldt=0, checkpoints=[1, 3], verbose=False)
    with pytest.raises(ValueError):
        result.snapshots[1][0] = 1.0
    with pytest.raises(ValueError):
        result.estimate[0] = 1.0


def test_non_convergence_warning(toy_2x2):
    with pytest.warns(NonConvergenceWarning):
        result = run_em(toy_2x2, n_iter=2, ldt=1e-12, verbose=False)
    assert not result.converged


def test_estimate_stopping_rule(toy_2x2):
    result = run_em(toy_2x2, n_iter=5000, ldt=1e-10, stopping='estimate', verbose=False)
    assert result.converged
    assert np.allclose(result.estimate, [40 / 3, 20 / 3], atol=1e-6)


def test_invalid_arguments(toy_2x2):
    with pytest.raises(ValueError):
        run_em(toy_2x2, stopping='gradient', verbose=False)
    with pytest.raises(ValueError):
        run_em(toy_2x2, prior=[1.0, -1.0], verbose=False)
    with pytest.raises(ValueError):
        run_em(toy_2x2, prior=[1.0, 1.0, 1.0], verbose=False)


def test_step_and_likelihood(toy_2x2):
    u0 = initial_estimate(toy_2x2)
    assert u0.tolist() == [10.0, 10.0]
    u1 = em_step(toy_2x2.P, toy_2x2.counts, u0)
    # q = [9, 11]; u1 = u0 * P^T (c / q)
    expected = 10.0 * np.array([0.6 * 10 / 9 + 0.4 * 10 / 11, 0.3 * 10 / 9 + 0.7 * 10 / 11])
    assert np.allclose(u1, expected)
    assert log_likelihood(toy_2x2.P, toy_2x2.counts, u1) >= log_likelihood(toy_2x2.P, toy_2x2.counts, u0)


def test_informative_prior():
    prior = informative_prior([0.0, 3.0, 1.0], floor=0.0)
    assert prior.tolist() == [0.0, 0.75, 0.25]
    assert informative_prior([0.0, 0.0], floor=1.0).tolist() == [0.5, 0.5]
    spec = PriorSpec.from_array('landuse', [2, 1])
    assert spec.as_array().tolist() == [2.0, 1.0]
    assert uniform_prior(3).tolist() == [1.0, 1.0, 1.0]


def test_monotone_on_thresholded_model():
    rng = np.random.default_rng(3)
    n_tiles, n_cells = 30, 3
    links = pd.DataFrame({
        'tile': np.repeat(np.arange(1, n_tiles + 1), n_cells),
        'cell': np.tile(np.arange(1, n_cells + 1), n_tiles),
        'signal': rng.uniform(-110.0, -75.0, size=n_tiles * n_cells),
    })
    counts = dict(zip(range(1, n_cells + 1), rng.integers(20, 80, size=n_cells)))
    model = build_observation_model(links, counts, threshold=0.3, verbose=False)
    # dropped links leave sub-stochastic tile columns
    column_sums = np.asarray(model.P.sum(axis=0)).ravel()
    assert np.any((column_sums > 0) & (column_sums < 1 - 1e-9))

    for result in (run_em(model, n_iter=100, ldt=0, verbose=False),
                   run_df(model, n_iter=100, ldt=0, verbose=False)):
        assert result.monotone == is_monotone(result.loglik)
        assert result.monotone
        assert np.all(np.diff(result.loglik) >= -1e-9 * np.abs(result.loglik).max())


def test_decreasing_trace_warns(toy_2x2):
    # a step that jumps away from the start lowers the log-likelihood
    def step(u, t):
        return np.array([5.0, 15.0])

    with pytest.warns(NonMonotoneLikelihoodWarning):
        result = iterate(toy_2x2, step, 'em', n_iter=3, ldt=0, verbose=False)
    assert not result.monotone
    assert result.loglik[1] < result.loglik[0]
    assert not is_monotone([0.0, -1.0, -0.5])
