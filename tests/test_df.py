"""Tests for the damped fixed-point estimator."""

import numpy as np
import pytest

from mnopop.estimation import run_df, run_em, relaxation_factor
from mnopop.observation import MismatchSpec, build_observation_model


def test_deterministic(toy_5x2):
    a = run_df(toy_5x2, n_iter=50, ldt=0, checkpoints=[10, 50], verbose=False)
    b = run_df(toy_5x2, n_iter=50, ldt=0, checkpoints=[10, 50], verbose=False)
    assert np.array_equal(a.estimate, b.estimate)
    assert np.array_equal(a.loglik, b.loglik)
    for k in (10, 50):
        assert np.array_equal(a.snapshots[k], b.snapshots[k])


def test_mass_conservation(toy_5x2):
    result = run_df(toy_5x2, n_iter=100, ldt=0, checkpoints=[1, 25, 100], relaxation=0.3,
                    schedule='harmonic', decay=0.1, verbose=False)
    for u in result.snapshots.values():
        assert u.sum() == pytest.approx(50.0, rel=1e-9)


def test_full_step_matches_em(toy_2x2):
    df = run_df(toy_2x2, n_iter=30, ldt=0, relaxation=1.0, verbose=False)
    em = run_em(toy_2x2, n_iter=30, ldt=0, verbose=False)
    assert np.allclose(df.estimate, em.estimate)


def test_converges_to_em_fixed_point(toy_2x2):
    result = run_df(toy_2x2, n_iter=1000, ldt=0, relaxation=0.5, verbose=False)
    assert np.allclose(result.estimate, [40 / 3, 20 / 3], atol=1e-3)
    assert result.monotone


def test_parameters_recorded(toy_2x2):
    result = run_df(toy_2x2, n_iter=5, ldt=0, relaxation=0.4, schedule='harmonic', decay=0.5,
                    verbose=False)
    assert result.kind == 'df'
    assert result.parameters['relaxation'] == 0.4
    assert result.parameters['schedule'] == 'harmonic'


def test_relaxation_schedule():
    assert relaxation_factor(1, 0.5, 'harmonic', 1.0) == 0.5
    assert relaxation_factor(3, 0.5, 'harmonic', 1.0) == pytest.approx(0.5 / 3)
    assert relaxation_factor(7, 0.5, 'constant', 1.0) == 0.5


def test_invalid_relaxation(toy_2x2):
    with pytest.raises(ValueError):
        run_df(toy_2x2, relaxation=0.0, verbose=False)
    with pytest.raises(ValueError):
        run_df(toy_2x2, relaxation=1.5, verbose=False)
    with pytest.raises(ValueError):
        run_df(toy_2x2, schedule='cosine', verbose=False)


def test_zero_quantization_identical_to_true(signal_links):
    counts = {1: 40, 2: 25}
    true = build_observation_model(signal_links, counts, verbose=False)
    q0 = build_observation_model(signal_links, counts, mismatch=MismatchSpec('quantization', 0),
                                 verbose=False)
    a = run_df(true, n_iter=50, ldt=0, verbose=False)
    b = run_df(q0, n_iter=50, ldt=0, verbose=False)
    assert np.array_equal(a.estimate, b.estimate)


def test_quantization_sensitivity_shrinks_with_step(signal_links):
    counts = {1: 40, 2: 25}
    reference = run_df(build_observation_model(signal_links, counts, verbose=False),
                       n_iter=100, ldt=0, verbose=False).estimate

    def deviation(q):
        model = build_observation_model(signal_links, counts, verbose=False,
                                        mismatch=MismatchSpec('quantization', q))
        estimate = run_df(model, n_iter=100, ldt=0, verbose=False).estimate
        return np.abs(estimate - reference).sum()

    assert deviation(1) == 0.0
    assert deviation(10) > 0.0


def test_sensitivity_vanishes_as_step_shrinks(fractional_signal_links):
    cells = [1, 2, 3, 4]
    rng = np.random.default_rng(5)
    u_true = rng.uniform(0.0, 50.0, size=1000)
    true = build_observation_model(fractional_signal_links, dict.fromkeys(cells, 1), verbose=False)
    counts = dict(zip(true.cell_ids, np.round(true.P @ u_true)))
    true = build_observation_model(fractional_signal_links, counts, verbose=False)
    reference = run_df(true, n_iter=30, ldt=0, verbose=False).estimate

    deviations = []
    for q in [1, 2, 3, 4, 5, 10]:
        model = build_observation_model(fractional_signal_links, counts, verbose=False,
                                        mismatch=MismatchSpec('quantization', q))
        estimate = run_df(model, n_iter=30, ldt=0, verbose=False).estimate
        deviations.append(np.abs(estimate - reference).sum())

    assert deviations[0] > 0.0
    assert np.all(np.diff(deviations) >= 0.0)
