"""Tests for job generation, the sweep runner and results I/O."""

import numpy as np
import pandas as pd
import pytest

from mnopop.experiment import (
    NetworkInputs,
    EstimationJob,
    EstimateRecord,
    make_jobs,
    run_sweep,
    run_job,
    records_to_frame,
    append_records_to_csv,
    save_estimates,
    load_estimates,
)
from mnopop.observation import MismatchSpec
from mnopop.utils import load_config


@pytest.fixture
def config():
    return load_config(overrides={
        'estimation': {'n_iter': 20, 'ldt': 0, 'checkpoints': [1, 20]},
        'sweep': {'n_jobs': 1},
    })


@pytest.fixture
def networks():
    tile_ids = np.array([1, 2])
    good = NetworkInputs(
        name='good',
        links=pd.DataFrame({'tile': [1, 1, 2, 2], 'cell': [1, 2, 1, 2],
                            'dominance': [0.9, 0.3, 0.2, 0.8]}),
        counts=pd.Series({1: 10.0, 2: 10.0}),
        tile_ids=tile_ids,
    )
    # cell 2 never reaches the threshold yet has devices
    bad = NetworkInputs(
        name='bad',
        links=pd.DataFrame({'tile': [1, 1, 2, 2], 'cell': [1, 2, 1, 2],
                            'dominance': [0.9, 0.01, 0.8, 0.02]}),
        counts=pd.Series({1: 10.0, 2: 5.0}),
        tile_ids=tile_ids,
    )
    return {'good': good, 'bad': bad}


@pytest.fixture
def priors():
    return {'uniform': np.ones(2)}


def test_make_jobs_cross_product():
    mismatches = [MismatchSpec(), MismatchSpec('quantization', 0), MismatchSpec('noise', 3)]
    jobs = make_jobs(['a', 'b'], mismatches, ['uniform', 'landuse'], ['em', 'df', 'convex'])
    # the q = 0 alias collapses onto 'true'
    assert len(jobs) == 2 * 2 * 2 * 3
    assert len(set(jobs)) == len(jobs)
    assert jobs[0] == EstimationJob('a', MismatchSpec(), 'uniform', 'em')


def test_unknown_estimator():
    with pytest.raises(ValueError):
        EstimationJob('a', MismatchSpec(), 'uniform', 'newton')


def test_failure_is_isolated(networks, priors, config):
    jobs = make_jobs(['good', 'bad'], [MismatchSpec(), MismatchSpec('quantization', 1)],
                     ['uniform'], ['em', 'df'])
    records = run_sweep(jobs, networks, priors, config=config, verbose=False)

    ok = [r for r in records if r.status == 'ok']
    failed = [r for r in records if r.status == 'failed']
    assert len(ok) == 2 * 2 * 2          # mismatches x estimators x checkpoints
    assert len(failed) == 2 * 2          # one record per failed job
    assert all(r.network == 'good' for r in ok)
    assert all(r.network == 'bad' for r in failed)
    assert all(r.error_kind == 'DataInconsistencyError' for r in failed)
    assert {(r.estimator, r.mismatch_kind) for r in failed} == {
        ('em', 'true'), ('df', 'true'), ('em', 'quantization'), ('df', 'quantization')
    }


def test_records_carry_checkpoints(networks, priors, config):
    job = EstimationJob('good', MismatchSpec(), 'uniform', 'em')
    records = run_job(job, networks['good'], priors['uniform'], config)
    assert [r.iteration for r in records] == [1, 20]
    for r in records:
        assert r.estimate.shape == (2,)
        assert r.estimate.sum() == pytest.approx(20.0)
        assert r.checkpoint_reached


def test_convex_job(networks, priors, config):
    job = EstimationJob('good', MismatchSpec(), 'uniform', 'convex')
    records = run_job(job, networks['good'], priors['uniform'], config)
    assert len(records) == 1
    assert records[0].status == 'ok'
    assert records[0].solver_status == 'optimal'
    assert records[0].iteration is None


def test_supertile_job(networks, priors, config):
    network = networks['good']
    network.supertile_of = pd.Series({1: 'A', 2: 'A'})
    job = EstimationJob('good', MismatchSpec(), 'uniform', 'em')
    records = run_job(job, network, priors['uniform'], config)
    # a single supertile holds all the mass, split evenly
    assert np.allclose(records[-1].estimate, [10.0, 10.0])


def test_unknown_network(networks, priors, config):
    jobs = [EstimationJob('missing', MismatchSpec(), 'uniform', 'em')]
    with pytest.raises(ValueError):
        run_sweep(jobs, networks, priors, config=config, verbose=False)


def test_results_io(networks, priors, config, tmp_path):
    jobs = make_jobs(['good', 'bad'], [MismatchSpec()], ['uniform'], ['em'])
    records = run_sweep(jobs, networks, priors, config=config, verbose=False)

    frame = records_to_frame(records)
    assert list(frame.columns[:3]) == ['record', 'network', 'estimator']
    assert 'estimate' not in frame.columns

    path = append_records_to_csv(records, tmp_path)
    append_records_to_csv(records, tmp_path)
    written = pd.read_csv(path)
    assert len(written) == 2 * len(records)

    npz = save_estimates(records, np.array([1, 2]), tmp_path / 'estimates.npz')
    tile_ids, estimates = load_estimates(npz)
    assert tile_ids.tolist() == [1, 2]
    assert estimates.shape == (len(records), 2)
    failed_rows = frame.index[frame['status'] == 'failed']
    assert np.all(np.isnan(estimates[failed_rows]))
    ok_rows = frame.index[frame['status'] == 'ok']
    assert np.all(np.isfinite(estimates[ok_rows]))


def test_named_prior_spec(networks, config):
    from mnopop.estimation import PriorSpec
    priors = {'landuse': PriorSpec.from_array('landuse', [3.0, 1.0])}
    jobs = make_jobs(['good'], [MismatchSpec()], ['landuse'], ['df'])
    records = run_sweep(jobs, networks, priors, config=config, verbose=False)
    assert [r.prior for r in records] == ['landuse', 'landuse']
    assert all(r.status == 'ok' for r in records)


def test_convex_failure_is_isolated(networks, priors, config):
    jobs = make_jobs(['bad', 'good'], [MismatchSpec()], ['uniform'], ['convex'])
    records = run_sweep(jobs, networks, priors, config=config, verbose=False)
    assert [r.status for r in records] == ['failed', 'ok']
    assert records[0].error_kind == 'DataInconsistencyError'
    assert records[0].solver_status is None


def test_network_without_devices(networks, priors, config):
    networks['empty'] = NetworkInputs(
        name='empty',
        links=networks['good'].links,
        counts=pd.Series({1: 0.0, 2: 0.0}),
        tile_ids=np.array([1, 2]),
    )
    jobs = make_jobs(['empty', 'good'], [MismatchSpec()], ['uniform'], ['em', 'convex'])
    records = run_sweep(jobs, networks, priors, config=config, verbose=False)
    assert all(r.status == 'ok' for r in records)
    empty = [r for r in records if r.network == 'empty']
    assert [r.estimator for r in empty] == ['em', 'em', 'convex']
    for r in empty:
        assert r.estimate.tolist() == [0.0, 0.0]
        assert r.mass_error == 0.0
    assert any(r.network == 'good' for r in records)


def test_convex_timeout_recorded(networks, priors):
    config = load_config(overrides={'convex': {'timeout': 1e-9}})
    job = EstimationJob('good', MismatchSpec(), 'uniform', 'convex')
    records = run_job(job, networks['good'], priors['uniform'], config)
    assert len(records) == 1
    assert records[0].status == 'failed'
    assert records[0].error_kind == 'SolverFailureError'
    assert records[0].solver_status == 'timeout'


def test_uncovered_tiles_flagged(config, tmp_path):
    # tile 3 never reaches the threshold
    network = NetworkInputs(
        name='weak',
        links=pd.DataFrame({'tile': [1, 1, 2, 2, 3, 3], 'cell': [1, 2, 1, 2, 1, 2],
                            'dominance': [0.9, 0.1, 0.5, 0.5, 0.02, 0.01]}),
        counts=pd.Series({1: 10.0, 2: 5.0}),
        tile_ids=np.array([1, 2, 3]),
    )
    job = EstimationJob('weak', MismatchSpec(), 'uniform', 'em')
    records = run_job(job, network, np.ones(3), config)
    assert records[-1].n_uncovered == 1
    assert records[-1].uncovered.tolist() == [False, False, True]
    assert 'uncovered' not in records[-1].summary()

    failed = EstimateRecord('weak', 'em', 'true', 0, 'uniform', None, 'failed')
    path = save_estimates(records + [failed], network.tile_ids, tmp_path / 'weak.npz')
    _, estimates, reliable = load_estimates(path, with_reliability=True)
    assert reliable.tolist() == [[True, True, False]] * len(records) + [[False, False, False]]
    assert np.all(np.isnan(estimates[-1]))
