"""
Sweep runner: estimate every job independently and collect records.

A job that fails with a PopulationInversionError (inconsistent data, a
non-optimal convex solve) yields a single 'failed' record carrying the
error; the sweep continues with the next job.
"""

from dataclasses import dataclass, field, asdict
from typing import Optional

import numpy as np
from joblib import Parallel, delayed
from tqdm import tqdm

from ..estimation.convex import estimate_convex
from ..estimation.df import run_df
from ..estimation.em import run_em
from ..estimation.likelihood import log_likelihood
from ..estimation.priors import PriorSpec
from ..observation.model import build_observation_model
from ..observation.supertiles import aggregate, aggregate_prior, disaggregate
from ..utils.config import load_config
from ..utils.errors import PopulationInversionError, SolverFailureError


@dataclass
class EstimateRecord:
    """
    One tile-aligned estimate (or one failure) of a sweep.

    ``iteration`` is the EM/DF checkpoint the estimate was taken at and
    None for convex estimates and failures. ``uncovered`` flags, per tile,
    estimates that rest on no above-threshold link (supertile coverage
    when the job was aggregated).
    """
    network: str
    estimator: str
    mismatch_kind: str
    mismatch_level: float
    prior: str
    iteration: Optional[int]
    status: str
    error_kind: Optional[str] = None
    error: Optional[str] = None
    solver_status: Optional[str] = None
    converged: Optional[bool] = None
    monotone: Optional[bool] = None
    checkpoint_reached: Optional[bool] = None
    loglik: float = np.nan
    mass_error: float = np.nan
    n_uncovered: int = 0
    estimate: Optional[np.ndarray] = field(default=None, repr=False)
    uncovered: Optional[np.ndarray] = field(default=None, repr=False)

    def summary(self):
        """Record fields without the per-tile vectors."""
        row = asdict(self)
        row.pop('estimate')
        row.pop('uncovered')
        return row


def _to_tiles(u, mapping):
    return disaggregate(u, mapping) if mapping is not None else np.asarray(u, dtype=float)


def _uncovered_mask(model, mapping):
    mask = ~model.coverage_mask
    return mask[mapping.membership] if mapping is not None else mask


def _mass_error(u, total):
    return abs(u.sum() - total) / total if total > 0 else float(u.sum())


def run_job(job, network, prior, config=None):
    """
    Run one estimation job.

    Parameters
    ----------
    job : EstimationJob
    network : NetworkInputs
        Inputs of ``job.network``
    prior : PriorSpec or array-like of shape (n_tiles,)
        Tile-level prior of ``job.prior``
    config : dict, optional
        Configuration as returned by ``load_config``

    Returns
    -------
    list of EstimateRecord
        One record per checkpoint for 'em'/'df', one record for 'convex',
        a single failed record if the job raised a PopulationInversionError
    """
    config = config or load_config()
    obs = config['observation']
    est = config['estimation']
    base = job.describe()

    try:
        model = build_observation_model(
            network.links, network.counts, tile_ids=network.tile_ids, cells=network.cells,
            threshold=obs['threshold'], mismatch=job.mismatch, seed=config['mismatch']['seed'],
            renormalize=obs['renormalize'], midpoint=obs['midpoint'], steepness=obs['steepness'],
            verbose=False
        )
        tile_prior = prior.as_array() if isinstance(prior, PriorSpec) else np.asarray(prior, dtype=float)
        mapping = None
        if network.supertile_of is not None:
            model, mapping = aggregate(model, network.supertile_of)
            tile_prior = aggregate_prior(tile_prior, mapping)

        n_uncovered = len(model.uncovered_tiles)
        uncovered = _uncovered_mask(model, mapping)

        if job.estimator == 'convex':
            cvx = config['convex']
            u, result = estimate_convex(model, solver=cvx['solver'], timeout=cvx['timeout'],
                                        align_iterations=cvx['align_iterations'], verbose=False)
            total = model.total_count
            return [EstimateRecord(
                **base, iteration=None, status='ok', solver_status=result.status,
                loglik=log_likelihood(model.P, model.counts, u),
                mass_error=_mass_error(u, total),
                n_uncovered=n_uncovered, estimate=_to_tiles(u, mapping), uncovered=uncovered,
            )]

        common = dict(prior=tile_prior, n_iter=int(est['n_iter']), ldt=est['ldt'] or 0.0,
                      stopping=est['stopping'], checkpoints=est['checkpoints'], verbose=False)
        if job.estimator == 'em':
            result = run_em(model, **common)
        else:
            result = run_df(model, **est['df'], **common)

        total = model.total_count
        records = []
        for k in sorted(result.snapshots):
            u = result.snapshots[k]
            records.append(EstimateRecord(
                **base, iteration=k, status='ok',
                converged=result.converged, monotone=result.monotone,
                checkpoint_reached=k in result.checkpoints_reached,
                loglik=log_likelihood(model.P, model.counts, u),
                mass_error=_mass_error(u, total),
                n_uncovered=n_uncovered, estimate=_to_tiles(u, mapping), uncovered=uncovered,
            ))
        return records

    except PopulationInversionError as e:
        return [EstimateRecord(
            **base, iteration=None, status='failed',
            error_kind=type(e).__name__, error=str(e),
            solver_status=e.status if isinstance(e, SolverFailureError) else None,
        )]


def run_sweep(jobs, networks, priors, config=None, n_jobs=None, verbose=True):
    """
    Run a list of estimation jobs.

    Parameters
    ----------
    jobs : list of EstimationJob
    networks : dict of str -> NetworkInputs
    priors : dict of str -> PriorSpec or array-like
        Tile-level priors by name
    config : dict, optional
        Configuration, default: ``load_config()``
    n_jobs : int, optional
        Parallel workers (joblib); default: ``config['sweep']['n_jobs']``
    verbose : bool, optional
        Default: True

    Returns
    -------
    list of EstimateRecord
        Records of all jobs, in job order
    """
    config = config or load_config()
    n_jobs = config['sweep']['n_jobs'] if n_jobs is None else n_jobs

    missing_networks = {job.network for job in jobs} - set(networks)
    if missing_networks:
        raise ValueError(f"Jobs reference unknown networks: {sorted(missing_networks)}")
    missing_priors = {job.prior for job in jobs} - set(priors)
    if missing_priors:
        raise ValueError(f"Jobs reference unknown priors: {sorted(missing_priors)}")

    if verbose:
        print(f"\n{'='*60}")
        print("ESTIMATION SWEEP")
        print(f"{'='*60}")
        print(f"Jobs: {len(jobs)}, workers: {n_jobs}")

    if n_jobs == 1:
        iterator = tqdm(jobs, desc="Jobs") if verbose else jobs
        per_job = [run_job(job, networks[job.network], priors[job.prior], config) for job in iterator]
    else:
        per_job = Parallel(n_jobs=n_jobs, verbose=10 if verbose else 0)(
            delayed(run_job)(job, networks[job.network], priors[job.prior], config) for job in jobs
        )

    records = [record for job_records in per_job for record in job_records]

    if verbose:
        n_failed = sum(r.status == 'failed' for r in records)
        print(f"  Records: {len(records)} ({n_failed} failed)")

    return records
