"""
Expectation-maximization estimator of the tile population vector.

One EM step, for active cells A = {i : c_i > 0}:

    q       = P u
    r_i     = c_i / q_i          for i in A, 0 otherwise
    u_new   = u * (P^T r)

Each step conserves total mass exactly, sum(u_new) = sum(c), because P
rows are combined with the observed counts only. By Jensen's inequality
the log-likelihood gain of a step is at least sum(c) times the KL
divergence between the normalized new and old iterates, so the trace is
non-decreasing for any non-negative P, thresholded (sub-stochastic)
columns included. A tile that reaches zero stays at zero.
"""

import warnings

import numpy as np
from tqdm import tqdm

from .likelihood import log_likelihood, check_support
from .priors import validate_prior, uniform_prior
from .results import EstimationResult, freeze
from ..utils.errors import NonConvergenceWarning, NonMonotoneLikelihoodWarning

STOPPING_RULES = ('loglik', 'estimate')
MONOTONE_TOLERANCE = 1e-10


def em_step(P, counts, u, cell_ids=None):
    """
    Single multiplicative EM update.

    Parameters
    ----------
    P : sparse matrix of shape (M, N)
        Connection weights, cells by tiles
    counts : ndarray of shape (M,)
        Observed counts
    u : ndarray of shape (N,)
        Current estimate
    cell_ids : array-like, optional
        Used in error messages

    Returns
    -------
    ndarray of shape (N,)
        Updated estimate

    Raises
    ------
    DataInconsistencyError
        If a positive-count cell has zero expected count
    """
    q = check_support(P, counts, u, cell_ids=cell_ids)
    active = counts > 0
    ratio = np.zeros_like(q)
    ratio[active] = counts[active] / q[active]
    return u * np.asarray(P.T @ ratio).ravel()


def initial_estimate(model, prior=None):
    """
    Starting point of the iterative estimators.

    The prior is restricted to tiles linked to at least one positive-count
    cell and rescaled so that it sums to the total observed count.

    Raises
    ------
    DataInconsistencyError
        If the restricted prior leaves a positive-count cell without mass
    """
    prior = uniform_prior(model.n_tiles) if prior is None else validate_prior(prior, model.n_tiles)
    u0 = np.where(model.reachable_tiles(), prior, 0.0)

    total = model.total_count
    mass = u0.sum()
    if total == 0:
        return np.zeros(model.n_tiles)
    if mass > 0:
        u0 = u0 * (total / mass)
    check_support(model.P, model.counts, u0, cell_ids=model.cell_ids)
    return u0


def relative_change(stopping, u_old, u_new, ll_old, ll_new):
    """Convergence statistic for the chosen stopping rule."""
    tiny = np.finfo(float).tiny
    if stopping == 'loglik':
        if not np.isfinite(ll_old) or not np.isfinite(ll_new):
            return np.inf
        return abs(ll_new - ll_old) / max(abs(ll_old), tiny)
    return float(np.abs(u_new - u_old).sum() / max(u_old.sum(), tiny))


def is_monotone(trace):
    """Whether a log-likelihood trace never decreases beyond round-off."""
    trace = np.asarray(trace, dtype=float)
    if len(trace) < 2:
        return True
    finite = trace[np.isfinite(trace)]
    scale = max(1.0, float(np.abs(finite).max())) if len(finite) else 1.0
    return bool(np.all(np.diff(trace) >= -MONOTONE_TOLERANCE * scale))


def iterate(model, step, kind, prior=None, n_iter=200, ldt=1e-9, stopping='loglik',
            checkpoints=None, verbose=True, parameters=None):
    """
    Run a fixed-point update until convergence or the iteration cap.

    Parameters
    ----------
    model : ObservationModel
    step : callable
        ``step(u, t) -> u_new`` for iteration ``t`` (1-based)
    kind : str
        Estimator name stored on the result
    prior : array-like of shape (N,), optional
        Initial weights, default: uniform
    n_iter : int, optional
        Iteration cap, default: 200
    ldt : float, optional
        Convergence threshold on the stopping statistic; 0 disables early
        stopping. Default: 1e-9
    stopping : {'loglik', 'estimate'}, optional
        Relative change of the log-likelihood or L1 relative change of the
        estimate. Default: 'loglik'
    checkpoints : iterable of int, optional
        Iterations at which to record the estimate. Default: ``[n_iter]``
    verbose : bool, optional
        Progress bar and summary, default: True

    Returns
    -------
    EstimationResult
    """
    if n_iter < 0:
        raise ValueError(f"n_iter must be >= 0, got {n_iter}")
    if ldt < 0:
        raise ValueError(f"ldt must be >= 0, got {ldt}")
    if stopping not in STOPPING_RULES:
        raise ValueError(f"stopping must be one of {STOPPING_RULES}, got {stopping!r}")
    checkpoints = sorted({int(k) for k in (checkpoints if checkpoints is not None else [n_iter])})
    if checkpoints and checkpoints[0] < 0:
        raise ValueError("checkpoints must be non-negative")

    model.validate_counts()
    P, counts = model.P, model.counts

    if verbose:
        print(f"\n{'='*60}")
        print(f"{kind.upper()} estimation")
        print(f"{'='*60}")
        print(f"Tiles: {model.n_tiles}, cells: {model.n_cells}, total count: {model.total_count:.0f}")
        print(f"Max iterations: {n_iter}, ldt: {ldt:.1e} ({stopping})")

    u = initial_estimate(model, prior)
    trace = [log_likelihood(P, counts, u)]
    snapshots = {}
    if 0 in checkpoints:
        snapshots[0] = freeze(u)

    converged = False
    n_run = 0
    iterations = range(1, n_iter + 1)
    if verbose:
        iterations = tqdm(iterations, desc=f"{kind.upper()} iterations")

    for t in iterations:
        u_new = step(u, t)
        trace.append(log_likelihood(P, counts, u_new))
        if t in checkpoints:
            snapshots[t] = freeze(u_new)
        change = relative_change(stopping, u, u_new, trace[-2], trace[-1])
        u = u_new
        n_run = t
        if ldt > 0 and change < ldt:
            converged = True
            break

    reached = sorted(snapshots)
    for k in checkpoints:
        if k not in snapshots:
            snapshots[k] = freeze(u)

    monotone = is_monotone(trace)
    if not monotone:
        warnings.warn(f"{kind.upper()} log-likelihood decreased during iteration", NonMonotoneLikelihoodWarning)
    if ldt > 0 and not converged and n_iter > 0:
        warnings.warn(
            f"{kind.upper()} stopped at the iteration cap ({n_iter}) before reaching ldt={ldt:.1e}",
            NonConvergenceWarning
        )

    total = model.total_count
    mass_error = abs(u.sum() - total) / total if total > 0 else float(u.sum())

    if verbose:
        print(f"  Iterations run: {n_run} (converged: {converged})")
        print(f"  Final log-likelihood: {trace[-1]:.6f}")
        print(f"  Mass error: {mass_error:.2e}")

    return EstimationResult(
        kind=kind,
        estimate=freeze(u),
        snapshots=snapshots,
        checkpoints_reached=reached,
        loglik=freeze(trace),
        n_iter=n_run,
        converged=converged,
        monotone=monotone,
        mass_error=float(mass_error),
        uncovered=np.asarray(model.uncovered_tiles),
        parameters=dict(parameters or {}, n_iter=n_iter, ldt=ldt, stopping=stopping),
    )


def run_em(model, prior=None, n_iter=200, ldt=1e-9, stopping='loglik', checkpoints=None,
           verbose=True):
    """
    Estimate the tile population with expectation-maximization.

    Parameters
    ----------
    model : ObservationModel
        Observation model (P, counts)
    prior : array-like of shape (N,), optional
        Initial weights; tiles not linked to any positive-count cell are
        set to zero before rescaling. Default: uniform
    n_iter : int, optional
        Iteration cap, default: 200
    ldt : float, optional
        Convergence threshold, default: 1e-9
    stopping : {'loglik', 'estimate'}, optional
        Stopping statistic, default: 'loglik'
    checkpoints : iterable of int, optional
        Iterations whose estimates are kept, default: ``[n_iter]``
    verbose : bool, optional
        Default: True

    Returns
    -------
    EstimationResult

    Raises
    ------
    DataInconsistencyError
        If a positive-count cell has zero incoming weight

    Examples
    --------
    >>> from mnopop.observation import observation_model_from_matrix
    >>> model = observation_model_from_matrix([[1.0, 0.0], [0.0, 1.0]], [3, 7])
    >>> result = run_em(model, n_iter=5, verbose=False)
    >>> bool(np.allclose(result.estimate, [3, 7]))
    True
    """
    def step(u, t):
        return em_step(model.P, model.counts, u, cell_ids=model.cell_ids)

    return iterate(model, step, 'em', prior=prior, n_iter=n_iter, ldt=ldt, stopping=stopping,
                   checkpoints=checkpoints, verbose=verbose)
