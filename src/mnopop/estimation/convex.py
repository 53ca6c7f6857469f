"""
Convex maximum-likelihood solver.

Solves the constrained log-likelihood maximization

    maximize    c^T log(P u)
    subject to  u >= 0
                1^T u = sum(c)
                B^T c >= u,   B u >= c        (B = 1[P > 0])

with cvxpy. The objective is standardized as

    (c_A^T log(P_A u) - c_A^T log(c_A)) / sum(c)

over the active cells A = {i : c_i > 0}, which leaves the arg-max
unchanged. The raw solution is passed through an EM alignment pass to
restore exact mass conservation.
"""

import time
from dataclasses import dataclass
from typing import Optional

import cvxpy as cp
import numpy as np
from scipy import sparse

from .em import em_step
from .likelihood import log_likelihood
from ..utils.errors import SolverFailureError

PREFERRED_SOLVERS = ('CLARABEL', 'ECOS', 'SCS')
TIMEOUT_OPTIONS = {
    'CLARABEL': 'time_limit',
    'SCS': 'time_limit_secs',
}
STATUS_MAP = {
    'optimal': 'optimal',
    'optimal_inaccurate': 'inaccurate',
    'infeasible': 'infeasible',
    'infeasible_inaccurate': 'infeasible',
    'infeasible_or_unbounded': 'infeasible',
    'unbounded': 'inaccurate',
    'unbounded_inaccurate': 'inaccurate',
    'user_limit': 'timeout',
    'solver_error': 'error',
}


@dataclass
class ConvexResult:
    """
    Outcome of one convex solve.

    Attributes
    ----------
    status : str
        One of 'optimal', 'infeasible', 'inaccurate', 'timeout', 'error'
    estimate : ndarray or None
        Solution vector, only set when status is 'optimal'
    objective : float
        Log-likelihood c^T log(P u) at the solution (NaN when unavailable)
    standardized_objective : float
        Solver objective value (NaN when unavailable)
    solve_time : float
        Wall-clock seconds
    solver : str
        cvxpy solver name
    raw_status : str
        Status string reported by cvxpy
    """
    status: str
    estimate: Optional[np.ndarray]
    objective: float
    standardized_objective: float
    solve_time: float
    solver: str
    raw_status: str = ''

    @property
    def is_optimal(self):
        return self.status == 'optimal'


def default_solver():
    """First installed solver among CLARABEL, ECOS and SCS."""
    installed = cp.installed_solvers()
    for name in PREFERRED_SOLVERS:
        if name in installed:
            return name
    raise RuntimeError(
        f"No exponential-cone solver available; install one of {PREFERRED_SOLVERS}"
    )


def map_status(raw_status):
    """Map a cvxpy status string onto the solver status taxonomy."""
    if raw_status is None:
        return 'error'
    return STATUS_MAP.get(str(raw_status).lower(), 'error')


def _solver_options(solver, timeout):
    if timeout is None or solver not in TIMEOUT_OPTIONS:
        return {}
    return {TIMEOUT_OPTIONS[solver]: float(timeout)}


def build_problem(model, focus=None, focus_mass=None):
    """
    Assemble the cvxpy problem for ``model``.

    Parameters
    ----------
    model : ObservationModel
    focus : array-like of shape (N,), optional
        0/1 focus-region membership vector v
    focus_mass : float, optional
        Required region mass r; adds ``v^T u = r``

    Returns
    -------
    problem : cvxpy.Problem
    u : cvxpy.Variable
    """
    counts = model.counts
    total = model.total_count
    if total <= 0:
        raise ValueError("convex solve requires a positive total count")
    if (focus is None) != (focus_mass is None):
        raise ValueError("focus and focus_mass must be given together")

    active = np.flatnonzero(counts > 0)
    P_active = sparse.csr_matrix(model.P)[active]
    c_active = counts[active]
    B = sparse.csr_matrix((model.P > 0).astype(float))
    upper = np.asarray(B.T @ counts).ravel()

    u = cp.Variable(model.n_tiles, nonneg=True)
    offset = float(c_active @ np.log(c_active))
    loglik = cp.sum(cp.multiply(c_active, cp.log(P_active @ u)))
    objective = cp.Maximize((loglik - offset) / total)

    constraints = [
        cp.sum(u) == total,
        u <= upper,
        B @ u >= counts,
    ]
    if focus is not None:
        v = np.asarray(focus, dtype=float)
        if v.shape != (model.n_tiles,):
            raise ValueError(f"focus shape {v.shape} must be ({model.n_tiles},)")
        constraints.append(cp.sum(cp.multiply(v, u)) == float(focus_mass))

    return cp.Problem(objective, constraints), u


def _empty_result(model, focus, focus_mass, solver):
    # u = 0 is the only feasible point when sum(c) = 0
    if (focus is None) != (focus_mass is None):
        raise ValueError("focus and focus_mass must be given together")
    if focus is not None and float(focus_mass) != 0.0:
        return ConvexResult(status='infeasible', estimate=None, objective=np.nan,
                            standardized_objective=np.nan, solve_time=0.0, solver=solver,
                            raw_status='infeasible')
    return ConvexResult(status='optimal', estimate=np.zeros(model.n_tiles), objective=0.0,
                        standardized_objective=0.0, solve_time=0.0, solver=solver,
                        raw_status='optimal')


def solve_convex_mle(model, focus=None, focus_mass=None, solver=None, timeout=600.0,
                     verbose=True):
    """
    Solve the constrained maximum-likelihood problem.

    Never raises on a non-optimal status; the status is returned on the
    result and ``estimate`` is None unless the solve is optimal. With no
    observed devices the all-zero vector is returned without calling the
    solver.

    Parameters
    ----------
    model : ObservationModel
        Observation model (usually at supertile resolution)
    focus : array-like of shape (N,), optional
        Focus-region membership vector for profile solves
    focus_mass : float, optional
        Required focus-region mass
    solver : str, optional
        cvxpy solver name, default: first of CLARABEL, ECOS, SCS installed
    timeout : float, optional
        Per-call wall-clock budget in seconds; exceeding it yields status
        'timeout'. None disables it. Default: 600
    verbose : bool, optional
        Default: True

    Returns
    -------
    ConvexResult

    Raises
    ------
    DataInconsistencyError
        If a positive-count cell has zero incoming weight
    """
    model.validate_counts()
    solver = default_solver() if solver is None else solver.upper()
    if model.total_count == 0:
        return _empty_result(model, focus, focus_mass, solver)
    problem, u = build_problem(model, focus, focus_mass)

    if verbose:
        print(f"\n{'='*60}")
        print(f"Convex MLE ({solver})")
        print(f"{'='*60}")
        print(f"Variables: {model.n_tiles}, cells: {model.n_cells}, total count: {model.total_count:.0f}")
        if focus is not None:
            print(f"Focus-region mass constraint: r = {float(focus_mass):.4f}")

    start = time.perf_counter()
    try:
        problem.solve(solver=solver, **_solver_options(solver, timeout))
        raw_status = problem.status
    except cp.SolverError as e:
        raw_status = 'solver_error'
        if verbose:
            print(f"  Solver error: {e}")
    solve_time = time.perf_counter() - start

    status = map_status(raw_status)
    if timeout is not None and solve_time > timeout and status != 'error':
        status = 'timeout'

    value = problem.value if raw_status != 'solver_error' else None
    standardized = float(value) if value is not None and np.isfinite(value) else np.nan

    estimate = None
    if status == 'optimal' and u.value is not None:
        estimate = np.maximum(np.asarray(u.value, dtype=float).ravel(), 0.0)
        objective = log_likelihood(model.P, model.counts, estimate)
    elif np.isfinite(standardized):
        counts = model.counts[model.counts > 0]
        objective = standardized * model.total_count + float(counts @ np.log(counts))
    else:
        objective = np.nan

    if verbose:
        print(f"  Status: {status} ({raw_status}), time: {solve_time:.2f}s")
        if np.isfinite(objective):
            print(f"  Log-likelihood: {objective:.6f}")

    return ConvexResult(
        status=status,
        estimate=estimate,
        objective=float(objective),
        standardized_objective=standardized,
        solve_time=solve_time,
        solver=solver,
        raw_status=str(raw_status),
    )


def align_with_em(model, u, n_iter=1):
    """
    EM alignment pass started at a raw convex solution.

    Negative round-off is clipped first; ``n_iter`` EM steps then restore
    exact mass conservation.
    """
    u = np.maximum(np.asarray(u, dtype=float), 0.0)
    for _ in range(int(n_iter)):
        u = em_step(model.P, model.counts, u, cell_ids=model.cell_ids)
    return u


def estimate_convex(model, solver=None, timeout=600.0, align_iterations=1, verbose=True):
    """
    Point estimate from the convex solver.

    Parameters
    ----------
    model : ObservationModel
    solver : str, optional
        cvxpy solver name
    timeout : float, optional
        Per-call wall-clock budget in seconds, default: 600
    align_iterations : int, optional
        EM alignment steps applied to the raw solution, default: 1
    verbose : bool, optional
        Default: True

    Returns
    -------
    estimate : ndarray of shape (N,)
        Aligned estimate
    result : ConvexResult
        Raw solve result

    Raises
    ------
    SolverFailureError
        If the solve status is not 'optimal'
    """
    result = solve_convex_mle(model, solver=solver, timeout=timeout, verbose=verbose)
    if not result.is_optimal:
        raise SolverFailureError(
            f"Convex solve finished with status '{result.status}' ({result.raw_status})",
            status=result.status
        )
    aligned = align_with_em(model, result.estimate, align_iterations)
    return aligned, result


def check_convex_optimality(model, estimate, n_iter=50):
    """
    Run further EM iterations from a convex estimate and report the gain.

    If the convex solution is optimal, the log-likelihood should not
    improve materially.

    Parameters
    ----------
    model : ObservationModel
    estimate : ndarray of shape (N,)
        Aligned convex estimate
    n_iter : int, optional
        Number of EM iterations, default: 50

    Returns
    -------
    dict
        'loglik_start', 'loglik_end', 'gain' and 'relative_gain'
    """
    u = np.asarray(estimate, dtype=float)
    start = log_likelihood(model.P, model.counts, u)
    for _ in range(int(n_iter)):
        u = em_step(model.P, model.counts, u, cell_ids=model.cell_ids)
    end = log_likelihood(model.P, model.counts, u)
    gain = end - start
    return {
        'loglik_start': start,
        'loglik_end': end,
        'gain': gain,
        'relative_gain': abs(gain) / max(abs(start), np.finfo(float).tiny),
    }
