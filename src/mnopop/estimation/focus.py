"""
Focus-region profile likelihood.

For a focus region v (0/1 over supertiles) the convex program is re-solved
with the added constraint v^T u = r for a grid of region masses r. The
(r, objective, status) triples form the profile log-likelihood curve;
infeasible or failed grid points are kept and flagged, never dropped.
"""

from dataclasses import dataclass

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from .convex import solve_convex_mle
from ..utils.errors import SolverFailureError


@dataclass(frozen=True)
class ProfilePoint:
    """One grid point of a focus-region profile."""
    r: float
    objective: float
    status: str
    standardized_objective: float = np.nan
    solve_time: float = np.nan


def focus_region_vector(tile_ids, member_tiles, mapping=None, how='any'):
    """
    0/1 focus-region membership vector.

    Parameters
    ----------
    tile_ids : array-like
        Tile ids of the model the vector is used with (supertile ids when
        ``mapping`` is given)
    member_tiles : array-like
        Fine tile ids inside the focus region
    mapping : SupertileMapping, optional
        When given, the vector is built over supertiles
    how : {'any', 'all'}, optional
        A supertile belongs to the region when any or all of its members
        do. Default: 'any'

    Returns
    -------
    ndarray of shape (len(tile_ids),)

    Examples
    --------
    >>> focus_region_vector([1, 2, 3], [2]).tolist()
    [0.0, 1.0, 0.0]
    """
    if how not in ('any', 'all'):
        raise ValueError(f"how must be 'any' or 'all', got {how!r}")
    tile_ids = np.asarray(tile_ids)
    member_tiles = np.asarray(member_tiles)

    if mapping is None:
        unknown = ~np.isin(member_tiles, tile_ids)
        if np.any(unknown):
            raise ValueError(f"Unknown focus tile ids: {member_tiles[unknown].tolist()[:10]}")
        return np.isin(tile_ids, member_tiles).astype(float)

    inside = np.isin(mapping.tile_ids, member_tiles).astype(float)
    hits = np.bincount(mapping.membership, weights=inside, minlength=mapping.n_supertiles)
    if how == 'any':
        selected = hits > 0
    else:
        selected = hits == mapping.n_members
    by_supertile = pd.Series(selected.astype(float), index=mapping.supertile_ids)
    return by_supertile.reindex(tile_ids, fill_value=0.0).to_numpy()


def focus_grid(center, width=0.5, n_points=21, total=None):
    """
    Evenly spaced region masses around ``center``.

    The grid spans ``center * (1 - width)`` to ``center * (1 + width)``,
    clipped to ``[0, total]``. A region with no mass (``center == 0``)
    gets the absolute grid ``[0, width * total]`` instead, which needs
    ``total``.

    Examples
    --------
    >>> focus_grid(10.0, width=0.5, n_points=3).tolist()
    [5.0, 10.0, 15.0]
    >>> focus_grid(0.0, width=0.5, n_points=3, total=20.0).tolist()
    [0.0, 5.0, 10.0]
    """
    if n_points < 1:
        raise ValueError(f"n_points must be >= 1, got {n_points}")
    if width < 0:
        raise ValueError(f"width must be >= 0, got {width}")
    if center < 0:
        raise ValueError(f"center must be >= 0, got {center}")
    if center == 0:
        if total is None:
            raise ValueError("a zero-mass center needs total to set the grid width")
        return np.linspace(0.0, width * float(total), int(n_points))
    low = max(center * (1.0 - width), 0.0)
    high = center * (1.0 + width)
    if total is not None:
        high = min(high, float(total))
    return np.linspace(low, high, int(n_points))


def _profile_point(model, v, r, solver, timeout):
    result = solve_convex_mle(model, focus=v, focus_mass=r, solver=solver,
                              timeout=timeout, verbose=False)
    return ProfilePoint(
        r=float(r),
        objective=result.objective if result.is_optimal else np.nan,
        status=result.status,
        standardized_objective=result.standardized_objective if result.is_optimal else np.nan,
        solve_time=result.solve_time,
    )


def profile_focus_region(model, v, r_values=None, center=None, width=0.5, n_points=21,
                         solver=None, timeout=600.0, n_jobs=1, verbose=True):
    """
    Profile log-likelihood of the focus-region mass.

    Parameters
    ----------
    model : ObservationModel
        Observation model (usually at supertile resolution)
    v : array-like of shape (N,)
        Focus-region membership vector
    r_values : array-like, optional
        Region masses to evaluate. Default: ``focus_grid(center, ...)``
    center : float, optional
        Grid center; default: region mass of the unconstrained convex
        point estimate
    width : float, optional
        Relative half-width of the default grid, default: 0.5
    n_points : int, optional
        Number of points of the default grid, default: 21
    solver : str, optional
        cvxpy solver name
    timeout : float, optional
        Per-solve wall-clock budget in seconds, default: 600
    n_jobs : int, optional
        Number of parallel solves (joblib), default: 1
    verbose : bool, optional
        Default: True

    Returns
    -------
    list of ProfilePoint
        One point per grid value, ordered by r

    Raises
    ------
    SolverFailureError
        If the default grid center is requested and the unconstrained
        solve is not optimal
    """
    v = np.asarray(v, dtype=float)
    if v.shape != (model.n_tiles,):
        raise ValueError(f"v shape {v.shape} must be ({model.n_tiles},)")

    if r_values is None:
        if center is None:
            base = solve_convex_mle(model, solver=solver, timeout=timeout, verbose=False)
            if not base.is_optimal:
                raise SolverFailureError(
                    f"Cannot center focus grid: unconstrained solve status '{base.status}'",
                    status=base.status
                )
            center = float(v @ base.estimate)
        r_values = focus_grid(center, width, n_points, total=model.total_count)
    r_values = np.sort(np.asarray(r_values, dtype=float))

    if verbose:
        print(f"\n{'='*60}")
        print("Focus-region profile")
        print(f"{'='*60}")
        print(f"Region size: {int(v.sum())} of {model.n_tiles}")
        print(f"Grid: {len(r_values)} points in [{r_values.min():.3f}, {r_values.max():.3f}]")

    points = Parallel(n_jobs=n_jobs, verbose=10 if verbose else 0)(
        delayed(_profile_point)(model, v, r, solver, timeout) for r in r_values
    )

    if verbose:
        n_optimal = sum(p.status == 'optimal' for p in points)
        print(f"  Optimal: {n_optimal}/{len(points)}")

    return sorted(points, key=lambda p: p.r)


def profile_to_frame(points):
    """Profile points as a DataFrame with one row per grid value."""
    return pd.DataFrame([
        {
            'r': p.r,
            'objective': p.objective,
            'standardized_objective': p.standardized_objective,
            'status': p.status,
            'solve_time': p.solve_time,
        }
        for p in points
    ], columns=['r', 'objective', 'standardized_objective', 'status', 'solve_time'])
