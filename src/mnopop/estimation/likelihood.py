"""
Multinomial log-likelihood of observed cell counts.

    L(u) = sum_i c_i * log( (P u)_i )     over cells with c_i > 0

Cells with a zero count do not contribute.
"""

import numpy as np

from ..utils.errors import DataInconsistencyError


def expected_counts(P, u):
    """Expected count per cell, ``P @ u``."""
    return np.asarray(P @ np.asarray(u, dtype=float)).ravel()


def log_likelihood(P, counts, u):
    """
    Log-likelihood of ``counts`` given the population vector ``u``.

    Parameters
    ----------
    P : sparse matrix of shape (M, N)
        Connection weights, cells by tiles
    counts : ndarray of shape (M,)
        Observed counts
    u : ndarray of shape (N,)
        Population estimate

    Returns
    -------
    float
        ``c^T log(P u)``; ``-inf`` when a positive-count cell has zero
        expected count
    """
    q = expected_counts(P, u)
    active = counts > 0
    if np.any(q[active] <= 0):
        return -np.inf
    return float(counts[active] @ np.log(q[active]))


def check_support(P, counts, u, cell_ids=None):
    """
    Raise if a positive-count cell receives no mass from ``u``.

    Raises
    ------
    DataInconsistencyError
        Listing the starved cells
    """
    q = expected_counts(P, u)
    starved = (counts > 0) & (q <= 0)
    if np.any(starved):
        positions = np.flatnonzero(starved)
        ids = np.asarray(cell_ids)[positions] if cell_ids is not None else positions
        raise DataInconsistencyError(
            f"{len(ids)} cell(s) with positive count receive zero expected mass "
            f"(no incoming weight or all linked tiles at zero): {ids.tolist()[:10]}",
            cell_ids=ids
        )
    return q
