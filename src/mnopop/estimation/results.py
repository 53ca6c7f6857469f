"""Result records of the iterative estimators."""

from dataclasses import dataclass, field
from typing import Dict, List

import numpy as np


def freeze(array):
    """Read-only float copy of ``array``."""
    frozen = np.array(array, dtype=float, copy=True)
    frozen.flags.writeable = False
    return frozen


@dataclass
class EstimationResult:
    """
    Output of one EM or DF run.

    Attributes
    ----------
    kind : str
        Estimator kind ('em' or 'df')
    estimate : ndarray
        Final estimate (read-only)
    snapshots : dict of int -> ndarray
        Estimate at every requested checkpoint iteration (read-only).
        Checkpoints past the last iteration hold the final estimate.
    checkpoints_reached : list of int
        Checkpoints actually reached before the run stopped
    loglik : ndarray
        Log-likelihood trace, entry t is the value after iteration t
        (entry 0 is the initial estimate)
    n_iter : int
        Number of iterations run
    converged : bool
        Whether the convergence threshold was met before the cap
    monotone : bool
        Whether the log-likelihood trace is non-decreasing
    mass_error : float
        Relative deviation |sum(u) - sum(c)| / sum(c) of the final estimate
    uncovered : ndarray
        Ids of the tiles whose estimates are unreliable
    """
    kind: str
    estimate: np.ndarray
    snapshots: Dict[int, np.ndarray]
    checkpoints_reached: List[int]
    loglik: np.ndarray
    n_iter: int
    converged: bool
    monotone: bool
    mass_error: float
    uncovered: np.ndarray = field(default_factory=lambda: np.array([], dtype=int))
    parameters: dict = field(default_factory=dict)

    @property
    def final_loglik(self):
        return float(self.loglik[-1])
