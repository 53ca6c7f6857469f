"""Prior vectors used to initialize the estimators."""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class PriorSpec:
    """Named prior variant (one axis of an estimation sweep)."""
    name: str
    values: tuple

    @classmethod
    def from_array(cls, name, values):
        return cls(name, tuple(float(v) for v in validate_prior(values)))

    def as_array(self):
        return np.array(self.values, dtype=float)


def validate_prior(prior, n=None):
    """
    Check that a prior is a finite, non-negative vector.

    Parameters
    ----------
    prior : array-like
        Prior weights
    n : int, optional
        Expected length

    Returns
    -------
    ndarray
        Prior as a float array
    """
    prior = np.asarray(prior, dtype=float)
    if prior.ndim != 1:
        raise ValueError(f"prior must be one-dimensional, got shape {prior.shape}")
    if n is not None and prior.shape != (n,):
        raise ValueError(f"prior shape {prior.shape} must be ({n},)")
    if not np.all(np.isfinite(prior)) or np.any(prior < 0):
        raise ValueError("prior must be finite and non-negative")
    return prior


def uniform_prior(n):
    """Equal weight on every tile."""
    return np.ones(int(n), dtype=float)


def informative_prior(weights, floor=0.0):
    """
    Prior proportional to external weights (e.g. land use).

    Parameters
    ----------
    weights : array-like
        Non-negative weights per tile
    floor : float, optional
        Added to every weight so that no tile is excluded, default: 0

    Returns
    -------
    ndarray
        Prior normalized to sum one (all zeros stay zeros)
    """
    prior = validate_prior(weights) + float(floor)
    total = prior.sum()
    return prior / total if total > 0 else prior
