"""Estimation jobs: the cross-product of networks, mismatch levels, priors and estimators."""

import itertools
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd

from ..observation.mismatch import MismatchSpec

ESTIMATORS = ('em', 'df', 'convex')


@dataclass
class NetworkInputs:
    """
    Everything needed to build the observation model of one network.

    Attributes
    ----------
    name : str
        Network (cell plan) name
    links : DataFrame
        All (tile, cell) pairs with 'dominance' and/or 'signal'
    counts : Series
        Observed count per cell id
    tile_ids : ndarray
        Full tile id space
    cells : DataFrame, optional
        Per-cell logistic parameters ('cell', 'midpoint', 'steepness')
    supertile_of : Series, optional
        Supertile id per tile id; when set, estimation runs on supertiles
        and estimates are split back to tiles
    """
    name: str
    links: pd.DataFrame
    counts: pd.Series
    tile_ids: np.ndarray
    cells: Optional[pd.DataFrame] = None
    supertile_of: Optional[pd.Series] = field(default=None)


@dataclass(frozen=True)
class EstimationJob:
    """One (network, mismatch, prior, estimator) combination."""
    network: str
    mismatch: MismatchSpec
    prior: str
    estimator: str

    def __post_init__(self):
        if self.estimator not in ESTIMATORS:
            raise ValueError(f"Unknown estimator {self.estimator!r}; expected one of {ESTIMATORS}")

    def describe(self):
        return {
            'network': self.network,
            'estimator': self.estimator,
            'mismatch_kind': self.mismatch.kind,
            'mismatch_level': self.mismatch.level,
            'prior': self.prior,
        }


def make_jobs(networks, mismatches, priors, estimators=('em', 'df')):
    """
    Enumerate every combination of the sweep axes.

    Parameters
    ----------
    networks : iterable of str
        Network names
    mismatches : iterable of MismatchSpec
        Mismatch levels (normalized, duplicates removed)
    priors : iterable of str
        Prior names
    estimators : iterable of str, optional
        Estimator kinds, default: ('em', 'df')

    Returns
    -------
    list of EstimationJob

    Examples
    --------
    >>> jobs = make_jobs(['a'], [MismatchSpec(), MismatchSpec('noise', 3)], ['uniform'], ['em'])
    >>> len(jobs)
    2
    """
    unique_mismatches = list(dict.fromkeys(m.normalized() for m in mismatches))
    return [
        EstimationJob(network=n, mismatch=m, prior=p, estimator=e)
        for n, m, p, e in itertools.product(list(networks), unique_mismatches,
                                            list(priors), list(estimators))
    ]
