"""
Population estimators.

Iterative (EM and damped fixed-point) and convex maximum-likelihood
inversion of an observation model, plus the focus-region profile sweep.
"""

from .likelihood import log_likelihood, expected_counts, check_support
from .priors import PriorSpec, uniform_prior, informative_prior, validate_prior
from .results import EstimationResult
from .em import em_step, initial_estimate, run_em
from .df import run_df, relaxation_factor
from .convex import (
    ConvexResult,
    solve_convex_mle,
    estimate_convex,
    align_with_em,
    check_convex_optimality,
    default_solver,
    map_status,
)
from .focus import (
    ProfilePoint,
    focus_region_vector,
    focus_grid,
    profile_focus_region,
    profile_to_frame,
)

__all__ = [
    # Likelihood
    'log_likelihood',
    'expected_counts',
    'check_support',

    # Priors
    'PriorSpec',
    'uniform_prior',
    'informative_prior',
    'validate_prior',

    # Iterative estimators
    'EstimationResult',
    'em_step',
    'initial_estimate',
    'run_em',
    'run_df',
    'relaxation_factor',

    # Convex
    'ConvexResult',
    'solve_convex_mle',
    'estimate_convex',
    'align_with_em',
    'check_convex_optimality',
    'default_solver',
    'map_status',

    # Focus region
    'ProfilePoint',
    'focus_region_vector',
    'focus_grid',
    'profile_focus_region',
    'profile_to_frame',
]
