"""Utility functions: configuration, conversions and error types."""

from .config import load_config, validate_config, DEFAULT_CONFIG
from .conversions import (
    signal_to_dominance, dominance_to_signal,
    DEFAULT_MIDPOINT, DEFAULT_STEEPNESS
)
from .errors import (
    PopulationInversionError,
    DataInconsistencyError,
    SolverFailureError,
    UncoveredTileWarning,
    NonConvergenceWarning,
    NonMonotoneLikelihoodWarning,
)

__all__ = [
    'load_config',
    'validate_config',
    'DEFAULT_CONFIG',
    'signal_to_dominance',
    'dominance_to_signal',
    'DEFAULT_MIDPOINT',
    'DEFAULT_STEEPNESS',
    'PopulationInversionError',
    'DataInconsistencyError',
    'SolverFailureError',
    'UncoveredTileWarning',
    'NonConvergenceWarning',
    'NonMonotoneLikelihoodWarning',
]
