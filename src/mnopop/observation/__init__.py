"""
Observation model construction.

Turns per-tile, per-cell signal measurements into the sparse
connection-likelihood matrix P (cells x tiles) and the observed count
vector c, optionally under a model-mismatch transform, and aggregates
tiles into supertiles.
"""

from .mismatch import (
    MismatchSpec,
    mismatch_grid,
    perturb_signal,
    perturb_dominance,
    NOISE_LEVELS,
    QUANTIZATION_LEVELS,
)
from .model import (
    ObservationModel,
    build_observation_model,
    observation_model_from_matrix,
    apply_dominance_threshold,
    find_uncovered_tiles,
)
from .supertiles import (
    SupertileMapping,
    make_supertile_mapping,
    block_supertiles,
    aggregate,
    aggregate_prior,
    disaggregate,
)

__all__ = [
    # Mismatch
    'MismatchSpec',
    'mismatch_grid',
    'perturb_signal',
    'perturb_dominance',
    'NOISE_LEVELS',
    'QUANTIZATION_LEVELS',

    # Builder
    'ObservationModel',
    'build_observation_model',
    'observation_model_from_matrix',
    'apply_dominance_threshold',
    'find_uncovered_tiles',

    # Supertiles
    'SupertileMapping',
    'make_supertile_mapping',
    'block_supertiles',
    'aggregate',
    'aggregate_prior',
    'disaggregate',
]
