"""
Evaluation adapters.
"""

from .transport import (
    to_tile_vector,
    build_transport_inputs,
    transport_inputs_to_frame,
    GROUND_TRUTH_COLUMN,
)

__all__ = [
    'to_tile_vector',
    'build_transport_inputs',
    'transport_inputs_to_frame',
    'GROUND_TRUTH_COLUMN',
]
