"""Shared toy worlds for the test suite."""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from mnopop.observation import observation_model_from_matrix


@pytest.fixture
def toy_2x2():
    """Tiles 1, 2 x cells 1, 2 with c = [10, 10]; MLE is u = [40/3, 20/3]."""
    return observation_model_from_matrix([[0.6, 0.4], [0.3, 0.7]], [10, 10])


@pytest.fixture
def toy_5x2():
    """Five tiles, two cells; tile 5 only reaches cell 2."""
    P = [
        [0.9, 0.1],
        [0.7, 0.3],
        [0.5, 0.5],
        [0.2, 0.8],
        [0.0, 1.0],
    ]
    return observation_model_from_matrix(P, [30, 20])


@pytest.fixture
def stochastic_model():
    """Random tile-stochastic model (every tile's weights sum to one)."""
    rng = np.random.default_rng(7)
    W = rng.uniform(0.05, 1.0, size=(8, 4))
    W = W / W.sum(axis=1, keepdims=True)
    counts = rng.integers(5, 50, size=4)
    return observation_model_from_matrix(W, counts)


@pytest.fixture
def dominance_links():
    """Link table over three tiles and two cells; tile 3 is weakly served."""
    return pd.DataFrame({
        'tile': [1, 1, 2, 2, 3, 3],
        'cell': [1, 2, 1, 2, 1, 2],
        'dominance': [0.9, 0.1, 0.5, 0.5, 0.02, 0.01],
    })


@pytest.fixture
def signal_links():
    """Integer signal levels (dBm) over four tiles and two cells."""
    return pd.DataFrame({
        'tile': [1, 1, 2, 2, 3, 3, 4, 4],
        'cell': [1, 2, 1, 2, 1, 2, 1, 2],
        'signal': [-80.0, -95.0, -87.0, -91.0, -97.0, -83.0, -104.0, -78.0],
    })


@pytest.fixture
def fractional_signal_links():
    """
    Non-integer signal levels (dBm) over 1000 tiles and four cells.

    Levels stay within [-102, -83] dBm so that no quantization step up to
    10 dB pushes a link below the default dominance threshold.
    """
    rng = np.random.default_rng(11)
    n_tiles, n_cells = 1000, 4
    return pd.DataFrame({
        'tile': np.repeat(np.arange(1, n_tiles + 1), n_cells),
        'cell': np.tile(np.arange(1, n_cells + 1), n_tiles),
        'signal': rng.uniform(-102.0, -83.0, size=n_tiles * n_cells),
    })
