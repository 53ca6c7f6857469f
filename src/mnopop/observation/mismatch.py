"""
Model-mismatch transforms applied to signal measurements.

Two families perturb the signal level underlying each tile-cell link before
the logistic dominance transform is re-applied:

- noise:        signal + U(-k, k)            (k in dB)
- quantization: q * round(signal / q)        (q in dB)

Because dominance is a logistic function of signal level, both transforms
move dominance nonlinearly; combined with the minimum-dominance threshold
they can add or remove links. Level 0 of either family is the unperturbed
("true") model.
"""

from dataclasses import dataclass

import numpy as np

from ..utils.conversions import (
    signal_to_dominance, dominance_to_signal,
    DEFAULT_MIDPOINT, DEFAULT_STEEPNESS
)

NOISE_LEVELS = (0, 3, 6, 9, 12, 15, 18, 21)
QUANTIZATION_LEVELS = (0, 1, 2, 3, 4, 5, 10)

MISMATCH_KINDS = ('true', 'noise', 'quantization')


@dataclass(frozen=True)
class MismatchSpec:
    """
    Named model-mismatch transform.

    Parameters
    ----------
    kind : {'true', 'noise', 'quantization'}
        Transform family
    level : float
        Noise half-range k or quantization step q, in dB
    """
    kind: str = 'true'
    level: float = 0

    def __post_init__(self):
        if self.kind not in MISMATCH_KINDS:
            raise ValueError(f"Unknown mismatch kind {self.kind!r}. Choose from {MISMATCH_KINDS}")
        if self.level < 0:
            raise ValueError(f"Mismatch level must be non-negative, got {self.level}")

    def normalized(self):
        """Collapse the degenerate levels (k=0, q=0) onto 'true'."""
        if self.kind == 'true' or self.level == 0:
            return MismatchSpec('true', 0)
        return self

    @property
    def is_true(self):
        return self.normalized().kind == 'true'

    def label(self):
        spec = self.normalized()
        if spec.kind == 'true':
            return 'true'
        return f"{spec.kind}_{spec.level:g}"


def mismatch_grid(noise_levels=NOISE_LEVELS, quantization_levels=QUANTIZATION_LEVELS):
    """
    Enumerate the mismatch specs of a sweep.

    The 'true' baseline appears exactly once, however many zero levels the
    grids contain.

    Returns
    -------
    list of MismatchSpec
    """
    specs = [MismatchSpec('true', 0)]
    for k in noise_levels:
        if k != 0:
            specs.append(MismatchSpec('noise', k))
    for q in quantization_levels:
        if q != 0:
            specs.append(MismatchSpec('quantization', q))
    return specs


def perturb_signal(signal_dBm, spec, seed=None):
    """
    Apply a mismatch transform to signal levels.

    Parameters
    ----------
    signal_dBm : array-like
        Signal levels in dBm
    spec : MismatchSpec
        Transform to apply
    seed : int or numpy.random.Generator, optional
        Seed for the noise draw; identical seeds give identical output

    Returns
    -------
    ndarray
        Perturbed signal levels (a new array; the input is not modified)
    """
    signal_dBm = np.array(signal_dBm, dtype=float)
    spec = spec.normalized()

    if spec.kind == 'true':
        return signal_dBm
    if spec.kind == 'noise':
        rng = np.random.default_rng(seed)
        return signal_dBm + rng.uniform(-spec.level, spec.level, size=signal_dBm.shape)
    # quantization
    return spec.level * np.round(signal_dBm / spec.level)


def perturb_dominance(dominance, spec, midpoint=DEFAULT_MIDPOINT,
                      steepness=DEFAULT_STEEPNESS, seed=None):
    """
    Apply a mismatch transform to dominance values.

    Dominance is mapped back to signal level through the inverse logistic
    curve of the cell, perturbed, and mapped forward again. For the 'true'
    spec the input is returned unchanged (bit-identical).

    Parameters
    ----------
    dominance : array-like
        Dominance values in [0, 1]
    spec : MismatchSpec
        Transform to apply
    midpoint, steepness : float or array-like, optional
        Logistic parameters of the cell behind each value
    seed : int or numpy.random.Generator, optional
        Seed for the noise draw

    Returns
    -------
    ndarray
        Perturbed dominance values
    """
    dominance = np.array(dominance, dtype=float)
    if spec.is_true:
        return dominance
    signal = dominance_to_signal(dominance, midpoint, steepness)
    return signal_to_dominance(perturb_signal(signal, spec, seed=seed), midpoint, steepness)
