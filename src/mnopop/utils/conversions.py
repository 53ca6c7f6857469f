"""Conversions between signal level (dBm) and signal dominance."""

import numpy as np

# Default parameters of the logistic dominance curve
DEFAULT_MIDPOINT = -92.5
DEFAULT_STEEPNESS = 0.2

# Dominance is clipped to (eps, 1 - eps) before inverting the logistic curve
_DOMINANCE_EPS = 1e-12


def signal_to_dominance(signal_dBm, midpoint=DEFAULT_MIDPOINT, steepness=DEFAULT_STEEPNESS):
    """
    Convert signal level to signal dominance with a logistic curve.

        dominance = 1 / (1 + exp(-steepness * (signal - midpoint)))

    Parameters
    ----------
    signal_dBm : float or array-like
        Signal level in dBm
    midpoint : float or array-like, optional
        Signal level (dBm) at which dominance is 0.5, default: -92.5
    steepness : float or array-like, optional
        Slope of the logistic curve (1/dB), default: 0.2

    Returns
    -------
    float or ndarray
        Dominance in [0, 1]

    Examples
    --------
    >>> float(signal_to_dominance(-92.5))
    0.5
    >>> bool(signal_to_dominance(-60) > 0.99)
    True
    """
    signal_dBm = np.asarray(signal_dBm, dtype=float)
    return 1.0 / (1.0 + np.exp(-np.asarray(steepness) * (signal_dBm - np.asarray(midpoint))))


def dominance_to_signal(dominance, midpoint=DEFAULT_MIDPOINT, steepness=DEFAULT_STEEPNESS):
    """
    Invert :func:`signal_to_dominance`.

    Parameters
    ----------
    dominance : float or array-like
        Dominance in [0, 1]; values at the boundaries are clipped
    midpoint : float or array-like, optional
        Logistic midpoint (dBm)
    steepness : float or array-like, optional
        Logistic slope (1/dB)

    Returns
    -------
    float or ndarray
        Signal level in dBm

    Examples
    --------
    >>> float(dominance_to_signal(0.5))
    -92.5
    """
    dominance = np.clip(np.asarray(dominance, dtype=float), _DOMINANCE_EPS, 1 - _DOMINANCE_EPS)
    logit = np.log(dominance / (1 - dominance))
    return np.asarray(midpoint) + logit / np.asarray(steepness)
