"""
Population Inversion from Mobile Network Operator Data

This package estimates how many devices are present in each tile of a
spatial grid from the number of devices connected to each cell of a radio
network. The sparse observation model linking tiles to cells is inverted
with expectation-maximization, a damped fixed-point variant, or an exact
convex maximum-likelihood solve, under deliberate model mismatch
(noise and quantization of the signal measurements).
"""

__version__ = "1.0.0"
