"""Discretization of continuous pixel vectors into histogram keys.

A key holds one unsigned byte per dimension, so at most 256 discretization
steps are supported. Binning and vertex placement both derive positions from
keys through these functions; they must never diverge in rounding.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

MAX_BINS = 256


def _check_params(binsize: float, nbins: int) -> None:
    if not 1 <= int(nbins) <= MAX_BINS:
        raise ValueError(f"nbins must be in 1..{MAX_BINS}, got {nbins}")
    if not binsize > 0:
        raise ValueError(f"binsize must be positive, got {binsize}")


def _steps(values: np.ndarray, minval: float, binsize: float, nbins: int) -> np.ndarray:
    shifted = (values.astype(np.float64, copy=False) - float(minval)) / float(binsize)
    steps = np.floor(shifted + 0.5)
    return np.clip(steps, 0, int(nbins) - 1).astype(np.uint8)


def discretize(pixel: Sequence[float], minval: float, binsize: float, nbins: int) -> bytes:
    """Map one pixel vector to its histogram key.

    Parameters
    ----------
    pixel : sequence of float
        Pixel vector of length D.
    minval : float
        Value mapped to step 0.
    binsize : float
        Width of one discretization step.
    nbins : int
        Number of steps (1..256).

    Returns
    -------
    bytes
        Key of length D, ``clamp(round((v - minval) / binsize), 0, nbins - 1)``
        per component.
    """
    _check_params(binsize, nbins)
    arr = np.asarray(pixel)
    if arr.ndim != 1:
        raise ValueError(f"pixel must be 1D, got shape {arr.shape}")
    return _steps(arr, minval, binsize, nbins).tobytes()


def discretize_many(pixels: np.ndarray, minval: float, binsize: float, nbins: int) -> np.ndarray:
    """Vectorized :func:`discretize` over an (N, D) array.

    Returns a ``uint8`` array of shape (N, D); ``row.tobytes()`` is the key of
    each pixel.
    """
    _check_params(binsize, nbins)
    arr = np.asarray(pixels)
    if arr.ndim != 2:
        raise ValueError(f"pixels must be 2D (N, D), got shape {arr.shape}")
    return _steps(arr, minval, binsize, nbins)


def key_to_array(key: bytes) -> np.ndarray:
    """Return the step indices of a key as an ``int64`` array."""
    return np.frombuffer(key, dtype=np.uint8).astype(np.int64)


def bin_center(key: bytes, minval: float, binsize: float) -> np.ndarray:
    """Value at the center of each step of ``key``."""
    return float(minval) + key_to_array(key) * float(binsize) + float(binsize) / 2.0
