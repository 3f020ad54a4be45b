"""Display colors for bins and labels.

Bin colors approximate the perceived color of the bin's mean spectrum. When
band center wavelengths are known the spectrum is integrated against an
analytic fit of the CIE 1931 color matching functions; otherwise the bands
are split into three contiguous groups mapped to blue, green and red.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

import matplotlib
import numpy as np
from matplotlib import colors as mcolors

from distview.context import BandDesc

RGB = Tuple[float, float, float]

_XYZ_TO_SRGB = np.array(
    [
        [3.2406, -1.5372, -0.4986],
        [-0.9689, 1.8758, 0.0415],
        [0.0557, -0.2040, 1.0570],
    ]
)

VISIBLE_NM = (360.0, 830.0)


def _lobe(x: np.ndarray, mu: float, sigma_lo: float, sigma_hi: float) -> np.ndarray:
    sigma = np.where(x < mu, sigma_lo, sigma_hi)
    return np.exp(-0.5 * ((x - mu) / sigma) ** 2)


def cie_cmf(wavelengths: np.ndarray) -> np.ndarray:
    """Approximate CIE 1931 2-degree matching functions, shape (N, 3)."""
    wl = np.asarray(wavelengths, dtype=np.float64)
    x = 1.056 * _lobe(wl, 599.8, 37.9, 31.0) + 0.362 * _lobe(wl, 442.0, 16.0, 26.7) - 0.065 * _lobe(wl, 501.1, 20.4, 26.2)
    y = 0.821 * _lobe(wl, 568.8, 46.9, 40.5) + 0.286 * _lobe(wl, 530.9, 16.3, 31.1)
    z = 1.217 * _lobe(wl, 437.0, 11.8, 36.0) + 0.681 * _lobe(wl, 459.0, 26.0, 13.8)
    return np.stack([x, y, z], axis=1)


def _srgb_gamma(linear: np.ndarray) -> np.ndarray:
    linear = np.clip(linear, 0.0, 1.0)
    return np.where(linear <= 0.0031308, 12.92 * linear, 1.055 * np.power(linear, 1.0 / 2.4) - 0.055)


def _has_wavelengths(meta: Sequence[BandDesc], dims: int) -> bool:
    if len(meta) != dims or dims == 0:
        return False
    lo, hi = VISIBLE_NM
    return all(not band.empty and lo <= band.center <= hi for band in meta)


def spectrum_to_rgb(
    spectrum: Sequence[float],
    meta: Sequence[BandDesc],
    minval: float,
    maxval: float,
) -> RGB:
    """Return an sRGB color (0..1 per channel) for a mean spectrum.

    Parameters
    ----------
    spectrum : sequence of float
        Normalized mean vector of a bin.
    meta : sequence of BandDesc
        Band metadata; used when every band has a visible center wavelength.
    minval, maxval : float
        Value range used to scale the spectrum to 0..1.
    """
    values = np.asarray(spectrum, dtype=np.float64)
    span = float(maxval) - float(minval)
    scaled = (values - float(minval)) / span if span > 0 else np.zeros_like(values)
    scaled = np.clip(scaled, 0.0, 1.0)
    dims = scaled.shape[0]
    if dims == 0:
        return (0.0, 0.0, 0.0)

    if _has_wavelengths(meta, dims):
        cmf = cie_cmf(np.array([band.center for band in meta]))
        norm = cmf[:, 1].sum()
        xyz = scaled @ cmf / norm if norm > 0 else np.zeros(3)
        rgb = _srgb_gamma(_XYZ_TO_SRGB @ xyz)
    elif dims < 3:
        rgb = np.full(3, scaled.mean())
    else:
        groups = np.array_split(scaled, 3)
        # bands are ordered short to long wavelength: blue, green, red
        rgb = np.array([groups[2].mean(), groups[1].mean(), groups[0].mean()])
    r, g, b = (float(c) for c in np.clip(rgb, 0.0, 1.0))
    return (r, g, b)


def label_color(spec: object) -> RGB:
    """Convert any matplotlib color spec (name, hex, tuple) to an RGB tuple."""
    r, g, b = mcolors.to_rgb(spec)
    return (float(r), float(g), float(b))


def default_label_colors(count: int, cmap: str = "tab10", unlabeled: RGB = (1.0, 1.0, 1.0)) -> list:
    """Return ``count`` label colors; label 0 (unlabeled) gets ``unlabeled``."""
    if count <= 0:
        return []
    colormap = matplotlib.colormaps[cmap]
    out = [unlabeled]
    for i in range(1, count):
        out.append(label_color(colormap((i - 1) % colormap.N)))
    return out


def rgba_with_alpha(rgb: Optional[RGB], alpha: float) -> Tuple[float, float, float, float]:
    if rgb is None:
        rgb = (1.0, 1.0, 1.0)
    return (rgb[0], rgb[1], rgb[2], float(np.clip(alpha, 0.0, 1.0)))
