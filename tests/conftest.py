import os

import matplotlib
import numpy as np
import pytest

from distview.binning import bin_image
from distview.colors import default_label_colors
from distview.context import BandDesc, make_context

if "CI" in os.environ:
    os.environ.setdefault("MPLBACKEND", "Agg")
matplotlib.use(os.environ.get("MPLBACKEND", "Agg"), force=True)


@pytest.fixture
def ctx3():
    """D=3, nbins=4, minval=0, binsize=1."""
    return make_context(3, 0.0, 4.0, 4)


@pytest.fixture
def spectral_ctx():
    """Six visible bands, 32 steps over 0..1."""
    meta = tuple(BandDesc(center=wl, name=f"{wl:g}nm") for wl in (450, 500, 550, 600, 650, 700))
    return make_context(6, 0.0, 1.0, 32, meta=meta, labels=("unlabeled", "leaf", "soil"))


@pytest.fixture
def random_image(spectral_ctx):
    """Pixels and labels for ``spectral_ctx`` with three labels."""
    rng = np.random.default_rng(1234)
    pixels = rng.random((3000, spectral_ctx.dimensionality))
    labels = rng.integers(0, 3, size=pixels.shape[0])
    return pixels, labels


@pytest.fixture
def spectral_sets(spectral_ctx, random_image):
    pixels, labels = random_image
    return bin_image(spectral_ctx, pixels, labels, default_label_colors(3))
