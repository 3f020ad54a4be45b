"""Tabular export of label histograms for diagnostics."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence, Union

import numpy as np
import pandas as pd

from distview.binset import BinSet
from distview.context import ViewportCtx


def _band_names(context: ViewportCtx) -> list:
    if context.meta_valid and len(context.meta) == context.dimensionality:
        return [band.name or f"band_{d}" for d, band in enumerate(context.meta)]
    return [f"band_{d}" for d in range(context.dimensionality)]


def bins_to_dataframe(sets: Sequence[BinSet], context: ViewportCtx) -> pd.DataFrame:
    """Return one row per bin: label, label name, key, weight and mean per band.

    Rows are sorted by label and key. Bins with zero weight are included.
    """
    bands = _band_names(context)
    rows = []
    for label, binset in enumerate(sets):
        name = context.labels[label] if context.labels_valid and label < len(context.labels) else str(label)
        for key, b in sorted(binset.bins.items(), key=lambda item: item[0]):
            mean = b.mean() if b.means.size else np.full(len(bands), np.nan)
            row = {"label": label, "label_name": name, "key": tuple(key), "weight": b.weight}
            row.update({band: float(v) for band, v in zip(bands, mean)})
            rows.append(row)
    columns = ["label", "label_name", "key", "weight", *bands]
    return pd.DataFrame(rows, columns=columns)


def boundaries_to_dataframe(sets: Sequence[BinSet], context: ViewportCtx) -> pd.DataFrame:
    """Return per-label occupancy ranges as (label, band, min, max) rows."""
    bands = _band_names(context)
    rows = [
        {"label": label, "band": bands[d], "min": lo, "max": hi}
        for label, binset in enumerate(sets)
        for d, (lo, hi) in enumerate(binset.boundary)
    ]
    return pd.DataFrame(rows, columns=["label", "band", "min", "max"])


def save_bins_csv(path: Union[str, Path], sets: Sequence[BinSet], context: ViewportCtx) -> Path:
    """Write :func:`bins_to_dataframe` to CSV."""
    out = Path(path)
    bins_to_dataframe(sets, context).to_csv(out, index=False)
    return out
