"""Matplotlib drawing of vertex buffers, decoupled from any window.

Used for screenshots and offline inspection: each polyline of a
:class:`~distview.compute.VertexBuffer` becomes one segment of a
``LineCollection`` across the dimension axes.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence, Union

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.collections import LineCollection

from distview.compute import VertexBuffer
from distview.context import ViewportCtx


def draw_parallel_coordinates(
    ax,
    vb: VertexBuffer,
    context: Optional[ViewportCtx] = None,
    axis_labels: Optional[Sequence[str]] = None,
    linewidth: float = 0.8,
    background: str = "black",
) -> LineCollection:
    """Draw every polyline of ``vb`` into ``ax``.

    Parameters
    ----------
    ax : matplotlib.axes.Axes
        Target axes.
    vb : VertexBuffer
        Buffer filled by ``store_vertices``.
    context : ViewportCtx, optional
        Sets the y range to ``minval..maxval`` and band names on the x axis.
    axis_labels : sequence of str, optional
        Explicit x tick labels; overrides names from ``context``.

    Returns
    -------
    matplotlib.collections.LineCollection
        The added collection.
    """
    lines = LineCollection(list(vb.polylines()), linewidths=linewidth)
    if vb.bin_count:
        lines.set_color(vb.polyline_colors())
    ax.add_collection(lines)
    ax.set_facecolor(background)
    dims = vb.dimensionality
    if dims:
        ax.set_xlim(-0.5, dims - 0.5)
        ax.set_xticks(np.arange(dims))
        for d in range(dims):
            ax.axvline(d, color="0.5", linewidth=0.5, zorder=0)
    if context is not None and context.minval_valid and context.maxval_valid:
        ax.set_ylim(context.minval, context.maxval)
    elif vb.bin_count:
        ax.autoscale_view()
    names = axis_labels
    if names is None and context is not None and context.meta_valid:
        names = [band.name or f"{band.center:g}" for band in context.meta]
    if names is not None and dims:
        ax.set_xticklabels(list(names)[:dims], rotation=90)
    return lines


def save_screenshot(
    path: Union[str, Path],
    vb: VertexBuffer,
    context: Optional[ViewportCtx] = None,
    size: Sequence[float] = (10.0, 5.0),
    dpi: int = 100,
) -> Path:
    """Render ``vb`` to an image file and return its path."""
    out = Path(path)
    fig, ax = plt.subplots(figsize=tuple(size), dpi=dpi)
    try:
        draw_parallel_coordinates(ax, vb, context)
        fig.tight_layout()
        fig.savefig(out)
    finally:
        plt.close(fig)
    return out
