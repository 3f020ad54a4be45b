"""Bulk and incremental maintenance of label histograms.

Pixels arrive as rows of an (N, D) array together with a label id per row.
:func:`bin_image` builds a fresh histogram collection from scratch;
:func:`apply_label_change` and :func:`apply_events` update an existing
collection when the labeling subsystem moves pixels between labels.

Cancellation leaves mutations that already happened in place; they remain
valid histogram content.
"""

from __future__ import annotations

import enum
from typing import Iterable, List, NamedTuple, Optional, Sequence

import numpy as np

from distview.binset import RGB, BinSet, make_sets
from distview.context import ViewportCtx
from distview.discretize import discretize, discretize_many
from distview.logger import get_logger
from distview.parallel import WorkerPool
from distview.stale_result_guard import EpochGuard

LOGGER = get_logger(__name__)


class PixelOp(str, enum.Enum):
    ADD = "add"
    REMOVE = "remove"


class PixelEvent(NamedTuple):
    """One labeling change: fold ``pixel`` into or out of ``label``."""

    pixel: Sequence[float]
    label: int
    op: PixelOp


def _check_context(context: ViewportCtx) -> None:
    if not context.valid:
        raise ValueError("viewport context is incomplete (dimensionality/binsize/minval/maxval)")


def _check_pixels(context: ViewportCtx, pixels: np.ndarray) -> np.ndarray:
    arr = np.asarray(pixels)
    if arr.ndim != 2 or arr.shape[1] != context.dimensionality:
        raise ValueError(
            f"pixels must have shape (N, {context.dimensionality}), got {arr.shape}"
        )
    return arr


def _check_labels(labels: np.ndarray, n_pixels: int, n_sets: int) -> np.ndarray:
    lab = np.asarray(labels, dtype=np.int64)
    if lab.shape != (n_pixels,):
        raise ValueError(f"labels must have shape ({n_pixels},), got {lab.shape}")
    if lab.size and (lab.min() < 0 or lab.max() >= n_sets):
        raise IndexError(f"label ids must be in 0..{n_sets - 1}")
    return lab


def bin_image(
    context: ViewportCtx,
    pixels: np.ndarray,
    labels: Optional[np.ndarray],
    label_colors: Sequence[RGB],
    pool: Optional[WorkerPool] = None,
    chunk_size: int = 4096,
    guard: Optional[EpochGuard] = None,
) -> List[BinSet]:
    """Build one histogram per label from all pixels of an image.

    Parameters
    ----------
    context : ViewportCtx
        Valid context providing dimensionality and discretization.
    pixels : numpy.ndarray
        Pixel vectors, shape (N, D).
    labels : numpy.ndarray or None
        Label id per pixel, shape (N,). ``None`` puts every pixel in label 0.
    label_colors : sequence of RGB
        One color per label; sizes the returned collection.
    pool : WorkerPool, optional
        Pool for parallel insertion; inline when omitted.
    chunk_size : int
        Pixels per task; cancellation is checked per chunk.
    guard : EpochGuard, optional
        Raises StaleEpochError when the build is superseded.
    """
    _check_context(context)
    arr = _check_pixels(context, pixels)
    if not label_colors:
        raise ValueError("at least one label color is required")
    sets = make_sets(label_colors, context.dimensionality)
    n = arr.shape[0]
    if labels is None or context.ignore_labels:
        lab = np.zeros(n, dtype=np.int64)
    else:
        lab = _check_labels(labels, n, len(sets))
    keys = discretize_many(arr, context.minval, context.binsize, context.nbins)

    def body(start: int, stop: int) -> None:
        for i in range(start, stop):
            sets[lab[i]].add(keys[i].tobytes(), arr[i])

    (pool or WorkerPool(1)).parallel_for(n, body, chunk_size, guard)
    LOGGER.info(
        "Binned %d pixels into %d labels (%d bins)",
        n,
        len(sets),
        sum(len(s) for s in sets),
    )
    return sets


def apply_label_change(
    sets: List[BinSet],
    context: ViewportCtx,
    pixels: np.ndarray,
    old_labels: np.ndarray,
    new_labels: np.ndarray,
    pool: Optional[WorkerPool] = None,
    chunk_size: int = 4096,
    guard: Optional[EpochGuard] = None,
) -> int:
    """Move pixels from their old label histogram to the new one.

    Returns the number of pixels that changed label. Nothing happens while
    labels are ignored, since every pixel lives in label 0 then.
    """
    _check_context(context)
    arr = _check_pixels(context, pixels)
    n = arr.shape[0]
    old = _check_labels(old_labels, n, len(sets))
    new = _check_labels(new_labels, n, len(sets))
    if context.ignore_labels:
        return 0
    changed = np.flatnonzero(old != new)
    if changed.size == 0:
        return 0
    keys = discretize_many(arr[changed], context.minval, context.binsize, context.nbins)

    def body(start: int, stop: int) -> None:
        for j in range(start, stop):
            i = changed[j]
            key = keys[j].tobytes()
            sets[old[i]].sub(key, arr[i])
            sets[new[i]].add(key, arr[i])

    (pool or WorkerPool(1)).parallel_for(int(changed.size), body, chunk_size, guard)
    LOGGER.info("Relabeled %d pixels", changed.size)
    return int(changed.size)


def apply_events(
    sets: List[BinSet],
    context: ViewportCtx,
    events: Iterable[PixelEvent],
    guard: Optional[EpochGuard] = None,
    check_every: int = 4096,
) -> int:
    """Apply add/remove events in order; returns the number applied.

    Events are applied sequentially since a remove must follow its add.
    """
    _check_context(context)
    count = 0
    for event in events:
        if guard is not None and count % max(1, check_every) == 0:
            guard.check()
        label = 0 if context.ignore_labels else int(event.label)
        if not 0 <= label < len(sets):
            raise IndexError(f"label {label} outside 0..{len(sets) - 1}")
        key = discretize(event.pixel, context.minval, context.binsize, context.nbins)
        if len(key) != context.dimensionality:
            raise ValueError(f"pixel has {len(key)} dimensions, expected {context.dimensionality}")
        op = PixelOp(event.op)
        if op is PixelOp.ADD:
            sets[label].add(key, event.pixel)
        else:
            sets[label].sub(key, event.pixel)
        count += 1
    return count
