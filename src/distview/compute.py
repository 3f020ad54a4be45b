"""Range reduction and vertex generation for parallel-coordinates drawing.

Redraw runs in two passes over the histogram collection:

1. :func:`prepare_polylines` reduces every label histogram in parallel with
   :class:`PreprocessBins`. Bins below the weight threshold or outside the
   valid step range are left out; survivors go into a flat :class:`BinIndex`
   and widen the per-label occupancy ranges (``boundary``).
2. :func:`store_vertices` expands the index into a :class:`VertexBuffer` with
   :class:`GenerateVertices`. Entry ``i`` owns vertex slots
   ``i*D .. i*D + D - 1``, so workers never write to the same slots.

Invariants
----------
- The first pass completes for all labels before the second one starts.
- Histogram bins are never deleted here; filtering only shapes the output.
- A non-zero return code from :func:`store_vertices` leaves the buffer empty.
"""

from __future__ import annotations

import math
import random
import threading
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

from distview.binset import EMPTY_BOUNDARY, Bin, BinSet, HashKey
from distview.colors import rgba_with_alpha, spectrum_to_rgb
from distview.context import BandDesc, ViewportCtx
from distview.discretize import bin_center
from distview.logger import get_logger
from distview.parallel import WorkerPool
from distview.stale_result_guard import EpochGuard

LOGGER = get_logger(__name__)

INT_MAX = 2**31 - 1
INT_MIN = -(2**31)

ERR_OK = 0
ERR_DIMENSIONALITY = 1
ERR_BUFFER_SIZE = 2
ERR_MISSING_BIN = 3

IndexEntry = Tuple[int, HashKey]
Limiters = Sequence[Tuple[int, int]]


class BinIndex:
    """Append-only list of ``(label, key)`` pairs, safe for concurrent appends.

    The index is frozen once vertex generation consumes it; later appends
    raise ``RuntimeError``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: List[IndexEntry] = []
        self._frozen = False

    def extend(self, entries: Sequence[IndexEntry]) -> None:
        if not entries:
            return
        with self._lock:
            if self._frozen:
                raise RuntimeError("bin index is frozen")
            self._entries.extend(entries)

    def append(self, entry: IndexEntry) -> None:
        self.extend([entry])

    def shuffle(self, seed: Optional[int]) -> None:
        """Shuffle in place; with a seed the result does not depend on insertion order."""
        with self._lock:
            if self._frozen:
                raise RuntimeError("bin index is frozen")
            if seed is not None:
                self._entries.sort()
            random.Random(seed).shuffle(self._entries)

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __getitem__(self, i: int) -> IndexEntry:
        return self._entries[i]

    def __iter__(self) -> Iterator[IndexEntry]:
        with self._lock:
            return iter(list(self._entries))


class VertexBuffer:
    """Preallocated vertex storage handed to the renderer.

    Attributes
    ----------
    positions : numpy.ndarray
        ``float32`` (capacity, 2): x is the dimension index, y the value.
    colors : numpy.ndarray
        ``float32`` (capacity, 4): RGBA per vertex.
    labels : numpy.ndarray
        ``int32`` (capacity,): label id per vertex.
    bin_count : int
        Number of polylines written by the last successful pass.
    dimensionality : int
        Vertices per polyline for the last successful pass.
    """

    def __init__(self, capacity: int = 0) -> None:
        self.positions = np.zeros((0, 2), dtype=np.float32)
        self.colors = np.zeros((0, 4), dtype=np.float32)
        self.labels = np.zeros(0, dtype=np.int32)
        self.bin_count = 0
        self.dimensionality = 0
        if capacity:
            self.allocate(capacity)

    @property
    def capacity(self) -> int:
        return int(self.positions.shape[0])

    def allocate(self, n_vertices: int) -> None:
        """Ensure room for ``n_vertices`` vertices (never shrinks)."""
        if n_vertices <= self.capacity:
            return
        self.positions = np.zeros((n_vertices, 2), dtype=np.float32)
        self.colors = np.zeros((n_vertices, 4), dtype=np.float32)
        self.labels = np.zeros(n_vertices, dtype=np.int32)

    def clear(self) -> None:
        self.bin_count = 0
        self.dimensionality = 0

    @property
    def vertex_count(self) -> int:
        return self.bin_count * self.dimensionality

    def polylines(self) -> np.ndarray:
        """Positions as (bin_count, D, 2), one line strip per bin."""
        n = self.vertex_count
        return self.positions[:n].reshape(self.bin_count, self.dimensionality, 2)

    def polyline_colors(self) -> np.ndarray:
        """RGBA of the first vertex of each polyline, (bin_count, 4)."""
        n = self.vertex_count
        if self.dimensionality == 0:
            return self.colors[:0]
        return self.colors[:n:self.dimensionality]


class PreprocessBins:
    """Reduction body filtering one label's bins into the flat index.

    Parameters
    ----------
    label : int
        Label id written into index entries.
    dimensionality : int
        Number of dimensions D.
    nbins : int
        Steps per dimension; keys at or above it are out of range.
    minval, maxval : float
        Value range, used for bin colors.
    meta : sequence of BandDesc
        Band metadata, used for bin colors.
    index : BinIndex
        Shared index receiving surviving entries.
    min_weight : float
        Bins with a smaller weight are skipped.
    limiters : sequence of (int, int), optional
        Inclusive per-dimension step range; bins outside are skipped.
    """

    def __init__(
        self,
        label: int,
        dimensionality: int,
        nbins: int,
        minval: float,
        maxval: float,
        meta: Sequence[BandDesc],
        index: BinIndex,
        min_weight: float = 1.0,
        limiters: Optional[Limiters] = None,
    ) -> None:
        self.label = label
        self.dimensionality = dimensionality
        self.nbins = nbins
        self.minval = minval
        self.maxval = maxval
        self.meta = meta
        self.index = index
        self.min_weight = min_weight
        self.limiters = limiters
        if limiters is not None:
            if len(limiters) != dimensionality:
                raise ValueError(f"need {dimensionality} limiters, got {len(limiters)}")
            self._lim_lo = np.array([lo for lo, _ in limiters], dtype=np.int64)
            self._lim_hi = np.array([hi for _, hi in limiters], dtype=np.int64)
        self._lo = np.full(dimensionality, INT_MAX, dtype=np.int64)
        self._hi = np.full(dimensionality, INT_MIN, dtype=np.int64)
        self.accepted = 0

    def _in_range(self, steps: np.ndarray) -> bool:
        if self.limiters is not None:
            return bool(((steps >= self._lim_lo) & (steps <= self._lim_hi)).all())
        return True

    def __call__(self, chunk: Sequence[Tuple[HashKey, Bin]]) -> None:
        pending: List[IndexEntry] = []
        for key, b in chunk:
            if b.weight <= 0:
                continue
            steps = np.frombuffer(key, dtype=np.uint8).astype(np.int64)
            if steps.size != self.dimensionality:
                if b.weight >= self.min_weight:
                    # keep it so vertex generation reports the mismatch
                    pending.append((self.label, key))
                continue
            if (steps >= self.nbins).any():
                continue
            # populated range, independent of threshold and limiters
            np.minimum(self._lo, steps, out=self._lo)
            np.maximum(self._hi, steps, out=self._hi)
            if b.weight < self.min_weight or not self._in_range(steps):
                continue
            pending.append((self.label, key))
            if b.means.size == self.dimensionality:
                b.rgb = spectrum_to_rgb(b.mean(), self.meta, self.minval, self.maxval)
        self.accepted += len(pending)
        self.index.extend(pending)

    def split(self) -> "PreprocessBins":
        return PreprocessBins(
            self.label,
            self.dimensionality,
            self.nbins,
            self.minval,
            self.maxval,
            self.meta,
            self.index,
            self.min_weight,
            self.limiters,
        )

    def join(self, other: "PreprocessBins") -> None:
        np.minimum(self._lo, other._lo, out=self._lo)
        np.maximum(self._hi, other._hi, out=self._hi)
        self.accepted += other.accepted

    def ranges(self) -> List[Tuple[int, int]]:
        return [(int(lo), int(hi)) for lo, hi in zip(self._lo, self._hi)]

    def boundary(self) -> List[Tuple[int, int]]:
        """Populated ranges, or ``(255, 0)`` per dimension when the label is empty."""
        if (self._lo > self._hi).any():
            return [EMPTY_BOUNDARY] * self.dimensionality
        return self.ranges()


def prepare_polylines(
    context: ViewportCtx,
    sets: Sequence[BinSet],
    index: BinIndex,
    pool: Optional[WorkerPool] = None,
    chunk_size: int = 4096,
    min_weight: float = 1.0,
    limiters: Optional[Limiters] = None,
    shuffle: bool = True,
    shuffle_seed: Optional[int] = 0,
    guard: Optional[EpochGuard] = None,
    assign_boundaries: bool = True,
) -> List[List[Tuple[int, int]]]:
    """Filter all label histograms into ``index`` and update their boundaries.

    Boundaries are written only after every label has been reduced and the
    epoch is still current; a stale pass raises StaleEpochError and leaves the
    histograms untouched. With ``assign_boundaries=False`` they are only
    returned, and the caller writes them once its own work is committed.

    Returns
    -------
    list of list of (int, int)
        Per-label occupancy ranges.
    """
    if not context.dimensionality_valid:
        raise ValueError("viewport context has no valid dimensionality")
    pool = pool or WorkerPool(1)
    boundaries: List[List[Tuple[int, int]]] = []
    for label, binset in enumerate(sets):
        if guard is not None:
            guard.check()
        body = PreprocessBins(
            label,
            context.dimensionality,
            context.nbins,
            context.minval,
            context.maxval,
            context.meta,
            index,
            min_weight=min_weight,
            limiters=limiters,
        )
        pool.parallel_reduce(body, binset.bins.chunks(chunk_size), guard)
        boundaries.append(body.boundary())
        LOGGER.debug("Label %d: %d of %d bins accepted", label, body.accepted, len(binset))
    if guard is not None:
        guard.check()
    if assign_boundaries:
        assign_boundary_ranges(sets, boundaries)
    if shuffle:
        index.shuffle(shuffle_seed)
    LOGGER.info("Preprocessed %d labels, %d bins survive", len(sets), len(index))
    return boundaries


def assign_boundary_ranges(sets: Sequence[BinSet], boundaries: Sequence[Sequence[Tuple[int, int]]]) -> None:
    for binset, boundary in zip(sets, boundaries):
        binset.boundary = list(boundary)


def _alpha(weight: float, total: int, user_alpha: float) -> float:
    if total <= 1:
        return user_alpha
    return user_alpha * (0.01 + 0.99 * math.log(weight + 1.0) / math.log(total + 1.0))


class GenerateVertices:
    """Expansion body writing ``D`` vertices for each index entry in a block."""

    def __init__(
        self,
        draw_means: bool,
        dimensionality: int,
        minval: float,
        maxval: float,
        binsize: float,
        illuminant: Optional[np.ndarray],
        sets: Sequence[BinSet],
        index: BinIndex,
        vb: VertexBuffer,
        meta: Sequence[BandDesc] = (),
        color_by_label: bool = False,
        user_alpha: float = 1.0,
    ) -> None:
        self.draw_means = draw_means
        self.dimensionality = dimensionality
        self.minval = minval
        self.maxval = maxval
        self.binsize = binsize
        self.illuminant = illuminant
        self.sets = sets
        self.index = index
        self.vb = vb
        self.meta = meta
        self.color_by_label = color_by_label
        self.user_alpha = user_alpha
        self._xs = np.arange(dimensionality, dtype=np.float32)

    def __call__(self, start: int, stop: int) -> None:
        dims = self.dimensionality
        for i in range(start, stop):
            label, key = self.index[i]
            binset = self.sets[label]
            b = binset.bins.find(key)
            if self.draw_means and b.weight > 0:
                y = b.means / b.weight
            else:
                y = bin_center(key, self.minval, self.binsize)
            if self.illuminant is not None:
                y = y - self.illuminant
            if self.color_by_label:
                rgb = binset.label
            else:
                if b.rgb is None:
                    b.rgb = spectrum_to_rgb(b.mean(), self.meta, self.minval, self.maxval)
                rgb = b.rgb
            lo = i * dims
            hi = lo + dims
            self.vb.positions[lo:hi, 0] = self._xs
            self.vb.positions[lo:hi, 1] = y
            self.vb.colors[lo:hi] = rgba_with_alpha(rgb, _alpha(b.weight, binset.total_weight, self.user_alpha))
            self.vb.labels[lo:hi] = label


def validate_index(context: ViewportCtx, sets: Sequence[BinSet], index: BinIndex) -> int:
    """Check every index entry against the context before anything is written."""
    if not context.dimensionality_valid or context.dimensionality <= 0:
        return ERR_DIMENSIONALITY
    dims = context.dimensionality
    for label, key in index:
        if len(key) != dims:
            return ERR_DIMENSIONALITY
        if not 0 <= label < len(sets):
            return ERR_MISSING_BIN
        b = sets[label].bins.find(key)
        if b is None:
            return ERR_MISSING_BIN
        if b.means.size != dims:
            return ERR_DIMENSIONALITY
    return ERR_OK


def store_vertices(
    context: ViewportCtx,
    sets: Sequence[BinSet],
    index: BinIndex,
    vb: VertexBuffer,
    draw_means: bool = True,
    illuminant_correction: bool = False,
    illuminant: Optional[Sequence[float]] = None,
    pool: Optional[WorkerPool] = None,
    chunk_size: int = 4096,
    allocate: bool = True,
    color_by_label: bool = False,
    user_alpha: float = 1.0,
    guard: Optional[EpochGuard] = None,
) -> int:
    """Fill ``vb`` with one line strip of ``D`` vertices per index entry.

    Parameters
    ----------
    draw_means : bool
        Plot the normalized mean vector instead of the bin centers.
    illuminant_correction : bool
        Subtract ``illuminant`` per dimension when it is given.
    allocate : bool
        Grow ``vb`` as needed; when False a too small buffer is an error.

    Returns
    -------
    int
        ``ERR_OK`` on success, otherwise one of ``ERR_DIMENSIONALITY``,
        ``ERR_BUFFER_SIZE`` or ``ERR_MISSING_BIN``. On error the buffer is
        left empty.
    """
    vb.clear()
    code = validate_index(context, sets, index)
    if code != ERR_OK:
        LOGGER.warning("Vertex generation aborted (code %d)", code)
        return code
    dims = context.dimensionality
    illum = None
    if illuminant_correction and illuminant is not None and len(illuminant) > 0:
        illum = np.asarray(illuminant, dtype=np.float64)
        if illum.shape != (dims,):
            LOGGER.warning("Illuminant has %d entries, expected %d", illum.size, dims)
            return ERR_DIMENSIONALITY
    required = len(index) * dims
    if allocate:
        vb.allocate(required)
    elif vb.capacity < required:
        LOGGER.warning("Vertex buffer holds %d vertices, %d required", vb.capacity, required)
        return ERR_BUFFER_SIZE

    index.freeze()
    generate = GenerateVertices(
        draw_means,
        dims,
        context.minval,
        context.maxval,
        context.binsize,
        illum,
        sets,
        index,
        vb,
        meta=context.meta,
        color_by_label=color_by_label,
        user_alpha=user_alpha,
    )
    (pool or WorkerPool(1)).parallel_for(len(index), generate, chunk_size, guard)
    vb.bin_count = len(index)
    vb.dimensionality = dims
    return ERR_OK
