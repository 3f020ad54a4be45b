"""Sparse per-label histograms of discretized pixel vectors.

Each label owns a :class:`BinSet`: a concurrent map from a discretized key to
a :class:`Bin`. Bins accumulate the unnormalized sum of all pixel vectors that
fall into them together with the pixel count; the mean is only formed when it
is read.

Concurrency
-----------
- The bin map is split into shards, each guarded by its own lock, so updates
  to keys in different shards never block each other.
- ``total_weight`` is an independent atomic counter and is not covered by the
  shard locks.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

HashKey = bytes
RGB = Tuple[float, float, float]

EMPTY_BOUNDARY = (255, 0)
DEFAULT_SHARDS = 64


class Bin:
    """Accumulator for all pixels sharing one discretized key."""

    __slots__ = ("weight", "means", "rgb")

    def __init__(self) -> None:
        self.weight = 0.0
        self.means = np.zeros(0, dtype=np.float64)
        # Display color of the mean vector; refreshed during preprocessing.
        self.rgb: Optional[RGB] = None

    def add(self, pixel: Sequence[float]) -> None:
        """Fold one pixel vector into the bin."""
        p = np.asarray(pixel, dtype=np.float64)
        if self.means.size == 0:
            self.means = np.zeros(p.shape[0], dtype=np.float64)
        elif p.shape[0] != self.means.size:
            raise ValueError(f"pixel has {p.shape[0]} dimensions, bin holds {self.means.size}")
        # sum before weight: readers divide means by weight without the lock
        self.means += p
        self.weight += 1.0

    def sub(self, pixel: Sequence[float]) -> None:
        """Remove one previously added pixel vector from the bin."""
        assert self.means.size != 0, "sub() on a bin that never received a pixel"
        p = np.asarray(pixel, dtype=np.float64)
        if p.shape[0] != self.means.size:
            raise ValueError(f"pixel has {p.shape[0]} dimensions, bin holds {self.means.size}")
        self.means -= p
        self.weight -= 1.0

    def mean(self) -> np.ndarray:
        """Normalized mean vector (``means / weight``)."""
        if self.weight <= 0:
            return np.zeros_like(self.means)
        return self.means / self.weight

    def __repr__(self) -> str:
        return f"Bin(weight={self.weight:g}, dims={self.means.size})"


class AtomicCounter:
    """Integer counter with atomic add and read."""

    def __init__(self, value: int = 0) -> None:
        self._lock = threading.Lock()
        self._value = int(value)

    def add(self, delta: int) -> int:
        with self._lock:
            self._value += int(delta)
            return self._value

    def set(self, value: int) -> None:
        with self._lock:
            self._value = int(value)

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


class ShardedBinMap:
    """Concurrent ``key -> Bin`` map with per-shard exclusive access.

    Notes
    -----
    Lookups and inserts are amortized O(1). Iteration takes each shard lock
    in turn and returns a point-in-time list of that shard's entries, so it is
    safe to iterate while other threads update unrelated keys.
    """

    def __init__(self, shards: int = DEFAULT_SHARDS) -> None:
        self._shards: List[Dict[HashKey, Bin]] = [{} for _ in range(max(1, shards))]
        self._locks = [threading.Lock() for _ in self._shards]

    def _slot(self, key: HashKey) -> int:
        return hash(key) % len(self._shards)

    @contextmanager
    def accessor(self, key: HashKey, create: bool = True) -> Iterator[Optional[Bin]]:
        """Hold exclusive access to the bin for ``key``.

        With ``create=True`` a missing bin is inserted; otherwise ``None`` is
        yielded for a missing key.
        """
        slot = self._slot(key)
        with self._locks[slot]:
            shard = self._shards[slot]
            b = shard.get(key)
            if b is None and create:
                b = Bin()
                shard[key] = b
            yield b

    def find(self, key: HashKey) -> Optional[Bin]:
        slot = self._slot(key)
        with self._locks[slot]:
            return self._shards[slot].get(key)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, bytes):
            return False
        return self.find(key) is not None

    def __len__(self) -> int:
        total = 0
        for lock, shard in zip(self._locks, self._shards):
            with lock:
                total += len(shard)
        return total

    def items(self) -> List[Tuple[HashKey, Bin]]:
        out: List[Tuple[HashKey, Bin]] = []
        for lock, shard in zip(self._locks, self._shards):
            with lock:
                out.extend(shard.items())
        return out

    def chunks(self, chunk_size: int) -> List[List[Tuple[HashKey, Bin]]]:
        """Split the current entries into ranges of at most ``chunk_size``."""
        entries = self.items()
        size = max(1, int(chunk_size))
        return [entries[i : i + size] for i in range(0, len(entries), size)]


class BinSet:
    """Sparse histogram for one label.

    Parameters
    ----------
    label : tuple[float, float, float]
        Label color as RGB in 0..1.
    dimensionality : int
        Number of dimensions D; sizes ``boundary``.

    Attributes
    ----------
    bins : ShardedBinMap
        Concurrent map from key to Bin.
    boundary : list[tuple[int, int]]
        Per-dimension (min, max) occupied step index, ``(255, 0)`` until the
        range reducer has seen a bin of this label.
    """

    def __init__(self, label: RGB, dimensionality: int, shards: int = DEFAULT_SHARDS) -> None:
        self.label = label
        self.dimensionality = int(dimensionality)
        self.bins = ShardedBinMap(shards)
        self._total_weight = AtomicCounter()
        self.boundary: List[Tuple[int, int]] = [EMPTY_BOUNDARY] * self.dimensionality

    @property
    def total_weight(self) -> int:
        return self._total_weight.value

    def _check(self, key: HashKey, pixel: Sequence[float]) -> None:
        if len(key) != self.dimensionality:
            raise ValueError(f"key has {len(key)} dimensions, expected {self.dimensionality}")
        if len(pixel) != self.dimensionality:
            raise ValueError(f"pixel has {len(pixel)} dimensions, expected {self.dimensionality}")

    def add(self, key: HashKey, pixel: Sequence[float]) -> None:
        """Fold ``pixel`` into the bin for ``key``, creating it if needed."""
        self._check(key, pixel)
        with self.bins.accessor(key) as b:
            b.add(pixel)
        self._total_weight.add(1)

    def sub(self, key: HashKey, pixel: Sequence[float]) -> None:
        """Remove ``pixel`` from the bin for ``key``.

        The bin is kept even when its weight drops to zero.
        """
        self._check(key, pixel)
        with self.bins.accessor(key, create=False) as b:
            assert b is not None, "sub() for a key that was never added"
            b.sub(pixel)
        self._total_weight.add(-1)

    def reset_boundary(self) -> None:
        self.boundary = [EMPTY_BOUNDARY] * self.dimensionality

    def __len__(self) -> int:
        return len(self.bins)


def make_sets(label_colors: Sequence[RGB], dimensionality: int) -> List[BinSet]:
    """Create one empty BinSet per label color."""
    return [BinSet(color, dimensionality) for color in label_colors]
