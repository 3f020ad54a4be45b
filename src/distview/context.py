"""Viewport context shared by binning and vertex extraction.

The context value (:class:`ViewportCtx`) is immutable. The configuration
layer replaces it through a :class:`ViewportHandle`, which also owns the two
generation counters used to detect that an in-flight computation has become
stale:

- ``wait`` advances whenever the context is about to change (e.g. new
  limiters or display mode); derived geometry must be recomputed.
- ``reset`` advances whenever the histogram itself is rebuilt (new image,
  new binning parameters).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import NamedTuple, Optional, Tuple

from distview.binset import AtomicCounter
from distview.shared import SharedData


class Representation(enum.IntEnum):
    """Image representation being visualized."""

    IMG = 0
    GRAD = 1
    IMGPCA = 2
    GRADPCA = 3

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class BandDesc:
    """Metadata for one dimension (band).

    Parameters
    ----------
    center : float
        Band center wavelength in nm (0 when unknown).
    name : str
        Display name of the band.
    unit : str
        Unit of ``center``.
    """

    center: float = 0.0
    name: str = ""
    unit: str = "nm"

    @property
    def empty(self) -> bool:
        return self.center <= 0.0


@dataclass(frozen=True)
class ViewportCtx:
    """Discretization and labeling parameters for one viewport.

    Notes
    -----
    Each field that the configuration layer may not have filled in yet has a
    companion ``*_valid`` flag. Consumers must check validity before relying
    on the value.
    """

    dimensionality: int = 0
    dimensionality_valid: bool = False
    type: Representation = Representation.IMG
    meta: Tuple[BandDesc, ...] = field(default_factory=tuple)
    meta_valid: bool = False
    labels: Tuple[str, ...] = field(default_factory=tuple)
    labels_valid: bool = False
    ignore_labels: bool = False
    nbins: int = 64
    binsize: float = 1.0
    binsize_valid: bool = False
    minval: float = 0.0
    minval_valid: bool = False
    maxval: float = 0.0
    maxval_valid: bool = False

    @property
    def valid(self) -> bool:
        """True when all fields needed for binning are set."""
        return (
            self.dimensionality_valid
            and self.binsize_valid
            and self.minval_valid
            and self.maxval_valid
        )

    def with_range(self, minval: float, maxval: float, nbins: int) -> "ViewportCtx":
        """Return a copy with a new value range split into ``nbins`` steps."""
        if nbins < 1:
            raise ValueError(f"nbins must be >= 1, got {nbins}")
        binsize = (float(maxval) - float(minval)) / float(nbins)
        if binsize <= 0:
            raise ValueError(f"maxval must exceed minval, got {minval}..{maxval}")
        return replace(
            self,
            nbins=int(nbins),
            minval=float(minval),
            minval_valid=True,
            maxval=float(maxval),
            maxval_valid=True,
            binsize=binsize,
            binsize_valid=True,
        )


def make_context(
    dimensionality: int,
    minval: float,
    maxval: float,
    nbins: int,
    meta: Optional[Tuple[BandDesc, ...]] = None,
    labels: Optional[Tuple[str, ...]] = None,
    representation: Representation = Representation.IMG,
    ignore_labels: bool = False,
) -> ViewportCtx:
    """Build a fully valid context from basic parameters."""
    ctx = ViewportCtx(
        dimensionality=int(dimensionality),
        dimensionality_valid=True,
        type=representation,
        meta=tuple(meta) if meta is not None else (),
        meta_valid=meta is not None and len(meta) == dimensionality,
        labels=tuple(labels) if labels is not None else (),
        labels_valid=labels is not None,
        ignore_labels=ignore_labels,
    )
    return ctx.with_range(minval, maxval, nbins)


class Epoch(NamedTuple):
    """Generation markers captured at the start of a computation."""

    wait: int
    reset: int


class ViewportHandle(SharedData[ViewportCtx]):
    """Shared, versioned viewport context plus generation markers."""

    def __init__(self, value: Optional[ViewportCtx] = None) -> None:
        super().__init__(value)
        self._wait = AtomicCounter()
        self._reset = AtomicCounter()

    def epoch(self) -> Epoch:
        return Epoch(self._wait.value, self._reset.value)

    def mark_wait(self) -> int:
        """Advance ``wait``: derived geometry is stale."""
        return self._wait.add(1)

    def mark_reset(self) -> int:
        """Advance ``reset``: the histogram is being rebuilt."""
        return self._reset.add(1)

    def update(self, value: ViewportCtx, rebinned: bool = False) -> int:
        """Publish a new context and advance the generation markers.

        Markers move after the swap, so a reader that captured the old epoch
        always sees it change, whichever context value it read.
        """
        version = self.publish(value)
        if rebinned:
            self.mark_reset()
        self.mark_wait()
        return version
