"""Per-epoch redraw pipeline and its background computation thread.

The pipeline reads the published viewport context and histogram collection,
runs range reduction followed by vertex generation, and publishes the result
as a :class:`RedrawFrame`. A frame is published only when its epoch is still
current after both passes; stale work is dropped silently.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from distview.binning import PixelEvent, apply_events, apply_label_change, bin_image
from distview.binset import RGB, BinSet
from distview.compute import (
    ERR_OK,
    BinIndex,
    Limiters,
    VertexBuffer,
    assign_boundary_ranges,
    prepare_polylines,
    store_vertices,
)
from distview.config import DEFAULT_CONFIG, EngineConfig
from distview.context import Epoch, ViewportHandle
from distview.logger import get_logger
from distview.parallel import WorkerPool
from distview.shared import SharedData
from distview.stale_result_guard import EpochGuard, StaleEpochError

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class RedrawFrame:
    """Published output of one redraw epoch."""

    epoch: Epoch
    vertices: VertexBuffer
    boundaries: Tuple[Tuple[Tuple[int, int], ...], ...]
    code: int = ERR_OK

    @property
    def bin_count(self) -> int:
        return self.vertices.bin_count


@dataclass(frozen=True)
class RedrawRequest:
    """Parameters of one queued redraw."""

    limiters: Optional[Limiters] = None
    illuminant: Optional[Sequence[float]] = None
    draw_means: Optional[bool] = None
    illuminant_correction: Optional[bool] = None


class RedrawPipeline:
    """Bin, reduce and expand histograms for one viewport.

    Parameters
    ----------
    viewport : ViewportHandle
        Shared context with generation markers.
    sets : SharedData[list[BinSet]], optional
        Shared histogram collection; created empty when omitted.
    config : EngineConfig
        Worker and rendering settings.
    """

    def __init__(
        self,
        viewport: ViewportHandle,
        sets: Optional[SharedData[List[BinSet]]] = None,
        config: EngineConfig = DEFAULT_CONFIG,
    ) -> None:
        self.viewport = viewport
        self.sets = sets if sets is not None else SharedData()
        self.config = config
        self.frames: SharedData[RedrawFrame] = SharedData()
        self.pool = WorkerPool(config.workers)

    def close(self) -> None:
        self.pool.close()

    def rebin(
        self,
        pixels: np.ndarray,
        labels: Optional[np.ndarray],
        label_colors: Sequence[RGB],
    ) -> Optional[List[BinSet]]:
        """Build a new histogram collection and publish it.

        Advances the ``reset`` marker first, so any redraw still running on
        the old collection is abandoned. Returns ``None`` if the build itself
        was superseded.
        """
        self.viewport.mark_reset()
        guard = EpochGuard(self.viewport)
        context = self.viewport.snapshot()
        if context is None or not context.valid:
            raise ValueError("viewport context is not configured")
        try:
            sets = bin_image(
                context,
                pixels,
                labels,
                label_colors,
                pool=self.pool,
                chunk_size=self.config.chunk_size,
                guard=guard,
            )
            guard.check()
        except StaleEpochError as exc:
            LOGGER.debug("Binning abandoned: %s", exc, extra={"epoch": tuple(guard.started)})
            return None
        self.sets.publish(sets)
        return sets

    def _mutable(self):
        context = self.viewport.snapshot()
        sets = self.sets.snapshot()
        if context is None or not context.valid or sets is None:
            raise ValueError("viewport context or histogram collection is not configured")
        return context, sets

    def _republish(self, sets: List[BinSet]) -> None:
        # markers move after the swap
        self.sets.publish(sets)
        self.viewport.mark_wait()

    def relabel(self, pixels: np.ndarray, old_labels: np.ndarray, new_labels: np.ndarray) -> int:
        """Move relabeled pixels between histograms and invalidate running redraws.

        Returns the number of pixels that changed label.
        """
        context, sets = self._mutable()
        try:
            moved = apply_label_change(
                sets,
                context,
                pixels,
                old_labels,
                new_labels,
                pool=self.pool,
                chunk_size=self.config.chunk_size,
            )
        finally:
            self._republish(sets)
        return moved

    def apply_events(self, events: Iterable[PixelEvent]) -> int:
        """Apply pixel add/remove events and invalidate running redraws."""
        context, sets = self._mutable()
        try:
            count = apply_events(sets, context, events)
        finally:
            self._republish(sets)
        return count

    def redraw(self, request: Optional[RedrawRequest] = None) -> Optional[RedrawFrame]:
        """Run both passes for the current epoch.

        Returns the published frame, an unpublished frame carrying a non-zero
        error code, or ``None`` when the inputs are missing or the epoch went
        stale.
        """
        request = request or RedrawRequest()
        cfg = self.config
        guard = EpochGuard(self.viewport)
        epoch = guard.started
        context = self.viewport.snapshot()
        sets = self.sets.snapshot()
        if context is None or sets is None or not context.valid:
            LOGGER.debug("Redraw skipped: no context or histogram", extra={"epoch": tuple(epoch)})
            return None
        draw_means = cfg.draw_means if request.draw_means is None else request.draw_means
        correction = (
            cfg.illuminant_correction if request.illuminant_correction is None else request.illuminant_correction
        )
        LOGGER.info("Redraw started (%d labels)", len(sets), extra={"epoch": tuple(epoch)})
        index = BinIndex()
        vb = VertexBuffer()
        try:
            boundaries = prepare_polylines(
                context,
                sets,
                index,
                pool=self.pool,
                chunk_size=cfg.chunk_size,
                min_weight=cfg.min_weight,
                limiters=request.limiters,
                shuffle=cfg.shuffle_index,
                shuffle_seed=cfg.shuffle_seed,
                guard=guard,
                assign_boundaries=False,
            )
            code = store_vertices(
                context,
                sets,
                index,
                vb,
                draw_means=draw_means,
                illuminant_correction=correction,
                illuminant=request.illuminant,
                pool=self.pool,
                chunk_size=cfg.chunk_size,
                color_by_label=cfg.color_by_label,
                user_alpha=cfg.user_alpha,
                guard=guard,
            )
            guard.check()
        except StaleEpochError as exc:
            LOGGER.debug("Redraw abandoned: %s", exc, extra={"epoch": tuple(epoch)})
            return None
        frame = RedrawFrame(
            epoch=epoch,
            vertices=vb,
            boundaries=tuple(tuple(b) for b in boundaries),
            code=code,
        )
        if code != ERR_OK:
            LOGGER.error("Redraw failed with code %d", code, extra={"epoch": tuple(epoch)})
            return frame
        assign_boundary_ranges(sets, boundaries)
        self.frames.publish(frame)
        LOGGER.info("Redraw finished: %d polylines", vb.bin_count, extra={"epoch": tuple(epoch)})
        return frame


_STOP = object()


class RedrawWorker:
    """Dedicated thread draining queued redraw requests.

    Requests that queue up while a redraw runs are coalesced: only the newest
    one is executed. ``on_frame`` is called from the worker thread for every
    published frame.
    """

    def __init__(
        self,
        pipeline: RedrawPipeline,
        on_frame: Optional[Callable[[RedrawFrame], None]] = None,
    ) -> None:
        self._pipeline = pipeline
        self._on_frame = on_frame
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._stop_event = threading.Event()
        self._idle = threading.Event()
        self._idle.set()
        self._idle_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="distview-redraw", daemon=True)
        self._thread.start()

    def request(self, request: Optional[RedrawRequest] = None) -> None:
        with self._idle_lock:
            self._idle.clear()
            self._queue.put(request or RedrawRequest())

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until the queue is drained; returns False on timeout."""
        return self._idle.wait(timeout)

    def stop(self, timeout: float = 2.0) -> None:
        self._stop_event.set()
        self._queue.put(_STOP)
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None

    def _next_request(self) -> object:
        item = self._queue.get()
        while True:
            try:
                newer = self._queue.get_nowait()
            except queue.Empty:
                return item
            if newer is _STOP:
                return _STOP
            item = newer

    def _run(self) -> None:
        while not self._stop_event.is_set():
            item = self._next_request()
            if item is _STOP:
                break
            try:
                frame = self._pipeline.redraw(item)
                if frame is not None and frame.code == ERR_OK and self._on_frame is not None:
                    self._on_frame(frame)
            except Exception:
                LOGGER.exception("Redraw worker error")
            finally:
                with self._idle_lock:
                    if self._queue.empty():
                        self._idle.set()
