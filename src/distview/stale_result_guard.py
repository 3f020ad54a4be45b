"""Stale-result protection for redraw computations.

A redraw captures the viewport generation markers when it starts and
re-checks them at every batch boundary. When the markers have moved the
computation raises :class:`StaleEpochError` and its partial output is
dropped; it is never published.

Pattern:
    guard = EpochGuard(handle)
    for chunk in chunks:
        guard.check()
        ...
    if guard.is_current():
        publish(result)
"""

from __future__ import annotations

import threading
from typing import Optional

from distview.context import Epoch, ViewportHandle

__all__ = [
    "CancelToken",
    "EpochGuard",
    "StaleEpochError",
]


class StaleEpochError(Exception):
    """Raised inside a computation whose epoch has been superseded."""

    def __init__(self, started: Epoch, current: Epoch) -> None:
        super().__init__(f"epoch {tuple(started)} superseded by {tuple(current)}")
        self.started = started
        self.current = current


class CancelToken:
    """Thread-safe cancellation token.

    Notes
    -----
    Cancellation is cooperative: workers must check ``is_cancelled()``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True

    def is_cancelled(self) -> bool:
        with self._lock:
            return self._cancelled


class EpochGuard:
    """Capture generation markers and detect when they change.

    Parameters
    ----------
    handle : ViewportHandle or None
        Handle whose markers are watched. ``None`` yields a guard that is
        always current (used for one-off computations outside a viewport).
    token : CancelToken or None
        Optional explicit cancellation, checked alongside the markers.
    """

    def __init__(self, handle: Optional[ViewportHandle], token: Optional[CancelToken] = None) -> None:
        self._handle = handle
        self._token = token
        self.started = handle.epoch() if handle is not None else Epoch(0, 0)

    def current(self) -> Epoch:
        return self._handle.epoch() if self._handle is not None else self.started

    def is_current(self) -> bool:
        """True while neither marker has moved and no cancel was requested."""
        if self._token is not None and self._token.is_cancelled():
            return False
        return self.current() == self.started

    def check(self) -> None:
        """Raise :class:`StaleEpochError` when the epoch is no longer current."""
        if not self.is_current():
            raise StaleEpochError(self.started, self.current())
