"""Versioned snapshot handles shared between producer and consumer threads.

A producer builds a value completely and then publishes it; consumers grab
the currently published value and work on it without holding any lock.
Published values are replaced wholesale, never edited in place.
"""

from __future__ import annotations

import threading
from typing import Generic, Optional, Tuple, TypeVar

T = TypeVar("T")


class SharedData(Generic[T]):
    """Reference holder for an immutable-once-published value.

    Parameters
    ----------
    value : T or None
        Initial value (may be ``None`` until the first publish).
    """

    def __init__(self, value: Optional[T] = None) -> None:
        self._lock = threading.Lock()
        self._value = value
        self._version = 0 if value is None else 1

    def publish(self, value: T) -> int:
        """Swap in a fully built value and return its version."""
        with self._lock:
            self._value = value
            self._version += 1
            return self._version

    def snapshot(self) -> Optional[T]:
        with self._lock:
            return self._value

    def versioned(self) -> Tuple[int, Optional[T]]:
        """Return ``(version, value)`` read atomically."""
        with self._lock:
            return self._version, self._value

    @property
    def version(self) -> int:
        with self._lock:
            return self._version
