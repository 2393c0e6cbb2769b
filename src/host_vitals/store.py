"""Thread-safe handoff of published sampler values."""

import threading
from typing import Generic, TypeVar

T = TypeVar("T")


class Published(Generic[T]):
    """Holds the latest immutable snapshot published by one sampler.

    The owning loop replaces the whole snapshot with set(); readers on any
    thread get either the old or the new snapshot, never a mix.
    """

    def __init__(self, initial: T) -> None:
        self._lock = threading.Lock()
        self._value = initial
        self._version = 0

    def set(self, value: T) -> None:
        """Replace the published snapshot."""
        with self._lock:
            self._value = value
            self._version += 1

    def get(self) -> T:
        """Return the current snapshot."""
        with self._lock:
            return self._value

    @property
    def version(self) -> int:
        """Number of times a snapshot has been published."""
        with self._lock:
            return self._version
