"""Fixed-capacity metric history.

Each metric keeps the last N points (60 by default, one per poll) for
history graphs. The buffer starts full of zeros so graphs have a stable
width from the first poll.
"""

from collections import deque


class RingBuffer:
    """Ring buffer of float samples; pushing drops the oldest point."""

    def __init__(self, max_samples: int = 60) -> None:
        self._samples: deque[float] = deque(maxlen=max_samples)
        self._samples.extend([0.0] * max_samples)

    def __len__(self) -> int:
        """Return number of samples in buffer."""
        return len(self._samples)

    def push(self, value: float) -> None:
        """Add a sample to the buffer."""
        self._samples.append(value)

    def freeze(self) -> tuple[float, ...]:
        """Return immutable copy of buffer contents, oldest first."""
        return tuple(self._samples)
