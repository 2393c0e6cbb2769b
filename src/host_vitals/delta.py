"""Counter delta engine.

Turns pairs of cumulative counter readings into per-second rates. Counters
that go backwards are treated as reset: the new value is the amount accrued
since the reset. Everything here is pure.
"""

from dataclasses import dataclass

# Sanity ceiling for byte rates (10 GB/s); anything above is a measurement artifact
MAX_RATE = 10_000_000_000.0

# Load averages above this are treated as garbage
MAX_LOAD = 1000.0


@dataclass(frozen=True)
class CounterReading:
    """One timestamped sample of a monotonic counter."""

    timestamp: float  # time.monotonic() seconds
    value: int

    def __post_init__(self) -> None:
        if self.value < 0:
            raise ValueError(f"counter value must be non-negative, got {self.value}")


@dataclass(frozen=True)
class CPUTicks:
    """Cumulative CPU tick counters."""

    user: int
    system: int
    idle: int
    nice: int


@dataclass(frozen=True)
class CPUUsage:
    """CPU time split in percent."""

    user: float
    system: float
    idle: float

    @property
    def busy(self) -> float:
        """User + system percentage."""
        return self.user + self.system


IDLE_CPU = CPUUsage(user=0.0, system=0.0, idle=100.0)


def clamp(value: float, low: float, high: float) -> float:
    """Clamp value into [low, high]."""
    return max(low, min(high, value))


def clamp_percent(value: float) -> float:
    """Clamp a percentage into [0, 100]."""
    return clamp(value, 0.0, 100.0)


def counter_delta(previous: int, current: int) -> int:
    """Return the increase between two counter values, treating a decrease as reset."""
    return current - previous if current >= previous else current


def compute_rate(
    previous: CounterReading,
    current: CounterReading,
    max_rate: float = MAX_RATE,
) -> float | None:
    """Compute a per-second rate from two readings.

    Elapsed time comes from the readings' timestamps, not the nominal poll
    interval, so scheduling jitter does not skew the rate.

    Returns:
        Rate clamped to [0, max_rate], or None when no time has elapsed
        (the caller must skip the update entirely).
    """
    elapsed = current.timestamp - previous.timestamp
    if elapsed <= 0:
        return None
    delta = counter_delta(previous.value, current.value)
    return clamp(delta / elapsed, 0.0, max_rate)


def compute_cpu_usage(previous: CPUTicks | None, current: CPUTicks) -> CPUUsage:
    """Split the tick delta between two readings into user/system/idle percent.

    Nice time counts as user time. With no previous reading or no ticks
    elapsed the CPU reports fully idle.
    """
    if previous is None:
        return IDLE_CPU

    user = counter_delta(previous.user, current.user)
    system = counter_delta(previous.system, current.system)
    idle = counter_delta(previous.idle, current.idle)
    nice = counter_delta(previous.nice, current.nice)

    total = user + system + idle + nice
    if total <= 0:
        return IDLE_CPU

    return CPUUsage(
        user=clamp_percent((user + nice) / total * 100),
        system=clamp_percent(system / total * 100),
        idle=clamp_percent(idle / total * 100),
    )


def clamp_used(used: int, total: int) -> int:
    """Clamp a "used" quantity so it never exceeds its total or goes negative."""
    return max(0, min(used, total))


def usage_percent(used: int, total: int) -> float:
    """Return used/total as a percentage in [0, 100]; 0 when total is 0."""
    if total <= 0:
        return 0.0
    return clamp_percent(used / total * 100)
