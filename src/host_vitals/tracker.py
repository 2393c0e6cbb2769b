"""Per-process activity attribution over a sliding window."""

from __future__ import annotations

from dataclasses import dataclass, replace

import structlog

from host_vitals.delta import counter_delta

log = structlog.get_logger()


@dataclass(frozen=True)
class ProcessKey:
    """Identity of a process across polls.

    Sources that aggregate by name (nettop) leave pid as None.
    """

    name: str
    pid: int | None = None


@dataclass(frozen=True)
class ProcessCounters:
    """Cumulative counters for one process from one poll.

    counter_a/counter_b are domain specific: read/write bytes for disk,
    in/out bytes for network, user/system CPU microseconds for CPU.
    """

    pid: int
    name: str
    counter_a: int
    counter_b: int


@dataclass
class ProcessActivityRecord:
    """A recently active process."""

    process_id: int
    process_name: str
    cumulative_activity: int  # Sum of deltas since tracking started
    last_active_at: float
    current_rate_a: float
    current_rate_b: float

    @property
    def combined_rate(self) -> float:
        """Rate used for ranking."""
        return self.current_rate_a + self.current_rate_b


class AttributionTracker:
    """Turns per-poll cumulative counters into a ranked list of active processes.

    The first sighting of a process only establishes its baseline: its
    cumulative counters cover the whole process lifetime, so treating them
    as one poll's delta would produce absurd rates.
    """

    def __init__(
        self,
        domain: str,
        poll_period: float,
        window: float,
        ceiling: float,
    ) -> None:
        """Initialize tracker.

        Args:
            domain: Domain name for log context (cpu/network/disk)
            poll_period: Nominal seconds between update() calls
            window: Seconds a record survives after its last activity
            ceiling: Per-process rate above which a reading is an artifact
        """
        self.domain = domain
        self.poll_period = poll_period
        self.window = window
        self.ceiling = ceiling
        self._baselines: dict[ProcessKey, ProcessCounters] = {}
        # Insertion order doubles as discovery order for tie-breaks
        self._records: dict[ProcessKey, ProcessActivityRecord] = {}

    @property
    def records(self) -> dict[ProcessKey, ProcessActivityRecord]:
        """Current records (read-only view by convention)."""
        return self._records

    def has_baseline(self, key: ProcessKey) -> bool:
        """Return True if the process has been seen before."""
        return key in self._baselines

    def update(self, snapshot: dict[ProcessKey, ProcessCounters], now: float) -> None:
        """Fold one poll's counters into the activity table.

        Args:
            snapshot: Cumulative counters for every process seen this poll
            now: Current timestamp (same clock as last_active_at)
        """
        for key, counters in snapshot.items():
            prev = self._baselines.get(key)
            if prev is None:
                continue  # First sighting: baseline only

            delta_a = counter_delta(prev.counter_a, counters.counter_a)
            delta_b = counter_delta(prev.counter_b, counters.counter_b)
            rate_a = delta_a / self.poll_period
            rate_b = delta_b / self.poll_period

            record = self._records.get(key)
            if rate_a > self.ceiling or rate_b > self.ceiling:
                log.debug(
                    "attribution_artifact_discarded",
                    domain=self.domain,
                    command=counters.name,
                    pid=counters.pid,
                    rate_a=rate_a,
                    rate_b=rate_b,
                )
                if record is not None:
                    record.current_rate_a = 0.0
                    record.current_rate_b = 0.0
                continue

            if rate_a > 0 or rate_b > 0:
                if record is None:
                    self._records[key] = ProcessActivityRecord(
                        process_id=counters.pid,
                        process_name=counters.name,
                        cumulative_activity=delta_a + delta_b,
                        last_active_at=now,
                        current_rate_a=rate_a,
                        current_rate_b=rate_b,
                    )
                else:
                    record.cumulative_activity += delta_a + delta_b
                    record.last_active_at = now
                    record.current_rate_a = rate_a
                    record.current_rate_b = rate_b
            elif record is not None:
                record.current_rate_a = 0.0
                record.current_rate_b = 0.0

        # New baselines; processes that vanished drop out here
        self._baselines = dict(snapshot)

        for key in list(self._records):
            record = self._records[key]
            if key not in snapshot:
                del self._records[key]
                log.debug("attribution_process_gone", domain=self.domain, pid=record.process_id)
            elif now - record.last_active_at > self.window:
                del self._records[key]
                log.debug(
                    "attribution_window_expired",
                    domain=self.domain,
                    command=record.process_name,
                    pid=record.process_id,
                )

    def top(self, limit: int) -> list[ProcessActivityRecord]:
        """Return up to `limit` currently active records, busiest first.

        Ranking is by current combined rate, not cumulative activity. Ties
        keep discovery order. Returned records are copies.
        """
        active = [r for r in self._records.values() if r.combined_rate > 0]
        active.sort(key=lambda r: r.combined_rate, reverse=True)
        return [replace(r) for r in active[: max(0, limit)]]

    def reset(self) -> None:
        """Forget all baselines and records."""
        self._baselines.clear()
        self._records.clear()
