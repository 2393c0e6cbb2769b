"""Periodic sampler base: loop lifecycle, rate limiting and health reporting.

Each domain sampler runs a primary loop (counters -> rates -> published
snapshot) and a slower attribution loop (process enumeration -> tracker ->
published top-N list). Both are asyncio tasks owned by the sampler; stop()
cancels them before any state is released.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Coroutine
from typing import Any

import structlog

from host_vitals.command import CommandRunner, run_command
from host_vitals.config import Config
from host_vitals.store import Published
from host_vitals.tracker import AttributionTracker, ProcessActivityRecord
from host_vitals.watchdog import HealthRecord

log = structlog.get_logger()

# Pause after a failed tick before the loop resumes its normal cadence
ERROR_BACKOFF = 1.0


class PeriodicSampler(ABC):
    """Owns one resource domain end to end.

    Subclasses implement sample() for the primary cadence and attribute()
    for the process attribution cadence. The base class guarantees that
    neither loop re-enters itself and that primary polls closer together
    than `sampling.min_update_gap` are skipped.
    """

    sampler_id = "sampler"
    # Per-process rate above which a reading is treated as an artifact
    attribution_ceiling = float("inf")

    def __init__(
        self,
        config: Config,
        runner: CommandRunner = run_command,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._run_command = runner
        self._clock = clock
        self.health = HealthRecord(self.sampler_id)
        self.tracker = AttributionTracker(
            domain=self.sampler_id,
            poll_period=config.sampling.attribution_interval,
            window=config.processes.attribution_window,
            ceiling=self.attribution_ceiling,
        )
        self.processes: Published[tuple[ProcessActivityRecord, ...]] = Published(())
        self.attribution_enabled = True

        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._last_update_at: float | None = None
        self.restart_count = 0

    # ─────────────────────────────────────────────────────────────────────
    # Hooks
    # ─────────────────────────────────────────────────────────────────────

    @property
    def poll_interval(self) -> float:
        """Seconds between primary polls."""
        return self.config.sampling.poll_interval

    @abstractmethod
    async def sample(self, now: float) -> None:
        """Take one primary reading and publish the resulting snapshot."""

    @abstractmethod
    async def attribute(self, now: float) -> None:
        """Enumerate processes and fold their counters into the tracker."""

    def extra_loops(self) -> list[Coroutine[Any, Any, None]]:
        """Additional loops started and stopped with the sampler."""
        return []

    # ─────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the sampler's loops on the running event loop."""
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._primary_loop(), name=f"{self.sampler_id}-primary"),
        ]
        if self.attribution_enabled:
            self._tasks.append(
                asyncio.create_task(
                    self._attribution_loop(), name=f"{self.sampler_id}-attribution"
                )
            )
        for index, coro in enumerate(self.extra_loops()):
            self._tasks.append(asyncio.create_task(coro, name=f"{self.sampler_id}-extra{index}"))
        log.info("sampler_started", sampler=self.sampler_id, tasks=len(self._tasks))

    async def stop(self) -> None:
        """Cancel all loops and wait for them to finish."""
        # Loops must see the stop before their tasks are cancelled
        self._running = False
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if tasks:
            log.info("sampler_stopped", sampler=self.sampler_id)

    async def restart(self) -> None:
        """Tear the loops down and start them again after a short delay."""
        log.warning("sampler_restarting", sampler=self.sampler_id)
        await self.stop()
        await asyncio.sleep(self.config.watchdog.restart_delay)
        # The limiter would otherwise skip the first poll after a quick restart
        self._last_update_at = None
        self.start()
        self.restart_count += 1

    # ─────────────────────────────────────────────────────────────────────
    # Ticks
    # ─────────────────────────────────────────────────────────────────────

    def should_update(self, now: float) -> bool:
        """Rate limiter: allow a primary poll only after the minimum gap."""
        gap = self.config.sampling.min_update_gap
        if self._last_update_at is not None and now - self._last_update_at < gap:
            return False
        self._last_update_at = now
        return True

    async def tick(self) -> bool:
        """Run one primary poll if the rate limiter allows it.

        Returns:
            True if a poll ran and the health record was refreshed.
        """
        now = self._clock()
        if not self.should_update(now):
            log.debug("sample_rate_limited", sampler=self.sampler_id)
            return False
        await self.sample(now)
        self.health.mark(self._clock())
        return True

    async def attribution_tick(self) -> None:
        """Run one attribution poll and publish the ranked process list."""
        await self.attribute(self._clock())
        limit = self.config.processes.limit(self.sampler_id)
        self.processes.set(tuple(self.tracker.top(limit)))

    async def _primary_loop(self) -> None:
        while self._running:
            started = self._clock()
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error("sample_failed", sampler=self.sampler_id, error=str(e))
                await asyncio.sleep(ERROR_BACKOFF)
                continue

            elapsed = self._clock() - started
            await asyncio.sleep(max(0.0, self.poll_interval - elapsed))

    async def _attribution_loop(self) -> None:
        await asyncio.sleep(self.config.sampling.attribution_initial_delay)
        while self._running:
            try:
                await self.attribution_tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error("attribution_failed", sampler=self.sampler_id, error=str(e))
            await asyncio.sleep(self.config.sampling.attribution_interval)
