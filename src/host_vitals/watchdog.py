"""Health watchdog: restarts samplers whose primary loop stopped producing updates."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import structlog

from host_vitals.config import Config

log = structlog.get_logger()


@dataclass
class HealthRecord:
    """Last successful update of one sampler."""

    sampler_id: str
    last_successful_update_at: float | None = None  # time.monotonic()

    def mark(self, now: float) -> None:
        """Record a successful update."""
        self.last_successful_update_at = now

    def age(self, now: float) -> float | None:
        """Seconds since the last successful update, or None if never updated."""
        if self.last_successful_update_at is None:
            return None
        return now - self.last_successful_update_at


class Supervised(Protocol):
    """What the watchdog needs from a sampler."""

    sampler_id: str
    health: HealthRecord

    async def restart(self) -> None: ...


class HealthWatchdog:
    """Periodically checks each registered sampler and restarts stale ones.

    The staleness threshold equals the check interval. A sampler with no
    recorded update yet is left alone.
    """

    def __init__(
        self,
        config: Config,
        clock: Callable[[], float] = time.monotonic,
        on_restart: Callable[[str], None] | None = None,
    ) -> None:
        self.config = config
        self._clock = clock
        self._on_restart = on_restart
        self._samplers: dict[str, Supervised] = {}
        self._task: asyncio.Task | None = None
        self.restart_count = 0

    def register(self, sampler: Supervised) -> None:
        """Add a sampler to supervision."""
        self._samplers[sampler.sampler_id] = sampler

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def is_stale(self, record: HealthRecord, now: float) -> bool:
        """Return True if the record is older than the check interval."""
        age = record.age(now)
        return age is not None and age > self.config.watchdog.check_interval

    async def check(self) -> list[str]:
        """Run one health check pass.

        Returns:
            IDs of samplers that were restarted.
        """
        now = self._clock()
        restarted = []
        for sampler_id, sampler in self._samplers.items():
            if not self.is_stale(sampler.health, now):
                continue
            log.warning(
                "sampler_stale",
                sampler=sampler_id,
                age=round(sampler.health.age(now) or 0.0, 1),
                threshold=self.config.watchdog.check_interval,
            )
            try:
                await sampler.restart()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error("sampler_restart_failed", sampler=sampler_id, error=str(e))
                continue
            self.restart_count += 1
            restarted.append(sampler_id)
            if self._on_restart is not None:
                self._on_restart(sampler_id)
        return restarted

    def start(self) -> None:
        """Start the periodic check loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="watchdog")

    async def stop(self) -> None:
        """Stop the check loop."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.config.watchdog.check_interval)
            try:
                await self.check()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error("watchdog_check_failed", error=str(e))
