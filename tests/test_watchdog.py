"""Tests for the health watchdog."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from conftest import FakeClock

from host_vitals.config import Config
from host_vitals.watchdog import HealthRecord, HealthWatchdog


class StubSampler:
    def __init__(self, sampler_id: str, last_update: float | None) -> None:
        self.sampler_id = sampler_id
        self.health = HealthRecord(sampler_id, last_update)
        self.restart = AsyncMock()


def test_health_record_age():
    record = HealthRecord("cpu")
    assert record.age(100.0) is None
    record.mark(90.0)
    assert record.age(100.0) == 10.0


@pytest.mark.asyncio
async def test_stale_sampler_is_restarted():
    """31s since the last update with a 30s interval triggers a restart."""
    clock = FakeClock(1000.0)
    watchdog = HealthWatchdog(Config(), clock)
    sampler = StubSampler("cpu", last_update=1000.0 - 31)
    watchdog.register(sampler)

    restarted = await watchdog.check()

    assert restarted == ["cpu"]
    sampler.restart.assert_awaited_once()
    assert watchdog.restart_count == 1


@pytest.mark.asyncio
async def test_fresh_sampler_is_left_alone():
    """29s since the last update: no action."""
    clock = FakeClock(1000.0)
    watchdog = HealthWatchdog(Config(), clock)
    sampler = StubSampler("cpu", last_update=1000.0 - 29)
    watchdog.register(sampler)

    assert await watchdog.check() == []
    sampler.restart.assert_not_awaited()


@pytest.mark.asyncio
async def test_sampler_without_updates_is_left_alone():
    watchdog = HealthWatchdog(Config(), FakeClock())
    sampler = StubSampler("disk", last_update=None)
    watchdog.register(sampler)

    assert await watchdog.check() == []


@pytest.mark.asyncio
async def test_threshold_follows_check_interval():
    config = Config()
    config.watchdog.check_interval = 10.0
    clock = FakeClock(100.0)
    watchdog = HealthWatchdog(config, clock)
    sampler = StubSampler("network", last_update=89.0)
    watchdog.register(sampler)

    assert await watchdog.check() == ["network"]


@pytest.mark.asyncio
async def test_only_stale_samplers_restart():
    clock = FakeClock(1000.0)
    watchdog = HealthWatchdog(Config(), clock)
    stale = StubSampler("cpu", last_update=900.0)
    fresh = StubSampler("disk", last_update=995.0)
    watchdog.register(stale)
    watchdog.register(fresh)

    assert await watchdog.check() == ["cpu"]
    fresh.restart.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_restart_does_not_block_other_samplers():
    watchdog = HealthWatchdog(Config(), FakeClock(1000.0))
    broken = StubSampler("cpu", last_update=0.0)
    broken.restart.side_effect = RuntimeError("boom")
    healthy = StubSampler("disk", last_update=0.0)
    watchdog.register(broken)
    watchdog.register(healthy)

    restarted = await watchdog.check()

    assert restarted == ["disk"]
    healthy.restart.assert_awaited_once()
    assert watchdog.restart_count == 1


@pytest.mark.asyncio
async def test_on_restart_callback():
    restarted = []
    watchdog = HealthWatchdog(Config(), FakeClock(1000.0), on_restart=restarted.append)
    watchdog.register(StubSampler("cpu", last_update=0.0))

    await watchdog.check()

    assert restarted == ["cpu"]


@pytest.mark.asyncio
async def test_run_loop_checks_periodically():
    config = Config()
    config.watchdog.check_interval = 0.05
    clock = FakeClock(1000.0)
    watchdog = HealthWatchdog(config, clock)
    sampler = StubSampler("cpu", last_update=0.0)
    watchdog.register(sampler)

    watchdog.start()
    assert watchdog.running
    await asyncio.sleep(0.2)
    await watchdog.stop()

    assert not watchdog.running
    assert sampler.restart.await_count >= 2


@pytest.mark.asyncio
async def test_run_loop_survives_restart_errors():
    config = Config()
    config.watchdog.check_interval = 0.02
    watchdog = HealthWatchdog(config, FakeClock(1000.0))
    sampler = StubSampler("cpu", last_update=0.0)
    sampler.restart.side_effect = RuntimeError("boom")
    watchdog.register(sampler)

    watchdog.start()
    await asyncio.sleep(0.1)
    assert watchdog.running
    await watchdog.stop()

    assert sampler.restart.await_count >= 2
