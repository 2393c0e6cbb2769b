"""Coordinator: owns the samplers and the watchdog for the lifetime of the process."""

from __future__ import annotations

import asyncio
import signal
import time
from collections.abc import Callable

import structlog

from host_vitals import logging as console
from host_vitals.command import CommandRunner, run_command
from host_vitals.config import Config
from host_vitals.cpu import CPUSampler
from host_vitals.disk import DiskSampler
from host_vitals.formatting import format_percentage, format_speed
from host_vitals.network import NetworkSampler
from host_vitals.sampler import PeriodicSampler
from host_vitals.watchdog import HealthWatchdog

log = structlog.get_logger()


class Coordinator:
    """Starts and stops every sampler and the watchdog as one unit."""

    def __init__(
        self,
        config: Config,
        runner: CommandRunner = run_command,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.cpu = CPUSampler(config, runner, clock)
        self.network = NetworkSampler(config, runner, clock)
        self.disk = DiskSampler(config, runner, clock)
        self.samplers: list[PeriodicSampler] = [self.cpu, self.network, self.disk]

        self.watchdog = HealthWatchdog(config, clock, on_restart=console.sampler_restarted)
        for sampler in self.samplers:
            self.watchdog.register(sampler)

        self._shutdown_event = asyncio.Event()
        self._heartbeat_task: asyncio.Task | None = None
        self.running = False

    def start(self) -> None:
        """Start all samplers, the watchdog and the heartbeat."""
        if self.running:
            return
        for sampler in self.samplers:
            sampler.start()
        self.watchdog.start()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(), name="heartbeat")
        self.running = True

        names = [s.sampler_id for s in self.samplers]
        log.info("coordinator_started", samplers=names)
        console.coordinator_started(names)

    async def stop(self) -> None:
        """Stop the watchdog first so it cannot restart a sampler mid-shutdown."""
        if not self.running:
            return
        log.info("coordinator_stopping")
        console.coordinator_stopping()
        self.running = False

        await self.watchdog.stop()

        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None

        for sampler in self.samplers:
            await sampler.stop()

        log.info("coordinator_stopped")
        console.coordinator_stopped()

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        log.info("signal_received", signal=sig.name)
        console.signal_received(sig.name)
        self.request_shutdown()

    async def run(self) -> None:
        """Run until SIGTERM/SIGINT or request_shutdown()."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: self._handle_signal(s))

        try:
            self.start()
            await self._shutdown_event.wait()
        finally:
            await self.stop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)

    def heartbeat(self) -> None:
        """Log a one-line summary of the published values."""
        cpu = self.cpu.snapshot.get()
        net = self.network.snapshot.get()
        disk = self.disk.snapshot.get()
        restarts = self.watchdog.restart_count

        log.info(
            "heartbeat",
            cpu_busy=round(cpu.usage.busy, 1),
            memory_percent=round(cpu.memory_percent, 1),
            download=round(net.download_speed),
            upload=round(net.upload_speed),
            network_available=net.is_network_available,
            disk_read=round(disk.read_speed),
            disk_write=round(disk.write_speed),
            restarts=restarts,
        )
        console.heartbeat(
            cpu=format_percentage(cpu.usage.busy),
            download=format_speed(net.download_speed),
            upload=format_speed(net.upload_speed),
            disk=format_percentage(disk.main_disk_usage * 100),
            restarts=restarts,
        )

        thresholds = self.config.thresholds
        if cpu.cpu_alert(thresholds):
            log.warning("cpu_threshold_exceeded", busy=round(cpu.usage.busy, 1))
        if cpu.memory_alert(thresholds):
            log.warning("memory_threshold_exceeded", percent=round(cpu.memory_percent, 1))
        if disk.disk_alert(thresholds):
            log.warning("disk_threshold_exceeded", usage=round(disk.main_disk_usage, 3))

    async def _heartbeat_loop(self) -> None:
        interval = self.config.system.heartbeat_interval
        while not self._shutdown_event.is_set():
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
                break  # Shutdown requested during sleep
            except asyncio.TimeoutError:
                pass
            try:
                self.heartbeat()
            except Exception as e:
                log.error("heartbeat_failed", error=str(e))


async def run_daemon(config: Config | None = None) -> None:
    """Run the coordinator until shutdown.

    Args:
        config: Optional config, loads from file if not provided
    """
    if config is None:
        config = Config.load()

    console.configure(config)
    coordinator = Coordinator(config)

    try:
        await coordinator.run()
    except Exception as e:
        log.exception("coordinator_crashed", error=str(e))
        raise
