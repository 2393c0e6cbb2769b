"""CPU domain sampler: tick split, load, memory, GPU and per-process CPU time."""

from __future__ import annotations

import asyncio
import platform
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import psutil
import structlog

from host_vitals.command import CommandRunner, run_command
from host_vitals.config import Config, ThresholdsConfig
from host_vitals.delta import (
    IDLE_CPU,
    MAX_LOAD,
    CPUTicks,
    CPUUsage,
    clamp,
    clamp_used,
    compute_cpu_usage,
    usage_percent,
)
from host_vitals.parsers import GPUStats, parse_ioreg_gpu, parse_processor_name_json
from host_vitals.ringbuffer import RingBuffer
from host_vitals.sampler import PeriodicSampler
from host_vitals.store import Published
from host_vitals.tracker import ProcessCounters, ProcessKey

log = structlog.get_logger()

IOREG = "/usr/sbin/ioreg"
IOREG_ARGS = ("-r", "-c", "IOAccelerator")
SYSCTL = "/usr/sbin/sysctl"
SYSTEM_PROFILER = "/usr/sbin/system_profiler"

# psutil reports CPU times in seconds; ticks are hundredths
TICKS_PER_SECOND = 100

MAX_UPTIME = 10 * 365 * 86400.0

# Sensor groups that report the CPU package or cores, in preference order
CPU_SENSOR_GROUPS = ("coretemp", "k10temp", "zenpower", "cpu_thermal", "cpu-thermal", "acpitz")
MAX_TEMPERATURE = 150.0

FALLBACK_PROCESSOR_NAME = "Apple Silicon"


@dataclass(frozen=True)
class CPUSnapshot:
    """Everything the CPU sampler publishes in one tick."""

    usage: CPUUsage = IDLE_CPU
    history: tuple[float, ...] = ()
    load_average: tuple[float, float, float] = (0.0, 0.0, 0.0)
    load_history: tuple[float, ...] = ()
    peak_load: float = 0.0
    uptime: float | None = None
    memory_used: int = 0
    memory_total: int = 0
    swap_used: int = 0
    swap_total: int = 0
    gpu: GPUStats = field(default_factory=GPUStats)
    gpu_history: tuple[float, ...] = ()
    temperature: float | None = None
    processor_name: str | None = None

    @property
    def memory_percent(self) -> float:
        return usage_percent(self.memory_used, self.memory_total)

    @property
    def swap_percent(self) -> float:
        return usage_percent(self.swap_used, self.swap_total)

    @property
    def gpu_memory_percent(self) -> float:
        return usage_percent(self.gpu.memory_used, self.gpu.memory_total)

    def cpu_alert(self, thresholds: ThresholdsConfig) -> bool:
        """Return True if CPU busy time is at or above the warning threshold."""
        return self.usage.busy >= thresholds.cpu_warning

    def memory_alert(self, thresholds: ThresholdsConfig) -> bool:
        return self.memory_percent >= thresholds.memory_warning


# ─────────────────────────────────────────────────────────────────────────────
# Native readers
# ─────────────────────────────────────────────────────────────────────────────


def read_cpu_ticks() -> CPUTicks:
    """Read aggregate CPU time counters."""
    times = psutil.cpu_times()
    return CPUTicks(
        user=int(times.user * TICKS_PER_SECOND),
        system=int(times.system * TICKS_PER_SECOND),
        idle=int(times.idle * TICKS_PER_SECOND),
        nice=int(getattr(times, "nice", 0.0) * TICKS_PER_SECOND),
    )


def read_load_average() -> tuple[float, float, float]:
    """Read 1/5/15 minute load averages, clamped to a sane range."""
    one, five, fifteen = psutil.getloadavg()
    return (
        clamp(one, 0.0, MAX_LOAD),
        clamp(five, 0.0, MAX_LOAD),
        clamp(fifteen, 0.0, MAX_LOAD),
    )


def read_uptime() -> float | None:
    """Seconds since boot, or None if the boot time is implausible."""
    uptime = time.time() - psutil.boot_time()
    if 0 < uptime < MAX_UPTIME:
        return uptime
    log.debug("uptime_invalid", uptime=uptime)
    return None


def read_memory() -> tuple[int, int]:
    """Return (used, total) physical memory in bytes."""
    vm = psutil.virtual_memory()
    return clamp_used(vm.total - vm.available, vm.total), vm.total


def read_swap() -> tuple[int, int]:
    """Return (used, total) swap in bytes."""
    swap = psutil.swap_memory()
    return clamp_used(swap.used, swap.total), swap.total


def read_temperature() -> float | None:
    """Hottest CPU sensor reading in Celsius, or None where psutil has no sensors.

    psutil only exposes `sensors_temperatures` on Linux and FreeBSD.
    """
    if not hasattr(psutil, "sensors_temperatures"):
        return None
    try:
        groups = psutil.sensors_temperatures()
    except OSError as e:
        log.debug("temperature_unavailable", error=str(e))
        return None

    for group in CPU_SENSOR_GROUPS:
        readings = [
            entry.current
            for entry in groups.get(group, [])
            if entry.current is not None and 0 < entry.current <= MAX_TEMPERATURE
        ]
        if readings:
            return max(readings)
    return None


@dataclass(frozen=True)
class SystemReading:
    """Secondary metrics gathered in one blocking call."""

    load_average: tuple[float, float, float]
    memory: tuple[int, int]
    swap: tuple[int, int]
    uptime: float | None
    temperature: float | None


def read_system() -> SystemReading:
    """Read the secondary system metrics together."""
    return SystemReading(
        load_average=read_load_average(),
        memory=read_memory(),
        swap=read_swap(),
        uptime=read_uptime(),
        temperature=read_temperature(),
    )


def read_process_cpu_times() -> dict[ProcessKey, ProcessCounters]:
    """Cumulative user/system CPU milliseconds for every readable process."""
    snapshot: dict[ProcessKey, ProcessCounters] = {}
    for proc in psutil.process_iter(["pid", "name", "cpu_times"]):
        cpu_times = proc.info.get("cpu_times")
        name = proc.info.get("name")
        if cpu_times is None or not name:
            continue  # Access denied or zombie
        pid = proc.info["pid"]
        snapshot[ProcessKey(name=name, pid=pid)] = ProcessCounters(
            pid=pid,
            name=name,
            counter_a=int(cpu_times.user * 1000),
            counter_b=int(cpu_times.system * 1000),
        )
    return snapshot


# ─────────────────────────────────────────────────────────────────────────────
# Sampler
# ─────────────────────────────────────────────────────────────────────────────


class CPUSampler(PeriodicSampler):
    """Samples CPU ticks and the secondary system metrics every poll."""

    sampler_id = "cpu"
    # CPU milliseconds per second: two full seconds per core
    attribution_ceiling = (psutil.cpu_count() or 1) * 2000.0

    def __init__(
        self,
        config: Config,
        runner: CommandRunner = run_command,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(config, runner, clock)
        size = config.sampling.history_size
        self._cpu_history = RingBuffer(size)
        self._load_history = RingBuffer(size)
        self._gpu_history = RingBuffer(size)
        self._previous_ticks: CPUTicks | None = None
        self._peak_load = 0.0
        self._gpu = GPUStats()
        self.processor_name: str | None = None
        self.gpu_enabled = Path(IOREG).exists()
        self.snapshot: Published[CPUSnapshot] = Published(CPUSnapshot())

    def extra_loops(self):
        if self.processor_name is None:
            return [self._resolve_processor_name()]
        return []

    async def sample(self, now: float) -> None:
        loop = asyncio.get_running_loop()
        ticks = await loop.run_in_executor(None, read_cpu_ticks)
        usage = compute_cpu_usage(self._previous_ticks, ticks)
        self._previous_ticks = ticks
        self._cpu_history.push(usage.busy)

        system = await loop.run_in_executor(None, read_system)
        load = system.load_average
        self._load_history.push(load[0])
        self._peak_load = max(self._peak_load, load[0])

        memory_used, memory_total = system.memory
        swap_used, swap_total = system.swap

        if self.gpu_enabled:
            await self._update_gpu(memory_total)
        self._gpu_history.push(self._gpu.utilization)

        self.snapshot.set(
            CPUSnapshot(
                usage=usage,
                history=self._cpu_history.freeze(),
                load_average=load,
                load_history=self._load_history.freeze(),
                peak_load=self._peak_load,
                uptime=system.uptime,
                memory_used=memory_used,
                memory_total=memory_total,
                swap_used=swap_used,
                swap_total=swap_total,
                gpu=self._gpu,
                gpu_history=self._gpu_history.freeze(),
                processor_name=self.processor_name,
                temperature=system.temperature,
            )
        )

    async def _update_gpu(self, physical_memory: int) -> None:
        result = await self._run_command(IOREG, IOREG_ARGS, self.config.commands.ioreg_timeout)
        if not result.ok:
            log.debug("gpu_stats_unavailable", error=result.message)
            return  # Previous GPU figures stay published
        self._gpu = parse_ioreg_gpu(result.stdout or "", physical_memory)

    async def attribute(self, now: float) -> None:
        loop = asyncio.get_running_loop()
        snapshot = await loop.run_in_executor(None, read_process_cpu_times)
        self.tracker.update(snapshot, now)

    async def fetch_processor_name(self) -> str | None:
        """Look up the marketing name of the processor.

        Tries the sysctl brand string, then system_profiler's chip type.
        """
        commands = self.config.commands
        result = await self._run_command(
            SYSCTL, ("-n", "machdep.cpu.brand_string"), commands.ps_timeout
        )
        if result.ok and result.stdout and result.stdout.strip():
            return result.stdout.strip()

        result = await self._run_command(
            SYSTEM_PROFILER, ("SPHardwareDataType", "-json"), commands.system_profiler_timeout
        )
        if result.ok and result.stdout:
            name = parse_processor_name_json(result.stdout)
            if name:
                return name

        if platform.system() == "Darwin":
            return FALLBACK_PROCESSOR_NAME
        return platform.processor() or None

    async def _resolve_processor_name(self) -> None:
        try:
            self.processor_name = await self.fetch_processor_name()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("processor_name_failed", error=str(e))
            return
        log.info("processor_name", name=self.processor_name)
