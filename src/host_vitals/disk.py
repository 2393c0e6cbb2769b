"""Disk domain sampler: volumes, aggregate I/O throughput, per-process I/O and eject."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path

import psutil
import structlog

from host_vitals.command import CommandRunner, run_command
from host_vitals.config import Config, ThresholdsConfig
from host_vitals.delta import MAX_RATE, CounterReading, clamp, compute_rate
from host_vitals.libproc import get_disk_io
from host_vitals.parsers import parse_ps_processes
from host_vitals.ringbuffer import RingBuffer
from host_vitals.sampler import PeriodicSampler
from host_vitals.store import Published
from host_vitals.tracker import ProcessCounters, ProcessKey

log = structlog.get_logger()

PS = "/bin/ps"
PS_ARGS = ("-Aceo", "pid,comm")

MIN_VOLUME_SIZE = 1_000_000_000  # Smaller volumes are hidden
SYSTEM_VOLUMES = frozenset({"Recovery", "Preboot", "VM"})
NETWORK_FILESYSTEMS = frozenset(
    {"nfs", "nfs4", "smbfs", "smb3", "cifs", "afpfs", "webdav", "sshfs", "fuse.sshfs"}
)
REMOVABLE_PREFIXES = ("/Volumes/", "/media/", "/run/media/")

# Per-process disk throughput above this is a measurement artifact
PROCESS_IO_CEILING = 5_000_000_000.0


@dataclass(frozen=True)
class DiskInfo:
    """One mounted volume."""

    name: str
    mount_point: str
    total_space: int
    free_space: int
    is_network_disk: bool = False
    is_removable: bool = False

    @property
    def used_space(self) -> int:
        """Bytes in use; never negative even if free exceeds total."""
        return self.total_space - self.free_space if self.total_space > self.free_space else 0

    @property
    def usage_percentage(self) -> float:
        """Used fraction of the volume, 0..1."""
        if self.total_space <= 0:
            return 0.0
        return self.used_space / self.total_space


@dataclass(frozen=True)
class EjectResult:
    """Outcome of a user-initiated eject."""

    success: bool
    reason: str | None = None


@dataclass(frozen=True)
class DiskSnapshot:
    """Everything the disk sampler publishes in one tick."""

    disks: tuple[DiskInfo, ...] = ()
    network_disks: tuple[DiskInfo, ...] = ()
    read_speed: float = 0.0  # Bytes/sec
    write_speed: float = 0.0
    read_history: tuple[float, ...] = ()
    write_history: tuple[float, ...] = ()

    @property
    def main_disk_usage(self) -> float:
        """Usage fraction of the volume mounted at /, else of the first volume."""
        return main_disk_usage(self.disks)

    def disk_alert(self, thresholds: ThresholdsConfig) -> bool:
        return self.main_disk_usage * 100 >= thresholds.disk_warning


# ─────────────────────────────────────────────────────────────────────────────
# Volumes
# ─────────────────────────────────────────────────────────────────────────────


def make_disk_info(
    name: str,
    mount_point: str,
    total: int,
    available: int,
    is_network: bool = False,
    is_removable: bool = False,
) -> DiskInfo:
    """Build a DiskInfo with free space clamped into [0, total]."""
    total = max(0, total)
    return DiskInfo(
        name=name,
        mount_point=mount_point,
        total_space=total,
        free_space=max(0, min(available, total)),
        is_network_disk=is_network,
        is_removable=is_removable,
    )


def is_visible_volume(name: str, total: int) -> bool:
    """Hide tiny partitions and system helper volumes."""
    return total >= MIN_VOLUME_SIZE and name not in SYSTEM_VOLUMES


def split_volumes(volumes: list[DiskInfo]) -> tuple[tuple[DiskInfo, ...], tuple[DiskInfo, ...]]:
    """Split volumes into (local, network), each sorted largest first."""
    local = sorted(
        (v for v in volumes if not v.is_network_disk), key=lambda v: v.total_space, reverse=True
    )
    network = sorted(
        (v for v in volumes if v.is_network_disk), key=lambda v: v.total_space, reverse=True
    )
    return tuple(local), tuple(network)


def main_disk_usage(disks: tuple[DiskInfo, ...] | list[DiskInfo]) -> float:
    for disk in disks:
        if disk.mount_point == "/":
            return disk.usage_percentage
    return disks[0].usage_percentage if disks else 0.0


def read_volumes() -> list[DiskInfo]:
    """Enumerate mounted volumes with their capacities."""
    volumes = []
    for part in psutil.disk_partitions(all=False):
        name = Path(part.mountpoint).name or part.mountpoint
        try:
            usage = psutil.disk_usage(part.mountpoint)
        except OSError as e:
            log.debug("volume_unreadable", mount_point=part.mountpoint, error=str(e))
            continue
        if not is_visible_volume(name, usage.total):
            continue
        is_network = part.fstype.lower() in NETWORK_FILESYSTEMS
        volumes.append(
            make_disk_info(
                name=name,
                mount_point=part.mountpoint,
                total=usage.total,
                available=usage.free,
                is_network=is_network,
                is_removable=not is_network and part.mountpoint.startswith(REMOVABLE_PREFIXES),
            )
        )
    return volumes


def read_disk_bytes() -> dict[str, tuple[int, int]]:
    """Cumulative (read, written) bytes per physical disk."""
    counters = psutil.disk_io_counters(perdisk=True) or {}
    return {name: (c.read_bytes, c.write_bytes) for name, c in counters.items()}


def read_process_disk_io(processes: dict[int, str]) -> dict[ProcessKey, ProcessCounters]:
    """Cumulative disk bytes for each listed process that is still readable."""
    snapshot: dict[ProcessKey, ProcessCounters] = {}
    for pid, name in processes.items():
        io = get_disk_io(pid)
        if io is None:
            continue
        snapshot[ProcessKey(name=name, pid=pid)] = ProcessCounters(
            pid=pid, name=name, counter_a=io[0], counter_b=io[1]
        )
    return snapshot


# ─────────────────────────────────────────────────────────────────────────────
# Sampler
# ─────────────────────────────────────────────────────────────────────────────


class DiskSampler(PeriodicSampler):
    """Samples volumes and per-disk I/O counters; also performs ejects."""

    sampler_id = "disk"
    attribution_ceiling = PROCESS_IO_CEILING

    def __init__(
        self,
        config: Config,
        runner: CommandRunner = run_command,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(config, runner, clock)
        size = config.sampling.history_size
        self._read_history = RingBuffer(size)
        self._write_history = RingBuffer(size)
        self._previous: dict[str, tuple[CounterReading, CounterReading]] = {}
        self._read_speed = 0.0
        self._write_speed = 0.0
        self.snapshot: Published[DiskSnapshot] = Published(DiskSnapshot())

    @property
    def poll_interval(self) -> float:
        return self.config.sampling.disk_poll_interval

    async def sample(self, now: float) -> None:
        loop = asyncio.get_running_loop()
        volumes = await loop.run_in_executor(None, read_volumes)
        counters = await loop.run_in_executor(None, read_disk_bytes)

        rates = self._disk_rates(counters, now)
        if rates is None:
            log.debug("disk_sample_discarded", reason="no_elapsed_time")
            return
        self._read_speed, self._write_speed = rates
        self._read_history.push(self._read_speed)
        self._write_history.push(self._write_speed)

        disks, network_disks = split_volumes(volumes)
        self.snapshot.set(
            DiskSnapshot(
                disks=disks,
                network_disks=network_disks,
                read_speed=self._read_speed,
                write_speed=self._write_speed,
                read_history=self._read_history.freeze(),
                write_history=self._write_history.freeze(),
            )
        )

    def _disk_rates(
        self, counters: dict[str, tuple[int, int]], now: float
    ) -> tuple[float, float] | None:
        """Sum per-disk rates; None when the poll has to be discarded.

        Disks seen for the first time only set a baseline.
        """
        total_read = 0.0
        total_write = 0.0
        current: dict[str, tuple[CounterReading, CounterReading]] = {}
        for disk, (read_bytes, write_bytes) in counters.items():
            reading = (CounterReading(now, read_bytes), CounterReading(now, write_bytes))
            current[disk] = reading
            previous = self._previous.get(disk)
            if previous is None:
                continue
            read_rate = compute_rate(previous[0], reading[0])
            write_rate = compute_rate(previous[1], reading[1])
            if read_rate is None or write_rate is None:
                return None
            total_read += read_rate
            total_write += write_rate

        self._previous = current
        return clamp(total_read, 0.0, MAX_RATE), clamp(total_write, 0.0, MAX_RATE)

    async def attribute(self, now: float) -> None:
        result = await self._run_command(PS, PS_ARGS, self.config.commands.ps_timeout)
        if not result.ok:
            log.debug("disk_attribution_skipped", error=result.message)
            return

        processes = parse_ps_processes(result.stdout or "")
        loop = asyncio.get_running_loop()
        snapshot = await loop.run_in_executor(None, read_process_disk_io, processes)
        self.tracker.update(snapshot, now)

    async def refresh_volumes(self) -> None:
        """Re-enumerate volumes immediately and republish them."""
        loop = asyncio.get_running_loop()
        volumes = await loop.run_in_executor(None, read_volumes)
        disks, network_disks = split_volumes(volumes)
        self.snapshot.set(replace(self.snapshot.get(), disks=disks, network_disks=network_disks))

    async def eject(self, mount_point: str) -> EjectResult:
        """Eject a volume; on success the volume list is refreshed before returning."""
        command = self.config.commands.eject_command
        result = await self._run_command(
            command[0], [*command[1:], mount_point], self.config.commands.eject_timeout
        )
        if not result.ok:
            log.error("eject_failed", mount_point=mount_point, error=result.message)
            return EjectResult(success=False, reason=result.message)

        log.info("ejected", mount_point=mount_point, output=(result.stdout or "").strip())
        await self.refresh_volumes()
        return EjectResult(success=True)
