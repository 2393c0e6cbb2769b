"""Network domain sampler: interface throughput, addresses and per-process traffic."""

from __future__ import annotations

import asyncio
import socket
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import psutil
import structlog

from host_vitals.command import CommandRunner, run_command
from host_vitals.config import Config
from host_vitals.delta import CounterReading, compute_rate, counter_delta
from host_vitals.fetcher import FetchErrorKind, WanAddressFetcher
from host_vitals.parsers import parse_nettop
from host_vitals.ringbuffer import RingBuffer
from host_vitals.sampler import PeriodicSampler
from host_vitals.store import Published
from host_vitals.tracker import ProcessCounters, ProcessKey

log = structlog.get_logger()

NETTOP = "/usr/bin/nettop"
NETTOP_ARGS = (
    "-P",
    "-L",
    "1",
    "-k",
    "time,interface,state,rx_dupe,rx_ooo,re-tx,rtt_avg,rcvsize,tx_win,"
    "tc_class,tc_mgt,cc_algo,P,C,R,W,arch",
    "-t",
    "wifi",
    "-t",
    "wired",
)

PREFERRED_INTERFACE = "en0"


@dataclass(frozen=True)
class NetworkSnapshot:
    """Everything the network sampler publishes in one tick."""

    download_speed: float = 0.0  # Bytes/sec
    upload_speed: float = 0.0
    download_history: tuple[float, ...] = ()
    upload_history: tuple[float, ...] = ()
    total_downloaded: int = 0  # Bytes since the sampler started
    total_uploaded: int = 0
    is_network_available: bool = False
    lan_address: str | None = None
    wan_address: str | None = None


# ─────────────────────────────────────────────────────────────────────────────
# Native readers
# ─────────────────────────────────────────────────────────────────────────────


def _is_loopback(name: str) -> bool:
    return name.startswith("lo")  # lo, lo0, lo:1


def read_interface_bytes() -> tuple[int, int]:
    """Return cumulative (received, sent) bytes summed over non-loopback interfaces."""
    received = 0
    sent = 0
    for name, counters in psutil.net_io_counters(pernic=True).items():
        if _is_loopback(name):
            continue
        received += counters.bytes_recv
        sent += counters.bytes_sent
    return received, sent


def _ipv4_addresses() -> dict[str, list[str]]:
    addresses: dict[str, list[str]] = {}
    for name, addrs in psutil.net_if_addrs().items():
        if _is_loopback(name):
            continue
        for addr in addrs:
            if addr.family == socket.AF_INET and not addr.address.startswith("127."):
                addresses.setdefault(name, []).append(addr.address)
    return addresses


def read_lan_address() -> str | None:
    """Local IPv4 address: en0 first, then any en* interface, then anything else."""
    addresses = _ipv4_addresses()
    if addresses.get(PREFERRED_INTERFACE):
        return addresses[PREFERRED_INTERFACE][0]
    for name in sorted(addresses):
        if name.startswith("en"):
            return addresses[name][0]
    for name in sorted(addresses):
        return addresses[name][0]
    return None


def is_network_available() -> bool:
    """Reachability signal: some non-loopback interface is up and has an address."""
    stats = psutil.net_if_stats()
    for name, addrs in psutil.net_if_addrs().items():
        if _is_loopback(name):
            continue
        nic = stats.get(name)
        if nic is None or not nic.isup:
            continue
        if any(a.family in (socket.AF_INET, socket.AF_INET6) for a in addrs):
            return True
    return False


# ─────────────────────────────────────────────────────────────────────────────
# Sampler
# ─────────────────────────────────────────────────────────────────────────────


class NetworkSampler(PeriodicSampler):
    """Samples interface counters every poll and refreshes addresses on a slow timer."""

    sampler_id = "network"
    attribution_ceiling = 10_000_000_000.0  # Bytes/sec per process

    def __init__(
        self,
        config: Config,
        runner: CommandRunner = run_command,
        clock: Callable[[], float] = time.monotonic,
        fetcher: WanAddressFetcher | None = None,
    ) -> None:
        super().__init__(config, runner, clock)
        size = config.sampling.history_size
        self._download_history = RingBuffer(size)
        self._upload_history = RingBuffer(size)
        self._previous: tuple[CounterReading, CounterReading] | None = None
        self._total_downloaded = 0
        self._total_uploaded = 0
        self._download_speed = 0.0
        self._upload_speed = 0.0
        self.lan_address: str | None = None
        self.wan_address: str | None = None
        self.fetcher = fetcher or WanAddressFetcher(config, is_reachable=is_network_available)
        self.attribution_enabled = Path(NETTOP).exists()
        self.snapshot: Published[NetworkSnapshot] = Published(NetworkSnapshot())

    def extra_loops(self):
        return [self._address_loop()]

    async def sample(self, now: float) -> None:
        loop = asyncio.get_running_loop()
        received, sent = await loop.run_in_executor(None, read_interface_bytes)
        download = CounterReading(now, received)
        upload = CounterReading(now, sent)

        if self._previous is not None:
            prev_download, prev_upload = self._previous
            download_rate = compute_rate(prev_download, download)
            upload_rate = compute_rate(prev_upload, upload)
            if download_rate is None or upload_rate is None:
                log.debug("network_sample_discarded", reason="no_elapsed_time")
                return
            self._download_speed = download_rate
            self._upload_speed = upload_rate
            self._total_downloaded += counter_delta(prev_download.value, received)
            self._total_uploaded += counter_delta(prev_upload.value, sent)
        self._previous = (download, upload)

        self._download_history.push(self._download_speed)
        self._upload_history.push(self._upload_speed)

        self.snapshot.set(
            NetworkSnapshot(
                download_speed=self._download_speed,
                upload_speed=self._upload_speed,
                download_history=self._download_history.freeze(),
                upload_history=self._upload_history.freeze(),
                total_downloaded=self._total_downloaded,
                total_uploaded=self._total_uploaded,
                is_network_available=is_network_available(),
                lan_address=self.lan_address,
                wan_address=self.wan_address,
            )
        )

    async def attribute(self, now: float) -> None:
        result = await self._run_command(NETTOP, NETTOP_ARGS, self.config.commands.nettop_timeout)
        if not result.ok:
            log.debug("network_attribution_skipped", error=result.message)
            return

        snapshot = {
            ProcessKey(name=name): ProcessCounters(
                pid=entry.pid, name=name, counter_a=entry.bytes_in, counter_b=entry.bytes_out
            )
            for name, entry in parse_nettop(result.stdout or "").items()
        }
        self.tracker.update(snapshot, now)

    async def refresh_addresses(self) -> None:
        """Refresh the LAN address and run one WAN fetch cycle."""
        self.lan_address = read_lan_address()
        result = await self.fetcher.fetch()
        if result.ok:
            self.wan_address = result.address
        elif result.error is FetchErrorKind.UNREACHABLE:
            self.wan_address = None
        # On exhaustion the previous WAN address stays published
        log.debug(
            "addresses_refreshed",
            lan=self.lan_address,
            wan=self.wan_address,
            error=result.error.value if result.error else None,
        )

    async def _address_loop(self) -> None:
        while self._running:
            try:
                await self.refresh_addresses()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error("address_refresh_failed", error=str(e))
            await asyncio.sleep(self.config.wan.refresh_interval)
