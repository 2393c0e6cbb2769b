"""Tests for the network domain sampler."""

import socket
from types import SimpleNamespace

import pytest
from conftest import FakeClock, FakeRunner

from host_vitals import network
from host_vitals.command import CommandResult
from host_vitals.config import Config
from host_vitals.fetcher import FetchErrorKind, FetchResult
from host_vitals.network import NETTOP, NetworkSampler, read_lan_address
from host_vitals.tracker import ProcessKey


class FakeFetcher:
    def __init__(self, *results: FetchResult) -> None:
        self.results = list(results)

    async def fetch(self) -> FetchResult:
        return self.results.pop(0)


@pytest.fixture
def counters(monkeypatch):
    """Scripted cumulative (received, sent) interface bytes."""
    values = [(0, 0)]
    monkeypatch.setattr(network, "read_interface_bytes", lambda: values[0])
    monkeypatch.setattr(network, "is_network_available", lambda: True)
    return values


def make_sampler(runner=None, fetcher=None) -> NetworkSampler:
    return NetworkSampler(
        Config(), runner or FakeRunner(), FakeClock(), fetcher=fetcher or FakeFetcher()
    )


@pytest.mark.asyncio
async def test_first_sample_sets_baseline(counters):
    counters[0] = (5_000_000, 1_000_000)
    sampler = make_sampler()

    await sampler.sample(100.0)

    snapshot = sampler.snapshot.get()
    assert snapshot.download_speed == 0.0
    assert snapshot.total_downloaded == 0
    assert snapshot.is_network_available


@pytest.mark.asyncio
async def test_rates_use_measured_elapsed_time(counters):
    sampler = make_sampler()
    await sampler.sample(100.0)

    counters[0] = (3000, 600)
    await sampler.sample(102.0)

    snapshot = sampler.snapshot.get()
    assert snapshot.download_speed == 1500.0
    assert snapshot.upload_speed == 300.0
    assert snapshot.download_history[-1] == 1500.0
    assert snapshot.total_downloaded == 3000
    assert snapshot.total_uploaded == 600


@pytest.mark.asyncio
async def test_zero_elapsed_sample_is_discarded(counters):
    """A second reading with the same timestamp neither publishes nor moves the baseline."""
    sampler = make_sampler()
    await sampler.sample(100.0)
    counters[0] = (1000, 1000)
    await sampler.sample(101.0)
    version = sampler.snapshot.version

    counters[0] = (9000, 9000)
    await sampler.sample(101.0)

    assert sampler.snapshot.version == version
    assert sampler.snapshot.get().download_speed == 1000.0

    counters[0] = (2000, 2000)
    await sampler.sample(102.0)
    assert sampler.snapshot.get().download_speed == 1000.0


@pytest.mark.asyncio
async def test_counter_reset_counts_new_value(counters):
    sampler = make_sampler()
    counters[0] = (10_000, 10_000)
    await sampler.sample(100.0)

    counters[0] = (500, 500)
    await sampler.sample(101.0)

    snapshot = sampler.snapshot.get()
    assert snapshot.download_speed == 500.0
    assert snapshot.total_downloaded == 500


@pytest.mark.asyncio
async def test_attribute_parses_nettop():
    first = "Safari.412,1000,100,\nkernel_task.0,99,99,\n"
    second = "Safari.412,5000,300,\nkernel_task.0,999,999,\n"
    runner = FakeRunner({NETTOP: CommandResult.success(first)})
    sampler = make_sampler(runner)

    await sampler.attribute(0.0)
    runner.results[NETTOP] = CommandResult.success(second)
    await sampler.attribute(2.0)

    record = sampler.tracker.records[ProcessKey(name="Safari")]
    assert record.process_id == 412
    assert record.current_rate_a == 2000.0
    assert record.current_rate_b == 100.0
    assert ProcessKey(name="kernel_task") not in sampler.tracker.records


@pytest.mark.asyncio
async def test_attribute_failure_leaves_tracker_untouched():
    sampler = make_sampler(FakeRunner())

    await sampler.attribute(0.0)

    assert sampler.tracker.records == {}


@pytest.mark.asyncio
async def test_refresh_addresses(monkeypatch):
    monkeypatch.setattr(network, "read_lan_address", lambda: "192.168.1.20")
    sampler = make_sampler(fetcher=FakeFetcher(FetchResult("203.0.113.7", attempts=1)))

    await sampler.refresh_addresses()

    assert sampler.lan_address == "192.168.1.20"
    assert sampler.wan_address == "203.0.113.7"


@pytest.mark.asyncio
async def test_exhausted_fetch_keeps_previous_wan_address(monkeypatch):
    monkeypatch.setattr(network, "read_lan_address", lambda: None)
    sampler = make_sampler(
        fetcher=FakeFetcher(
            FetchResult("203.0.113.7", attempts=1),
            FetchResult(None, FetchErrorKind.EXHAUSTED, attempts=12),
        )
    )

    await sampler.refresh_addresses()
    await sampler.refresh_addresses()

    assert sampler.wan_address == "203.0.113.7"


@pytest.mark.asyncio
async def test_unreachable_clears_wan_address(monkeypatch):
    monkeypatch.setattr(network, "read_lan_address", lambda: None)
    sampler = make_sampler(
        fetcher=FakeFetcher(
            FetchResult("203.0.113.7", attempts=1),
            FetchResult(None, FetchErrorKind.UNREACHABLE),
        )
    )

    await sampler.refresh_addresses()
    await sampler.refresh_addresses()

    assert sampler.wan_address is None


@pytest.mark.asyncio
async def test_addresses_appear_in_snapshot(counters, monkeypatch):
    monkeypatch.setattr(network, "read_lan_address", lambda: "10.0.0.5")
    sampler = make_sampler(fetcher=FakeFetcher(FetchResult("198.51.100.1", attempts=1)))

    await sampler.refresh_addresses()
    await sampler.sample(100.0)

    snapshot = sampler.snapshot.get()
    assert snapshot.lan_address == "10.0.0.5"
    assert snapshot.wan_address == "198.51.100.1"


def _addr(address, family=socket.AF_INET):
    return SimpleNamespace(family=family, address=address)


def test_lan_address_prefers_en0(monkeypatch):
    monkeypatch.setattr(
        network.psutil,
        "net_if_addrs",
        lambda: {
            "lo0": [_addr("127.0.0.1")],
            "en5": [_addr("10.0.0.9")],
            "en0": [_addr("192.168.1.20")],
        },
    )
    assert read_lan_address() == "192.168.1.20"


def test_lan_address_falls_back_to_other_interfaces(monkeypatch):
    monkeypatch.setattr(
        network.psutil,
        "net_if_addrs",
        lambda: {"lo0": [_addr("127.0.0.1")], "utun3": [_addr("100.64.0.2")]},
    )
    assert read_lan_address() == "100.64.0.2"


def test_lan_address_none_when_only_loopback(monkeypatch):
    monkeypatch.setattr(network.psutil, "net_if_addrs", lambda: {"lo0": [_addr("127.0.0.1")]})
    assert read_lan_address() is None


def test_interface_bytes_skip_loopback(monkeypatch):
    monkeypatch.setattr(
        network.psutil,
        "net_io_counters",
        lambda pernic: {
            "lo0": SimpleNamespace(bytes_recv=1_000_000, bytes_sent=1_000_000),
            "en0": SimpleNamespace(bytes_recv=300, bytes_sent=200),
            "en1": SimpleNamespace(bytes_recv=100, bytes_sent=50),
        },
    )
    assert network.read_interface_bytes() == (400, 250)


def test_network_available_requires_up_interface(monkeypatch):
    monkeypatch.setattr(
        network.psutil, "net_if_addrs", lambda: {"en0": [_addr("192.168.1.20")]}
    )
    monkeypatch.setattr(
        network.psutil, "net_if_stats", lambda: {"en0": SimpleNamespace(isup=False)}
    )
    assert not network.is_network_available()

    monkeypatch.setattr(
        network.psutil, "net_if_stats", lambda: {"en0": SimpleNamespace(isup=True)}
    )
    assert network.is_network_available()
