"""Shared test fixtures for host-vitals."""

from collections.abc import Sequence

import pytest

from host_vitals.command import CommandErrorKind, CommandResult
from host_vitals.config import Config
from host_vitals.tracker import ProcessCounters, ProcessKey


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRunner:
    """Command gateway double returning canned results per executable."""

    def __init__(self, results: dict[str, CommandResult] | None = None) -> None:
        self.results = results or {}
        self.calls: list[tuple[str, list[str], float]] = []

    async def __call__(
        self, executable: str, arguments: Sequence[str], timeout: float
    ) -> CommandResult:
        self.calls.append((executable, list(arguments), timeout))
        return self.results.get(
            executable,
            CommandResult.failure(CommandErrorKind.NOT_FOUND, f"no fake for {executable}"),
        )


def make_counters(
    pid: int = 100,
    name: str = "proc",
    a: int = 0,
    b: int = 0,
    keyed_by_name: bool = False,
) -> tuple[ProcessKey, ProcessCounters]:
    """Create a (key, counters) pair for tracker snapshots."""
    key = ProcessKey(name=name) if keyed_by_name else ProcessKey(name=name, pid=pid)
    return key, ProcessCounters(pid=pid, name=name, counter_a=a, counter_b=b)


@pytest.fixture
def config() -> Config:
    """Default configuration."""
    return Config()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()
