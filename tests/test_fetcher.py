"""Tests for the WAN address fetcher."""

from unittest.mock import MagicMock

import pytest
import requests

from host_vitals.config import Config
from host_vitals.fetcher import FetchErrorKind, WanAddressFetcher, is_valid_ip_address


class FakeHttp:
    """requests.get double: maps URL to a list of outcomes consumed in order.

    An outcome is either a response body or an exception instance.
    """

    def __init__(self, outcomes: dict[str, list]) -> None:
        self.outcomes = {url: list(items) for url, items in outcomes.items()}
        self.calls: list[str] = []

    def __call__(self, url: str, timeout: float):
        self.calls.append(url)
        items = self.outcomes.get(url) or [requests.ConnectionError("down")]
        outcome = items.pop(0) if len(items) > 1 else items[0]
        if isinstance(outcome, Exception):
            raise outcome
        response = MagicMock()
        response.text = outcome
        response.raise_for_status.return_value = None
        return response


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def wan_config() -> Config:
    config = Config()
    config.wan.endpoints = ["https://one.test", "https://two.test", "https://three.test"]
    return config


@pytest.mark.parametrize(
    "text",
    ["203.0.113.7", "0.0.0.0", "255.255.255.255", "2001:db8::1", "fe80::1:2:3"],
)
def test_valid_addresses(text):
    assert is_valid_ip_address(text)


@pytest.mark.parametrize(
    "text",
    [
        "",
        "256.1.1.1",
        "1.2.3",
        "1.2.3.4.5",
        "hello",
        "<html>",
        "1.2.3.a",
        "12:34",
        ":::",
        ":::::::",
        "١.٢.٣.٤",
        "fe80::1%en0",
    ],
)
def test_invalid_addresses(text):
    assert not is_valid_ip_address(text)


@pytest.mark.asyncio
async def test_fetch_first_endpoint_success(wan_config):
    http = FakeHttp({"https://one.test": ["203.0.113.7\n"]})
    sleep = SleepRecorder()
    fetcher = WanAddressFetcher(wan_config, lambda: True, http_get=http, sleep=sleep)

    result = await fetcher.fetch()

    assert result.ok
    assert result.address == "203.0.113.7"
    assert result.attempts == 1
    assert http.calls == ["https://one.test"]
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_unreachable_makes_no_calls(wan_config):
    """No network path means zero HTTP calls and an immediate unavailable result."""
    http = FakeHttp({"https://one.test": ["203.0.113.7"]})
    fetcher = WanAddressFetcher(wan_config, lambda: False, http_get=http, sleep=SleepRecorder())

    result = await fetcher.fetch()

    assert not result.ok
    assert result.error is FetchErrorKind.UNREACHABLE
    assert http.calls == []
    assert fetcher.state.reachable is False


@pytest.mark.asyncio
async def test_backoff_before_failover(wan_config):
    """Endpoint 1 is retried with 1s, 2s, 4s waits before endpoint 2 is tried."""
    http = FakeHttp(
        {
            "https://one.test": [requests.Timeout("slow")],
            "https://two.test": ["198.51.100.2"],
        }
    )
    sleep = SleepRecorder()
    fetcher = WanAddressFetcher(wan_config, lambda: True, http_get=http, sleep=sleep)

    result = await fetcher.fetch()

    assert result.address == "198.51.100.2"
    assert sleep.delays == [1.0, 2.0, 4.0]
    assert sum(sleep.delays) >= 7.0
    assert http.calls == ["https://one.test"] * 4 + ["https://two.test"]
    assert fetcher.state.endpoint_index == 1
    assert fetcher.state.retry_count == 0


@pytest.mark.asyncio
async def test_invalid_payload_is_retried(wan_config):
    http = FakeHttp({"https://one.test": ["<html>rate limited</html>", "192.0.2.55"]})
    sleep = SleepRecorder()
    fetcher = WanAddressFetcher(wan_config, lambda: True, http_get=http, sleep=sleep)

    result = await fetcher.fetch()

    assert result.address == "192.0.2.55"
    assert result.attempts == 2
    assert sleep.delays == [1.0]


@pytest.mark.asyncio
async def test_http_error_status_is_a_failure(wan_config):
    error_response = MagicMock()
    error_response.raise_for_status.side_effect = requests.HTTPError("503")
    ok_response = MagicMock()
    ok_response.text = "192.0.2.1"
    responses = [error_response, ok_response]

    def http_get(url, timeout):
        return responses.pop(0)

    fetcher = WanAddressFetcher(
        wan_config, lambda: True, http_get=http_get, sleep=SleepRecorder()
    )
    result = await fetcher.fetch()

    assert result.address == "192.0.2.1"


@pytest.mark.asyncio
async def test_all_endpoints_exhausted(wan_config):
    http = FakeHttp({})
    sleep = SleepRecorder()
    fetcher = WanAddressFetcher(wan_config, lambda: True, http_get=http, sleep=sleep)

    result = await fetcher.fetch()

    assert not result.ok
    assert result.error is FetchErrorKind.EXHAUSTED
    assert result.attempts == 12  # 3 endpoints x (1 + 3 retries)
    assert sleep.delays == [1.0, 2.0, 4.0] * 3


@pytest.mark.asyncio
async def test_state_resets_each_cycle(wan_config):
    http = FakeHttp({"https://two.test": ["198.51.100.2"]})
    fetcher = WanAddressFetcher(wan_config, lambda: True, http_get=http, sleep=SleepRecorder())

    await fetcher.fetch()
    http.calls.clear()
    await fetcher.fetch()

    assert http.calls[0] == "https://one.test"


@pytest.mark.asyncio
async def test_request_timeout_is_passed(wan_config):
    wan_config.wan.request_timeout = 3.0
    seen = {}

    def http_get(url, timeout):
        seen["timeout"] = timeout
        response = MagicMock()
        response.text = "192.0.2.1"
        return response

    fetcher = WanAddressFetcher(
        wan_config, lambda: True, http_get=http_get, sleep=SleepRecorder()
    )
    await fetcher.fetch()

    assert seen["timeout"] == 3.0
