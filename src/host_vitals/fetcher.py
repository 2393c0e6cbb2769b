"""Best-effort WAN address lookup with retry, backoff and endpoint failover."""

from __future__ import annotations

import asyncio
import functools
import ipaddress
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

import requests
import structlog

from host_vitals.config import Config

log = structlog.get_logger()

# Extra seconds on top of the request timeout before an attempt is abandoned
RESOURCE_TIMEOUT_MARGIN = 5.0


class FetchErrorKind(Enum):
    """Why no address was produced."""

    UNREACHABLE = "unreachable"
    INVALID_RESPONSE = "invalid_response"
    EXHAUSTED = "exhausted"


@dataclass
class FetchState:
    """Position in the retry state machine for the current fetch cycle."""

    endpoint_index: int = 0
    retry_count: int = 0
    reachable: bool = True


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one fetch cycle."""

    address: str | None
    error: FetchErrorKind | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.address is not None


def is_valid_ip_address(text: str) -> bool:
    """Check that text is a plain IPv4 or IPv6 address (ASCII only, no scope ID)."""
    if not text.isascii() or "%" in text:
        return False
    try:
        ipaddress.ip_address(text)
    except ValueError:
        return False
    return True


class WanAddressFetcher:
    """Resolves the public address via a static, ordered list of plaintext endpoints.

    Each endpoint gets one initial attempt plus `max_retries` retries, the
    k-th retry waiting `backoff_base * 2**(k-1)` seconds. When an endpoint is
    exhausted the next one starts fresh. Nothing is attempted while the
    reachability signal is down.
    """

    def __init__(
        self,
        config: Config,
        is_reachable: Callable[[], bool],
        http_get: Callable[..., requests.Response] = requests.get,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self._is_reachable = is_reachable
        self._http_get = http_get
        self._sleep = sleep
        self.state = FetchState()

    async def fetch(self) -> FetchResult:
        """Run one fetch cycle. Never raises for network failures."""
        self.state = FetchState(reachable=self._is_reachable())
        if not self.state.reachable:
            log.debug("wan_fetch_skipped", reason="network_unavailable")
            return FetchResult(address=None, error=FetchErrorKind.UNREACHABLE)

        wan = self.config.wan
        endpoints = list(wan.endpoints)
        attempts = 0

        while self.state.endpoint_index < len(endpoints):
            url = endpoints[self.state.endpoint_index]
            attempts += 1
            address = await self._attempt(url, wan.request_timeout)
            if address is not None:
                log.debug("wan_fetched", url=url, attempts=attempts)
                return FetchResult(address=address, attempts=attempts)

            self.state.retry_count += 1
            if self.state.retry_count <= wan.max_retries:
                delay = wan.backoff_base * 2 ** (self.state.retry_count - 1)
                log.debug(
                    "wan_fetch_retry",
                    url=url,
                    delay=delay,
                    attempt=self.state.retry_count + 1,
                    max_attempts=wan.max_retries + 1,
                )
                await self._sleep(delay)
            else:
                self.state.retry_count = 0
                self.state.endpoint_index += 1
                if self.state.endpoint_index < len(endpoints):
                    log.debug(
                        "wan_fetch_fallback",
                        endpoint=self.state.endpoint_index + 1,
                        endpoints=len(endpoints),
                    )

        log.warning("wan_fetch_exhausted", endpoints=len(endpoints), attempts=attempts)
        return FetchResult(address=None, error=FetchErrorKind.EXHAUSTED, attempts=attempts)

    async def _attempt(self, url: str, timeout: float) -> str | None:
        """One HTTP GET; returns the address or None on any failure."""
        loop = asyncio.get_running_loop()
        call = functools.partial(self._http_get, url, timeout=timeout)
        try:
            response = await asyncio.wait_for(
                loop.run_in_executor(None, call),
                timeout=timeout + RESOURCE_TIMEOUT_MARGIN,
            )
            response.raise_for_status()
        except asyncio.TimeoutError:
            log.debug("wan_fetch_failed", url=url, error="timeout")
            return None
        except requests.RequestException as e:
            log.debug("wan_fetch_failed", url=url, error=str(e))
            return None

        text = response.text.strip()
        if not is_valid_ip_address(text):
            log.debug(
                "wan_fetch_failed",
                url=url,
                error=FetchErrorKind.INVALID_RESPONSE.value,
                payload=text[:64],
            )
            return None
        return text
