"""
RequestClient - Async HTTP client for the dashboard backend.

Combines:
- CacheManager for TTL response caching of reads
- RequestDeduplicator so one key never has two calls in flight
- Linear retry backoff for timeouts and transport failures
- A hard timeout on every attempt
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable

import httpx
from loguru import logger

from dashlink.services.cache import CacheManager
from dashlink.services.deduplicator import RequestDeduplicator
from dashlink.services.errors import (
    BackendError,
    BackendUnavailableError,
    DecodeError,
    RequestTimeoutError,
    ServiceUnavailableError,
    TransportError,
    error_for_status,
)

if TYPE_CHECKING:
    from dashlink.services.availability import AvailabilityMonitor
    from dashlink.settings import Settings


@dataclass
class ClientConfig:
    """Configuration for the request client."""

    base_url: str = "http://localhost:5000"
    timeout: float = 30.0  # Per attempt
    cache_ttl: float = 300.0
    cache_max_size: int = 100
    max_retries: int = 3  # Total attempts for retryable failures
    retry_base_delay: float = 1.0  # Delay before retry n is base * n
    gate_on_availability: bool = False
    headers: dict[str, str] = field(
        default_factory=lambda: {"Content-Type": "application/json"}
    )

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ClientConfig":
        return cls(
            base_url=settings.api_base_url,
            timeout=settings.request_timeout_seconds,
            cache_ttl=settings.cache_ttl_seconds,
            cache_max_size=settings.cache_max_size,
            max_retries=settings.max_retries,
            retry_base_delay=settings.retry_base_delay_seconds,
            gate_on_availability=settings.gate_on_availability,
        )


@dataclass
class RequestStats:
    """Counters for requests and network attempts."""

    requests: int = 0
    cache_hits: int = 0
    network_attempts: int = 0
    retries: int = 0
    failures: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "requests": self.requests,
            "cache_hits": self.cache_hits,
            "network_attempts": self.network_attempts,
            "retries": self.retries,
            "failures": self.failures,
        }


class RequestClient:
    """
    HTTP client with caching, deduplication and retry.

    Usage:
        client = RequestClient(ClientConfig(base_url="https://api.example.com"))

        # Cached, deduplicated read
        customers = await client.request("/api/customers", cache_key="customers:all")

        # Write, never cached, then drop the affected reads
        await client.request("/api/customers", method="POST", json_data=payload)
        await client.invalidate("customers")
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        monitor: "AvailabilityMonitor | None" = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        debug: bool = False,
    ):
        self.config = config or ClientConfig()
        self._monitor = monitor
        self._transport = transport
        self._sleep = sleep
        self._debug = debug

        self._cache = CacheManager(
            max_size=self.config.cache_max_size,
            default_ttl=self.config.cache_ttl,
            clock=clock,
            debug=debug,
        )
        self._deduplicator = RequestDeduplicator(debug=debug)
        self._stats = RequestStats()

        # HTTP client (lazy initialization)
        self._http_client: httpx.AsyncClient | None = None

    @property
    def cache(self) -> CacheManager:
        return self._cache

    @property
    def monitor(self) -> "AvailabilityMonitor | None":
        return self._monitor

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout),
                transport=self._transport,
                follow_redirects=True,
            )
        return self._http_client

    async def request(
        self,
        target: str,
        *,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json_data: Any = None,
        cache_key: str | None = None,
        cache_ttl: float | None = None,
        notify_monitor: bool = True,
    ) -> Any:
        """
        Make an HTTP request with caching, deduplication and retry.

        Args:
            target: Path relative to the base URL, or an absolute URL
            method: HTTP method (GET, POST, etc.)
            params: Query parameters
            headers: Additional headers
            json_data: JSON body for POST/PUT requests
            cache_key: Cache and dedup identity; omit for uncached calls
            cache_ttl: Override cache TTL in seconds
            notify_monitor: Report outage-like failures to the monitor

        Returns:
            Decoded JSON payload (None for an empty body)

        Raises:
            RequestTimeoutError: Every attempt timed out
            TransportError: Every attempt failed at the network level
            UnauthorizedError, NotFoundError, ServiceUnavailableError,
            ResponseStatusError, DecodeError: Raised after one attempt
            BackendUnavailableError: Gated while the monitor reports an outage
        """
        method = method.upper()
        self._stats.requests += 1

        # Merge headers
        req_headers = dict(self.config.headers)
        if headers:
            req_headers.update(headers)

        async def do_request() -> Any:
            return await self._execute_with_retry(
                target=target,
                method=method,
                params=params,
                headers=req_headers,
                json_data=json_data,
                notify_monitor=notify_monitor,
            )

        if cache_key is None or method != "GET":
            self._check_gate(target)
            return await do_request()

        cached = await self._cache.get(cache_key)
        if cached is not None:
            self._stats.cache_hits += 1
            return cached.data

        # Cached data is served even while gated
        self._check_gate(target)

        async def fetch_and_store() -> Any:
            data = await do_request()
            await self._cache.set(cache_key, data, cache_ttl)
            return data

        return await self._deduplicator.dedupe(cache_key, fetch_and_store)

    async def _execute_with_retry(
        self,
        target: str,
        method: str,
        params: dict[str, Any] | None,
        headers: dict[str, str],
        json_data: Any,
        notify_monitor: bool = True,
    ) -> Any:
        """Run the attempt sequence, retrying only retryable failures."""
        max_attempts = max(1, self.config.max_retries)
        last_error: BackendError | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                return await self._execute_request(
                    target=target,
                    method=method,
                    params=params,
                    headers=headers,
                    json_data=json_data,
                )
            except BackendError as e:
                if not e.retryable:
                    self._stats.failures += 1
                    if notify_monitor and isinstance(e, ServiceUnavailableError):
                        self._report_failure()
                    raise

                last_error = e
                if attempt == max_attempts:
                    break

                delay = self.config.retry_base_delay * attempt
                self._stats.retries += 1
                logger.warning(
                    f"Retry {attempt}/{max_attempts - 1} for {method} {target} "
                    f"in {delay}s: {e}"
                )
                await self._sleep(delay)

        self._stats.failures += 1
        logger.error(
            f"{method} {target} failed after {max_attempts} attempts: {last_error}"
        )
        if notify_monitor:
            self._report_failure()
        raise last_error

    async def _execute_request(
        self,
        target: str,
        method: str,
        params: dict[str, Any] | None,
        headers: dict[str, str],
        json_data: Any,
    ) -> Any:
        """Execute one HTTP attempt and decode its payload."""
        client = await self._get_http_client()
        url = self._build_url(target)
        timeout = self.config.timeout
        self._stats.network_attempts += 1

        try:
            # wait_for cancels the underlying call when the deadline passes
            response = await asyncio.wait_for(
                client.request(
                    method=method,
                    url=url,
                    params=params,
                    headers=headers,
                    json=json_data,
                ),
                timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise RequestTimeoutError(target, timeout) from e
        except httpx.RequestError as e:
            raise TransportError(
                f"Request to '{target}' failed: {type(e).__name__}: {e}",
                target=target,
            ) from e

        if not response.is_success:
            raise error_for_status(target, response.status_code, response.text[:200])

        if not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(
                f"Malformed JSON from '{target}': {e}", target=target
            ) from e

    def _build_url(self, target: str) -> str:
        if target.startswith(("http://", "https://")):
            return target
        return f"{self.config.base_url.rstrip('/')}/{target.lstrip('/')}"

    def _check_gate(self, target: str) -> None:
        if not (self._monitor and self.config.gate_on_availability):
            return
        state = self._monitor.current_state()
        if state.is_unavailable:
            raise BackendUnavailableError(target, state.failed_attempts)

    def _report_failure(self) -> None:
        if self._monitor is not None:
            self._monitor.notify_failure()

    async def invalidate(self, pattern: str | None = None) -> int:
        """Drop cached responses whose key contains pattern (all if None)."""
        count = await self._cache.invalidate(pattern)
        if count:
            logger.debug(f"Invalidated {count} cached responses for '{pattern or '*'}'")
        return count

    async def prefetch(self, target: str, cache_key: str) -> None:
        """Warm the cache for target. Failures are logged, not raised."""
        try:
            await self.request(target, cache_key=cache_key)
        except BackendError as e:
            logger.debug(f"Prefetch of {target} failed: {e}")

    async def batch_fetch(
        self, requests: Iterable[tuple[str, str | None]]
    ) -> list[Any]:
        """
        Fetch several (target, cache_key) pairs concurrently.

        Results come back in order; a failed entry holds its exception.
        """
        return await asyncio.gather(
            *(self.request(target, cache_key=key) for target, key in requests),
            return_exceptions=True,
        )

    async def close(self) -> None:
        """Close the HTTP client and cleanup resources."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

        await self._deduplicator.cancel_all()
        logger.debug("RequestClient closed")

    async def __aenter__(self) -> "RequestClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def get_stats(self) -> dict[str, Any]:
        """Get cache, deduplication and request statistics."""
        return {
            "requests": self._stats.to_dict(),
            "cache": self._cache.get_stats().to_dict(),
            "deduplicator": self._deduplicator.get_stats().to_dict(),
        }
