"""
ResilientClient - Request orchestration over an async transport.

Combines:
- TTLCache for response caching
- RequestDeduplicator for concurrent request optimization
- retry_with_backoff for transient failures
- OptimisticOperation for mutations applied locally before confirmation
"""

import asyncio
from datetime import timedelta
from typing import Any, Awaitable, Callable, Iterable

from loguru import logger

from potracker.services.cache import DEFAULT_TTL, TTLCache
from potracker.services.deduplicator import RequestDeduplicator
from potracker.services.errors import ValidationError
from potracker.services.optimistic import OptimisticOperation, OptimisticResult
from potracker.services.retry import RetryPolicy, RetryPresets, retry_with_backoff
from potracker.services.transport import HttpTransport, Transport

CACHE_BUST_PARAM = "_t"
REFRESH_PARAM = "refresh"
METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})

DEFAULT_SWEEP_INTERVAL = timedelta(seconds=30)

_MISS = object()


def build_cache_key(
    method: str, endpoint: str, params: dict[str, Any] | None = None
) -> str:
    """Generate a cache key from method, endpoint and normalized params."""
    if params:
        items = sorted((k, v) for k, v in params.items() if v is not None)
        if items:
            query = "&".join(f"{k}={v}" for k, v in items)
            return f"{method} {endpoint}?{query}"
    return f"{method} {endpoint}"


def should_bypass_cache(
    params: dict[str, Any] | None = None, force_refresh: bool = False
) -> bool:
    """Forced refreshes and cache-busting timestamps skip cache and dedup."""
    if force_refresh:
        return True
    if not params:
        return False
    if params.get(CACHE_BUST_PARAM) is not None:
        return True
    return str(params.get(REFRESH_PARAM, "")).lower() == "true"


class ResilientClient:
    """
    Client with caching, deduplication, retries and optimistic mutations.

    Usage:
        async with ResilientClient(transport) as client:
            vendors = await client.get("/vendors", {"limit": 50})

            result = await client.mutate(
                "POST", "/purchase-orders", payload,
                apply_fn=lambda: orders.append(draft),
                rollback_fn=lambda: orders.remove(draft),
                invalidate=["/purchase-orders"],
            )
    """

    def __init__(
        self,
        transport: Transport,
        default_cache_ttl: timedelta = DEFAULT_TTL,
        retry_policy: RetryPolicy = RetryPresets.standard,
        cache: TTLCache | None = None,
        deduplicator: RequestDeduplicator | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        sweep_interval: timedelta = DEFAULT_SWEEP_INTERVAL,
        debug: bool = False,
    ):
        self._transport = transport
        self._retry_policy = retry_policy
        self._sleep = sleep or asyncio.sleep
        self._debug = debug
        self._owns_transport = False
        self._sweep_interval = sweep_interval
        # Bumped when an in-flight read is invalidated; its response is then not cached
        self._generations: dict[str, int] = {}

        # Initialize components
        self._cache = (
            cache
            if cache is not None
            else TTLCache(default_ttl=default_cache_ttl, debug=debug)
        )
        self._deduplicator = (
            deduplicator
            if deduplicator is not None
            else RequestDeduplicator(debug=debug)
        )

    @classmethod
    def from_settings(cls, settings: Any = None) -> "ResilientClient":
        """Build a client over HttpTransport from Settings."""
        if settings is None:
            from potracker.settings import global_settings

            settings = global_settings

        transport = HttpTransport(
            settings.api_base_url,
            token=settings.api_token or None,
            timeout=settings.api_timeout,
        )
        client = cls(
            transport,
            default_cache_ttl=timedelta(seconds=settings.cache_ttl_seconds),
            retry_policy=RetryPresets.get(settings.retry_preset),
            sweep_interval=timedelta(seconds=settings.cache_sweep_interval_seconds),
            debug=settings.client_debug,
        )
        client._owns_transport = True
        return client

    @property
    def cache(self) -> TTLCache:
        return self._cache

    @property
    def deduplicator(self) -> RequestDeduplicator:
        return self._deduplicator

    def start(self, sweep_interval: timedelta | None = None) -> None:
        """Start background cache sweeping."""
        self._cache.start(sweep_interval or self._sweep_interval)

    async def get(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        *,
        force_refresh: bool = False,
        cache_ttl: timedelta | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> Any:
        """
        Cached, deduplicated, retried GET.

        Args:
            endpoint: Path relative to the API base
            params: Query parameters
            force_refresh: Skip cache and dedup for this call
            cache_ttl: Override cache TTL
            retry_policy: Override retry policy

        Returns:
            Response body (possibly from cache)
        """
        self._validate("GET", endpoint)

        if should_bypass_cache(params, force_refresh):
            self._log(f"BYPASS: GET {endpoint}")
            return await self.request(
                "GET", endpoint, params=params, retry_policy=retry_policy
            )

        cache_key = build_cache_key("GET", endpoint, params)

        cached = self._cache.get(cache_key, _MISS)
        if cached is not _MISS:
            return cached

        async def fetch() -> Any:
            return await self.request(
                "GET", endpoint, params=params, retry_policy=retry_policy
            )

        generation = self._generations.get(cache_key, 0)
        data = await self._deduplicator.execute(cache_key, fetch)
        if self._generations.get(cache_key, 0) == generation:
            self._cache.set(cache_key, data, cache_ttl)
        else:
            self._log(f"STALE: not caching invalidated read {cache_key}")
        return data

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        json_data: Any = None,
        retry_policy: RetryPolicy | None = None,
    ) -> Any:
        """Uncached transport call with retries."""
        method = method.upper()
        self._validate(method, endpoint)

        async def send() -> Any:
            return await self._transport(
                method, endpoint, params=params, json_data=json_data
            )

        return await retry_with_backoff(
            send, retry_policy or self._retry_policy, sleep=self._sleep
        )

    async def post(self, endpoint: str, json_data: Any = None) -> Any:
        return await self.request("POST", endpoint, json_data=json_data)

    async def put(self, endpoint: str, json_data: Any = None) -> Any:
        return await self.request("PUT", endpoint, json_data=json_data)

    async def delete(self, endpoint: str) -> Any:
        return await self.request("DELETE", endpoint)

    async def mutate(
        self,
        method: str,
        endpoint: str,
        json_data: Any = None,
        *,
        apply_fn: Callable[[], Any],
        rollback_fn: Callable[[], Any] | None = None,
        on_success: Callable[[Any], Any] | None = None,
        on_error: Callable[[Exception], Any] | None = None,
        invalidate: Iterable[str] = (),
        retry_policy: RetryPolicy | None = None,
    ) -> OptimisticResult[Any]:
        """
        Apply a local change, send the mutation, roll back if it fails.

        Bypasses cache and dedup. On success every cache entry whose key
        contains one of the ``invalidate`` patterns is dropped.
        """
        patterns = list(invalidate)

        def confirmed(result: Any) -> None:
            for pattern in patterns:
                self.invalidate(pattern)
            if on_success:
                on_success(result)

        operation = OptimisticOperation(
            apply_fn=apply_fn,
            remote_call=lambda: self.request(
                method, endpoint, json_data=json_data, retry_policy=retry_policy
            ),
            rollback_fn=rollback_fn,
            on_success=confirmed,
            on_error=on_error,
        )
        result = await operation.run()
        self._log(f"MUTATE: {method} {endpoint} -> {operation.status.value}")
        return result

    def invalidate(self, pattern: str) -> int:
        """
        Drop cache entries whose key contains ``pattern``.

        Matching reads still in flight are detached, so their responses are
        returned to their callers but never cached.
        """
        for key in self._deduplicator.get_pending_keys():
            if pattern in key:
                self._detach(key)
        return self._cache.invalidate_pattern(pattern)

    def clear_cache(self) -> None:
        for key in self._deduplicator.get_pending_keys():
            self._detach(key)
        self._cache.clear()

    def _detach(self, key: str) -> None:
        self._deduplicator.cancel(key)
        self._generations[key] = self._generations.get(key, 0) + 1

    def get_health_status(self) -> dict[str, Any]:
        """Get cache and deduplicator status."""
        return {
            "cache": self._cache.get_stats().to_dict(),
            "deduplicator": self._deduplicator.get_stats().to_dict(),
            "pending_keys": self._deduplicator.get_pending_keys(),
        }

    async def close(self) -> None:
        """Stop the sweep, abort in-flight requests and release the transport."""
        await self._cache.close()
        self._deduplicator.abort_all()
        if self._owns_transport and isinstance(self._transport, HttpTransport):
            await self._transport.close()
        logger.debug("ResilientClient closed")

    async def __aenter__(self) -> "ResilientClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    @staticmethod
    def _validate(method: str, endpoint: str) -> None:
        if method not in METHODS:
            raise ValidationError(f"Unsupported HTTP method: {method}", endpoint)
        if not endpoint.startswith("/"):
            raise ValidationError(f"Endpoint must start with '/': {endpoint}", endpoint)

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[ResilientClient] {message}")

