# -*- coding: utf-8 -*-
"""Location: ./mcprelay/cache/response_cache.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Response Cache Implementation.
This module keeps the last backend answer to one frequently repeated query
(``tools/list`` by default) so that clients polling it do not each pay the
backend round trip or trip its rate limit. Features:
- Single global entry with TTL-based validity
- Stale values kept and served when a refresh fails
- Cooldown after a rate-limited refresh
- Single-flight refresh: concurrent triggers share one backend call

Examples:
    >>> import asyncio
    >>> from mcprelay.cache.response_cache import ResponseCache
    >>> class Gateway:
    ...     calls = 0
    ...     async def call(self, method, params=None, request_id=None, conversation_id=None, route_prefix=None):
    ...         Gateway.calls += 1
    ...         return {'tools': []}
    >>> now = [1000.0]
    >>> cache = ResponseCache(Gateway(), ttl=60, cooldown=10, clock=lambda: now[0])
    >>> cache.is_valid()
    False
    >>> async def warm():
    ...     await cache.trigger_refresh('sid', 'warmup')
    >>> asyncio.run(warm())
    >>> cache.get()
    {'tools': []}
    >>> now[0] += 61
    >>> cache.get() is None, cache.get_stale()
    (True, {'tools': []})
"""

# Standard
import asyncio
from dataclasses import dataclass
import time
from typing import Any, Callable, Dict, Optional

# First-Party
from mcprelay.config import settings
from mcprelay.services.backend_gateway import BackendError, BackendRateLimitError
from mcprelay.services.logging_service import LoggingService

# Initialize logging service first
logging_service = LoggingService()
logger = logging_service.get_logger(__name__)


@dataclass
class CacheEntry:
    """Cached payload with its refresh bookkeeping."""

    value: Any = None
    refreshed_at: Optional[float] = None
    cooldown_until: float = 0.0
    route_prefix: Optional[str] = None


class ResponseCache:
    """
    Cache for the response to a single backend query.

    There is one global entry. It is keyed by neither route prefix nor request
    params: a namespace is served whatever another namespace last fetched, and
    a paginated request (for example one carrying a ``cursor``) gets the first
    page. Both cases are logged when they occur.

    Attributes:
        method: JSON-RPC method whose answer is cached
        ttl: Time-to-live in seconds
        cooldown: Back-off in seconds after a rate-limited refresh
        last_error: Most recent refresh failure, cleared on success
        _entry: Cached payload and timestamps
        _inflight: Outstanding refresh task, if any

    Examples:
        >>> cache = ResponseCache(gateway=None, ttl=60, cooldown=10, clock=lambda: 0.0)
        >>> cache.stats()['has_value']
        False
        >>> cache.cooldown_remaining()
        0.0
    """

    def __init__(
        self,
        gateway: Any,
        method: Optional[str] = None,
        ttl: Optional[float] = None,
        cooldown: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize cache.

        Args:
            gateway: Object exposing an async ``call(method, params, request_id, conversation_id, route_prefix)``
            method: Cached method, ``settings.cached_method`` by default
            ttl: Time-to-live in seconds, ``settings.cache_ttl`` by default
            cooldown: Cooldown in seconds, ``settings.cache_cooldown`` by default
            clock: Monotonic time source
        """
        self._gateway = gateway
        self.method = method or settings.cached_method
        self.ttl = ttl if ttl is not None else settings.cache_ttl
        self.cooldown = cooldown if cooldown is not None else settings.cache_cooldown
        self._clock = clock
        self._entry = CacheEntry()
        self._inflight: Optional[asyncio.Task] = None
        self.last_error: Optional[Exception] = None
        self.refresh_count = 0

    async def initialize(self) -> None:
        """Initialize cache service, optionally warming it up."""
        logger.info(f"Initializing response cache for {self.method} (ttl={self.ttl}s, cooldown={self.cooldown}s)")
        if settings.cache_warmup_on_startup:
            self.trigger_refresh(None, "startup")

    async def shutdown(self) -> None:
        """Shutdown cache service, cancelling any outstanding refresh."""
        logger.info("Shutting down response cache")
        task = self._inflight
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._inflight = None

    def is_valid(self) -> bool:
        """Whether a payload exists and is younger than the TTL.

        Returns:
            bool: validity
        """
        if self._entry.refreshed_at is None:
            return False
        return self._clock() - self._entry.refreshed_at < self.ttl

    def get(self) -> Optional[Any]:
        """
        Get the cached payload.

        Returns:
            The payload when valid, else None
        """
        if not self.is_valid():
            return None
        return self._entry.value

    def get_stale(self) -> Optional[Any]:
        """
        Get the last payload regardless of age.

        Returns:
            The payload, or None if nothing was ever cached
        """
        return self._entry.value

    def has_value(self) -> bool:
        """Whether any payload was ever cached.

        Returns:
            bool: True after the first successful refresh
        """
        return self._entry.refreshed_at is not None

    def cooldown_remaining(self) -> float:
        """Seconds left before a refresh may be attempted again.

        Returns:
            float: 0.0 when not cooling down
        """
        return max(0.0, self._entry.cooldown_until - self._clock())

    def is_refreshing(self) -> bool:
        """Whether a refresh task is outstanding.

        Returns:
            bool: True while a refresh runs
        """
        return self._inflight is not None and not self._inflight.done()

    def trigger_refresh(self, session_id: Optional[str], reason: str, route_prefix: Optional[str] = None) -> Optional[asyncio.Task]:
        """Start a background refresh unless one is pointless or already running.

        Must be called from a running event loop.

        Args:
            session_id: Session on whose behalf the backend is queried
            reason: Why the refresh was requested, for the log
            route_prefix: Webhook target for the refresh

        Returns:
            The refresh task (possibly one already in flight), or None when skipped
        """
        if self.is_valid():
            logger.debug(f"Skipping {self.method} refresh ({reason}): cache still valid")
            return None

        remaining = self.cooldown_remaining()
        if remaining > 0:
            logger.info(f"Skipping {self.method} refresh ({reason}): cooling down for {remaining:.1f}s")
            return None

        if self.is_refreshing():
            logger.debug(f"Joining in-flight {self.method} refresh ({reason})")
            return self._inflight

        logger.info(f"Refreshing {self.method} cache ({reason}) for session {session_id}")
        self._inflight = asyncio.create_task(self._refresh(session_id, route_prefix))
        return self._inflight

    async def get_or_refresh(self, session_id: Optional[str], route_prefix: Optional[str] = None, params: Any = None) -> Any:
        """Serve the cached payload, waiting for a refresh on a miss.

        Falls back to the stale payload when the refresh did not produce a
        fresh one.

        Args:
            session_id: Session on whose behalf the backend is queried
            route_prefix: Webhook target for the refresh
            params: Request params, ignored for lookup

        Returns:
            The fresh or stale payload

        Raises:
            BackendError: If no payload is available at all
        """
        if params:
            logger.warning(f"Ignoring params for cached {self.method} request from session {session_id}: {sorted(params) if isinstance(params, dict) else params}")

        value = self.get()
        if value is not None or self.is_valid():
            self.trigger_refresh(session_id, "serve", route_prefix)
            self._check_prefix(route_prefix)
            return value

        task = self.trigger_refresh(session_id, "miss", route_prefix)
        if task is not None:
            await asyncio.shield(task)

        if self.has_value():
            self._check_prefix(route_prefix)
        if self.is_valid():
            return self._entry.value
        if self.has_value():
            logger.warning(f"Serving stale {self.method} response (age {self._clock() - self._entry.refreshed_at:.1f}s)")
            return self._entry.value

        if isinstance(self.last_error, BackendError):
            raise self.last_error
        raise BackendError(f"No cached {self.method} response available")

    def _check_prefix(self, route_prefix: Optional[str]) -> None:
        """Log when a payload is served to a namespace other than the one that fetched it.

        Args:
            route_prefix: Route prefix of the request being served
        """
        if route_prefix != self._entry.route_prefix:
            logger.warning(f"Serving {self.method} fetched for route prefix {self._entry.route_prefix or '(root)'} to route prefix {route_prefix or '(root)'}")

    def invalidate(self) -> None:
        """Drop the cached payload and any cooldown."""
        self._entry = CacheEntry()

    def stats(self) -> Dict[str, Any]:
        """Diagnostics for the health endpoint.

        Returns:
            Dict[str, Any]: cache state
        """
        age = None if self._entry.refreshed_at is None else round(self._clock() - self._entry.refreshed_at, 3)
        return {
            "method": self.method,
            "has_value": self.has_value(),
            "valid": self.is_valid(),
            "age": age,
            "route_prefix": self._entry.route_prefix,
            "ttl": self.ttl,
            "cooldown_remaining": round(self.cooldown_remaining(), 3),
            "refreshing": self.is_refreshing(),
            "refresh_count": self.refresh_count,
            "last_error": str(self.last_error) if self.last_error else None,
        }

    async def _refresh(self, session_id: Optional[str], route_prefix: Optional[str]) -> None:
        """Query the backend and update the entry.

        Errors are recorded, never raised.

        Args:
            session_id: Conversation id for the backend call
            route_prefix: Webhook target
        """
        try:
            value = await self._gateway.call(self.method, {}, None, session_id, route_prefix)
            self._entry.value = value
            self._entry.refreshed_at = self._clock()
            self._entry.cooldown_until = 0.0
            self._entry.route_prefix = route_prefix
            self.last_error = None
            self.refresh_count += 1
            logger.info(f"{self.method} cache refreshed")
        except BackendRateLimitError as e:
            self._entry.cooldown_until = self._clock() + self.cooldown
            self.last_error = e
            logger.warning(f"{self.method} refresh rate limited, cooling down for {self.cooldown}s")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.last_error = e
            logger.error(f"{self.method} refresh failed: {e}")
        finally:
            if self._inflight is asyncio.current_task():
                self._inflight = None
