# -*- coding: utf-8 -*-
"""

Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Tests for the response cache: TTL, cooldown, stale fallback and single-flight refresh.

"""

# Standard
import asyncio
import logging
from unittest.mock import AsyncMock

# Third-Party
import pytest

# First-Party
from mcprelay.cache.response_cache import ResponseCache
from mcprelay.services.backend_gateway import BackendError, BackendRateLimitError

TOOLS = {"tools": [{"name": "search"}]}


@pytest.fixture
def gateway():
    """Gateway stub answering the cached method."""
    stub = AsyncMock()
    stub.call = AsyncMock(return_value=TOOLS)
    return stub


@pytest.fixture
def cache(gateway, clock):
    """Cache with the standard 60 s TTL and 10 s cooldown."""
    return ResponseCache(gateway, method="tools/list", ttl=60, cooldown=10, clock=clock)


@pytest.mark.asyncio
async def test_refresh_populates_cache(cache, gateway):
    task = cache.trigger_refresh("sid", "miss")
    await task

    assert cache.get() == TOOLS
    assert cache.is_valid()
    assert cache.refresh_count == 1
    gateway.call.assert_awaited_once_with("tools/list", {}, None, "sid", None)


@pytest.mark.asyncio
async def test_ttl_boundary(cache, gateway, clock):
    await cache.trigger_refresh("sid", "miss")

    clock.advance(59)
    assert cache.get() == TOOLS
    assert cache.trigger_refresh("sid", "serve") is None

    clock.advance(2)
    assert cache.get() is None
    assert cache.get_stale() == TOOLS

    task = cache.trigger_refresh("sid", "miss")
    assert task is not None
    await task
    assert gateway.call.await_count == 2
    assert cache.is_valid()


@pytest.mark.asyncio
async def test_rate_limited_refresh_sets_cooldown(cache, gateway, clock):
    gateway.call.side_effect = BackendRateLimitError("Backend rate limit exceeded", status_code=429)

    await cache.trigger_refresh("sid", "miss")

    assert cache.cooldown_remaining() == 10
    assert isinstance(cache.last_error, BackendRateLimitError)

    clock.advance(9.9)
    assert cache.trigger_refresh("sid", "miss") is None
    assert gateway.call.await_count == 1

    clock.advance(0.2)
    gateway.call.side_effect = None
    await cache.trigger_refresh("sid", "miss")
    assert gateway.call.await_count == 2
    assert cache.get() == TOOLS
    assert cache.cooldown_remaining() == 0
    assert cache.last_error is None


@pytest.mark.asyncio
async def test_other_failures_keep_previous_value(cache, gateway, clock):
    await cache.trigger_refresh("sid", "miss")
    clock.advance(61)

    gateway.call.side_effect = BackendError("Backend returned HTTP 502", status_code=502)
    await cache.trigger_refresh("sid", "miss")

    assert cache.get_stale() == TOOLS
    assert cache.cooldown_remaining() == 0
    assert str(cache.last_error) == "Backend returned HTTP 502"


@pytest.mark.asyncio
async def test_concurrent_triggers_share_one_backend_call(gateway, clock):
    release = asyncio.Event()

    async def slow_call(*args, **kwargs):
        await release.wait()
        return TOOLS

    gateway.call.side_effect = slow_call
    cache = ResponseCache(gateway, method="tools/list", ttl=60, cooldown=10, clock=clock)

    first = cache.trigger_refresh("a", "miss")
    second = cache.trigger_refresh("b", "miss")
    assert first is second
    assert cache.is_refreshing()

    release.set()
    await first

    assert gateway.call.await_count == 1
    assert not cache.is_refreshing()
    assert cache._inflight is None


@pytest.mark.asyncio
async def test_inflight_marker_released_after_failure(cache, gateway):
    gateway.call.side_effect = RuntimeError("boom")

    await cache.trigger_refresh("sid", "miss")

    assert cache._inflight is None
    assert not cache.is_refreshing()


@pytest.mark.asyncio
async def test_get_or_refresh_hit_does_not_call_backend(cache, gateway):
    await cache.trigger_refresh("sid", "warmup")

    assert await cache.get_or_refresh("sid") == TOOLS
    assert gateway.call.await_count == 1


@pytest.mark.asyncio
async def test_get_or_refresh_miss_waits_for_refresh(cache, gateway):
    assert await cache.get_or_refresh("sid", "sales") == TOOLS
    gateway.call.assert_awaited_once_with("tools/list", {}, None, "sid", "sales")


@pytest.mark.asyncio
async def test_get_or_refresh_concurrent_misses_single_flight(gateway, clock):
    calls = 0

    async def counted_call(*args, **kwargs):
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        return TOOLS

    gateway.call.side_effect = counted_call
    cache = ResponseCache(gateway, method="tools/list", ttl=60, cooldown=10, clock=clock)

    results = await asyncio.gather(cache.get_or_refresh("a"), cache.get_or_refresh("b"))

    assert results == [TOOLS, TOOLS]
    assert calls == 1


@pytest.mark.asyncio
async def test_get_or_refresh_serves_stale_on_failure(cache, gateway, clock):
    await cache.trigger_refresh("sid", "warmup")
    clock.advance(120)
    gateway.call.side_effect = BackendError("down")

    assert await cache.get_or_refresh("sid") == TOOLS


@pytest.mark.asyncio
async def test_get_or_refresh_raises_without_any_value(cache, gateway):
    gateway.call.side_effect = BackendError("Backend returned HTTP 500", status_code=500)

    with pytest.raises(BackendError, match="HTTP 500"):
        await cache.get_or_refresh("sid")


@pytest.mark.asyncio
async def test_get_or_refresh_during_cooldown_without_value(cache, gateway):
    gateway.call.side_effect = BackendRateLimitError("Backend rate limit exceeded", status_code=429)

    with pytest.raises(BackendRateLimitError):
        await cache.get_or_refresh("sid")
    with pytest.raises(BackendRateLimitError):
        await cache.get_or_refresh("sid")

    assert gateway.call.await_count == 1


@pytest.mark.asyncio
async def test_stats_and_invalidate(cache):
    await cache.trigger_refresh("sid", "warmup")

    stats = cache.stats()
    assert stats["has_value"] is True
    assert stats["valid"] is True
    assert stats["method"] == "tools/list"
    assert stats["refresh_count"] == 1

    cache.invalidate()
    assert cache.get_stale() is None
    assert cache.stats()["has_value"] is False


@pytest.mark.asyncio
async def test_shutdown_cancels_inflight_refresh(gateway, clock):
    async def hang(*args, **kwargs):
        await asyncio.sleep(10)

    gateway.call.side_effect = hang
    cache = ResponseCache(gateway, method="tools/list", ttl=60, cooldown=10, clock=clock)

    task = cache.trigger_refresh("sid", "miss")
    await asyncio.sleep(0)
    await cache.shutdown()

    assert task.cancelled()
    assert cache._inflight is None


@pytest.mark.asyncio
async def test_entry_shared_across_route_prefixes_is_logged(cache, gateway, caplog):
    assert await cache.get_or_refresh("a", "sales") == TOOLS
    assert cache.stats()["route_prefix"] == "sales"

    with caplog.at_level(logging.WARNING, logger="mcprelay.cache.response_cache"):
        assert await cache.get_or_refresh("b", "support") == TOOLS

    assert gateway.call.await_count == 1
    assert "fetched for route prefix sales to route prefix support" in caplog.text


@pytest.mark.asyncio
async def test_same_route_prefix_is_not_logged(cache, caplog):
    await cache.get_or_refresh("a", "sales")

    with caplog.at_level(logging.WARNING, logger="mcprelay.cache.response_cache"):
        await cache.get_or_refresh("b", "sales")

    assert "route prefix" not in caplog.text


@pytest.mark.asyncio
async def test_params_are_ignored_and_logged(cache, gateway, caplog):
    with caplog.at_level(logging.WARNING, logger="mcprelay.cache.response_cache"):
        assert await cache.get_or_refresh("a", None, {"cursor": "page-2"}) == TOOLS

    gateway.call.assert_awaited_once_with("tools/list", {}, None, "a", None)
    assert "Ignoring params for cached tools/list" in caplog.text
    assert "cursor" in caplog.text
