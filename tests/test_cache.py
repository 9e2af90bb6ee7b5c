# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for formmap.cache.

Tests: get/set/delete, LRU eviction, TTL expiry (lazy and swept), glob
invalidation, request coalescing, failure handling, CacheStats counters.
"""

from __future__ import annotations

import asyncio

import pytest

from formmap import errors
from formmap.cache import CacheManager, glob_to_regex
from formmap.result import Err, Ok

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_counting_compute(value, *, delay: float = 0.01):
    calls = {"n": 0}

    async def compute():
        calls["n"] += 1
        await asyncio.sleep(delay)
        return value

    return compute, calls


# =========================================================================
# Basic operations
# =========================================================================


class TestBasicOperations:
    def test_set_and_get(self):
        cache = CacheManager()
        cache.set("page:21", {"caption": "Customer Card"})
        assert cache.get("page:21") == {"caption": "Customer Card"}
        assert cache.has("page:21")

    def test_missing_key(self):
        assert CacheManager().get("nope") is None

    def test_delete(self):
        cache = CacheManager()
        cache.set("k", 1)
        assert cache.delete("k") is True
        assert cache.delete("k") is False
        assert cache.get("k") is None

    def test_clear(self):
        cache = CacheManager()
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()
        assert cache.size == 0

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            CacheManager(max_entries=0)
        with pytest.raises(ValueError):
            CacheManager(default_ttl=0)
        with pytest.raises(ValueError):
            CacheManager().set("k", 1, ttl=-1)


# =========================================================================
# LRU and TTL
# =========================================================================


class TestEviction:
    def test_lru_evicts_least_recently_used(self):
        cache = CacheManager(max_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")  # a is now most recent
        cache.set("c", 3)

        assert cache.has("a")
        assert not cache.has("b")
        assert cache.has("c")
        assert cache.stats().evictions == 1

    def test_overwrite_does_not_evict(self):
        cache = CacheManager(max_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)
        assert cache.size == 2
        assert cache.get("a") == 10

    def test_ttl_expiry_on_get(self, monkeypatch):
        now = [1000.0]
        monkeypatch.setattr("formmap.cache.time.monotonic", lambda: now[0])
        cache = CacheManager(default_ttl=5.0)
        cache.set("k", "v")

        now[0] += 4.9
        assert cache.get("k") == "v"
        now[0] += 0.2
        assert cache.get("k") is None
        assert cache.stats().expirations == 1

    def test_per_entry_ttl(self, monkeypatch):
        now = [0.0]
        monkeypatch.setattr("formmap.cache.time.monotonic", lambda: now[0])
        cache = CacheManager(default_ttl=100.0)
        cache.set("short", 1, ttl=1.0)
        cache.set("long", 2)
        now[0] = 2.0
        assert cache.cleanup_expired() == 1
        assert cache.has("long")

    @pytest.mark.asyncio
    async def test_background_sweep(self):
        async with CacheManager(default_ttl=0.01, cleanup_interval=0.02) as cache:
            assert cache.is_running
            cache.set("k", "v")
            await asyncio.sleep(0.1)
            assert cache.size == 0
        assert not cache.is_running

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        cache = CacheManager()
        cache.start()
        task = cache._sweeper_task
        cache.start()
        assert cache._sweeper_task is task
        await cache.shutdown()


# =========================================================================
# Invalidation
# =========================================================================


class TestInvalidate:
    def test_glob(self):
        cache = CacheManager()
        for key in ("page:21:meta", "page:21:data", "page:22:meta", "session:1"):
            cache.set(key, 1)
        assert cache.invalidate("page:21:*") == 2
        assert cache.invalidate("page:2?:meta") == 1
        assert cache.has("session:1")

    def test_regex_characters_are_literal(self):
        assert glob_to_regex("a.b").match("a.b")
        assert not glob_to_regex("a.b").match("axb")
        assert glob_to_regex("a[1]").match("a[1]")


# =========================================================================
# Coalescing
# =========================================================================


class TestGetOrCompute:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_computation(self):
        cache = CacheManager()
        compute, calls = _make_counting_compute("metadata")

        results = await asyncio.gather(*(cache.get_or_compute("page:21", compute) for _ in range(5)))

        assert results == ["metadata"] * 5
        assert calls["n"] == 1
        assert cache.stats().coalesced == 4
        assert cache.get("page:21") == "metadata"

    @pytest.mark.asyncio
    async def test_hit_skips_compute(self):
        cache = CacheManager()
        cache.set("k", "cached")
        compute, calls = _make_counting_compute("fresh")
        assert await cache.get_or_compute("k", compute) == "cached"
        assert calls["n"] == 0

    @pytest.mark.asyncio
    async def test_exception_is_shared_and_not_cached(self):
        cache = CacheManager()
        calls = {"n": 0}

        async def failing():
            calls["n"] += 1
            await asyncio.sleep(0.01)
            raise errors.ConnectionError("socket closed")

        results = await asyncio.gather(*(cache.get_or_compute("k", failing) for _ in range(3)), return_exceptions=True)

        assert calls["n"] == 1
        assert all(isinstance(r, errors.ConnectionError) for r in results)
        assert not cache.has("k")
        assert cache.stats().in_flight == 0

    @pytest.mark.asyncio
    async def test_err_result_is_returned_but_not_cached(self):
        cache = CacheManager()
        compute, calls = _make_counting_compute(Err(errors.TimeoutError("slow")))

        first = await cache.get_or_compute("k", compute)
        second = await cache.get_or_compute("k", compute)

        assert isinstance(first, Err) and isinstance(second, Err)
        assert calls["n"] == 2

    @pytest.mark.asyncio
    async def test_ok_result_is_cached(self):
        cache = CacheManager()
        compute, calls = _make_counting_compute(Ok(42))
        await cache.get_or_compute("k", compute)
        assert await cache.get_or_compute("k", compute) == Ok(42)
        assert calls["n"] == 1

    @pytest.mark.asyncio
    async def test_cancelled_first_caller_does_not_cancel_others(self):
        cache = CacheManager()
        release = asyncio.Event()

        async def slow():
            await release.wait()
            return "metadata"

        first = asyncio.create_task(cache.get_or_compute("page:21", slow))
        await asyncio.sleep(0)
        second = asyncio.create_task(cache.get_or_compute("page:21", slow))
        await asyncio.sleep(0)

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        release.set()

        assert await second == "metadata"
        assert cache.get("page:21") == "metadata"
        assert cache.stats().in_flight == 0

    @pytest.mark.asyncio
    async def test_shutdown_cancels_in_flight(self):
        cache = CacheManager()
        blocked = asyncio.Event()

        async def never():
            await blocked.wait()

        waiter = asyncio.create_task(cache.get_or_compute("k", never))
        await asyncio.sleep(0)
        await cache.shutdown()

        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert cache.stats().in_flight == 0

    @pytest.mark.asyncio
    async def test_coalescing_disabled(self):
        cache = CacheManager(enable_coalescing=False)
        compute, calls = _make_counting_compute("v")
        await asyncio.gather(*(cache.get_or_compute("k", compute) for _ in range(3)))
        assert calls["n"] == 3


# =========================================================================
# Stats
# =========================================================================


class TestStats:
    def test_counters(self):
        cache = CacheManager(max_entries=10)
        cache.set("a", 1)
        cache.get("a")
        cache.get("a")
        cache.get("missing")

        stats = cache.stats()
        assert stats.hits == 2
        assert stats.misses == 1
        assert stats.total_requests == 3
        assert stats.hit_rate == pytest.approx(2 / 3)
        assert stats.size == 1
        assert stats.max_entries == 10

    def test_reset(self):
        cache = CacheManager()
        cache.get("x")
        cache.reset_stats()
        assert cache.stats().total_requests == 0
        assert cache.stats().hit_rate == 0.0
