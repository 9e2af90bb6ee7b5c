# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Bounded in-process cache with TTL, LRU eviction and request coalescing.

Two expiry paths:
- Lazy: ``get`` drops an expired entry before answering.
- Sweep: a background task removes expired entries every ``cleanup_interval``.

``get_or_compute`` is the stampede-protection entry point: concurrent misses
for one key share a single in-flight task, so the compute function runs
once and every caller receives its outcome.  Each caller awaits the task
through ``asyncio.shield``: a cancelled caller leaves the others waiting,
and the computation still completes and populates the cache.  A failed computation (raised
exception or returned ``Err``) is never stored.

The in-flight map is keyed exactly like the cache.  Not thread-safe: use one
instance per event loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Generic, TypeVar

from .result import Err

logger = logging.getLogger(__name__)

V = TypeVar("V")

_DEFAULT_MAX_ENTRIES = 1000
_DEFAULT_TTL = 300.0
_DEFAULT_CLEANUP_INTERVAL = 60.0


# ---------------------------------------------------------------------------
# Cache entry
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    """A cached value with its timestamps (``time.monotonic()``)."""

    value: V
    created_at: float
    last_access: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


# ---------------------------------------------------------------------------
# Cache stats (observability)
# ---------------------------------------------------------------------------


@dataclass
class CacheCounters:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    coalesced: int = 0


@dataclass(frozen=True, slots=True)
class CacheStats:
    """Immutable snapshot of cache state for monitoring."""

    total_requests: int
    hits: int
    misses: int
    hit_rate: float  # hits / total_requests (0.0 if no requests)
    size: int
    max_entries: int
    evictions: int
    expirations: int
    coalesced: int
    in_flight: int


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """``*`` → any run, ``?`` → one character, everything else literal."""
    parts = []
    for ch in pattern:
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("^" + "".join(parts) + "$")


def _consume_exception(fut: asyncio.Future) -> None:
    # Marks the exception retrieved when no coalesced waiter is left to await it.
    if not fut.cancelled():
        fut.exception()


# ---------------------------------------------------------------------------
# CacheManager
# ---------------------------------------------------------------------------


class CacheManager:
    """LRU + TTL cache with single-flight ``get_or_compute``.

    Use as an async context manager to run the background sweep::

        async with CacheManager(max_entries=500) as cache:
            page = await cache.get_or_compute("page:21", load_page)
    """

    def __init__(
        self,
        *,
        max_entries: int = _DEFAULT_MAX_ENTRIES,
        default_ttl: float = _DEFAULT_TTL,
        cleanup_interval: float = _DEFAULT_CLEANUP_INTERVAL,
        enable_coalescing: bool = True,
    ) -> None:
        if max_entries <= 0:
            raise ValueError(f"max_entries must be > 0, got {max_entries}")
        if default_ttl <= 0:
            raise ValueError(f"default_ttl must be > 0, got {default_ttl}")
        if cleanup_interval <= 0:
            raise ValueError(f"cleanup_interval must be > 0, got {cleanup_interval}")
        self._max_entries = max_entries
        self._default_ttl = default_ttl
        self._cleanup_interval = cleanup_interval
        self._enable_coalescing = enable_coalescing

        self._entries: OrderedDict[str, CacheEntry[Any]] = OrderedDict()
        self._inflight: dict[str, asyncio.Task[Any]] = {}
        self._counters = CacheCounters()
        self._sweeper_task: asyncio.Task | None = None
        self._shutdown_event = asyncio.Event()

    # ── AsyncContextManager ──────────────────────────────────────────

    async def __aenter__(self) -> CacheManager:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    # ── Basic operations ─────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Cached value or None when missing or expired."""
        entry = self._lookup(key)
        if entry is None:
            self._counters.misses += 1
            return None
        self._counters.hits += 1
        return entry.value

    def has(self, key: str) -> bool:
        return self._lookup(key) is not None

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        ttl = self._default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError(f"ttl must be > 0, got {ttl}")
        now = time.monotonic()
        self._entries[key] = CacheEntry(value=value, created_at=now, last_access=now, expires_at=now + ttl)
        self._entries.move_to_end(key)

        while len(self._entries) > self._max_entries:
            evicted_key, _ = self._entries.popitem(last=False)
            self._counters.evictions += 1
            logger.debug("Cache eviction: %s", evicted_key)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def invalidate(self, pattern: str) -> int:
        """Remove every key matching the glob *pattern*.  Returns the count."""
        regex = glob_to_regex(pattern)
        doomed = [key for key in self._entries if regex.match(key)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug("Cache invalidate %r: %d entries", pattern, len(doomed))
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()
        logger.debug("Cache cleared")

    def _lookup(self, key: str) -> CacheEntry[Any] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = time.monotonic()
        if entry.is_expired(now):
            del self._entries[key]
            self._counters.expirations += 1
            logger.debug("Cache TTL expired: %s", key)
            return None
        entry.last_access = now
        self._entries.move_to_end(key)
        return entry

    # ── Stampede protection ──────────────────────────────────────────

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[V]],
        ttl: float | None = None,
    ) -> V:
        """Cached value for *key*, computing it at most once across concurrent callers.

        Exceptions from *compute* propagate to every coalesced caller; an
        ``Err`` result is returned to all of them but not cached.
        """
        entry = self._lookup(key)
        if entry is not None:
            self._counters.hits += 1
            return entry.value
        self._counters.misses += 1

        if not self._enable_coalescing:
            value = await compute()
            if not isinstance(value, Err):
                self.set(key, value, ttl)
            return value

        task = self._inflight.get(key)
        if task is not None:
            self._counters.coalesced += 1
        else:
            task = asyncio.get_running_loop().create_task(self._compute_and_store(key, compute, ttl))
            task.add_done_callback(_consume_exception)
            self._inflight[key] = task
        # Cancelling one caller never cancels the shared computation.
        return await asyncio.shield(task)

    async def _compute_and_store(self, key: str, compute: Callable[[], Awaitable[V]], ttl: float | None) -> V:
        try:
            value = await compute()
        except Exception as exc:
            logger.debug("Cache compute failed for %s: %s", key, exc)
            raise
        else:
            if not isinstance(value, Err):
                self.set(key, value, ttl)
            return value
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]

    # ── Expiry sweep ─────────────────────────────────────────────────

    def cleanup_expired(self) -> int:
        now = time.monotonic()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        self._counters.expirations += len(expired)
        if expired:
            logger.debug("Cache sweep removed %d expired entries", len(expired))
        return len(expired)

    def start(self) -> None:
        """Start the background sweep (idempotent)."""
        if self._sweeper_task is not None and not self._sweeper_task.done():
            return
        self._shutdown_event.clear()
        self._start_sweeper()

    def _start_sweeper(self) -> None:
        self._sweeper_task = asyncio.get_running_loop().create_task(self._sweep_loop(), name="formmap-cache-sweeper")
        self._sweeper_task.add_done_callback(self._handle_sweeper_crash)

    def _handle_sweeper_crash(self, task: asyncio.Task) -> None:
        """Restart sweeper if it crashed unexpectedly (not cancelled)."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not self._shutdown_event.is_set():
            logger.error("Cache sweeper crashed, restarting: %s", exc, exc_info=exc)
            self._start_sweeper()

    async def _sweep_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                async with asyncio.timeout(self._cleanup_interval):
                    await self._shutdown_event.wait()
                    return  # shutdown requested
            except TimeoutError:
                pass  # normal wakeup, run sweep cycle
            self.cleanup_expired()

    async def shutdown(self) -> None:
        """Stop the sweep, cancel in-flight computations and drop every entry."""
        self._shutdown_event.set()
        if self._sweeper_task and not self._sweeper_task.done():
            self._sweeper_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper_task
        self._sweeper_task = None
        for task in list(self._inflight.values()):
            task.cancel()
        self._inflight.clear()
        self._entries.clear()

    # ── Stats ────────────────────────────────────────────────────────

    def stats(self) -> CacheStats:
        c = self._counters
        total = c.hits + c.misses
        return CacheStats(
            total_requests=total,
            hits=c.hits,
            misses=c.misses,
            hit_rate=c.hits / total if total > 0 else 0.0,
            size=len(self._entries),
            max_entries=self._max_entries,
            evictions=c.evictions,
            expirations=c.expirations,
            coalesced=c.coalesced,
            in_flight=len(self._inflight),
        )

    def reset_stats(self) -> None:
        self._counters = CacheCounters()

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def is_running(self) -> bool:
        return self._sweeper_task is not None and not self._sweeper_task.done()
