"""Per-window cache with stale-while-revalidate refresh and adjacent prefetch.

Cached windows are returned immediately while a background task re-resolves
them; listeners are notified only when the occurrences actually changed.
Each key carries a generation counter so that results of background tasks
started before an invalidation are discarded instead of stored.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from collections.abc import Awaitable, Coroutine
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from .lite_models import ResolvedWindow, WindowKey
from .lite_windows import adjacent_windows

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_MAX_ENTRIES = 64


class WindowResolver(Protocol):
    def resolve(
        self, schedule_id: int, window_start: date, window_end: date
    ) -> Awaitable[ResolvedWindow]: ...


class CacheEventKind(str, Enum):
    """Notifications emitted by WindowCache."""

    REFRESH_STARTED = "refresh_started"
    REFRESH_FINISHED = "refresh_finished"
    UPDATED = "updated"
    INVALIDATED = "invalidated"


@dataclass(frozen=True)
class CacheEvent:
    """Notification delivered to cache listeners.

    INVALIDATED events carry the invalidated schedule_id (None when everything
    was dropped) and the key when a single window was targeted.
    """

    kind: CacheEventKind
    key: Optional[WindowKey] = None
    window: Optional[ResolvedWindow] = None
    schedule_id: Optional[int] = None


CacheListener = Callable[[CacheEvent], None]


@dataclass
class _CacheEntry:
    window: ResolvedWindow
    stored_at: float


class WindowCache:
    """Cache of resolved windows for one schedule session.

    Example:
        cache = WindowCache(resolver, ttl_seconds=300)
        window = await cache.get(WindowKey(1, date(2024, 1, 8), date(2024, 1, 12)))
        cache.prefetch(key)
        unsubscribe = cache.subscribe(on_cache_event)

        # After a write
        cache.invalidate(schedule_id=1)
    """

    def __init__(
        self,
        resolver: WindowResolver,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        """Initialize window cache.

        Args:
            resolver: Object resolving windows on misses and refreshes
            ttl_seconds: Age after which an entry is resolved inline again
            clock: Monotonic clock in seconds (injectable for tests)
            max_entries: Maximum number of cached windows (FIFO eviction when full)
        """
        self._resolver = resolver
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self.max_entries = max_entries

        self._entries: dict[WindowKey, _CacheEntry] = {}
        self._generations: dict[WindowKey, int] = {}
        self._inflight: dict[WindowKey, asyncio.Task[None]] = {}
        # Resolves still running per key, inline or detached; their keys keep a generation
        self._active: Counter[WindowKey] = Counter()
        # Strong references keep detached tasks alive until they finish
        self._tasks: set[asyncio.Task[None]] = set()
        self._listeners: list[CacheListener] = []
        self.stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> dict[str, int]:
        return {
            "hits": 0,
            "misses": 0,
            "revalidations": 0,
            "prefetches": 0,
            "discarded_stale": 0,
            "evictions": 0,
            "invalidations": 0,
        }

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _is_fresh(self, entry: _CacheEntry) -> bool:
        return self._clock() - entry.stored_at < self.ttl_seconds

    def peek(self, key: WindowKey) -> Optional[ResolvedWindow]:
        """Return the fresh cached window without scheduling a refresh."""
        entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry):
            return entry.window
        return None

    async def get(self, key: WindowKey) -> ResolvedWindow:
        """Get the window for key.

        A fresh entry is returned at once and revalidated in the background;
        a missing or expired one is resolved inline, unless a background
        resolve of the same key is already running, in which case its result
        is awaited and reused.

        Raises:
            TimetableValidationError: If the key's window is inverted
        """
        entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry):
            self.stats["hits"] += 1
            logger.debug("Window cache hit: %s", key)
            self._schedule_revalidation(key)
            return entry.window

        self.stats["misses"] += 1
        if entry is not None:
            logger.debug("Window cache entry expired: %s", key)
            del self._entries[key]
        else:
            logger.debug("Window cache miss: %s", key)

        pending = self._inflight.get(key)
        if pending is not None:
            # Join the running prefetch or revalidation instead of resolving twice
            logger.debug("Waiting for in-flight resolve of %s", key)
            await asyncio.wait({pending})
            entry = self._entries.get(key)
            if entry is not None:
                return entry.window

        generation = self._generations.setdefault(key, 0)
        self._active[key] += 1
        try:
            window = await self._resolver.resolve(key.schedule_id, key.start, key.end)
            self._store(key, window, generation)
        finally:
            self._release(key)
        return window

    def is_refreshing(self, key: WindowKey) -> bool:
        """Check whether a background resolve for key is in flight."""
        return key in self._inflight

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def _generation(self, key: WindowKey) -> int:
        return self._generations.get(key, 0)

    def _store(self, key: WindowKey, window: ResolvedWindow, generation: int) -> bool:
        if generation != self._generation(key):
            self.stats["discarded_stale"] += 1
            logger.debug("Discarding stale result for %s (generation %d)", key, generation)
            return False

        if window.is_degraded:
            # Not cached so the next get retries the failed sources
            logger.debug("Not caching degraded window %s", key)
            return False

        self._entries.pop(key, None)
        self._entries[key] = _CacheEntry(window=window, stored_at=self._clock())

        # FIFO eviction (oldest inserted entry first)
        if len(self._entries) > self.max_entries:
            oldest_key = next(iter(self._entries))
            del self._entries[oldest_key]
            self.stats["evictions"] += 1
            logger.debug("Evicted oldest window: %s", oldest_key)
            self._forget_generation(oldest_key)
        return True

    def _spawn(self, key: WindowKey, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.create_task(coro)
        self._inflight[key] = task
        self._active[key] += 1
        self._tasks.add(task)
        task.add_done_callback(lambda done: self._on_task_done(key, done))
        return task

    def _on_task_done(self, key: WindowKey, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if self._inflight.get(key) is task:
            del self._inflight[key]
        self._release(key)

    def _release(self, key: WindowKey) -> None:
        self._active[key] -= 1
        if self._active[key] <= 0:
            del self._active[key]
            self._forget_generation(key)

    def _forget_generation(self, key: WindowKey) -> None:
        """Drop the generation of a key nothing refers to any more.

        A running resolve captured its generation, so keys with work in flight
        keep theirs until that work finishes.
        """
        if key in self._entries or key in self._active or key in self._inflight:
            return
        self._generations.pop(key, None)

    def _schedule_revalidation(self, key: WindowKey) -> None:
        if key in self._inflight:
            return
        self._spawn(key, self._revalidate(key, self._generation(key)))

    async def _revalidate(self, key: WindowKey, generation: int) -> None:
        self._emit(CacheEvent(CacheEventKind.REFRESH_STARTED, key=key))
        try:
            window = await self._resolver.resolve(key.schedule_id, key.start, key.end)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("Background revalidation failed for %s", key, exc_info=True)
            return
        finally:
            self._emit(CacheEvent(CacheEventKind.REFRESH_FINISHED, key=key))

        self.stats["revalidations"] += 1
        if generation != self._generation(key):
            self.stats["discarded_stale"] += 1
            logger.debug("Discarding stale revalidation for %s", key)
            return

        current = self._entries.get(key)
        if current is not None and current.window.same_occurrences(window):
            current.stored_at = self._clock()
            return

        if self._store(key, window, generation):
            logger.debug("Window %s changed during revalidation", key)
            self._emit(CacheEvent(CacheEventKind.UPDATED, key=key, window=window))

    def prefetch(self, key: WindowKey) -> list[asyncio.Task[None]]:
        """Resolve the previous and next windows of key in the background.

        Windows that are already cached and fresh, or already being resolved,
        are skipped, so at most one resolve per window is in flight.

        Returns:
            Tasks started by this call
        """
        started: list[asyncio.Task[None]] = []
        for adjacent in adjacent_windows(key):
            if self.peek(adjacent) is not None or adjacent in self._inflight:
                continue
            self.stats["prefetches"] += 1
            generation = self._generations.setdefault(adjacent, 0)
            started.append(self._spawn(adjacent, self._load(adjacent, generation)))
        if started:
            logger.debug("Prefetching %d windows around %s", len(started), key)
        return started

    async def _load(self, key: WindowKey, generation: int) -> None:
        try:
            window = await self._resolver.resolve(key.schedule_id, key.start, key.end)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("Prefetch failed for %s", key, exc_info=True)
            return
        self._store(key, window, generation)

    # ------------------------------------------------------------------
    # Invalidation and notification
    # ------------------------------------------------------------------

    def invalidate(self, schedule_id: Optional[int] = None, key: Optional[WindowKey] = None) -> int:
        """Drop cached windows and discard results of tasks already running.

        Args:
            schedule_id: Drop every window of this schedule
            key: Drop only this window (takes precedence over schedule_id)

        With no arguments every window is dropped.

        Returns:
            Number of cached entries removed
        """

        def matches(candidate: WindowKey) -> bool:
            if key is not None:
                return candidate == key
            if schedule_id is not None:
                return candidate.schedule_id == schedule_id
            return True

        affected = {k for k in (*self._entries, *self._inflight, *self._generations) if matches(k)}
        for affected_key in affected:
            self._generations[affected_key] = self._generation(affected_key) + 1
            # Let a fresh prefetch start; the old task's result is discarded
            self._inflight.pop(affected_key, None)

        removed = [k for k in self._entries if matches(k)]
        for removed_key in removed:
            del self._entries[removed_key]
        for affected_key in affected:
            self._forget_generation(affected_key)

        self.stats["invalidations"] += 1
        logger.info(
            "Invalidated window cache (schedule=%s, key=%s, removed %d entries)",
            schedule_id,
            key,
            len(removed),
        )
        self._emit(
            CacheEvent(
                CacheEventKind.INVALIDATED,
                key=key,
                schedule_id=key.schedule_id if key is not None else schedule_id,
            )
        )
        return len(removed)

    def subscribe(self, listener: CacheListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: CacheEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Cache listener failed handling %s", event.kind.value)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def drain(self) -> None:
        """Wait until all background revalidations and prefetches have finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel all background tasks and wait for them to finish."""
        tasks = list(self._tasks)
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._inflight.clear()
        logger.debug("Window cache shutdown complete (%d tasks cancelled)", len(tasks))

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dict with hit/miss counters, hit_rate (0-100), background task
            counters, current size and in-flight count
        """
        total_requests = self.stats["hits"] + self.stats["misses"]
        hit_rate = (self.stats["hits"] / total_requests * 100) if total_requests > 0 else 0.0
        return {
            **self.stats,
            "hit_rate": round(hit_rate, 2),
            "size": len(self._entries),
            "max_entries": self.max_entries,
            "in_flight": len(self._inflight),
        }

