from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Callable, Iterable

from recordcache.keys import CacheKey, make_cache_key
from recordcache.sweeper import CacheSweeper

logger = logging.getLogger("recordcache.cache")


@dataclass
class CacheEntry:
    """A stored value with its absolute expiry.

    ``sequence`` grows with every ``set``. The store's dict order already
    follows it, so eviction pops the first key instead of sorting; the
    number is kept for eviction logs and introspection.
    """

    value: Any
    namespace: str
    created_at: float
    expires_at: float
    sequence: int
    tags: frozenset[str] = frozenset()

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    size: int
    hit_rate: float
    last_cleanup: datetime | None
    evictions: int = 0
    expirations: int = 0


class RecordCache:
    """Process-local cache with TTL expiry, FIFO eviction and tag invalidation.

    Entries live under ``(namespace, key)`` where ``key`` may be any value
    that :func:`recordcache.keys.canonicalize_key` accepts. Eviction follows
    insertion order only: reads never move an entry, while re-setting a key
    moves it to the back of the queue.

    A TTL of ``0`` means the entry is already expired on the next read, not
    that it never expires.

    When ``sweep_interval_seconds`` is set, a background thread removes
    expired entries on that interval until :meth:`shutdown` is called. Pass
    ``autostart=False`` to defer that thread until :meth:`start_sweeper`.
    """

    def __init__(
        self,
        max_entries: int = 1000,
        default_ttl_seconds: float = 300.0,
        sweep_interval_seconds: float | None = 300.0,
        clock: Callable[[], float] = time.monotonic,
        autostart: bool = True,
    ) -> None:
        if max_entries < 1:
            raise ValueError("Cache max size must be at least 1.")
        if default_ttl_seconds < 0:
            raise ValueError("Default TTL cannot be negative.")

        self._max_entries = max_entries
        self._default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._lock = RLock()

        # dict order is insertion order, so the first key is always the oldest.
        self._store: dict[CacheKey, CacheEntry] = {}
        self._tag_index: dict[str, set[CacheKey]] = {}
        self._namespace_sizes: dict[str, int] = {}
        self._sequence = itertools.count(1)

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._last_cleanup: datetime | None = None

        self._sweep_interval_seconds = sweep_interval_seconds
        self._sweeper: CacheSweeper | None = None
        if autostart:
            self.start_sweeper()

    @property
    def max_size(self) -> int:
        return self._max_entries

    @property
    def default_ttl_seconds(self) -> float:
        return self._default_ttl_seconds

    @property
    def sweeping(self) -> bool:
        return self._sweeper is not None and self._sweeper.running

    def set(
        self,
        namespace: str,
        key: Any,
        value: Any,
        ttl_seconds: float | None = None,
        tags: Iterable[str] | None = None,
    ) -> None:
        cache_key = make_cache_key(namespace, key)
        ttl = self._default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl < 0:
            raise ValueError("TTL cannot be negative.")
        tag_set = frozenset(tags or ())

        with self._lock:
            now = self._clock()
            self._remove(cache_key)
            self._store[cache_key] = CacheEntry(
                value=value,
                namespace=namespace,
                created_at=now,
                expires_at=now + ttl,
                sequence=next(self._sequence),
                tags=tag_set,
            )
            self._namespace_sizes[namespace] = self._namespace_sizes.get(namespace, 0) + 1
            for tag in tag_set:
                self._tag_index.setdefault(tag, set()).add(cache_key)
            self._evict_to(self._max_entries)

    def get(self, namespace: str, key: Any) -> Any | None:
        cache_key = make_cache_key(namespace, key)
        with self._lock:
            entry = self._live_entry(cache_key)
            if entry is None:
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def contains(self, namespace: str, key: Any) -> bool:
        """Report whether a live entry exists without counting a hit or miss."""
        cache_key = make_cache_key(namespace, key)
        with self._lock:
            return self._live_entry(cache_key) is not None

    def delete(self, namespace: str, key: Any) -> bool:
        cache_key = make_cache_key(namespace, key)
        with self._lock:
            return self._remove(cache_key) is not None

    def delete_by_tag(self, tag: str) -> int:
        with self._lock:
            keys = self._tag_index.pop(tag, None)
            if not keys:
                return 0
            removed = 0
            for cache_key in keys:
                if self._remove(cache_key) is not None:
                    removed += 1
            return removed

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._tag_index.clear()
            self._namespace_sizes.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            self._expirations = 0
            self._last_cleanup = None

    def set_max_size(self, max_entries: int) -> None:
        if max_entries < 1:
            raise ValueError("Cache max size must be at least 1.")
        with self._lock:
            self._max_entries = max_entries
            self._evict_to(max_entries)

    def get_namespace_size(self, namespace: str) -> int:
        with self._lock:
            return self._namespace_sizes.get(namespace, 0)

    def tag_size(self, tag: str) -> int:
        with self._lock:
            return len(self._tag_index.get(tag, ()))

    def force_cleanup(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [cache_key for cache_key, entry in self._store.items() if entry.is_expired(now)]
            for cache_key in expired:
                self._remove(cache_key)
            self._expirations += len(expired)
            self._last_cleanup = datetime.now(timezone.utc)
            size = len(self._store)

        if expired:
            logger.info("Cache cleanup: removed %d expired entries (%d remain)", len(expired), size)
        return len(expired)

    def get_stats(self) -> CacheStats:
        with self._lock:
            accesses = self._hits + self._misses
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                size=len(self._store),
                hit_rate=self._hits / accesses if accesses else 0.0,
                last_cleanup=self._last_cleanup,
                evictions=self._evictions,
                expirations=self._expirations,
            )

    def start_sweeper(self) -> bool:
        """Start the background sweep if one is configured and not running."""
        interval = self._sweep_interval_seconds
        if interval is None or interval <= 0:
            return False
        with self._lock:
            if self._sweeper is not None:
                return False
            self._sweeper = CacheSweeper(self.force_cleanup, interval_seconds=interval)
            self._sweeper.start()
        return True

    def shutdown(self) -> None:
        with self._lock:
            sweeper, self._sweeper = self._sweeper, None
        if sweeper is not None:
            sweeper.stop()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __enter__(self) -> "RecordCache":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        self.shutdown()

    def _live_entry(self, cache_key: CacheKey) -> CacheEntry | None:
        entry = self._store.get(cache_key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            self._remove(cache_key)
            self._expirations += 1
            return None
        return entry

    def _remove(self, cache_key: CacheKey) -> CacheEntry | None:
        entry = self._store.pop(cache_key, None)
        if entry is None:
            return None

        remaining = self._namespace_sizes.get(entry.namespace, 0) - 1
        if remaining > 0:
            self._namespace_sizes[entry.namespace] = remaining
        else:
            self._namespace_sizes.pop(entry.namespace, None)

        for tag in entry.tags:
            bucket = self._tag_index.get(tag)
            if bucket is None:
                continue
            bucket.discard(cache_key)
            if not bucket:
                del self._tag_index[tag]
        return entry

    def _evict_to(self, limit: int) -> None:
        while len(self._store) > limit:
            oldest_key = next(iter(self._store))
            entry = self._remove(oldest_key)
            self._evictions += 1
            logger.debug(
                "Evicted %s:%s (seq %d) to stay within %d entries",
                oldest_key.namespace,
                oldest_key.key,
                entry.sequence if entry else -1,
                limit,
            )
