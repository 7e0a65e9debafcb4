"""Generic in-memory cache with per-entry TTL and LRU eviction.

TTLs are in seconds; ``0`` means the entry never expires. Expiry is checked
lazily on read and by a periodic background sweep. The sweeper thread only
holds a weak reference to its cache and exits once the cache is closed or
garbage-collected. At capacity, inserting a
new key evicts the entry with the lowest access count (ties go to the
earliest inserted) when LRU is enabled, otherwise the oldest inserted entry.
"""

from __future__ import annotations

import logging
import re
import threading
import time
import weakref
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from fnmatch import translate
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING: Any = object()


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    value: T
    expires_at: float  # 0 = never
    access_count: int
    last_accessed: float
    created_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at > 0 and now > self.expires_at


@dataclass(frozen=True, slots=True)
class CacheStats:
    hits: int
    misses: int
    evictions: int
    expirations: int
    size: int
    hit_rate: float


class CacheManager(Generic[T]):
    def __init__(
        self,
        *,
        default_ttl: float = 300.0,
        max_size: int = 1000,
        enable_lru: bool = True,
        cleanup_interval: float = 60.0,
        on_hit: Callable[[str], None] | None = None,
        on_miss: Callable[[str], None] | None = None,
        on_expire: Callable[[str, Any], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl = default_ttl
        self.max_size = max_size
        self.enable_lru = enable_lru
        self._on_hit = on_hit
        self._on_miss = on_miss
        self._on_expire = on_expire
        self._clock = clock

        self._entries: dict[str, CacheEntry[T]] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None
        if cleanup_interval > 0:
            weakref.finalize(self, self._stop.set)
            self._sweeper = threading.Thread(
                target=_sweep,
                args=(weakref.ref(self), self._stop, cleanup_interval),
                name="cache-cleanup",
                daemon=True,
            )
            self._sweeper.start()

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def __enter__(self) -> CacheManager[T]:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def set(self, key: str, value: T, ttl: float | None = None) -> None:
        """Store ``value``. ``ttl=None`` uses the default TTL, ``0`` never expires."""

        effective_ttl = self.default_ttl if ttl is None else ttl
        now = self._clock()
        with self._lock:
            if key not in self._entries and 0 < self.max_size <= len(self._entries):
                self._evict()
            self._entries[key] = CacheEntry(
                value=value,
                expires_at=now + effective_ttl if effective_ttl > 0 else 0,
                access_count=0,
                last_accessed=now,
                created_at=now,
            )
        logger.debug("Cache set", extra={"key": key, "ttl": effective_ttl})

    def get(self, key: str, default: Any = None) -> T | Any:
        value = self._lookup(key)
        return default if value is _MISSING else value

    def _lookup(self, key: str) -> Any:
        now = self._clock()
        expired: CacheEntry[T] | None = None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
            elif entry.is_expired(now):
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                expired = entry
            else:
                entry.access_count += 1
                entry.last_accessed = now
                self._hits += 1

        if entry is None or expired is not None:
            if expired is not None:
                self._notify(self._on_expire, key, expired.value)
            self._notify(self._on_miss, key)
            return _MISSING

        self._notify(self._on_hit, key)
        return entry.value

    def has(self, key: str) -> bool:
        """True when ``key`` is present and unexpired. Does not count as an access."""

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if not entry.is_expired(self._clock()):
                return True
            del self._entries[key]
            self._expirations += 1
        self._notify(self._on_expire, key, entry.value)
        return False

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        logger.info("Cache cleared", extra={"entries_removed": removed})

    def delete_by_pattern(self, pattern: str | re.Pattern[str]) -> int:
        """Delete keys matching a glob (``user:*``) or a compiled regex."""

        if isinstance(pattern, str):
            matches = re.compile(translate(pattern)).match
        else:
            matches = pattern.search
        with self._lock:
            doomed = [key for key in self._entries if matches(key)]
            for key in doomed:
                del self._entries[key]
        logger.debug("Cache pattern delete", extra={"pattern": str(pattern), "count": len(doomed)})
        return len(doomed)

    def get_or_set(self, key: str, factory: Callable[[], T], ttl: float | None = None) -> T:
        value = self._lookup(key)
        if value is not _MISSING:
            return value
        value = factory()
        self.set(key, value, ttl)
        return value

    async def get_or_set_async(
        self, key: str, factory: Callable[[], Awaitable[T]], ttl: float | None = None
    ) -> T:
        value = self._lookup(key)
        if value is not _MISSING:
            return value
        value = await factory()
        self.set(key, value, ttl)
        return value

    def get_stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                expirations=self._expirations,
                size=len(self._entries),
                hit_rate=self._hits / total if total else 0.0,
            )

    def reset_stats(self) -> None:
        with self._lock:
            self._hits = self._misses = self._evictions = self._expirations = 0

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def cleanup(self) -> int:
        """Remove every expired entry now; returns how many were removed."""

        now = self._clock()
        with self._lock:
            expired = [(k, e) for k, e in self._entries.items() if e.is_expired(now)]
            for key, _ in expired:
                del self._entries[key]
            self._expirations += len(expired)
        for key, entry in expired:
            self._notify(self._on_expire, key, entry.value)
        return len(expired)

    def close(self) -> None:
        """Stop the background sweeper. Safe to call more than once."""

        self._stop.set()
        if self._sweeper is not None and self._sweeper is not threading.current_thread():
            self._sweeper.join(timeout=1.0)
            self._sweeper = None

    def _evict(self) -> None:
        if not self._entries:
            return
        if self.enable_lru:
            victim = None
            lowest = None
            for key, entry in self._entries.items():
                if lowest is None or entry.access_count < lowest:
                    victim, lowest = key, entry.access_count
        else:
            victim = next(iter(self._entries))
        if victim is None:
            return
        del self._entries[victim]
        self._evictions += 1
        logger.debug("Cache eviction", extra={"key": victim, "lru": self.enable_lru})

    @staticmethod
    def _notify(callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Cache callback failed")


def _sweep(ref: weakref.ref[CacheManager[Any]], stop: threading.Event, interval: float) -> None:
    while not stop.wait(interval):
        cache = ref()
        if cache is None:
            return
        cleaned = cache.cleanup()
        del cache
        if cleaned:
            logger.debug("Periodic cache cleanup", extra={"cleaned": cleaned})


def create_cache(**options: Any) -> CacheManager[Any]:
    return CacheManager(**options)


def create_result_cache() -> CacheManager[Any]:
    """Cache for skill execution results."""

    return CacheManager(default_ttl=10 * 60, max_size=500, enable_lru=True)


def create_search_cache() -> CacheManager[Any]:
    """Cache for knowledge search results."""

    return CacheManager(default_ttl=30 * 60, max_size=200, enable_lru=True)


def create_template_cache() -> CacheManager[Any]:
    """Cache for rendered templates, evicted oldest-first."""

    return CacheManager(default_ttl=60 * 60, max_size=100, enable_lru=False)
