import json
import logging
import re
import threading
import time
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")

DEFAULT_TTL_MS = 30000

Clock = Callable[[], float]


def _now_ms() -> float:
    return time.monotonic() * 1000


class CacheEntry(Generic[T]):
    __slots__ = ("data", "timestamp", "ttl", "access_count", "last_accessed")

    def __init__(self, data: T, timestamp: float, ttl: float):
        self.data = data
        self.timestamp = timestamp
        self.ttl = ttl
        self.access_count = 0
        self.last_accessed: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        # ttl <= 0 means the entry is never served
        return self.ttl <= 0 or now - self.timestamp > self.ttl


class CacheStats(BaseModel):
    """Snapshot of cache counters, used for logging and diagnostics only."""
    total_keys: int
    hit_count: int
    miss_count: int
    hit_rate: float
    total_memory_usage: int
    oldest_entry: Optional[float] = None
    newest_entry: Optional[float] = None
    average_access_count: float = 0.0


class TTLCache(Generic[T]):
    """
    In-memory key/value store with per-entry expiry.

    Expired entries behave exactly like absent ones and are purged lazily on
    access, or in bulk by cleanup(). With max_size set, inserting a new key
    into a full cache evicts the least recently used entry (last successful
    get, or insertion time for entries never read).

    All operations hold a re-entrant lock, since reads may evict.
    """

    def __init__(
        self,
        default_ttl_ms: float = DEFAULT_TTL_MS,
        max_size: Optional[int] = None,
        enable_stats: bool = True,
        enable_access_tracking: bool = True,
        clock: Optional[Clock] = None,
    ):
        self.default_ttl_ms = default_ttl_ms
        self.max_size = max_size
        self.enable_stats = enable_stats
        self.enable_access_tracking = enable_access_tracking
        self._clock = clock or _now_ms
        self._entries: Dict[str, CacheEntry[T]] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def set(self, key: str, value: T, ttl_ms: Optional[float] = None) -> None:
        with self._lock:
            if self.max_size and key not in self._entries and len(self._entries) >= self.max_size:
                self._evict_least_recently_used()
            ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms
            self._entries[key] = CacheEntry(value, self._clock(), ttl)

    def get(self, key: str) -> Optional[T]:
        with self._lock:
            entry = self._entries.get(key)
            now = self._clock()
            if entry is None or entry.is_expired(now):
                if entry is not None:
                    del self._entries[key]
                self._record(hit=False)
                return None

            if self.enable_access_tracking:
                entry.access_count += 1
                entry.last_accessed = now
            self._record(hit=True)
            return entry.data

    def has(self, key: str) -> bool:
        """Membership check with get() expiry semantics, without touching statistics."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return False
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.size()

    def cleanup(self) -> int:
        """Drops every expired entry; returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for k in expired:
                del self._entries[k]
            if expired:
                logging.debug(f"Cache cleanup removed {len(expired)} expired entries.")
            return len(expired)

    def keys(self) -> List[str]:
        with self._lock:
            self.cleanup()
            return list(self._entries.keys())

    def extend_ttl(self, key: str, additional_ms: float) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            entry.ttl += additional_ms
            return True

    def update_ttl(self, key: str, ttl_ms: float) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            entry.ttl = ttl_ms
            return True

    def stats(self) -> CacheStats:
        with self._lock:
            entries = list(self._entries.values())
            total_requests = self._hits + self._misses
            return CacheStats(
                total_keys=len(entries),
                hit_count=self._hits,
                miss_count=self._misses,
                hit_rate=self._hits / total_requests if total_requests else 0.0,
                total_memory_usage=self._estimate_memory_usage(),
                oldest_entry=min((e.timestamp for e in entries), default=None),
                newest_entry=max((e.timestamp for e in entries), default=None),
                average_access_count=(
                    sum(e.access_count for e in entries) / len(entries) if entries else 0.0
                ),
            )

    def reset_stats(self) -> None:
        with self._lock:
            self._hits = 0
            self._misses = 0

    def _record(self, hit: bool) -> None:
        if not self.enable_stats:
            return
        if hit:
            self._hits += 1
        else:
            self._misses += 1

    def _evict_least_recently_used(self) -> None:
        if not self._entries:
            return
        def recency(key: str) -> float:
            entry = self._entries[key]
            return entry.timestamp if entry.last_accessed is None else entry.last_accessed

        lru_key = min(self._entries, key=recency)
        logging.debug(f"Cache full ({self.max_size} entries), evicting '{lru_key}'.")
        del self._entries[lru_key]

    def _estimate_memory_usage(self) -> int:
        total = 0
        for key, entry in self._entries.items():
            total += len(key) * 2
            try:
                total += len(json.dumps(entry.data, default=str)) * 2
            except (TypeError, ValueError):
                total += 100
            total += 64
        return total


class CacheManager:
    """
    Registry of named caches shared by the tool handlers.

    One manager is created per server (see client.TodoistClientSingleton) and
    passed to handlers explicitly; tests build their own.
    """

    def __init__(self, default_ttl_ms: float = DEFAULT_TTL_MS, clock: Optional[Clock] = None):
        self.default_ttl_ms = default_ttl_ms
        self._clock = clock
        self._caches: Dict[str, TTLCache[Any]] = {}

    def get_or_create(
        self,
        name: str,
        default_ttl_ms: Optional[float] = None,
        max_size: Optional[int] = None,
    ) -> TTLCache[Any]:
        cache = self._caches.get(name)
        if cache is None:
            cache = TTLCache(
                default_ttl_ms=self.default_ttl_ms if default_ttl_ms is None else default_ttl_ms,
                max_size=max_size,
                clock=self._clock,
            )
            self._caches[name] = cache
        return cache

    def get(self, name: str) -> Optional[TTLCache[Any]]:
        return self._caches.get(name)

    def register(self, name: str, cache: TTLCache[Any]) -> None:
        self._caches[name] = cache

    def unregister(self, name: str) -> bool:
        return self._caches.pop(name, None) is not None

    def invalidate(self, *names: str) -> None:
        """Clears the named caches; names that were never created are ignored."""
        for name in names:
            cache = self._caches.get(name)
            if cache is not None:
                cache.clear()

    def clear_all(self) -> None:
        for cache in self._caches.values():
            cache.clear()

    def cleanup_all(self) -> int:
        return sum(cache.cleanup() for cache in self._caches.values())

    def invalidate_by_pattern(self, pattern: str) -> int:
        regex = re.compile(pattern)
        count = 0
        for cache in self._caches.values():
            for key in cache.keys():
                if regex.search(key):
                    cache.delete(key)
                    count += 1
        return count

    def global_stats(self) -> Dict[str, Any]:
        per_cache = {name: cache.stats() for name, cache in self._caches.items()}
        hits = sum(s.hit_count for s in per_cache.values())
        misses = sum(s.miss_count for s in per_cache.values())
        return {
            "total_caches": len(per_cache),
            "total_keys": sum(s.total_keys for s in per_cache.values()),
            "total_hits": hits,
            "total_misses": misses,
            "global_hit_rate": hits / (hits + misses) if hits + misses else 0.0,
            "total_memory_usage": sum(s.total_memory_usage for s in per_cache.values()),
            "cache_stats": {name: s.model_dump() for name, s in per_cache.items()},
        }
