"""
Feed Cache for the Advisory Feed Engine

Bounded in-memory key/value store with per-entry TTL, access-weighted LRU
eviction and optional zlib compression of large payloads.

OBJECTIVE:
Gate network fetches on freshness (one `feed:{source_id}` entry per source)
and memoize the derived views built on top of the items: filtered query
results, search results and text classifications.

STORAGE MODEL:
- Values are JSON-serialized at set(); get() always returns a freshly
  decoded copy, so callers can never mutate what is stored
- size_bytes is the stored size (after compression when applied)
- An entry is visible only while now - created_at <= ttl_ms
- Total stored size never exceeds max_size_bytes: eviction runs before the
  insert, and a payload larger than the whole cache is rejected

EVICTION:
Expired entries are purged first. If that does not make room, entries are
ranked by last_accessed_at + access_count * 1000 ms and removed lowest first
until the entry count is at most half of max_entries and the new payload fits.

INTEGRATION WITH LOCAL CODES:
- orchestration/feed_manager.py owns one FeedCache instance
- Sizes and the sweep interval come from config/settings.py
"""

import asyncio
import hashlib
import json
import logging
import threading
import time
import zlib
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

FEED_KEY_PREFIX = 'feed:'
CLUSTERS_KEY_PREFIX = 'clusters:'
SEARCH_KEY_PREFIX = 'search:'
TOPICS_KEY_PREFIX = 'topics:'

DEFAULT_TTL_MS = 3_600_000
CLUSTERS_TTL_MS = 900_000       # 15 minutes
SEARCH_TTL_MS = 600_000         # 10 minutes
TOPICS_TTL_MS = 86_400_000      # 24 hours

ACCESS_COUNT_WEIGHT_MS = 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class CacheEntry:
    """One stored value and its bookkeeping"""
    key: str
    payload: bytes
    created_at: int
    ttl_ms: int
    access_count: int
    last_accessed_at: int
    compressed: bool
    size_bytes: int
    raw_size_bytes: int

    def is_expired(self, now: int) -> bool:
        return now - self.created_at > self.ttl_ms

    @property
    def eviction_score(self) -> int:
        return self.last_accessed_at + self.access_count * ACCESS_COUNT_WEIGHT_MS


@dataclass
class CacheStats:
    total_entries: int
    total_size: int
    hit_rate: float
    miss_rate: float
    eviction_count: int
    compression_ratio: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class FeedCache:
    """
    Thread-safe TTL cache with size and entry bounds

    Every public method takes the same re-entrant lock, so the cache can be
    shared between the event loop and worker threads.
    """

    def __init__(self,
                 max_size_bytes: int = 100 * 1024 * 1024,
                 max_entries: int = 2000,
                 compression_enabled: bool = True,
                 compression_threshold: int = 1024,
                 cleanup_interval: float = 300.0,
                 clock: Callable[[], int] = _now_ms):
        """
        Args:
            max_size_bytes: Upper bound on the total stored size
            max_entries: Entry count that triggers eviction
            compression_enabled: Compress payloads above compression_threshold
            compression_threshold: Serialized size in bytes above which to compress
            cleanup_interval: Seconds between background sweeps of expired entries
            clock: Returns the current time in milliseconds
        """
        self.max_size_bytes = max_size_bytes
        self.max_entries = max_entries
        self.compression_enabled = compression_enabled
        self.compression_threshold = compression_threshold
        self.cleanup_interval = cleanup_interval
        self.clock = clock

        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._current_size = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._sweep_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def get(self, key: str) -> Any:
        """Return a decoded copy of the live value for key, or None"""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            now = self.clock()
            if entry.is_expired(now):
                self._remove(key)
                self._misses += 1
                return None

            entry.access_count += 1
            entry.last_accessed_at = now
            self._hits += 1
            return self._decode(entry)

    def has(self, key: str) -> bool:
        """Whether key holds a live value; does not touch access statistics"""
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self.clock())

    def set(self, key: str, value: Any, ttl_ms: int = DEFAULT_TTL_MS) -> bool:
        """
        Store value under key, replacing any previous entry

        Returns:
            False when the value cannot be serialized or is larger than the cache
        """
        try:
            raw = json.dumps(value, default=str, separators=(',', ':')).encode('utf-8')
        except (TypeError, ValueError) as e:
            logger.error(f"Cache set error for {key}: {e}")
            return False

        compressed = self.compression_enabled and len(raw) > self.compression_threshold
        payload = zlib.compress(raw) if compressed else raw
        size = len(payload)

        if size > self.max_size_bytes:
            logger.warning(f"Refusing to cache {key}: {size} bytes exceeds cache size {self.max_size_bytes}")
            return False

        with self._lock:
            self._remove(key)

            if not self._fits(size):
                self._evict(size)

            now = self.clock()
            self._entries[key] = CacheEntry(
                key=key,
                payload=payload,
                created_at=now,
                ttl_ms=ttl_ms,
                access_count=0,
                last_accessed_at=now,
                compressed=compressed,
                size_bytes=size,
                raw_size_bytes=len(raw),
            )
            self._current_size += size
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._remove(key)

    def clear(self):
        """Drop every entry and reset the counters"""
        with self._lock:
            self._entries.clear()
            self._current_size = 0
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def stats(self) -> CacheStats:
        with self._lock:
            requests = self._hits + self._misses
            hit_rate = self._hits / requests if requests else 0.0
            raw_size = sum(entry.raw_size_bytes for entry in self._entries.values())

            return CacheStats(
                total_entries=len(self._entries),
                total_size=self._current_size,
                hit_rate=hit_rate,
                miss_rate=1.0 - hit_rate if requests else 0.0,
                eviction_count=self._evictions,
                compression_ratio=self._current_size / raw_size if raw_size else 1.0,
            )

    def cleanup(self) -> int:
        """
        Remove expired entries

        Returns:
            Number of entries removed
        """
        with self._lock:
            removed = self._purge_expired(self.clock())

        if removed:
            logger.debug(f"Cleaned up {removed} expired cache entries")
        return removed

    def _purge_expired(self, now: int) -> int:
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            self._remove(key)
        return len(expired)

    def _remove(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._current_size -= entry.size_bytes
        return True

    def _fits(self, required_size: int) -> bool:
        return (len(self._entries) < self.max_entries
                and self._current_size + required_size <= self.max_size_bytes)

    def _evict(self, required_size: int):
        # expired entries go first, whatever their access history
        if self._purge_expired(self.clock()) and self._fits(required_size):
            return

        ranked = sorted(self._entries.values(), key=lambda e: e.eviction_score)

        freed = 0
        evicted = 0
        for entry in ranked:
            if (len(self._entries) <= self.max_entries / 2
                    and self._current_size + required_size <= self.max_size_bytes):
                break
            self._remove(entry.key)
            freed += entry.size_bytes
            evicted += 1

        self._evictions += evicted
        logger.debug(f"Evicted {evicted} entries, freed {freed} bytes")

    @staticmethod
    def _decode(entry: CacheEntry) -> Any:
        raw = zlib.decompress(entry.payload) if entry.compressed else entry.payload
        return json.loads(raw.decode('utf-8'))

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------

    async def start(self):
        """Start the periodic expired-entry sweep on the running loop"""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop(self):
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.cleanup_interval)
            self.cleanup()

    # ------------------------------------------------------------------
    # Domain helpers
    # ------------------------------------------------------------------

    @staticmethod
    def hash_key(value: str) -> str:
        return hashlib.sha256(value.encode('utf-8')).hexdigest()

    @classmethod
    def filter_key(cls, filters: Optional[Dict[str, Any]]) -> str:
        """Stable hash of a filter set; list order does not matter"""
        filters = filters or {}
        normalized = {
            'categories': sorted(filters.get('categories') or []),
            'sources': sorted(filters.get('sources') or []),
            'severities': sorted(filters.get('severities') or []),
            'since': str(filters['since']) if filters.get('since') else None,
            'query': (filters.get('query') or '').strip().lower(),
        }
        return cls.hash_key(json.dumps(normalized, sort_keys=True))

    def cache_feed_data(self, source_id: str, items: List[Dict[str, Any]], ttl_ms: int) -> bool:
        return self.set(f"{FEED_KEY_PREFIX}{source_id}", items, ttl_ms)

    def get_feed_data(self, source_id: str) -> Optional[List[Dict[str, Any]]]:
        return self.get(f"{FEED_KEY_PREFIX}{source_id}")

    def cache_clustered_feeds(self, filters: Optional[Dict[str, Any]],
                              clusters: Dict[str, List[str]],
                              all_items: List[Dict[str, Any]]) -> bool:
        """Cache a filtered item list together with its category clusters"""
        data = {'clusters': clusters, 'all_items': all_items, 'timestamp': self.clock()}
        return self.set(f"{CLUSTERS_KEY_PREFIX}{self.filter_key(filters)}", data, CLUSTERS_TTL_MS)

    def get_cached_clustered_feeds(self, filters: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        return self.get(f"{CLUSTERS_KEY_PREFIX}{self.filter_key(filters)}")

    def _search_key(self, query: str, filters: Optional[Dict[str, Any]]) -> str:
        return self.hash_key(f"{query.strip().lower()}:{self.filter_key(filters)}")

    def cache_search_results(self, query: str, filters: Optional[Dict[str, Any]],
                             results: List[Dict[str, Any]]) -> bool:
        return self.set(f"{SEARCH_KEY_PREFIX}{self._search_key(query, filters)}", results, SEARCH_TTL_MS)

    def get_cached_search_results(self, query: str,
                                  filters: Optional[Dict[str, Any]]) -> Optional[List[Dict[str, Any]]]:
        return self.get(f"{SEARCH_KEY_PREFIX}{self._search_key(query, filters)}")

    def cache_classification(self, text: str, classification: Dict[str, Any]) -> bool:
        return self.set(f"{TOPICS_KEY_PREFIX}{self.hash_key(text)}", classification, TOPICS_TTL_MS)

    def get_cached_classification(self, text: str) -> Optional[Dict[str, Any]]:
        return self.get(f"{TOPICS_KEY_PREFIX}{self.hash_key(text)}")
