"""
AdvancedCache - Async-compatible LRU cache with TTL, tags and statistics.

Features:
- Size (bytes) and entry-count bounds with LRU eviction
- TTL expiry, enforced lazily on access and by a periodic sweep
- Tag-based bulk invalidation
- zlib compression for payloads above a size threshold
- Hit/miss/eviction statistics and top queries
"""

import asyncio
import copy
import json
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from vizom.services.errors import CacheError


@dataclass(frozen=True)
class CacheConfig:
    """Configuration for the cache engine."""

    max_size: int = 50 * 1024 * 1024  # Bytes of serialized payload
    max_entries: int = 1000
    default_ttl: timedelta = timedelta(minutes=5)
    cleanup_interval: timedelta = timedelta(minutes=1)
    compression_threshold: int = 1024  # Bytes; larger payloads are compressed
    priority_levels: int = 3


@dataclass
class CacheMetadata:
    """Bookkeeping attached to a cache entry."""

    size: int
    compressed: bool = False
    source: str = "api"  # 'api' | 'fallback' | 'user'
    request_id: str | None = None
    model: str | None = None
    tokens: int | None = None
    processing_time: float = 0.0


@dataclass
class CacheEntry:
    """A single cache entry with metadata."""

    key: str
    data: Any  # zlib-compressed JSON bytes when metadata.compressed
    metadata: CacheMetadata
    created_at: datetime
    last_accessed: datetime
    ttl: timedelta
    access_count: int = 1
    tags: frozenset[str] = field(default_factory=frozenset)
    priority: int = 0

    def is_expired(self, now: datetime) -> bool:
        """Check if entry is past its TTL."""
        return now - self.created_at > self.ttl

    def value(self) -> Any:
        """Return a private copy of the payload, decompressing it if needed."""
        if self.metadata.compressed:
            return json.loads(zlib.decompress(self.data).decode("utf-8"))
        return copy.deepcopy(self.data)


@dataclass
class CacheQuery:
    """One of the most frequently accessed keys."""

    key: str
    frequency: int
    last_accessed: datetime
    size: int


@dataclass
class CacheStats:
    """Cache statistics."""

    total_entries: int = 0
    total_size: int = 0
    hit_rate: float = 0.0
    miss_rate: float = 0.0
    eviction_count: int = 0
    compression_ratio: float = 0.0
    average_access_time: float = 0.0  # Seconds between creation and last access
    top_queries: list[CacheQuery] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_entries": self.total_entries,
            "total_size": self.total_size,
            "hit_rate": f"{self.hit_rate:.2%}",
            "miss_rate": f"{self.miss_rate:.2%}",
            "eviction_count": self.eviction_count,
            "compression_ratio": round(self.compression_ratio, 4),
            "average_access_time": round(self.average_access_time, 3),
            "top_queries": [
                {
                    "key": q.key,
                    "frequency": q.frequency,
                    "last_accessed": q.last_accessed.isoformat(),
                    "size": q.size,
                }
                for q in self.top_queries
            ],
        }


class AdvancedCache:
    """
    Bounded cache with LRU eviction, TTL and tag invalidation.

    Usage:
        cache = AdvancedCache(CacheConfig(max_entries=100))
        cache.start()  # periodic sweep, needs a running event loop

        await cache.set("chart:abc", payload, tags=["chart"])
        data = await cache.get("chart:abc")

        await cache.invalidate_by_tag("chart")
        await cache.destroy()
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
        debug: bool = False,
    ):
        self.config = config or CacheConfig()
        self._clock = clock
        self._debug = debug

        self._memory: dict[str, CacheEntry] = {}
        self._access_order: dict[str, int] = {}
        self._access_counter = 0
        self._total_size = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0

        self._lock = asyncio.Lock()
        self._scheduler: AsyncIOScheduler | None = None
        self._destroyed = False

    def start(self) -> None:
        """Start the periodic expiry sweep."""
        if self._destroyed:
            raise CacheError("Cache has been destroyed")
        if self._scheduler is not None:
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.cleanup_expired,
            trigger="interval",
            seconds=self.config.cleanup_interval.total_seconds(),
            id="cache_cleanup",
            name="Cache expiry sweep",
            replace_existing=True,
        )
        self._scheduler.start()
        self._log(
            f"SWEEP: every {self.config.cleanup_interval.total_seconds()}s"
        )

    @property
    def is_running(self) -> bool:
        """Whether the periodic sweep is scheduled."""
        return self._scheduler is not None

    async def get(self, key: str) -> Any | None:
        """
        Get value from cache.

        Returns the payload if present and not expired, None otherwise.
        """
        async with self._lock:
            entry = self._memory.get(key)
            if entry is None:
                self._misses += 1
                self._log(f"MISS: {key[:50]}")
                return None

            now = self._clock()
            if entry.is_expired(now):
                self._remove(key)
                self._misses += 1
                self._log(f"EXPIRED: {key[:50]}")
                return None

            entry.last_accessed = now
            entry.access_count += 1
            self._access_counter += 1
            self._access_order[key] = self._access_counter
            self._hits += 1
            self._log(f"HIT: {key[:50]}")
            return entry.value()

    async def set(
        self,
        key: str,
        data: Any,
        *,
        ttl: timedelta | None = None,
        tags: list[str] | set[str] | None = None,
        priority: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """
        Set value in cache.

        Args:
            key: Cache key
            data: JSON-serializable payload
            ttl: Time to live (uses default if not specified)
            tags: Labels for bulk invalidation
            priority: Clamped to the configured priority levels
            metadata: Extra CacheMetadata fields (source, request_id, ...)

        Returns:
            True if stored, False if the payload alone exceeds max_size

        Raises:
            CacheError: If the payload is not JSON-serializable
        """
        try:
            serialized = json.dumps(data, ensure_ascii=False, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise CacheError(f"Cannot cache value for '{key[:50]}': {e}") from e

        raw = serialized.encode("utf-8")
        size = len(raw)

        if size > self.config.max_size:
            logger.warning(
                f"Cache entry '{key[:50]}' rejected: {size} bytes exceeds "
                f"max_size {self.config.max_size}"
            )
            return False

        compressed = size > self.config.compression_threshold
        meta = CacheMetadata(size=size, compressed=compressed)
        for name, value in (metadata or {}).items():
            if name not in ("size", "compressed") and hasattr(meta, name):
                setattr(meta, name, value)

        now = self._clock()
        entry = CacheEntry(
            key=key,
            data=zlib.compress(raw) if compressed else json.loads(serialized),
            metadata=meta,
            created_at=now,
            last_accessed=now,
            ttl=ttl or self.config.default_ttl,
            tags=frozenset(tags or ()),
            priority=self._clamp_priority(priority),
        )

        async with self._lock:
            if key in self._memory:
                self._remove(key)

            self._ensure_capacity(size)

            self._memory[key] = entry
            self._access_counter += 1
            self._access_order[key] = self._access_counter
            self._total_size += size
            self._log(
                f"SET: {key[:50]} ({size}B, TTL: {entry.ttl.total_seconds()}s"
                f"{', compressed' if compressed else ''})"
            )
        return True

    async def delete(self, key: str) -> bool:
        """Delete a specific key from cache."""
        async with self._lock:
            if self._remove(key):
                self._log(f"DELETE: {key[:50]}")
                return True
            return False

    async def clear(self) -> None:
        """Clear all cache entries and reset statistics."""
        async with self._lock:
            count = len(self._memory)
            self._memory.clear()
            self._access_order.clear()
            self._access_counter = 0
            self._total_size = 0
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            self._log(f"CLEAR: {count} entries removed")

    async def get_by_tag(self, tag: str) -> list[CacheEntry]:
        """Get all entries carrying a tag."""
        async with self._lock:
            return [entry for entry in self._memory.values() if tag in entry.tags]

    async def invalidate_by_tag(self, tag: str) -> int:
        """
        Invalidate all entries carrying a tag.

        Returns:
            Number of entries invalidated
        """
        async with self._lock:
            keys_to_delete = [k for k, v in self._memory.items() if tag in v.tags]
            for key in keys_to_delete:
                self._remove(key)

            if keys_to_delete:
                self._log(f"INVALIDATE: {len(keys_to_delete)} entries tagged '{tag}'")

            return len(keys_to_delete)

    async def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        async with self._lock:
            now = self._clock()
            expired_keys = [k for k, v in self._memory.items() if v.is_expired(now)]
            for key in expired_keys:
                self._remove(key)

        if expired_keys:
            logger.info(f"Cache cleanup: removed {len(expired_keys)} expired entries")

        return len(expired_keys)

    def entries(self) -> list[CacheEntry]:
        """Snapshot of live entries; does not touch access statistics."""
        now = self._clock()
        return [entry for entry in self._memory.values() if not entry.is_expired(now)]

    def get_stats(self) -> CacheStats:
        """Get cache statistics."""
        total_requests = self._hits + self._misses
        entries = list(self._memory.values())

        top_queries = sorted(
            (
                CacheQuery(
                    key=e.key,
                    frequency=e.access_count,
                    last_accessed=e.last_accessed,
                    size=e.metadata.size,
                )
                for e in entries
            ),
            key=lambda q: q.frequency,
            reverse=True,
        )[:10]

        compressed = sum(1 for e in entries if e.metadata.compressed)
        average_access_time = (
            sum((e.last_accessed - e.created_at).total_seconds() for e in entries)
            / len(entries)
            if entries
            else 0.0
        )

        return CacheStats(
            total_entries=len(entries),
            total_size=self._total_size,
            hit_rate=self._hits / total_requests if total_requests else 0.0,
            miss_rate=self._misses / total_requests if total_requests else 0.0,
            eviction_count=self._evictions,
            compression_ratio=compressed / len(entries) if entries else 0.0,
            average_access_time=average_access_time,
            top_queries=top_queries,
        )

    async def destroy(self) -> None:
        """Stop the sweep and drop every entry. Safe to call more than once."""
        if self._destroyed:
            return
        self._destroyed = True

        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        await self.clear()
        logger.debug("AdvancedCache destroyed")

    async def __aenter__(self) -> "AdvancedCache":
        """Async context manager entry."""
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.destroy()

    def __len__(self) -> int:
        return len(self._memory)

    def __contains__(self, key: object) -> bool:
        return key in self._memory

    def _ensure_capacity(self, required_size: int) -> None:
        """Evict LRU entries until the new entry fits both bounds."""
        while self._memory and (
            self._total_size + required_size > self.config.max_size
            or len(self._memory) >= self.config.max_entries
        ):
            self._evict_lru()

    def _evict_lru(self) -> None:
        """Evict the least recently used entry."""
        if not self._access_order:
            return

        oldest_key = min(self._access_order, key=self._access_order.__getitem__)
        self._remove(oldest_key)
        self._evictions += 1
        self._log(f"EVICT: {oldest_key[:50]}")

    def _remove(self, key: str) -> bool:
        entry = self._memory.pop(key, None)
        if entry is None:
            return False
        self._access_order.pop(key, None)
        self._total_size -= entry.metadata.size
        return True

    def _clamp_priority(self, priority: int | None) -> int:
        if priority is None:
            return 0
        return max(0, min(priority, self.config.priority_levels - 1))

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[AdvancedCache] {message}")
