"""Tests for the LRU/TTL cache engine."""

from datetime import timedelta

import pytest

from vizom.services.cache import AdvancedCache, CacheConfig
from vizom.services.errors import CacheError


@pytest.fixture
def cache(clock):
    return AdvancedCache(CacheConfig(), clock=clock)


class TestGetSet:
    """Basic storage behaviour."""

    @pytest.mark.asyncio
    async def test_set_then_get_returns_value(self, cache):
        assert await cache.set("k", {"a": 1}) is True
        assert await cache.get("k") == {"a": 1}

    @pytest.mark.asyncio
    async def test_missing_key_returns_none(self, cache):
        assert await cache.get("nope") is None

    @pytest.mark.asyncio
    async def test_overwrite_does_not_double_count_size(self, cache):
        await cache.set("k", "aaaaaaaa")
        await cache.set("k", "bb")

        assert len(cache) == 1
        assert cache.get_stats().total_size == len('"bb"')
        assert await cache.get("k") == "bb"

    @pytest.mark.asyncio
    async def test_caller_mutation_after_set_is_not_seen(self, cache):
        payload = {"a": [1]}
        await cache.set("k", payload)

        payload["a"].append(2)

        assert await cache.get("k") == {"a": [1]}

    @pytest.mark.asyncio
    async def test_mutating_returned_value_leaves_entry_intact(self, cache):
        await cache.set("k", {"a": [1]})
        size = cache.get_stats().total_size

        first = await cache.get("k")
        first["a"].extend(range(1000))

        assert await cache.get("k") == {"a": [1]}
        assert cache.get_stats().total_size == size

    @pytest.mark.asyncio
    async def test_non_serializable_payload_raises(self, cache):
        with pytest.raises(CacheError):
            await cache.set("k", {"when": object()})

    @pytest.mark.asyncio
    async def test_access_updates_entry_bookkeeping(self, cache, clock):
        await cache.set("k", 1)
        clock.advance(seconds=5)
        await cache.get("k")

        entry = cache.entries()[0]
        assert entry.access_count == 2
        assert entry.last_accessed == clock.now

    @pytest.mark.asyncio
    async def test_priority_is_clamped_to_levels(self, clock):
        cache = AdvancedCache(CacheConfig(priority_levels=3), clock=clock)
        await cache.set("high", 1, priority=10)
        await cache.set("low", 1, priority=-4)

        priorities = {e.key: e.priority for e in cache.entries()}
        assert priorities == {"high": 2, "low": 0}

    @pytest.mark.asyncio
    async def test_metadata_fields_are_recorded(self, cache):
        await cache.set("k", 1, metadata={"source": "user", "request_id": "ds-1-1", "size": 999})

        entry = cache.entries()[0]
        assert entry.metadata.source == "user"
        assert entry.metadata.request_id == "ds-1-1"
        assert entry.metadata.size == 1


class TestExpiry:
    """TTL expiry, lazy and swept."""

    @pytest.mark.asyncio
    async def test_expired_entry_is_absent_without_sweep(self, cache, clock):
        await cache.set("k", "v", ttl=timedelta(seconds=10))
        clock.advance(seconds=11)

        assert await cache.get("k") is None
        assert "k" not in cache

    @pytest.mark.asyncio
    async def test_entry_alive_at_exact_ttl(self, cache, clock):
        await cache.set("k", "v", ttl=timedelta(seconds=10))
        clock.advance(seconds=10)

        assert await cache.get("k") == "v"

    @pytest.mark.asyncio
    async def test_default_ttl_applies(self, clock):
        cache = AdvancedCache(CacheConfig(default_ttl=timedelta(minutes=1)), clock=clock)
        await cache.set("k", "v")
        clock.advance(minutes=2)

        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_cleanup_removes_only_expired(self, cache, clock):
        await cache.set("short", 1, ttl=timedelta(seconds=5))
        await cache.set("long", 2, ttl=timedelta(hours=1))
        clock.advance(seconds=30)

        assert await cache.cleanup_expired() == 1
        assert "short" not in cache
        assert "long" in cache

    @pytest.mark.asyncio
    async def test_entries_snapshot_skips_expired(self, cache, clock):
        await cache.set("short", 1, ttl=timedelta(seconds=5))
        await cache.set("long", 2, ttl=timedelta(hours=1))
        clock.advance(seconds=30)

        assert [e.key for e in cache.entries()] == ["long"]


class TestEviction:
    """Capacity bounds and LRU order."""

    @pytest.mark.asyncio
    async def test_least_recently_used_is_evicted(self, clock):
        cache = AdvancedCache(CacheConfig(max_entries=3), clock=clock)
        await cache.set("A", 1)
        await cache.set("B", 2)
        await cache.set("C", 3)
        await cache.get("A")

        await cache.set("D", 4)

        assert "B" not in cache
        assert all(key in cache for key in ("A", "C", "D"))
        assert cache.get_stats().eviction_count == 1

    @pytest.mark.asyncio
    async def test_entry_count_never_exceeds_max(self, clock):
        cache = AdvancedCache(CacheConfig(max_entries=5), clock=clock)
        for i in range(20):
            await cache.set(f"k{i}", i)
            assert len(cache) <= 5

    @pytest.mark.asyncio
    async def test_total_size_never_exceeds_max(self, clock):
        cache = AdvancedCache(CacheConfig(max_size=30), clock=clock)
        for i in range(10):
            await cache.set(f"k{i}", "x" * 10)  # 12 bytes serialized
            assert cache.get_stats().total_size <= 30

        assert len(cache) == 2

    @pytest.mark.asyncio
    async def test_oversized_entry_is_rejected(self, clock):
        cache = AdvancedCache(CacheConfig(max_size=20), clock=clock)
        await cache.set("small", "ok")

        assert await cache.set("huge", "x" * 100) is False
        assert "huge" not in cache
        assert "small" in cache
        assert cache.get_stats().eviction_count == 0


class TestCompression:
    """Payloads above the threshold are stored compressed."""

    @pytest.mark.asyncio
    async def test_large_payload_round_trips(self, clock):
        cache = AdvancedCache(CacheConfig(compression_threshold=64), clock=clock)
        payload = {"labels": [f"label-{i}" for i in range(50)]}

        await cache.set("big", payload)
        await cache.set("small", {"a": 1})

        compressed = {e.key: e.metadata.compressed for e in cache.entries()}
        assert compressed == {"big": True, "small": False}
        assert await cache.get("big") == payload
        assert cache.get_stats().compression_ratio == 0.5


class TestTags:
    """Tag lookup and bulk invalidation."""

    @pytest.mark.asyncio
    async def test_invalidate_by_tag(self, cache):
        await cache.set("a", 1, tags=["chart", "api"])
        await cache.set("b", 2, tags=["chart"])
        await cache.set("c", 3, tags=["analysis"])

        assert await cache.invalidate_by_tag("chart") == 2
        assert len(cache) == 1
        assert await cache.get("c") == 3

    @pytest.mark.asyncio
    async def test_get_by_tag(self, cache):
        await cache.set("a", 1, tags=["chart"])
        await cache.set("b", 2, tags=["analysis"])

        entries = await cache.get_by_tag("chart")
        assert [e.key for e in entries] == ["a"]


class TestStats:
    """Statistics."""

    @pytest.mark.asyncio
    async def test_hit_and_miss_rates(self, cache):
        await cache.set("k", 1)
        await cache.get("k")
        await cache.get("k")
        await cache.get("missing")

        stats = cache.get_stats()
        assert stats.hit_rate == pytest.approx(2 / 3)
        assert stats.miss_rate == pytest.approx(1 / 3)

    @pytest.mark.asyncio
    async def test_top_queries_ordered_by_frequency(self, cache):
        for key in ("a", "b", "c"):
            await cache.set(key, key)
        for _ in range(3):
            await cache.get("b")
        await cache.get("c")

        top = cache.get_stats().top_queries
        assert [q.key for q in top] == ["b", "c", "a"]
        assert top[0].frequency == 4

    @pytest.mark.asyncio
    async def test_clear_resets_everything(self, cache):
        await cache.set("k", 1)
        await cache.get("k")
        await cache.clear()

        stats = cache.get_stats()
        assert stats.total_entries == 0
        assert stats.total_size == 0
        assert stats.hit_rate == 0.0

    @pytest.mark.asyncio
    async def test_stats_to_dict(self, cache):
        await cache.set("k", 1)
        data = cache.get_stats().to_dict()

        assert data["total_entries"] == 1
        assert data["top_queries"][0]["key"] == "k"


class TestLifecycle:
    """Sweep scheduling and teardown."""

    @pytest.mark.asyncio
    async def test_context_manager_starts_and_destroys(self):
        async with AdvancedCache() as cache:
            assert cache.is_running
            await cache.set("k", 1)

        assert not cache.is_running
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_destroy_is_idempotent(self):
        cache = AdvancedCache()
        cache.start()

        await cache.destroy()
        await cache.destroy()

        assert not cache.is_running

    @pytest.mark.asyncio
    async def test_start_after_destroy_raises(self):
        cache = AdvancedCache()
        await cache.destroy()

        with pytest.raises(CacheError):
            cache.start()
