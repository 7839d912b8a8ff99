"""
CachingService - Memoizes API responses by request fingerprint or query meaning.

Combines:
- AdvancedCache for storage, TTL and LRU eviction
- CacheKeyGenerator for request and semantic keys
- CacheInvalidationManager for rule-based purges
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from loguru import logger

from vizom.services.cache import AdvancedCache, CacheConfig, CacheEntry, CacheStats
from vizom.services.keys import CacheKeyGenerator

SEMANTIC_TTL = timedelta(minutes=10)

RuleCondition = Callable[[CacheEntry, datetime], bool]


@dataclass(frozen=True)
class CacheInvalidationRule:
    """Deletes any entry for which condition(entry, now) is true."""

    id: str
    name: str
    priority: int  # Higher runs first
    condition: RuleCondition


def _old_chart(entry: CacheEntry, now: datetime) -> bool:
    return "chart" in entry.tags and now - entry.created_at > timedelta(hours=24)


def _large_unused(entry: CacheEntry, now: datetime) -> bool:
    return entry.metadata.size > 10_000 and now - entry.last_accessed > timedelta(hours=1)


def _error_response(entry: CacheEntry, now: datetime) -> bool:
    return "error" in entry.tags or "fallback" in entry.tags


DEFAULT_RULES = (
    CacheInvalidationRule("old-charts", "Old Chart Configurations", 1, _old_chart),
    CacheInvalidationRule("large-unused", "Large Unused Entries", 2, _large_unused),
    CacheInvalidationRule("error-responses", "Error Responses", 3, _error_response),
)


class CacheInvalidationManager:
    """
    Named invalidation rules applied on demand.

    Usage:
        manager = CacheInvalidationManager()
        manager.add_rule(CacheInvalidationRule("drafts", "Drafts", 5, is_draft))
        result = await manager.apply_rules(cache)
    """

    def __init__(
        self,
        rules: tuple[CacheInvalidationRule, ...] | list[CacheInvalidationRule] = DEFAULT_RULES,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._rules: dict[str, CacheInvalidationRule] = {rule.id: rule for rule in rules}
        self._clock = clock

    @property
    def rules(self) -> list[CacheInvalidationRule]:
        """Rules in the order they are applied."""
        return sorted(self._rules.values(), key=lambda r: r.priority, reverse=True)

    def add_rule(self, rule: CacheInvalidationRule) -> None:
        """Add a rule, replacing any rule with the same id."""
        self._rules[rule.id] = rule

    def remove_rule(self, rule_id: str) -> bool:
        """Remove a rule. Returns True if it existed."""
        return self._rules.pop(rule_id, None) is not None

    async def apply_rules(self, cache: AdvancedCache) -> dict[str, Any]:
        """
        Delete every live entry matched by a rule.

        Each entry is deleted by the first matching rule, in descending
        priority. Reading entries does not affect hit statistics.

        Returns:
            Dict with invalidated_count and the name of the rule applied
            for each deleted entry
        """
        rules = self.rules
        now = self._clock()
        applied_rules: list[str] = []

        for entry in cache.entries():
            for rule in rules:
                if rule.condition(entry, now):
                    if await cache.delete(entry.key):
                        applied_rules.append(rule.name)
                    break

        if applied_rules:
            logger.info(f"Invalidation rules removed {len(applied_rules)} cache entries")

        return {"invalidated_count": len(applied_rules), "applied_rules": applied_rules}


def _endpoint_tag(endpoint: str) -> str | None:
    segments = [segment for segment in endpoint.split("/") if segment]
    return segments[0] if segments else None


class CachingService:
    """
    Cache-backed API service.

    Usage:
        async with CachingService() as caching:
            await caching.cache_response("/chart/generate", params, chart)
            chart = await caching.get_cached_response("/chart/generate", params)

            await caching.cache_semantic_response("chart:custom", prompt, chart)
            chart = await caching.get_semantic_cached_response("chart:custom", prompt)
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        cache: AdvancedCache | None = None,
        key_generator: CacheKeyGenerator | None = None,
        invalidation_manager: CacheInvalidationManager | None = None,
        semantic_ttl: timedelta = SEMANTIC_TTL,
        clock: Callable[[], datetime] = datetime.now,
        debug: bool = False,
    ):
        self.cache = cache or AdvancedCache(config, clock=clock, debug=debug)
        self.key_generator = key_generator or CacheKeyGenerator()
        self.invalidation_manager = invalidation_manager or CacheInvalidationManager(
            clock=clock
        )
        self.semantic_ttl = semantic_ttl

    def start(self) -> None:
        """Start the periodic expiry sweep."""
        self.cache.start()

    async def cache_response(
        self,
        endpoint: str,
        params: dict[str, Any],
        response: Any,
        *,
        ttl: timedelta | None = None,
        tags: list[str] | None = None,
        priority: int | None = None,
    ) -> bool:
        """
        Cache a response under its request fingerprint.

        Entries are tagged 'api' and with the first endpoint path segment.
        """
        key = self.key_generator.generate_key(endpoint, params)

        entry_tags = {"api", *(tags or ())}
        endpoint_tag = _endpoint_tag(endpoint)
        if endpoint_tag:
            entry_tags.add(endpoint_tag)

        return await self.cache.set(
            key,
            response,
            ttl=ttl,
            tags=entry_tags,
            priority=priority,
            metadata={"source": "api", "request_id": params.get("requestId")},
        )

    async def get_cached_response(self, endpoint: str, params: dict[str, Any]) -> Any | None:
        """Get a cached response for a request, or None."""
        return await self.cache.get(self.key_generator.generate_key(endpoint, params))

    async def cache_semantic_response(
        self,
        query_type: str,
        content: str,
        response: Any,
        *,
        ttl: timedelta | None = None,
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """
        Cache a response under a key shared by near-duplicate queries.

        Entries are tagged 'semantic' and with the query type.
        """
        key = self._semantic_key(query_type, content)
        return await self.cache.set(
            key,
            response,
            ttl=ttl or self.semantic_ttl,
            tags={"semantic", query_type, *(tags or ())},
            metadata={"source": "api", **(metadata or {})},
        )

    async def get_semantic_cached_response(self, query_type: str, content: str) -> Any | None:
        """Get a cached response for a query or a near-duplicate of it."""
        return await self.cache.get(self._semantic_key(query_type, content))

    def _semantic_key(self, query_type: str, content: str) -> str:
        return self.key_generator.generate_semantic_key(
            query_type, content, normalize=True, ignore_case=True, remove_stop_words=True
        )

    async def invalidate(self, tag: str) -> int:
        """Invalidate entries by tag. Returns the number removed."""
        return await self.cache.invalidate_by_tag(tag)

    async def apply_invalidation_rules(self) -> dict[str, Any]:
        """Apply the invalidation rules to the cache."""
        return await self.invalidation_manager.apply_rules(self.cache)

    def get_stats(self) -> CacheStats:
        """Get cache statistics."""
        return self.cache.get_stats()

    async def clear(self) -> None:
        """Clear all cached responses."""
        await self.cache.clear()

    async def destroy(self) -> None:
        """Stop the sweep and drop every entry."""
        await self.cache.destroy()

    async def __aenter__(self) -> "CachingService":
        """Async context manager entry."""
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.destroy()
