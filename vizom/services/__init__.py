"""
Service layer infrastructure - resilience patterns around the LLM API.

Provides:
- AdvancedCache: LRU/TTL cache with tags and statistics
- CacheKeyGenerator: Request and semantic cache keys
- CachingService: Cache-backed API responses with invalidation rules
- CircuitBreaker: Fails fast while the upstream is unhealthy
- RetryHandler: Exponential backoff with jitter
- ResilienceService: Circuit breaker + retry + HTTP error classification

The DeepSeek client lives in vizom.services.client.
"""

from vizom.services.errors import (
    APIError,
    CacheError,
    CircuitOpenError,
    ErrorCode,
    MaxRetriesExceededError,
    ResponseParseError,
    ServiceError,
    classify_exception,
)
from vizom.services.cache import AdvancedCache, CacheConfig, CacheEntry, CacheStats
from vizom.services.keys import CacheKeyGenerator
from vizom.services.caching import (
    CacheInvalidationManager,
    CacheInvalidationRule,
    CachingService,
)
from vizom.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from vizom.services.retry import RetryConfig, RetryHandler
from vizom.services.resilience import APIErrorHandler, RequestMetrics, ResilienceService

__all__ = [
    # Errors
    "APIError",
    "CacheError",
    "CircuitOpenError",
    "ErrorCode",
    "MaxRetriesExceededError",
    "ResponseParseError",
    "ServiceError",
    "classify_exception",
    # Cache
    "AdvancedCache",
    "CacheConfig",
    "CacheEntry",
    "CacheStats",
    "CacheKeyGenerator",
    "CacheInvalidationManager",
    "CacheInvalidationRule",
    "CachingService",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    # Retry
    "RetryConfig",
    "RetryHandler",
    # Resilience
    "APIErrorHandler",
    "RequestMetrics",
    "ResilienceService",
]
