"""
Service layer infrastructure - resilience patterns for API calls.

Provides:
- TTLCache: Response cache with per-entry expiration
- RequestDeduplicator: Prevents duplicate concurrent requests
- retry_with_backoff: Exponential backoff for transient failures
- OptimisticOperation: Local-first mutations with rollback
- ResilientClient: Unified client combining all patterns
"""

from potracker.services.errors import (
    ErrorKind,
    ServiceError,
    TransportError,
    RequestTimeoutError,
    ApiError,
    RateLimitError,
    ValidationError,
)
from potracker.services.cache import TTLCache, CacheEntry, CacheStats
from potracker.services.deduplicator import RequestDeduplicator
from potracker.services.retry import (
    RetryPolicy,
    RetryPresets,
    is_retryable_error,
    retry_with_backoff,
)
from potracker.services.optimistic import (
    OptimisticOperation,
    OptimisticResult,
    OptimisticStatus,
    create_provisional_item,
    create_provisional_order,
    generate_provisional_id,
    is_provisional_id,
    run_optimistic_update,
)
from potracker.services.transport import HttpTransport, Transport
from potracker.services.client import ResilientClient, build_cache_key

__all__ = [
    # Errors
    "ErrorKind",
    "ServiceError",
    "TransportError",
    "RequestTimeoutError",
    "ApiError",
    "RateLimitError",
    "ValidationError",
    # Cache
    "TTLCache",
    "CacheEntry",
    "CacheStats",
    # Deduplicator
    "RequestDeduplicator",
    # Retry
    "RetryPolicy",
    "RetryPresets",
    "is_retryable_error",
    "retry_with_backoff",
    # Optimistic updates
    "OptimisticOperation",
    "OptimisticResult",
    "OptimisticStatus",
    "create_provisional_item",
    "create_provisional_order",
    "generate_provisional_id",
    "is_provisional_id",
    "run_optimistic_update",
    # Transport
    "HttpTransport",
    "Transport",
    # Client
    "ResilientClient",
    "build_cache_key",
]
