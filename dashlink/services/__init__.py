"""
Service layer infrastructure - resilient communication with the backend.

Provides:
- CacheManager: TTL response cache with pattern invalidation
- RequestDeduplicator: One in-flight call per cache key
- RequestClient: Cache, dedup, retry and timeout around httpx
- AvailabilityMonitor: Cold-start aware backend health state machine
"""

from dashlink.services.errors import (
    BackendError,
    BackendUnavailableError,
    DecodeError,
    NotFoundError,
    RequestTimeoutError,
    ResponseStatusError,
    ServiceUnavailableError,
    TransportError,
    UnauthorizedError,
)
from dashlink.services.cache import CacheManager, CacheEntry, CacheStats
from dashlink.services.deduplicator import RequestDeduplicator
from dashlink.services.availability import (
    AvailabilityMonitor,
    AvailabilityState,
    AvailabilityStatus,
    MonitorConfig,
)
from dashlink.services.client import ClientConfig, RequestClient

__all__ = [
    # Errors
    "BackendError",
    "BackendUnavailableError",
    "DecodeError",
    "NotFoundError",
    "RequestTimeoutError",
    "ResponseStatusError",
    "ServiceUnavailableError",
    "TransportError",
    "UnauthorizedError",
    # Cache
    "CacheManager",
    "CacheEntry",
    "CacheStats",
    # Deduplicator
    "RequestDeduplicator",
    # Availability
    "AvailabilityMonitor",
    "AvailabilityState",
    "AvailabilityStatus",
    "MonitorConfig",
    # Client
    "ClientConfig",
    "RequestClient",
]
