"""
Cache-Related Exceptions

All exceptions related to caching operations (Redis, version store).

Author: System Architect
Date: 2025-12-08
"""

from feedcache.core.exceptions.base import FeedCacheError


class CacheError(FeedCacheError):
    """Base exception for cache-related errors."""
    pass


class CacheConnectionError(CacheError):
    """
    Raised when unable to connect to cache (Redis).

    Common causes:
    - Redis server is down
    - Network connectivity issues
    - Incorrect host/port configuration
    """
    pass


class CacheKeyError(CacheError):
    """Raised when a single key operation fails (timeout, wrong type, OOM)."""
    pass


class VersionStoreError(CacheError):
    """Raised by strict version store calls when the backend cannot be read or written."""
    pass


class InvalidVersionError(CacheError):
    """Raised when an explicit version is not of the form MAJOR.MINOR.PATCH."""
    pass
