"""
Content Storage Exceptions

Errors raised around the content store and score computation.

Author: System Architect
Date: 2025-12-08
"""

from feedcache.core.exceptions.base import FeedCacheError


class StorageError(FeedCacheError):
    """Base exception for content store errors."""
    pass


class StorageUnavailableError(StorageError):
    """
    Raised when the content store fails its health check.

    This is the only hard failure of a batch recompute run: without storage
    there is nothing to page through.
    """
    pass


class InvalidSnapshotError(StorageError):
    """Raised when a stored document cannot be turned into a content snapshot."""
    pass


class ScoreComputationError(StorageError):
    """Raised when a computed score is not a finite number."""
    pass
