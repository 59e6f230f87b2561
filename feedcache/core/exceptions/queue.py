"""
Message Queue Exceptions

All exceptions related to the retry queue and its Redis Streams backend.

Author: System Architect
Date: 2025-12-08
"""

from feedcache.core.exceptions.base import FeedCacheError


class QueueError(FeedCacheError):
    """Base exception for message queue errors."""
    pass


class QueueConsumerError(QueueError):
    """
    Raised when queue consumer encounters an error.

    Common causes:
    - Message deserialization failure
    - Connection to queue lost
    """
    pass
