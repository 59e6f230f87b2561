"""
Exception Module

Structured exception hierarchy for the feed cache service.
All exceptions are organized by theme.

Module Structure:
-----------------
- **base.py**: FeedCacheError base class + ConfigurationError
- **cache.py**: Cache and version store exceptions
- **queue.py**: Retry queue exceptions
- **storage.py**: Content store and score computation exceptions
- **scheduler.py**: Cron and orchestrator exceptions

Usage:
------
```python
from feedcache.core.exceptions import StorageUnavailableError, VersionStoreError
from feedcache.core.exceptions.cache import CacheError
```

Author: System Architect
Date: 2025-12-08
"""

# Base exception
from feedcache.core.exceptions.base import ConfigurationError, FeedCacheError

# Cache exceptions
from feedcache.core.exceptions.cache import (
    CacheConnectionError,
    CacheError,
    CacheKeyError,
    InvalidVersionError,
    VersionStoreError,
)

# Queue exceptions
from feedcache.core.exceptions.queue import QueueConsumerError, QueueError

# Scheduler exceptions
from feedcache.core.exceptions.scheduler import (
    InvalidCronExpression,
    SchedulerError,
    UnknownJobError,
)

# Storage exceptions
from feedcache.core.exceptions.storage import (
    InvalidSnapshotError,
    ScoreComputationError,
    StorageError,
    StorageUnavailableError,
)

__all__ = [
    # Base
    "FeedCacheError",
    "ConfigurationError",
    # Cache
    "CacheError",
    "CacheConnectionError",
    "CacheKeyError",
    "VersionStoreError",
    "InvalidVersionError",
    # Queue
    "QueueError",
    "QueueConsumerError",
    # Storage
    "StorageError",
    "StorageUnavailableError",
    "InvalidSnapshotError",
    "ScoreComputationError",
    # Scheduler
    "SchedulerError",
    "InvalidCronExpression",
    "UnknownJobError",
]
