"""
Core Interfaces

Protocols describing the external stores the service talks to.

Author: System Architect
Date: 2025-12-08
"""

from feedcache.core.interfaces.cache import KeyValueStore
from feedcache.core.interfaces.message_queue import JobQueueBackend, QueueMessage
from feedcache.core.interfaces.storage import ContentQuery, ContentStore

__all__ = [
    "KeyValueStore",
    "ContentStore",
    "ContentQuery",
    "JobQueueBackend",
    "QueueMessage",
]
