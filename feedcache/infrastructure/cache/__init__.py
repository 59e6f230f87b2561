from feedcache.infrastructure.cache.cache_manager import CacheFacade, VersionedValue
from feedcache.infrastructure.cache.invalidator import (
    InvalidationReport,
    Operation,
    SmartInvalidator,
)
from feedcache.infrastructure.cache.redis_client import RedisClient
from feedcache.infrastructure.cache.version_store import SemVer, VersionMirror, VersionStore

__all__ = [
    "CacheFacade",
    "VersionedValue",
    "InvalidationReport",
    "Operation",
    "SmartInvalidator",
    "RedisClient",
    "SemVer",
    "VersionMirror",
    "VersionStore",
]
