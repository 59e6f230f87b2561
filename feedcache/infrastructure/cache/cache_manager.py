#!/usr/bin/env python3
"""
Read-Through Cache Facade

Architecture:
    CacheFacade (Public API)
        ├── KeyValueStore (Redis in production)
        ├── VersionStore (semantic version sidecars)
        └── CacheMonitor (hit/miss/error accounting)

Fail-soft policy:
    Every backend call goes through ``fail_soft``. A failing backend never
    surfaces to callers: reads degrade to "miss, compute directly", writes
    report False, and the failure is recorded on the monitor. The source of
    truth stays correct whether or not the cache works.

Lookup order for get_or_compute:
    1. skip_cache / disabled / disconnected → compute once, no get/set
    2. client version stale → miss, recompute, cache, bump
    3. force_refresh → recompute, cache (bump when versioned)
    4. hit → cached data (wrapped with the current version when versioned)
    5. miss → recompute, cache non-None results (bump when versioned)

Author: System Architect
Date: 2025-12-13
"""

import inspect
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import orjson

from feedcache.core.config.constants import CACHE_DEFAULT_TTL, VERSION_KEY_PREFIX, Stage
from feedcache.core.interfaces import KeyValueStore
from feedcache.core.logging import get_logger, log_stage
from feedcache.core.resilience import Result, fail_soft
from feedcache.infrastructure.cache.version_store import VersionStore
from feedcache.infrastructure.monitoring.cache_monitor import CacheMonitor

logger = get_logger(__name__)

_MISSING = object()
_UNAVAILABLE = object()


@dataclass
class VersionedValue:
    """Cached data together with the version the caller should remember."""

    data: Any
    version: str
    from_cache: bool

    def to_dict(self) -> dict[str, Any]:
        return {"data": self.data, "version": self.version, "from_cache": self.from_cache}


async def resolve_compute(compute_fn: Callable[[], Any]) -> Any:
    """Call a sync or async compute function."""
    value = compute_fn()
    if inspect.isawaitable(value):
        value = await value
    return value


class CacheFacade:
    """
    Versioned read-through cache.

    Usage:
        cache = CacheFacade(redis_client, versions, monitor, default_ttl=3600, timeout=2.0)

        feed = await cache.get_or_compute(
            "hot_recommendations:page1",
            lambda: build_hot_feed(page=1),
            ttl=600,
            use_version=True,
            client_version="1.0.3",
        )
        # feed.data, feed.version, feed.from_cache
    """

    def __init__(
        self,
        store: KeyValueStore,
        versions: VersionStore,
        monitor: CacheMonitor,
        *,
        enabled: bool = True,
        default_ttl: int = CACHE_DEFAULT_TTL,
        timeout: float | None = None,
    ):
        self._store = store
        self._versions = versions
        self._monitor = monitor
        self._enabled = enabled
        self._default_ttl = default_ttl
        self._timeout = timeout

        logger.info(
            "Cache facade initialized",
            stage="CACHE.0",
            caching_enabled=enabled,
            default_ttl=default_ttl,
        )

    @property
    def versions(self) -> VersionStore:
        return self._versions

    @property
    def monitor(self) -> CacheMonitor:
        return self._monitor

    @property
    def available(self) -> bool:
        """Caching is enabled and the backend is connected."""
        return self._enabled and self._store.is_connected

    # -------------------------------------------------------------------------
    # Backend access (fail-soft)
    # -------------------------------------------------------------------------

    async def _backend(self, operation: str, call, key: str | None = None) -> Result:
        return await fail_soft(
            operation,
            call,
            timeout=self._timeout,
            key=key,
            stage=Stage.CACHE_LOOKUP.value,
            on_error=self._monitor.record_error,
        )

    async def _read(self, key: str) -> Any:
        """
        Read and decode one value.

        Returns:
            Decoded value, ``_MISSING`` on a miss, ``_UNAVAILABLE`` when the
            backend call failed (already recorded by fail_soft)
        """
        result = await self._backend("get", lambda: self._store.get(key), key)
        if not result.ok:
            return _UNAVAILABLE
        if result.value is None:
            return _MISSING
        return orjson.loads(result.value)

    async def _write(self, key: str, value: Any, ttl: int | None) -> bool:
        """STAGE-CACHE.3: Serialize and store a non-None value."""
        if value is None:
            return False
        try:
            payload = orjson.dumps(value).decode("utf-8")
        except TypeError as e:
            self._monitor.record_error("serialize", key, e)
            return False

        result = await self._backend(
            "set", lambda: self._store.set(key, payload, ttl or self._default_ttl), key
        )
        return bool(result.unwrap_or(False))

    # -------------------------------------------------------------------------
    # Read-through
    # -------------------------------------------------------------------------

    async def _lookup(self, key: str, use_version: bool, client_version: str | None) -> Any:
        """
        Cache lookup for get_or_compute.

        A stale client version counts as a miss. Hits are recorded here.
        """
        if use_version and client_version:
            if await self._versions.is_stale(key, client_version):
                return _MISSING

        cached = await self._read(key)
        if cached is _UNAVAILABLE or cached is _MISSING:
            return cached

        self._monitor.record_hit(key)
        log_stage(logger, Stage.CACHE_LOOKUP.value, "Cache hit", level="debug", cache_key=key)
        if use_version:
            version = await self._versions.get_version(key)
            return VersionedValue(cached, version, from_cache=True)
        return cached

    async def get_or_compute(
        self,
        key: str,
        compute_fn: Callable[[], Any],
        *,
        ttl: int | None = None,
        use_version: bool = False,
        client_version: str | None = None,
        skip_cache: bool = False,
        force_refresh: bool = False,
    ) -> Any:
        """
        Return the cached value for ``key`` or compute, cache and return it.

        STAGE-CACHE.1: Cache lookup
        STAGE-CACHE.2: Compute on miss

        Args:
            key: Cache key
            compute_fn: Sync or async zero-argument function producing the value
            ttl: Time-to-live in seconds (default from settings)
            use_version: Wrap the result in VersionedValue and bump on writes
            client_version: Version the caller already holds
            skip_cache: Bypass the cache entirely for this call
            force_refresh: Recompute even when a cached value exists

        Returns:
            Raw value, or VersionedValue when ``use_version`` and the cache is usable

        Errors raised by ``compute_fn`` propagate unchanged.
        """
        if skip_cache or not self.available:
            return await resolve_compute(compute_fn)

        if not force_refresh:
            try:
                found = await self._lookup(key, use_version, client_version)
            except Exception as e:
                # Cached payload undecodable or version lookup broken: serve uncached
                self._monitor.record_error("get_or_compute", key, e)
                found = _UNAVAILABLE

            if found is _UNAVAILABLE:
                return await resolve_compute(compute_fn)
            if found is not _MISSING:
                return found

            self._monitor.record_miss(key)

        log_stage(
            logger,
            Stage.CACHE_COMPUTE.value,
            "Computing value",
            level="debug",
            cache_key=key,
            force_refresh=force_refresh,
        )
        value = await resolve_compute(compute_fn)

        stored = await self._write(key, value, ttl)
        if use_version:
            if stored:
                version = await self._versions.bump(key)
            else:
                version = await self._versions.get_version(key)
            return VersionedValue(value, version, from_cache=False)
        return value

    # -------------------------------------------------------------------------
    # Thin wrappers
    # -------------------------------------------------------------------------

    async def get(
        self, key: str, *, use_version: bool = False, client_version: str | None = None
    ) -> Any:
        """Cached value or None; a stale client version counts as a miss."""
        if not self.available:
            return None

        try:
            if use_version and client_version and await self._versions.is_stale(key, client_version):
                self._monitor.record_miss(key)
                return None
            cached = await self._read(key)
        except Exception as e:
            self._monitor.record_error("get", key, e)
            return None

        if cached is _UNAVAILABLE:
            return None
        if cached is _MISSING:
            self._monitor.record_miss(key)
            return None

        self._monitor.record_hit(key)
        if use_version:
            return VersionedValue(cached, await self._versions.get_version(key), from_cache=True)
        return cached

    async def set(
        self, key: str, value: Any, *, ttl: int | None = None, use_version: bool = False
    ) -> bool:
        """Store ``value``; versioned writes bump the patch version."""
        if not self.available:
            return False
        stored = await self._write(key, value, ttl)
        if stored and use_version:
            await self._versions.bump(key)
        return stored

    async def delete(self, key: str) -> bool:
        """
        Delete the value and its version sidecar, and drop the mirror entry.

        STAGE-CACHE.4: Cache invalidation
        """
        self._versions.evict_local(key)
        if not self.available:
            return False
        result = await self._backend(
            "delete", lambda: self._store.delete(key, VersionStore.version_key(key)), key
        )
        return result.ok

    async def delete_many(self, keys: list[str]) -> dict[str, Any]:
        """Delete several keys; failures are collected, not raised."""
        deleted = 0
        errors: list[dict[str, str]] = []
        for key in keys:
            if await self.delete(key):
                deleted += 1
            else:
                errors.append({"key": key, "error": "delete failed"})
        return {"deleted": deleted, "errors": errors}

    async def find_keys(self, pattern: str) -> list[str]:
        """Value keys matching a glob pattern; version sidecars are left out."""
        if not self.available:
            return []
        listed = await self._backend("scan", lambda: self._store.keys(pattern), pattern)
        return [k for k in listed.unwrap_or([]) if not k.startswith(VERSION_KEY_PREFIX)]

    async def delete_keys(
        self, keys: list[str], *, operation: str = "delete_keys", label: str | None = None
    ) -> int:
        """
        Delete value keys in one call, keeping their version sidecars.

        Returns:
            Number of keys deleted (0 on backend failure)
        """
        if not keys or not self.available:
            return 0
        for key in keys:
            self._versions.evict_local(key)
        result = await self._backend(operation, lambda: self._store.delete(*keys), label)
        return result.unwrap_or(0)

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete every value key matching a glob pattern in one call.

        Version sidecars are never matched, so versions survive pattern
        invalidation and keep increasing.

        Returns:
            Number of keys deleted (0 on backend failure)
        """
        keys = await self.find_keys(pattern)
        deleted = await self.delete_keys(keys, operation="delete_pattern", label=pattern)
        log_stage(
            logger,
            Stage.CACHE_INVALIDATE.value,
            "Pattern deleted",
            level="debug",
            pattern=pattern,
            deleted=deleted,
        )
        return deleted

    async def exists(self, key: str) -> bool:
        if not self.available:
            return False
        result = await self._backend("exists", lambda: self._store.exists(key), key)
        return bool(result.unwrap_or(0))

    async def clear_all(self) -> bool:
        """Delete every non-version key and clear the version mirror."""
        self._versions.evict_local()
        if not self.available:
            return False

        listed = await self._backend("scan", lambda: self._store.keys("*"))
        if not listed.ok:
            return False
        keys = [k for k in listed.value if not k.startswith(VERSION_KEY_PREFIX)]
        if keys:
            result = await self._backend("clear_all", lambda: self._store.delete(*keys))
            if not result.ok:
                return False

        log_stage(logger, Stage.CACHE_INVALIDATE.value, "Cache cleared", keys=len(keys))
        return True

    async def get_version(self, key: str) -> str:
        return await self._versions.get_version(key)

    async def update_version(self, key: str, new_version: str | None = None) -> str:
        return await self._versions.update_version(key, new_version)

    # -------------------------------------------------------------------------
    # Lifecycle & monitoring
    # -------------------------------------------------------------------------

    async def health_check(self) -> dict[str, Any]:
        """Composite status from backend ping, monitor state and version store reachability."""
        ping = await self._backend("ping", self._store.ping)
        redis_ok = bool(ping.unwrap_or(False))
        versions_ok = await self._versions.ping() if redis_ok else False

        status = "healthy" if (redis_ok and versions_ok) or not self._enabled else "degraded"
        return {
            "status": status,
            "redis": {
                "enabled": self._enabled,
                "connected": self._store.is_connected,
                "ping": redis_ok,
            },
            "monitor": {
                "enabled": self._monitor.enabled,
                "metrics": self._monitor.get_stats()["summary"],
            },
            "version_store": {
                "reachable": versions_ok,
                "mirror_size": self._versions.mirror_size,
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def get_stats(self) -> dict[str, Any]:
        return {
            "enabled": self._enabled,
            "connected": self._store.is_connected,
            "default_ttl": self._default_ttl,
            "version_mirror_size": self._versions.mirror_size,
            "monitor": self._monitor.get_stats(),
        }

    def get_performance_report(self) -> str:
        return self._monitor.get_performance_report()

    async def reconnect(self) -> bool:
        """Drop and re-establish the backend connection."""
        disconnected = await self._backend("disconnect", self._store.disconnect)
        if not disconnected.ok:
            log_stage(logger, "CACHE.5", "Disconnect before reconnect failed", level="warning")
        connected = await self._backend("connect", self._store.connect)
        log_stage(logger, "CACHE.5", "Cache backend reconnect", success=connected.ok)
        return connected.ok

    async def close(self) -> None:
        await self._backend("disconnect", self._store.disconnect)
        log_stage(logger, "CACHE.6", "Cache facade closed")
