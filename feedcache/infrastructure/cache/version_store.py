#!/usr/bin/env python3
"""
Semantic Version Store for Cache Entries

Every cacheable key may carry a version sidecar stored at
``cache_version:{key}`` holding a ``MAJOR.MINOR.PATCH`` string. Clients that
remember the version they last saw can ask whether their copy is stale.

Architecture:
    VersionStore (Public API)
        ├── SemVer (value type: parse, order, bump)
        └── VersionMirror (bounded process-local LRU, explicit invalidation)

Mirror rules:
    - Reads populate the mirror; every write path of this process updates or
      evicts the entry for its key.
    - No TTL. The whole mirror is dropped only by ``reset_all`` and
      ``evict_local()``.
    - ``bump`` and ``is_stale`` always read the backend, so another process's
      newer version is never shadowed by this process's mirror.

Concurrency:
    Bumps are last-writer-wins read-modify-write. Two concurrent bumps of the
    same key may produce the same new version; neither ever decreases it.

Author: System Architect
Date: 2025-12-10
"""

import re
from collections import OrderedDict
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from feedcache.core.config.constants import (
    DEFAULT_VERSION,
    VERSION_KEY_PREFIX,
    VERSION_MIRROR_MAX_SIZE,
    Stage,
    VersionLevel,
)
from feedcache.core.exceptions import InvalidVersionError, VersionStoreError
from feedcache.core.interfaces import KeyValueStore
from feedcache.core.logging import get_logger, log_stage
from feedcache.core.resilience import Result, fail_soft
from feedcache.core.resilience.fail_soft import ErrorHook

logger = get_logger(__name__)

_SEMVER_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")


# =============================================================================
# VALUE TYPE
# =============================================================================


@dataclass(frozen=True, order=True)
class SemVer:
    """Immutable ``MAJOR.MINOR.PATCH`` triple ordered numerically."""

    major: int
    minor: int
    patch: int

    @classmethod
    def parse(cls, text: str) -> "SemVer":
        """
        Parse ``x.y.z`` (non-negative integers, nothing else).

        Raises:
            InvalidVersionError: On any other input
        """
        match = _SEMVER_RE.match(text) if isinstance(text, str) else None
        if match is None:
            raise InvalidVersionError(
                f"Invalid version format: {text!r}", details={"version": text}
            )
        return cls(*(int(part) for part in match.groups()))

    @classmethod
    def try_parse(cls, text: Any) -> "SemVer | None":
        try:
            return cls.parse(text)
        except InvalidVersionError:
            return None

    def bump(self, level: VersionLevel | str = VersionLevel.PATCH) -> "SemVer":
        """Return the next version for ``level``; lower components reset to 0."""
        level = VersionLevel(level)
        if level is VersionLevel.MAJOR:
            return SemVer(self.major + 1, 0, 0)
        if level is VersionLevel.MINOR:
            return SemVer(self.major, self.minor + 1, 0)
        return SemVer(self.major, self.minor, self.patch + 1)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


# =============================================================================
# PROCESS-LOCAL MIRROR
# =============================================================================


class VersionMirror:
    """
    Bounded LRU map of cache key -> version string.

    Implementation Details:
    - OrderedDict for O(1) access and LRU ordering
    - Evicts least recently used entry at capacity
    - Entries leave only through explicit eviction or LRU pressure
    """

    def __init__(self, max_size: int = VERSION_MIRROR_MAX_SIZE):
        self._max_size = max_size
        self._entries: OrderedDict[str, str] = OrderedDict()

    def get(self, key: str) -> str | None:
        if key in self._entries:
            self._entries.move_to_end(key)
            return self._entries[key]
        return None

    def put(self, key: str, version: str) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
        self._entries[key] = version
        while len(self._entries) > self._max_size:
            self._entries.popitem(last=False)

    def evict(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries


# =============================================================================
# PUBLIC API
# =============================================================================


class VersionStore:
    """
    Versioned sidecar store for cache keys.

    Usage:
        versions = VersionStore(redis_client, mirror_size=10000, timeout=2.0)
        current = await versions.get_version("hot_recommendations:page1")
        new = await versions.bump("hot_recommendations:page1", VersionLevel.MINOR)
        stale = await versions.is_stale("hot_recommendations:page1", "1.0.0")
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        mirror_size: int = VERSION_MIRROR_MAX_SIZE,
        timeout: float | None = None,
        on_error: ErrorHook | None = None,
    ):
        self._store = store
        self._mirror = VersionMirror(mirror_size)
        self._timeout = timeout
        self._on_error = on_error

    @staticmethod
    def version_key(key: str) -> str:
        return f"{VERSION_KEY_PREFIX}{key}"

    @property
    def mirror_size(self) -> int:
        return len(self._mirror)

    # -------------------------------------------------------------------------
    # Static helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def is_valid_format(text: Any) -> bool:
        return SemVer.try_parse(text) is not None

    @staticmethod
    def compare(a: str, b: str) -> int:
        """
        Numeric triple comparison.

        Returns:
            -1, 0 or 1; 0 when either side is malformed
        """
        left, right = SemVer.try_parse(a), SemVer.try_parse(b)
        if left is None or right is None:
            return 0
        return (left > right) - (left < right)

    # -------------------------------------------------------------------------
    # Backend access (fail-soft)
    # -------------------------------------------------------------------------

    async def _backend(self, operation: str, call, key: str) -> Result:
        return await fail_soft(
            operation,
            call,
            timeout=self._timeout,
            key=key,
            stage=Stage.VERSION_LOOKUP.value,
            on_error=self._on_error,
        )

    async def _read_stored(self, key: str, *, strict: bool) -> tuple[str | None, bool]:
        """
        Read the raw stored version.

        Returns:
            (raw_value, ok); ok is False when the backend call failed
        """
        result = await self._backend("version_get", lambda: self._store.get(self.version_key(key)), key)
        if not result.ok:
            if strict:
                raise VersionStoreError.from_exception(
                    result.error, message=f"Failed to read version for {key}", key=key
                )
            return None, False
        return result.value, True

    async def _write(self, key: str, version: str, *, strict: bool) -> bool:
        result = await self._backend(
            "version_set", lambda: self._store.set(self.version_key(key), version), key
        )
        if not result.ok:
            # The backend may or may not hold the new value; drop the mirror entry
            self._mirror.evict(key)
            if strict:
                raise VersionStoreError.from_exception(
                    result.error, message=f"Failed to write version for {key}", key=key
                )
            return False
        self._mirror.put(key, version)
        return True

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_version(
        self, key: str, *, create_if_missing: bool = True, strict: bool = False
    ) -> str:
        """
        Current version of ``key``.

        STAGE-VER.1: Version lookup (mirror, then backend)

        Args:
            key: Cache key (without the version prefix)
            create_if_missing: Persist 1.0.0 when no version exists yet
            strict: Raise VersionStoreError instead of defaulting on backend failure

        Returns:
            Version string; 1.0.0 when missing, malformed or unreadable
        """
        cached = self._mirror.get(key)
        if cached is not None:
            return cached

        raw, ok = await self._read_stored(key, strict=strict)
        if not ok:
            return DEFAULT_VERSION

        if raw is None:
            if create_if_missing:
                await self._write(key, DEFAULT_VERSION, strict=strict)
            return DEFAULT_VERSION

        if not self.is_valid_format(raw):
            log_stage(
                logger,
                Stage.VERSION_LOOKUP.value,
                "Malformed stored version, using default",
                level="warning",
                key=key,
                stored=raw,
            )
            return DEFAULT_VERSION

        self._mirror.put(key, raw)
        return raw

    async def is_stale(self, key: str, client_version: str) -> bool:
        """
        True iff the stored version is newer than ``client_version``.

        Any backend error answers True so callers recompute rather than
        serve data that may be outdated.
        """
        try:
            raw, _ = await self._read_stored(key, strict=True)
        except VersionStoreError:
            return True

        if self.is_valid_format(raw):
            self._mirror.put(key, raw)
            current = raw
        else:
            current = DEFAULT_VERSION
        return self.compare(current, client_version) > 0

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def bump(
        self, key: str, level: VersionLevel | str = VersionLevel.PATCH, *, strict: bool = False
    ) -> str:
        """
        Increment the stored version of ``key``.

        STAGE-VER.2: Version write

        Returns:
            The new version string, or the still-stored version when the
            write fails (``DEFAULT_VERSION`` when it could not be read)
        """
        raw, ok = await self._read_stored(key, strict=strict)
        if not ok:
            # Writing on top of an unread value could move the version backwards
            self._mirror.evict(key)
            return DEFAULT_VERSION

        current = SemVer.try_parse(raw) or SemVer.parse(DEFAULT_VERSION)
        new_version = str(current.bump(level))

        if not await self._write(key, new_version, strict=strict):
            log_stage(
                logger,
                Stage.VERSION_WRITE.value,
                "Cache version bump not persisted",
                level="warning",
                key=key,
                stored_version=str(current),
            )
            return str(current)

        log_stage(
            logger,
            Stage.VERSION_WRITE.value,
            "Cache version bumped",
            level="debug",
            key=key,
            old_version=str(current),
            new_version=new_version,
            bump_level=VersionLevel(level).value,
        )
        return new_version

    async def set_explicit(self, key: str, version: str) -> str:
        """
        Store an explicit version.

        Raises:
            InvalidVersionError: When ``version`` is not MAJOR.MINOR.PATCH
            VersionStoreError: When the backend write fails
        """
        SemVer.parse(version)
        await self._write(key, version, strict=True)
        log_stage(
            logger, Stage.VERSION_WRITE.value, "Cache version set", key=key, new_version=version
        )
        return version

    async def update_version(
        self, key: str, new_version: str | None = None, *, strict: bool = True
    ) -> str:
        """Explicit set when ``new_version`` is valid, patch bump otherwise."""
        if new_version is not None and self.is_valid_format(new_version):
            return await self.set_explicit(key, new_version)
        return await self.bump(key, VersionLevel.PATCH, strict=strict)

    async def batch_bump(
        self,
        keys: Iterable[str],
        level: VersionLevel | str = VersionLevel.PATCH,
        *,
        strict: bool = False,
    ) -> dict[str, dict[str, str]]:
        """
        Bump several keys in one logical call.

        Returns:
            Mapping key -> {"old_version", "new_version"} or {"error"}
        """
        results: dict[str, dict[str, str]] = {}
        for key in keys:
            try:
                raw, _ = await self._read_stored(key, strict=True)
                old_version = raw if self.is_valid_format(raw) else DEFAULT_VERSION
                new_version = str(SemVer.parse(old_version).bump(level))
                await self._write(key, new_version, strict=True)
                results[key] = {"old_version": old_version, "new_version": new_version}
            except VersionStoreError as e:
                if strict:
                    raise
                results[key] = {"error": e.message}

        log_stage(
            logger,
            Stage.VERSION_WRITE.value,
            "Batch version bump finished",
            keys=len(results),
            errors=sum(1 for r in results.values() if "error" in r),
        )
        return results

    async def clear_version(self, key: str) -> bool:
        """Delete the stored version of ``key`` and its mirror entry."""
        self._mirror.evict(key)
        result = await self._backend(
            "version_delete", lambda: self._store.delete(self.version_key(key)), key
        )
        return bool(result.unwrap_or(0))

    def evict_local(self, key: str | None = None) -> None:
        """Drop one mirror entry, or the whole mirror when ``key`` is None."""
        if key is None:
            self._mirror.clear()
        else:
            self._mirror.evict(key)

    # -------------------------------------------------------------------------
    # Bulk views
    # -------------------------------------------------------------------------

    async def get_all_versions(self) -> dict[str, str]:
        """Every stored version keyed by cache key (empty on backend failure)."""
        listed = await self._backend(
            "version_scan", lambda: self._store.keys(f"{VERSION_KEY_PREFIX}*"), None
        )
        versions: dict[str, str] = {}
        for version_key in listed.unwrap_or([]):
            cache_key = version_key[len(VERSION_KEY_PREFIX):]
            raw = await self._backend("version_get", lambda k=version_key: self._store.get(k), cache_key)
            if raw.ok and raw.value is not None:
                versions[cache_key] = raw.value
        return versions

    async def reset_all(self) -> int:
        """
        Put every stored version back to 1.0.0 and clear the mirror.

        Returns:
            Number of keys reset
        """
        versions = await self.get_all_versions()
        self._mirror.clear()
        reset = 0
        for key in versions:
            if await self._write(key, DEFAULT_VERSION, strict=False):
                reset += 1
        log_stage(logger, Stage.VERSION_WRITE.value, "All cache versions reset", keys=reset)
        return reset

    async def get_version_stats(self) -> dict[str, Any]:
        """
        Distribution of stored versions.

        Returns:
            {total_cache_keys, version_distribution, newest_versions, oldest_versions}
        """
        versions = await self.get_all_versions()
        distribution: dict[str, list[str]] = {}
        for key, version in versions.items():
            distribution.setdefault(version, []).append(key)

        ordered = sorted(
            distribution,
            key=lambda v: SemVer.try_parse(v) or SemVer(-1, -1, -1),
            reverse=True,
        )
        return {
            "total_cache_keys": len(versions),
            "version_distribution": distribution,
            "newest_versions": distribution[ordered[0]] if ordered else [],
            "oldest_versions": distribution[ordered[-1]] if ordered else [],
        }

    async def ping(self) -> bool:
        result = await self._backend("version_ping", self._store.ping, None)
        return bool(result.unwrap_or(False))
