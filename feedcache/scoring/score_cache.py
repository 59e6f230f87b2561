"""
Hot Score Cache

Per-item and batch hot scores are cached in time buckets and wrapped in an
envelope tagged with the version of their key family:

    meme_hot_score:{item_id}:{5-minute bucket}   ttl 1h
    hot_score_batch:{count}:{10-minute bucket}   ttl 30min

    envelope = {"data": ..., "version": "1.0.4", "timestamp": 1734000000.0}

An envelope whose version differs from the family's current version is stale.
``invalidate`` bumps both family versions, so every cached score is stale at
once even when the pattern deletes that follow it fail.

Author: System Architect
Date: 2025-12-12
"""

import time
from collections.abc import Callable
from typing import Any

from feedcache.core.config.constants import (
    KEY_HOT_SCORE_BATCH,
    KEY_ITEM_HOT_SCORE,
    SCORE_CACHE_BATCH_BUCKET_SECONDS,
    SCORE_CACHE_BATCH_TTL,
    SCORE_CACHE_ITEM_BUCKET_SECONDS,
    SCORE_CACHE_ITEM_TTL,
    VersionLevel,
)
from feedcache.core.logging import get_logger, log_stage
from feedcache.infrastructure.cache.cache_manager import CacheFacade, VersionedValue, resolve_compute

logger = get_logger(__name__)


def _family_key(family: str) -> str:
    return f"{family}:*"


class ScoreCache:
    """
    Version-tagged envelope cache for hot scores.

    Usage:
        score_cache = ScoreCache(cache_facade)
        result = await score_cache.get_item_score("m1", lambda: compute(doc))
        # result.data, result.version, result.from_cache

        await score_cache.invalidate("minor")
    """

    FAMILIES = (KEY_HOT_SCORE_BATCH, KEY_ITEM_HOT_SCORE)

    def __init__(self, cache: CacheFacade, *, clock: Callable[[], float] = time.time):
        self._cache = cache
        self._versions = cache.versions
        self._clock = clock

    def item_key(self, item_id: str) -> str:
        bucket = int(self._clock() // SCORE_CACHE_ITEM_BUCKET_SECONDS)
        return f"{KEY_ITEM_HOT_SCORE}:{item_id}:{bucket}"

    def batch_key(self, count: int) -> str:
        bucket = int(self._clock() // SCORE_CACHE_BATCH_BUCKET_SECONDS)
        return f"{KEY_HOT_SCORE_BATCH}:{count}:{bucket}"

    async def get_item_score(
        self, item_id: str, compute_fn: Callable[[], Any], *, force_refresh: bool = False
    ) -> VersionedValue:
        return await self._get_or_compute(
            self.item_key(item_id), KEY_ITEM_HOT_SCORE, compute_fn, SCORE_CACHE_ITEM_TTL, force_refresh
        )

    async def get_batch_scores(
        self, count: int, compute_fn: Callable[[], Any], *, force_refresh: bool = False
    ) -> VersionedValue:
        return await self._get_or_compute(
            self.batch_key(count), KEY_HOT_SCORE_BATCH, compute_fn, SCORE_CACHE_BATCH_TTL, force_refresh
        )

    async def _get_or_compute(
        self,
        key: str,
        family: str,
        compute_fn: Callable[[], Any],
        ttl: int,
        force_refresh: bool,
    ) -> VersionedValue:
        version = await self._versions.get_version(_family_key(family))

        if not force_refresh:
            envelope = await self._cache.get(key)
            if isinstance(envelope, dict) and "data" in envelope:
                if envelope.get("version") == version:
                    return VersionedValue(envelope["data"], version, from_cache=True)
                log_stage(
                    logger,
                    "SCORE.2",
                    "Stale score envelope",
                    level="debug",
                    cache_key=key,
                    cached_version=envelope.get("version"),
                    current_version=version,
                )

        data = await resolve_compute(compute_fn)
        if data is not None:
            envelope = {"data": data, "version": version, "timestamp": self._clock()}
            await self._cache.set(key, envelope, ttl=ttl)
        return VersionedValue(data, version, from_cache=False)

    async def invalidate(self, level: VersionLevel | str = VersionLevel.PATCH) -> dict[str, Any]:
        """
        Bump the score families' versions and delete their cached entries.

        Returns:
            {"versions": {family_key: {old_version, new_version} | {error}},
             "deleted_keys": int}
        """
        family_keys = [_family_key(f) for f in self.FAMILIES]
        versions = await self._versions.batch_bump(family_keys, level)

        deleted = 0
        for family_key in family_keys:
            deleted += await self._cache.delete_pattern(family_key)

        log_stage(
            logger,
            "SCORE.3",
            "Hot score cache invalidated",
            version_level=str(getattr(level, "value", level)),
            deleted_keys=deleted,
        )
        return {"versions": versions, "deleted_keys": deleted}
