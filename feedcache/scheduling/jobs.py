"""
Job Runners

A runner is an async callable taking the job's effective config and
returning a result mapping. The orchestrator owns timing, overlap control
and error capture; runners only do the work.

- HotScoreJob: batch hot score recompute
- FeedRefreshJob: drops a recommendation family's cached feeds and bumps
  their versions; the next read recomputes them through the cache facade

Author: System Architect
Date: 2025-12-14
"""

from collections.abc import Awaitable, Callable
from typing import Any

from feedcache.core.config.constants import Stage, VersionLevel
from feedcache.core.logging import get_logger, log_stage
from feedcache.infrastructure.cache.cache_manager import CacheFacade
from feedcache.scoring.batch_recompute import BatchRecomputeScheduler

logger = get_logger(__name__)

JobRunner = Callable[[dict[str, Any]], Awaitable[Any]]


class HotScoreJob:
    """Runs BatchRecomputeScheduler with ``limit``, ``force`` and ``batch_size`` from the job config."""

    def __init__(self, batch: BatchRecomputeScheduler):
        self._batch = batch

    async def __call__(self, config: dict[str, Any]) -> dict[str, Any]:
        summary = await self._batch.run(
            limit=config.get("limit"),
            force=bool(config.get("force", False)),
            batch_size=config.get("batch_size"),
        )
        return summary.to_dict()


class FeedRefreshJob:
    """
    Invalidates every cached feed of the given key families.

    The version sidecar of each deleted feed is bumped, so a client still
    holding an older copy of that feed sees it as stale.

    Config:
        version_level: patch | minor | major (default patch)
    """

    def __init__(self, cache: CacheFacade, families: tuple[str, ...]):
        self._cache = cache
        self._families = families

    async def __call__(self, config: dict[str, Any]) -> dict[str, Any]:
        level = VersionLevel(config.get("version_level", VersionLevel.PATCH))

        deleted = 0
        bumped = 0
        bump_errors = 0
        for family in self._families:
            keys = await self._cache.find_keys(f"{family}:*")
            removed = await self._cache.delete_keys(keys, operation="feed_refresh", label=family)
            if not removed:
                continue
            deleted += removed
            versions = await self._cache.versions.batch_bump(keys, level)
            bump_errors += sum(1 for outcome in versions.values() if "error" in outcome)
            bumped += len(versions)

        log_stage(
            logger,
            Stage.ORCHESTRATION.value,
            "Feed families refreshed",
            families=list(self._families),
            deleted_keys=deleted,
            bumped_versions=bumped - bump_errors,
        )
        return {
            "success": True,
            "families": list(self._families),
            "deleted_keys": deleted,
            "version_level": level.value,
            "bumped_versions": bumped - bump_errors,
            "bump_errors": bump_errors,
        }
