"""
Batch Hot Score Recompute

Pipeline:
    STAGE-BATCH.1: Storage health check (the only hard failure)
    STAGE-BATCH.2: Build query + count
    STAGE-BATCH.3: Pages of ``batch_size``, newest first, each item
                   validated → scored → persisted
    STAGE-BATCH.4: Summary

Failure isolation:
    - Item failures (invalid snapshot, non-finite score, rejected write) are
      counted, reported and handed to the retry queue; the page continues.
    - Page failures (the page read itself) are reported as batch errors; the
      run continues with the next page.

Author: System Architect
Date: 2025-12-13
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from feedcache.core.config.constants import (
    RECOMPUTE_DEFAULT_BATCH_SIZE,
    RECOMPUTE_DEFAULT_LIMIT,
    RECOMPUTE_INCREMENTAL_WINDOW_DAYS,
    RECOMPUTE_MAX_REPORTED_ERRORS,
    RECOMPUTE_PAGE_PAUSE_SECONDS,
    RECOMPUTE_PROGRESS_LOG_EVERY,
    Stage,
)
from feedcache.core.exceptions import StorageError, StorageUnavailableError
from feedcache.core.interfaces import ContentQuery, ContentStore
from feedcache.core.logging import get_logger, log_stage
from feedcache.core.resilience import fail_soft
from feedcache.infrastructure.message_queue.retry_queue import RetryQueue
from feedcache.infrastructure.monitoring.metrics_collector import MetricsCollector
from feedcache.scoring.hot_score import ContentSnapshot, compute_hot_score, get_hot_score_level
from feedcache.scoring.score_cache import ScoreCache

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RecomputeSummary:
    """Outcome of one batch run. ``success`` means the run completed."""

    success: bool
    updated_count: int = 0
    error_count: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    message: str = ""
    total_count: int = 0
    processing_time_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "updated_count": self.updated_count,
            "error_count": self.error_count,
            "errors": self.errors[:RECOMPUTE_MAX_REPORTED_ERRORS],
            "message": self.message,
            "total_count": self.total_count,
            "processing_time_ms": self.processing_time_ms,
        }


class BatchRecomputeScheduler:
    """
    Pages through the content store and rewrites hot scores.

    Usage:
        scheduler = BatchRecomputeScheduler(content_store, retry_queue=retry_queue)
        summary = await scheduler.run(limit=500, force=True, batch_size=50)
    """

    def __init__(
        self,
        store: ContentStore,
        *,
        retry_queue: RetryQueue | None = None,
        score_cache: ScoreCache | None = None,
        metrics: MetricsCollector | None = None,
        storage_timeout: float | None = None,
        page_pause: float = RECOMPUTE_PAGE_PAUSE_SECONDS,
        incremental_window_days: int = RECOMPUTE_INCREMENTAL_WINDOW_DAYS,
        default_limit: int = RECOMPUTE_DEFAULT_LIMIT,
        default_batch_size: int = RECOMPUTE_DEFAULT_BATCH_SIZE,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._retry_queue = retry_queue
        self._score_cache = score_cache
        self._metrics = metrics
        self._timeout = storage_timeout
        self._page_pause = page_pause
        self._window = timedelta(days=incremental_window_days)
        self._default_limit = default_limit
        self._default_batch_size = default_batch_size
        self._clock = clock

    async def _storage(self, operation: str, call, key: str | None = None):
        return await fail_soft(
            operation, call, timeout=self._timeout, key=key, stage=Stage.BATCH_PAGE.value
        )

    # =========================================================================
    # Batch run
    # =========================================================================

    async def run(
        self,
        *,
        limit: int | None = None,
        force: bool = False,
        batch_size: int | None = None,
    ) -> RecomputeSummary:
        """
        Recompute hot scores for the selected items.

        Args:
            limit: Maximum number of items to visit
            force: Select every non-deleted item instead of the incremental set
            batch_size: Page size

        Returns:
            RecomputeSummary

        Raises:
            StorageUnavailableError: When the storage health check fails
        """
        limit = self._default_limit if limit is None else limit
        batch_size = batch_size or self._default_batch_size
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        started = time.perf_counter()

        # STAGE-BATCH.1: Health check
        await self._check_health()

        # STAGE-BATCH.2: Query + count
        now = self._clock()
        query = ContentQuery(force=force, updated_since=None if force else now - self._window)
        counted = await self._storage("count", lambda: self._store.count(query))
        if not counted.ok:
            return RecomputeSummary(
                success=False,
                message=f"Counting content failed: {counted.error}",
                processing_time_ms=self._elapsed_ms(started),
            )

        total = counted.value
        log_stage(logger, Stage.BATCH_QUERY.value, "Items selected for recompute", total=total, force=force, limit=limit)
        if total == 0:
            return RecomputeSummary(
                success=True,
                message="No items need a hot score update",
                processing_time_ms=self._elapsed_ms(started),
            )

        # STAGE-BATCH.3: Pages
        summary = RecomputeSummary(success=True, total_count=total)
        end = min(total, limit)
        pages = -(-end // batch_size)
        for skip in range(0, end, batch_size):
            page_number = skip // batch_size + 1
            log_stage(
                logger,
                Stage.BATCH_PAGE.value,
                f"Processing page {page_number}/{pages}",
                level="debug",
                skip=skip,
                batch_size=batch_size,
            )

            page = await self._storage("find", lambda s=skip: self._store.find(query, s, batch_size))
            if page.ok:
                await self._process_page(page.value, summary, now, end)
            else:
                log_stage(
                    logger,
                    Stage.BATCH_PAGE.value,
                    f"Page {page_number} failed",
                    level="error",
                    skip=skip,
                    batch_size=batch_size,
                    error=str(page.error),
                )
                self._record_error(
                    summary,
                    {"batch_error": True, "skip": skip, "batch_size": batch_size, "error": str(page.error)},
                )

            if skip + batch_size < end and self._page_pause > 0:
                await asyncio.sleep(self._page_pause)

        # STAGE-BATCH.4: Summary
        summary.message = f"Updated hot scores of {summary.updated_count} items"
        summary.processing_time_ms = self._elapsed_ms(started)

        if self._metrics:
            self._metrics.record_recompute_items(summary.updated_count, summary.error_count)
        if self._score_cache and summary.updated_count:
            await self._score_cache.invalidate()

        log_stage(
            logger,
            Stage.BATCH_SUMMARY.value,
            "Hot score recompute finished",
            updated=summary.updated_count,
            errors=summary.error_count,
            duration_ms=summary.processing_time_ms,
        )
        return summary

    async def _check_health(self) -> None:
        health = await self._storage("ping", self._store.ping)
        if not health.ok or not health.value:
            log_stage(
                logger,
                Stage.BATCH_HEALTH.value,
                "Content store health check failed",
                level="error",
                error=str(health.error) if health.error else None,
            )
            raise StorageUnavailableError(
                "Content store health check failed, hot score recompute aborted",
                details={"error": str(health.error)} if health.error else None,
            )

    async def _process_page(
        self, documents: list[dict[str, Any]], summary: RecomputeSummary, now: datetime, end: int
    ) -> None:
        for doc in documents:
            item_id = str(doc.get("id", doc.get("_id", "unknown")))
            try:
                await self._update_document(doc, now)
            except StorageError as e:
                log_stage(
                    logger,
                    Stage.BATCH_PAGE.value,
                    "Item recompute failed",
                    level="warning",
                    item_id=item_id,
                    error=e.message,
                    error_type=type(e).__name__,
                )
                self._record_error(summary, {"item_id": item_id, "error": e.message})
                if self._retry_queue:
                    await self._retry_queue.enqueue_retry(item_id, {"error": e.message})
                continue

            summary.updated_count += 1
            if summary.updated_count % RECOMPUTE_PROGRESS_LOG_EVERY == 0:
                log_stage(logger, Stage.BATCH_PAGE.value, f"Processed {summary.updated_count}/{end} items")

    async def _update_document(self, doc: dict[str, Any], now: datetime) -> float:
        """
        Validate, score and persist one document.

        Raises:
            InvalidSnapshotError, ScoreComputationError: Bad input
            StorageError: Write failed or was rejected
        """
        snapshot = ContentSnapshot.from_document(doc)
        score = compute_hot_score(snapshot, now)

        written = await self._storage(
            "update_hot_score", lambda: self._store.update_hot_score(snapshot.id, score, now), snapshot.id
        )
        if not written.ok:
            raise StorageError(f"Writing hot score failed: {written.error}", details={"item_id": snapshot.id})
        if not written.value:
            raise StorageError("Hot score write was rejected", details={"item_id": snapshot.id})
        return score

    @staticmethod
    def _record_error(summary: RecomputeSummary, entry: dict[str, Any]) -> None:
        summary.error_count += 1
        if len(summary.errors) < RECOMPUTE_MAX_REPORTED_ERRORS:
            summary.errors.append(entry)

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return round((time.perf_counter() - started) * 1000, 2)

    # =========================================================================
    # Single item / scheduled / stats
    # =========================================================================

    async def update_single(self, item_id: str) -> dict[str, Any]:
        """
        Recompute one item.

        Raises:
            StorageError: Item missing or write failed
            InvalidSnapshotError, ScoreComputationError: Bad item data
        """
        fetched = await self._storage("get", lambda: self._store.get(item_id), item_id)
        if not fetched.ok:
            raise StorageError(f"Reading item failed: {fetched.error}", details={"item_id": item_id})
        if fetched.value is None:
            raise StorageError("Content item not found", details={"item_id": item_id})

        score = await self._update_document(fetched.value, self._clock())
        level = get_hot_score_level(score)
        log_stage(logger, Stage.BATCH_PAGE.value, "Single item hot score updated", item_id=item_id, hot_score=score, hot_level=level.value)
        return {"success": True, "item_id": item_id, "hot_score": score, "hot_level": level.value}

    async def scheduled_run(self, *, limit: int = RECOMPUTE_DEFAULT_LIMIT, force: bool = False) -> RecomputeSummary:
        """Periodic entry point: smaller pages than an interactive run."""
        return await self.run(limit=limit, force=force, batch_size=50)

    async def get_score_stats(self) -> dict[str, Any]:
        """
        Aggregate hot scores of all non-deleted items.

        Returns:
            {"overall": {total_items, avg_hot_score, max_hot_score, min_hot_score,
             total_hot_score}, "by_level": [{"level", "count"}] sorted by count}

        Raises:
            StorageError: When the store cannot be read
        """
        query = ContentQuery(force=True)
        counted = await self._storage("count", lambda: self._store.count(query))
        if not counted.ok:
            raise StorageError(f"Counting content failed: {counted.error}")

        async def aggregate() -> dict[str, Any]:
            return await self._aggregate_scores(query, counted.value)

        if self._score_cache is None:
            return await aggregate()
        cached = await self._score_cache.get_batch_scores(counted.value, aggregate)
        return cached.data

    async def _aggregate_scores(self, query: ContentQuery, total: int) -> dict[str, Any]:
        scores: list[float] = []
        page_size = self._default_batch_size
        for skip in range(0, total, page_size):
            page = await self._storage("find", lambda s=skip: self._store.find(query, s, page_size))
            if not page.ok:
                raise StorageError(f"Reading content failed: {page.error}", details={"skip": skip})
            scores.extend(float(doc.get("hot_score") or 0) for doc in page.value)

        levels: dict[str, int] = {}
        for score in scores:
            level = get_hot_score_level(score).value
            levels[level] = levels.get(level, 0) + 1

        overall = {
            "total_items": len(scores),
            "avg_hot_score": sum(scores) / len(scores) if scores else 0,
            "max_hot_score": max(scores, default=0),
            "min_hot_score": min(scores, default=0),
            "total_hot_score": sum(scores),
        }
        by_level = [
            {"level": level, "count": count}
            for level, count in sorted(levels.items(), key=lambda kv: kv[1], reverse=True)
        ]
        return {"overall": overall, "by_level": by_level}
