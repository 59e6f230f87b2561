"""
Composition Root

Builds every long-lived component exactly once, from one Settings object,
and wires them together. Nothing below this module reaches for a global:
components receive their collaborators here.

Wiring:
    RedisClient ──┬── VersionStore ── CacheFacade ──┬── SmartInvalidator
                  │                                 ├── ScoreCache
                  │                                 └── FeedRefreshJob (x3)
                  └── RedisJobQueue ── RetryQueue ── BatchRecomputeScheduler ── HotScoreJob
                                                                                    │
                                                               JobOrchestrator ◄────┘

Author: System Architect
Date: 2025-12-15
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from feedcache.core.config.constants import (
    KEY_COLLABORATIVE,
    KEY_CONTENT_BASED,
    KEY_SOCIAL_COLLABORATIVE,
    KEY_SOCIAL_SCORES,
    JobName,
    Stage,
)
from feedcache.core.config.settings import Settings, get_settings
from feedcache.core.exceptions import ConfigurationError
from feedcache.core.interfaces import ContentQuery, ContentStore, JobQueueBackend, KeyValueStore
from feedcache.core.logging import get_logger, log_stage
from feedcache.core.resilience import fail_soft
from feedcache.infrastructure.cache.cache_manager import CacheFacade
from feedcache.infrastructure.cache.invalidator import SmartInvalidator
from feedcache.infrastructure.cache.redis_client import RedisClient
from feedcache.infrastructure.cache.version_store import VersionStore
from feedcache.infrastructure.message_queue.redis_queue import RedisJobQueue
from feedcache.infrastructure.message_queue.retry_queue import RetryPolicy, RetryQueue
from feedcache.infrastructure.monitoring.cache_monitor import CacheMonitor
from feedcache.infrastructure.monitoring.metrics_collector import MetricsCollector
from feedcache.scheduling.cron import CronScheduler
from feedcache.scheduling.jobs import FeedRefreshJob, HotScoreJob
from feedcache.scheduling.orchestrator import JobOrchestrator
from feedcache.scoring.batch_recompute import BatchRecomputeScheduler
from feedcache.scoring.score_cache import ScoreCache

logger = get_logger(__name__)


class UnconfiguredContentStore:
    """
    Placeholder used when no content store is injected.

    The document store belongs to another service. Without one, ping answers
    False so hot score runs stop at the health check instead of failing item
    by item.
    """

    async def ping(self) -> bool:
        return False

    async def count(self, query: ContentQuery) -> int:
        return 0

    async def find(self, query: ContentQuery, skip: int, limit: int) -> list[dict[str, Any]]:
        return []

    async def get(self, item_id: str) -> dict[str, Any] | None:
        return None

    async def update_hot_score(self, item_id: str, score: float, updated_at: datetime) -> bool:
        return False


@dataclass
class AppContainer:
    """Every long-lived component of one process."""

    settings: Settings
    kv_store: KeyValueStore
    metrics: MetricsCollector
    monitor: CacheMonitor
    versions: VersionStore
    cache: CacheFacade
    invalidator: SmartInvalidator
    score_cache: ScoreCache
    content_store: ContentStore
    job_backend: JobQueueBackend
    retry_queue: RetryQueue
    batch: BatchRecomputeScheduler
    orchestrator: JobOrchestrator

    async def startup(self) -> None:
        """
        Connect the key-value store, start the retry worker and the cron triggers.

        A failed connection leaves the service running in degraded mode:
        every cache read computes directly.
        """
        connected = await fail_soft(
            "connect",
            self.kv_store.connect,
            stage="STARTUP.1",
            on_error=self.monitor.record_error,
        )
        if connected.ok:
            log_stage(logger, "STARTUP.1", "Key-value store connected")
        else:
            log_stage(logger, "STARTUP.1", "Key-value store unavailable, running uncached", level="warning")

        self.retry_queue.start()
        log_stage(logger, "STARTUP.2", "Retry worker started")

        if self.settings.scheduler.SCHEDULER_ENABLED:
            self.orchestrator.start()
        else:
            log_stage(logger, "STARTUP.3", "Scheduler disabled, cron triggers not registered")

    async def shutdown(self) -> None:
        """Stop triggers, drain the retry worker, then close the cache backend."""
        self.orchestrator.stop()
        await self.retry_queue.close(timeout=self.settings.retry_queue.RETRY_SHUTDOWN_TIMEOUT)
        await self.cache.close()
        log_stage(logger, "SHUTDOWN.1", "Container shut down")


def build_runners(cache: CacheFacade, batch: BatchRecomputeScheduler) -> dict[str, Any]:
    """Runner per job name."""
    return {
        JobName.HOT_SCORE.value: HotScoreJob(batch),
        JobName.CONTENT_BASED.value: FeedRefreshJob(cache, (KEY_CONTENT_BASED,)),
        JobName.COLLABORATIVE_FILTERING.value: FeedRefreshJob(cache, (KEY_COLLABORATIVE,)),
        JobName.SOCIAL_COLLABORATIVE_FILTERING.value: FeedRefreshJob(
            cache, (KEY_SOCIAL_COLLABORATIVE, KEY_SOCIAL_SCORES)
        ),
    }


def build_container(
    settings: Settings | None = None,
    *,
    content_store: ContentStore | None = None,
    kv_store: KeyValueStore | None = None,
    job_backend: JobQueueBackend | None = None,
    metrics: MetricsCollector | None = None,
    scheduler: CronScheduler | None = None,
) -> AppContainer:
    """
    Wire the whole service.

    Args:
        settings: Configuration (default: get_settings())
        content_store: Document store holding content items
        kv_store: Shared key-value backend (default: RedisClient)
        job_backend: Retry queue backend (default: RedisJobQueue on the same Redis)
        metrics: Prometheus collector
        scheduler: Cron scheduler (tests inject one with a fake clock)

    Raises:
        ConfigurationError: When the default job backend cannot be built
    """
    settings = settings or get_settings()
    app_settings = settings.app
    cache_settings = settings.cache
    monitor_settings = settings.monitor
    recompute = settings.recompute
    retry = settings.retry_queue
    scheduler_settings = settings.scheduler

    kv_store = kv_store or RedisClient(settings.redis)
    metrics = metrics or MetricsCollector(
        app_name=app_settings.APP_NAME,
        version=app_settings.APP_VERSION,
        environment=app_settings.ENVIRONMENT,
    )

    monitor = CacheMonitor(
        enabled=monitor_settings.CACHE_MONITOR_ENABLED,
        inactivity_window=monitor_settings.CACHE_MONITOR_INACTIVITY_WINDOW,
        sweep_interval=monitor_settings.CACHE_MONITOR_SWEEP_INTERVAL,
        metrics=metrics,
    )
    versions = VersionStore(
        kv_store,
        mirror_size=settings.version.VERSION_MIRROR_MAX_SIZE,
        timeout=cache_settings.CACHE_BACKEND_TIMEOUT,
        on_error=monitor.record_error,
    )
    cache = CacheFacade(
        kv_store,
        versions,
        monitor,
        enabled=cache_settings.CACHE_ENABLED,
        default_ttl=cache_settings.CACHE_DEFAULT_TTL,
        timeout=cache_settings.CACHE_BACKEND_TIMEOUT,
    )
    invalidator = SmartInvalidator(cache, metrics)
    score_cache = ScoreCache(cache)

    if job_backend is None:
        if not isinstance(kv_store, RedisClient):
            raise ConfigurationError(
                "A job backend must be provided when the key-value store is not Redis",
                details={"kv_store": type(kv_store).__name__},
            )
        job_backend = RedisJobQueue(
            kv_store,
            retry.RETRY_QUEUE_NAME,
            retry.RETRY_QUEUE_GROUP,
            max_len=retry.RETRY_MAX_LEN,
            reclaim_idle_ms=retry.RETRY_RECLAIM_IDLE_MS,
        )

    content_store = content_store or UnconfiguredContentStore()
    retry_queue = RetryQueue(
        job_backend,
        content_store,
        policy=RetryPolicy(
            max_attempts=retry.RETRY_MAX_ATTEMPTS,
            base_delay_ms=retry.RETRY_BASE_DELAY_MS,
            max_delay_ms=retry.RETRY_MAX_DELAY_MS,
        ),
        metrics=metrics,
        batch_size=retry.RETRY_BATCH_SIZE,
        poll_interval_ms=retry.RETRY_POLL_INTERVAL_MS,
        storage_timeout=recompute.STORAGE_TIMEOUT,
    )
    batch = BatchRecomputeScheduler(
        content_store,
        retry_queue=retry_queue,
        score_cache=score_cache,
        metrics=metrics,
        storage_timeout=recompute.STORAGE_TIMEOUT,
        page_pause=recompute.RECOMPUTE_PAGE_PAUSE,
        incremental_window_days=recompute.RECOMPUTE_INCREMENTAL_WINDOW_DAYS,
        default_limit=recompute.RECOMPUTE_LIMIT,
        default_batch_size=recompute.RECOMPUTE_BATCH_SIZE,
    )
    orchestrator = JobOrchestrator(
        scheduler_settings.job_definitions(),
        build_runners(cache, batch),
        timezone=scheduler_settings.SCHEDULER_TIMEZONE,
        scheduler=scheduler,
        metrics=metrics,
    )

    log_stage(
        logger,
        Stage.ORCHESTRATION.value,
        "Container built",
        kv_store=type(kv_store).__name__,
        content_store=type(content_store).__name__,
        job_backend=type(job_backend).__name__,
    )
    return AppContainer(
        settings=settings,
        kv_store=kv_store,
        metrics=metrics,
        monitor=monitor,
        versions=versions,
        cache=cache,
        invalidator=invalidator,
        score_cache=score_cache,
        content_store=content_store,
        job_backend=job_backend,
        retry_queue=retry_queue,
        batch=batch,
        orchestrator=orchestrator,
    )
