#!/usr/bin/env python3
"""
Metrics Collector with Prometheus Integration

Prometheus-compatible metrics for the feed cache service:
- Cache hits, misses and backend errors
- Invalidated patterns and keys
- Recompute items by outcome
- Retry jobs by outcome
- Orchestrated job runs by outcome, with durations

Architectural Decision: prometheus-client for industry-standard metrics
- Compatible with Grafana dashboards
- Histogram buckets for job duration percentiles

Metric objects live at module level (one registration per process); the
collector instance is created by the composition root and handed to
components that report.

Author: Senior Solution Architect
Date: 2025-12-05
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    Info,
    generate_latest,
)

from feedcache.core.logging import get_logger

logger = get_logger(__name__)


# ============================================================================
# Metric Definitions
# ============================================================================

# Cache metrics
CACHE_HITS = Counter(
    'feedcache_cache_hits_total',
    'Total cache hits'
)

CACHE_MISSES = Counter(
    'feedcache_cache_misses_total',
    'Total cache misses'
)

CACHE_ERRORS = Counter(
    'feedcache_cache_errors_total',
    'Total cache backend errors by operation',
    ['operation']
)

# Invalidation metrics
INVALIDATIONS = Counter(
    'feedcache_invalidations_total',
    'Invalidation calls by operation',
    ['operation']
)

INVALIDATED_TARGETS = Counter(
    'feedcache_invalidated_targets_total',
    'Patterns or keys sent to the cache for deletion',
    ['kind']  # pattern, key
)

# Recompute metrics
RECOMPUTE_ITEMS = Counter(
    'feedcache_recompute_items_total',
    'Items processed by batch recompute',
    ['outcome']  # updated, failed
)

# Retry queue metrics
RETRY_JOBS = Counter(
    'feedcache_retry_jobs_total',
    'Retry queue jobs by outcome',
    ['outcome']  # enqueued, succeeded, rescheduled, dropped, enqueue_failed
)

# Job metrics
JOB_RUNS = Counter(
    'feedcache_job_runs_total',
    'Orchestrated job runs by outcome',
    ['job', 'outcome']  # success, failed, skipped, disabled
)

JOB_DURATION = Histogram(
    'feedcache_job_duration_seconds',
    'Orchestrated job duration in seconds',
    ['job'],
    buckets=(0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0, 900.0)
)

# App info
APP_INFO = Info(
    'feedcache_app',
    'Application information'
)


class MetricsCollector:
    """
    Centralized metrics collector.

    STAGE-M: Metrics collection

    Usage:
        metrics = MetricsCollector(app_name="Feed Cache Service", version="1.0.0")
        metrics.record_cache_hit()
        metrics.record_job_run("hot_score", "success", 12.5)
        output = metrics.get_prometheus_metrics()
    """

    def __init__(self, app_name: str = "feedcache", version: str = "0.0.0", environment: str = "development"):
        APP_INFO.info({
            'version': version,
            'environment': environment,
            'app_name': app_name,
        })

        logger.info("Metrics collector initialized", stage="M.0")

    # =========================================================================
    # Cache Metrics
    # =========================================================================

    def record_cache_hit(self) -> None:
        CACHE_HITS.inc()

    def record_cache_miss(self) -> None:
        CACHE_MISSES.inc()

    def record_cache_error(self, operation: str) -> None:
        CACHE_ERRORS.labels(operation=operation).inc()

    # =========================================================================
    # Invalidation Metrics
    # =========================================================================

    def record_invalidation(self, operation: str, patterns: int = 0, keys: int = 0) -> None:
        """Record one invalidation call and the targets it sent."""
        INVALIDATIONS.labels(operation=operation).inc()
        if patterns:
            INVALIDATED_TARGETS.labels(kind="pattern").inc(patterns)
        if keys:
            INVALIDATED_TARGETS.labels(kind="key").inc(keys)

    # =========================================================================
    # Recompute / Retry Metrics
    # =========================================================================

    def record_recompute_items(self, updated: int, failed: int) -> None:
        if updated:
            RECOMPUTE_ITEMS.labels(outcome="updated").inc(updated)
        if failed:
            RECOMPUTE_ITEMS.labels(outcome="failed").inc(failed)

    def record_retry_job(self, outcome: str) -> None:
        RETRY_JOBS.labels(outcome=outcome).inc()

    # =========================================================================
    # Job Metrics
    # =========================================================================

    def record_job_run(self, job: str, outcome: str, duration_seconds: float | None = None) -> None:
        """Record a job run; duration is observed only for runs that executed."""
        JOB_RUNS.labels(job=job, outcome=outcome).inc()
        if duration_seconds is not None:
            JOB_DURATION.labels(job=job).observe(duration_seconds)

    # =========================================================================
    # Export
    # =========================================================================

    def get_prometheus_metrics(self) -> bytes:
        """
        Get Prometheus metrics output.

        Returns:
            bytes: Prometheus text format metrics
        """
        return generate_latest(REGISTRY)

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST
