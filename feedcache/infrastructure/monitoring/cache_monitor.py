"""
Cache Monitor

Per-key hit/miss counters for the cache facade. Purely observational:
a disabled monitor is a no-op and never changes cache behaviour.

Metrics untouched for longer than the inactivity window (24h by default)
are pruned from inside the update path; the sweep runs at most once per
sweep interval so recording stays O(1) amortized.

Author: System Architect
Date: 2025-12-10
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from feedcache.core.config.constants import (
    MONITOR_INACTIVITY_WINDOW,
    MONITOR_REPORT_TOP_KEYS,
    MONITOR_SWEEP_INTERVAL,
    MONITOR_TOP_KEYS,
)
from feedcache.core.logging import get_logger, log_stage
from feedcache.infrastructure.monitoring.metrics_collector import MetricsCollector

logger = get_logger(__name__)


@dataclass
class MonitorMetric:
    """Counters for one cache key; timestamps in seconds from the monitor clock."""

    key: str
    hits: int = 0
    misses: int = 0
    first_access: float = 0.0
    last_access: float = 0.0

    @property
    def total(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        return (self.hits / self.total) * 100 if self.total else 0.0


class CacheMonitor:
    """
    Tracks cache effectiveness per key.

    Usage:
        monitor = CacheMonitor(enabled=True, metrics=collector)
        monitor.record_hit("hot_recommendations:page1")
        print(monitor.get_performance_report())
    """

    def __init__(
        self,
        *,
        enabled: bool = True,
        inactivity_window: float = MONITOR_INACTIVITY_WINDOW,
        sweep_interval: float = MONITOR_SWEEP_INTERVAL,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._enabled = enabled
        self._inactivity_window = inactivity_window
        self._sweep_interval = sweep_interval
        self._metrics_collector = metrics
        self._clock = clock

        self._metrics: dict[str, MonitorMetric] = {}
        self._total_errors = 0
        self._start_time = clock()
        self._last_sweep = self._start_time

    @property
    def enabled(self) -> bool:
        return self._enabled

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    def record_hit(self, key: str) -> None:
        if not self._enabled:
            return
        self._update(key, hit=True)
        if self._metrics_collector:
            self._metrics_collector.record_cache_hit()

    def record_miss(self, key: str) -> None:
        if not self._enabled:
            return
        self._update(key, hit=False)
        if self._metrics_collector:
            self._metrics_collector.record_cache_miss()

    def record_error(self, operation: str, key: str | None, error: BaseException) -> None:
        """Log a backend error and count it; per-key hit/miss counters are untouched."""
        if not self._enabled:
            return
        self._total_errors += 1
        log_stage(
            logger,
            "MON.2",
            "Cache operation error",
            level="warning",
            operation=operation,
            cache_key=key,
            error=str(error),
        )
        if self._metrics_collector:
            self._metrics_collector.record_cache_error(operation)

    def _update(self, key: str, *, hit: bool) -> None:
        now = self._clock()
        metric = self._metrics.get(key)
        if metric is None:
            metric = MonitorMetric(key=key, first_access=now, last_access=now)
            self._metrics[key] = metric

        if hit:
            metric.hits += 1
        else:
            metric.misses += 1
        metric.last_access = now

        if now - self._last_sweep >= self._sweep_interval:
            self._prune(now)

    def _prune(self, now: float) -> None:
        """STAGE-MON.1: Drop metrics idle for longer than the inactivity window."""
        self._last_sweep = now
        expired = [
            key
            for key, metric in self._metrics.items()
            if now - metric.last_access > self._inactivity_window
        ]
        for key in expired:
            del self._metrics[key]
        if expired:
            log_stage(logger, "MON.1", "Pruned idle cache metrics", level="debug", pruned=len(expired))

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def get_hit_rate(self, key: str | None = None) -> float:
        """Hit rate in percent (0-100) for ``key``, or across all keys."""
        if key is not None:
            metric = self._metrics.get(key)
            return metric.hit_rate if metric else 0.0

        hits = sum(m.hits for m in self._metrics.values())
        total = sum(m.total for m in self._metrics.values())
        return (hits / total) * 100 if total else 0.0

    def get_key_stats(self, key: str) -> dict[str, Any] | None:
        metric = self._metrics.get(key)
        if metric is None:
            return None
        return {
            "key": key,
            "hit_rate": metric.hit_rate,
            "hits": metric.hits,
            "misses": metric.misses,
            "total": metric.total,
            "first_access": metric.first_access,
            "last_access": metric.last_access,
            "age_seconds": self._clock() - metric.first_access,
        }

    def get_stats(self) -> dict[str, Any]:
        """
        Aggregate view of all tracked keys.

        Returns:
            {overall{hit_rate, total_keys, uptime_seconds}, top_keys, summary{...}}
        """
        key_stats = [
            {
                "key": m.key,
                "hit_rate": m.hit_rate,
                "hits": m.hits,
                "misses": m.misses,
                "total": m.total,
                "last_access": m.last_access,
            }
            for m in self._metrics.values()
        ]
        key_stats.sort(key=lambda s: s["total"], reverse=True)

        total_hits = sum(m.hits for m in self._metrics.values())
        total_misses = sum(m.misses for m in self._metrics.values())

        return {
            "overall": {
                "hit_rate": self.get_hit_rate(),
                "total_keys": len(self._metrics),
                "uptime_seconds": self._clock() - self._start_time,
            },
            "top_keys": key_stats[:MONITOR_TOP_KEYS],
            "summary": {
                "total_hits": total_hits,
                "total_misses": total_misses,
                "total_requests": total_hits + total_misses,
                "total_errors": self._total_errors,
            },
        }

    def get_performance_report(self) -> str:
        """Human-readable summary with the five busiest keys."""
        stats = self.get_stats()
        overall, summary = stats["overall"], stats["summary"]
        uptime_hours = round(overall["uptime_seconds"] / 3600, 1)

        lines = [
            "=== Cache Performance Report ===",
            f"Uptime: {uptime_hours} hours",
            f"Overall hit rate: {overall['hit_rate']:.2f}%",
            f"Tracked keys: {overall['total_keys']}",
            f"Total requests: {summary['total_requests']}",
            f"Total hits: {summary['total_hits']}",
            f"Total misses: {summary['total_misses']}",
            f"Total errors: {summary['total_errors']}",
        ]
        top = stats["top_keys"][:MONITOR_REPORT_TOP_KEYS]
        if top:
            lines.append("")
            lines.append("Most active keys:")
            for index, entry in enumerate(top, start=1):
                lines.append(f"{index}. {entry['key']}")
                lines.append(
                    f"   hit rate: {entry['hit_rate']:.2f}% ({entry['hits']}/{entry['total']})"
                )
        return "\n".join(lines) + "\n"

    # -------------------------------------------------------------------------
    # Control
    # -------------------------------------------------------------------------

    def reset(self) -> None:
        self._metrics.clear()
        self._total_errors = 0
        self._start_time = self._clock()
        self._last_sweep = self._start_time
        log_stage(logger, "MON.3", "Cache monitor reset")

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        log_stage(logger, "MON.3", "Cache monitor toggled", enabled=enabled)
