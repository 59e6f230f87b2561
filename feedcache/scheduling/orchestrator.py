"""
Job Orchestrator

Registry of named recompute jobs, each on its own cron cadence.

Run path (shared by cron triggers, run_now and run_all):
    1. Running guard: a job already running → logged no-op
       {"success": False, "skipped": True}
    2. Effective config = live config deep-merged with the override
    3. Disabled → {"success": False, "message"}
    4. Timed runner call → {"success", "algorithm", "processing_time_ms", "result"}
       Runner exception → {"success": False, "algorithm", "error"}

Author: System Architect
Date: 2025-12-14
"""

import asyncio
import copy
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from feedcache.core.config.constants import DEFAULT_TIMEZONE, Stage
from feedcache.core.exceptions import (
    ConfigurationError,
    FeedCacheError,
    InvalidCronExpression,
    UnknownJobError,
)
from feedcache.core.logging import get_logger, log_stage
from feedcache.infrastructure.monitoring.metrics_collector import MetricsCollector
from feedcache.scheduling.cron import CronExpression, CronHandle, CronScheduler, resolve_timezone
from feedcache.scheduling.jobs import JobRunner

logger = get_logger(__name__)


def deep_merge(base: Mapping[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``patch`` into a copy of ``base``."""
    merged = copy.deepcopy(dict(base))
    for key, value in patch.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


@dataclass
class JobDescriptor:
    """Live state of one registered job."""

    name: str
    cron_expression: str
    enabled: bool = True
    config: dict[str, Any] = field(default_factory=dict)
    running: bool = False
    last_run: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "cron": self.cron_expression,
            "running": self.running,
            "config": copy.deepcopy(self.config),
            "last_run": dict(self.last_run) if self.last_run else None,
        }


class JobOrchestrator:
    """
    Usage:
        orchestrator = JobOrchestrator(
            settings.scheduler.job_definitions(),
            {"hot_score": HotScoreJob(batch), ...},
            timezone="Asia/Taipei",
        )
        orchestrator.start()
        await orchestrator.run_now("hot_score", {"force": True})
        orchestrator.stop()
    """

    # Keys of an update_config entry that are not job options
    _DESCRIPTOR_KEYS = ("enabled", "cron")

    def __init__(
        self,
        definitions: Mapping[str, Mapping[str, Any]],
        runners: Mapping[str, JobRunner],
        *,
        timezone: str = DEFAULT_TIMEZONE,
        scheduler: CronScheduler | None = None,
        metrics: MetricsCollector | None = None,
    ):
        missing = sorted(set(definitions) - set(runners))
        if missing:
            raise ConfigurationError(f"No runner registered for jobs: {', '.join(missing)}")

        resolve_timezone(timezone)
        self._timezone = timezone
        self._scheduler = scheduler or CronScheduler()
        self._metrics = metrics
        self._runners = dict(runners)
        self._jobs: dict[str, JobDescriptor] = {}
        self._handles: dict[str, CronHandle] = {}
        self._started = False

        for name, definition in definitions.items():
            CronExpression.parse(definition["cron"])
            self._jobs[name] = JobDescriptor(
                name=name,
                cron_expression=definition["cron"],
                enabled=bool(definition.get("enabled", True)),
                config=copy.deepcopy(dict(definition.get("config", {}))),
            )

        logger.info("Job orchestrator initialized", stage="ORCH.0", jobs=list(self._jobs), timezone=timezone)

    @property
    def started(self) -> bool:
        return self._started

    @property
    def job_names(self) -> list[str]:
        return list(self._jobs)

    def get_job(self, name: str) -> JobDescriptor:
        """
        Raises:
            UnknownJobError: Name not registered
        """
        try:
            return self._jobs[name]
        except KeyError:
            raise UnknownJobError(f"Unknown job: {name}", details={"known_jobs": list(self._jobs)}) from None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Register a cron trigger per job. Calling it again is a no-op."""
        if self._started:
            return
        for name in self._jobs:
            self._register(name)
        self._started = True
        log_stage(logger, Stage.ORCHESTRATION.value, "Job orchestrator started", jobs=len(self._handles))

    def stop(self) -> None:
        """Deregister every trigger; runs in progress finish on their own."""
        if not self._started:
            return
        for handle in self._handles.values():
            handle.stop()
        self._handles.clear()
        self._started = False
        log_stage(logger, Stage.ORCHESTRATION.value, "Job orchestrator stopped")

    def _register(self, name: str) -> None:
        job = self._jobs[name]
        previous = self._handles.pop(name, None)
        if previous is not None:
            previous.stop()
        self._handles[name] = self._scheduler.schedule(
            job.cron_expression,
            lambda n=name: self._execute(n, None),
            self._timezone,
            name=name,
        )

    # =========================================================================
    # Run path
    # =========================================================================

    async def _execute(self, name: str, override: Mapping[str, Any] | None) -> dict[str, Any]:
        job = self._jobs[name]

        if job.running:
            log_stage(
                logger,
                Stage.ORCHESTRATION.value,
                "Job already running, trigger skipped",
                level="warning",
                job=name,
            )
            if self._metrics:
                self._metrics.record_job_run(name, "skipped")
            return {"success": False, "skipped": True, "algorithm": name, "message": f"{name} is already running"}

        override = dict(override or {})
        enabled = bool(override.pop("enabled", job.enabled))
        if not enabled:
            log_stage(logger, Stage.ORCHESTRATION.value, "Job disabled, run skipped", job=name)
            if self._metrics:
                self._metrics.record_job_run(name, "disabled")
            return {"success": False, "algorithm": name, "message": f"{name} is disabled"}

        config = deep_merge(job.config, override)
        job.running = True
        started_at = datetime.now(timezone.utc)
        started = time.perf_counter()
        log_stage(logger, Stage.ORCHESTRATION.value, "Job started", job=name, config=config)

        try:
            result = await self._runners[name](config)
        except Exception as e:
            elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
            error = e.message if isinstance(e, FeedCacheError) else str(e)
            logger.error(
                "Job failed",
                stage=Stage.ORCHESTRATION.value,
                job=name,
                error=error,
                error_type=type(e).__name__,
                duration_ms=elapsed_ms,
            )
            job.last_run = {
                "success": False,
                "started_at": started_at.isoformat(),
                "processing_time_ms": elapsed_ms,
                "error": error,
            }
            if self._metrics:
                self._metrics.record_job_run(name, "failed", elapsed_ms / 1000)
            return {"success": False, "algorithm": name, "error": error}
        finally:
            job.running = False

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        if hasattr(result, "to_dict"):
            result = result.to_dict()
        success = bool(result.get("success", True)) if isinstance(result, Mapping) else True

        job.last_run = {
            "success": success,
            "started_at": started_at.isoformat(),
            "processing_time_ms": elapsed_ms,
        }
        if self._metrics:
            self._metrics.record_job_run(name, "success" if success else "failed", elapsed_ms / 1000)
        log_stage(logger, Stage.ORCHESTRATION.value, "Job finished", job=name, success=success, duration_ms=elapsed_ms)

        return {"success": success, "algorithm": name, "processing_time_ms": elapsed_ms, "result": result}

    async def run_now(self, name: str, override: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """
        Run one job outside its cadence, through the same guarded path.

        Raises:
            UnknownJobError: Name not registered
        """
        self.get_job(name)
        return await self._execute(name, override)

    async def run_all(self, overrides: Mapping[str, Mapping[str, Any]] | None = None) -> dict[str, Any]:
        """Run every job concurrently; ``overrides`` is keyed by job name."""
        overrides = overrides or {}
        unknown = sorted(set(overrides) - set(self._jobs))
        if unknown:
            raise UnknownJobError(f"Unknown jobs: {', '.join(unknown)}")

        started = time.perf_counter()
        names = list(self._jobs)
        outcomes = await asyncio.gather(
            *(self._execute(name, overrides.get(name)) for name in names),
            return_exceptions=True,
        )

        results = []
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, BaseException):
                results.append({"algorithm": name, "success": False, "result": {"error": str(outcome)}})
            else:
                results.append({"algorithm": name, "success": bool(outcome.get("success")), "result": outcome})

        successful = sum(1 for r in results if r["success"])
        total_ms = round((time.perf_counter() - started) * 1000, 2)
        log_stage(
            logger,
            Stage.ORCHESTRATION.value,
            "All jobs finished",
            successful=successful,
            failed=len(results) - successful,
            duration_ms=total_ms,
        )
        return {
            "success": successful > 0,
            "total_processing_time_ms": total_ms,
            "successful_updates": successful,
            "failed_updates": len(results) - successful,
            "results": results,
        }

    # =========================================================================
    # Status & configuration
    # =========================================================================

    def get_status(self) -> dict[str, Any]:
        jobs = {}
        for name, job in self._jobs.items():
            status = job.to_dict()
            handle = self._handles.get(name)
            status["next_run"] = handle.next_run.isoformat() if handle and handle.next_run else None
            jobs[name] = status
        return {"started": self._started, "timezone": self._timezone, "jobs": jobs}

    def update_config(self, partial: Mapping[str, Mapping[str, Any]]) -> dict[str, Any]:
        """
        Merge ``{job_name: {"enabled"?, "cron"?, **options}}`` into the live config.

        Validation happens before anything is applied. Jobs whose cron changed
        are re-registered when the orchestrator is running.

        Raises:
            ConfigurationError: Unknown job name or invalid cron expression
        """
        unknown = sorted(set(partial) - set(self._jobs))
        if unknown:
            raise ConfigurationError(f"Unknown jobs in config update: {', '.join(unknown)}")
        for name, changes in partial.items():
            if not isinstance(changes, Mapping):
                raise ConfigurationError(f"Config update for {name} must be a mapping")
            if "cron" in changes:
                try:
                    CronExpression.parse(changes["cron"])
                except InvalidCronExpression as e:
                    raise ConfigurationError(e.message, details={"job": name}) from e

        for name, changes in partial.items():
            job = self._jobs[name]
            if "enabled" in changes:
                job.enabled = bool(changes["enabled"])
            options = {k: v for k, v in changes.items() if k not in self._DESCRIPTOR_KEYS}
            job.config = deep_merge(job.config, options)

            if "cron" in changes and changes["cron"] != job.cron_expression:
                job.cron_expression = changes["cron"]
                if self._started:
                    self._register(name)

        log_stage(logger, Stage.ORCHESTRATION.value, "Job configuration updated", jobs=list(partial))
        return {name: job.to_dict() for name, job in self._jobs.items()}
