"""
Admin Routes

Operational endpoints for the recompute jobs and the cache:

    GET   /admin/jobs                  orchestrator status (config, last run, next run)
    POST  /admin/jobs/{name}/run       run one job now, with an optional override
    POST  /admin/jobs/run-all          run every job concurrently
    PATCH /admin/jobs/config           merge partial job config (enabled, cron, options)
    GET   /admin/cache/stats           facade, monitor and version statistics
    GET   /admin/cache/report          plain-text performance report
    POST  /admin/cache/invalidate      operation / pattern / keys / score cache
    GET   /admin/metrics               Prometheus exposition

Unknown job names surface as UnknownJobError (404) and bad config as
ConfigurationError (400) through the application's exception handlers.

In production these endpoints belong behind authentication on an internal
port; none is applied here.

Author: System Architect
Date: 2025-12-15
"""

from fastapi import APIRouter, Response
from fastapi.responses import PlainTextResponse

from feedcache.api.dependencies import CacheDep, ContainerDep, InvalidatorDep, OrchestratorDep
from feedcache.api.models.admin import (
    InvalidateRequest,
    InvalidateResponse,
    JobConfigUpdateRequest,
    JobRunResponse,
    RunAllRequest,
    RunAllResponse,
    RunJobRequest,
)
from feedcache.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


# ============================================================================
# JOB CONTROL
# ============================================================================


@router.get("/jobs")
async def get_jobs(orchestrator: OrchestratorDep):
    """Registered jobs with their live config, last run and next run."""
    return orchestrator.get_status()


@router.post("/jobs/run-all", response_model=RunAllResponse)
async def run_all_jobs(orchestrator: OrchestratorDep, request: RunAllRequest | None = None):
    """Run every job concurrently; per-job overrides are optional."""
    overrides = request.overrides if request else {}
    logger.info("Manual run of all jobs requested", stage="API.ADMIN", jobs=list(overrides))
    return await orchestrator.run_all(overrides)


@router.post("/jobs/{name}/run", response_model=JobRunResponse)
async def run_job(name: str, orchestrator: OrchestratorDep, request: RunJobRequest | None = None):
    """
    Run one job outside its cadence.

    A job that is already running returns ``skipped: true`` instead of
    starting a second run.
    """
    override = request.override if request else {}
    logger.info("Manual job run requested", stage="API.ADMIN", job=name, override=override)
    return await orchestrator.run_now(name, override)


@router.patch("/jobs/config")
async def update_job_config(request: JobConfigUpdateRequest, orchestrator: OrchestratorDep):
    """Merge partial job configuration; changed cron expressions take effect immediately."""
    jobs = orchestrator.update_config(request.jobs)
    return {"success": True, "jobs": jobs}


# ============================================================================
# CACHE
# ============================================================================


@router.get("/cache/stats")
async def get_cache_stats(container: ContainerDep):
    """Facade, monitor, version and invalidation statistics."""
    return {
        "cache": container.cache.get_stats(),
        "versions": await container.versions.get_version_stats(),
        "invalidation": container.invalidator.get_invalidation_stats(),
    }


@router.get("/cache/report", response_class=PlainTextResponse)
async def get_cache_report(cache: CacheDep):
    return cache.get_performance_report()


@router.post("/cache/invalidate", response_model=InvalidateResponse)
async def invalidate_cache(
    request: InvalidateRequest, invalidator: InvalidatorDep, container: ContainerDep
):
    """
    Manual invalidation.

    Operations go through the same rule table as application events; an
    unknown operation or missing parameter is reported with
    ``accepted: false`` and touches nothing.
    """
    if request.operation is not None:
        report = await invalidator.invalidate_by_operation(
            request.operation, request.params, force_invalidate=request.force_invalidate
        )
        return InvalidateResponse(
            accepted=report.accepted,
            target=report.operation,
            deleted_keys=report.deleted_keys,
            patterns=report.patterns,
            reason=report.reason,
        )

    if request.force_invalidate:
        invalidator.reset()

    if request.pattern is not None:
        deleted = await invalidator.invalidate_pattern(request.pattern)
        return InvalidateResponse(
            accepted=True, target=request.pattern, deleted_keys=deleted, patterns=[request.pattern]
        )

    if request.keys:
        deleted = await invalidator.invalidate_keys(request.keys)
        return InvalidateResponse(accepted=True, target="keys", deleted_keys=deleted)

    result = await container.score_cache.invalidate(request.score_cache_level.value)
    return InvalidateResponse(
        accepted=True,
        target="score_cache",
        deleted_keys=result["deleted_keys"],
        versions=result["versions"],
    )


# ============================================================================
# METRICS
# ============================================================================


@router.get("/metrics")
async def get_prometheus_metrics(container: ContainerDep):
    """Prometheus text exposition format."""
    metrics = container.metrics
    return Response(content=metrics.get_prometheus_metrics(), media_type=metrics.get_content_type())
