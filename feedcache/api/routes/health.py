"""
Health Check Routes

The service keeps answering when Redis is down (every read computes
directly), so health reports "degraded" rather than failing the check.

Author: System Architect
Date: 2025-12-15
"""

from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel

from feedcache.api.dependencies import ContainerDep

router = APIRouter(prefix="/health", tags=["Health"])


class HealthResponse(BaseModel):
    """Standard health check response model."""

    status: str  # "healthy" or "degraded"
    timestamp: str  # ISO 8601 timestamp
    components: dict | None = None


@router.get("", response_model=HealthResponse)
async def health_check(container: ContainerDep):
    """
    Composite health: cache backend, version store, retry worker and scheduler.

    Returns:
        HealthResponse
    """
    cache_health = await container.cache.health_check()
    retry_stats = container.retry_queue.get_stats()
    orchestrator_status = container.orchestrator.get_status()

    status = cache_health["status"]
    if not retry_stats["running"]:
        status = "degraded"

    return HealthResponse(
        status=status,
        timestamp=datetime.now(timezone.utc).isoformat(),
        components={
            "cache": cache_health,
            "retry_queue": retry_stats,
            "scheduler": {
                "started": orchestrator_status["started"],
                "timezone": orchestrator_status["timezone"],
                "jobs": len(orchestrator_status["jobs"]),
            },
        },
    )
