"""
Admin API Models

Request and response models for the job control and cache endpoints.

Job options are free-form per job (limit/force/batch_size for hot_score,
version_level for the feed refresh jobs), so override bodies are plain
mappings validated by the orchestrator rather than by a schema here.

Author: System Architect
Date: 2025-12-15
"""

from typing import Any

from pydantic import BaseModel, Field, model_validator

from feedcache.core.config.constants import VersionLevel

# ============================================================================
# JOB CONTROL
# ============================================================================


class RunJobRequest(BaseModel):
    """Body of ``POST /admin/jobs/{name}/run``."""

    override: dict[str, Any] = Field(
        default_factory=dict,
        description="Options deep-merged into the job config for this run only; "
        "'enabled' overrides the job's switch",
    )


class RunAllRequest(BaseModel):
    """Body of ``POST /admin/jobs/run-all``."""

    overrides: dict[str, dict[str, Any]] = Field(
        default_factory=dict, description="Per-job overrides keyed by job name"
    )


class JobConfigUpdateRequest(BaseModel):
    """
    Body of ``PATCH /admin/jobs/config``.

    Example:
        {"jobs": {"hot_score": {"cron": "*/30 * * * *", "limit": 500},
                  "content_based": {"enabled": false}}}
    """

    jobs: dict[str, dict[str, Any]] = Field(..., description="Partial config keyed by job name")


class JobRunResponse(BaseModel):
    """Outcome of one job run (also used for skipped and disabled runs)."""

    success: bool
    algorithm: str
    processing_time_ms: float | None = None
    result: Any = None
    error: str | None = None
    message: str | None = None
    skipped: bool = False


class RunAllResponse(BaseModel):
    success: bool
    total_processing_time_ms: float = Field(..., ge=0)
    successful_updates: int = Field(..., ge=0)
    failed_updates: int = Field(..., ge=0)
    results: list[dict[str, Any]]


# ============================================================================
# CACHE
# ============================================================================


class InvalidateRequest(BaseModel):
    """
    Body of ``POST /admin/cache/invalidate``.

    Exactly one target kind per request: a business ``operation`` with its
    ``params``, a glob ``pattern``, explicit ``keys``, or the score cache
    families (``score_cache_level``).
    """

    operation: str | None = Field(default=None, description="Invalidation operation name")
    params: dict[str, Any] = Field(default_factory=dict, description="Operation parameters")
    pattern: str | None = Field(default=None, description="Glob pattern of keys to delete")
    keys: list[str] = Field(default_factory=list, description="Exact keys to delete")
    score_cache_level: VersionLevel | None = Field(
        default=None, description="Bump the hot score cache families at this level"
    )
    force_invalidate: bool = Field(default=False, description="Clear the recent-targets log first")

    @model_validator(mode="after")
    def check_single_target(self) -> "InvalidateRequest":
        targets = [
            self.operation is not None,
            self.pattern is not None,
            bool(self.keys),
            self.score_cache_level is not None,
        ]
        if sum(targets) != 1:
            raise ValueError(
                "Provide exactly one of: operation, pattern, keys, score_cache_level"
            )
        return self


class InvalidateResponse(BaseModel):
    accepted: bool
    target: str
    deleted_keys: int = Field(..., ge=0)
    patterns: list[str] = Field(default_factory=list)
    reason: str | None = None
    versions: dict[str, Any] | None = None
