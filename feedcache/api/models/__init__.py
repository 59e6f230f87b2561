"""
API Models Package

- admin.py: Job control and cache endpoint models
"""

from feedcache.api.models.admin import (
    InvalidateRequest,
    InvalidateResponse,
    JobConfigUpdateRequest,
    JobRunResponse,
    RunAllRequest,
    RunAllResponse,
    RunJobRequest,
)

__all__ = [
    "InvalidateRequest",
    "InvalidateResponse",
    "JobConfigUpdateRequest",
    "JobRunResponse",
    "RunAllRequest",
    "RunAllResponse",
    "RunJobRequest",
]
