"""
Scheduler Exceptions

Author: System Architect
Date: 2025-12-08
"""

from feedcache.core.exceptions.base import FeedCacheError


class SchedulerError(FeedCacheError):
    """Base exception for cron and orchestrator errors."""
    pass


class InvalidCronExpression(SchedulerError):
    """Raised when a cron expression cannot be parsed."""
    pass


class UnknownJobError(SchedulerError):
    """Raised when a job name is not registered with the orchestrator."""
    pass
