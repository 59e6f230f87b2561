from feedcache.scheduling.cron import CronExpression, CronHandle, CronScheduler
from feedcache.scheduling.jobs import FeedRefreshJob, HotScoreJob
from feedcache.scheduling.orchestrator import JobDescriptor, JobOrchestrator

__all__ = [
    "CronExpression",
    "CronHandle",
    "CronScheduler",
    "FeedRefreshJob",
    "HotScoreJob",
    "JobDescriptor",
    "JobOrchestrator",
]
