from feedcache.infrastructure.message_queue.redis_queue import RedisJobQueue
from feedcache.infrastructure.message_queue.retry_queue import (
    RetryJob,
    RetryPolicy,
    RetryProcessor,
    RetryQueue,
)

__all__ = [
    "RedisJobQueue",
    "RetryJob",
    "RetryPolicy",
    "RetryProcessor",
    "RetryQueue",
]
