"""
Job Queue Backend Protocol

Author: System Architect
Date: 2025-12-08
"""

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass
class QueueMessage:
    """A consumed message: backend id plus decoded payload."""

    message_id: str
    payload: dict[str, Any]


@runtime_checkable
class JobQueueBackend(Protocol):
    """
    Durable delayed job queue used by the retry queue.

    Implementations:
    - RedisJobQueue: Redis Streams consumer group + delayed sorted set
    - InMemoryJobQueue (tests/test_fixtures/backends.py): test double
    """

    async def enqueue(self, payload: dict[str, Any], delay_ms: int = 0) -> str:
        """Add a job; delayed jobs become visible after ``delay_ms``. Returns job id."""
        ...

    async def consume(self, consumer: str, batch_size: int, block_ms: int) -> list[QueueMessage]:
        """
        Read up to ``batch_size`` ready jobs for ``consumer``.

        Jobs consumed but never acknowledged are delivered again once they
        have been idle for the backend's reclaim time.
        """
        ...

    async def acknowledge(self, message_id: str) -> None:
        """Mark a job as processed."""
        ...

    async def promote_due(self) -> int:
        """Move delayed jobs whose time has come into the ready stream."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        ...
