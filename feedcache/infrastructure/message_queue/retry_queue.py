"""
Hot Score Retry Queue

Items whose recompute failed during a batch run are retried individually by
a background worker.

Architecture:
    RetryQueue (Public API)
        ├── RetryPolicy (attempt bound + exponential backoff)
        ├── RetryProcessor (re-fetch → score → persist for one job)
        └── worker loop (poll, process, acknowledge, graceful stop)

Flow:
    1. enqueue_retry(item_id) → job with attempts=0, ready immediately
    2. Worker consumes the job and recomputes the item
    3. Failure → attempts+1
         attempts < max_attempts → re-enqueue after
             min(base_delay_ms * 2**(attempts-1), max_delay_ms)
         attempts ≥ max_attempts → terminal log, job dropped
    4. The consumed message is acknowledged once its outcome is settled

Author: System Architect
Date: 2025-12-13
"""

import asyncio
import os
import socket
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from feedcache.core.config.constants import (
    RETRY_BASE_DELAY_MS,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_DELAY_MS,
    Stage,
)
from feedcache.core.exceptions import QueueConsumerError, StorageError
from feedcache.core.interfaces import ContentStore, JobQueueBackend, QueueMessage
from feedcache.core.logging import get_logger, log_stage
from feedcache.core.resilience import fail_soft
from feedcache.infrastructure.monitoring.metrics_collector import MetricsCollector
from feedcache.scoring.hot_score import ContentSnapshot, compute_hot_score

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# JOB + POLICY
# =============================================================================


@dataclass
class RetryJob:
    """One pending retry of a single item's hot score."""

    item_id: str
    last_error: str | None = None
    attempts: int = 0
    enqueued_at: float = field(default_factory=time.time)

    def to_payload(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "last_error": self.last_error,
            "attempts": self.attempts,
            "enqueued_at": self.enqueued_at,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "RetryJob":
        """
        Raises:
            QueueConsumerError: When the payload has no item id or bad counters
        """
        item_id = payload.get("item_id")
        if not item_id:
            raise QueueConsumerError("Retry job has no item_id", details={"payload": payload})
        try:
            attempts = int(payload.get("attempts") or 0)
            enqueued_at = float(payload.get("enqueued_at") or time.time())
        except (TypeError, ValueError) as e:
            raise QueueConsumerError(f"Malformed retry job: {e}", details={"payload": payload}) from e
        return cls(
            item_id=str(item_id),
            last_error=payload.get("last_error"),
            attempts=attempts,
            enqueued_at=enqueued_at,
        )


@dataclass
class RetryPolicy:
    """
    Attributes:
        max_attempts: Failed attempts after which a job is dropped
        base_delay_ms: Delay before the first re-run
        max_delay_ms: Backoff cap
    """

    max_attempts: int = RETRY_MAX_ATTEMPTS
    base_delay_ms: int = RETRY_BASE_DELAY_MS
    max_delay_ms: int = RETRY_MAX_DELAY_MS

    def should_retry(self, attempts: int) -> bool:
        return attempts < self.max_attempts

    def delay_ms(self, attempts: int) -> int:
        """
        Backoff before re-running a job that has failed ``attempts`` times.

        Example (base 5s, cap 5min): 1 → 5s, 2 → 10s, 3 → 20s, 4 → 40s
        """
        return min(self.base_delay_ms * 2 ** max(attempts - 1, 0), self.max_delay_ms)


# =============================================================================
# PROCESSING
# =============================================================================


class RetryProcessor:
    """Recomputes the hot score of the item named by one job."""

    def __init__(
        self,
        store: ContentStore,
        *,
        storage_timeout: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._timeout = storage_timeout
        self._clock = clock

    async def process(self, job: RetryJob) -> float:
        """
        Returns:
            The persisted score

        Raises:
            StorageError: Item missing, unreadable, invalid, or write failed
        """
        fetched = await fail_soft(
            "get", lambda: self._store.get(job.item_id), timeout=self._timeout, key=job.item_id, stage=Stage.RETRY.value
        )
        if not fetched.ok:
            raise StorageError(f"Reading item failed: {fetched.error}")
        if fetched.value is None:
            raise StorageError("Content item not found")

        now = self._clock()
        snapshot = ContentSnapshot.from_document(fetched.value)
        score = compute_hot_score(snapshot, now)

        written = await fail_soft(
            "update_hot_score",
            lambda: self._store.update_hot_score(snapshot.id, score, now),
            timeout=self._timeout,
            key=job.item_id,
            stage=Stage.RETRY.value,
        )
        if not written.ok:
            raise StorageError(f"Writing hot score failed: {written.error}")
        if not written.value:
            raise StorageError("Hot score write was rejected")
        return score


# =============================================================================
# PUBLIC API
# =============================================================================


class RetryQueue:
    """
    Durable retry queue with a background worker.

    Usage:
        retry_queue = RetryQueue(job_backend, content_store)
        retry_queue.start()

        await retry_queue.enqueue_retry("m42", {"error": "write timed out"})

        await retry_queue.close(timeout=5.0)
    """

    def __init__(
        self,
        backend: JobQueueBackend,
        store: ContentStore,
        *,
        policy: RetryPolicy | None = None,
        metrics: MetricsCollector | None = None,
        consumer_name: str | None = None,
        batch_size: int = 10,
        poll_interval_ms: int = 2000,
        error_backoff_seconds: float = 5.0,
        storage_timeout: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._backend = backend
        self._policy = policy or RetryPolicy()
        self._processor = RetryProcessor(store, storage_timeout=storage_timeout, clock=clock)
        self._metrics = metrics
        self._consumer_name = consumer_name or f"{socket.gethostname()}-{os.getpid()}"
        self._batch_size = batch_size
        self._poll_interval_ms = poll_interval_ms
        self._error_backoff = error_backoff_seconds

        self._running = False
        self._task: asyncio.Task | None = None
        self._stats = {"enqueued": 0, "succeeded": 0, "rescheduled": 0, "dropped": 0}

    @property
    def running(self) -> bool:
        return self._running

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def _record(self, outcome: str) -> None:
        self._stats[outcome] = self._stats.get(outcome, 0) + 1
        if self._metrics:
            self._metrics.record_retry_job(outcome)

    # -------------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------------

    async def enqueue_retry(self, item_id: str, meta: dict[str, Any] | None = None) -> str | None:
        """
        Best-effort enqueue of a failed item.

        Args:
            item_id: Content item id
            meta: Optional {"error": str, "attempts": int}

        Returns:
            Job id, or None when the backend refused (already logged)
        """
        meta = meta or {}
        job = RetryJob(item_id=item_id, last_error=meta.get("error"), attempts=int(meta.get("attempts", 0)))
        result = await fail_soft(
            "enqueue_retry",
            lambda: self._backend.enqueue(job.to_payload()),
            key=item_id,
            stage=Stage.RETRY.value,
        )
        if not result.ok:
            self._record("enqueue_failed")
            return None

        self._record("enqueued")
        log_stage(logger, Stage.RETRY.value, "Retry job enqueued", level="debug", item_id=item_id, job_id=result.value)
        return result.value

    # -------------------------------------------------------------------------
    # Consumer side
    # -------------------------------------------------------------------------

    async def handle_message(self, message: QueueMessage) -> str:
        """
        Settle one consumed job.

        Returns:
            Outcome: "succeeded", "rescheduled", "dropped" or "invalid".
            "requeue_failed" leaves the message unacknowledged.
        """
        try:
            job = RetryJob.from_payload(message.payload)
        except QueueConsumerError as e:
            log_stage(logger, Stage.RETRY.value, "Dropping malformed retry job", level="error", id=message.message_id, error=e.message)
            await self._backend.acknowledge(message.message_id)
            self._record("invalid")
            return "invalid"

        try:
            score = await self._processor.process(job)
        except Exception as e:
            outcome = await self._after_failure(job, e)
            if outcome != "requeue_failed":
                await self._backend.acknowledge(message.message_id)
            return outcome

        await self._backend.acknowledge(message.message_id)
        self._record("succeeded")
        log_stage(logger, Stage.RETRY.value, "Retry succeeded", item_id=job.item_id, attempts=job.attempts, hot_score=score)
        return "succeeded"

    async def _after_failure(self, job: RetryJob, error: Exception) -> str:
        attempts = job.attempts + 1
        reason = getattr(error, "message", None) or str(error)

        if not self._policy.should_retry(attempts):
            log_stage(
                logger,
                Stage.RETRY.value,
                "Retry attempts exhausted, dropping job",
                level="error",
                item_id=job.item_id,
                attempts=attempts,
                last_error=reason,
            )
            self._record("dropped")
            return "dropped"

        delay_ms = self._policy.delay_ms(attempts)
        retry = RetryJob(item_id=job.item_id, last_error=reason, attempts=attempts, enqueued_at=job.enqueued_at)
        requeued = await fail_soft(
            "requeue_retry",
            lambda: self._backend.enqueue(retry.to_payload(), delay_ms=delay_ms),
            key=job.item_id,
            stage=Stage.RETRY.value,
        )
        if not requeued.ok:
            return "requeue_failed"

        log_stage(
            logger,
            Stage.RETRY.value,
            "Retry rescheduled",
            level="warning",
            item_id=job.item_id,
            attempts=attempts,
            delay_ms=delay_ms,
            last_error=reason,
        )
        self._record("rescheduled")
        return "rescheduled"

    async def poll_once(self) -> int:
        """Promote due jobs and settle one batch. Returns the batch size."""
        await self._backend.promote_due()
        messages = await self._backend.consume(self._consumer_name, self._batch_size, self._poll_interval_ms)
        for message in messages:
            await self.handle_message(message)
        return len(messages)

    async def _run(self) -> None:
        log_stage(logger, Stage.RETRY.value, "Retry worker started", consumer=self._consumer_name)
        while self._running:
            try:
                if not await self.poll_once():
                    await asyncio.sleep(0.1)
            except asyncio.CancelledError:
                log_stage(logger, Stage.RETRY.value, "Retry worker cancelled", consumer=self._consumer_name)
                break
            except Exception as e:
                logger.error(
                    "Retry worker error, backing off",
                    stage=Stage.RETRY.value,
                    consumer=self._consumer_name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await asyncio.sleep(self._error_backoff)
        log_stage(logger, Stage.RETRY.value, "Retry worker stopped", consumer=self._consumer_name)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the background worker (idempotent)."""
        if self._task is not None and not self._task.done():
            return
        self._running = True
        self._task = asyncio.create_task(self._run(), name=f"retry-worker-{self._consumer_name}")

    async def close(self, timeout: float = 5.0) -> None:
        """
        Stop the worker after its in-flight batch, then release the backend.

        The batch being processed is finished; after ``timeout`` seconds the
        worker task is cancelled.
        """
        self._running = False
        if self._task is not None:
            try:
                await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Retry worker shutdown timeout, cancelling task", stage=Stage.RETRY.value, timeout_seconds=timeout)
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    log_stage(logger, Stage.RETRY.value, "Retry worker task cancelled")
            self._task = None

        await self._backend.close()
        log_stage(logger, Stage.RETRY.value, "Retry queue closed", stats=dict(self._stats))

    def get_stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "consumer": self._consumer_name,
            "max_attempts": self._policy.max_attempts,
            **self._stats,
        }
