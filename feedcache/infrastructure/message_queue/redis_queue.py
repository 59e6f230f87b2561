"""
Redis Job Queue - Streams + Delayed Sorted Set

Architecture:
    RedisJobQueue (Public API, JobQueueBackend)
        ├── StreamManager (stream lifecycle and consumer group)
        ├── DelayedJobSet (sorted set scored by ready-at milliseconds)
        └── JobSerializer (payload encoding/decoding)

Keys:
    queue:{name}            Redis Stream read through a consumer group
    queue:delayed:{name}    ZSET of encoded jobs, score = ready-at epoch ms

Delivery:
    - enqueue(delay_ms=0) → XADD (trimmed, approximate maxlen)
    - enqueue(delay_ms>0) → ZADD; promote_due() moves due jobs to the stream.
      ZREM decides which worker promotes a job, so each job is added once.
    - consume → XAUTOCLAIM entries left pending longer than the reclaim idle
      time (worker crash, failed requeue), otherwise XREADGROUP ">"
    - acknowledge → XACK

Enqueue retries transient Redis errors through tenacity before giving up
with QueueError.

Author: System Architect
Date: 2025-12-13
"""

import time
import uuid
from typing import Any

import orjson
from redis.exceptions import RedisError
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from feedcache.core.config.constants import REDIS_KEY_QUEUE_DELAYED, REDIS_KEY_QUEUE_STREAM
from feedcache.core.exceptions import QueueConsumerError, QueueError
from feedcache.core.interfaces import QueueMessage
from feedcache.core.logging import get_logger
from feedcache.infrastructure.cache.redis_client import RedisClient

logger = get_logger(__name__)

_PAYLOAD_FIELD = "payload"


# =============================================================================
# LAYER 1: STREAM MANAGEMENT
# =============================================================================


class StreamManager:
    """
    Stream lifecycle and consumer group operations.

    Consumer Group Pattern:
    - Stream: ordered log of ready jobs
    - Group: the worker pool
    - Consumer: one worker instance
    - Pending: delivered but not yet acknowledged
    """

    def __init__(self, stream_name: str, group_name: str, redis_client: RedisClient):
        self._stream_name = stream_name
        self._group_name = group_name
        self._redis = redis_client
        self._initialized = False
        # XAUTOCLAIM scan position; "0-0" restarts from the head of the pending list
        self._claim_cursor = "0-0"

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """
        Create the consumer group (idempotent).

        STAGE-QUEUE.1: Initialization

        Raises:
            QueueError: If the group cannot be created
        """
        if self._initialized:
            return

        try:
            await self._redis.client.xgroup_create(
                self._stream_name, self._group_name, id="0", mkstream=True
            )
            logger.info("Consumer group created", stage="QUEUE.1", group=self._group_name)
        except RedisError as e:
            if "BUSYGROUP" not in str(e):
                logger.error("Failed to create consumer group", stage="QUEUE.ERR", error=str(e))
                raise QueueError(f"Failed to create consumer group: {e}") from e
            logger.debug("Consumer group already exists", stage="QUEUE.1", group=self._group_name)

        self._initialized = True

    async def add(self, fields: dict[str, str], max_len: int) -> str:
        return await self._redis.client.xadd(
            self._stream_name, fields, maxlen=max_len, approximate=True
        )

    async def read(
        self, consumer_name: str, batch_size: int, block_ms: int
    ) -> list[tuple[str, dict[str, str]]]:
        response = await self._redis.client.xreadgroup(
            self._group_name,
            consumer_name,
            {self._stream_name: ">"},
            count=batch_size,
            block=block_ms,
        )

        messages = []
        for _stream, entries in response or []:
            for message_id, fields in entries:
                messages.append((message_id, fields))
        return messages

    async def claim_idle(
        self, consumer_name: str, min_idle_ms: int, batch_size: int
    ) -> list[tuple[str, dict[str, str]]]:
        """
        Take over pending entries idle for at least ``min_idle_ms``.

        STAGE-QUEUE.RECLAIM: Redelivery of unacknowledged jobs
        """
        response = await self._redis.client.xautoclaim(
            self._stream_name,
            self._group_name,
            consumer_name,
            min_idle_ms,
            start_id=self._claim_cursor,
            count=batch_size,
        )
        self._claim_cursor = response[0] or "0-0"

        # Entries trimmed from the stream come back without fields
        return [(message_id, fields) for message_id, fields in response[1] if message_id and fields]

    async def acknowledge(self, message_id: str) -> None:
        await self._redis.client.xack(self._stream_name, self._group_name, message_id)

    async def length(self) -> int:
        return await self._redis.client.xlen(self._stream_name)


# =============================================================================
# LAYER 2: DELAYED JOBS
# =============================================================================


class DelayedJobSet:
    """Sorted set of jobs waiting for their ready-at time."""

    def __init__(self, key: str, redis_client: RedisClient):
        self._key = key
        self._redis = redis_client

    async def add(self, encoded: str, ready_at_ms: int) -> None:
        await self._redis.client.zadd(self._key, {encoded: ready_at_ms})

    async def due(self, now_ms: int, limit: int) -> list[str]:
        return await self._redis.client.zrangebyscore(self._key, 0, now_ms, start=0, num=limit)

    async def claim(self, encoded: str) -> bool:
        """Remove one job; True only for the caller that removed it."""
        return await self._redis.client.zrem(self._key, encoded) == 1

    async def size(self) -> int:
        return await self._redis.client.zcard(self._key)


# =============================================================================
# LAYER 3: SERIALIZATION
# =============================================================================


class JobSerializer:
    """Jobs travel as one orjson document in a single stream field."""

    @staticmethod
    def encode(payload: dict[str, Any]) -> str:
        return orjson.dumps(payload).decode("utf-8")

    @staticmethod
    def decode(raw: str) -> dict[str, Any]:
        try:
            payload = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            raise QueueConsumerError(f"Undecodable job payload: {e}") from e
        if not isinstance(payload, dict):
            raise QueueConsumerError("Job payload is not an object")
        return payload


# =============================================================================
# LAYER 4: PUBLIC API
# =============================================================================


class RedisJobQueue:
    """
    Durable delayed job queue on Redis.

    Usage:
        queue = RedisJobQueue(redis_client, "hot-score", "score-workers")
        await queue.enqueue({"item_id": "m1"}, delay_ms=5000)

        await queue.promote_due()
        for message in await queue.consume("worker-1", batch_size=10, block_ms=2000):
            ...
            await queue.acknowledge(message.message_id)
    """

    PROMOTE_BATCH = 100

    def __init__(
        self,
        redis_client: RedisClient,
        name: str,
        group: str,
        *,
        max_len: int = 10000,
        enqueue_attempts: int = 3,
        reclaim_idle_ms: int = 60000,
    ):
        self._redis = redis_client
        self._stream_name = f"{REDIS_KEY_QUEUE_STREAM}:{name}"
        self._delayed_name = f"{REDIS_KEY_QUEUE_DELAYED}:{name}"
        self._streams = StreamManager(self._stream_name, group, redis_client)
        self._delayed = DelayedJobSet(self._delayed_name, redis_client)
        self._serializer = JobSerializer()
        self._max_len = max_len
        self._enqueue_attempts = enqueue_attempts
        self._reclaim_idle_ms = reclaim_idle_ms

        logger.info(
            "Redis job queue initialized",
            stage="QUEUE.0",
            stream=self._stream_name,
            delayed=self._delayed_name,
            group=group,
        )

    async def _ensure_initialized(self) -> None:
        if not self._streams.initialized:
            await self._streams.initialize()

    async def enqueue(self, payload: dict[str, Any], delay_ms: int = 0) -> str:
        """
        Add a job, delayed when ``delay_ms`` > 0.

        Returns:
            Stream message id, or the generated job id for delayed jobs

        Raises:
            QueueError: When Redis keeps failing after the retry attempts
        """
        await self._ensure_initialized()

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._enqueue_attempts),
                wait=wait_exponential_jitter(initial=0.1, max=1.0),
                retry=retry_if_exception_type(RedisError),
                before_sleep=lambda state: logger.info(
                    "Enqueue retry",
                    stage="QUEUE.RETRY",
                    attempt=state.attempt_number,
                    stream=self._stream_name,
                ),
            ):
                with attempt:
                    return await self._enqueue_once(payload, delay_ms)
        except (RedisError, RetryError) as e:
            logger.error("Failed to enqueue job", stage="QUEUE.ERR", error=str(e))
            raise QueueError(f"Failed to enqueue job: {e}") from e

    async def _enqueue_once(self, payload: dict[str, Any], delay_ms: int) -> str:
        if delay_ms > 0:
            job_id = payload.get("job_id") or uuid.uuid4().hex
            encoded = self._serializer.encode({**payload, "job_id": job_id})
            await self._delayed.add(encoded, int(time.time() * 1000) + delay_ms)
            logger.debug("Delayed job added", stage="QUEUE.PROD", job_id=job_id, delay_ms=delay_ms)
            return job_id

        message_id = await self._streams.add(
            {_PAYLOAD_FIELD: self._serializer.encode(payload)}, self._max_len
        )
        logger.debug("Job produced", stage="QUEUE.PROD", id=message_id)
        return message_id

    async def promote_due(self) -> int:
        """
        Move due delayed jobs into the stream.

        Returns:
            Number of jobs this caller promoted
        """
        await self._ensure_initialized()

        promoted = 0
        try:
            for encoded in await self._delayed.due(int(time.time() * 1000), self.PROMOTE_BATCH):
                if await self._delayed.claim(encoded):
                    await self._streams.add({_PAYLOAD_FIELD: encoded}, self._max_len)
                    promoted += 1
        except RedisError as e:
            raise QueueError(f"Failed to promote delayed jobs: {e}") from e

        if promoted:
            logger.debug("Delayed jobs promoted", stage="QUEUE.PROMOTE", count=promoted)
        return promoted

    async def consume(self, consumer: str, batch_size: int, block_ms: int) -> list[QueueMessage]:
        """
        Read up to ``batch_size`` jobs for ``consumer``.

        Entries delivered earlier but left unacknowledged for
        ``reclaim_idle_ms`` are claimed and returned first; new entries are
        read only when none are due for redelivery. A ``reclaim_idle_ms`` of
        0 disables redelivery. Undecodable entries are acknowledged and
        skipped.

        Raises:
            QueueError: On Redis failure
        """
        await self._ensure_initialized()

        try:
            raw = []
            if self._reclaim_idle_ms > 0:
                raw = await self._streams.claim_idle(consumer, self._reclaim_idle_ms, batch_size)
                if raw:
                    logger.warning(
                        "Reclaimed unacknowledged jobs",
                        stage="QUEUE.RECLAIM",
                        count=len(raw),
                        consumer=consumer,
                    )
            if not raw:
                raw = await self._streams.read(consumer, batch_size, block_ms)
        except RedisError as e:
            raise QueueError(f"Failed to consume jobs: {e}") from e

        messages = []
        for message_id, fields in raw:
            try:
                payload = self._serializer.decode(fields.get(_PAYLOAD_FIELD, ""))
            except QueueConsumerError as e:
                logger.error("Dropping undecodable job", stage="QUEUE.ERR", id=message_id, error=e.message)
                await self.acknowledge(message_id)
                continue
            messages.append(QueueMessage(message_id=message_id, payload=payload))
        return messages

    async def acknowledge(self, message_id: str) -> None:
        try:
            await self._streams.acknowledge(message_id)
        except RedisError as e:
            raise QueueError(f"Failed to acknowledge job: {e}") from e

    async def get_depth(self) -> dict[str, int]:
        """Ready and delayed job counts."""
        await self._ensure_initialized()
        return {"ready": await self._streams.length(), "delayed": await self._delayed.size()}

    async def close(self) -> None:
        """The Redis client is shared and closed by its owner."""
        logger.info("Redis job queue closed", stage="QUEUE.2", stream=self._stream_name)
