"""
Unit Tests for the Redis Job Queue

Redis commands are mocked; the tests check which commands are issued and
how failures surface.
"""

from unittest.mock import AsyncMock, MagicMock

import orjson
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from feedcache.core.exceptions import QueueConsumerError, QueueError
from feedcache.infrastructure.message_queue.redis_queue import JobSerializer, RedisJobQueue


@pytest.fixture
def redis_client():
    client = MagicMock()
    client.client = AsyncMock()
    client.client.xadd.return_value = "1700000000000-0"
    client.client.xreadgroup.return_value = []
    client.client.xautoclaim.return_value = ["0-0", [], []]
    client.client.zrangebyscore.return_value = []
    return client


@pytest.fixture
def queue(redis_client):
    return RedisJobQueue(redis_client, "hot-score", "score-workers", enqueue_attempts=2)


@pytest.mark.unit
class TestJobSerializer:
    """Test suite for JobSerializer."""

    def test_decode_object(self):
        assert JobSerializer.decode('{"item_id": "m1"}') == {"item_id": "m1"}

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]", ""])
    def test_decode_rejects_bad_payloads(self, raw):
        with pytest.raises(QueueConsumerError):
            JobSerializer.decode(raw)


@pytest.mark.unit
class TestInitialization:
    """Consumer group creation."""

    @pytest.mark.asyncio
    async def test_group_created_once(self, queue, redis_client):
        await queue.enqueue({"item_id": "m1"})
        await queue.enqueue({"item_id": "m2"})

        redis_client.client.xgroup_create.assert_awaited_once_with(
            "queue:hot-score", "score-workers", id="0", mkstream=True
        )

    @pytest.mark.asyncio
    async def test_existing_group_tolerated(self, queue, redis_client):
        redis_client.client.xgroup_create.side_effect = ResponseError("BUSYGROUP Consumer Group name already exists")

        assert await queue.enqueue({"item_id": "m1"}) == "1700000000000-0"

    @pytest.mark.asyncio
    async def test_group_failure_raises(self, queue, redis_client):
        redis_client.client.xgroup_create.side_effect = ResponseError("NOPERM")

        with pytest.raises(QueueError):
            await queue.enqueue({"item_id": "m1"})


@pytest.mark.unit
class TestEnqueue:
    """Immediate and delayed enqueue."""

    @pytest.mark.asyncio
    async def test_immediate_goes_to_stream(self, queue, redis_client):
        message_id = await queue.enqueue({"item_id": "m1"})

        assert message_id == "1700000000000-0"
        args, kwargs = redis_client.client.xadd.call_args
        assert args[0] == "queue:hot-score"
        assert orjson.loads(args[1]["payload"]) == {"item_id": "m1"}
        assert kwargs == {"maxlen": 10000, "approximate": True}
        redis_client.client.zadd.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delayed_goes_to_sorted_set(self, queue, redis_client):
        job_id = await queue.enqueue({"item_id": "m1", "job_id": "job-1"}, delay_ms=5000)

        assert job_id == "job-1"
        key, mapping = redis_client.client.zadd.call_args.args
        assert key == "queue:delayed:hot-score"
        ((encoded, ready_at),) = mapping.items()
        assert orjson.loads(encoded) == {"item_id": "m1", "job_id": "job-1"}
        assert ready_at > 0
        redis_client.client.xadd.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delayed_job_gets_generated_id(self, queue):
        job_id = await queue.enqueue({"item_id": "m1"}, delay_ms=10)

        assert isinstance(job_id, str) and len(job_id) == 32

    @pytest.mark.asyncio
    async def test_transient_error_retried(self, queue, redis_client):
        redis_client.client.xadd.side_effect = [RedisConnectionError("reset"), "2-0"]

        assert await queue.enqueue({"item_id": "m1"}) == "2-0"
        assert redis_client.client.xadd.await_count == 2

    @pytest.mark.asyncio
    async def test_persistent_error_raises_queue_error(self, queue, redis_client):
        redis_client.client.xadd.side_effect = RedisConnectionError("down")

        with pytest.raises(QueueError):
            await queue.enqueue({"item_id": "m1"})
        assert redis_client.client.xadd.await_count == 2


@pytest.mark.unit
class TestPromoteAndConsume:
    """Delayed promotion, reads and acknowledgement."""

    @pytest.mark.asyncio
    async def test_promote_due_moves_claimed_jobs(self, queue, redis_client):
        redis_client.client.zrangebyscore.return_value = ['{"item_id": "m1"}', '{"item_id": "m2"}']
        redis_client.client.zrem.side_effect = [1, 0]

        assert await queue.promote_due() == 1
        redis_client.client.xadd.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_promote_failure_raises(self, queue, redis_client):
        redis_client.client.zrangebyscore.side_effect = RedisConnectionError("down")

        with pytest.raises(QueueError):
            await queue.promote_due()

    @pytest.mark.asyncio
    async def test_consume_decodes_messages(self, queue, redis_client):
        redis_client.client.xreadgroup.return_value = [
            ("queue:hot-score", [("1-0", {"payload": '{"item_id": "m1", "attempt": 0}'})])
        ]

        messages = await queue.consume("worker-1", batch_size=10, block_ms=100)

        assert len(messages) == 1
        assert messages[0].message_id == "1-0"
        assert messages[0].payload == {"item_id": "m1", "attempt": 0}

    @pytest.mark.asyncio
    async def test_undecodable_message_acknowledged_and_skipped(self, queue, redis_client):
        redis_client.client.xreadgroup.return_value = [
            ("queue:hot-score", [("1-0", {"payload": "{broken"}), ("2-0", {"payload": '{"item_id": "m2"}'})])
        ]

        messages = await queue.consume("worker-1", batch_size=10, block_ms=100)

        assert [m.message_id for m in messages] == ["2-0"]
        redis_client.client.xack.assert_awaited_once_with("queue:hot-score", "score-workers", "1-0")

    @pytest.mark.asyncio
    async def test_consume_failure_raises(self, queue, redis_client):
        redis_client.client.xreadgroup.side_effect = RedisConnectionError("down")

        with pytest.raises(QueueError):
            await queue.consume("worker-1", batch_size=10, block_ms=100)

    @pytest.mark.asyncio
    async def test_acknowledge_failure_raises(self, queue, redis_client):
        redis_client.client.xack.side_effect = RedisConnectionError("down")

        with pytest.raises(QueueError):
            await queue.acknowledge("1-0")

    @pytest.mark.asyncio
    async def test_get_depth(self, queue, redis_client):
        redis_client.client.xlen.return_value = 3
        redis_client.client.zcard.return_value = 2

        assert await queue.get_depth() == {"ready": 3, "delayed": 2}


@pytest.mark.unit
class TestReclaim:
    """Redelivery of entries left pending by a crashed or failing consumer."""

    @pytest.mark.asyncio
    async def test_idle_entries_returned_before_new_ones(self, queue, redis_client):
        redis_client.client.xautoclaim.return_value = [
            "0-0",
            [("1-0", {"payload": '{"item_id": "m1", "attempts": 1}'})],
            [],
        ]

        messages = await queue.consume("worker-2", batch_size=10, block_ms=100)

        assert [m.message_id for m in messages] == ["1-0"]
        assert messages[0].payload == {"item_id": "m1", "attempts": 1}
        redis_client.client.xautoclaim.assert_awaited_once_with(
            "queue:hot-score", "score-workers", "worker-2", 60000, start_id="0-0", count=10
        )
        redis_client.client.xreadgroup.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reads_new_entries_when_nothing_idle(self, queue, redis_client):
        redis_client.client.xreadgroup.return_value = [
            ("queue:hot-score", [("2-0", {"payload": '{"item_id": "m2"}'})])
        ]

        messages = await queue.consume("worker-1", batch_size=10, block_ms=100)

        assert [m.message_id for m in messages] == ["2-0"]
        redis_client.client.xautoclaim.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cursor_continues_from_last_claim(self, queue, redis_client):
        redis_client.client.xautoclaim.return_value = ["5-0", [("3-0", {"payload": '{"item_id": "m3"}'})], []]
        await queue.consume("worker-1", batch_size=1, block_ms=100)

        redis_client.client.xautoclaim.return_value = ["0-0", [], []]
        await queue.consume("worker-1", batch_size=1, block_ms=100)

        assert redis_client.client.xautoclaim.await_args.kwargs["start_id"] == "5-0"

    @pytest.mark.asyncio
    async def test_trimmed_entries_skipped(self, queue, redis_client):
        redis_client.client.xautoclaim.return_value = [
            "0-0",
            [(None, None), ("4-0", {"payload": '{"item_id": "m4"}'})],
            ["3-0"],
        ]

        messages = await queue.consume("worker-1", batch_size=10, block_ms=100)

        assert [m.message_id for m in messages] == ["4-0"]

    @pytest.mark.asyncio
    async def test_zero_idle_time_disables_reclaim(self, redis_client):
        queue = RedisJobQueue(redis_client, "hot-score", "score-workers", reclaim_idle_ms=0)

        await queue.consume("worker-1", batch_size=10, block_ms=100)

        redis_client.client.xautoclaim.assert_not_awaited()
        redis_client.client.xreadgroup.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reclaim_failure_raises(self, queue, redis_client):
        redis_client.client.xautoclaim.side_effect = RedisConnectionError("down")

        with pytest.raises(QueueError):
            await queue.consume("worker-1", batch_size=10, block_ms=100)
