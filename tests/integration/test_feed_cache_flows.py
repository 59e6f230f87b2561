"""
Integration Tests for End-to-End Flows

Wires the real components together over the in-memory backends:
- Full hot score recompute through the orchestrator, score cache included
- Content update invalidation over a populated cache
- Failed items travelling through the retry queue until they succeed
"""

import asyncio

import pytest

from feedcache.container import build_container
from feedcache.infrastructure.cache.invalidator import Operation
from tests.test_fixtures.content_factory import ContentTestFactory


@pytest.fixture
def container(test_settings, kv_store, job_queue, content_store):
    return build_container(test_settings, kv_store=kv_store, job_backend=job_queue, content_store=content_store)


@pytest.mark.integration
class TestHotScoreRecomputeFlow:
    """Orchestrated force recompute over 100 items."""

    @pytest.mark.asyncio
    async def test_force_recompute_of_100_items(self, container, content_store, kv_store):
        for doc in ContentTestFactory.documents(100):
            content_store.add(doc)

        # Warm the score cache so the run has something to invalidate
        await container.score_cache.get_item_score("m1", lambda: 1.0)

        result = await container.orchestrator.run_now(
            "hot_score", {"force": True, "batch_size": 10, "limit": 1000}
        )

        assert result["success"] is True
        summary = result["result"]
        assert summary["updated_count"] == 100
        assert summary["error_count"] == 0
        assert summary["total_count"] == 100
        assert len(content_store.updates) == 100
        assert all("hot_score_updated_at" in doc for doc in content_store.documents.values())
        assert kv_store.data["cache_version:meme_hot_score:*"] == "1.0.1"
        assert not any(key.startswith("meme_hot_score:m1:") for key in kv_store.data)

        status = container.orchestrator.get_status()["jobs"]["hot_score"]
        assert status["last_run"]["success"] is True
        assert status["running"] is False

    @pytest.mark.asyncio
    async def test_stale_score_envelope_after_run(self, container, content_store):
        content_store.add(ContentTestFactory.document("m1", likes=5))
        cached = await container.score_cache.get_item_score("m1", lambda: 1.0)
        assert cached.version == "1.0.0"

        await container.orchestrator.run_now("hot_score", {"force": True})
        refreshed = await container.score_cache.get_item_score("m1", lambda: 2.0)

        assert refreshed.from_cache is False
        assert refreshed.data == 2.0
        assert refreshed.version == "1.0.1"


@pytest.mark.integration
class TestContentUpdateInvalidation:
    """A content update drops exactly the affected feeds."""

    @pytest.mark.asyncio
    async def test_content_updated(self, container, kv_store):
        cache = container.cache
        for key in [
            "mixed_recommendations:u1:cats",
            "hot_recommendations:p1:dogs",
            "latest_recommendations:p1:birds",
            "hot_recommendations:page1",
            "updated_recommendations:page1",
            "mixed_recommendations:a1:page1",
            "content_based:a1:page1",
            "social_scores:u7",
            "content_based:u2:page1",
        ]:
            await cache.set(key, ["m9"], use_version=True)

        report = await container.invalidator.invalidate_by_operation(
            Operation.CONTENT_UPDATED,
            {
                "meme_id": "m1",
                "old_tags": ["cats"],
                "new_tags": ["dogs"],
                "author_id": "a1",
                "hot_score_changed": True,
            },
        )

        assert report.accepted is True
        assert report.deleted_keys == 7
        remaining = {key for key in kv_store.data if not key.startswith("cache_version:")}
        assert remaining == {"latest_recommendations:p1:birds", "content_based:u2:page1"}
        # Versions survive invalidation and keep increasing on the next write
        assert kv_store.data["cache_version:hot_recommendations:page1"] == "1.0.1"
        await cache.set("hot_recommendations:page1", ["m1"], use_version=True)
        assert kv_store.data["cache_version:hot_recommendations:page1"] == "1.0.2"

    @pytest.mark.asyncio
    async def test_read_through_after_invalidation(self, container):
        cache = container.cache
        calls = []

        def compute():
            calls.append(1)
            return ["m1", "m2"]

        await cache.get_or_compute("hot_recommendations:page1", compute)
        await container.invalidator.invalidate_by_operation(Operation.USER_LIKED, {"user_id": "u1", "meme_id": "m1"})
        await cache.get_or_compute("hot_recommendations:page1", compute)

        assert len(calls) == 2


@pytest.mark.integration
class TestRetryFlow:
    """Items that fail during a batch run are retried until they succeed."""

    @pytest.mark.asyncio
    async def test_failed_item_recovers_on_retry(self, container, content_store, job_queue):
        for doc in ContentTestFactory.documents(5):
            content_store.add(doc)
        content_store.reject_updates.add("m3")

        summary = await container.batch.run(force=True)
        assert summary.updated_count == 4
        assert summary.error_count == 1

        # First retry still fails and is rescheduled with a 5s delay
        assert await container.retry_queue.poll_once() == 1
        assert job_queue.enqueued[-1][1] == 5000

        # The store recovers before the delayed job is due
        content_store.reject_updates.clear()
        job_queue.advance(5000)
        assert await container.retry_queue.poll_once() == 1

        assert "m3" in [item for item, _ in content_store.updates]
        stats = container.retry_queue.get_stats()
        assert stats["rescheduled"] == 1
        assert stats["succeeded"] == 1
        assert job_queue.ready == []
        assert job_queue.delayed == []

    @pytest.mark.asyncio
    async def test_background_worker_processes_jobs(self, container, content_store, job_queue):
        content_store.add(ContentTestFactory.document("m1", likes=2))
        await container.startup()
        try:
            await container.retry_queue.enqueue_retry("m1")
            for _ in range(50):
                if content_store.updates:
                    break
                await asyncio.sleep(0.05)
        finally:
            await container.shutdown()

        assert [item for item, _ in content_store.updates] == ["m1"]
        assert job_queue.pending == {}
