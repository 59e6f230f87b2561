"""
Unit Tests for the HTTP API

Runs the FastAPI application with in-memory backends through TestClient,
lifespan included.
"""

import pytest
from fastapi.testclient import TestClient

from feedcache.app import create_app
from tests.test_fixtures.content_factory import ContentTestFactory


@pytest.fixture
def app(test_settings, kv_store, job_queue, content_store):
    return create_app(test_settings, content_store=content_store, kv_store=kv_store, job_backend=job_queue)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.mark.unit
class TestRootAndHealth:
    """Root, health and request correlation."""

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["health"] == "/health"

    def test_health_healthy(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["components"]["retry_queue"]["running"] is True
        assert data["components"]["scheduler"] == {"started": False, "timezone": "Asia/Taipei", "jobs": 4}

    def test_health_degraded_when_backend_down(self, client, kv_store):
        kv_store.failing = True

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    def test_correlation_id_echoed(self, client):
        response = client.get("/health", headers={"X-Correlation-ID": "req-123"})

        assert response.headers["X-Correlation-ID"] == "req-123"

    def test_correlation_id_generated(self, client):
        response = client.get("/health")

        assert len(response.headers["X-Correlation-ID"]) == 36


@pytest.mark.unit
class TestJobEndpoints:
    """Job control."""

    def test_list_jobs(self, client):
        response = client.get("/admin/jobs")

        assert response.status_code == 200
        jobs = response.json()["jobs"]
        assert set(jobs) == {"hot_score", "content_based", "collaborative_filtering", "social_collaborative_filtering"}
        assert jobs["hot_score"]["cron"] == "0 * * * *"

    def test_run_hot_score_with_override(self, client, content_store):
        for doc in ContentTestFactory.documents(5, hot_score=3.0):
            content_store.add(doc)

        response = client.post("/admin/jobs/hot_score/run", json={"override": {"force": True}})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["algorithm"] == "hot_score"
        assert data["result"]["updated_count"] == 5

    def test_run_without_body(self, client):
        response = client.post("/admin/jobs/content_based/run")

        assert response.status_code == 200
        assert response.json()["result"]["families"] == ["content_based"]

    def test_run_unknown_job_is_404(self, client):
        response = client.post("/admin/jobs/nope/run")

        assert response.status_code == 404
        assert response.json()["error_type"] == "UnknownJobError"

    def test_storage_outage_reported_not_raised(self, client, content_store):
        content_store.healthy = False

        response = client.post("/admin/jobs/hot_score/run")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert "health check failed" in data["error"]

    def test_run_all(self, client, content_store):
        content_store.healthy = False

        response = client.post("/admin/jobs/run-all", json={"overrides": {"hot_score": {"limit": 10}}})

        assert response.status_code == 200
        data = response.json()
        assert data["successful_updates"] == 3
        assert data["failed_updates"] == 1
        assert len(data["results"]) == 4

    def test_run_all_unknown_override_is_404(self, client):
        response = client.post("/admin/jobs/run-all", json={"overrides": {"nope": {}}})

        assert response.status_code == 404

    def test_update_config(self, client):
        response = client.patch("/admin/jobs/config", json={"jobs": {"hot_score": {"limit": 250, "enabled": False}}})

        assert response.status_code == 200
        hot = response.json()["jobs"]["hot_score"]
        assert hot["config"]["limit"] == 250
        assert hot["enabled"] is False

        run = client.post("/admin/jobs/hot_score/run").json()
        assert run["success"] is False
        assert run["message"] == "hot_score is disabled"

    def test_update_config_bad_cron_is_400(self, client):
        response = client.patch("/admin/jobs/config", json={"jobs": {"hot_score": {"cron": "often"}}})

        assert response.status_code == 400
        assert response.json()["error_type"] == "ConfigurationError"


@pytest.mark.unit
class TestCacheEndpoints:
    """Cache statistics and manual invalidation."""

    def test_stats(self, client):
        response = client.get("/admin/cache/stats")

        assert response.status_code == 200
        assert set(response.json()) == {"cache", "versions", "invalidation"}

    def test_report(self, client):
        response = client.get("/admin/cache/report")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "Cache Performance Report" in response.text

    def test_invalidate_operation(self, client, kv_store):
        kv_store.data["hot_recommendations:page1"] = "[]"

        response = client.post(
            "/admin/cache/invalidate",
            json={"operation": "content_created", "params": {"memeId": "m1", "tags": ["cats"]}},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["accepted"] is True
        assert data["deleted_keys"] == 1
        assert "hot_recommendations:*" in data["patterns"]

    def test_invalidate_unknown_operation(self, client):
        response = client.post("/admin/cache/invalidate", json={"operation": "meteor_strike"})

        assert response.status_code == 200
        assert response.json()["accepted"] is False

    def test_invalidate_pattern(self, client, kv_store):
        kv_store.data["popular_content:1"] = "[]"

        response = client.post("/admin/cache/invalidate", json={"pattern": "popular_content:*"})

        assert response.json()["deleted_keys"] == 1

    def test_invalidate_same_pattern_twice(self, client, kv_store):
        kv_store.data["popular_content:1"] = "[]"
        first = client.post("/admin/cache/invalidate", json={"pattern": "popular_content:*"})

        kv_store.data["popular_content:2"] = "[]"
        second = client.post("/admin/cache/invalidate", json={"pattern": "popular_content:*"})

        assert first.json()["deleted_keys"] == 1
        assert second.json()["deleted_keys"] == 1
        assert "popular_content:2" not in kv_store.data

    def test_invalidate_keys(self, client, kv_store):
        kv_store.data["feed:1"] = "[]"

        response = client.post("/admin/cache/invalidate", json={"keys": ["feed:1"]})

        assert response.json()["target"] == "keys"
        assert "feed:1" not in kv_store.data

    def test_invalidate_score_cache(self, client):
        response = client.post("/admin/cache/invalidate", json={"score_cache_level": "minor"})

        data = response.json()
        assert data["target"] == "score_cache"
        assert data["versions"]["meme_hot_score:*"]["new_version"] == "1.1.0"

    @pytest.mark.parametrize(
        "body",
        [
            {},
            {"operation": "content_created", "pattern": "x:*"},
            {"keys": ["a"], "score_cache_level": "patch"},
            {"score_cache_level": "huge"},
        ],
    )
    def test_invalidate_requires_single_target(self, client, body):
        response = client.post("/admin/cache/invalidate", json=body)

        assert response.status_code == 422

    def test_metrics(self, client):
        response = client.get("/admin/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "feedcache_cache_hits_total" in response.text
