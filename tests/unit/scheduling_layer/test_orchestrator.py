"""
Unit Tests for the Job Orchestrator

Runners are plain async callables and the cron scheduler is replaced by a
recording fake, so no trigger ever fires on its own.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from feedcache.core.exceptions import (
    ConfigurationError,
    InvalidCronExpression,
    SchedulerError,
    StorageUnavailableError,
    UnknownJobError,
)
from feedcache.scheduling.orchestrator import JobOrchestrator, deep_merge


class FakeHandle:
    def __init__(self, name, expression):
        self.name = name
        self.expression = expression
        self.next_run = datetime(2025, 12, 16, 5, 0, tzinfo=timezone.utc)
        self.stopped = False

    def stop(self):
        self.stopped = True


class FakeScheduler:
    """Records schedule() calls instead of starting trigger loops."""

    def __init__(self):
        self.scheduled: list[FakeHandle] = []
        self.callbacks = {}

    def schedule(self, expression, callback, tz, *, name=None):
        handle = FakeHandle(name, expression)
        self.scheduled.append(handle)
        self.callbacks[name] = callback
        return handle


class RecordingRunner:
    def __init__(self, result=None, error=None):
        self.result = result if result is not None else {"success": True}
        self.error = error
        self.configs = []

    async def __call__(self, config):
        self.configs.append(config)
        if self.error:
            raise self.error
        return self.result


class BlockingRunner:
    def __init__(self):
        self.release = asyncio.Event()
        self.entered = asyncio.Event()

    async def __call__(self, config):
        self.entered.set()
        await self.release.wait()
        return {"success": True}


DEFINITIONS = {
    "hot_score": {"cron": "0 * * * *", "enabled": True, "config": {"limit": 1000, "batch_size": 100, "force": False}},
    "content_based": {"cron": "0 5 * * *", "enabled": True, "config": {"options": {"depth": 1, "mode": "fast"}}},
}


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def runners():
    return {"hot_score": RecordingRunner(), "content_based": RecordingRunner()}


@pytest.fixture
def orchestrator(runners, scheduler, metrics):
    return JobOrchestrator(DEFINITIONS, runners, timezone="Asia/Taipei", scheduler=scheduler, metrics=metrics)


@pytest.mark.unit
class TestDeepMerge:
    def test_nested_merge(self):
        merged = deep_merge({"a": 1, "b": {"c": 2, "d": 3}}, {"b": {"d": 4}, "e": 5})

        assert merged == {"a": 1, "b": {"c": 2, "d": 4}, "e": 5}

    def test_base_untouched(self):
        base = {"b": {"c": 2}}
        deep_merge(base, {"b": {"c": 9}})

        assert base == {"b": {"c": 2}}


@pytest.mark.unit
class TestConstruction:
    """Registry validation."""

    def test_missing_runner(self, scheduler):
        with pytest.raises(ConfigurationError):
            JobOrchestrator(DEFINITIONS, {"hot_score": RecordingRunner()}, scheduler=scheduler)

    def test_invalid_cron(self, scheduler):
        definitions = {"hot_score": {"cron": "whenever"}}

        with pytest.raises(InvalidCronExpression):
            JobOrchestrator(definitions, {"hot_score": RecordingRunner()}, scheduler=scheduler)

    def test_unknown_timezone(self, runners, scheduler):
        with pytest.raises(SchedulerError):
            JobOrchestrator(DEFINITIONS, runners, timezone="Mars/Olympus", scheduler=scheduler)

    def test_job_names(self, orchestrator):
        assert orchestrator.job_names == ["hot_score", "content_based"]

    def test_get_unknown_job(self, orchestrator):
        with pytest.raises(UnknownJobError):
            orchestrator.get_job("nope")


@pytest.mark.unit
class TestRunNow:
    """The guarded run path."""

    @pytest.mark.asyncio
    async def test_success(self, orchestrator, runners):
        runners["hot_score"].result = {"success": True, "updated_count": 3}

        result = await orchestrator.run_now("hot_score")

        assert result["success"] is True
        assert result["algorithm"] == "hot_score"
        assert result["result"] == {"success": True, "updated_count": 3}
        assert result["processing_time_ms"] >= 0
        assert runners["hot_score"].configs == [{"limit": 1000, "batch_size": 100, "force": False}]
        assert orchestrator.get_job("hot_score").last_run["success"] is True

    @pytest.mark.asyncio
    async def test_override_deep_merged_and_not_persisted(self, orchestrator, runners):
        await orchestrator.run_now("content_based", {"options": {"depth": 3}})

        assert runners["content_based"].configs[0] == {"options": {"depth": 3, "mode": "fast"}}
        assert orchestrator.get_job("content_based").config == {"options": {"depth": 1, "mode": "fast"}}

    @pytest.mark.asyncio
    async def test_unknown_job(self, orchestrator):
        with pytest.raises(UnknownJobError):
            await orchestrator.run_now("nope")

    @pytest.mark.asyncio
    async def test_disabled_job_not_run(self, orchestrator, runners):
        orchestrator.update_config({"hot_score": {"enabled": False}})

        result = await orchestrator.run_now("hot_score")

        assert result == {"success": False, "algorithm": "hot_score", "message": "hot_score is disabled"}
        assert runners["hot_score"].configs == []

    @pytest.mark.asyncio
    async def test_override_can_enable_for_one_run(self, orchestrator, runners):
        orchestrator.update_config({"hot_score": {"enabled": False}})

        result = await orchestrator.run_now("hot_score", {"enabled": True, "force": True})

        assert result["success"] is True
        assert runners["hot_score"].configs[0]["force"] is True
        assert "enabled" not in runners["hot_score"].configs[0]

    @pytest.mark.asyncio
    async def test_runner_error_captured(self, orchestrator, runners):
        runners["hot_score"].error = StorageUnavailableError("store down")

        result = await orchestrator.run_now("hot_score")

        assert result == {"success": False, "algorithm": "hot_score", "error": "store down"}
        job = orchestrator.get_job("hot_score")
        assert job.running is False
        assert job.last_run["error"] == "store down"

    @pytest.mark.asyncio
    async def test_unsuccessful_result_reported(self, orchestrator, runners):
        runners["hot_score"].result = {"success": False, "message": "Counting content failed"}

        result = await orchestrator.run_now("hot_score")

        assert result["success"] is False
        assert result["result"]["message"] == "Counting content failed"

    @pytest.mark.asyncio
    async def test_overlapping_run_skipped(self, runners, scheduler):
        blocking = BlockingRunner()
        runners["hot_score"] = blocking
        orchestrator = JobOrchestrator(DEFINITIONS, runners, scheduler=scheduler)

        first = asyncio.create_task(orchestrator.run_now("hot_score"))
        await blocking.entered.wait()

        second = await orchestrator.run_now("hot_score")

        assert second["skipped"] is True
        assert second["success"] is False
        assert orchestrator.get_status()["jobs"]["hot_score"]["running"] is True

        blocking.release.set()
        assert (await first)["success"] is True
        assert orchestrator.get_job("hot_score").running is False


@pytest.mark.unit
class TestRunAll:
    """Concurrent run of every job."""

    @pytest.mark.asyncio
    async def test_partial_failure(self, orchestrator, runners):
        runners["content_based"].error = RuntimeError("model missing")

        result = await orchestrator.run_all({"hot_score": {"force": True}})

        assert result["success"] is True
        assert result["successful_updates"] == 1
        assert result["failed_updates"] == 1
        assert [r["algorithm"] for r in result["results"]] == ["hot_score", "content_based"]
        assert runners["hot_score"].configs[0]["force"] is True

    @pytest.mark.asyncio
    async def test_all_failed(self, orchestrator, runners):
        for runner in runners.values():
            runner.error = RuntimeError("down")

        result = await orchestrator.run_all()

        assert result["success"] is False
        assert result["failed_updates"] == 2

    @pytest.mark.asyncio
    async def test_unknown_override(self, orchestrator):
        with pytest.raises(UnknownJobError):
            await orchestrator.run_all({"nope": {}})


@pytest.mark.unit
class TestLifecycleAndConfig:
    """start / stop, status and live configuration."""

    def test_start_registers_each_job_once(self, orchestrator, scheduler):
        orchestrator.start()
        orchestrator.start()

        assert [h.name for h in scheduler.scheduled] == ["hot_score", "content_based"]
        assert orchestrator.started is True

    def test_stop_stops_handles(self, orchestrator, scheduler):
        orchestrator.start()
        orchestrator.stop()

        assert all(h.stopped for h in scheduler.scheduled)
        assert orchestrator.started is False

    def test_status(self, orchestrator):
        orchestrator.start()

        status = orchestrator.get_status()

        assert status["timezone"] == "Asia/Taipei"
        assert status["started"] is True
        assert status["jobs"]["hot_score"]["cron"] == "0 * * * *"
        assert status["jobs"]["hot_score"]["next_run"] == "2025-12-16T05:00:00+00:00"

    @pytest.mark.asyncio
    async def test_trigger_callback_runs_job(self, orchestrator, scheduler, runners):
        orchestrator.start()

        result = await scheduler.callbacks["hot_score"]()

        assert result["success"] is True
        assert len(runners["hot_score"].configs) == 1

    def test_update_options(self, orchestrator):
        jobs = orchestrator.update_config({"hot_score": {"limit": 50}, "content_based": {"options": {"depth": 2}}})

        assert jobs["hot_score"]["config"]["limit"] == 50
        assert jobs["hot_score"]["config"]["batch_size"] == 100
        assert jobs["content_based"]["config"]["options"] == {"depth": 2, "mode": "fast"}

    def test_cron_change_reregisters_when_started(self, orchestrator, scheduler):
        orchestrator.start()

        orchestrator.update_config({"hot_score": {"cron": "*/30 * * * *"}})

        assert scheduler.scheduled[0].stopped is True
        assert scheduler.scheduled[-1].name == "hot_score"
        assert scheduler.scheduled[-1].expression == "*/30 * * * *"
        assert orchestrator.get_job("hot_score").cron_expression == "*/30 * * * *"

    def test_cron_change_when_stopped_only_updates(self, orchestrator, scheduler):
        orchestrator.update_config({"hot_score": {"cron": "*/30 * * * *"}})

        assert scheduler.scheduled == []
        assert orchestrator.get_job("hot_score").cron_expression == "*/30 * * * *"

    def test_invalid_cron_rejected_atomically(self, orchestrator):
        with pytest.raises(ConfigurationError):
            orchestrator.update_config({"hot_score": {"limit": 5}, "content_based": {"cron": "bad"}})

        assert orchestrator.get_job("hot_score").config["limit"] == 1000

    def test_unknown_job_rejected(self, orchestrator):
        with pytest.raises(ConfigurationError):
            orchestrator.update_config({"nope": {"enabled": False}})

    def test_non_mapping_rejected(self, orchestrator):
        with pytest.raises(ConfigurationError):
            orchestrator.update_config({"hot_score": "fast"})
