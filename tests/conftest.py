"""
Pytest Configuration and Shared Test Fixtures

All fixtures defined here are automatically available to all test files.
Backends are in-memory doubles (tests/test_fixtures/backends.py); nothing
here talks to Redis or a real document store.
"""

from datetime import datetime

import pytest

from feedcache.core.config.settings import Settings
from feedcache.infrastructure.cache.cache_manager import CacheFacade
from feedcache.infrastructure.cache.invalidator import SmartInvalidator
from feedcache.infrastructure.cache.version_store import VersionStore
from feedcache.infrastructure.monitoring.cache_monitor import CacheMonitor
from feedcache.infrastructure.monitoring.metrics_collector import MetricsCollector
from tests.test_fixtures.backends import (
    InMemoryContentStore,
    InMemoryJobQueue,
    InMemoryKeyValueStore,
)
from tests.test_fixtures.content_factory import NOW

# ============================================================================
# Clocks
# ============================================================================


class FrozenClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1_765_800_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def frozen_clock():
    return FrozenClock()


@pytest.fixture
def fixed_now() -> datetime:
    """Reference instant for scoring tests (2025-12-15 12:00 UTC)."""
    return NOW


@pytest.fixture
def utc_clock(fixed_now):
    """Datetime clock returning ``fixed_now``."""
    return lambda: fixed_now


# ============================================================================
# Configuration
# ============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings with cron triggers off and short timeouts."""
    return Settings(
        ENVIRONMENT="test",
        SCHEDULER_ENABLED=False,
        CACHE_BACKEND_TIMEOUT=1.0,
        STORAGE_TIMEOUT=1.0,
        RECOMPUTE_PAGE_PAUSE=0.0,
        RETRY_POLL_INTERVAL_MS=0,
        RETRY_SHUTDOWN_TIMEOUT=1.0,
        LOG_FORMAT="console",
    )


# ============================================================================
# Backends
# ============================================================================


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def content_store() -> InMemoryContentStore:
    return InMemoryContentStore()


@pytest.fixture
def job_queue() -> InMemoryJobQueue:
    return InMemoryJobQueue()


@pytest.fixture(scope="session")
def metrics() -> MetricsCollector:
    return MetricsCollector(app_name="feedcache-test", version="test", environment="test")


# ============================================================================
# Cache stack
# ============================================================================


@pytest.fixture
def monitor(frozen_clock) -> CacheMonitor:
    return CacheMonitor(enabled=True, clock=frozen_clock)


@pytest.fixture
def versions(kv_store, monitor) -> VersionStore:
    return VersionStore(kv_store, mirror_size=100, on_error=monitor.record_error)


@pytest.fixture
def cache(kv_store, versions, monitor) -> CacheFacade:
    return CacheFacade(kv_store, versions, monitor, default_ttl=3600)


@pytest.fixture
def invalidator(cache, metrics) -> SmartInvalidator:
    return SmartInvalidator(cache, metrics)
