#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

This module provides type-safe, environment-based configuration for the
versioned cache and recommendation-refresh service. All configuration is
centralized here and read once by the composition root; components receive
plain values or section objects instead of importing settings themselves.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- Nested section objects (settings.redis, settings.scheduler, ...)
- Easy testing with reload_settings()

Author: System Architect
Date: 2025-12-05
"""

from functools import lru_cache
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from feedcache.core.config.constants import (
    CACHE_DEFAULT_TTL,
    DEFAULT_TIMEZONE,
    MONITOR_INACTIVITY_WINDOW,
    MONITOR_SWEEP_INTERVAL,
    RECOMPUTE_DEFAULT_BATCH_SIZE,
    RECOMPUTE_DEFAULT_LIMIT,
    RECOMPUTE_INCREMENTAL_WINDOW_DAYS,
    RECOMPUTE_PAGE_PAUSE_SECONDS,
    RETRY_BASE_DELAY_MS,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_DELAY_MS,
    RETRY_QUEUE_NAME,
    VERSION_MIRROR_MAX_SIZE,
    JobName,
    VersionLevel,
)

_SECTION_CONFIG = SettingsConfigDict(env_prefix="", case_sensitive=True, extra="ignore")


def _validate_cron(value: str) -> str:
    from feedcache.core.exceptions import InvalidCronExpression
    from feedcache.scheduling.cron import CronExpression

    try:
        CronExpression.parse(value)
    except InvalidCronExpression as e:
        raise ValueError(e.message) from e
    return value


class RedisSettings(BaseSettings):
    """
    Redis configuration for the cache, version store and retry queue.

    STAGE-0.1: Redis connection configuration
    """

    REDIS_HOST: str = Field(default="localhost", description="Redis server host")
    REDIS_PORT: int = Field(default=6379, description="Redis server port")
    REDIS_DB: int = Field(default=0, description="Redis database number")
    REDIS_PASSWORD: str | None = Field(default=None, description="Redis password (if required)")
    REDIS_MAX_CONNECTIONS: int = Field(default=50, description="Maximum total connections")
    REDIS_SOCKET_TIMEOUT: int = Field(default=5, description="Socket timeout in seconds")
    REDIS_SOCKET_CONNECT_TIMEOUT: int = Field(default=5, description="Connection timeout in seconds")
    REDIS_HEALTH_CHECK_INTERVAL: int = Field(default=30, description="Health check interval in seconds")

    model_config = _SECTION_CONFIG


class CacheSettings(BaseSettings):
    """
    Cache facade configuration.

    STAGE-CACHE: TTL and fail-soft timeouts
    """

    CACHE_ENABLED: bool = Field(default=True, description="Master switch for the cache facade")
    CACHE_DEFAULT_TTL: int = Field(default=CACHE_DEFAULT_TTL, description="Default value TTL (seconds)")
    CACHE_BACKEND_TIMEOUT: float = Field(
        default=2.0, description="Seconds before a cache backend call is treated as failed"
    )

    model_config = _SECTION_CONFIG


class VersionSettings(BaseSettings):
    """Version store configuration."""

    VERSION_MIRROR_MAX_SIZE: int = Field(
        default=VERSION_MIRROR_MAX_SIZE, description="Process-local version mirror capacity"
    )

    model_config = _SECTION_CONFIG


class MonitorSettings(BaseSettings):
    """
    Cache monitor configuration.

    Monitoring is observational only; disabling it never affects correctness.
    """

    CACHE_MONITOR_ENABLED: bool = Field(default=True, description="Enable per-key hit/miss tracking")
    CACHE_MONITOR_INACTIVITY_WINDOW: int = Field(
        default=MONITOR_INACTIVITY_WINDOW, description="Drop metrics untouched for this many seconds"
    )
    CACHE_MONITOR_SWEEP_INTERVAL: int = Field(
        default=MONITOR_SWEEP_INTERVAL, description="Minimum seconds between prune sweeps"
    )

    model_config = _SECTION_CONFIG


class RecomputeSettings(BaseSettings):
    """
    Batch score recompute configuration.

    STAGE-BATCH: Paging and throttling
    """

    RECOMPUTE_LIMIT: int = Field(default=RECOMPUTE_DEFAULT_LIMIT, gt=0, description="Max items per run")
    RECOMPUTE_BATCH_SIZE: int = Field(
        default=RECOMPUTE_DEFAULT_BATCH_SIZE, gt=0, description="Items per page"
    )
    RECOMPUTE_PAGE_PAUSE: float = Field(
        default=RECOMPUTE_PAGE_PAUSE_SECONDS, ge=0, description="Pause between pages (seconds)"
    )
    RECOMPUTE_INCREMENTAL_WINDOW_DAYS: int = Field(
        default=RECOMPUTE_INCREMENTAL_WINDOW_DAYS, gt=0, description="Incremental run lookback"
    )
    STORAGE_TIMEOUT: float = Field(default=10.0, description="Seconds before a storage call fails")

    model_config = _SECTION_CONFIG


class RetryQueueSettings(BaseSettings):
    """
    Retry queue configuration.

    STAGE-RETRY: Attempts and exponential backoff
    """

    RETRY_QUEUE_NAME: str = Field(default=RETRY_QUEUE_NAME, description="Queue (stream) name")
    RETRY_QUEUE_GROUP: str = Field(default="score-workers", description="Consumer group name")
    RETRY_MAX_ATTEMPTS: int = Field(default=RETRY_MAX_ATTEMPTS, gt=0, description="Attempt bound")
    RETRY_BASE_DELAY_MS: int = Field(default=RETRY_BASE_DELAY_MS, ge=0, description="Backoff base")
    RETRY_MAX_DELAY_MS: int = Field(default=RETRY_MAX_DELAY_MS, ge=0, description="Backoff cap")
    RETRY_BATCH_SIZE: int = Field(default=10, gt=0, description="Jobs consumed per poll")
    RETRY_POLL_INTERVAL_MS: int = Field(default=2000, ge=0, description="Blocking read time")
    RETRY_MAX_LEN: int = Field(default=10000, gt=0, description="Approximate stream length cap")
    RETRY_RECLAIM_IDLE_MS: int = Field(
        default=60000, ge=0, description="Redeliver jobs left unacknowledged this long (0 disables)"
    )
    RETRY_SHUTDOWN_TIMEOUT: float = Field(default=5.0, description="Graceful drain timeout")

    model_config = _SECTION_CONFIG


class SchedulerSettings(BaseSettings):
    """
    Job orchestrator configuration.

    STAGE-ORCH: Cadences and per-job options
    """

    SCHEDULER_ENABLED: bool = Field(default=True, description="Start cron triggers at startup")
    SCHEDULER_TIMEZONE: str = Field(default=DEFAULT_TIMEZONE, description="Timezone for cron")

    HOT_SCORE_CRON: str = Field(default="0 * * * *", description="Hourly")
    HOT_SCORE_ENABLED: bool = Field(default=True)
    HOT_SCORE_LIMIT: int = Field(default=RECOMPUTE_DEFAULT_LIMIT, gt=0)
    HOT_SCORE_BATCH_SIZE: int = Field(default=RECOMPUTE_DEFAULT_BATCH_SIZE, gt=0)
    HOT_SCORE_FORCE: bool = Field(default=False)

    CONTENT_BASED_CRON: str = Field(default="0 5 * * *", description="Daily 05:00")
    CONTENT_BASED_ENABLED: bool = Field(default=True)

    COLLABORATIVE_FILTERING_CRON: str = Field(default="0 6 * * *", description="Daily 06:00")
    COLLABORATIVE_FILTERING_ENABLED: bool = Field(default=True)

    SOCIAL_COLLABORATIVE_FILTERING_CRON: str = Field(default="0 7 * * *", description="Daily 07:00")
    SOCIAL_COLLABORATIVE_FILTERING_ENABLED: bool = Field(default=True)

    FEED_REFRESH_VERSION_LEVEL: VersionLevel = Field(
        default=VersionLevel.PATCH, description="Version bump applied to feeds dropped by the refresh jobs"
    )

    @field_validator(
        "HOT_SCORE_CRON",
        "CONTENT_BASED_CRON",
        "COLLABORATIVE_FILTERING_CRON",
        "SOCIAL_COLLABORATIVE_FILTERING_CRON",
    )
    @classmethod
    def validate_cron(cls, v):
        return _validate_cron(v)

    @field_validator("SCHEDULER_TIMEZONE")
    @classmethod
    def validate_timezone(cls, v):
        """Reject timezones the zoneinfo database cannot resolve."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    def job_definitions(self) -> dict[str, dict[str, Any]]:
        """
        Build the static job registry consumed by the orchestrator.

        Returns:
            Mapping job name -> {"cron", "enabled", "config"}
        """
        return {
            JobName.HOT_SCORE.value: {
                "cron": self.HOT_SCORE_CRON,
                "enabled": self.HOT_SCORE_ENABLED,
                "config": {
                    "limit": self.HOT_SCORE_LIMIT,
                    "batch_size": self.HOT_SCORE_BATCH_SIZE,
                    "force": self.HOT_SCORE_FORCE,
                },
            },
            JobName.CONTENT_BASED.value: {
                "cron": self.CONTENT_BASED_CRON,
                "enabled": self.CONTENT_BASED_ENABLED,
                "config": {"version_level": self.FEED_REFRESH_VERSION_LEVEL.value},
            },
            JobName.COLLABORATIVE_FILTERING.value: {
                "cron": self.COLLABORATIVE_FILTERING_CRON,
                "enabled": self.COLLABORATIVE_FILTERING_ENABLED,
                "config": {"version_level": self.FEED_REFRESH_VERSION_LEVEL.value},
            },
            JobName.SOCIAL_COLLABORATIVE_FILTERING.value: {
                "cron": self.SOCIAL_COLLABORATIVE_FILTERING_CRON,
                "enabled": self.SOCIAL_COLLABORATIVE_FILTERING_ENABLED,
                "config": {"version_level": self.FEED_REFRESH_VERSION_LEVEL.value},
            },
        }

    model_config = _SECTION_CONFIG


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    STAGE-L: Logging configuration

    Architectural Decision: structlog for production-grade logging
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    model_config = _SECTION_CONFIG


class ApplicationSettings(BaseSettings):
    """
    General application settings.

    STAGE-0: Application initialization
    """

    ENVIRONMENT: Literal["development", "test", "staging", "production"] = Field(
        default="development",
        description="Application environment"
    )
    DEBUG: bool = Field(default=False, description="Debug mode")
    APP_NAME: str = Field(default="Feed Cache Service", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")
    API_HOST: str = Field(default="0.0.0.0", description="API host")
    API_PORT: int = Field(default=8000, description="API port")
    API_BASE_PATH: str = Field(default="", description="Prefix for every router")
    CORS_ORIGINS: list[str] = Field(default=["*"], description="Allowed CORS origins")

    model_config = _SECTION_CONFIG


class Settings(
    RedisSettings,
    CacheSettings,
    VersionSettings,
    MonitorSettings,
    RecomputeSettings,
    RetryQueueSettings,
    SchedulerSettings,
    LoggingSettings,
    ApplicationSettings,
):
    """
    Main settings class that aggregates all configuration sections.

    STAGE-0: Centralized configuration initialization

    Every field lives at the root (one env var each); the section properties
    hand out validated copies grouped by concern.

    Usage:
        settings = get_settings()
        redis_host = settings.redis.REDIS_HOST
        jobs = settings.scheduler.job_definitions()
    """

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=True, env_file=".env", extra="ignore"
    )

    def _section(self, section_cls: type[BaseSettings]) -> Any:
        return section_cls(**self.model_dump(include=set(section_cls.model_fields)))

    @property
    def redis(self) -> RedisSettings:
        """Get Redis settings."""
        return self._section(RedisSettings)

    @property
    def cache(self) -> CacheSettings:
        """Get cache facade settings."""
        return self._section(CacheSettings)

    @property
    def version(self) -> VersionSettings:
        """Get version store settings."""
        return self._section(VersionSettings)

    @property
    def monitor(self) -> MonitorSettings:
        """Get cache monitor settings."""
        return self._section(MonitorSettings)

    @property
    def recompute(self) -> RecomputeSettings:
        """Get batch recompute settings."""
        return self._section(RecomputeSettings)

    @property
    def retry_queue(self) -> RetryQueueSettings:
        """Get retry queue settings."""
        return self._section(RetryQueueSettings)

    @property
    def scheduler(self) -> SchedulerSettings:
        """Get orchestrator settings."""
        return self._section(SchedulerSettings)

    @property
    def logging(self) -> LoggingSettings:
        """Get logging settings."""
        return self._section(LoggingSettings)

    @property
    def app(self) -> ApplicationSettings:
        """Get application settings."""
        return self._section(ApplicationSettings)


@lru_cache
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Returns:
        Settings: Settings instance
    """
    return Settings()


def reload_settings() -> Settings:
    """
    Reload settings from the environment (test helper).

    Returns:
        Settings: Fresh settings instance
    """
    get_settings.cache_clear()
    return get_settings()
