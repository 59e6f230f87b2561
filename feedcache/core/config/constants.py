"""
System Constants and Enumerations

This module defines system-wide constants and enumerations used across
the versioned cache and recommendation-refresh service.

Architectural Decision: Centralized constants for maintainability
- Single source of truth for key prefixes and thresholds
- Type-safe enums for job and operation names
- Easy to update and track changes

Author: System Architect
Date: 2025-12-05
"""

from enum import Enum

# ============================================================================
# Stage Identifiers (for structured logging)
# ============================================================================


class Stage(str, Enum):
    """
    Processing stages used as the ``stage`` field of structured log events.

    Format: {PREFIX}.{SEQUENCE}_{DESCRIPTIVE_NAME}
    - PREFIX: component (VER, CACHE, MON, INV, SCORE, BATCH, RETRY, ORCH, CRON)
    - SEQUENCE: order of the step inside the component
    """

    VERSION_LOOKUP = "VER.1_VERSION_LOOKUP"
    VERSION_WRITE = "VER.2_VERSION_WRITE"
    CACHE_LOOKUP = "CACHE.1_CACHE_LOOKUP"
    CACHE_COMPUTE = "CACHE.2_CACHE_COMPUTE"
    CACHE_WRITE = "CACHE.3_CACHE_WRITE"
    CACHE_INVALIDATE = "CACHE.4_CACHE_INVALIDATE"
    INVALIDATION = "INV.1_INVALIDATION"
    BATCH_HEALTH = "BATCH.1_HEALTH_CHECK"
    BATCH_QUERY = "BATCH.2_QUERY"
    BATCH_PAGE = "BATCH.3_PAGE"
    BATCH_SUMMARY = "BATCH.4_SUMMARY"
    RETRY = "RETRY.1_RETRY_QUEUE"
    ORCHESTRATION = "ORCH.1_JOB_RUN"
    CRON = "CRON.1_TRIGGER"


# ============================================================================
# Cache Versioning
# ============================================================================


class VersionLevel(str, Enum):
    """Semantic version component to increment."""

    PATCH = "patch"
    MINOR = "minor"
    MAJOR = "major"


VERSION_KEY_PREFIX = "cache_version:"
DEFAULT_VERSION = "1.0.0"
VERSION_MIRROR_MAX_SIZE = 10000

# ============================================================================
# Cache Defaults
# ============================================================================

CACHE_DEFAULT_TTL = 3600  # 1 hour
MONITOR_INACTIVITY_WINDOW = 24 * 3600  # 24 hours
MONITOR_SWEEP_INTERVAL = 60  # seconds between prune sweeps
MONITOR_TOP_KEYS = 10
MONITOR_REPORT_TOP_KEYS = 5
INVALIDATION_RECENT_LIMIT = 1000  # targets kept in the invalidator's diagnostics log

# ============================================================================
# Cache Key Families (recommendation feeds and derived caches)
# ============================================================================

KEY_HOT_FEED = "hot_recommendations"
KEY_LATEST_FEED = "latest_recommendations"
KEY_UPDATED_FEED = "updated_recommendations"
KEY_MIXED_FEED = "mixed_recommendations"
KEY_CONTENT_BASED = "content_based"
KEY_COLLABORATIVE = "collaborative_filtering"
KEY_SOCIAL_COLLABORATIVE = "social_collaborative_filtering"
KEY_USER_ACTIVITY = "user_activity"
KEY_COLD_START = "cold_start"
KEY_SOCIAL_SCORES = "social_scores"
KEY_RECOMMENDATION_STATS = "recommendation_stats"
KEY_POPULAR_CONTENT = "popular_content"
KEY_USER_VIEW_HISTORY = "user_view_history"
KEY_ITEM_HOT_SCORE = "meme_hot_score"
KEY_HOT_SCORE_BATCH = "hot_score_batch"

# ============================================================================
# Hot Score
# ============================================================================

HOT_SCORE_WEIGHTS = {
    "like": 1.0,
    "dislike": -0.5,
    "view": 0.1,
    "comment": 2.0,
    "collection": 3.0,
    "share": 2.5,
}
FRESHNESS_BONUS = 1.2


class HotScoreLevel(str, Enum):
    """Ordinal popularity level derived from a hot score."""

    VIRAL = "viral"
    TRENDING = "trending"
    POPULAR = "popular"
    ACTIVE = "active"
    NORMAL = "normal"
    NEW = "new"


# Minimum score per level, highest first
HOT_SCORE_LEVEL_THRESHOLDS = (
    (HotScoreLevel.VIRAL, 1000),
    (HotScoreLevel.TRENDING, 500),
    (HotScoreLevel.POPULAR, 100),
    (HotScoreLevel.ACTIVE, 50),
    (HotScoreLevel.NORMAL, 10),
)

SCORE_CACHE_ITEM_TTL = 3600
SCORE_CACHE_BATCH_TTL = 1800
SCORE_CACHE_ITEM_BUCKET_SECONDS = 300  # 5 minute buckets
SCORE_CACHE_BATCH_BUCKET_SECONDS = 600  # 10 minute buckets

# ============================================================================
# Batch Recompute
# ============================================================================

RECOMPUTE_DEFAULT_LIMIT = 1000
RECOMPUTE_DEFAULT_BATCH_SIZE = 100
RECOMPUTE_PAGE_PAUSE_SECONDS = 0.1
RECOMPUTE_INCREMENTAL_WINDOW_DAYS = 7
RECOMPUTE_MAX_REPORTED_ERRORS = 10
RECOMPUTE_PROGRESS_LOG_EVERY = 100
DELETED_STATUS = "deleted"

# ============================================================================
# Retry Queue
# ============================================================================

RETRY_QUEUE_NAME = "hot-score"
RETRY_MAX_ATTEMPTS = 5
RETRY_BASE_DELAY_MS = 5000
RETRY_MAX_DELAY_MS = 5 * 60 * 1000
REDIS_KEY_QUEUE_STREAM = "queue"
REDIS_KEY_QUEUE_DELAYED = "queue:delayed"

# ============================================================================
# Orchestrated Jobs
# ============================================================================


class JobName(str, Enum):
    """Scheduled recompute jobs."""

    HOT_SCORE = "hot_score"
    CONTENT_BASED = "content_based"
    COLLABORATIVE_FILTERING = "collaborative_filtering"
    SOCIAL_COLLABORATIVE_FILTERING = "social_collaborative_filtering"


DEFAULT_TIMEZONE = "Asia/Taipei"

# ============================================================================
# HTTP Headers
# ============================================================================

HEADER_CORRELATION_ID = "X-Correlation-ID"
