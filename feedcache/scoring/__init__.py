"""
Hot score computation.

Only the pure scoring functions are re-exported here; ``score_cache`` and
``batch_recompute`` are imported from their modules.
"""

from feedcache.scoring.hot_score import (
    ContentSnapshot,
    calculate_engagement_score,
    calculate_hn_hot_score,
    calculate_hot_score,
    calculate_quality_score,
    calculate_reddit_hot_score,
    calculate_updated_content_score,
    compute_hot_score,
    get_hot_score_level,
)

__all__ = [
    "ContentSnapshot",
    "calculate_hot_score",
    "compute_hot_score",
    "get_hot_score_level",
    "calculate_reddit_hot_score",
    "calculate_hn_hot_score",
    "calculate_engagement_score",
    "calculate_quality_score",
    "calculate_updated_content_score",
]
