"""
Hot Score Functions

Pure scoring over content snapshots. ``calculate_hot_score`` is total: any
input it cannot score yields 0.0 instead of an exception. Batch jobs that
need to know *why* an item failed use ``ContentSnapshot.from_document`` and
``compute_hot_score`` directly, which raise.

Hot score:
    base  = like*1.0 + dislike*(-0.5) + view*0.1 + comment*2.0
            + collection*3.0 + share*2.5
    decay = 1 / (1 + ln(age_days + 1)), age from max(modified_at, created_at)
    score = max(0, base * decay * (1.2 if modified after creation else 1))

Author: System Architect
Date: 2025-12-12
"""

import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from feedcache.core.config.constants import (
    FRESHNESS_BONUS,
    HOT_SCORE_LEVEL_THRESHOLDS,
    HOT_SCORE_WEIGHTS,
    HotScoreLevel,
)
from feedcache.core.exceptions import InvalidSnapshotError, ScoreComputationError

_COUNT_FIELDS = {
    "like_count": ("like_count", "likeCount"),
    "dislike_count": ("dislike_count", "dislikeCount"),
    "view_count": ("view_count", "views", "viewCount"),
    "comment_count": ("comment_count", "commentCount"),
    "collection_count": ("collection_count", "collectionCount"),
    "share_count": ("share_count", "shareCount"),
}


def _utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _parse_count(name: str, value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise InvalidSnapshotError(f"{name} must be numeric", details={name: value})
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise InvalidSnapshotError(f"{name} must be numeric", details={name: value}) from e
    if not math.isfinite(number):
        raise InvalidSnapshotError(f"{name} must be finite", details={name: value})
    return max(0, int(number))


def _parse_datetime(name: str, value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _utc(value)
    if isinstance(value, str):
        try:
            return _utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError as e:
            raise InvalidSnapshotError(f"{name} is not a datetime", details={name: value}) from e
    raise InvalidSnapshotError(f"{name} is not a datetime", details={name: repr(value)})


@dataclass(frozen=True)
class ContentSnapshot:
    """Engagement counters and timestamps of one content item."""

    id: str
    like_count: int = 0
    dislike_count: int = 0
    view_count: int = 0
    comment_count: int = 0
    collection_count: int = 0
    share_count: int = 0
    created_at: datetime | None = None
    modified_at: datetime | None = None

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "ContentSnapshot":
        """
        Validate a stored document.

        Raises:
            InvalidSnapshotError: Missing id/created_at, non-numeric counts,
                unparseable timestamps
        """
        if not isinstance(doc, Mapping):
            raise InvalidSnapshotError("Content document must be a mapping")

        item_id = doc.get("id", doc.get("_id"))
        if item_id is None or item_id == "":
            raise InvalidSnapshotError("Content document has no id")

        counts: dict[str, int] = {}
        for field_name, aliases in _COUNT_FIELDS.items():
            raw = next((doc[a] for a in aliases if a in doc), None)
            counts[field_name] = _parse_count(field_name, raw)

        created_at = _parse_datetime("created_at", doc.get("created_at", doc.get("createdAt")))
        if created_at is None:
            raise InvalidSnapshotError(
                "Content document has no created_at", details={"item_id": str(item_id)}
            )
        modified_at = _parse_datetime("modified_at", doc.get("modified_at", doc.get("modifiedAt")))

        return cls(id=str(item_id), created_at=created_at, modified_at=modified_at, **counts)

    @property
    def was_modified(self) -> bool:
        return (
            self.modified_at is not None
            and self.created_at is not None
            and self.modified_at > self.created_at
        )

    @property
    def total_interactions(self) -> int:
        return (
            self.like_count
            + self.dislike_count
            + self.comment_count
            + self.collection_count
            + self.share_count
        )


def compute_hot_score(snapshot: ContentSnapshot, now: datetime | None = None) -> float:
    """
    Hot score of a validated snapshot.

    Raises:
        ScoreComputationError: When the result is not a finite number
    """
    if snapshot.created_at is None:
        raise ScoreComputationError("Snapshot has no created_at", details={"item_id": snapshot.id})

    now = _utc(now) if now else datetime.now(timezone.utc)

    base = (
        snapshot.like_count * HOT_SCORE_WEIGHTS["like"]
        + snapshot.dislike_count * HOT_SCORE_WEIGHTS["dislike"]
        + snapshot.view_count * HOT_SCORE_WEIGHTS["view"]
        + snapshot.comment_count * HOT_SCORE_WEIGHTS["comment"]
        + snapshot.collection_count * HOT_SCORE_WEIGHTS["collection"]
        + snapshot.share_count * HOT_SCORE_WEIGHTS["share"]
    )

    effective = max(snapshot.created_at, snapshot.modified_at or snapshot.created_at)
    age_days = max(0.0, (now - effective).total_seconds() / 86400)
    decay = 1 / (1 + math.log(age_days + 1))
    if snapshot.was_modified:
        decay *= FRESHNESS_BONUS

    score = base * decay
    if not math.isfinite(score):
        raise ScoreComputationError(
            f"Hot score is not finite: {score}", details={"item_id": snapshot.id}
        )
    return max(score, 0.0)


def calculate_hot_score(item: ContentSnapshot | Mapping[str, Any], now: datetime | None = None) -> float:
    """
    Total hot score: 0.0 for anything that cannot be scored.

    Args:
        item: Snapshot or raw document
        now: Reference instant (defaults to current UTC time)
    """
    try:
        snapshot = item if isinstance(item, ContentSnapshot) else ContentSnapshot.from_document(item)
        return compute_hot_score(snapshot, now)
    except (InvalidSnapshotError, ScoreComputationError, TypeError, ValueError, OverflowError):
        return 0.0


def get_hot_score_level(score: float) -> HotScoreLevel:
    """Ordinal popularity level: viral ≥1000, trending ≥500, popular ≥100, active ≥50, normal ≥10."""
    for level, minimum in HOT_SCORE_LEVEL_THRESHOLDS:
        if score >= minimum:
            return level
    return HotScoreLevel.NEW


# =============================================================================
# Alternative scores
# =============================================================================


def calculate_reddit_hot_score(
    upvotes: int, downvotes: int, created_at: datetime, now: datetime | None = None
) -> float:
    """Reddit-style: log10(max(up-down, 1)) + (age_seconds - 45000) / 45000, floored at 0."""
    now = _utc(now) if now else datetime.now(timezone.utc)
    z = max(upvotes - downvotes, 1)
    age_seconds = math.floor((now - _utc(created_at)).total_seconds())
    return max(math.log10(z) + (age_seconds - 45000) / 45000, 0.0)


def calculate_hn_hot_score(upvotes: int, created_at: datetime, now: datetime | None = None) -> float:
    """Hacker-News-style: (points - 1) / (age_hours + 2) ** 1.5, floored at 0."""
    now = _utc(now) if now else datetime.now(timezone.utc)
    age_hours = (now - _utc(created_at)).total_seconds() / 3600
    return max((upvotes - 1) / math.pow(age_hours + 2, 1.5), 0.0)


def calculate_engagement_score(snapshot: ContentSnapshot) -> float:
    """Interactions per view as a percentage, capped at 100; 0 without views."""
    if snapshot.view_count == 0:
        return 0.0
    return min(snapshot.total_interactions / snapshot.view_count * 100, 100.0)


def calculate_quality_score(snapshot: ContentSnapshot) -> int:
    """Share of positive interactions in percent; 50 when there are none."""
    total = snapshot.total_interactions
    if total == 0:
        return 50
    positive = total - snapshot.dislike_count
    return round(positive / total * 100)


def calculate_updated_content_score(
    snapshot: ContentSnapshot, hot_score: float, now: datetime | None = None
) -> float:
    """
    Boost the hot score of recently edited content.

    Freshness multiplier by hours since modification: ≤1h 2.0, ≤6h 1.5,
    ≤24h 1.3, ≤72h 1.1. Age bonus for the edit of older content:
    >7 days 1.4, >3 days 1.2.
    """
    if not snapshot.was_modified:
        return hot_score

    now = _utc(now) if now else datetime.now(timezone.utc)
    hours_since_modified = (now - snapshot.modified_at).total_seconds() / 3600
    if hours_since_modified <= 1:
        freshness = 2.0
    elif hours_since_modified <= 6:
        freshness = 1.5
    elif hours_since_modified <= 24:
        freshness = 1.3
    elif hours_since_modified <= 72:
        freshness = 1.1
    else:
        freshness = 1.0

    days_since_creation = (now - snapshot.created_at).total_seconds() / 86400
    if days_since_creation > 7:
        age_bonus = 1.4
    elif days_since_creation > 3:
        age_bonus = 1.2
    else:
        age_bonus = 1.0

    return hot_score * freshness * age_bonus
