#!/usr/bin/env python3
"""
Operation-Driven Cache Invalidation

Business events (content created, user liked, user followed, ...) map to a
fixed set of cache key patterns. Each event is an ``Operation`` paired with
its own frozen parameter dataclass; the dataclass knows which of its fields
are required and which patterns it produces.

Architecture:
    SmartInvalidator (Public API)
        ├── Operation enum ──► params dataclass (checked complete at import)
        └── CacheFacade.delete_pattern / delete (fail-soft)

Dedupe:
    Every ``invalidate_by_operation`` call opens a fresh dedupe scope, so a
    literal pattern reaches the backend once per call even when several
    rules produce it. A primitive called on its own opens its own scope, so
    repeating it always reaches the backend again. Sent targets are also
    kept in a bounded log of recent targets for diagnostics only.

Invalidation never raises into callers: unknown operations and missing
parameters log a warning and touch nothing, backend failures count as 0.

Author: System Architect
Date: 2025-12-11
"""

import dataclasses
from collections import OrderedDict
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from feedcache.core.config.constants import (
    INVALIDATION_RECENT_LIMIT,
    KEY_COLD_START,
    KEY_COLLABORATIVE,
    KEY_CONTENT_BASED,
    KEY_HOT_FEED,
    KEY_LATEST_FEED,
    KEY_MIXED_FEED,
    KEY_POPULAR_CONTENT,
    KEY_RECOMMENDATION_STATS,
    KEY_SOCIAL_COLLABORATIVE,
    KEY_SOCIAL_SCORES,
    KEY_UPDATED_FEED,
    KEY_USER_ACTIVITY,
    KEY_USER_VIEW_HISTORY,
    Stage,
)
from feedcache.core.exceptions import ConfigurationError
from feedcache.core.logging import get_logger, log_stage
from feedcache.core.resilience import fail_soft
from feedcache.infrastructure.cache.cache_manager import CacheFacade
from feedcache.infrastructure.monitoring.metrics_collector import MetricsCollector

logger = get_logger(__name__)


class Operation(str, Enum):
    """Business events that invalidate cached feeds."""

    CONTENT_CREATED = "content_created"
    CONTENT_UPDATED = "content_updated"
    CONTENT_DELETED = "content_deleted"
    USER_LIKED = "user_liked"
    USER_DISLIKED = "user_disliked"
    USER_COMMENTED = "user_commented"
    USER_COLLECTED = "user_collected"
    USER_FOLLOWED = "user_followed"
    USER_UNFOLLOWED = "user_unfollowed"
    USER_ACTIVITY_CHANGED = "user_activity_changed"
    SOCIAL_RELATIONSHIP = "social_relationship"
    COLLABORATIVE_UPDATE = "collaborative_update"
    SOCIAL_COLLABORATIVE_UPDATE = "social_collaborative_update"
    CONTENT_INTERACTION = "content_interaction"
    HOT_SCORE_UPDATE = "hot_score_update"
    POPULAR_CONTENT = "popular_content"
    USER_ACTIVITY = "user_activity"


# =============================================================================
# PATTERN HELPERS
# =============================================================================


def _all(family: str) -> str:
    return f"{family}:*"


def _user(family: str, user_id: str) -> str:
    return f"{family}:{user_id}:*"


def _tagged(family: str, tag: str) -> str:
    return f"{family}:*:*{tag}*"


def _containing(item_id: str) -> str:
    return f"*:*{item_id}*"


def _author(author_id: str | None) -> list[str]:
    if not author_id:
        return []
    return [_user(KEY_MIXED_FEED, author_id), _user(KEY_CONTENT_BASED, author_id)]


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


# =============================================================================
# PARAMETER TYPES
# =============================================================================


@dataclass(frozen=True)
class OperationParams:
    """
    Base for per-operation parameters.

    Subclasses declare their fields, the subset in ``required``, and
    implement ``patterns()``.
    """

    required: ClassVar[tuple[str, ...]] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "OperationParams":
        """Build from snake_case or camelCase keys; list values become tuples."""
        values: dict[str, Any] = {}
        for f in dataclasses.fields(cls):
            for name in (f.name, _camel(f.name)):
                if name in data:
                    value = data[name]
                    if isinstance(value, list | set):
                        value = tuple(value)
                    values[f.name] = value
                    break
        return cls(**values)

    def missing(self) -> list[str]:
        return [name for name in self.required if not getattr(self, name)]

    def patterns(self) -> list[str]:
        raise NotImplementedError


@dataclass(frozen=True)
class ContentCreatedParams(OperationParams):
    meme_id: str | None = None
    tags: tuple[str, ...] = ()
    author_id: str | None = None

    required: ClassVar[tuple[str, ...]] = ("meme_id",)

    def patterns(self) -> list[str]:
        result = [_all(KEY_HOT_FEED), _all(KEY_LATEST_FEED)]
        for tag in self.tags:
            result += [
                _tagged(KEY_MIXED_FEED, tag),
                _tagged(KEY_HOT_FEED, tag),
                _tagged(KEY_LATEST_FEED, tag),
            ]
        result += _author(self.author_id)
        result += [_all(KEY_RECOMMENDATION_STATS), _all(KEY_SOCIAL_SCORES)]
        return result


@dataclass(frozen=True)
class ContentUpdatedParams(OperationParams):
    meme_id: str | None = None
    old_tags: tuple[str, ...] = ()
    new_tags: tuple[str, ...] = ()
    author_id: str | None = None
    hot_score_changed: bool = False

    required: ClassVar[tuple[str, ...]] = ("meme_id",)

    def patterns(self) -> list[str]:
        result: list[str] = []
        for tag in dict.fromkeys((*self.old_tags, *self.new_tags)):
            result += [
                _tagged(KEY_MIXED_FEED, tag),
                _tagged(KEY_HOT_FEED, tag),
                _tagged(KEY_LATEST_FEED, tag),
            ]
        if self.hot_score_changed:
            result += [_all(KEY_HOT_FEED), _all(KEY_UPDATED_FEED)]
        result += _author(self.author_id)
        result.append(_all(KEY_SOCIAL_SCORES))
        return result


@dataclass(frozen=True)
class ContentDeletedParams(OperationParams):
    meme_id: str | None = None
    tags: tuple[str, ...] = ()
    author_id: str | None = None

    required: ClassVar[tuple[str, ...]] = ("meme_id",)

    def patterns(self) -> list[str]:
        result = [_all(KEY_HOT_FEED), _all(KEY_LATEST_FEED), _all(KEY_UPDATED_FEED)]
        result += [_tagged(KEY_MIXED_FEED, tag) for tag in self.tags]
        result += _author(self.author_id)
        result += [_all(KEY_RECOMMENDATION_STATS), _all(KEY_SOCIAL_SCORES)]
        return result


@dataclass(frozen=True)
class UserLikedParams(OperationParams):
    user_id: str | None = None
    meme_id: str | None = None

    required: ClassVar[tuple[str, ...]] = ("user_id", "meme_id")
    affects_hot_feed: ClassVar[bool] = True

    def patterns(self) -> list[str]:
        u = self.user_id
        result = [
            _user(KEY_MIXED_FEED, u),
            _user(KEY_CONTENT_BASED, u),
            _user(KEY_COLLABORATIVE, u),
            _user(KEY_SOCIAL_COLLABORATIVE, u),
            f"{KEY_USER_ACTIVITY}:{u}",
            f"{KEY_COLD_START}:{u}",
            _user(KEY_SOCIAL_SCORES, u),
        ]
        if self.affects_hot_feed:
            result.append(_all(KEY_HOT_FEED))
        return result


@dataclass(frozen=True)
class UserDislikedParams(UserLikedParams):
    affects_hot_feed: ClassVar[bool] = False


@dataclass(frozen=True)
class UserCommentedParams(OperationParams):
    user_id: str | None = None
    meme_id: str | None = None

    required: ClassVar[tuple[str, ...]] = ("user_id", "meme_id")

    def patterns(self) -> list[str]:
        u = self.user_id
        return [
            _user(KEY_MIXED_FEED, u),
            _user(KEY_SOCIAL_COLLABORATIVE, u),
            f"{KEY_USER_ACTIVITY}:{u}",
            f"{KEY_COLD_START}:{u}",
            _user(KEY_SOCIAL_SCORES, u),
            _all(KEY_HOT_FEED),
        ]


@dataclass(frozen=True)
class UserCollectedParams(OperationParams):
    user_id: str | None = None
    meme_id: str | None = None

    required: ClassVar[tuple[str, ...]] = ("user_id", "meme_id")

    def patterns(self) -> list[str]:
        u = self.user_id
        return [
            _user(KEY_MIXED_FEED, u),
            _user(KEY_CONTENT_BASED, u),
            f"{KEY_USER_ACTIVITY}:{u}",
            f"{KEY_COLD_START}:{u}",
        ]


@dataclass(frozen=True)
class UserFollowedParams(OperationParams):
    follower_id: str | None = None
    followee_id: str | None = None

    required: ClassVar[tuple[str, ...]] = ("follower_id", "followee_id")

    def patterns(self) -> list[str]:
        return [
            _user(KEY_MIXED_FEED, self.follower_id),
            _user(KEY_SOCIAL_COLLABORATIVE, self.follower_id),
            _user(KEY_MIXED_FEED, self.followee_id),
            _user(KEY_SOCIAL_SCORES, self.follower_id),
            _user(KEY_SOCIAL_SCORES, self.followee_id),
        ]


@dataclass(frozen=True)
class UserUnfollowedParams(UserFollowedParams):
    pass


@dataclass(frozen=True)
class UserActivityChangedParams(OperationParams):
    user_id: str | None = None

    required: ClassVar[tuple[str, ...]] = ("user_id",)

    def patterns(self) -> list[str]:
        u = self.user_id
        return [
            _user(KEY_MIXED_FEED, u),
            _user(KEY_CONTENT_BASED, u),
            _user(KEY_COLLABORATIVE, u),
            _user(KEY_SOCIAL_COLLABORATIVE, u),
            f"{KEY_USER_ACTIVITY}:{u}",
            f"{KEY_COLD_START}:{u}",
        ]


@dataclass(frozen=True)
class SocialRelationshipParams(OperationParams):
    user_id: str | None = None
    target_user_id: str | None = None

    required: ClassVar[tuple[str, ...]] = ("user_id", "target_user_id")

    def patterns(self) -> list[str]:
        result: list[str] = []
        for family in (KEY_MIXED_FEED, KEY_SOCIAL_COLLABORATIVE, KEY_COLLABORATIVE):
            result += [_user(family, self.user_id), _user(family, self.target_user_id)]
        return result


@dataclass(frozen=True)
class CollaborativeUpdateParams(OperationParams):
    user_id: str | None = None

    def patterns(self) -> list[str]:
        if self.user_id:
            return [_user(KEY_COLLABORATIVE, self.user_id), _user(KEY_MIXED_FEED, self.user_id)]
        return [_all(KEY_COLLABORATIVE), _all(KEY_MIXED_FEED)]


@dataclass(frozen=True)
class SocialCollaborativeUpdateParams(OperationParams):
    user_id: str | None = None

    required: ClassVar[tuple[str, ...]] = ("user_id",)

    def patterns(self) -> list[str]:
        return [
            _user(KEY_SOCIAL_COLLABORATIVE, self.user_id),
            _user(KEY_MIXED_FEED, self.user_id),
            _user(KEY_COLLABORATIVE, self.user_id),
        ]


@dataclass(frozen=True)
class ContentInteractionParams(OperationParams):
    user_id: str | None = None
    meme_id: str | None = None

    def patterns(self) -> list[str]:
        result: list[str] = []
        if self.user_id:
            u = self.user_id
            result += [
                _user(KEY_CONTENT_BASED, u),
                _user(KEY_MIXED_FEED, u),
                f"{KEY_USER_ACTIVITY}:{u}",
                f"{KEY_COLD_START}:{u}",
            ]
        if self.meme_id:
            result.append(_containing(self.meme_id))
        return result


@dataclass(frozen=True)
class HotScoreUpdateParams(OperationParams):
    meme_id: str | None = None

    def patterns(self) -> list[str]:
        result = [_all(KEY_HOT_FEED), _all(KEY_UPDATED_FEED), _all(KEY_POPULAR_CONTENT)]
        if self.meme_id:
            result.append(_containing(self.meme_id))
        return result


@dataclass(frozen=True)
class PopularContentParams(OperationParams):
    meme_id: str | None = None

    def patterns(self) -> list[str]:
        result = [_all(KEY_POPULAR_CONTENT), _all(KEY_HOT_FEED), _all(KEY_LATEST_FEED)]
        if self.meme_id:
            result.append(_containing(self.meme_id))
        return result


@dataclass(frozen=True)
class UserActivityParams(OperationParams):
    user_id: str | None = None

    required: ClassVar[tuple[str, ...]] = ("user_id",)

    def patterns(self) -> list[str]:
        u = self.user_id
        return [
            _user(KEY_MIXED_FEED, u),
            _user(KEY_CONTENT_BASED, u),
            _user(KEY_COLLABORATIVE, u),
            f"{KEY_USER_ACTIVITY}:{u}",
            f"{KEY_COLD_START}:{u}",
            f"{KEY_USER_VIEW_HISTORY}:{u}",
        ]


PARAMS_BY_OPERATION: dict[Operation, type[OperationParams]] = {
    Operation.CONTENT_CREATED: ContentCreatedParams,
    Operation.CONTENT_UPDATED: ContentUpdatedParams,
    Operation.CONTENT_DELETED: ContentDeletedParams,
    Operation.USER_LIKED: UserLikedParams,
    Operation.USER_DISLIKED: UserDislikedParams,
    Operation.USER_COMMENTED: UserCommentedParams,
    Operation.USER_COLLECTED: UserCollectedParams,
    Operation.USER_FOLLOWED: UserFollowedParams,
    Operation.USER_UNFOLLOWED: UserUnfollowedParams,
    Operation.USER_ACTIVITY_CHANGED: UserActivityChangedParams,
    Operation.SOCIAL_RELATIONSHIP: SocialRelationshipParams,
    Operation.COLLABORATIVE_UPDATE: CollaborativeUpdateParams,
    Operation.SOCIAL_COLLABORATIVE_UPDATE: SocialCollaborativeUpdateParams,
    Operation.CONTENT_INTERACTION: ContentInteractionParams,
    Operation.HOT_SCORE_UPDATE: HotScoreUpdateParams,
    Operation.POPULAR_CONTENT: PopularContentParams,
    Operation.USER_ACTIVITY: UserActivityParams,
}

_unmapped = [op.value for op in Operation if op not in PARAMS_BY_OPERATION]
if _unmapped:
    raise ConfigurationError(
        "Invalidation operations without a parameter type", details={"operations": _unmapped}
    )


# =============================================================================
# INVALIDATOR
# =============================================================================


@dataclass
class InvalidationReport:
    """Outcome of one ``invalidate_by_operation`` call."""

    operation: str
    accepted: bool
    patterns: list[str] = field(default_factory=list)
    deduplicated: int = 0
    deleted_keys: int = 0
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


# Dedupe scope of the top-level invalidation call running in this task
_active_scope: ContextVar[set[str] | None] = ContextVar("invalidation_scope", default=None)


class SmartInvalidator:
    """
    Translates business operations into cache pattern deletions.

    Usage:
        invalidator = SmartInvalidator(cache_facade, metrics)
        await invalidator.invalidate_by_operation(
            Operation.CONTENT_UPDATED,
            {"meme_id": "m1", "old_tags": ["cats"], "new_tags": ["dogs"], "hot_score_changed": True},
        )
    """

    def __init__(
        self,
        cache: CacheFacade,
        metrics: MetricsCollector | None = None,
        *,
        recent_limit: int = INVALIDATION_RECENT_LIMIT,
    ):
        if recent_limit <= 0:
            raise ConfigurationError("recent_limit must be positive", details={"recent_limit": recent_limit})
        self._cache = cache
        self._metrics = metrics
        self._recent_limit = recent_limit
        # Most recently sent targets, oldest first
        self._recent: OrderedDict[str, None] = OrderedDict()
        self._total_sent = 0

    async def invalidate_by_operation(
        self,
        operation: Operation | str,
        params: OperationParams | Mapping[str, Any] | None = None,
        *,
        skip_logging: bool = False,
        force_invalidate: bool = False,
    ) -> InvalidationReport:
        """
        Invalidate every pattern the operation maps to.

        STAGE-INV.1: Operation-driven invalidation

        Returns:
            InvalidationReport (``accepted`` False for unknown operations or
            missing parameters; nothing is deleted in that case)
        """
        try:
            op = Operation(operation)
        except ValueError:
            log_stage(
                logger,
                Stage.INVALIDATION.value,
                "Unknown invalidation operation",
                level="warning",
                operation=str(operation),
            )
            return InvalidationReport(str(operation), accepted=False, reason="unknown operation")

        params_type = PARAMS_BY_OPERATION[op]
        if params is None:
            params = {}
        if isinstance(params, Mapping):
            params = params_type.from_mapping(params)
        elif type(params) is not params_type:
            log_stage(
                logger,
                Stage.INVALIDATION.value,
                "Parameter type does not match operation",
                level="warning",
                operation=op.value,
                params_type=type(params).__name__,
            )
            return InvalidationReport(op.value, accepted=False, reason="wrong parameter type")

        missing = params.missing()
        if missing:
            log_stage(
                logger,
                Stage.INVALIDATION.value,
                "Invalidation skipped, required parameters missing",
                level="warning",
                operation=op.value,
                missing=missing,
            )
            return InvalidationReport(
                op.value, accepted=False, reason=f"missing parameters: {', '.join(missing)}"
            )

        if force_invalidate:
            self._recent.clear()

        report = InvalidationReport(op.value, accepted=True)
        scope: set[str] = set()
        token = _active_scope.set(scope)
        try:
            for pattern in params.patterns():
                if pattern in scope:
                    report.deduplicated += 1
                    continue
                report.deleted_keys += await self.invalidate_pattern(pattern)
                report.patterns.append(pattern)
        finally:
            _active_scope.reset(token)

        if self._metrics:
            self._metrics.record_invalidation(op.value, patterns=len(report.patterns))

        if not skip_logging:
            log_stage(
                logger,
                Stage.INVALIDATION.value,
                "Cache invalidation finished",
                operation=op.value,
                patterns=len(report.patterns),
                deleted_keys=report.deleted_keys,
                total_sent=self._total_sent,
            )
        return report

    # -------------------------------------------------------------------------
    # Primitives
    # -------------------------------------------------------------------------

    @contextmanager
    def _scope(self) -> Iterator[set[str]]:
        """Join the running call's dedupe scope, or open a fresh one for a top-level call."""
        scope = _active_scope.get()
        if scope is not None:
            yield scope
            return
        scope = set()
        token = _active_scope.set(scope)
        try:
            yield scope
        finally:
            _active_scope.reset(token)

    def _claim(self, scope: set[str], target: str) -> bool:
        """Check-then-add against ``scope``; False when already sent in this call."""
        if target in scope:
            return False
        scope.add(target)
        self._remember(target)
        return True

    def _remember(self, target: str) -> None:
        self._total_sent += 1
        self._recent[target] = None
        self._recent.move_to_end(target)
        while len(self._recent) > self._recent_limit:
            self._recent.popitem(last=False)

    async def invalidate_pattern(self, pattern: str) -> int:
        """Delete keys matching ``pattern`` once per dedupe scope. Returns keys deleted."""
        with self._scope() as scope:
            if not self._claim(scope, pattern):
                return 0
            result = await fail_soft(
                "invalidate_pattern",
                lambda: self._cache.delete_pattern(pattern),
                key=pattern,
                stage=Stage.INVALIDATION.value,
            )
        deleted = result.unwrap_or(0)
        if deleted:
            log_stage(
                logger,
                Stage.INVALIDATION.value,
                "Pattern invalidated",
                level="debug",
                pattern=pattern,
                deleted=deleted,
            )
        return deleted

    async def invalidate_key(self, key: str) -> int:
        """Delete one key (and its version sidecar) once per dedupe scope."""
        with self._scope() as scope:
            if not self._claim(scope, key):
                return 0
            result = await fail_soft(
                "invalidate_key",
                lambda: self._cache.delete(key),
                key=key,
                stage=Stage.INVALIDATION.value,
            )
        return 1 if result.unwrap_or(False) else 0

    async def invalidate_keys(self, keys: Iterable[str]) -> int:
        deleted = 0
        with self._scope():
            for key in keys:
                deleted += await self.invalidate_key(key)
        if self._metrics:
            self._metrics.record_invalidation("invalidate_keys", keys=deleted)
        return deleted

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    def get_invalidation_stats(self) -> dict[str, Any]:
        """Recent targets (bounded, newest last) and the running total sent."""
        return {
            "invalidated_keys_count": len(self._recent),
            "invalidated_keys": list(self._recent),
            "total_sent": self._total_sent,
        }

    def reset(self) -> None:
        self._recent.clear()
        self._total_sent = 0
        log_stage(logger, Stage.INVALIDATION.value, "Invalidation record reset", level="debug")
