"""
Content Store Protocol

The content store is owned by another service; this module only describes
the slice of it that score recomputation needs.

Author: System Architect
Date: 2025-12-08
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from feedcache.core.config.constants import DELETED_STATUS


@dataclass(frozen=True)
class ContentQuery:
    """
    Selection used by a recompute run.

    Attributes:
        force: Select every non-deleted item when True
        updated_since: Incremental runs also select items modified after this instant
        excluded_status: Items with this status are never selected
    """

    force: bool = False
    updated_since: datetime | None = None
    excluded_status: str = DELETED_STATUS

    def matches(self, document: dict[str, Any]) -> bool:
        """
        Reference semantics for in-memory stores.

        Incremental selection: updated within the window, OR score missing,
        OR score equal to zero.
        """
        if document.get("status") == self.excluded_status:
            return False
        if self.force:
            return True

        score = document.get("hot_score")
        if score is None or score == 0:
            return True

        modified = document.get("modified_at")
        return bool(
            self.updated_since is not None
            and isinstance(modified, datetime)
            and modified >= self.updated_since
        )


@runtime_checkable
class ContentStore(Protocol):
    """
    Interface for the document store holding content items.

    Documents are plain mappings with at least ``id``, the six engagement
    counters, ``created_at``, optional ``modified_at``, ``status`` and
    ``hot_score``.
    """

    async def ping(self) -> bool:
        """Liveness check."""
        ...

    async def count(self, query: ContentQuery) -> int:
        """Number of documents selected by ``query``."""
        ...

    async def find(self, query: ContentQuery, skip: int, limit: int) -> list[dict[str, Any]]:
        """One page of selected documents, newest ``created_at`` first."""
        ...

    async def get(self, item_id: str) -> dict[str, Any] | None:
        """Single document by id."""
        ...

    async def update_hot_score(self, item_id: str, score: float, updated_at: datetime) -> bool:
        """Persist ``hot_score`` and ``hot_score_updated_at`` for one item."""
        ...
