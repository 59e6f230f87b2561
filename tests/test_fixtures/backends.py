"""
In-Memory Backends

Test doubles for the three external stores. Each one implements the
corresponding protocol from feedcache.core.interfaces and exposes switches
for simulating outages.
"""

import fnmatch
import itertools
from datetime import datetime
from typing import Any

from feedcache.core.exceptions import CacheConnectionError, CacheKeyError, QueueError
from feedcache.core.interfaces import ContentQuery, QueueMessage


class InMemoryKeyValueStore:
    """
    Dict-backed KeyValueStore.

    ``failing = True`` makes every data call raise CacheKeyError and ping
    answer False; ``failing_operations`` fails only the named calls
    (e.g. ``{"set"}``); ``refuse_connect = True`` makes connect raise.
    """

    def __init__(self, connected: bool = True):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.calls: list[tuple[str, tuple]] = []
        self.failing = False
        self.failing_operations: set[str] = set()
        self.refuse_connect = False
        self._connected = connected

    def _check(self, operation: str, *args) -> None:
        self.calls.append((operation, args))
        if self.failing or operation in self.failing_operations:
            raise CacheKeyError(f"{operation} failed: backend down")

    def count_calls(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if self.refuse_connect:
            raise CacheConnectionError("connection refused")
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def ping(self) -> bool:
        return self._connected and not self.failing

    async def get(self, key: str) -> str | None:
        self._check("get", key)
        return self.data.get(key)

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        self._check("set", key, value, ttl)
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys: str) -> int:
        self._check("delete", *keys)
        deleted = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                self.ttls.pop(key, None)
                deleted += 1
        return deleted

    async def exists(self, *keys: str) -> int:
        self._check("exists", *keys)
        return sum(1 for key in keys if key in self.data)

    async def keys(self, pattern: str) -> list[str]:
        self._check("keys", pattern)
        return [key for key in self.data if fnmatch.fnmatchcase(key, pattern)]


class InMemoryContentStore:
    """
    Dict-backed ContentStore using ContentQuery.matches for selection.

    Switches:
        healthy: ping result
        fail_count / fail_find: raise on count / find
        reject_updates: item ids whose score write returns False
        raise_on_update: item ids whose score write raises
    """

    def __init__(self, documents: list[dict[str, Any]] | None = None):
        self.documents: dict[str, dict[str, Any]] = {}
        self.healthy = True
        self.fail_count = False
        self.fail_find = False
        self.reject_updates: set[str] = set()
        self.raise_on_update: set[str] = set()
        self.updates: list[tuple[str, float]] = []
        for document in documents or []:
            self.add(document)

    def add(self, document: dict[str, Any]) -> None:
        self.documents[str(document["id"])] = document

    def _selected(self, query: ContentQuery) -> list[dict[str, Any]]:
        selected = [doc for doc in self.documents.values() if query.matches(doc)]
        return sorted(selected, key=lambda doc: doc["created_at"], reverse=True)

    async def ping(self) -> bool:
        return self.healthy

    async def count(self, query: ContentQuery) -> int:
        if self.fail_count:
            raise ConnectionError("count failed")
        return len(self._selected(query))

    async def find(self, query: ContentQuery, skip: int, limit: int) -> list[dict[str, Any]]:
        if self.fail_find:
            raise ConnectionError("find failed")
        return [dict(doc) for doc in self._selected(query)[skip:skip + limit]]

    async def get(self, item_id: str) -> dict[str, Any] | None:
        document = self.documents.get(item_id)
        return dict(document) if document is not None else None

    async def update_hot_score(self, item_id: str, score: float, updated_at: datetime) -> bool:
        if item_id in self.raise_on_update:
            raise ConnectionError(f"write failed for {item_id}")
        if item_id in self.reject_updates or item_id not in self.documents:
            return False
        self.documents[item_id]["hot_score"] = score
        self.documents[item_id]["hot_score_updated_at"] = updated_at
        self.updates.append((item_id, score))
        return True


class InMemoryJobQueue:
    """
    List-backed JobQueueBackend with a manual clock for delayed jobs.

    ``now_ms`` only moves through ``advance``; promote_due releases delayed
    jobs whose ready time has been reached, and consume redelivers pending
    jobs left unacknowledged for ``reclaim_idle_ms``.
    """

    def __init__(self, reclaim_idle_ms: int = 60000):
        self.now_ms = 0
        self.reclaim_idle_ms = reclaim_idle_ms
        self.delivered_at: dict[str, int] = {}
        self.redelivered: list[str] = []
        self.ready: list[QueueMessage] = []
        self.delayed: list[tuple[int, dict[str, Any]]] = []
        self.pending: dict[str, QueueMessage] = {}
        self.acked: list[str] = []
        self.enqueued: list[tuple[dict[str, Any], int]] = []
        self.failing = False
        self.closed = False
        self._ids = itertools.count(1)

    def advance(self, ms: int) -> None:
        self.now_ms += ms

    async def enqueue(self, payload: dict[str, Any], delay_ms: int = 0) -> str:
        if self.failing:
            raise QueueError("enqueue failed: backend down")
        self.enqueued.append((dict(payload), delay_ms))
        if delay_ms > 0:
            self.delayed.append((self.now_ms + delay_ms, dict(payload)))
            return f"delayed-{next(self._ids)}"
        message_id = f"{next(self._ids)}-0"
        self.ready.append(QueueMessage(message_id=message_id, payload=dict(payload)))
        return message_id

    async def promote_due(self) -> int:
        due = [entry for entry in self.delayed if entry[0] <= self.now_ms]
        self.delayed = [entry for entry in self.delayed if entry[0] > self.now_ms]
        for _ready_at, payload in due:
            self.ready.append(QueueMessage(message_id=f"{next(self._ids)}-0", payload=payload))
        return len(due)

    async def consume(self, consumer: str, batch_size: int, block_ms: int) -> list[QueueMessage]:
        idle = [
            message
            for message_id, message in self.pending.items()
            if self.now_ms - self.delivered_at[message_id] >= self.reclaim_idle_ms
        ][:batch_size]
        if idle:
            batch = idle
            self.redelivered.extend(message.message_id for message in idle)
        else:
            batch, self.ready = self.ready[:batch_size], self.ready[batch_size:]
        for message in batch:
            self.pending[message.message_id] = message
            self.delivered_at[message.message_id] = self.now_ms
        return batch

    async def acknowledge(self, message_id: str) -> None:
        self.pending.pop(message_id, None)
        self.delivered_at.pop(message_id, None)
        self.acked.append(message_id)

    async def close(self) -> None:
        self.closed = True
