"""
Key-Value Store Protocol

This module defines the protocol the cache facade, version store and
invalidator depend on, enabling dependency injection and testability.

Architectural Decision: Protocol-based abstraction
- RedisClient in production, an in-memory dict in tests
- Follows dependency inversion principle
- Runtime validation with @runtime_checkable

Author: System Architect
Date: 2025-12-08
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class KeyValueStore(Protocol):
    """
    Interface for the shared key-value backend.

    Values are strings; callers serialize before writing. Implementations
    raise CacheError subclasses on failure and let callers decide whether to
    fail soft.

    Implementations:
    - RedisClient: Production Redis-backed store
    - InMemoryKeyValueStore (tests/test_fixtures/backends.py): test double
    """

    @property
    def is_connected(self) -> bool:
        """True once a connection has been established and not closed."""
        ...

    async def connect(self) -> None:
        """
        Establish the connection.

        Raises:
            CacheConnectionError: If connection fails
        """
        ...

    async def disconnect(self) -> None:
        """Close the connection."""
        ...

    async def ping(self) -> bool:
        """
        Check if the backend is healthy.

        Returns:
            bool: True if healthy, False otherwise
        """
        ...

    async def get(self, key: str) -> str | None:
        """
        Get value from the store.

        Returns:
            Value or None if not found

        Raises:
            CacheKeyError: If operation fails
        """
        ...

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        """
        Set value, optionally with a time-to-live in seconds.

        Raises:
            CacheKeyError: If operation fails
        """
        ...

    async def delete(self, *keys: str) -> int:
        """
        Delete keys.

        Returns:
            int: Number of keys deleted
        """
        ...

    async def exists(self, *keys: str) -> int:
        """Number of the given keys that exist."""
        ...

    async def keys(self, pattern: str) -> list[str]:
        """
        List keys matching a glob pattern (``*``, ``?``, ``[...]``).

        Implementations must not block the backend (Redis uses SCAN).
        """
        ...
