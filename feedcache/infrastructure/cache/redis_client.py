"""
Redis Client with Connection Pooling

Architecture:
    RedisClient (Public API, implements KeyValueStore)
        ├── ConnectionManager (Connection lifecycle)
        └── OperationExecutor (Command execution with error handling)

The client is built by the composition root from the Redis settings section
and shared by the cache facade, the version store and the retry queue
backend (through the ``client`` property).

Author: System Architect
Date: 2025-12-13
"""

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from feedcache.core.config.settings import RedisSettings
from feedcache.core.exceptions import CacheConnectionError, CacheKeyError
from feedcache.core.logging import get_logger

logger = get_logger(__name__)

# SCAN page size used when listing keys by pattern
SCAN_COUNT = 500


# =============================================================================
# LAYER 1: CONNECTION MANAGEMENT
# =============================================================================


class ConnectionManager:
    """
    Manages Redis connection lifecycle and pooling.

    Pool Configuration (from RedisSettings):
    - Max connections: REDIS_MAX_CONNECTIONS
    - Socket timeout: REDIS_SOCKET_TIMEOUT
    - Health check interval: REDIS_HEALTH_CHECK_INTERVAL
    - Decode responses: True (strings, not bytes)
    """

    def __init__(self, settings: RedisSettings):
        self._settings = settings
        self._pool: ConnectionPool | None = None
        self._client: redis.Redis | None = None
        self._is_connected = False

    async def connect(self) -> redis.Redis:
        """
        Establish connection to Redis with connection pooling.

        STAGE-REDIS.2: Connection establishment

        Raises:
            CacheConnectionError: If connection fails
        """
        if self._is_connected and self._client:
            return self._client

        try:
            # STAGE-REDIS.2.1: Create connection pool
            self._pool = ConnectionPool(
                host=self._settings.REDIS_HOST,
                port=self._settings.REDIS_PORT,
                db=self._settings.REDIS_DB,
                password=self._settings.REDIS_PASSWORD,
                max_connections=self._settings.REDIS_MAX_CONNECTIONS,
                socket_connect_timeout=self._settings.REDIS_SOCKET_CONNECT_TIMEOUT,
                socket_timeout=self._settings.REDIS_SOCKET_TIMEOUT,
                retry_on_timeout=True,
                health_check_interval=self._settings.REDIS_HEALTH_CHECK_INTERVAL,
                decode_responses=True,
            )

            # STAGE-REDIS.2.2: Create client and verify with ping
            self._client = redis.Redis(connection_pool=self._pool)
            await self._client.ping()

            self._is_connected = True

            logger.info(
                "Redis connected successfully",
                stage="REDIS.2",
                host=self._settings.REDIS_HOST,
                port=self._settings.REDIS_PORT,
                max_connections=self._settings.REDIS_MAX_CONNECTIONS,
            )

            return self._client

        except (ConnectionError, TimeoutError) as e:
            logger.error("Failed to connect to Redis", stage="REDIS.2", error=str(e))
            raise CacheConnectionError(
                message=f"Failed to connect to Redis: {e}",
                details={
                    "host": self._settings.REDIS_HOST,
                    "port": self._settings.REDIS_PORT,
                },
            ) from e

    async def disconnect(self) -> None:
        """
        Close Redis connection and pool.

        STAGE-REDIS.3: Connection cleanup
        """
        if self._client:
            await self._client.aclose()

        if self._pool:
            await self._pool.disconnect()

        self._client = None
        self._pool = None
        self._is_connected = False

        logger.info("Redis disconnected", stage="REDIS.3")

    async def ping(self) -> bool:
        """True if the connection answers PING."""
        try:
            if self._client and self._is_connected:
                await self._client.ping()
                return True
        except (ConnectionError, TimeoutError):
            pass
        return False

    def get_client(self) -> redis.Redis | None:
        return self._client

    def is_connected(self) -> bool:
        return self._is_connected


# =============================================================================
# LAYER 2: OPERATION EXECUTOR
# =============================================================================


class OperationExecutor:
    """
    Executes Redis operations with consistent error handling.

    Error Handling Strategy:
    - Catch RedisError exceptions
    - Log error with context (stage, key, etc.)
    - Raise CacheKeyError with details
    """

    def __init__(self, redis_client: redis.Redis):
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        """
        Get value from Redis.

        STAGE-REDIS.GET: Redis GET operation
        """
        try:
            return await self._redis.get(key)
        except RedisError as e:
            logger.error("Redis GET failed", stage="REDIS.GET", key=key, error=str(e))
            raise CacheKeyError(message=f"Redis GET failed: {e}", details={"key": key}) from e

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        """
        Set value in Redis, with EX when ``ttl`` is given.

        STAGE-REDIS.SET: Redis SET operation
        """
        try:
            result = await self._redis.set(key, value, ex=ttl)
            return bool(result)
        except RedisError as e:
            logger.error("Redis SET failed", stage="REDIS.SET", key=key, error=str(e))
            raise CacheKeyError(message=f"Redis SET failed: {e}", details={"key": key}) from e

    async def delete(self, *keys: str) -> int:
        """STAGE-REDIS.DEL: Redis DEL operation"""
        if not keys:
            return 0
        try:
            return await self._redis.delete(*keys)
        except RedisError as e:
            logger.error("Redis DEL failed", stage="REDIS.DEL", keys=list(keys), error=str(e))
            raise CacheKeyError(
                message=f"Redis DEL failed: {e}", details={"keys": list(keys)}
            ) from e

    async def exists(self, *keys: str) -> int:
        try:
            return await self._redis.exists(*keys)
        except RedisError as e:
            logger.error("Redis EXISTS failed", stage="REDIS.EXISTS", error=str(e))
            raise CacheKeyError(
                message=f"Redis EXISTS failed: {e}", details={"keys": list(keys)}
            ) from e

    async def keys(self, pattern: str) -> list[str]:
        """
        List keys matching ``pattern`` with SCAN (never KEYS).

        STAGE-REDIS.SCAN: Redis SCAN iteration
        """
        try:
            return [key async for key in self._redis.scan_iter(match=pattern, count=SCAN_COUNT)]
        except RedisError as e:
            logger.error("Redis SCAN failed", stage="REDIS.SCAN", pattern=pattern, error=str(e))
            raise CacheKeyError(
                message=f"Redis SCAN failed: {e}", details={"pattern": pattern}
            ) from e


# =============================================================================
# LAYER 3: PUBLIC API
# =============================================================================


class RedisClient:
    """
    Async Redis client with connection pooling.

    Implements the KeyValueStore protocol.

    Usage:
        client = RedisClient(settings.redis)
        await client.connect()

        await client.set("key", "value", ttl=3600)
        value = await client.get("key")

        await client.disconnect()
    """

    def __init__(self, settings: RedisSettings):
        """
        Initialize Redis client.

        STAGE-REDIS.1: Client initialization
        """
        self._settings = settings
        self._conn_mgr = ConnectionManager(settings)
        self._executor: OperationExecutor | None = None

        logger.info(
            "Redis client initialized",
            stage="REDIS.1",
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
        )

    async def connect(self) -> None:
        """
        Establish connection to Redis.

        Raises:
            CacheConnectionError: If connection fails
        """
        client = await self._conn_mgr.connect()
        self._executor = OperationExecutor(client)

    async def disconnect(self) -> None:
        await self._conn_mgr.disconnect()
        self._executor = None

    @property
    def is_connected(self) -> bool:
        return self._conn_mgr.is_connected()

    @property
    def client(self) -> redis.Redis:
        """
        Raw redis.asyncio client, for components that need stream commands.

        Raises:
            CacheConnectionError: If not connected
        """
        client = self._conn_mgr.get_client()
        if client is None:
            raise CacheConnectionError("Redis client is not connected")
        return client

    def _require_executor(self) -> OperationExecutor:
        if self._executor is None:
            raise CacheConnectionError("Redis client is not connected")
        return self._executor

    async def ping(self) -> bool:
        return await self._conn_mgr.ping()

    # -------------------------------------------------------------------------
    # Delegate to OperationExecutor
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> str | None:
        return await self._require_executor().get(key)

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        return await self._require_executor().set(key, value, ttl)

    async def delete(self, *keys: str) -> int:
        return await self._require_executor().delete(*keys)

    async def exists(self, *keys: str) -> int:
        return await self._require_executor().exists(*keys)

    async def keys(self, pattern: str) -> list[str]:
        return await self._require_executor().keys(pattern)
