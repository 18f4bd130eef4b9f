"""
Redis Connection Pool Management.

BrokerPool hands out one redis.asyncio client per logical operation
(a publish, or a subscriber bridge's whole lifetime) and takes it back
afterwards. It is built once in the application lifespan and passed to
every component that needs broker access.

Limits:
- At most ``max_active`` clients are checked out at the same time.
- Idle clients older than ``idle_timeout`` seconds are closed.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable

import redis.asyncio as redis
import redis.exceptions

from shared.config.logging import get_logger
from shared.utils.exceptions import (
    BrokerConnectionError,
    BrokerError,
    PoolExhaustedError,
)

if TYPE_CHECKING:
    from shared.config.settings import Settings

logger = get_logger(__name__)

ClientFactory = Callable[[], redis.Redis]


def redis_client_from_settings(settings: "Settings") -> redis.Redis:
    """
    Build a Redis client for the pool.

    Responses stay as bytes: pub/sub payloads are decoded by the Message
    codec, so invalid UTF-8 from the broker becomes a skippable CodecError
    instead of failing inside get_message.
    """
    return redis.Redis.from_url(
        settings.redis_url,
        decode_responses=False,
        socket_connect_timeout=settings.redis_socket_timeout,
        health_check_interval=30,
    )


class BrokerPool:
    """
    Bounded pool of Redis clients with idle eviction.

    Usage:
        pool = BrokerPool.from_settings(settings)

        async with pool.connection() as client:
            await client.publish("main", payload)

        client = await pool.acquire()
        try:
            ...
        finally:
            await pool.release(client)

        await pool.close()
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        max_active: int = 80,
        idle_timeout: float = 240.0,
        acquire_timeout: float | None = None,
    ):
        if max_active <= 0:
            raise ValueError("max_active must be a positive integer")
        self._client_factory = client_factory
        self.max_active = max_active
        self.idle_timeout = idle_timeout
        self.acquire_timeout = acquire_timeout

        self._slots = asyncio.Semaphore(max_active)
        # (client, released_at) pairs; most recently released on the right
        self._idle: deque[tuple[redis.Redis, float]] = deque()
        self._active: set[int] = set()
        self._closed = False

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        client_factory: ClientFactory | None = None,
    ) -> "BrokerPool":
        """Build a pool from settings. ``client_factory`` overrides the Redis URL."""
        if client_factory is None:

            def client_factory() -> redis.Redis:
                return redis_client_from_settings(settings)

        pool = cls(
            client_factory,
            max_active=settings.redis_pool_max_active,
            idle_timeout=settings.redis_pool_idle_timeout,
            acquire_timeout=settings.redis_pool_acquire_timeout,
        )
        logger.info(
            "Redis pool initialized",
            max_active=pool.max_active,
            idle_timeout=pool.idle_timeout,
        )
        return pool

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    @property
    def closed(self) -> bool:
        return self._closed

    async def acquire(self) -> redis.Redis:
        """
        Check a client out of the pool.

        Waits while ``max_active`` clients are checked out. Reuses the most
        recently released idle client, or connects a new one.

        Raises:
            BrokerError: If the pool is closed.
            PoolExhaustedError: If acquire_timeout elapses while waiting.
            BrokerConnectionError: If a new connection cannot be established.
        """
        if self._closed:
            raise BrokerError("Broker pool is closed")

        try:
            await asyncio.wait_for(self._slots.acquire(), timeout=self.acquire_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Redis pool exhausted",
                max_active=self.max_active,
                timeout=self.acquire_timeout,
            )
            raise PoolExhaustedError(
                f"No broker connection available after {self.acquire_timeout}s",
                max_active=self.max_active,
            ) from None

        if self._closed:
            # Closed while this caller was waiting for a slot
            self._slots.release()
            raise BrokerError("Broker pool is closed")

        try:
            await self._evict_idle()
            if self._idle:
                client, _ = self._idle.pop()
            else:
                client = await self._connect()
        except BaseException:
            self._slots.release()
            raise

        self._active.add(id(client))
        return client

    async def release(self, client: redis.Redis, discard: bool = False) -> None:
        """
        Return a client to the pool.

        Args:
            client: A client obtained from acquire().
            discard: Close the client instead of keeping it for reuse
                (use after a broker error left it in an unknown state).
        """
        if id(client) not in self._active:
            logger.warning("Release of a client not checked out from this pool")
            return

        self._active.discard(id(client))
        self._slots.release()

        if discard or self._closed:
            await self._close_client(client)
        else:
            self._idle.append((client, time.monotonic()))
        await self._evict_idle()

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[redis.Redis]:
        """Acquire a client for the duration of the block."""
        client = await self.acquire()
        discard = False
        try:
            yield client
        except (redis.exceptions.RedisError, asyncio.CancelledError):
            discard = True
            raise
        finally:
            await self.release(client, discard=discard)

    def stats(self) -> dict[str, Any]:
        return {
            "active": self.active_count,
            "idle": self.idle_count,
            "max_active": self.max_active,
            "idle_timeout": self.idle_timeout,
            "closed": self._closed,
        }

    async def close(self) -> None:
        """
        Close all idle clients and stop handing out new ones.

        Clients still checked out are closed when they are released.
        """
        self._closed = True
        while self._idle:
            client, _ = self._idle.popleft()
            await self._close_client(client)
        logger.info("Redis pool closed", active=self.active_count)

    async def _connect(self) -> redis.Redis:
        client = self._client_factory()
        try:
            await client.ping()
        except (redis.exceptions.RedisError, OSError) as e:
            await self._close_client(client)
            logger.error("Redis connection failed", error=str(e))
            raise BrokerConnectionError(f"Redis connection failed: {e}") from e
        logger.debug("Redis connection established", active=self.active_count + 1)
        return client

    async def _evict_idle(self) -> None:
        """Close idle clients that have outlived idle_timeout (oldest on the left)."""
        now = time.monotonic()
        evicted = 0
        while self._idle and now - self._idle[0][1] > self.idle_timeout:
            client, _ = self._idle.popleft()
            await self._close_client(client)
            evicted += 1
        if evicted:
            logger.debug("Evicted idle Redis connections", count=evicted)

    async def _close_client(self, client: redis.Redis) -> None:
        try:
            await client.aclose()
        except Exception as e:
            logger.warning("Error closing Redis connection", error=str(e))
