"""Async Redis list primitive backing AIOSemaphore.

Uses the same storage layout as ``RedisQueue``: a plain Redis list of raw
identity strings, so sync and async semaphores share state.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Protocol

from .exceptions import StoreConnectionError
from .primitives import decode_item, describe_endpoint, translate_redis_errors

if TYPE_CHECKING:
    from redis.asyncio import Redis as AIORedis


class AIOQueueStore(Protocol):
    """Queue operations required by ``wait_for_slot`` and ``clean_up``."""

    @property
    def key(self) -> str: ...

    async def push(self, identity: str) -> int: ...

    async def position(self, identity: str) -> Optional[int]: ...

    async def pop(self, count: int = 1) -> list[str]: ...

    async def expire(self, seconds: int) -> bool: ...

    async def length(self) -> int: ...

    async def aclose(self) -> None: ...


AIOQueueFactory = Callable[[str, str], Awaitable[AIOQueueStore]]


class AIORedisQueue:
    """Async Redis list used as the semaphore's FIFO queue.

    Usage:
        >>> from redis.asyncio import Redis
        >>> queue = AIORedisQueue(redis=Redis(), key='semaphore:jobs:queue')
        >>> await queue.push('worker-1')
        1
        >>> await queue.position('worker-1')
        0
    """

    def __init__(
        self, *, redis: AIORedis, key: str, owns_client: bool = False
    ) -> None:
        self._redis: AIORedis = redis
        self._key = key
        self._owns_client = owns_client
        self._endpoint = describe_endpoint(redis)

    @classmethod
    async def open(cls, endpoint: str, key: str) -> AIORedisQueue:
        """Connect to ``endpoint`` and return a queue owning its client.

        Each call creates its own client, so concurrent callers never
        share a connection.

        Raises:
            StoreConnectionError: If the server does not answer a PING
        """
        from redis.asyncio import Redis as AIORedisClient

        redis = AIORedisClient.from_url(endpoint)
        try:
            with translate_redis_errors(endpoint, "PING", key):
                await redis.ping()
        except StoreConnectionError:
            await redis.aclose()
            raise
        return cls(redis=redis, key=key, owns_client=True)

    @property
    def key(self) -> str:
        """Return the Redis key for this queue."""
        return self._key

    async def push(self, identity: str) -> int:
        """Append ``identity`` to the tail and return the new queue length."""
        with translate_redis_errors(self._endpoint, "RPUSH", self._key):
            return await self._redis.rpush(self._key, identity)

    async def position(self, identity: str) -> Optional[int]:
        """Return the 0-indexed rank of the first ``identity`` entry, if any."""
        with translate_redis_errors(self._endpoint, "LPOS", self._key):
            return await self._redis.lpos(self._key, identity)

    async def pop(self, count: int = 1) -> list[str]:
        """Remove up to ``count`` entries from the head."""
        with translate_redis_errors(self._endpoint, "LPOP", self._key):
            popped = await self._redis.lpop(self._key, count)
        return [decode_item(item) for item in popped or ()]

    async def expire(self, seconds: int) -> bool:
        """Set the queue's time to live, returning whether the key exists."""
        with translate_redis_errors(self._endpoint, "EXPIRE", self._key):
            return bool(await self._redis.expire(self._key, seconds))

    async def length(self) -> int:
        """Return the number of queued identities."""
        with translate_redis_errors(self._endpoint, "LLEN", self._key):
            return await self._redis.llen(self._key)

    async def aclose(self) -> None:
        """Close the client if this queue opened it."""
        if self._owns_client:
            await self._redis.aclose()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} key={self._key!r} endpoint={self._endpoint!r}>"
