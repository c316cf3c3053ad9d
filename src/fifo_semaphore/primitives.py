"""Redis list primitive backing the sync Semaphore.

The queue is a plain Redis list of raw identity strings, so any client
(sync, async, or another language) pushing to the same key takes part in
the same semaphore.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from .exceptions import StoreCommandError, StoreConnectionError

if TYPE_CHECKING:
    from redis import Redis


def describe_endpoint(redis: Any) -> str:
    """Return a ``host:port/db`` label for a redis-py client."""
    kwargs = redis.connection_pool.connection_kwargs
    if "path" in kwargs:
        return f"unix://{kwargs['path']}/{kwargs.get('db', 0)}"
    return f"{kwargs.get('host', 'localhost')}:{kwargs.get('port', 6379)}/{kwargs.get('db', 0)}"


@contextmanager
def translate_redis_errors(endpoint: str, command: str, key: str) -> Iterator[None]:
    """Re-raise redis-py errors as this package's store errors."""
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError) as exc:
        raise StoreConnectionError(endpoint, str(exc)) from exc
    except RedisError as exc:
        raise StoreCommandError(command, key, str(exc)) from exc


class QueueStore(Protocol):
    """Blocking queue operations required by the sync semaphore."""

    @property
    def key(self) -> str: ...

    def push(self, identity: str) -> int: ...

    def position(self, identity: str) -> Optional[int]: ...

    def pop(self, count: int = 1) -> list[str]: ...

    def expire(self, seconds: int) -> bool: ...

    def length(self) -> int: ...

    def close(self) -> None: ...


QueueFactory = Callable[[str, str], QueueStore]


class RedisQueue:
    """Blocking Redis list used as the semaphore's FIFO queue.

    Usage:
        >>> from redis import Redis
        >>> queue = RedisQueue(redis=Redis(), key='semaphore:jobs:queue')
        >>> queue.push('worker-1')
        1
        >>> queue.position('worker-1')
        0
    """

    def __init__(self, *, redis: Redis, key: str, owns_client: bool = False) -> None:
        self._redis = redis
        self._key = key
        self._owns_client = owns_client
        self._endpoint = describe_endpoint(redis)

    @classmethod
    def open(cls, endpoint: str, key: str) -> RedisQueue:
        """Connect to ``endpoint`` and return a queue owning its client.

        Raises:
            StoreConnectionError: If the server does not answer a PING
        """
        from redis import Redis as RedisClient

        redis = RedisClient.from_url(endpoint)
        try:
            with translate_redis_errors(endpoint, "PING", key):
                redis.ping()
        except StoreConnectionError:
            redis.close()
            raise
        return cls(redis=redis, key=key, owns_client=True)

    @property
    def key(self) -> str:
        """Return the Redis key for this queue."""
        return self._key

    def push(self, identity: str) -> int:
        """Append ``identity`` to the tail and return the new queue length."""
        with translate_redis_errors(self._endpoint, "RPUSH", self._key):
            return self._redis.rpush(self._key, identity)

    def position(self, identity: str) -> Optional[int]:
        """Return the 0-indexed rank of the first ``identity`` entry, if any."""
        with translate_redis_errors(self._endpoint, "LPOS", self._key):
            return self._redis.lpos(self._key, identity)

    def pop(self, count: int = 1) -> list[str]:
        """Remove up to ``count`` entries from the head."""
        with translate_redis_errors(self._endpoint, "LPOP", self._key):
            popped = self._redis.lpop(self._key, count)
        return [decode_item(item) for item in popped or ()]

    def expire(self, seconds: int) -> bool:
        """Set the queue's time to live, returning whether the key exists."""
        with translate_redis_errors(self._endpoint, "EXPIRE", self._key):
            return bool(self._redis.expire(self._key, seconds))

    def length(self) -> int:
        """Return the number of queued identities."""
        with translate_redis_errors(self._endpoint, "LLEN", self._key):
            return self._redis.llen(self._key)

    def close(self) -> None:
        """Close the client if this queue opened it."""
        if self._owns_client:
            self._redis.close()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} key={self._key!r} endpoint={self._endpoint!r}>"


def decode_item(item: str | bytes) -> str:
    if isinstance(item, bytes):
        return item.decode()
    return item
