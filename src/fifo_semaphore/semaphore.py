"""Blocking FIFO semaphore over a shared Redis list.

This is the synchronous twin of ``aiosemaphore``: it uses the same queue
layout, so sync and async callers share one semaphore per key.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import deque
from typing import Optional

from pottery import ContextTimer

from .backoff import SleepEstimator, estimate_sleep_duration
from .descriptor import DEFAULT_EXPIRY, DEFAULT_REDIS_URL, SemaphoreDescriptor
from .exceptions import AcquireTimeout, MaxPositionExceeded, SemaphoreError
from .primitives import QueueFactory, RedisQueue

logger = logging.getLogger(__name__)

NOT_FOUND_POSITION = 1


def wait_for_slot(
    descriptor: SemaphoreDescriptor,
    *,
    connect: Optional[QueueFactory] = None,
    estimate: SleepEstimator = estimate_sleep_duration,
    timeout: Optional[float] = None,
) -> None:
    """Enter the queue and block until the semaphore has capacity for us.

    Behaves like the async ``wait_for_slot``; since a blocking call can't
    be cancelled from outside, an optional ``timeout`` is checked between
    polls instead.

    Raises:
        AcquireTimeout: If ``timeout`` elapsed before admission
        MaxPositionExceeded: If our position passes ``max_position``
        StoreConnectionError: If Redis cannot be reached
        StoreCommandError: If a queue command fails
    """
    connect = connect or RedisQueue.open
    queue = connect(descriptor.store_endpoint, descriptor.queue_key)
    try:
        with ContextTimer() as timer:
            # Compared as a 0-indexed rank, not the raw RPUSH length, so the
            # first check uses the same scale as every later LPOS poll.
            position = queue.push(descriptor.id) - 1
            logger.debug("Entered queue %r in position %d", descriptor.queue_key, position)

            while True:
                if position < descriptor.capacity:
                    logger.debug(
                        "Position %d is less than capacity (%d); admitted after %d ms",
                        position,
                        descriptor.capacity,
                        timer.elapsed(),
                    )
                    return

                if descriptor.max_position > 0 and position > descriptor.max_position:
                    raise MaxPositionExceeded(position, descriptor.max_position)

                sleep_duration = estimate(
                    position, descriptor.capacity, descriptor.base_sleep_duration
                )
                if timeout is not None:
                    remaining = timeout - timer.elapsed() / 1000
                    if remaining <= 0:
                        raise AcquireTimeout(descriptor.queue_key, timeout, timer.elapsed())
                    sleep_duration = min(sleep_duration, remaining)
                time.sleep(sleep_duration)

                found = queue.position(descriptor.id)
                position = NOT_FOUND_POSITION if found is None else found
                logger.debug("Position is now %d", position)
    finally:
        queue.close()


def clean_up(
    descriptor: SemaphoreDescriptor,
    *,
    connect: Optional[QueueFactory] = None,
) -> None:
    """Pop the head of the queue and refresh the queue's expiry.

    Both commands are attempted even if the first one fails; the first
    failure is raised afterwards.
    """
    connect = connect or RedisQueue.open
    queue = connect(descriptor.store_endpoint, descriptor.queue_key)
    errors: list[SemaphoreError] = []
    try:
        try:
            popped = queue.pop(1)
            logger.debug("Popped %r from queue %r", popped, descriptor.queue_key)
        except SemaphoreError as exc:
            errors.append(exc)
        try:
            queue.expire(descriptor.expiry)
        except SemaphoreError as exc:
            errors.append(exc)
    finally:
        queue.close()

    if errors:
        raise errors[0]


class Semaphore:
    """Distributed FIFO semaphore for blocking code.

    Usage:
        >>> sem = Semaphore(key='my-resource', capacity=3)
        >>> if sem.acquire(timeout=5):
        ...     try:
        ...         # At most 3 holders across all processes
        ...         pass
        ...     finally:
        ...         sem.release()

        >>> # Or use as context manager
        >>> with sem:
        ...     pass

    Args:
        key: A string that identifies this semaphore
        capacity: Number of concurrently admitted holders (default: 1)
        max_position: Largest tolerated queue position, 0 for unbounded
        sleep_duration: Baseline poll interval in seconds
        expiry: Seconds to live set on the queue at each release
        redis_url: Redis server to coordinate through
        connect: Factory opening a queue store (defaults to Redis)
        estimate: Sleep estimator used between polls
    """

    _KEY_PREFIX = "semaphore"

    def __init__(
        self,
        *,
        key: str,
        capacity: int = 1,
        max_position: int = 0,
        sleep_duration: float = 0.1,
        expiry: int = DEFAULT_EXPIRY,
        redis_url: str = DEFAULT_REDIS_URL,
        connect: Optional[QueueFactory] = None,
        estimate: SleepEstimator = estimate_sleep_duration,
    ) -> None:
        if not key:
            raise ValueError("Semaphore key must not be empty")
        if capacity < 1:
            raise ValueError("Semaphore capacity must be >= 1")
        if max_position < 0:
            raise ValueError("max_position must be non-negative")
        if sleep_duration <= 0:
            raise ValueError("sleep_duration must be positive")
        if expiry < 1:
            raise ValueError("expiry must be >= 1")

        self._key = key
        self._capacity = capacity
        self._max_position = max_position
        self._sleep_duration = sleep_duration
        self._expiry = expiry
        self._redis_url = redis_url
        self._connect = connect or RedisQueue.open
        self._estimate = estimate
        self._held: deque[SemaphoreDescriptor] = deque()

    @property
    def queue_key(self) -> str:
        """Return the Redis key of this semaphore's queue."""
        return f"{self._KEY_PREFIX}:{self._key}:queue"

    @property
    def capacity(self) -> int:
        """Return the number of holders admitted at once."""
        return self._capacity

    @property
    def held(self) -> int:
        """Return how many slots this instance currently holds."""
        return len(self._held)

    def queue_length(self) -> int:
        """Return the number of holders and waiters currently queued."""
        queue = self._connect(self._redis_url, self.queue_key)
        try:
            return queue.length()
        finally:
            queue.close()

    def acquire(self, *, timeout: Optional[float] = None) -> bool:
        """Block until a slot in the semaphore is held.

        A rejected or timed out acquire releases on the caller's behalf so
        the queue stays balanced.

        Args:
            timeout: Maximum time to wait in seconds (None for no timeout)

        Returns:
            True once the slot is held
        """
        descriptor = SemaphoreDescriptor(
            queue_key=self.queue_key,
            id=uuid.uuid4().hex,
            capacity=self._capacity,
            max_position=self._max_position,
            base_sleep_duration=self._sleep_duration,
            store_endpoint=self._redis_url,
            expiry=self._expiry,
        )
        try:
            wait_for_slot(
                descriptor,
                connect=self._connect,
                estimate=self._estimate,
                timeout=timeout,
            )
        except (AcquireTimeout, MaxPositionExceeded):
            clean_up(descriptor, connect=self._connect)
            raise

        self._held.append(descriptor)
        return True

    def release(self) -> None:
        """Give back the oldest slot held by this instance.

        Raises:
            SemaphoreError: If this instance holds no slot
        """
        if not self._held:
            raise SemaphoreError(f"Semaphore '{self._key}' released without a held slot")
        descriptor = self._held.popleft()
        clean_up(descriptor, connect=self._connect)

    def __enter__(self) -> Semaphore:
        """Enter context manager, acquiring a slot."""
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager, releasing the slot."""
        self.release()

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__} "
            f"key={self._key!r} "
            f"capacity={self._capacity} "
            f"max_position={self._max_position}>"
        )
