"""Async FIFO semaphore over a shared Redis list.

Callers join the queue with RPUSH and are admitted once their LPOS rank
is below the semaphore's capacity. Releasing pops the head of the queue
and refreshes its expiry, so an idle queue eventually disappears.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from typing import Callable, Deque, Optional

from pottery import ContextTimer

from .aioprimitives import AIOQueueFactory, AIORedisQueue
from .backoff import SleepEstimator, estimate_sleep_duration
from .descriptor import DEFAULT_EXPIRY, DEFAULT_REDIS_URL, SemaphoreDescriptor
from .exceptions import AcquireTimeout, MaxPositionExceeded, SemaphoreError, TaskJoinError

logger = logging.getLogger(__name__)

# Assumed position when our identity is no longer found in the queue.
NOT_FOUND_POSITION = 1


async def wait_for_slot(
    descriptor: SemaphoreDescriptor,
    *,
    connect: Optional[AIOQueueFactory] = None,
    estimate: SleepEstimator = estimate_sleep_duration,
    on_enqueued: Optional[Callable[[int], None]] = None,
) -> None:
    """Enter the queue and return once the semaphore has capacity for us.

    The identity stays queued whether this returns or raises; the caller
    must run ``clean_up`` afterwards in either case.

    Args:
        descriptor: Queue, identity and bounds for this request
        connect: Factory opening a queue store (defaults to Redis)
        estimate: Sleep estimator used between polls
        on_enqueued: Called with our starting position once RPUSH has run

    Raises:
        MaxPositionExceeded: If our position passes ``max_position``
        StoreConnectionError: If Redis cannot be reached
        StoreCommandError: If a queue command fails
    """
    connect = connect or AIORedisQueue.open
    queue = await connect(descriptor.store_endpoint, descriptor.queue_key)
    try:
        with ContextTimer() as timer:
            # Compared as a 0-indexed rank, not the raw RPUSH length, so the
            # first check uses the same scale as every later LPOS poll.
            position = await queue.push(descriptor.id) - 1
            if on_enqueued is not None:
                on_enqueued(position)
            logger.debug(
                "Entered queue %r in position %d", descriptor.queue_key, position
            )

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
                    logger.debug(
                        "Position %d is greater than max position (%d)",
                        position,
                        descriptor.max_position,
                    )
                    raise MaxPositionExceeded(position, descriptor.max_position)

                sleep_duration = estimate(
                    position, descriptor.capacity, descriptor.base_sleep_duration
                )
                logger.debug(
                    "Position %d is not below capacity (%d); sleeping %.3fs",
                    position,
                    descriptor.capacity,
                    sleep_duration,
                )
                await asyncio.sleep(sleep_duration)

                found = await queue.position(descriptor.id)
                if found is None:
                    logger.debug(
                        "%r not found in queue %r; assuming position %d",
                        descriptor.id,
                        descriptor.queue_key,
                        NOT_FOUND_POSITION,
                    )
                    position = NOT_FOUND_POSITION
                else:
                    position = found
                logger.debug("Position is now %d", position)
    finally:
        await queue.aclose()


async def clean_up(
    descriptor: SemaphoreDescriptor,
    *,
    connect: Optional[AIOQueueFactory] = None,
) -> None:
    """Pop the head of the queue and refresh the queue's expiry.

    Both steps run as concurrent tasks, each on its own connection, and
    are joined before returning. Whichever step succeeded is not undone
    when the other fails.

    Raises:
        StoreConnectionError: If Redis cannot be reached
        StoreCommandError: If LPOP or EXPIRE fails
        TaskJoinError: If one of the steps was cancelled
    """
    connect = connect or AIORedisQueue.open

    async def pop_head() -> None:
        queue = await connect(descriptor.store_endpoint, descriptor.queue_key)
        try:
            popped = await queue.pop(1)
        finally:
            await queue.aclose()
        logger.debug("Popped %r from queue %r", popped, descriptor.queue_key)

    async def refresh_expiry() -> None:
        queue = await connect(descriptor.store_endpoint, descriptor.queue_key)
        try:
            await queue.expire(descriptor.expiry)
        finally:
            await queue.aclose()
        logger.debug(
            "Set expiry of queue %r to %ds", descriptor.queue_key, descriptor.expiry
        )

    steps = {
        "expire": asyncio.ensure_future(refresh_expiry()),
        "lpop": asyncio.ensure_future(pop_head()),
    }
    results = await asyncio.gather(*steps.values(), return_exceptions=True)

    for step, result in zip(steps, results):
        if isinstance(result, asyncio.CancelledError):
            raise TaskJoinError(step) from result
        if isinstance(result, BaseException):
            raise result


class AIOSemaphore:
    """Async distributed FIFO semaphore.

    Up to ``capacity`` holders are admitted at once; everyone else waits
    in arrival order. With ``max_position`` set, callers queued further
    back than that are rejected with ``MaxPositionExceeded`` instead of
    waiting.

    Usage:
        >>> import asyncio
        >>> async def main():
        ...     sem = AIOSemaphore(key='my-resource', capacity=3)
        ...     async with sem:
        ...         # At most 3 holders across all processes
        ...         pass
        >>> asyncio.run(main())

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
        connect: Optional[AIOQueueFactory] = None,
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
        self._connect = connect or AIORedisQueue.open
        self._estimate = estimate
        self._held: Deque[SemaphoreDescriptor] = deque()

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

    def _new_descriptor(self) -> SemaphoreDescriptor:
        return SemaphoreDescriptor(
            queue_key=self.queue_key,
            id=uuid.uuid4().hex,
            capacity=self._capacity,
            max_position=self._max_position,
            base_sleep_duration=self._sleep_duration,
            store_endpoint=self._redis_url,
            expiry=self._expiry,
        )

    async def queue_length(self) -> int:
        """Return the number of holders and waiters currently queued."""
        queue = await self._connect(self._redis_url, self.queue_key)
        try:
            return await queue.length()
        finally:
            await queue.aclose()

    async def acquire(self, *, timeout: Optional[float] = None) -> bool:
        """Wait for a slot in the semaphore.

        A rejected, timed out or cancelled acquire releases on the
        caller's behalf so the queue stays balanced, but only once its
        own push has run; interrupted before that, nothing is popped.

        Args:
            timeout: Maximum time to wait in seconds (None for no timeout)

        Returns:
            True once the slot is held

        Raises:
            AcquireTimeout: If no slot was granted within ``timeout``
            MaxPositionExceeded: If queued further back than ``max_position``
        """
        descriptor = self._new_descriptor()
        enqueued = False

        def mark_enqueued(position: int) -> None:
            nonlocal enqueued
            enqueued = True

        waiting = wait_for_slot(
            descriptor,
            connect=self._connect,
            estimate=self._estimate,
            on_enqueued=mark_enqueued,
        )
        with ContextTimer() as timer:
            try:
                if timeout is None:
                    await waiting
                else:
                    await asyncio.wait_for(waiting, timeout)
            except asyncio.TimeoutError:
                if enqueued:
                    await clean_up(descriptor, connect=self._connect)
                raise AcquireTimeout(self._key, timeout, timer.elapsed()) from None
            except (MaxPositionExceeded, asyncio.CancelledError):
                if enqueued:
                    await clean_up(descriptor, connect=self._connect)
                raise

        self._held.append(descriptor)
        return True

    async def release(self) -> None:
        """Give back the oldest slot held by this instance.

        Raises:
            SemaphoreError: If this instance holds no slot
        """
        if not self._held:
            raise SemaphoreError(f"Semaphore '{self._key}' released without a held slot")
        descriptor = self._held.popleft()
        await clean_up(descriptor, connect=self._connect)

    async def __aenter__(self) -> AIOSemaphore:
        """Enter async context manager, acquiring a slot."""
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager, releasing the slot."""
        await self.release()

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__} "
            f"key={self._key!r} "
            f"capacity={self._capacity} "
            f"max_position={self._max_position}>"
        )
