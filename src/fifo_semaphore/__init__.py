"""Distributed FIFO semaphore over a shared Redis list.

Callers push their identity onto a Redis list and are admitted once their
position in it is below the semaphore's capacity. Releasing pops the head
of the list and refreshes its expiry.

Example usage (async):

    >>> import asyncio
    >>> from fifo_semaphore import AIOSemaphore
    >>>
    >>> async def main():
    ...     sem = AIOSemaphore(key='my-resource', capacity=3)
    ...     async with sem:
    ...         # Critical section with limited concurrency (max 3)
    ...         pass
    >>> asyncio.run(main())

Example usage (core operations):

    >>> from fifo_semaphore import SemaphoreDescriptor, clean_up, wait_for_slot
    >>>
    >>> async def main():
    ...     descriptor = SemaphoreDescriptor(queue_key='sem:A', id='a', capacity=2)
    ...     await wait_for_slot(descriptor)
    ...     try:
    ...         pass
    ...     finally:
    ...         await clean_up(descriptor)

Example usage (sync):

    >>> from fifo_semaphore import Semaphore
    >>>
    >>> with Semaphore(key='my-resource', capacity=3):
    ...     pass
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version
from typing import Final

from .aioprimitives import AIOQueueStore, AIORedisQueue
from .aiosemaphore import AIOSemaphore, clean_up, wait_for_slot
from .backoff import estimate_sleep_duration
from .descriptor import SemaphoreDescriptor
from .exceptions import (
    AcquireTimeout,
    MaxPositionExceeded,
    SemaphoreError,
    StoreCommandError,
    StoreConnectionError,
    TaskJoinError,
)
from .primitives import QueueStore, RedisQueue
from .semaphore import Semaphore

__all__: Final[tuple[str, ...]] = (
    "AIOQueueStore",
    "AIORedisQueue",
    "AIOSemaphore",
    "AcquireTimeout",
    "MaxPositionExceeded",
    "QueueStore",
    "RedisQueue",
    "Semaphore",
    "SemaphoreDescriptor",
    "SemaphoreError",
    "StoreCommandError",
    "StoreConnectionError",
    "TaskJoinError",
    "clean_up",
    "estimate_sleep_duration",
    "wait_for_slot",
)

try:
    __version__ = version("fifo-semaphore")
except PackageNotFoundError:
    __version__ = "unknown"
