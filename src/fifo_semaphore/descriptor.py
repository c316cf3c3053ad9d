"""Immutable description of one acquire/release pair."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_REDIS_URL = "redis://localhost:6379/0"
DEFAULT_EXPIRY = 30


@dataclass(frozen=True)
class SemaphoreDescriptor:
    """Everything ``wait_for_slot`` and ``clean_up`` need to talk to the queue.

    Args:
        queue_key: Redis key of the shared list
        id: Identity pushed onto the queue, unique per outstanding request
        capacity: Number of concurrently admitted holders
        max_position: Largest tolerated queue position (0 for unbounded)
        base_sleep_duration: Baseline poll interval in seconds
        store_endpoint: Redis URL to connect to
        expiry: Seconds to live set on the queue when releasing
    """

    queue_key: str
    id: str
    capacity: int = 1
    max_position: int = 0
    base_sleep_duration: float = 0.1
    store_endpoint: str = DEFAULT_REDIS_URL
    expiry: int = DEFAULT_EXPIRY

    def __post_init__(self) -> None:
        if not self.queue_key:
            raise ValueError("queue_key must not be empty")
        if not self.id:
            raise ValueError("id must not be empty")
        if self.capacity < 1:
            raise ValueError("capacity must be >= 1")
        if self.max_position < 0:
            raise ValueError("max_position must be non-negative")
        if self.base_sleep_duration <= 0:
            raise ValueError("base_sleep_duration must be positive")
        if self.expiry < 1:
            raise ValueError("expiry must be >= 1")
