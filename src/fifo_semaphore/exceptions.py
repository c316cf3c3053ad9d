"""Exceptions for fifo-semaphore."""

from __future__ import annotations


class SemaphoreError(Exception):
    """Base exception for semaphore errors."""

    pass


class StoreConnectionError(SemaphoreError, ConnectionError):
    """Raised when Redis cannot be reached or the connection is lost."""

    def __init__(self, endpoint: str, reason: str = "") -> None:
        self.endpoint = endpoint
        self.reason = reason
        message = f"Could not connect to Redis at '{endpoint}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class StoreCommandError(SemaphoreError):
    """Raised when a single Redis command against the queue fails.

    The underlying redis-py error is chained as ``__cause__``.
    """

    def __init__(self, command: str, key: str, reason: str = "") -> None:
        self.command = command
        self.key = key
        self.reason = reason
        message = f"{command} on '{key}' failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class MaxPositionExceeded(SemaphoreError):
    """Raised when a waiter's queue position is beyond the tolerated bound.

    The waiter's identity is still queued when this is raised; the caller
    has to release to keep the queue balanced.
    """

    def __init__(self, position: int, max_position: int) -> None:
        self.position = position
        self.max_position = max_position
        super().__init__(
            f"Position {position} exceeds the max position ({max_position})."
        )


class TaskJoinError(SemaphoreError):
    """Raised when a concurrent release step could not be joined."""

    def __init__(self, step: str) -> None:
        self.step = step
        super().__init__(f"Release step '{step}' was cancelled before completing")


class AcquireTimeout(SemaphoreError, TimeoutError):
    """Raised when a slot was not granted within the caller's timeout."""

    def __init__(self, key: str, timeout: float, elapsed_ms: int) -> None:
        self.key = key
        self.timeout = timeout
        self.elapsed_ms = elapsed_ms
        super().__init__(
            f"Timed out waiting for a slot on '{key}' "
            f"after {elapsed_ms} ms (timeout={timeout}s)"
        )
