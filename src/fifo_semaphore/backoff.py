"""Poll interval estimation for queued waiters.

Waiters far back in the queue poll less often than those close to the
front, which keeps Redis load down under contention without adding
latency for the next caller in line.
"""

from __future__ import annotations

import math
import random
from typing import Protocol

DEFAULT_CEILING = 10.0


class SleepEstimator(Protocol):
    """Callable returning the number of seconds to sleep before the next poll."""

    def __call__(self, position: int, capacity: int, base_duration: float) -> float:
        ...


def estimate_sleep_duration(
    position: int,
    capacity: int,
    base_duration: float,
    *,
    ceiling: float = DEFAULT_CEILING,
    jitter: float = 0.0,
    rng: random.Random | None = None,
) -> float:
    """Return how long a waiter at ``position`` should sleep, in seconds.

    The result is ``base_duration`` scaled by the square root of the
    distance past capacity, clamped to ``[1, ceiling]``.

    Args:
        position: Current queue position of the waiter
        capacity: Number of concurrently admitted holders
        base_duration: Baseline poll interval in seconds
        ceiling: Largest multiplier applied to ``base_duration``
        jitter: Optional fraction of ``base_duration`` added at random
        rng: Random source for jitter (defaults to the ``random`` module)

    Returns:
        Sleep duration in seconds, never below ``base_duration``
    """
    if base_duration <= 0:
        raise ValueError("base_duration must be positive")
    if ceiling < 1:
        raise ValueError("ceiling must be >= 1")
    if jitter < 0:
        raise ValueError("jitter must be non-negative")

    distance = max(position - capacity, 0)
    factor = min(max(math.sqrt(distance), 1.0), ceiling)
    duration = base_duration * factor

    if jitter:
        source = rng if rng is not None else random
        duration += source.uniform(0, jitter) * base_duration
    return duration
