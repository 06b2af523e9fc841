"""Reconnection backoff policy.

This module provides:
- backoff_delay: Capped exponential delay with optional jitter
- backoff_schedule: The full sequence of delays for a retry budget
"""

from __future__ import annotations

import random
from collections.abc import Callable

# Default retry configuration
DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 8.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0


def backoff_delay(
    attempts: int,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    jitter: float = 0.0,
    rand: Callable[[], float] = random.random,
) -> float:
    """Compute the delay before reconnection attempt number ``attempts + 1``.

    ``delay = min(initial_backoff * multiplier**attempts, max_backoff)``. With
    jitter, up to ``jitter * delay`` is added at random, still capped at
    ``max_backoff`` so the sequence stays bounded.

    Args:
        attempts: Failed attempts so far (0 for the first retry).
        initial_backoff: Base delay in seconds.
        max_backoff: Maximum delay in seconds.
        backoff_multiplier: Growth factor per attempt.
        jitter: Fraction of the delay to randomize (0 disables).
        rand: Source of uniform [0, 1) numbers.

    Returns:
        Delay in seconds.
    """
    if attempts < 0:
        raise ValueError("attempts must be >= 0")

    # Bound the exponent so huge attempt counts cannot overflow
    exponent = min(attempts, 64)
    delay = min(initial_backoff * backoff_multiplier**exponent, max_backoff)
    if jitter > 0:
        delay = min(delay + delay * jitter * rand(), max_backoff)
    return delay


def backoff_schedule(
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
) -> list[float]:
    """List the delays used for a whole retry budget (without jitter)."""
    return [
        backoff_delay(n, initial_backoff, max_backoff, backoff_multiplier)
        for n in range(max_retries)
    ]
