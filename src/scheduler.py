"""
Reply Scheduler - Human-looking delays before an auto-reply goes out.

A reply that lands two seconds after a comment is an obvious bot. Instead,
every accepted reply waits a randomized, length-aware delay:

    delay = uniform(min, max)              base wait (default 2-10 min)
          × clamp(len / 50, 0.5, 2)        longer messages take longer to "read"
          × uniform(0.7, 1.3)              jitter
          × 3 (10% of the time)            occasionally we are just busy
    capped at the ceiling (default 10 min)

Pattern Generated (default settings):
    ┌────────────────────────────────────────────────────────────┐
    │ short "nice!"       ░░▓▓▓░░░░░░░░░░░░░  1-4 min            │
    │ normal question     ░░░░▓▓▓▓▓░░░░░░░░░  2-8 min            │
    │ long paragraph      ░░░░░░░░▓▓▓▓▓▓▓▓▓▓  5-10 min (capped)  │
    └────────────────────────────────────────────────────────────┘
"""

import random

COMPLEXITY_DIVISOR = 50
MIN_COMPLEXITY = 0.5
MAX_COMPLEXITY = 2.0
JITTER_RANGE = (0.7, 1.3)
LONG_DELAY_MULTIPLIER = 3


def complexity_factor(content_length: int) -> float:
    """Length-based multiplier, clamped to [0.5, 2]."""
    return min(max(content_length / COMPLEXITY_DIVISOR, MIN_COMPLEXITY), MAX_COMPLEXITY)


def calculate_reply_delay(
    content_length: int,
    rng: random.Random,
    min_delay: float = 120.0,
    max_delay: float = 600.0,
    ceiling: float = 600.0,
    long_delay_chance: float = 0.1,
) -> float:
    """
    Calculate how long to wait before sending a reply.

    Args:
        content_length: Length of the message we are answering.
        rng: Random source (seeded in tests).
        min_delay: Lower bound of the base wait, seconds.
        max_delay: Upper bound of the base wait, seconds.
        ceiling: Absolute cap, seconds.
        long_delay_chance: Probability of the ×3 "busy" multiplier.

    Returns:
        Delay in seconds, within [0, ceiling].
    """
    delay = rng.uniform(min_delay, max_delay)
    delay *= complexity_factor(content_length)
    delay *= rng.uniform(*JITTER_RANGE)
    if rng.random() < long_delay_chance:
        delay *= LONG_DELAY_MULTIPLIER
    return min(delay, ceiling)


def get_delay_description(seconds: float) -> str:
    """
    Human-readable description of a delay, for logs.

    Returns:
        e.g. "in 45 seconds", "in 4 minutes", "in 1 hour 5 minutes".
    """
    if seconds < 60:
        return f"in {int(seconds)} seconds"
    minutes = int(seconds // 60)
    if minutes < 60:
        return f"in {minutes} minutes"
    return f"in {minutes // 60} hour {minutes % 60} minutes"
