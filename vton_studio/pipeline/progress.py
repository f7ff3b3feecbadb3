"""Cosmetic progress curve for jobs that are waiting on the provider.

The provider reports no progress, so the bar only shows that a job is alive.
It slows down as it rises and stops at 98 until the real result arrives.
"""

PROGRESS_CEILING = 98.0

# (lower bound, increment per tick), highest band first
PROGRESS_STEPS = [
    (96.0, 0.2),
    (90.0, 0.5),
    (75.0, 0.8),
    (50.0, 1.0),
    (25.0, 1.2),
    (0.0, 1.5),
]


def next_progress(progress: float) -> float:
    """Advance ``progress`` by one tick."""
    if progress >= PROGRESS_CEILING:
        return PROGRESS_CEILING
    for lower, step in PROGRESS_STEPS:
        if progress >= lower:
            return min(progress + step, PROGRESS_CEILING)
    return min(progress + PROGRESS_STEPS[-1][1], PROGRESS_CEILING)
