from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Sequence

from ..constants import DEFAULT_BACKOFF_SCHEDULE

Sleep = Callable[[float], Awaitable[None]]


def compute_backoff(
    attempt: int, schedule: Sequence[float] = DEFAULT_BACKOFF_SCHEDULE
) -> float:
    """Return the fixed delay to wait after failed ``attempt`` (1-based).

    Attempts beyond the schedule reuse its last entry.
    """
    if not schedule:
        return 0.0
    index = min(max(attempt, 1), len(schedule)) - 1
    return float(schedule[index])


async def schedule_retry(
    attempt: int,
    schedule: Sequence[float] = DEFAULT_BACKOFF_SCHEDULE,
    sleep: Sleep = asyncio.sleep,
) -> float:
    """Sleep for the scheduled delay before retrying and return it."""
    delay = compute_backoff(attempt, schedule)
    await sleep(delay)
    return delay
