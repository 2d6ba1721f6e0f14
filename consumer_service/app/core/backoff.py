"""Backoff utilities.

`exponential_backoff` yields the current delay to the caller, which attempts the
operation (e.g. a broker connect) and breaks out on success; otherwise the
generator sleeps before yielding the next, larger delay. Iteration ends after
`max_attempts` yields.
"""
import asyncio
from typing import AsyncIterator


async def exponential_backoff(
    initial_delay: float,
    max_delay: float,
    multiplier: float,
    max_attempts: int,
) -> AsyncIterator[float]:
    delay = min(initial_delay, max_delay)
    for attempt in range(1, max_attempts + 1):
        yield delay
        if attempt < max_attempts:
            await asyncio.sleep(delay)
            delay = min(delay * multiplier, max_delay)
