# tradesync/scheduling.py
import asyncio
import random
from typing import Iterable


def jittered_delay(interval: float, jitter: float = 0.0) -> float:
    """Sleep length for a periodic loop: the fixed interval plus up to `jitter` random seconds."""
    if jitter <= 0:
        return interval
    return interval + random.uniform(0, jitter)


async def cancel_tasks(tasks: Iterable[asyncio.Task]):
    """Cancels the given tasks and waits until every one of them has finished."""
    tasks = [task for task in tasks if task is not None]
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
