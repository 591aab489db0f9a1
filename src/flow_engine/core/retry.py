"""
Retry backoff computation and interruptible sleeping
"""
import asyncio
import random
from typing import Optional

from ..models.workflow import RetryPolicy, BackoffStrategy

# Exponent cap for exponential backoff; keeps the product a finite float
MAX_BACKOFF_EXPONENT = 63


def calculate_retry_delay(policy: RetryPolicy, failed_attempt: int) -> float:
    """
    Delay before the next attempt

    Args:
        policy: the node's retry policy
        failed_attempt: 1-based number of the attempt that just failed
    """
    retry_count = max(failed_attempt - 1, 0)

    if policy.backoff == BackoffStrategy.FIXED:
        delay = policy.base_delay
    elif policy.backoff == BackoffStrategy.LINEAR:
        delay = policy.base_delay * (retry_count + 1)
    else:  # exponential
        delay = policy.base_delay * (2 ** min(retry_count, MAX_BACKOFF_EXPONENT))

    delay = min(delay, policy.max_delay)

    if policy.jitter and delay > 0:
        delay += random.uniform(0, delay * 0.1)
        delay = min(delay, policy.max_delay)

    return delay


async def sleep_unless_cancelled(delay: float, cancel_event: Optional[asyncio.Event]) -> bool:
    """Sleep for delay seconds; returns False if cancellation cut it short"""
    if delay <= 0:
        return not (cancel_event and cancel_event.is_set())
    if cancel_event is None:
        await asyncio.sleep(delay)
        return True
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        return False
    except asyncio.TimeoutError:
        return True
