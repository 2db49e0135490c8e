import asyncio
import random
from typing import Optional

from app.config import Settings


def backoff_delay(attempt: int, base: float, cap: float, jitter: bool = True) -> float:
    """
    Full jitter exponential backoff.
    delay = random(0, min(cap, base * 2^attempt))
    """
    delay = min(cap, base * (2 ** attempt))
    return random.uniform(0, delay) if jitter else delay


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds form of a Retry-After header; HTTP-date values are ignored."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


async def wait_before_retry(attempt: int, settings: Settings, retry_after: Optional[float] = None) -> float:
    """
    Sleep before HTTP retry number attempt + 1 and return the delay.
    A server-sent Retry-After replaces the computed delay, capped at BACKOFF_MAX_SECONDS.
    """
    if retry_after is not None:
        delay = min(retry_after, settings.BACKOFF_MAX_SECONDS)
    else:
        delay = backoff_delay(attempt, settings.BACKOFF_BASE_SECONDS, settings.BACKOFF_MAX_SECONDS)
    await asyncio.sleep(delay)
    return delay
