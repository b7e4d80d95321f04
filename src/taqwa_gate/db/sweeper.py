"""
Background sweep of stale rate-window records.
"""
import asyncio
import logging
from typing import Optional

from ..config import settings
from .rate_limiter import RateLimiter

logger = logging.getLogger("taqwa.sweeper")


async def rate_limit_sweeper_task(
    limiter: RateLimiter,
    interval_seconds: Optional[float] = None,
) -> None:
    """
    Periodically delete records untouched for two windows.

    Runs until cancelled. A failed sweep is logged and retried on the next
    tick; it never affects admission decisions.
    """
    interval = interval_seconds or settings.rate_limit_sweep_interval_seconds
    logger.info("Rate limit sweeper started (every %ss).", interval)

    while True:
        try:
            await asyncio.sleep(interval)
            await limiter.sweep()
        except asyncio.CancelledError:
            logger.info("Rate limit sweeper cancelled.")
            break
        except Exception:
            logger.exception("Rate limit sweep failed")
            continue
