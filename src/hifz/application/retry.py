"""Bounded retry with linear backoff for store reads."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from hifz.domain.constants import MAX_RETRIES, RETRY_BACKOFF

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    fallback: T,
    description: str,
    max_retries: int = MAX_RETRIES,
    backoff: float = RETRY_BACKOFF,
) -> T:
    """
    Run `operation`, retrying up to `max_retries` times on failure.

    The delay before retry n is `backoff * n` seconds. When every attempt
    fails the error is logged and `fallback` is returned instead of raising.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            attempt += 1
            if attempt > max_retries:
                logger.error(f"Error {description} (final attempt): {e}")
                return fallback
            logger.warning(f"Error {description}, retrying ({attempt}/{max_retries}): {e}")
            await asyncio.sleep(backoff * attempt)
