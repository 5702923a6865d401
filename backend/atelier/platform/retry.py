"""Bounded retry with backoff for calls to slow external collaborators.

Used by the image provider client and the object storage adapters. Only
errors the ``is_retryable`` predicate accepts are retried; everything else
propagates on the first attempt.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from .config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delays(max_attempts: int, initial_delay: float, multiplier: float = 2.0) -> list[float]:
    """Delays slept between attempts: ``initial * multiplier**n`` for each retry."""
    return [initial_delay * (multiplier ** n) for n in range(max(max_attempts - 1, 0))]


def retry_with_backoff(
    func: Callable[[], T],
    *,
    is_retryable: Callable[[BaseException], bool],
    max_attempts: int | None = None,
    initial_delay: float | None = None,
    multiplier: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
    operation: str = "operation",
) -> T:
    """Call ``func`` until it succeeds, fails unretryably, or attempts run out.

    The last error is re-raised unchanged once attempts are exhausted, so
    callers see the same exception type they would without retries.
    """
    attempts = max_attempts if max_attempts is not None else settings.RETRY_MAX_ATTEMPTS
    first_delay = initial_delay if initial_delay is not None else settings.RETRY_INITIAL_DELAY_SECONDS
    delays = backoff_delays(attempts, first_delay, multiplier)

    attempt = 0
    while True:
        attempt += 1
        try:
            result = func()
        except Exception as exc:
            if not is_retryable(exc):
                raise
            if attempt >= attempts:
                logger.error("%s failed after %d attempts: %s", operation, attempt, exc)
                raise
            delay = delays[attempt - 1]
            logger.warning(
                "%s attempt %d/%d failed, retrying in %.2fs: %s",
                operation,
                attempt,
                attempts,
                delay,
                exc,
            )
            sleep(delay)
            continue
        if attempt > 1:
            logger.info("%s succeeded on attempt %d", operation, attempt)
        return result
