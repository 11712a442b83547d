from __future__ import annotations

import logging
import math
import time
from typing import Callable, Optional, TypeVar

from app.core.errors import TransientError

T = TypeVar("T")

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_INITIAL_DELAY_SECONDS = 1.0
DEFAULT_MAX_DELAY_SECONDS = 10.0


def backoff_delay(
    attempt: int,
    *,
    initial_delay: float = DEFAULT_INITIAL_DELAY_SECONDS,
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS,
) -> float:
    """Delay to wait after the given 1-based failed attempt."""

    delay = initial_delay * math.pow(2.0, max(0, attempt - 1))
    return min(delay, max_delay)


def retry_with_backoff(
    fn: Callable[[], T],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    initial_delay: float = DEFAULT_INITIAL_DELAY_SECONDS,
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS,
    retry_on: tuple[type[BaseException], ...] = (TransientError,),
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
) -> T:
    """Call ``fn`` until it succeeds or ``max_attempts`` is reached.

    Each attempt re-invokes ``fn`` from scratch. Only exceptions listed in
    ``retry_on`` are retried; anything else propagates immediately, as does
    the last retryable failure.
    """

    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except retry_on as exc:
            if attempt >= max_attempts:
                raise
            delay = backoff_delay(
                attempt, initial_delay=initial_delay, max_delay=max_delay
            )
            logger.warning(
                "Retrying after transient failure",
                extra={
                    "extra": {
                        "attempt": attempt,
                        "max_attempts": max_attempts,
                        "delay_seconds": delay,
                        "error": str(exc),
                    }
                },
            )
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            sleep(delay)


__all__ = ["backoff_delay", "retry_with_backoff"]
