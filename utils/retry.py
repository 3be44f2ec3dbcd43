"""
Backoff helpers for remote calls that can fail transiently.

The Drive and Sheets APIs occasionally answer with a 5xx while a backend is
overloaded. Those answers are worth repeating after a pause; everything else
(bad requests, missing objects, quota errors, timeouts) is handed straight
back to the caller, who knows whether a retry makes sense.

WAITING STRATEGY:
-----------------
Each failed attempt doubles the pause, starting at ``base_delay`` and never
exceeding ``max_delay``:

  - attempt 1 fails -> ~1s
  - attempt 2 fails -> ~2s
  - attempt 3 fails -> ~4s

The pause is scaled by a random factor in [0.5, 1.5) so that several upload
workers that failed together do not all come back at the same instant.

USAGE:
------
    from utils.retry import retry_on_transient_error, is_transient_server_status

    @retry_on_transient_error(is_retryable=lambda e: is_transient_server_status(e.status))
    def call_api():
        return request.execute()
"""

import logging
import random
import time
from functools import wraps
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def retry_on_transient_error(
    is_retryable: Callable[[Exception], bool],
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    on_retry: Optional[Callable[[Exception, int, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Decorator that repeats a call while it keeps failing with a retryable error.

    Args:
        is_retryable: Predicate deciding whether an exception is transient.
                      Non-retryable exceptions propagate immediately.
        max_retries: Extra attempts after the first one (total = max_retries + 1).
        base_delay: Pause before the first retry, in seconds.
        max_delay: Upper bound for any single pause, in seconds.
        on_retry: Called as ``on_retry(exc, attempt, delay)`` before each pause.
        sleep: Pause function, replaceable in tests.

    Raises:
        The last exception once retries are exhausted.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)

                except Exception as exc:
                    if not is_retryable(exc):
                        raise

                    last_exception = exc

                    if attempt < max_retries:
                        delay = min(base_delay * (2 ** attempt), max_delay)
                        delay *= 0.5 + random.random()

                        if on_retry:
                            on_retry(exc, attempt + 1, delay)

                        sleep(delay)

            raise last_exception

        return wrapper
    return decorator


# Server-side statuses that usually clear up on their own. 429 is absent on
# purpose: rate limiting is surfaced to the caller as RateLimited.
TRANSIENT_SERVER_STATUS_CODES = {
    500,  # Internal Server Error
    502,  # Bad Gateway
    503,  # Service Unavailable
    504,  # Gateway Timeout
}


def is_transient_server_status(status: Optional[int]) -> bool:
    """Check if an HTTP status code is a transient server-side failure."""
    return status in TRANSIENT_SERVER_STATUS_CODES


def log_retry(exc: Exception, attempt: int, delay: float) -> None:
    """Default ``on_retry`` callback: one warning line per retry."""
    status = getattr(getattr(exc, "resp", None), "status", None)
    error_desc = f"HTTP {status}" if status else type(exc).__name__
    logger.warning("%s on attempt %d, retrying in %.1fs", error_desc, attempt, delay)
