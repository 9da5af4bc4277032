"""Retry logic with exponential backoff for transient failures.

Azure DevOps and GitHub REST calls fail transiently (throttling, gateway
errors, dropped connections). This module provides a single decorator used
by the pipeline and repository clients.

Usage:
    @retry_with_exponential_backoff(max_attempts=3)
    def fetch():
        return session.get(url, timeout=30)
"""

import functools
import logging
import random
import time
from typing import Any, Callable, TypeVar

import requests

from spk.log_sanitizer import LogSanitizer

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# Status codes worth another attempt
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class TransientHTTPError(requests.HTTPError):
    """HTTP error with a retryable status code."""


def raise_for_transient_status(response: requests.Response) -> None:
    """Raise TransientHTTPError for retryable status codes."""
    if response.status_code in RETRYABLE_STATUS_CODES:
        raise TransientHTTPError(
            f"{response.status_code} from {LogSanitizer.safe_git_url(response.url)}",
            response=response,
        )


def retry_with_exponential_backoff(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: bool = True,
    retryable_exceptions: tuple[type[Exception], ...] | None = None,
) -> Callable[[F], F]:
    """Decorator for retrying operations with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        initial_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay between retries in seconds (default: 30.0)
        jitter: Add random jitter of +-25% to delays (default: True)
        retryable_exceptions: Exception types to retry
            (default: connection errors, timeouts, TransientHTTPError)

    Returns:
        Decorated function that will retry on transient failures
    """
    if retryable_exceptions is None:
        retryable_exceptions = (
            requests.ConnectionError,
            requests.Timeout,
            TransientHTTPError,
        )

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            delay = initial_delay

            for attempt in range(1, max_attempts + 1):
                try:
                    result = func(*args, **kwargs)
                    if attempt > 1:
                        logger.info(
                            f"{func.__name__} succeeded on attempt {attempt}/{max_attempts}"
                        )
                    return result

                except retryable_exceptions as e:
                    if attempt >= max_attempts:
                        logger.error(
                            f"{func.__name__} failed after {max_attempts} attempts: "
                            f"{LogSanitizer.sanitize(str(e))}"
                        )
                        raise

                    actual_delay = delay
                    if jitter:
                        jitter_amount = delay * 0.25
                        actual_delay = delay + random.uniform(-jitter_amount, jitter_amount)
                    actual_delay = min(actual_delay, max_delay)

                    logger.warning(
                        f"{func.__name__} failed on attempt {attempt}/{max_attempts}, "
                        f"retrying in {actual_delay:.2f}s: {LogSanitizer.sanitize(str(e))}"
                    )
                    time.sleep(actual_delay)
                    delay *= 2

            raise RuntimeError(f"{func.__name__} failed with unknown error")

        return wrapper  # type: ignore

    return decorator


__all__ = [
    "RETRYABLE_STATUS_CODES",
    "TransientHTTPError",
    "raise_for_transient_status",
    "retry_with_exponential_backoff",
]
