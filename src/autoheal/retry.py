"""
Retry with exponential backoff for outbound notifications.

Only delivery of escalation notifications is retried here. Remediation
actions are never retried in place: a failed action goes back to the
engine, which decides on the next cycle under cooldown.
"""

import functools
import logging
import random
import time
from typing import Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


def calculate_backoff(
    attempt: int,
    backoff_factor: float,
    min_wait: float,
    max_wait: float,
    jitter: bool
) -> float:
    """
    Calculate exponential backoff wait time.

    Args:
        attempt: Current attempt number (0-indexed)
        backoff_factor: Multiplier for exponential backoff
        min_wait: Minimum wait time
        max_wait: Maximum wait time
        jitter: Whether to add random jitter

    Returns:
        Wait time in seconds
    """
    wait = min(max_wait, min_wait * (2 ** attempt) * backoff_factor)

    # Jitter: randomize between 50-100% of calculated wait
    if jitter:
        wait = wait * (0.5 + random.random() * 0.5)

    return wait


def retry_sync(
    max_attempts: int = 3,
    backoff_factor: float = 1.0,
    min_wait: float = 1.0,
    max_wait: float = 30.0,
    jitter: bool = True,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,)
) -> Callable:
    """
    Decorator for synchronous retry with exponential backoff.

    Example:
        @retry_sync(max_attempts=3, min_wait=0.5)
        def post_escalation(payload):
            response = requests.post(url, json=payload, timeout=10)
            response.raise_for_status()
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            for attempt in range(max_attempts):
                try:
                    return func(*args, **kwargs)
                except retryable_exceptions as e:
                    if attempt + 1 >= max_attempts:
                        logger.error(
                            f"Max retries ({max_attempts}) exceeded for {func.__name__}: {e}"
                        )
                        raise

                    wait_time = calculate_backoff(
                        attempt, backoff_factor, min_wait, max_wait, jitter
                    )
                    logger.warning(
                        f"Retry {attempt + 1}/{max_attempts} for {func.__name__} "
                        f"after {wait_time:.2f}s: {e}"
                    )
                    time.sleep(wait_time)

        return wrapper
    return decorator
