"""Bounded retry helper for chain and store operations."""

import logging
import time
from typing import Callable, TypeVar

T = TypeVar("T")


def with_retries(
    operation_to_retry: Callable[[], T],
    log: logging.Logger,
    max_attempts: int = 5,
    delay: float = 2,
    exponential: bool = True,
    description: str = "operation",
) -> T:
    """
    Retry an operation a bounded number of times.

    :param operation_to_retry: The function/operation to retry.
    :param log: The logger used to report failed attempts.
    :param max_attempts: Maximum number of attempts, including the first one.
    :param delay: Delay in seconds before the second attempt.
    :param exponential: If True, the delay doubles after every failed attempt.
        If False, every retry waits for the same fixed delay.
    :param description: A short label used in log messages.
    :return: The result of the first successful attempt.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            return operation_to_retry()
        except Exception as e:  # pylint: disable=broad-except
            log.error("%s failed on attempt %s/%s: %s", description, attempt, max_attempts, e)
            if attempt == max_attempts:
                raise  # re-raise on final failure
            wait = delay * 2 ** (attempt - 1) if exponential else delay
            if wait > 0:
                time.sleep(wait)
    # max_attempts < 1
    raise ValueError(f"max_attempts must be positive, got {max_attempts}")
