"""
Bounded retry with exponential backoff for storage calls.
"""

import random
import time
from typing import Callable, TypeVar

import structlog

from exceptions import TransientStorageError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def with_retry(
    operation: str,
    func: Callable[[], T],
    attempts: int = 3,
    base_delay: float = 0.2,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call func, retrying on TransientStorageError.

    Waits base_delay * 2**attempt plus a little jitter between attempts.
    Any other exception is raised immediately. After the last attempt the
    transient error itself is raised.

    Args:
        operation: Name used in log events
        func: Zero-argument callable doing the storage work
        attempts: Total attempts (>= 1)
        base_delay: First backoff delay in seconds
        sleep: Sleep function (replaced in tests)

    Returns:
        Whatever func returns
    """
    last_error: TransientStorageError | None = None

    for attempt in range(attempts):
        try:
            return func()
        except TransientStorageError as e:
            last_error = e
            if attempt < attempts - 1:
                delay = base_delay * (2 ** attempt) + random.uniform(0, base_delay / 2)
                logger.warning(
                    "storage_call_retrying",
                    operation=operation,
                    attempt=attempt + 1,
                    attempts=attempts,
                    delay=round(delay, 3),
                    error=str(e)
                )
                sleep(delay)

    logger.error(
        "storage_call_exhausted",
        operation=operation,
        attempts=attempts,
        error=str(last_error)
    )
    raise last_error
