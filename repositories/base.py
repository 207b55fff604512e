"""
Shared helpers for Supabase-backed repositories.

Translates client exceptions into the application's error types and
pages through PostgREST's row limit.
"""

from typing import Any, Callable, Optional

import httpx
import structlog
from postgrest.exceptions import APIError

from exceptions import (
    AppError,
    DatabaseError,
    TransientStorageError,
    MappingConflictError,
)

logger = structlog.get_logger(__name__)

# PostgREST returns at most this many rows per request by default
PAGE_SIZE = 1000

UNIQUE_VIOLATION = "23505"

_TRANSIENT_KEYWORDS = (
    "429", "502", "503", "504",
    "timed out", "timeout", "temporarily unavailable",
    "connection reset", "connection refused", "too many requests",
)


def is_transient(error: Exception) -> bool:
    """Return True if error looks like a retryable storage failure."""
    if isinstance(error, TransientStorageError):
        return True
    if isinstance(error, httpx.TransportError):
        return True
    msg = str(error).lower()
    return any(keyword in msg for keyword in _TRANSIENT_KEYWORDS)


def storage_error(
    operation: str,
    error: Exception,
    details: Optional[dict] = None
) -> AppError:
    """
    Convert an exception raised by the Supabase client to an AppError.

    - AppError → unchanged
    - unique violation → MappingConflictError
    - timeouts / network / 429 / 5xx gateway → TransientStorageError
    - anything else → DatabaseError
    """
    if isinstance(error, AppError):
        return error

    if isinstance(error, APIError) and error.code == UNIQUE_VIOLATION:
        return MappingConflictError(
            "Position is already claimed by another mapping",
            details={"operation": operation, **(details or {})}
        )

    if is_transient(error):
        return TransientStorageError(operation, str(error), details)

    return DatabaseError(operation, str(error), details)


def fetch_all(build_query: Callable[[], Any], page_size: int = PAGE_SIZE) -> list[dict]:
    """
    Fetch every row of a query, one page at a time.

    Args:
        build_query: Returns a fresh, filtered and ordered query builder
        page_size: Rows per request

    Returns:
        All rows, in query order
    """
    rows: list[dict] = []
    offset = 0

    while True:
        result = build_query().range(offset, offset + page_size - 1).execute()
        page = result.data or []
        rows.extend(page)

        if len(page) < page_size:
            return rows

        offset += page_size
