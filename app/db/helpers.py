"""
Query helpers for the repositories.

Each helper borrows a pooled connection for one statement. Sync writes are
single statements in autocommit mode, so no transaction helpers exist.
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable
from typing import Any

import psycopg

from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """A statement failed. `recoverable` marks connection-level failures."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


async def _run(
    operation: str,
    query: str,
    params: tuple,
    consume: Callable[[psycopg.AsyncCursor], Awaitable[Any]],
) -> Any:
    try:
        async with db_pool.connection() as conn:
            cursor = await conn.execute(query, params)
            return await consume(cursor)
    except psycopg.Error as e:
        logger.error(
            "Query failed",
            operation=operation,
            statement=" ".join(query.split())[:120],
            error=str(e),
            error_type=type(e).__name__,
        )
        raise DatabaseError(
            f"{operation} failed: {e}",
            operation=operation,
            recoverable=isinstance(e, psycopg.OperationalError),
        ) from e


async def _rowcount(cursor: psycopg.AsyncCursor) -> int:
    return cursor.rowcount


async def fetch_one(query: str, params: tuple = ()) -> dict[str, Any] | None:
    """First row as a dict, or None."""
    return await _run("fetch_one", query, params, lambda cur: cur.fetchone())


async def fetch_all(query: str, params: tuple = ()) -> list[dict[str, Any]]:
    return await _run("fetch_all", query, params, lambda cur: cur.fetchall())


async def execute_query(query: str, params: tuple = ()) -> int:
    """Run a write and return the affected row count."""
    return await _run("execute", query, params, _rowcount)


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Retry a repository call while it raises a recoverable DatabaseError.

    Waits base_delay * 2**attempt between attempts. Non-recoverable errors
    (constraint violations, bad SQL) propagate on the first failure.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except DatabaseError as e:
                    if not e.recoverable:
                        raise
                    if attempt >= max_retries:
                        logger.error(
                            "Database call gave up",
                            call=func.__qualname__,
                            attempts=attempt + 1,
                            error=str(e),
                        )
                        raise
                    delay = base_delay * (2**attempt)
                    attempt += 1
                    logger.warning(
                        "Database call failed, retrying",
                        call=func.__qualname__,
                        attempt=attempt,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
