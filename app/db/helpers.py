"""
Database helper functions for common patterns.
Reduces boilerplate in the repository layer.

All helpers translate driver errors into PersistenceError so callers never
have to import psycopg. A unique-constraint violation surfaces as
DuplicateError, which the outbox and dispatcher treat as success.
"""

import asyncio
import functools
from typing import Any

import psycopg
from psycopg import errors as pg_errors

from app.db.pool import get_db_connection, get_db_transaction
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class PersistenceError(Exception):
    """Store unreachable or a statement failed."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class DuplicateError(PersistenceError):
    """Unique constraint violated (dedupe_key collision)."""

    def __init__(self, message: str, operation: str = "unknown", constraint: str | None = None):
        super().__init__(message, operation=operation, recoverable=False)
        self.constraint = constraint


def _translate(e: psycopg.Error, operation: str, query: str) -> PersistenceError:
    if isinstance(e, pg_errors.UniqueViolation):
        constraint = getattr(getattr(e, "diag", None), "constraint_name", None)
        logger.debug("Unique violation", operation=operation, constraint=constraint)
        return DuplicateError(f"Duplicate key: {e}", operation=operation, constraint=constraint)

    logger.error(f"Database {operation} error", query=query[:100], error=str(e))
    recoverable = isinstance(e, psycopg.OperationalError)
    return PersistenceError(f"Query failed: {e}", operation=operation, recoverable=recoverable)


async def fetch_one(
    query: str, params: tuple | dict = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """
    Execute query and return single row as dict.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Optional existing connection (e.g. inside a transaction)

    Returns:
        Dict with row data or None if no results
    """
    try:
        if connection:
            async with connection.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchone()

        async with await get_db_connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchone()

    except psycopg.Error as e:
        raise _translate(e, "fetch_one", query) from e


async def fetch_all(
    query: str, params: tuple | dict = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    """
    Execute query and return all rows as list of dicts.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Optional existing connection

    Returns:
        List of dicts with row data
    """
    try:
        if connection:
            async with connection.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchall()

        async with await get_db_connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchall()

    except psycopg.Error as e:
        raise _translate(e, "fetch_all", query) from e


async def fetch_val(
    query: str, params: tuple | dict = (), *, connection: psycopg.AsyncConnection | None = None
) -> Any:
    """Execute query and return the first column of the first row."""
    row = await fetch_one(query, params, connection=connection)
    return list(row.values())[0] if row else None


async def execute_query(
    query: str, params: tuple | dict = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """
    Execute query and return number of affected rows.

    Conditional updates ("... WHERE status = %s") rely on this count to
    detect that another invocation changed the row first.
    """
    try:
        if connection:
            cursor = await connection.execute(query, params)
            return cursor.rowcount

        async with await get_db_connection() as conn:
            cursor = await conn.execute(query, params)
            return cursor.rowcount

    except psycopg.Error as e:
        raise _translate(e, "execute", query) from e


async def execute_transaction(queries_and_params: list[tuple]) -> list[int]:
    """
    Execute multiple queries in a single transaction.

    Args:
        queries_and_params: List of (query, params) tuples

    Returns:
        Affected row count for each statement, in order

    Example:
        inserted, updated = await execute_transaction([
            ("INSERT INTO outbound_attempts (...) VALUES (...)", (...)),
            ("UPDATE outbound_jobs SET ... WHERE id = %s AND status = %s", (job_id, "queued")),
        ])
    """
    try:
        counts: list[int] = []
        async with await get_db_transaction() as conn:
            for query, params in queries_and_params:
                cursor = await conn.execute(query, params)
                counts.append(cursor.rowcount)

        logger.debug("Transaction completed successfully", query_count=len(queries_and_params))
        return counts

    except psycopg.Error as e:
        logger.error("Transaction failed", query_count=len(queries_and_params), error=str(e))
        raise _translate(e, "transaction", queries_and_params[0][0] if queries_and_params else "") from e


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Decorator to retry repository calls on transient PersistenceError.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Base delay between retries (exponential backoff)
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)

                except DuplicateError:
                    raise

                except PersistenceError as e:
                    if not e.recoverable or attempt >= max_retries:
                        raise
                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Database operation failed, retrying",
                        operation=func.__name__,
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
