"""
Process-wide Postgres pool (psycopg_pool) for the API and the sync worker.

Connections come out in autocommit mode with dict rows and a UTC session,
so repositories never see naive timestamps or open transactions.
"""

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CLOSE_TIMEOUT_SECONDS = 30.0
STATEMENT_TIMEOUT = "60s"


class DatabasePoolManager:
    """Owns one AsyncConnectionPool; opened on startup, closed on shutdown."""

    def __init__(self, conninfo: str | None = None):
        self.conninfo = conninfo or settings.SUPABASE_DB_URL
        self.pool: AsyncConnectionPool | None = None
        self._closed = False

    @property
    def initialized(self) -> bool:
        return self.pool is not None and not self._closed

    async def initialize(self) -> None:
        if self.pool is not None:
            logger.warning("Database pool already open")
            return
        if self._closed:
            raise RuntimeError("Database pool was closed and cannot be reopened")

        pool_kwargs = settings.get_db_pool_config()
        pool = AsyncConnectionPool(
            conninfo=self.conninfo,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=self._prepare_connection,
            **pool_kwargs,
        )
        try:
            await pool.open(wait=True)
            self.pool = pool
            await self._ping()
        except Exception as e:
            logger.error("Database pool failed to open", error=str(e), error_type=type(e).__name__)
            self.pool = None
            await pool.close()
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        logger.info(
            "Database pool open",
            min_size=pool_kwargs["min_size"],
            max_size=pool_kwargs["max_size"],
        )

    async def _prepare_connection(self, conn: psycopg.AsyncConnection) -> None:
        conn.row_factory = dict_row
        await conn.set_autocommit(True)
        await conn.execute(
            sql.SQL("SET application_name = {}").format(
                sql.Literal(f"crm-calendar-sync-{settings.environment}")
            )
        )
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute(
            sql.SQL("SET statement_timeout = {}").format(sql.Literal(STATEMENT_TIMEOUT))
        )

    async def _ping(self) -> None:
        async with self.connection() as conn:
            cursor = await conn.execute("SELECT 1 AS ok")
            row = await cursor.fetchone()
        if not row or row["ok"] != 1:
            raise RuntimeError(f"Unexpected ping result: {row!r}")

    async def close(self) -> None:
        if self.pool is None or self._closed:
            return
        logger.info("Closing database pool")
        try:
            await asyncio.wait_for(self.pool.close(), timeout=CLOSE_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.warning("Database pool close timed out", timeout=CLOSE_TIMEOUT_SECONDS)
        finally:
            self._closed = True

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[psycopg.AsyncConnection]:
        """Borrow a pooled connection for the duration of the block."""
        if not self.initialized:
            raise RuntimeError("Database pool is not open")
        async with self.pool.connection() as conn:
            yield conn

    async def health_check(self) -> dict[str, Any]:
        """Ping through the pool and report its counters."""
        if not self.initialized:
            return {"healthy": False, "service": "database_pool", "error": "Pool not initialized"}

        started = time.perf_counter()
        try:
            await self._ping()
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {
                "healthy": False,
                "service": "database_pool",
                "error": str(e),
                "error_type": type(e).__name__,
            }

        stats = self.pool.get_stats()
        return {
            "healthy": True,
            "service": "database_pool",
            "connection_time_ms": round((time.perf_counter() - started) * 1000, 2),
            "pool_stats": {
                key: stats.get(key, 0)
                for key in ("pool_size", "pool_available", "requests_waiting")
            },
        }


db_pool = DatabasePoolManager()


async def db_health_check() -> dict[str, Any]:
    return await db_pool.health_check()
