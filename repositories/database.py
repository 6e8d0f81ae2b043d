# ============================================================================
# DATABASE CONNECTION POOL
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Async PostgreSQL connection management
# PURPOSE: Connection pooling, transactions and table identifiers
# CREATED: 12 OCT 2026
# ============================================================================
"""
Database Connection Pool

Manages async PostgreSQL connections using psycopg3 and psycopg_pool.
One pool per process, shared by the record store, lock service and
migrator.

Connection string comes from DATABASE_URL or POSTGRES_* variables.

Usage:
    from repositories.database import get_pool

    pool = await get_pool()
    async with pool.connection() as conn:
        await conn.execute("SELECT 1")
"""

import logging
import os
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from psycopg import sql
from psycopg_pool import AsyncConnectionPool

from core.schema.sql_generator import SEQUENCER_SCHEMA

logger = logging.getLogger(__name__)

_pool: Optional[AsyncConnectionPool] = None


def get_connection_string() -> str:
    """
    Get database connection string from environment.

    Priority:
    1. DATABASE_URL
    2. Individual POSTGRES_* components
    """
    if url := os.environ.get("DATABASE_URL"):
        return url

    host = os.environ.get("POSTGRES_HOST", "localhost")
    port = os.environ.get("POSTGRES_PORT", "5432")
    name = os.environ.get("POSTGRES_DB", "postgres")
    user = os.environ.get("POSTGRES_USER", "postgres")
    password = os.environ.get("POSTGRES_PASSWORD", "")
    sslmode = os.environ.get("POSTGRES_SSLMODE", "prefer")

    return f"postgresql://{user}:{password}@{host}:{port}/{name}?sslmode={sslmode}"


def mask_conninfo(conninfo: str) -> str:
    """Strip credentials from a connection string for logging."""
    if "@" in conninfo:
        return conninfo.split("@")[-1]
    if "password=" in conninfo:
        head, _, tail = conninfo.partition("password=")
        rest = tail.split(" ", 1)
        return head + "password=***" + (" " + rest[1] if len(rest) > 1 else "")
    return conninfo


async def init_pool(
    min_size: int = 1,
    max_size: int = 5,
    connection_string: Optional[str] = None,
) -> AsyncConnectionPool:
    """
    Initialize the global connection pool.

    Args:
        min_size: Minimum connections to maintain
        max_size: Maximum connections allowed
        connection_string: Override connection string (defaults to env)
    """
    global _pool

    if _pool is not None:
        logger.warning("Pool already initialized, returning existing pool")
        return _pool

    conninfo = connection_string or get_connection_string()
    logger.info(f"Initializing connection pool: {mask_conninfo(conninfo)}")

    _pool = AsyncConnectionPool(
        conninfo=conninfo,
        min_size=min_size,
        max_size=max_size,
        open=False,
    )
    await _pool.open()
    logger.info(f"Connection pool opened (min={min_size}, max={max_size})")

    return _pool


async def get_pool() -> AsyncConnectionPool:
    """Get the global connection pool, initializing if needed."""
    if _pool is None:
        await init_pool()
    return _pool


async def close_pool() -> None:
    """Close the global connection pool."""
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Connection pool closed")


class DatabasePool:
    """
    Context manager for pool lifecycle.

    Usage:
        async with DatabasePool() as pool:
            async with pool.connection() as conn:
                ...
    """

    def __init__(
        self,
        min_size: int = 1,
        max_size: int = 5,
        connection_string: Optional[str] = None,
    ):
        self.min_size = min_size
        self.max_size = max_size
        self.connection_string = connection_string

    async def __aenter__(self) -> AsyncConnectionPool:
        return await init_pool(
            min_size=self.min_size,
            max_size=self.max_size,
            connection_string=self.connection_string,
        )

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await close_pool()


# ============================================================================
# TRANSACTIONS
# ============================================================================

class TransactionManager(ABC):
    """Opens the transaction an operation body runs in."""

    @abstractmethod
    def begin(self) -> Any:
        """Async context manager yielding the connection (or None)."""


class PoolTransactionManager(TransactionManager):
    """
    Transaction on a pooled connection.

    Commits when the block exits normally, rolls back when it raises.
    """

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[Any]:
        async with self.pool.connection() as conn:
            async with conn.transaction():
                yield conn


class NullTransactionManager(TransactionManager):
    """No database: the body runs without a connection."""

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[Any]:
        yield None


# ============================================================================
# SCHEMA CONSTANTS
# ============================================================================

SCHEMA = SEQUENCER_SCHEMA

# Table identifiers - use with sql.SQL().format() for injection-safe queries
TABLE_OPERATIONS = sql.Identifier(SCHEMA, "operations")
TABLE_OPERATION_ERRORS = sql.Identifier(SCHEMA, "operation_errors")
TABLE_LOCKS = sql.Identifier(SCHEMA, "sequencer_locks")
TABLE_MIGRATIONS = sql.Identifier(SCHEMA, "schema_migrations")


__all__ = [
    "get_connection_string",
    "init_pool",
    "get_pool",
    "close_pool",
    "DatabasePool",
    "TransactionManager",
    "PoolTransactionManager",
    "NullTransactionManager",
    "SCHEMA",
    "TABLE_OPERATIONS",
    "TABLE_OPERATION_ERRORS",
    "TABLE_LOCKS",
    "TABLE_MIGRATIONS",
]
