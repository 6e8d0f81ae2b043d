# ============================================================================
# REPOSITORIES MODULE
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Database access layer
# PURPOSE: Execution record persistence and connection management
# CREATED: 13 OCT 2026
# ============================================================================
"""
Repositories Module

Provides persistence for execution records and operation errors.
Uses psycopg3 async with connection pooling.

Usage:
    from repositories import DatabasePool, PostgresExecutionStore

    async with DatabasePool() as pool:
        store = PostgresExecutionStore(pool)
        record = await store.latest("2024_01_15_120000_backfill_users")
"""

from .database import (
    DatabasePool,
    NullTransactionManager,
    PoolTransactionManager,
    TransactionManager,
    close_pool,
    get_pool,
    init_pool,
)
from .execution_repo import ExecutionStore, PostgresExecutionStore
from .memory import InMemoryExecutionStore

__all__ = [
    "get_pool",
    "init_pool",
    "close_pool",
    "DatabasePool",
    "TransactionManager",
    "PoolTransactionManager",
    "NullTransactionManager",
    "ExecutionStore",
    "PostgresExecutionStore",
    "InMemoryExecutionStore",
]
