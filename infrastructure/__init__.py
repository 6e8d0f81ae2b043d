# ============================================================================
# INFRASTRUCTURE MODULE
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Infrastructure - Locking and schema changes
# PURPOSE: Isolation lock and migration runner behind small interfaces
# CREATED: 13 OCT 2026
# ============================================================================
"""
Infrastructure module for the sequencer.

Provides:
- LockService: isolation mutex (LeaseLockService, LocalLockService)
- Migrator: schema-change runner (SqlMigrator, InMemoryMigrator)

Usage:
    from infrastructure import LeaseLockService, SqlMigrator

    lock_service = LeaseLockService(pool)
    migrator = SqlMigrator(pool)
"""

from infrastructure.locking import (
    LeaseLockService,
    LocalLockService,
    LockService,
)
from infrastructure.migrator import (
    InMemoryMigrator,
    Migrator,
    SqlMigrator,
)

__all__ = [
    "LockService",
    "LeaseLockService",
    "LocalLockService",
    "Migrator",
    "SqlMigrator",
    "InMemoryMigrator",
]
