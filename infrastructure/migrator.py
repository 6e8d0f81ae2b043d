# ============================================================================
# SCHEMA MIGRATOR
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Infrastructure - Schema change runner
# PURPOSE: Apply one .sql schema change at a time and keep a ledger
# CREATED: 14 OCT 2026
# ============================================================================
"""
Schema Migrator

The orchestrator hands schema-change tasks to a Migrator one at a time.
The migrator owns its own ledger (sequencer.schema_migrations); the
operations table never holds schema changes.

Semantics:
- run() applies the file and writes the ledger row in ONE transaction
- any failure is wrapped in MigrationFailedError and nothing is recorded
- ran() is the set of identities in the ledger

Implementations:
- SqlMigrator: psycopg, plain .sql files
- InMemoryMigrator: ledger in a set (tests, dry tooling)

Usage:
    migrator = SqlMigrator(pool)
    await migrator.ensure_ledger()
    await migrator.run(task, batch_id="b-1")
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from core.errors import MigrationFailedError
from core.models import SchemaMigration, Task
from core.schema import PydanticToSQL, SchemaUtils
from repositories.database import SCHEMA, TABLE_MIGRATIONS

logger = logging.getLogger(__name__)


def checksum(text: str) -> str:
    """sha256 hex digest of a schema change's SQL."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


# ============================================================================
# MIGRATOR INTERFACE
# ============================================================================

class Migrator(ABC):
    """Runs schema changes and reports which have been applied."""

    @abstractmethod
    async def ensure_ledger(self) -> None:
        """Create the ledger if it does not exist."""

    @abstractmethod
    async def ran(self) -> Set[str]:
        """Identities of every applied schema change."""

    @abstractmethod
    async def run(self, task: Task, batch_id: Optional[str] = None) -> SchemaMigration:
        """
        Apply a single schema change.

        Raises:
            MigrationFailedError: the change could not be applied
        """

    async def pending(self, tasks: Iterable[Task]) -> List[Task]:
        """Filter tasks down to schema changes not yet in the ledger."""
        applied = await self.ran()
        return [t for t in tasks if t.is_schema_change and t.identity not in applied]


# ============================================================================
# POSTGRES MIGRATOR
# ============================================================================

class SqlMigrator(Migrator):
    """
    Applies .sql files through the shared pool.

    Files may hold several statements; they are sent in one execute()
    call without parameters, which psycopg permits.
    """

    def __init__(self, pool: AsyncConnectionPool, schema_name: str = SCHEMA):
        self.pool = pool
        self.schema_name = schema_name

    def ledger_ddl(self) -> List[sql.Composed]:
        generator = PydanticToSQL(schema_name=self.schema_name)
        return [SchemaUtils.create_schema(self.schema_name), generator.generate_table(SchemaMigration)]

    async def ensure_ledger(self) -> None:
        async with self.pool.connection() as conn:
            async with conn.transaction():
                for stmt in self.ledger_ddl():
                    await conn.execute(stmt)
        logger.info(f"Migration ledger ready in schema {self.schema_name}")

    async def ran(self) -> Set[str]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT migration FROM {}").format(TABLE_MIGRATIONS)
            )
            rows = await result.fetchall()
            return {row["migration"] for row in rows}

    async def run(self, task: Task, batch_id: Optional[str] = None) -> SchemaMigration:
        if task.path is None:
            raise MigrationFailedError(task.identity, ValueError("schema change has no file"))

        try:
            text = Path(task.path).read_text(encoding="utf-8")
        except OSError as e:
            raise MigrationFailedError(task.identity, e) from e

        entry = SchemaMigration(migration=task.identity, batch_id=batch_id, checksum=checksum(text))
        logger.info(f"Applying schema change {task.identity} ({Path(task.path).name})")

        try:
            async with self.pool.connection() as conn:
                async with conn.transaction():
                    if text.strip():
                        await conn.execute(text)
                    await conn.execute(
                        sql.SQL("""
                        INSERT INTO {} (migration, batch_id, checksum, ran_at)
                        VALUES (%s, %s, %s, %s)
                        """).format(TABLE_MIGRATIONS),
                        (entry.migration, entry.batch_id, entry.checksum, entry.ran_at),
                    )
        except Exception as e:
            logger.error(f"Schema change {task.identity} failed: {type(e).__name__}: {e}")
            raise MigrationFailedError(task.identity, e) from e

        logger.info(f"Applied schema change {task.identity}")
        return entry


# ============================================================================
# IN-MEMORY MIGRATOR
# ============================================================================

class InMemoryMigrator(Migrator):
    """
    Ledger kept in memory; nothing is executed.

    Identities listed in fail_on raise MigrationFailedError when run.
    """

    def __init__(self, applied: Optional[Iterable[str]] = None, fail_on: Optional[Iterable[str]] = None):
        self.ledger: Dict[str, SchemaMigration] = {
            name: SchemaMigration(migration=name) for name in (applied or [])
        }
        self.fail_on: Set[str] = set(fail_on or [])
        self.applied_order: List[str] = []

    async def ensure_ledger(self) -> None:
        return None

    async def ran(self) -> Set[str]:
        return set(self.ledger)

    async def run(self, task: Task, batch_id: Optional[str] = None) -> SchemaMigration:
        if task.identity in self.fail_on:
            raise MigrationFailedError(task.identity, RuntimeError("configured to fail"))
        entry = SchemaMigration(migration=task.identity, batch_id=batch_id)
        self.ledger[task.identity] = entry
        self.applied_order.append(task.identity)
        return entry


__all__ = ["Migrator", "SqlMigrator", "InMemoryMigrator", "checksum"]
