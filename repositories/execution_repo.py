# ============================================================================
# EXECUTION RECORD REPOSITORY
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - ExecutionRecord / OperationError persistence
# PURPOSE: Database access for the operations and operation_errors tables
# CREATED: 13 OCT 2026
# ============================================================================
"""
Execution Record Repository

ExecutionStore is the boundary the orchestrator, resolver and worker
talk to. PostgresExecutionStore is the production implementation;
repositories.memory.InMemoryExecutionStore backs tests and dry tooling.

"Latest" always means highest id for a name - a name can have many
attempts (failed then retried, repeat mode, rolled back then re-run).
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Set

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from core.contracts import ExecutionState, derive_state
from core.models import ExecutionRecord, OperationError
from .database import TABLE_OPERATIONS, TABLE_OPERATION_ERRORS

logger = logging.getLogger(__name__)


# ============================================================================
# STORE INTERFACE
# ============================================================================

class ExecutionStore(ABC):
    """Persistent record store for operation executions."""

    @abstractmethod
    async def create(self, record: ExecutionRecord) -> ExecutionRecord:
        """Insert a record and return it with id assigned."""

    @abstractmethod
    async def update(self, record: ExecutionRecord) -> None:
        """Persist terminal timestamps (and derived state) of an existing record."""

    @abstractmethod
    async def get(self, record_id: int) -> Optional[ExecutionRecord]:
        ...

    @abstractmethod
    async def latest(self, name: str) -> Optional[ExecutionRecord]:
        """Most recent attempt for a name, or None."""

    @abstractmethod
    async def latest_states(self, names: Optional[Iterable[str]] = None) -> Dict[str, ExecutionState]:
        """Latest state per name (all names when names is None)."""

    @abstractmethod
    async def executed_names(self) -> Set[str]:
        """Names with at least one attempt that completed or was skipped."""

    @abstractmethod
    async def record_error(self, error: OperationError) -> OperationError:
        ...

    @abstractmethod
    async def errors_for(self, record_id: int) -> List[OperationError]:
        ...

    async def successful_names(self) -> Set[str]:
        """Names whose latest attempt is Completed or Skipped."""
        states = await self.latest_states()
        return {name for name, state in states.items() if state.is_successful()}

    async def is_satisfied(self, name: str) -> bool:
        """True when the latest attempt for name is Completed or Skipped."""
        record = await self.latest(name)
        return record is not None and record.state.is_successful()


# ============================================================================
# POSTGRES IMPLEMENTATION
# ============================================================================

class PostgresExecutionStore(ExecutionStore):
    """Repository for ExecutionRecord and OperationError rows."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    async def create(self, record: ExecutionRecord) -> ExecutionRecord:
        """
        Insert a new execution record.

        Args:
            record: Record without id

        Returns:
            The same record with id populated from the SERIAL column
        """
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                INSERT INTO {} (
                    name, type, batch_id, executed_at, completed_at, failed_at,
                    skipped_at, skip_reason, rolled_back_at, state
                ) VALUES (
                    %(name)s, %(type)s, %(batch_id)s, %(executed_at)s, %(completed_at)s,
                    %(failed_at)s, %(skipped_at)s, %(skip_reason)s, %(rolled_back_at)s, %(state)s
                )
                RETURNING id
                """).format(TABLE_OPERATIONS),
                self._params(record),
            )
            row = await result.fetchone()
            record.id = row["id"]
            logger.debug(f"Created execution record {record.id} for {record.name}")
            return record

    async def update(self, record: ExecutionRecord) -> None:
        if record.id is None:
            raise ValueError(f"Cannot update unsaved record for {record.name}")

        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("""
                UPDATE {} SET
                    completed_at = %(completed_at)s,
                    failed_at = %(failed_at)s,
                    skipped_at = %(skipped_at)s,
                    skip_reason = %(skip_reason)s,
                    rolled_back_at = %(rolled_back_at)s,
                    state = %(state)s
                WHERE id = %(id)s
                """).format(TABLE_OPERATIONS),
                {**self._params(record), "id": record.id},
            )
            if result.rowcount == 0:
                logger.warning(f"Execution record {record.id} ({record.name}) not found on update")
            else:
                logger.debug(f"Updated execution record {record.id} state={record.state.value}")

    async def get(self, record_id: int) -> Optional[ExecutionRecord]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT * FROM {} WHERE id = %s").format(TABLE_OPERATIONS),
                (record_id,),
            )
            row = await result.fetchone()
            return self._row_to_record(row) if row else None

    async def latest(self, name: str) -> Optional[ExecutionRecord]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT * FROM {} WHERE name = %s ORDER BY id DESC LIMIT 1").format(
                    TABLE_OPERATIONS
                ),
                (name,),
            )
            row = await result.fetchone()
            return self._row_to_record(row) if row else None

    async def latest_states(self, names: Optional[Iterable[str]] = None) -> Dict[str, ExecutionState]:
        """
        Latest state per name via DISTINCT ON.

        State is recomputed from the timestamps rather than trusted from
        the state column.
        """
        query = sql.SQL("""
            SELECT DISTINCT ON (name) name, completed_at, failed_at, skipped_at, rolled_back_at
            FROM {table}
            {where}
            ORDER BY name, id DESC
        """)
        params: tuple = ()
        where = sql.SQL("")
        if names is not None:
            name_list = list(names)
            if not name_list:
                return {}
            where = sql.SQL("WHERE name = ANY(%s)")
            params = (name_list,)

        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(query.format(table=TABLE_OPERATIONS, where=where), params)
            rows = await result.fetchall()

        return {
            row["name"]: derive_state(
                completed_at=row["completed_at"],
                failed_at=row["failed_at"],
                skipped_at=row["skipped_at"],
                rolled_back_at=row["rolled_back_at"],
            )
            for row in rows
        }

    async def executed_names(self) -> Set[str]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT DISTINCT name FROM {}
                WHERE completed_at IS NOT NULL OR skipped_at IS NOT NULL
                """).format(TABLE_OPERATIONS),
            )
            rows = await result.fetchall()
            return {row["name"] for row in rows}

    async def record_error(self, error: OperationError) -> OperationError:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                INSERT INTO {} (operation_id, exception, message, trace, context, created_at)
                VALUES (%(operation_id)s, %(exception)s, %(message)s, %(trace)s, %(context)s, %(created_at)s)
                RETURNING id
                """).format(TABLE_OPERATION_ERRORS),
                {
                    "operation_id": error.operation_id,
                    "exception": error.exception,
                    "message": error.message,
                    "trace": error.trace,
                    "context": Json(error.context),
                    "created_at": error.created_at,
                },
            )
            row = await result.fetchone()
            error.id = row["id"]
            logger.debug(f"Recorded {error.exception} for execution record {error.operation_id}")
            return error

    async def errors_for(self, record_id: int) -> List[OperationError]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT * FROM {} WHERE operation_id = %s ORDER BY id").format(
                    TABLE_OPERATION_ERRORS
                ),
                (record_id,),
            )
            rows = await result.fetchall()
            return [OperationError(**row) for row in rows]

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _params(record: ExecutionRecord) -> Dict[str, Any]:
        return {
            "name": record.name,
            "type": record.type.value,
            "batch_id": record.batch_id,
            "executed_at": record.executed_at,
            "completed_at": record.completed_at,
            "failed_at": record.failed_at,
            "skipped_at": record.skipped_at,
            "skip_reason": record.skip_reason,
            "rolled_back_at": record.rolled_back_at,
            "state": record.state.value,
        }

    @staticmethod
    def _row_to_record(row: Dict[str, Any]) -> ExecutionRecord:
        data = dict(row)
        data.pop("state", None)
        return ExecutionRecord(**data)


__all__ = ["ExecutionStore", "PostgresExecutionStore"]
