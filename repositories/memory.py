# ============================================================================
# IN-MEMORY EXECUTION STORE
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Process-local record store
# PURPOSE: ExecutionStore without a database (tests, local dry tooling)
# CREATED: 13 OCT 2026
# ============================================================================
"""
In-Memory Execution Store

Same semantics as PostgresExecutionStore: ids are assigned in insertion
order and "latest" means highest id. Records are copied on the way in
and out so callers cannot mutate stored state behind the store's back.
"""

import asyncio
from typing import Dict, Iterable, List, Optional, Set

from core.contracts import ExecutionState
from core.models import ExecutionRecord, OperationError

from .execution_repo import ExecutionStore


class InMemoryExecutionStore(ExecutionStore):
    """Dict-backed ExecutionStore."""

    def __init__(self):
        self._records: Dict[int, ExecutionRecord] = {}
        self._errors: List[OperationError] = []
        self._next_id = 1
        self._lock = asyncio.Lock()

    async def create(self, record: ExecutionRecord) -> ExecutionRecord:
        async with self._lock:
            record.id = self._next_id
            self._next_id += 1
            self._records[record.id] = record.model_copy()
            return record

    async def update(self, record: ExecutionRecord) -> None:
        if record.id is None or record.id not in self._records:
            raise ValueError(f"Cannot update unsaved record for {record.name}")
        self._records[record.id] = record.model_copy()

    async def get(self, record_id: int) -> Optional[ExecutionRecord]:
        record = self._records.get(record_id)
        return record.model_copy() if record else None

    async def latest(self, name: str) -> Optional[ExecutionRecord]:
        matches = [r for r in self._records.values() if r.name == name]
        if not matches:
            return None
        return max(matches, key=lambda r: r.id).model_copy()

    async def latest_states(self, names: Optional[Iterable[str]] = None) -> Dict[str, ExecutionState]:
        wanted = set(names) if names is not None else None
        latest: Dict[str, ExecutionRecord] = {}
        for record_id in sorted(self._records):
            record = self._records[record_id]
            if wanted is None or record.name in wanted:
                latest[record.name] = record
        return {name: record.state for name, record in latest.items()}

    async def executed_names(self) -> Set[str]:
        return {
            r.name for r in self._records.values()
            if r.completed_at is not None or r.skipped_at is not None
        }

    async def record_error(self, error: OperationError) -> OperationError:
        error.id = len(self._errors) + 1
        self._errors.append(error.model_copy())
        return error

    async def errors_for(self, record_id: int) -> List[OperationError]:
        return [e.model_copy() for e in self._errors if e.operation_id == record_id]

    # =========================================================================
    # INSPECTION
    # =========================================================================

    def all_records(self) -> List[ExecutionRecord]:
        """Every stored record in id order."""
        return [self._records[i].model_copy() for i in sorted(self._records)]

    def records_for(self, name: str) -> List[ExecutionRecord]:
        return [r for r in self.all_records() if r.name == name]

    def seed(self, record: ExecutionRecord) -> ExecutionRecord:
        """Insert synchronously (test setup)."""
        record.id = self._next_id
        self._next_id += 1
        self._records[record.id] = record.model_copy()
        return record


__all__ = ["InMemoryExecutionStore"]
