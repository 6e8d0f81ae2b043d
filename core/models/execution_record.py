# ============================================================================
# EXECUTION RECORD MODEL
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core model - Persisted execution attempt
# PURPOSE: One row per operation execution attempt, state derived from timestamps
# LAST_REVIEWED: 14 OCT 2026
# EXPORTS: ExecutionRecord
# DEPENDENCIES: pydantic
# ============================================================================
"""
Execution Record Model

ExecutionRecord is the audit row written for every operation attempt.

State is never stored on its own - it is computed from the terminal
timestamps (see core.contracts.derive_state). The repository writes the
derived value into the state column so it can be indexed and queried,
but reads always recompute it.

Lifecycle:
    1. Created Pending when the orchestrator (or dispatcher) starts the task
    2. Completed / Skipped / Failed when the body finishes
    3. RolledBack if a later task fails and the operation is Rollbackable
"""

from datetime import datetime
from typing import ClassVar, Dict, List, Optional, Set

from pydantic import BaseModel, Field, computed_field

from core.contracts import ExecutionMethod, ExecutionState, derive_state, utcnow
from core.errors import InvalidTransitionError


_ALLOWED_TRANSITIONS: Dict[ExecutionState, Set[ExecutionState]] = {
    ExecutionState.PENDING: {
        ExecutionState.COMPLETED,
        ExecutionState.SKIPPED,
        ExecutionState.FAILED,
    },
    ExecutionState.COMPLETED: {ExecutionState.ROLLED_BACK},
    ExecutionState.FAILED: {ExecutionState.ROLLED_BACK},
    ExecutionState.SKIPPED: set(),
    ExecutionState.ROLLED_BACK: set(),
}


class ExecutionRecord(BaseModel):
    """
    Persisted execution attempt of one operation.

    Maps to: sequencer.operations table
    Primary Key: id (SERIAL)
    """

    # =========================================================================
    # SQL DDL METADATA (Used by PydanticToSQL generator)
    # =========================================================================
    __sql_table__: ClassVar[str] = "operations"
    __sql_schema__: ClassVar[str] = "sequencer"
    __sql_primary_key__: ClassVar[List[str]] = ["id"]
    __sql_serial_columns__: ClassVar[List[str]] = ["id"]
    __sql_indexes__: ClassVar[List[tuple]] = [
        ("idx_seq_operations_name", ["name"]),
        ("idx_seq_operations_name_id", ["name", "id"]),
        ("idx_seq_operations_state", ["state"]),
        ("idx_seq_operations_batch", ["batch_id"], "batch_id IS NOT NULL"),
    ]

    id: Optional[int] = Field(
        default=None,
        description="Auto-increment primary key (SERIAL)"
    )
    name: str = Field(..., max_length=255, description="Operation identity")
    type: ExecutionMethod = Field(default=ExecutionMethod.SYNC)
    batch_id: Optional[str] = Field(
        default=None,
        max_length=64,
        description="process() call that created this record"
    )

    # Timestamps
    executed_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    skipped_at: Optional[datetime] = None
    skip_reason: Optional[str] = Field(default=None, max_length=1000)
    rolled_back_at: Optional[datetime] = None

    @computed_field
    @property
    def state(self) -> ExecutionState:
        """Derived from the terminal timestamps."""
        return derive_state(
            completed_at=self.completed_at,
            failed_at=self.failed_at,
            skipped_at=self.skipped_at,
            rolled_back_at=self.rolled_back_at,
        )

    @property
    def is_successful(self) -> bool:
        return self.state.is_successful()

    @property
    def duration_ms(self) -> Optional[int]:
        """Milliseconds from start to the first terminal timestamp."""
        end = self.completed_at or self.failed_at or self.skipped_at
        if end is None:
            return None
        return int((end - self.executed_at).total_seconds() * 1000)

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def can_transition_to(self, target: ExecutionState) -> bool:
        """
        Validate if a state transition is allowed.

        Valid transitions:
            PENDING -> COMPLETED, SKIPPED, FAILED
            COMPLETED, FAILED -> ROLLED_BACK
            SKIPPED, ROLLED_BACK -> (none)
        """
        return target in _ALLOWED_TRANSITIONS[self.state]

    def _require(self, target: ExecutionState) -> None:
        if not self.can_transition_to(target):
            raise InvalidTransitionError(self.name, self.state.value, target.value)

    def mark_completed(self, at: Optional[datetime] = None) -> None:
        self._require(ExecutionState.COMPLETED)
        self.completed_at = at or utcnow()

    def mark_skipped(self, reason: Optional[str] = None, at: Optional[datetime] = None) -> None:
        """Mark as skipped; reason is truncated to the column width."""
        self._require(ExecutionState.SKIPPED)
        self.skipped_at = at or utcnow()
        self.skip_reason = reason[:1000] if reason else None

    def mark_failed(self, at: Optional[datetime] = None) -> None:
        self._require(ExecutionState.FAILED)
        self.failed_at = at or utcnow()

    def mark_rolled_back(self, at: Optional[datetime] = None) -> None:
        self._require(ExecutionState.ROLLED_BACK)
        self.rolled_back_at = at or utcnow()


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["ExecutionRecord"]
