# ============================================================================
# BASE CONTRACTS & ENUMS
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Foundation - Core enums and state derivation
# PURPOSE: Define task kinds, execution states and methods for the sequencer
# LAST_REVIEWED: 14 OCT 2026
# EXPORTS: TaskKind, ExecutionState, ExecutionMethod, derive_state
# DEPENDENCIES: enum
# ============================================================================
"""
Base contracts for the sequencer.

These enums cross every boundary:
- SQL (PostgreSQL operations table)
- Queue (Azure Service Bus dispatch messages)
- Python (discovery, ordering, execution)

ExecutionState is never stored independently of the timestamps that
define it. derive_state() is the single place the precedence lives.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional


# ============================================================================
# TASK KINDS
# ============================================================================

class TaskKind(str, Enum):
    """Kinds of discovered work."""
    SCHEMA_CHANGE = "schema_change"    # SQL file applied by the migrator
    OPERATION = "operation"            # Python business-logic operation


# ============================================================================
# EXECUTION STATE
# ============================================================================

class ExecutionState(str, Enum):
    """
    Lifecycle of one task execution attempt.

    State transitions:
        PENDING -> COMPLETED
                -> SKIPPED
                -> FAILED
        COMPLETED | FAILED -> ROLLED_BACK

    Precedence when several timestamps are set:
        ROLLED_BACK > FAILED > SKIPPED > COMPLETED > PENDING
    """
    PENDING = "pending"          # Started, no terminal timestamp yet
    COMPLETED = "completed"      # Body returned normally
    FAILED = "failed"            # Body raised an unhandled error
    SKIPPED = "skipped"          # Body (or a pre-condition) chose not to run
    ROLLED_BACK = "rolled_back"  # Undone by the rollback cascade

    def is_terminal(self) -> bool:
        """Check if this is a terminal state."""
        return self is not ExecutionState.PENDING

    def is_successful(self) -> bool:
        """Completed and Skipped both satisfy dependents."""
        return self in (ExecutionState.COMPLETED, ExecutionState.SKIPPED)

    def is_failed(self) -> bool:
        return self is ExecutionState.FAILED

    def is_pending(self) -> bool:
        return self is ExecutionState.PENDING

    def label(self) -> str:
        """Human-readable label."""
        return self.value.replace("_", " ").title()


class ExecutionMethod(str, Enum):
    """How an operation was (or will be) executed."""
    SYNC = "sync"
    ASYNC = "async"
    FAKE = "fake"


def derive_state(
    completed_at: Optional[datetime] = None,
    failed_at: Optional[datetime] = None,
    skipped_at: Optional[datetime] = None,
    rolled_back_at: Optional[datetime] = None,
) -> ExecutionState:
    """
    Compute the execution state from terminal timestamps.

    Args:
        completed_at: When the body returned normally
        failed_at: When the body raised
        skipped_at: When the task was skipped
        rolled_back_at: When the rollback cascade undid the task

    Returns:
        ExecutionState honoring the precedence order
    """
    if rolled_back_at is not None:
        return ExecutionState.ROLLED_BACK
    if failed_at is not None:
        return ExecutionState.FAILED
    if skipped_at is not None:
        return ExecutionState.SKIPPED
    if completed_at is not None:
        return ExecutionState.COMPLETED
    return ExecutionState.PENDING


def utcnow() -> datetime:
    """Timezone-aware UTC now (persisted timestamps are TIMESTAMPTZ)."""
    return datetime.now(timezone.utc)


__all__ = [
    "TaskKind",
    "ExecutionState",
    "ExecutionMethod",
    "derive_state",
    "utcnow",
]
