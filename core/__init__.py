# ============================================================================
# CORE MODULE
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core module initialization
# PURPOSE: Export core contracts, errors and models
# LAST_REVIEWED: 14 OCT 2026
# ============================================================================

from core.contracts import ExecutionMethod, ExecutionState, TaskKind, derive_state
from core.errors import SequencerError
from core.models import (
    EventType,
    ExecutionRecord,
    OperationError,
    SequencerEvent,
    Task,
    TaskPreview,
)

__all__ = [
    # Enums
    "TaskKind",
    "ExecutionState",
    "ExecutionMethod",
    "EventType",
    "derive_state",
    # Errors
    "SequencerError",
    # Models
    "Task",
    "TaskPreview",
    "ExecutionRecord",
    "OperationError",
    "SequencerEvent",
]
