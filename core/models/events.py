# ============================================================================
# LIFECYCLE EVENT MODEL
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core model - Batch and task lifecycle signals
# PURPOSE: Payload delivered to EventService listeners
# LAST_REVIEWED: 14 OCT 2026
# EXPORTS: SequencerEvent, EventType
# DEPENDENCIES: pydantic, enum
# ============================================================================
"""
Lifecycle Event Model

Signals emitted while a batch runs. They are observational only -
nothing in the engine waits for or depends on a listener.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from core.contracts import ExecutionMethod, TaskKind, utcnow


class EventType(str, Enum):
    """Lifecycle signals."""

    # Batch lifecycle
    BATCH_STARTED = "batch_started"
    BATCH_ENDED = "batch_ended"
    NOTHING_PENDING = "nothing_pending"

    # Task lifecycle
    TASK_STARTED = "task_started"
    TASK_ENDED = "task_ended"
    TASK_FAILED = "task_failed"
    TASK_SKIPPED = "task_skipped"


class SequencerEvent(BaseModel):
    """
    A single lifecycle signal.

    Batch events carry batch_id and task_count; task events carry the
    task identity, kind, execution method and elapsed time.
    """

    event_type: EventType
    batch_id: Optional[str] = None

    # Task fields
    identity: Optional[str] = None
    kind: Optional[TaskKind] = None
    method: Optional[ExecutionMethod] = None
    record_id: Optional[int] = None
    elapsed_ms: Optional[int] = Field(default=None, ge=0)

    # Outcome details
    reason: Optional[str] = None
    error: Optional[str] = None
    task_count: Optional[int] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    created_at: datetime = Field(default_factory=utcnow)

    # ========================================================================
    # Factory Methods
    # ========================================================================

    @classmethod
    def batch_event(
        cls,
        event_type: EventType,
        batch_id: Optional[str] = None,
        task_count: Optional[int] = None,
        error: Optional[str] = None,
        elapsed_ms: Optional[int] = None,
    ) -> "SequencerEvent":
        """Create a batch-level event."""
        return cls(
            event_type=event_type,
            batch_id=batch_id,
            task_count=task_count,
            error=error,
            elapsed_ms=elapsed_ms,
        )

    @classmethod
    def task_event(
        cls,
        event_type: EventType,
        identity: str,
        kind: TaskKind,
        method: Optional[ExecutionMethod] = None,
        batch_id: Optional[str] = None,
        record_id: Optional[int] = None,
        elapsed_ms: Optional[int] = None,
        reason: Optional[str] = None,
        error: Optional[str] = None,
    ) -> "SequencerEvent":
        """Create a task-level event."""
        return cls(
            event_type=event_type,
            batch_id=batch_id,
            identity=identity,
            kind=kind,
            method=method,
            record_id=record_id,
            elapsed_ms=elapsed_ms,
            reason=reason,
            error=error,
        )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["SequencerEvent", "EventType"]
