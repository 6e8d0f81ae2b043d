# ============================================================================
# MODELS MODULE
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# LAST_REVIEWED: 14 OCT 2026
# ============================================================================
"""
Models Module - Central Export Point

Persisted models define SQL metadata via __sql_* ClassVar attributes
for DDL generation (see core.schema.PydanticToSQL). Task and
SequencerEvent are transient and carry no SQL metadata.
"""

from core.models.task import Task, TaskPreview, TASK_NAME_PATTERN, parse_task_name
from core.models.execution_record import ExecutionRecord
from core.models.operation_error import OperationError
from core.models.events import SequencerEvent, EventType
from core.models.lease import SequencerLease
from core.models.schema_migration import SchemaMigration

__all__ = [
    # Task
    "Task",
    "TaskPreview",
    "TASK_NAME_PATTERN",
    "parse_task_name",
    # Records
    "ExecutionRecord",
    "OperationError",
    # Events
    "SequencerEvent",
    "EventType",
    # Lease
    "SequencerLease",
    # Migrator ledger
    "SchemaMigration",
]
