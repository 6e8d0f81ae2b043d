# ============================================================================
# TASK DESCRIPTOR MODEL
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core model - Discovered unit of work
# PURPOSE: Immutable descriptor for schema changes and operations
# LAST_REVIEWED: 14 OCT 2026
# EXPORTS: Task, TaskPreview, TASK_NAME_PATTERN, parse_task_name
# DEPENDENCIES: pydantic
# ============================================================================
"""
Task Model

A Task is rebuilt fresh on every discovery call and never persisted.

Key concept:
- Task = DESCRIPTOR (what was found on disk / in the registry)
- ExecutionRecord = INSTANCE (one row per attempt, persisted)

The payload is opaque to the ordering layer. For operations it is a
lazy handle whose load() imports the operation only when ordering
needs its declared dependencies or when it is about to run.
"""

import re
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, Field

from core.contracts import TaskKind

# YYYY_MM_DD_HHMMSS_<suffix> - anything else is ignored by discovery
TASK_NAME_PATTERN = re.compile(r"^(\d{4}_\d{2}_\d{2}_\d{6})_(.+)$")


def parse_task_name(name: str) -> Optional[Tuple[str, str]]:
    """
    Split a task name into (timestamp, identity).

    Args:
        name: File stem or registered name

    Returns:
        (timestamp, identity) or None if the name does not follow the convention
    """
    match = TASK_NAME_PATTERN.match(name)
    if match is None:
        return None
    return match.group(1), name


class TaskPreview(BaseModel):
    """Dry-run output row."""
    kind: TaskKind
    timestamp: str
    identity: str

    model_config = {"frozen": True}


class Task(BaseModel):
    """
    Immutable descriptor of a discovered task.

    Identity is the timestamped stem for both kinds, e.g.
    2024_01_15_120000_backfill_users. Dependencies refer to that form.
    """

    kind: TaskKind
    timestamp: str = Field(..., pattern=r"^\d{4}_\d{2}_\d{2}_\d{6}$")
    identity: str = Field(..., min_length=1, max_length=255)
    dependencies: Tuple[str, ...] = Field(
        default=(),
        description="Explicit dependency identities (operations add their own lazily)"
    )
    path: Optional[str] = Field(
        default=None,
        description="Source file for file-based tasks"
    )
    payload: Optional[Any] = Field(
        default=None,
        description="Lazy operation handle (OperationHandle) or None",
        exclude=True,
    )

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    @property
    def is_operation(self) -> bool:
        return self.kind == TaskKind.OPERATION

    @property
    def is_schema_change(self) -> bool:
        return self.kind == TaskKind.SCHEMA_CHANGE

    def load_operation(self) -> Any:
        """Load (once) and return the operation behind this task."""
        if not self.is_operation or self.payload is None:
            return None
        return self.payload.load()

    def declared_dependencies(self) -> List[str]:
        """
        Explicit dependencies plus the operation's depends_on().

        Loads the payload on first call. Order is preserved, duplicates dropped.
        """
        declared = list(self.dependencies)
        operation = self.load_operation()
        if operation is not None:
            declared.extend(operation.depends_on() or [])

        seen = set()
        result = []
        for dep in declared:
            if dep not in seen:
                seen.add(dep)
                result.append(dep)
        return result

    def declared_tags(self) -> List[str]:
        """Tags of the operation; schema changes carry none."""
        operation = self.load_operation()
        if operation is None:
            return []
        return list(operation.tags() or [])

    def to_preview(self) -> TaskPreview:
        return TaskPreview(kind=self.kind, timestamp=self.timestamp, identity=self.identity)


__all__ = ["Task", "TaskPreview", "TASK_NAME_PATTERN", "parse_task_name"]
