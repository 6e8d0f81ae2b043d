# ============================================================================
# TASK DISCOVERY
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Task sources
# PURPOSE: Find schema changes and operations that still need to run
# CREATED: 14 OCT 2026
# ============================================================================
"""
Task Discovery

Two sources feed a run:
- OperationDiscovery: YYYY_MM_DD_HHMMSS_<name>.py files plus operations
  registered with @register_operation
- MigrationDiscovery: YYYY_MM_DD_HHMMSS_<name>.sql files

Directories are scanned non-recursively; anything not following the
naming convention is ignored, and a missing directory is skipped.
Nothing is imported here - operation files stay behind an
OperationHandle until ordering or execution needs them.

Pending means "no successful attempt": an operation whose latest record
is Completed or Skipped is done; one whose latest record is Failed or
RolledBack is pending again. Schema changes are pending until the
migrator ledger lists them.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from core.contracts import TaskKind
from core.models import Task, parse_task_name
from operations.loader import OperationHandle
from operations.registry import get_operation, registered_identities

logger = logging.getLogger(__name__)

# Schema changes run before operations sharing a timestamp
_KIND_RANK = {TaskKind.SCHEMA_CHANGE: 0, TaskKind.OPERATION: 1}


def scan_directory(path: Path, suffix: str) -> List[Path]:
    """Files in path (non-recursive) with suffix and a timestamped stem, by name."""
    if not path.is_dir():
        logger.debug(f"Discovery path {path} does not exist, skipping")
        return []
    return sorted(
        (entry for entry in path.iterdir()
         if entry.is_file() and entry.suffix == suffix and parse_task_name(entry.stem)),
        key=lambda entry: entry.name,
    )


def merge_tasks(*sources: Iterable[Task]) -> List[Task]:
    """Concatenate sources and stable-sort by timestamp, schema changes first on ties."""
    merged = [task for source in sources for task in source]
    return sorted(merged, key=lambda t: (t.timestamp, _KIND_RANK[t.kind]))


class TaskSource(ABC):
    """A place tasks are discovered from."""

    kind: TaskKind

    def __init__(self, paths: Sequence[str]):
        self.paths = [Path(p) for p in paths]

    @abstractmethod
    async def discover(self, include_completed: bool = False) -> List[Task]:
        """
        Args:
            include_completed: Return every task, not just pending ones

        Returns:
            Tasks in file-name order
        """


# ============================================================================
# OPERATIONS
# ============================================================================

class OperationDiscovery(TaskSource):
    """Operation files plus registered operations."""

    kind = TaskKind.OPERATION

    def __init__(self, paths: Sequence[str], store, include_registry: bool = True):
        """
        Args:
            paths: Directories holding operation files
            store: ExecutionStore used to drop completed operations
            include_registry: Also return @register_operation classes
        """
        super().__init__(paths)
        self.store = store
        self.include_registry = include_registry

    def all_tasks(self) -> List[Task]:
        """Every operation found, completed or not."""
        tasks: List[Task] = []
        seen = set()

        for directory in self.paths:
            for entry in scan_directory(directory, ".py"):
                timestamp, identity = parse_task_name(entry.stem)
                if identity in seen:
                    logger.warning(f"Operation {identity} found twice, keeping the first ({entry})")
                    continue
                seen.add(identity)
                tasks.append(Task(
                    kind=TaskKind.OPERATION,
                    timestamp=timestamp,
                    identity=identity,
                    path=str(entry),
                    payload=OperationHandle(identity, path=entry),
                ))

        if self.include_registry:
            for identity in registered_identities():
                if identity in seen:
                    continue
                timestamp, _ = parse_task_name(identity)
                seen.add(identity)
                tasks.append(Task(
                    kind=TaskKind.OPERATION,
                    timestamp=timestamp,
                    identity=identity,
                    payload=OperationHandle(identity, operation_class=get_operation(identity)),
                ))

        return sorted(tasks, key=lambda t: t.identity)

    async def discover(self, include_completed: bool = False) -> List[Task]:
        tasks = self.all_tasks()
        if include_completed:
            return tasks

        done = await self.store.successful_names()
        pending = [t for t in tasks if t.identity not in done]
        logger.debug(f"Discovered {len(tasks)} operations, {len(pending)} pending")
        return pending


# ============================================================================
# SCHEMA CHANGES
# ============================================================================

class MigrationDiscovery(TaskSource):
    """Schema change files not yet in the migrator ledger."""

    kind = TaskKind.SCHEMA_CHANGE

    def __init__(self, paths: Sequence[str], migrator):
        super().__init__(paths)
        self.migrator = migrator

    def all_tasks(self) -> List[Task]:
        tasks: List[Task] = []
        seen = set()
        for directory in self.paths:
            for entry in scan_directory(directory, ".sql"):
                timestamp, identity = parse_task_name(entry.stem)
                if identity in seen:
                    logger.warning(f"Schema change {identity} found twice, keeping the first ({entry})")
                    continue
                seen.add(identity)
                tasks.append(Task(
                    kind=TaskKind.SCHEMA_CHANGE,
                    timestamp=timestamp,
                    identity=identity,
                    path=str(entry),
                ))
        return sorted(tasks, key=lambda t: t.identity)

    async def discover(self, include_completed: bool = False) -> List[Task]:
        """Schema changes are never repeated, so include_completed is ignored."""
        tasks = self.all_tasks()
        ran = await self.migrator.ran()
        pending = [t for t in tasks if t.identity not in ran]
        logger.debug(f"Discovered {len(tasks)} schema changes, {len(pending)} pending")
        return pending


__all__ = [
    "TaskSource",
    "OperationDiscovery",
    "MigrationDiscovery",
    "merge_tasks",
    "scan_directory",
]
