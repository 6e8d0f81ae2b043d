# ============================================================================
# DEPENDENCY RESOLVER
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Task ordering and dependency satisfaction
# PURPOSE: Topologically order a timestamp-sorted task list, detect cycles
# CREATED: 14 OCT 2026
# ============================================================================
"""
Dependency Resolver

Ordering is an iterative ready-set sort rather than a recursive DFS, so a
cycle shows up as a pass that makes no progress:

    sorted = [], remaining = tasks (already in timestamp order)
    repeat:
        for task in remaining (in order):
            if every discovered dependency of task is in sorted:
                move task to sorted
        no progress and remaining non-empty -> CircularDependencyError

With no dependencies declared the output is the input order. A task is
never held back by a dependency that was not discovered in this run;
whether such a dependency is satisfied is a question for the persisted
store, answered by dependencies_satisfied().

Features:
- Duplicate (kind, identity) collapse, first occurrence wins
- Dependency graph for inspection
- Persisted satisfaction checks against the record store and migrator ledger
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from core.contracts import TaskKind
from core.errors import CircularDependencyError
from core.models import Task, parse_task_name

logger = logging.getLogger(__name__)


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class DependencyGraph:
    """
    Dependency graph for one run.

    A -> B means "B depends on A" (A must finish before B).
    Only edges between discovered tasks are kept; the rest are external.
    """
    # Identity -> identities that depend on it
    forward_edges: Dict[str, List[str]] = field(default_factory=lambda: defaultdict(list))

    # Identity -> identities it depends on
    backward_edges: Dict[str, List[str]] = field(default_factory=lambda: defaultdict(list))

    # Identity -> dependencies outside this run
    external: Dict[str, List[str]] = field(default_factory=lambda: defaultdict(list))

    nodes: Set[str] = field(default_factory=set)

    def add_edge(self, from_node: str, to_node: str) -> None:
        """Add a dependency edge: to_node depends on from_node."""
        self.forward_edges[from_node].append(to_node)
        self.backward_edges[to_node].append(from_node)
        self.nodes.add(from_node)
        self.nodes.add(to_node)

    def get_dependencies(self, identity: str) -> List[str]:
        return self.backward_edges.get(identity, [])

    def get_dependents(self, identity: str) -> List[str]:
        return self.forward_edges.get(identity, [])


# ============================================================================
# RESOLVER
# ============================================================================

class DependencyResolver:
    """
    Orders tasks and checks persisted dependency satisfaction.

    store and migrator are only needed for the satisfaction checks;
    sort() is pure.
    """

    def __init__(self, store=None, migrator=None):
        """
        Args:
            store: ExecutionStore for operation dependencies
            migrator: Migrator whose ledger answers schema-change dependencies
        """
        self.store = store
        self.migrator = migrator

    # =========================================================================
    # ORDERING
    # =========================================================================

    @staticmethod
    def unique(tasks: Iterable[Task]) -> List[Task]:
        """Drop repeated (kind, identity) pairs, keeping the first."""
        seen: Set[Tuple[TaskKind, str]] = set()
        result = []
        for task in tasks:
            key = (task.kind, task.identity)
            if key in seen:
                logger.debug(f"Ignoring duplicate {task.kind.value} {task.identity}")
                continue
            seen.add(key)
            result.append(task)
        return result

    def build_graph(self, tasks: Iterable[Task]) -> DependencyGraph:
        tasks = self.unique(tasks)
        identities = {t.identity for t in tasks}
        graph = DependencyGraph()

        for task in tasks:
            graph.nodes.add(task.identity)
            for dep in task.declared_dependencies():
                if dep in identities:
                    graph.add_edge(dep, task.identity)
                else:
                    graph.external[task.identity].append(dep)

        return graph

    def sort(self, tasks: Iterable[Task]) -> List[Task]:
        """
        Order tasks so every task follows its discovered dependencies.

        Args:
            tasks: Tasks already in timestamp order

        Returns:
            New list in execution order

        Raises:
            CircularDependencyError: no progress possible among remaining tasks
        """
        remaining = self.unique(tasks)
        if not remaining:
            return []

        discovered = {t.identity for t in remaining}
        dependencies: Dict[int, List[str]] = {
            id(t): [d for d in t.declared_dependencies() if d in discovered]
            for t in remaining
        }

        ordered: List[Task] = []
        placed: Set[str] = set()
        max_passes = 2 * len(remaining)
        passes = 0

        while remaining:
            passes += 1
            if passes > max_passes:
                raise CircularDependencyError([t.identity for t in remaining])

            still_waiting: List[Task] = []
            for task in remaining:
                if all(dep in placed for dep in dependencies[id(task)]):
                    ordered.append(task)
                    placed.add(task.identity)
                else:
                    still_waiting.append(task)

            if len(still_waiting) == len(remaining):
                identities = [t.identity for t in still_waiting]
                logger.error(f"Circular dependency among: {', '.join(identities)}")
                raise CircularDependencyError(identities)

            remaining = still_waiting

        logger.debug(f"Resolved order of {len(ordered)} tasks in {passes} passes")
        return ordered

    # =========================================================================
    # PERSISTED SATISFACTION
    # =========================================================================

    async def unsatisfied_dependencies(
        self,
        task: Task,
        dependencies: Optional[Iterable[str]] = None,
    ) -> List[str]:
        """
        Declared dependencies that have not reached Completed or Skipped.

        Operation dependencies are answered by the record store; a
        dependency the migrator ledger lists as ran is also satisfied.

        Args:
            task: Task whose dependencies to check
            dependencies: Subset to check (defaults to all declared)
        """
        deps = list(task.declared_dependencies() if dependencies is None else dependencies)
        if not deps:
            return []

        ran: Set[str] = set()
        if self.migrator is not None:
            ran = await self.migrator.ran()

        states = {}
        if self.store is not None:
            states = await self.store.latest_states(deps)

        missing = []
        for dep in deps:
            if dep in ran:
                continue
            state = states.get(dep)
            if state is not None and state.is_successful():
                continue
            if parse_task_name(dep) is None:
                logger.warning(f"{task.identity} depends on '{dep}', which is not a timestamped name")
            missing.append(dep)
        return missing

    async def dependencies_satisfied(self, task: Task) -> bool:
        return not await self.unsatisfied_dependencies(task)


__all__ = ["DependencyResolver", "DependencyGraph"]
