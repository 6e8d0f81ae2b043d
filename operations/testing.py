# ============================================================================
# OPERATION FAKE
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Testing support
# PURPOSE: Record operations instead of running them
# CREATED: 14 OCT 2026
# ============================================================================
"""
Operation Fake

Pass an OperationFake to the orchestrator to turn every operation into a
no-op that is remembered for assertions:

    fake = OperationFake()
    orchestrator = SequentialOrchestrator(..., fake=fake)
    await orchestrator.process()
    fake.assert_executed("2024_01_15_120000_backfill_users")

Faked operations get an in-memory ExecutionRecord of type "fake" that is
never persisted. Schema changes are not faked.
"""

from typing import Callable, List, Optional, Tuple

from core.contracts import ExecutionMethod, utcnow
from core.models import ExecutionRecord
from operations.base import Operation


class OperationFake:
    """Collects faked executions in order."""

    def __init__(self):
        self._executed: List[Tuple[str, Operation]] = []

    def record(self, identity: str, operation: Operation, batch_id: Optional[str] = None) -> ExecutionRecord:
        """Remember the operation and return a completed fake record."""
        self._executed.append((identity, operation))
        now = utcnow()
        return ExecutionRecord(
            name=identity,
            type=ExecutionMethod.FAKE,
            batch_id=batch_id,
            executed_at=now,
            completed_at=now,
        )

    @property
    def executed(self) -> List[str]:
        return [identity for identity, _ in self._executed]

    def count(self, identity: str, predicate: Optional[Callable[[Operation], bool]] = None) -> int:
        return sum(
            1 for name, op in self._executed
            if name == identity and (predicate is None or predicate(op))
        )

    def reset(self) -> None:
        self._executed.clear()

    # =========================================================================
    # ASSERTIONS
    # =========================================================================

    def assert_executed(
        self,
        identity: str,
        predicate: Optional[Callable[[Operation], bool]] = None,
    ) -> None:
        assert self.count(identity, predicate) > 0, (
            f"The expected [{identity}] operation was not executed."
        )

    def assert_not_executed(
        self,
        identity: str,
        predicate: Optional[Callable[[Operation], bool]] = None,
    ) -> None:
        assert self.count(identity, predicate) == 0, (
            f"The unexpected [{identity}] operation was executed."
        )

    def assert_executed_times(self, identity: str, times: int) -> None:
        actual = self.count(identity)
        assert actual == times, (
            f"The expected [{identity}] operation was executed {actual} times instead of {times}."
        )

    def assert_executed_count(self, count: int) -> None:
        actual = len(self._executed)
        assert actual == count, f"Expected {count} executed operations, got {actual}."

    def assert_nothing_executed(self) -> None:
        self.assert_executed_count(0)


__all__ = ["OperationFake"]
