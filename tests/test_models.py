# ============================================================================
# MODEL AND STATE MACHINE TESTS
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Tests - Contracts, Task, ExecutionRecord, OperationError
# PURPOSE: Verify state derivation, transitions and task descriptors
# CREATED: 16 OCT 2026
# ============================================================================
"""
Model Tests

Covers:
1. derive_state precedence
2. ExecutionRecord transitions and InvalidTransitionError
3. Task naming, validation and declared dependencies/tags
4. OperationError built from a raised exception

Run with:
    pytest tests/test_models.py -v
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from core.contracts import ExecutionMethod, ExecutionState, TaskKind, derive_state, utcnow
from core.errors import InvalidTransitionError
from core.models import ExecutionRecord, OperationError, Task, parse_task_name
from operations import Operation, OperationHandle


# ============================================================================
# STATE DERIVATION
# ============================================================================

class TestDeriveState:
    """ExecutionState is computed from terminal timestamps only."""

    def test_no_timestamps_is_pending(self):
        assert derive_state() == ExecutionState.PENDING

    def test_single_timestamps(self):
        now = utcnow()
        assert derive_state(completed_at=now) == ExecutionState.COMPLETED
        assert derive_state(failed_at=now) == ExecutionState.FAILED
        assert derive_state(skipped_at=now) == ExecutionState.SKIPPED
        assert derive_state(rolled_back_at=now) == ExecutionState.ROLLED_BACK

    def test_rolled_back_wins_over_completed(self):
        now = utcnow()
        assert derive_state(completed_at=now, rolled_back_at=now) == ExecutionState.ROLLED_BACK

    def test_failed_wins_over_skipped_and_completed(self):
        now = utcnow()
        assert derive_state(completed_at=now, skipped_at=now, failed_at=now) == ExecutionState.FAILED

    def test_successful_states(self):
        assert ExecutionState.COMPLETED.is_successful()
        assert ExecutionState.SKIPPED.is_successful()
        assert not ExecutionState.FAILED.is_successful()
        assert not ExecutionState.ROLLED_BACK.is_successful()
        assert not ExecutionState.PENDING.is_successful()

    def test_label(self):
        assert ExecutionState.ROLLED_BACK.label() == "Rolled Back"


# ============================================================================
# EXECUTION RECORD TRANSITIONS
# ============================================================================

class TestExecutionRecord:
    """Transitions allowed by the record state machine."""

    def make_record(self):
        return ExecutionRecord(name="2024_01_01_000000_a")

    def test_new_record_is_pending(self):
        record = self.make_record()
        assert record.state == ExecutionState.PENDING
        assert record.type == ExecutionMethod.SYNC
        assert record.duration_ms is None

    def test_complete(self):
        record = self.make_record()
        record.mark_completed()
        assert record.state == ExecutionState.COMPLETED
        assert record.is_successful
        assert record.duration_ms is not None

    def test_skip_keeps_reason(self):
        record = self.make_record()
        record.mark_skipped("nothing to do")
        assert record.state == ExecutionState.SKIPPED
        assert record.skip_reason == "nothing to do"

    def test_skip_reason_truncated(self):
        record = self.make_record()
        record.mark_skipped("x" * 5000)
        assert len(record.skip_reason) == 1000

    def test_completed_then_rolled_back_keeps_both_timestamps(self):
        record = self.make_record()
        record.mark_completed()
        record.mark_rolled_back()
        assert record.state == ExecutionState.ROLLED_BACK
        assert record.completed_at is not None
        assert record.rolled_back_at is not None

    def test_failed_can_roll_back(self):
        record = self.make_record()
        record.mark_failed()
        record.mark_rolled_back()
        assert record.state == ExecutionState.ROLLED_BACK

    def test_pending_cannot_roll_back(self):
        record = self.make_record()
        with pytest.raises(InvalidTransitionError) as exc_info:
            record.mark_rolled_back()
        assert exc_info.value.current == "pending"
        assert exc_info.value.target == "rolled_back"

    def test_completed_cannot_complete_again(self):
        record = self.make_record()
        record.mark_completed()
        with pytest.raises(InvalidTransitionError):
            record.mark_completed()

    def test_skipped_is_final(self):
        record = self.make_record()
        record.mark_skipped()
        assert not record.can_transition_to(ExecutionState.ROLLED_BACK)
        with pytest.raises(InvalidTransitionError):
            record.mark_failed()

    def test_duration_uses_first_terminal_timestamp(self):
        record = self.make_record()
        record.mark_completed(at=record.executed_at + timedelta(seconds=2))
        assert record.duration_ms == 2000

    def test_state_is_serialized(self):
        record = self.make_record()
        record.mark_failed()
        assert record.model_dump()["state"] == ExecutionState.FAILED


# ============================================================================
# TASK DESCRIPTOR
# ============================================================================

class Dependent(Operation):
    def handle(self, ctx):
        return None

    def depends_on(self):
        return ["2024_01_01_000000_base", "2024_01_02_000000_other"]

    def tags(self):
        return ["billing"]


class TestTask:
    """Task naming and lazy declared metadata."""

    def test_parse_task_name(self):
        assert parse_task_name("2024_01_15_120000_backfill_users") == (
            "2024_01_15_120000",
            "2024_01_15_120000_backfill_users",
        )

    def test_parse_rejects_unconventional_names(self):
        assert parse_task_name("backfill_users") is None
        assert parse_task_name("2024_01_15_backfill") is None
        assert parse_task_name("2024_01_15_120000") is None

    def test_timestamp_is_validated(self):
        with pytest.raises(ValidationError):
            Task(kind=TaskKind.OPERATION, timestamp="2024-01-15", identity="x")

    def test_task_is_frozen(self):
        task = Task(kind=TaskKind.SCHEMA_CHANGE, timestamp="2024_01_15_120000", identity="a")
        with pytest.raises(ValidationError):
            task.identity = "b"

    def test_schema_change_has_only_explicit_dependencies(self):
        task = Task(
            kind=TaskKind.SCHEMA_CHANGE,
            timestamp="2024_01_15_120000",
            identity="2024_01_15_120000_add_index",
            dependencies=("2024_01_01_000000_base",),
        )
        assert task.declared_dependencies() == ["2024_01_01_000000_base"]
        assert task.declared_tags() == []
        assert task.load_operation() is None

    def test_operation_dependencies_merge_and_dedupe(self):
        task = Task(
            kind=TaskKind.OPERATION,
            timestamp="2024_01_15_120000",
            identity="2024_01_15_120000_dependent",
            dependencies=("2024_01_01_000000_base",),
            payload=OperationHandle("2024_01_15_120000_dependent", operation_class=Dependent),
        )
        assert task.declared_dependencies() == [
            "2024_01_01_000000_base",
            "2024_01_02_000000_other",
        ]
        assert task.declared_tags() == ["billing"]

    def test_payload_loaded_once(self):
        handle = OperationHandle("2024_01_15_120000_dependent", operation_class=Dependent)
        task = Task(
            kind=TaskKind.OPERATION,
            timestamp="2024_01_15_120000",
            identity="2024_01_15_120000_dependent",
            payload=handle,
        )
        assert not handle.loaded
        first = task.load_operation()
        assert task.load_operation() is first
        assert handle.loaded

    def test_preview(self):
        task = Task(kind=TaskKind.OPERATION, timestamp="2024_01_15_120000", identity="2024_01_15_120000_a")
        preview = task.to_preview()
        assert preview.kind == TaskKind.OPERATION
        assert preview.identity == "2024_01_15_120000_a"


# ============================================================================
# OPERATION ERROR
# ============================================================================

class TestOperationError:

    def test_from_exception_captures_location(self):
        try:
            raise ValueError("bad row 17")
        except ValueError as e:
            error = OperationError.from_exception(5, e, context={"batch_id": "b-1"})

        assert error.operation_id == 5
        assert error.exception == "ValueError"
        assert error.message == "bad row 17"
        assert "ValueError: bad row 17" in error.trace
        assert error.context["batch_id"] == "b-1"
        assert error.context["function"] == "test_from_exception_captures_location"
        assert error.context["file"].endswith("test_models.py")

    def test_from_exception_without_traceback(self):
        error = OperationError.from_exception(1, RuntimeError("never raised"))
        assert error.exception == "RuntimeError"
        assert "file" not in error.context
