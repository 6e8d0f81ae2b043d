# ============================================================================
# SEQUENTIAL ORCHESTRATOR
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Batch execution with rollback cascade
# PURPOSE: Run schema changes and operations one at a time, in order
# CREATED: 15 OCT 2026
# ============================================================================
"""
Sequential Orchestrator

One process() call is one batch:

    1. dry run        -> discover, sort, filter, return previews (no side effects)
    2. guards         -> ExecutionBlockedError if this host may not run
    3. isolate        -> hold the lock for the rest of the call
    4. discover       -> both sources, merged by timestamp, then resolver order
    5. repeat check   -> every operation must have run before (before any write)
    6. filter         -> from timestamp, tags (operations only); dependencies
                         outside the filtered list must already be satisfied
    7. nothing left   -> NOTHING_PENDING
    8. execute        -> one task at a time, awaited before the next starts
    9. on failure     -> roll back this batch's completed operations in
                         reverse order, BATCH_ENDED, re-raise the original error

Operations dispatched to the queue are fire-and-forget: their record stays
Pending until a worker finishes it, and they are not part of the rollback
cascade. Schema changes are never rolled back here.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from core.config import SequencerConfig
from core.contracts import ExecutionMethod, TaskKind
from core.errors import (
    NeverExecutedError,
    UnknownTaskKindError,
    UnsatisfiedDependencyError,
)
from core.logging import ComponentType, get_logger, log_checkpoint, log_context
from core.models import ExecutionRecord, OperationError, Task, TaskPreview
from core.models.events import EventType
from infrastructure.locking import LocalLockService, LockService
from infrastructure.migrator import Migrator
from messaging.publisher import OperationDispatcher
from operations.base import (
    Operation,
    OperationContext,
    Rollbackable,
    SkipOperation,
    invoke_in_transaction,
)
from operations.testing import OperationFake
from orchestrator.discovery import MigrationDiscovery, OperationDiscovery, merge_tasks
from orchestrator.engine.resolver import DependencyResolver
from repositories.database import NullTransactionManager, TransactionManager
from repositories.execution_repo import ExecutionStore
from services.event_service import EventService
from services.guards import GuardManager

logger = get_logger(__name__, ComponentType.ORCHESTRATOR)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


# ============================================================================
# OPTIONS AND RESULTS
# ============================================================================

@dataclass
class ProcessOptions:
    """
    Options for one process() call.

    from_timestamp is compared lexically against task timestamps, so a
    prefix such as "2024_01_02" works as well as "2024_01_02_120000".
    """
    isolate: bool = False
    dry_run: bool = False
    from_timestamp: Optional[str] = None
    repeat: bool = False
    force_sync: bool = False
    force_async: bool = False
    queue: Optional[str] = None
    tags: Optional[Sequence[str]] = None

    def __post_init__(self):
        if self.force_sync and self.force_async:
            raise ValueError("force_sync and force_async cannot both be set")
        if self.tags is not None:
            self.tags = [t for t in self.tags if t]


@dataclass
class BatchSummary:
    """Outcome counts of the most recent batch."""
    batch_id: Optional[str] = None
    schema_changes: int = 0
    completed: int = 0
    skipped: int = 0
    dispatched: int = 0
    faked: int = 0
    failed: int = 0
    rolled_back: int = 0
    elapsed_ms: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class _Executed:
    """An operation that completed synchronously in the current batch."""
    task: Task
    operation: Operation
    record: ExecutionRecord


@dataclass
class _BatchState:
    batch_id: str
    summary: BatchSummary
    executed: List[_Executed] = field(default_factory=list)


# ============================================================================
# ORCHESTRATOR
# ============================================================================

class SequentialOrchestrator:
    """
    Runs pending schema changes and operations as one ordered batch.

    Collaborators are injected; only store and migrator are required.
    """

    def __init__(
        self,
        store: ExecutionStore,
        migrator: Migrator,
        config: Optional[SequencerConfig] = None,
        dispatcher: Optional[OperationDispatcher] = None,
        lock_service: Optional[LockService] = None,
        transactions: Optional[TransactionManager] = None,
        events: Optional[EventService] = None,
        guards: Optional[GuardManager] = None,
        fake: Optional[OperationFake] = None,
        operation_discovery: Optional[OperationDiscovery] = None,
        migration_discovery: Optional[MigrationDiscovery] = None,
    ):
        """
        Args:
            store: Execution record store
            migrator: Schema change runner (its ledger decides pending schema changes)
            config: Paths, lock/queue defaults, transaction and error policy
            dispatcher: Queue for asynchronous operations
            lock_service: Isolation lock (LocalLockService when omitted)
            transactions: Transaction manager for operation bodies
            events: Lifecycle signal bus
            guards: Host admission guards (built from config when omitted)
            fake: Record operations instead of running them
        """
        self.config = config or SequencerConfig()
        self.store = store
        self.migrator = migrator
        self.dispatcher = dispatcher
        self.lock_service = lock_service or LocalLockService(
            poll_interval=self.config.lock.poll_interval_seconds
        )
        self.transactions = transactions or NullTransactionManager()
        self.events = events or EventService()
        self.guards = guards or GuardManager.from_config(self.config.guards)
        self.fake = fake
        self.resolver = DependencyResolver(store=store, migrator=migrator)
        self.operation_discovery = operation_discovery or OperationDiscovery(
            self.config.discovery_paths, store
        )
        self.migration_discovery = migration_discovery or MigrationDiscovery(
            self.config.migration_paths, migrator
        )
        self.last_summary: Optional[BatchSummary] = None

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    async def process(self, options: Optional[ProcessOptions] = None) -> Optional[List[TaskPreview]]:
        """
        Run one batch.

        Returns:
            Ordered previews when options.dry_run, otherwise None

        Raises:
            ExecutionBlockedError: A guard rejected this host
            LockUnavailableError: isolate requested and the lock stayed busy
            CircularDependencyError: Tasks cannot be ordered
            NeverExecutedError: repeat requested for a task that never ran
            UnsatisfiedDependencyError: A dependency outside this run is not done
            Exception: Whatever a schema change or operation raised, after rollback
        """
        options = options or ProcessOptions()

        if options.dry_run:
            return await self.preview(options)

        self.guards.check()

        if options.isolate:
            lock = self.config.lock
            async with self.lock_service.hold(lock.name, lock.timeout_seconds, lock.ttl_seconds):
                await self._execute(options)
        else:
            await self._execute(options)
        return None

    async def preview(self, options: ProcessOptions) -> List[TaskPreview]:
        """Ordered, filtered task list without touching records, lock or guards."""
        tasks = self._filter(await self.pending_tasks(options.repeat), options)
        logger.info(f"Dry run: {len(tasks)} task(s) would run")
        return [task.to_preview() for task in tasks]

    # =========================================================================
    # DISCOVERY, VALIDATION, FILTERING
    # =========================================================================

    async def pending_tasks(self, repeat: bool = False) -> List[Task]:
        """Both sources merged by timestamp, then ordered by dependencies."""
        schema_changes = await self.migration_discovery.discover()
        operations = await self.operation_discovery.discover(include_completed=repeat)
        return self.resolver.sort(merge_tasks(schema_changes, operations))

    async def _check_repeat(self, tasks: List[Task], repeat: bool) -> None:
        if not repeat:
            return
        executed = await self.store.executed_names()
        for task in tasks:
            if task.is_operation and task.identity not in executed:
                raise NeverExecutedError(task.identity)

    async def _check_dependencies(self, tasks: List[Task]) -> None:
        """Dependencies left out of this run must already be satisfied."""
        in_run = {t.identity for t in tasks}
        for task in tasks:
            external = [d for d in task.declared_dependencies() if d not in in_run]
            if not external:
                continue
            missing = await self.resolver.unsatisfied_dependencies(task, external)
            if missing:
                raise UnsatisfiedDependencyError(task.identity, missing)

    @staticmethod
    def _filter(tasks: List[Task], options: ProcessOptions) -> List[Task]:
        if options.from_timestamp:
            tasks = [t for t in tasks if t.timestamp >= options.from_timestamp]
        if options.tags:
            wanted = set(options.tags)
            tasks = [
                t for t in tasks
                if t.is_schema_change or wanted.intersection(t.declared_tags())
            ]
        return tasks

    # =========================================================================
    # BATCH EXECUTION
    # =========================================================================

    async def _execute(self, options: ProcessOptions) -> None:
        tasks = await self.pending_tasks(options.repeat)
        await self._check_repeat(tasks, options.repeat)
        tasks = self._filter(tasks, options)
        await self._check_dependencies(tasks)

        batch = _BatchState(batch_id=str(uuid.uuid4()), summary=BatchSummary())
        batch.summary.batch_id = batch.batch_id
        self.last_summary = batch.summary

        with log_context(batch_id=batch.batch_id):
            if not tasks:
                logger.info("Nothing pending")
                await self.events.emit_nothing_pending(batch.batch_id)
                return

            started = time.monotonic()
            logger.info(f"Batch started with {len(tasks)} task(s)")
            log_checkpoint("batch_started", {"task_count": len(tasks)})
            await self.events.emit_batch_started(batch.batch_id, len(tasks))

            try:
                for task in tasks:
                    with log_context(task=task.identity, kind=task.kind.value):
                        await self._run_task(task, batch, options)
            except Exception as e:
                batch.summary.error = f"{type(e).__name__}: {e}"
                await self._rollback(batch)
                batch.summary.elapsed_ms = _elapsed_ms(started)
                log_checkpoint("batch_failed", batch.summary.to_dict())
                await self.events.emit_batch_ended(
                    batch.batch_id, len(tasks), batch.summary.elapsed_ms, error=batch.summary.error
                )
                raise

            batch.summary.elapsed_ms = _elapsed_ms(started)
            logger.info(f"Batch ended in {batch.summary.elapsed_ms}ms")
            log_checkpoint("batch_completed", batch.summary.to_dict())
            await self.events.emit_batch_ended(batch.batch_id, len(tasks), batch.summary.elapsed_ms)

    async def _run_task(self, task: Task, batch: _BatchState, options: ProcessOptions) -> None:
        if task.kind == TaskKind.SCHEMA_CHANGE:
            await self._run_schema_change(task, batch)
        elif task.kind == TaskKind.OPERATION:
            await self._run_operation(task, batch, options)
        else:
            raise UnknownTaskKindError(task.kind)

    # =========================================================================
    # SCHEMA CHANGES
    # =========================================================================

    async def _run_schema_change(self, task: Task, batch: _BatchState) -> None:
        started = time.monotonic()
        await self.events.emit_task(
            EventType.TASK_STARTED, task.identity, task.kind, ExecutionMethod.SYNC, batch.batch_id
        )
        try:
            await self.migrator.run(task, batch_id=batch.batch_id)
        except Exception as e:
            batch.summary.failed += 1
            logger.error(f"Schema change failed: {e}")
            await self.events.emit_task(
                EventType.TASK_FAILED, task.identity, task.kind, ExecutionMethod.SYNC,
                batch.batch_id, elapsed_ms=_elapsed_ms(started), error=str(e),
            )
            raise

        batch.summary.schema_changes += 1
        await self.events.emit_task(
            EventType.TASK_ENDED, task.identity, task.kind, ExecutionMethod.SYNC,
            batch.batch_id, elapsed_ms=_elapsed_ms(started),
        )

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    async def _run_operation(self, task: Task, batch: _BatchState, options: ProcessOptions) -> None:
        try:
            operation = task.load_operation()
        except Exception as e:
            if self.fake is None:
                await self._record_failure_before_run(task, batch, e)
            raise

        if self.fake is not None:
            self.fake.record(task.identity, operation, batch.batch_id)
            batch.summary.faked += 1
            logger.info("Faked operation")
            await self.events.emit_task(
                EventType.TASK_ENDED, task.identity, task.kind, ExecutionMethod.FAKE,
                batch.batch_id, elapsed_ms=0,
            )
            return

        try:
            reason = self._precondition_failure(operation)
        except Exception as e:
            await self._record_failure_before_run(task, batch, e)
            raise
        if reason is not None:
            await self._record_skip(task, batch, reason)
            return

        missing = await self.resolver.unsatisfied_dependencies(task)
        if missing:
            await self._record_unsatisfied(task, batch, missing)

        asynchronous = options.force_async or (not options.force_sync and operation.asynchronous)
        method = ExecutionMethod.ASYNC if asynchronous else ExecutionMethod.SYNC
        record = await self.store.create(
            ExecutionRecord(name=task.identity, type=method, batch_id=batch.batch_id)
        )

        with log_context(record_id=record.id):
            if asynchronous:
                await self._dispatch(task, operation, record, batch, options)
            else:
                await self._run_sync(task, operation, record, batch)

    def _precondition_failure(self, operation: Operation) -> Optional[str]:
        """Reason the operation must not run here, or None."""
        environment = self.config.environment
        if not operation.allowed_in(environment):
            return (
                f"Environment '{environment}' not in allowed environments "
                f"[{', '.join(operation.environments())}]"
            )
        if not operation.should_run():
            return "should_run() returned False"
        return None

    async def _record_skip(self, task: Task, batch: _BatchState, reason: str) -> None:
        record = ExecutionRecord(name=task.identity, type=ExecutionMethod.SYNC, batch_id=batch.batch_id)
        record.mark_skipped(reason)
        record = await self.store.create(record)
        batch.summary.skipped += 1
        logger.info(f"Skipped before execution: {reason}")
        await self.events.emit_task(
            EventType.TASK_SKIPPED, task.identity, task.kind, ExecutionMethod.SYNC,
            batch.batch_id, record_id=record.id, elapsed_ms=0, reason=reason,
        )

    async def _record_unsatisfied(self, task: Task, batch: _BatchState, missing: List[str]) -> None:
        error = UnsatisfiedDependencyError(task.identity, missing)
        await self._record_failure_before_run(task, batch, error)
        raise error

    async def _record_failure_before_run(self, task: Task, batch: _BatchState, error: Exception) -> None:
        """Failed record, error row and TASK_FAILED for a task that never started."""
        record = ExecutionRecord(name=task.identity, type=ExecutionMethod.SYNC, batch_id=batch.batch_id)
        record.mark_failed()
        record = await self.store.create(record)
        await self._record_error(record, error)
        batch.summary.failed += 1
        logger.error(f"Operation failed before running: {type(error).__name__}: {error}")
        await self.events.emit_task(
            EventType.TASK_FAILED, task.identity, task.kind, ExecutionMethod.SYNC,
            batch.batch_id, record_id=record.id, elapsed_ms=0, error=str(error),
        )

    async def _dispatch(
        self,
        task: Task,
        operation: Operation,
        record: ExecutionRecord,
        batch: _BatchState,
        options: ProcessOptions,
    ) -> None:
        queue = options.queue or operation.queue() or self.config.queue.default_queue
        try:
            if self.dispatcher is None:
                raise RuntimeError("No dispatcher configured for asynchronous operations")
            await self.dispatcher.enqueue(task, record.id, queue, batch_id=batch.batch_id)
        except Exception as e:
            await self._fail(task, record, batch, e, ExecutionMethod.ASYNC, 0)
            raise
        batch.summary.dispatched += 1
        log_checkpoint("task_dispatched", {"queue": queue})

    async def _run_sync(
        self,
        task: Task,
        operation: Operation,
        record: ExecutionRecord,
        batch: _BatchState,
    ) -> None:
        started = time.monotonic()
        await self.events.emit_task(
            EventType.TASK_STARTED, task.identity, task.kind, ExecutionMethod.SYNC,
            batch.batch_id, record_id=record.id,
        )
        ctx = OperationContext(
            identity=task.identity,
            record_id=record.id,
            batch_id=batch.batch_id,
            method=ExecutionMethod.SYNC,
            environment=self.config.environment,
        )

        try:
            await invoke_in_transaction(operation.handle, ctx, self._transactions_for(operation))
        except SkipOperation as skip:
            record.mark_skipped(skip.reason)
            await self.store.update(record)
            batch.summary.skipped += 1
            logger.info(f"Skipped during execution: {skip.reason}")
            await self.events.emit_task(
                EventType.TASK_SKIPPED, task.identity, task.kind, ExecutionMethod.SYNC,
                batch.batch_id, record_id=record.id, elapsed_ms=_elapsed_ms(started), reason=skip.reason,
            )
            return
        except Exception as e:
            await self._fail(task, record, batch, e, ExecutionMethod.SYNC, _elapsed_ms(started))
            raise

        record.mark_completed()
        await self.store.update(record)
        batch.executed.append(_Executed(task=task, operation=operation, record=record))
        batch.summary.completed += 1
        elapsed = _elapsed_ms(started)
        log_checkpoint("task_completed", {"elapsed_ms": elapsed})
        await self.events.emit_task(
            EventType.TASK_ENDED, task.identity, task.kind, ExecutionMethod.SYNC,
            batch.batch_id, record_id=record.id, elapsed_ms=elapsed,
        )

    def _transactions_for(self, operation: Operation) -> Optional[TransactionManager]:
        if operation.within_transaction or self.config.auto_transaction:
            return self.transactions
        return None

    async def _fail(
        self,
        task: Task,
        record: ExecutionRecord,
        batch: _BatchState,
        error: Exception,
        method: ExecutionMethod,
        elapsed_ms: int,
    ) -> None:
        record.mark_failed()
        await self.store.update(record)
        await self._record_error(record, error)
        batch.summary.failed += 1
        logger.error(f"Operation failed: {type(error).__name__}: {error}")
        await self.events.emit_task(
            EventType.TASK_FAILED, task.identity, task.kind, method,
            batch.batch_id, record_id=record.id, elapsed_ms=elapsed_ms, error=str(error),
        )

    async def _record_error(self, record: ExecutionRecord, error: BaseException) -> None:
        if not self.config.record_errors or record.id is None:
            return
        try:
            await self.store.record_error(
                OperationError.from_exception(record.id, error, context={"batch_id": record.batch_id})
            )
        except Exception as e:
            logger.warning(f"Could not record error for {record.name}: {e}")

    # =========================================================================
    # ROLLBACK CASCADE
    # =========================================================================

    async def _rollback(self, batch: _BatchState) -> None:
        """Undo this batch's completed operations, newest first. Never raises."""
        if not batch.executed:
            return

        logger.warning(f"Rolling back {len(batch.executed)} completed operation(s)")
        for item in reversed(batch.executed):
            if not isinstance(item.operation, Rollbackable):
                logger.info(f"{item.task.identity} is not rollbackable, leaving it Completed")
                continue

            with log_context(task=item.task.identity, record_id=item.record.id):
                ctx = OperationContext(
                    identity=item.task.identity,
                    record_id=item.record.id,
                    batch_id=batch.batch_id,
                    method=ExecutionMethod.SYNC,
                    environment=self.config.environment,
                )
                try:
                    await invoke_in_transaction(
                        item.operation.rollback, ctx, self._transactions_for(item.operation)
                    )
                    item.record.mark_rolled_back()
                    await self.store.update(item.record)
                    batch.summary.rolled_back += 1
                    logger.info("Operation rolled back")
                except Exception as e:
                    logger.error(f"Rollback failed: {type(e).__name__}: {e}")

        log_checkpoint("rollback_completed", {"rolled_back": batch.summary.rolled_back})


__all__ = ["SequentialOrchestrator", "ProcessOptions", "BatchSummary"]
