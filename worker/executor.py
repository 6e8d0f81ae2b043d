# ============================================================================
# WORKER EXECUTOR
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Asynchronous operation execution
# PURPOSE: Finish the Pending record of a dispatched operation
# CREATED: 15 OCT 2026
# ============================================================================
"""
Worker Executor

Takes an OperationMessage and drives the record the orchestrator left
Pending to its terminal state, with the same rules as a synchronous run:

- returns normally      -> Completed, TASK_ENDED
- raises SkipOperation  -> Skipped (reason), TASK_SKIPPED
- raises anything else  -> Failed, error row, TASK_FAILED
                           (or RetryLater while tries remain)

Extras that only exist on this side:
- timeout(): enforced with asyncio.wait_for
- tries(): delivery attempts before the record is marked Failed
- before() / after() / failed(error) lifecycle hooks
"""

import asyncio
import time
from typing import Optional

from core.config import SequencerConfig
from core.contracts import ExecutionMethod, TaskKind
from core.errors import OperationLoadError
from core.logging import ComponentType, get_logger, log_context
from core.models import ExecutionRecord, OperationError
from core.models.events import EventType
from operations.base import (
    HasLifecycleHooks,
    Operation,
    OperationContext,
    SkipOperation,
    invoke,
    invoke_in_transaction,
)
from operations.loader import OperationHandle
from repositories.database import TransactionManager
from repositories.execution_repo import ExecutionStore
from services.event_service import EventService
from worker.contracts import OperationMessage

logger = get_logger(__name__, ComponentType.WORKER)


class RetryLater(Exception):
    """The attempt failed but tries remain; the message should be redelivered."""

    def __init__(self, identity: str, attempt: int, cause: BaseException):
        self.identity = identity
        self.attempt = attempt
        self.cause = cause
        super().__init__(f"{identity} attempt {attempt} failed: {cause}")


class OperationExecutor:
    """
    Executes dispatched operations.

    Takes an OperationMessage, runs the operation, returns the finished record.
    """

    def __init__(
        self,
        store: ExecutionStore,
        worker_id: str = "worker",
        config: Optional[SequencerConfig] = None,
        transactions: Optional[TransactionManager] = None,
        events: Optional[EventService] = None,
    ):
        self.store = store
        self.worker_id = worker_id
        self.config = config or SequencerConfig()
        self.transactions = transactions
        self.events = events or EventService()

    async def execute(self, message: OperationMessage, attempt: int = 1) -> Optional[ExecutionRecord]:
        """
        Run the operation named by message.

        Args:
            message: Dispatched operation
            attempt: Delivery attempt (1-based)

        Returns:
            The record in its final state, or None if it no longer exists

        Raises:
            RetryLater: The body failed and message.tries allows another attempt
        """
        with log_context(task=message.identity, record_id=message.record_id, batch_id=message.batch_id):
            record = await self.store.get(message.record_id)
            if record is None:
                logger.error(f"Execution record {message.record_id} not found, dropping message")
                return None
            if not record.state.is_pending():
                logger.info(f"Record already {record.state.value}, ignoring duplicate delivery")
                return record

            started = time.monotonic()
            try:
                operation = OperationHandle(message.identity, path=message.path).load()
            except OperationLoadError as e:
                await self._fail(message, record, e, started)
                return record

            ctx = OperationContext(
                identity=message.identity,
                record_id=record.id,
                batch_id=message.batch_id,
                method=ExecutionMethod.ASYNC,
                environment=self.config.environment,
                attempt=attempt,
                extra={"worker_id": self.worker_id, "queue": message.queue},
            )
            await self._emit(EventType.TASK_STARTED, message, record)

            try:
                await self._run(operation, ctx, message.timeout)
            except SkipOperation as skip:
                record.mark_skipped(skip.reason)
                await self.store.update(record)
                logger.info(f"Skipped during execution: {skip.reason}")
                await self._emit(
                    EventType.TASK_SKIPPED, message, record, _elapsed_ms(started), reason=skip.reason
                )
                return record
            except Exception as e:
                error: Exception = e
                if isinstance(e, asyncio.TimeoutError):
                    error = TimeoutError(f"Operation timed out after {message.timeout} seconds")
                await self._hook_failed(operation, ctx, error)
                if message.tries and attempt < message.tries:
                    logger.warning(f"Attempt {attempt}/{message.tries} failed, will retry: {error}")
                    raise RetryLater(message.identity, attempt, error) from e
                await self._fail(message, record, error, started)
                return record

            record.mark_completed()
            await self.store.update(record)
            elapsed = _elapsed_ms(started)
            logger.info(f"Completed in {elapsed}ms")
            await self._emit(EventType.TASK_ENDED, message, record, elapsed)
            return record

    async def _run(self, operation: Operation, ctx: OperationContext, timeout: Optional[int]) -> None:
        hooks = isinstance(operation, HasLifecycleHooks)
        transactions = None
        if operation.within_transaction or self.config.auto_transaction:
            transactions = self.transactions

        if hooks:
            await invoke(operation.before, ctx)

        body = invoke_in_transaction(operation.handle, ctx, transactions)
        if timeout:
            await asyncio.wait_for(body, timeout=timeout)
        else:
            await body

        if hooks:
            await invoke(operation.after, ctx)

    async def _hook_failed(self, operation: Operation, ctx: OperationContext, error: BaseException) -> None:
        if not isinstance(operation, HasLifecycleHooks):
            return
        try:
            await invoke(operation.failed, ctx, error)
        except Exception as e:
            logger.warning(f"failed() hook raised: {e}")

    async def _fail(
        self,
        message: OperationMessage,
        record: ExecutionRecord,
        error: BaseException,
        started: float,
    ) -> None:
        record.mark_failed()
        await self.store.update(record)
        logger.error(f"Operation failed: {type(error).__name__}: {error}")

        if self.config.record_errors:
            try:
                await self.store.record_error(
                    OperationError.from_exception(
                        record.id, error, context={"worker_id": self.worker_id, "queue": message.queue}
                    )
                )
            except Exception as e:
                logger.warning(f"Could not record error for {record.name}: {e}")

        await self._emit(EventType.TASK_FAILED, message, record, _elapsed_ms(started), error=str(error))

    async def _emit(
        self,
        event_type: EventType,
        message: OperationMessage,
        record: ExecutionRecord,
        elapsed_ms: Optional[int] = None,
        reason: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        await self.events.emit_task(
            event_type,
            identity=message.identity,
            kind=TaskKind.OPERATION,
            method=ExecutionMethod.ASYNC,
            batch_id=message.batch_id,
            record_id=record.id,
            elapsed_ms=elapsed_ms,
            reason=reason,
            error=error,
        )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


__all__ = ["OperationExecutor", "RetryLater"]
