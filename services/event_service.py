# ============================================================================
# EVENT SERVICE
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Lifecycle signal emission
# PURPOSE: Deliver batch and task lifecycle signals to listeners
# CREATED: 14 OCT 2026
# ============================================================================
"""
Event Service

Listeners subscribe to one event type or to all of them. Emission is
fire-and-forget:
- a sync listener that raises is logged and the next listener still runs
- an async listener is scheduled as a task and never awaited by emit()

Nothing a listener does can block or fail a batch.

Usage:
    events = EventService()
    events.subscribe(EventType.TASK_FAILED, alert_on_call)
    events.subscribe_all(audit_listener)

    await events.emit_batch_started(batch_id, task_count=3)
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Set

from core.contracts import ExecutionMethod, TaskKind
from core.models.events import EventType, SequencerEvent

logger = logging.getLogger(__name__)

Listener = Callable[[SequencerEvent], Any]


class EventService:
    """Registry of listeners plus emit helpers for every lifecycle signal."""

    def __init__(self):
        self._listeners: Dict[Optional[EventType], List[Listener]] = defaultdict(list)
        self._pending: Set[asyncio.Task] = set()
        self.history: List[SequencerEvent] = []
        self.keep_history = False

    # =========================================================================
    # SUBSCRIPTION
    # =========================================================================

    def subscribe(self, event_type: EventType, listener: Listener) -> None:
        self._listeners[event_type].append(listener)

    def subscribe_all(self, listener: Listener) -> None:
        """Listen to every event type."""
        self._listeners[None].append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        for listeners in self._listeners.values():
            if listener in listeners:
                listeners.remove(listener)

    def listeners_for(self, event_type: EventType) -> List[Listener]:
        return list(self._listeners.get(event_type, [])) + list(self._listeners.get(None, []))

    # =========================================================================
    # CORE EMIT METHOD
    # =========================================================================

    async def emit(self, event: SequencerEvent) -> SequencerEvent:
        """
        Deliver an event. Fire-and-forget - logs errors but doesn't raise.

        Returns:
            The event that was emitted
        """
        if self.keep_history:
            self.history.append(event)

        logger.debug(
            f"Event {event.event_type.value}"
            + (f" task={event.identity}" if event.identity else "")
            + (f" batch={event.batch_id[:8]}" if event.batch_id else "")
        )

        for listener in self.listeners_for(event.event_type):
            try:
                if inspect.iscoroutinefunction(listener):
                    self._schedule(listener, event)
                else:
                    result = listener(event)
                    if inspect.isawaitable(result):
                        self._schedule_awaitable(result, event)
            except Exception as e:
                logger.warning(
                    f"Listener {getattr(listener, '__name__', listener)!r} failed on "
                    f"{event.event_type.value}: {e}"
                )

        return event

    def _schedule(self, listener: Listener, event: SequencerEvent) -> None:
        self._schedule_awaitable(listener(event), event)

    def _schedule_awaitable(self, awaitable: Any, event: SequencerEvent) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)

        def _done(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.warning(f"Async listener failed on {event.event_type.value}: {t.exception()}")

        task.add_done_callback(_done)

    async def drain(self) -> None:
        """Wait for scheduled async listeners (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # =========================================================================
    # BATCH LIFECYCLE EVENTS
    # =========================================================================

    async def emit_nothing_pending(self, batch_id: Optional[str] = None) -> SequencerEvent:
        return await self.emit(SequencerEvent.batch_event(EventType.NOTHING_PENDING, batch_id=batch_id, task_count=0))

    async def emit_batch_started(self, batch_id: str, task_count: int) -> SequencerEvent:
        return await self.emit(
            SequencerEvent.batch_event(EventType.BATCH_STARTED, batch_id=batch_id, task_count=task_count)
        )

    async def emit_batch_ended(
        self,
        batch_id: str,
        task_count: int,
        elapsed_ms: Optional[int] = None,
        error: Optional[str] = None,
    ) -> SequencerEvent:
        return await self.emit(
            SequencerEvent.batch_event(
                EventType.BATCH_ENDED,
                batch_id=batch_id,
                task_count=task_count,
                elapsed_ms=elapsed_ms,
                error=error,
            )
        )

    # =========================================================================
    # TASK LIFECYCLE EVENTS
    # =========================================================================

    async def emit_task(
        self,
        event_type: EventType,
        identity: str,
        kind: TaskKind,
        method: Optional[ExecutionMethod] = None,
        batch_id: Optional[str] = None,
        record_id: Optional[int] = None,
        elapsed_ms: Optional[int] = None,
        reason: Optional[str] = None,
        error: Optional[str] = None,
    ) -> SequencerEvent:
        """Emit TASK_STARTED / TASK_ENDED / TASK_FAILED / TASK_SKIPPED."""
        return await self.emit(
            SequencerEvent.task_event(
                event_type,
                identity=identity,
                kind=kind,
                method=method,
                batch_id=batch_id,
                record_id=record_id,
                elapsed_ms=elapsed_ms,
                reason=reason,
                error=error,
            )
        )


__all__ = ["EventService", "Listener"]
