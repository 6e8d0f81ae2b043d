# ============================================================================
# WORKER AND DISPATCH TESTS
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Tests - Async dispatch path from message to finished record
# PURPOSE: Verify OperationExecutor, ServiceBusConsumer settlement, dispatchers
# CREATED: 16 OCT 2026
# ============================================================================
"""
Worker and Dispatch Tests

Covers:
1. OperationExecutor outcomes: complete, skip, fail, retry, timeout
2. Lifecycle hooks around dispatched operations
3. Duplicate and orphaned deliveries
4. Consumer message settlement (complete / abandon / dead letter)
5. ServiceBusDispatcher message shape (client mocked)
6. MessagingConfig / WorkerConfig from environment

Run with:
    pytest tests/test_worker.py -v
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from core.contracts import ExecutionMethod, ExecutionState, TaskKind
from core.models import ExecutionRecord, Task
from core.models.events import EventType
from messaging.config import MessagingConfig
from messaging.publisher import InMemoryDispatcher, ServiceBusDispatcher
from operations import Operation, OperationHandle, SkipOperation, register_operation
from worker.consumer import ServiceBusConsumer
from worker.contracts import OperationMessage, WorkerConfig
from worker.executor import OperationExecutor, RetryLater

A = "2024_01_01_000000_a"


def pending_record(store, name=A):
    return store.seed(ExecutionRecord(name=name, type=ExecutionMethod.ASYNC, batch_id="b-1"))


def message_for(record, **kwargs):
    return OperationMessage(identity=record.name, record_id=record.id, batch_id="b-1", **kwargs)


# ============================================================================
# EXECUTOR
# ============================================================================

class TestOperationExecutor:

    def test_completes_pending_record(self, store, add_operation, journal, events):
        add_operation(A)
        record = pending_record(store)
        executor = OperationExecutor(store, worker_id="w-1", events=events)

        result = asyncio.run(executor.execute(message_for(record)))

        assert result.state == ExecutionState.COMPLETED
        assert asyncio.run(store.get(record.id)).state == ExecutionState.COMPLETED
        assert journal == [("handle", A)]
        assert [e.event_type for e in events.history] == [EventType.TASK_STARTED, EventType.TASK_ENDED]
        assert events.history[-1].method == ExecutionMethod.ASYNC

    def test_context_carries_worker_details(self, store):
        seen = []

        class Inspect(Operation):
            async def handle(self, ctx):
                seen.append(ctx)

        register_operation(A)(Inspect)
        record = pending_record(store)

        asyncio.run(OperationExecutor(store, worker_id="w-9").execute(message_for(record, queue="reports"), attempt=2))

        ctx = seen[0]
        assert ctx.method == ExecutionMethod.ASYNC
        assert ctx.record_id == record.id
        assert ctx.attempt == 2
        assert ctx.extra == {"worker_id": "w-9", "queue": "reports"}

    def test_skip(self, store, add_operation):
        add_operation(A, skips=True)
        record = pending_record(store)

        result = asyncio.run(OperationExecutor(store).execute(message_for(record)))

        assert result.state == ExecutionState.SKIPPED
        assert result.skip_reason == f"{A} has nothing to do"

    def test_failure_records_error(self, store, add_operation, events):
        add_operation(A, fails=True)
        record = pending_record(store)

        result = asyncio.run(OperationExecutor(store, worker_id="w-1", events=events).execute(message_for(record)))

        assert result.state == ExecutionState.FAILED
        errors = asyncio.run(store.errors_for(record.id))
        assert errors[0].message == f"{A} exploded"
        assert errors[0].context["worker_id"] == "w-1"
        assert events.history[-1].event_type == EventType.TASK_FAILED

    def test_retry_while_tries_remain(self, store, add_operation):
        add_operation(A, fails=True)
        record = pending_record(store)
        executor = OperationExecutor(store)

        with pytest.raises(RetryLater) as exc_info:
            asyncio.run(executor.execute(message_for(record, tries=3), attempt=1))
        assert exc_info.value.attempt == 1
        assert asyncio.run(store.get(record.id)).state == ExecutionState.PENDING

        result = asyncio.run(executor.execute(message_for(record, tries=3), attempt=3))
        assert result.state == ExecutionState.FAILED

    def test_timeout(self, store):
        class Slow(Operation):
            async def handle(self, ctx):
                await asyncio.sleep(5)

        register_operation(A)(Slow)
        record = pending_record(store)

        result = asyncio.run(OperationExecutor(store).execute(message_for(record, timeout=1)))

        assert result.state == ExecutionState.FAILED
        errors = asyncio.run(store.errors_for(record.id))
        assert "timed out after 1 seconds" in errors[0].message

    def test_lifecycle_hooks(self, store):
        calls = []

        class Hooked(Operation):
            async def handle(self, ctx):
                calls.append("handle")

            def before(self, ctx):
                calls.append("before")

            def after(self, ctx):
                calls.append("after")

            def failed(self, ctx, error):
                calls.append("failed")

        register_operation(A)(Hooked)
        record = pending_record(store)

        asyncio.run(OperationExecutor(store).execute(message_for(record)))
        assert calls == ["before", "handle", "after"]

    def test_failed_hook(self, store):
        calls = []

        class Hooked(Operation):
            async def handle(self, ctx):
                raise ValueError("bad input")

            def before(self, ctx):
                calls.append("before")

            def after(self, ctx):
                calls.append("after")

            def failed(self, ctx, error):
                calls.append(f"failed: {error}")

        register_operation(A)(Hooked)
        record = pending_record(store)

        asyncio.run(OperationExecutor(store).execute(message_for(record)))
        assert calls == ["before", "failed: bad input"]

    def test_duplicate_delivery_ignored(self, store, add_operation, journal):
        add_operation(A)
        record = ExecutionRecord(name=A, type=ExecutionMethod.ASYNC)
        record.mark_completed()
        store.seed(record)

        result = asyncio.run(OperationExecutor(store).execute(message_for(record)))

        assert result.state == ExecutionState.COMPLETED
        assert journal == []

    def test_missing_record(self, store, add_operation, journal):
        add_operation(A)
        message = OperationMessage(identity=A, record_id=99)

        assert asyncio.run(OperationExecutor(store).execute(message)) is None
        assert journal == []

    def test_unloadable_operation_fails_record(self, store):
        record = pending_record(store)

        result = asyncio.run(OperationExecutor(store).execute(message_for(record)))
        assert result.state == ExecutionState.FAILED

    def test_operation_loaded_from_file(self, store, tmp_path):
        path = tmp_path / f"{A}.py"
        path.write_text(
            "from operations import Operation\n\n"
            "class FromFile(Operation):\n"
            "    def handle(self, ctx):\n"
            "        return None\n"
        )
        record = pending_record(store)

        result = asyncio.run(OperationExecutor(store).execute(message_for(record, path=str(path))))
        assert result.state == ExecutionState.COMPLETED


# ============================================================================
# CONSUMER SETTLEMENT
# ============================================================================

def received(body, delivery_count=1):
    message = MagicMock()
    message.__str__.return_value = body
    message.delivery_count = delivery_count
    return message


def consumer_with(executor):
    consumer = ServiceBusConsumer(
        WorkerConfig(worker_id="w-1", queue_name="default"),
        MessagingConfig(connection_string="Endpoint=sb://test/"),
        executor,
    )
    receiver = MagicMock()
    receiver.complete_message = AsyncMock()
    receiver.abandon_message = AsyncMock()
    receiver.dead_letter_message = AsyncMock()
    consumer._receiver = receiver
    return consumer, receiver


class TestConsumer:

    def test_finished_message_completed(self, store, add_operation):
        add_operation(A)
        record = pending_record(store)
        consumer, receiver = consumer_with(OperationExecutor(store))
        message = received(message_for(record).to_json())

        asyncio.run(consumer.process_message(message))

        receiver.complete_message.assert_awaited_once_with(message)
        assert consumer.stats["tasks_completed"] == 1

    def test_failed_operation_still_completes_message(self, store, add_operation):
        add_operation(A, fails=True)
        record = pending_record(store)
        consumer, receiver = consumer_with(OperationExecutor(store))

        asyncio.run(consumer.process_message(received(message_for(record).to_json())))

        receiver.complete_message.assert_awaited_once()
        assert consumer.stats["tasks_failed"] == 1

    def test_retry_abandons_with_delivery_count(self, store, add_operation):
        add_operation(A, fails=True)
        record = pending_record(store)
        consumer, receiver = consumer_with(OperationExecutor(store))

        asyncio.run(consumer.process_message(received(message_for(record, tries=3).to_json(), delivery_count=2)))

        receiver.abandon_message.assert_awaited_once()
        receiver.complete_message.assert_not_awaited()
        assert consumer.stats["tasks_retried"] == 1

    def test_invalid_message_dead_lettered(self, store):
        consumer, receiver = consumer_with(OperationExecutor(store))

        asyncio.run(consumer.process_message(received('{"identity": "x"}')))

        receiver.dead_letter_message.assert_awaited_once()
        assert receiver.dead_letter_message.await_args.kwargs["reason"] == "invalid_message"

    def test_unexpected_error_abandons(self, store):
        executor = MagicMock()
        executor.execute = AsyncMock(side_effect=ConnectionError("db down"))
        consumer, receiver = consumer_with(executor)
        record = pending_record(store)

        asyncio.run(consumer.process_message(received(message_for(record).to_json())))
        receiver.abandon_message.assert_awaited_once()


# ============================================================================
# DISPATCHERS
# ============================================================================

def operation_task(identity=A, path=None):
    return Task(
        kind=TaskKind.OPERATION,
        timestamp=identity[:17],
        identity=identity,
        path=path,
        payload=OperationHandle(identity),
    )


class TestDispatchers:

    def test_in_memory_enqueue(self, add_operation):
        add_operation(A, timeout_seconds=60, max_tries=2)
        dispatcher = InMemoryDispatcher()

        message = asyncio.run(dispatcher.enqueue(operation_task(), 7, "reports", batch_id="b-1"))

        assert dispatcher.messages == [message]
        assert message.record_id == 7
        assert message.timeout == 60
        assert message.tries == 2
        assert message.message_id == f"{A}:7"

    def test_message_round_trips_json(self):
        message = OperationMessage(identity=A, record_id=3, queue="reports", timeout=30)
        assert OperationMessage.from_json(message.to_json()) == message

    def test_service_bus_send(self, add_operation):
        add_operation(A, timeout_seconds=30)
        sender = MagicMock()
        sender.send_messages = AsyncMock()
        sender.close = AsyncMock()
        client = MagicMock()
        client.get_queue_sender.return_value = sender
        client.close = AsyncMock()

        async def scenario():
            dispatcher = ServiceBusDispatcher(MessagingConfig(connection_string="Endpoint=sb://test/"))
            await dispatcher.enqueue(operation_task(), 5, "reports", batch_id="b-1")
            await dispatcher.enqueue(operation_task(), 6, "reports", batch_id="b-1")
            await dispatcher.close()

        with patch("messaging.publisher.create_servicebus_client", return_value=client):
            asyncio.run(scenario())

        client.get_queue_sender.assert_called_once_with(queue_name="reports")
        sent = sender.send_messages.await_args_list[0].args[0]
        assert sent.message_id == f"{A}:5"
        assert sent.correlation_id == "b-1"
        assert sent.time_to_live.total_seconds() == 60
        sender.close.assert_awaited_once()
        client.close.assert_awaited_once()


# ============================================================================
# CONFIGURATION
# ============================================================================

class TestWorkerConfiguration:

    def test_messaging_connection_string(self, monkeypatch):
        monkeypatch.delenv("USE_MANAGED_IDENTITY", raising=False)
        monkeypatch.setenv("SEQUENCER_SERVICEBUS_CONNECTION_STRING", "Endpoint=sb://x/")

        config = MessagingConfig.from_env()
        assert config.connection_string == "Endpoint=sb://x/"
        assert not config.use_managed_identity

    def test_messaging_managed_identity(self, monkeypatch):
        monkeypatch.setenv("USE_MANAGED_IDENTITY", "true")
        monkeypatch.setenv("SEQUENCER_SERVICEBUS_FQDN", "ns.servicebus.windows.net")
        monkeypatch.setenv("AZURE_CLIENT_ID", "client-1")

        config = MessagingConfig.from_env()
        assert config.use_managed_identity
        assert config.fully_qualified_namespace == "ns.servicebus.windows.net"
        assert config.managed_identity_client_id == "client-1"

    def test_messaging_requires_connection(self, monkeypatch):
        monkeypatch.delenv("USE_MANAGED_IDENTITY", raising=False)
        monkeypatch.delenv("SEQUENCER_SERVICEBUS_CONNECTION_STRING", raising=False)

        with pytest.raises(ValueError, match="SEQUENCER_SERVICEBUS_CONNECTION_STRING"):
            MessagingConfig.from_env()

    def test_worker_config(self, monkeypatch):
        monkeypatch.setenv("WORKER_ID", "worker-7")
        monkeypatch.setenv("SEQUENCER_QUEUE", "reports")
        monkeypatch.setenv("WORKER_MAX_MESSAGES", "10")

        config = WorkerConfig.from_env()
        assert config.worker_id == "worker-7"
        assert config.queue_name == "reports"
        assert config.max_messages == 10
