# ============================================================================
# OPERATION DISPATCHER
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Service Bus operation dispatch
# PURPOSE: Hand asynchronous operations to worker queues
# CREATED: 14 OCT 2026
# ============================================================================
"""
Operation Dispatcher

The orchestrator calls enqueue() and moves on; it never waits for the
worker. A send failure raises, and the orchestrator treats it like a
failed operation body.

Implementations:
- ServiceBusDispatcher: Azure Service Bus, one sender per queue
- InMemoryDispatcher: keeps messages in a list (tests, local runs)
"""

import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Dict, List, Optional

from azure.servicebus import ServiceBusMessage
from azure.servicebus.aio import ServiceBusClient, ServiceBusSender

from core.models import Task
from worker.contracts import OperationMessage
from .config import MessagingConfig

logger = logging.getLogger(__name__)

# Global dispatcher instance
_dispatcher: Optional["ServiceBusDispatcher"] = None


def create_servicebus_client(config: MessagingConfig) -> ServiceBusClient:
    """Build a Service Bus client for connection string or managed identity auth."""
    if config.use_managed_identity:
        from azure.identity.aio import ManagedIdentityCredential

        if config.managed_identity_client_id:
            credential = ManagedIdentityCredential(client_id=config.managed_identity_client_id)
        else:
            credential = ManagedIdentityCredential()

        logger.info(
            f"Connecting to Service Bus via managed identity: "
            f"{config.fully_qualified_namespace}"
        )
        return ServiceBusClient(
            fully_qualified_namespace=config.fully_qualified_namespace,
            credential=credential,
        )

    logger.info("Connecting to Service Bus via connection string")
    return ServiceBusClient.from_connection_string(config.connection_string)


class OperationDispatcher(ABC):
    """Boundary for handing an operation to a background queue."""

    @abstractmethod
    async def send(self, message: OperationMessage) -> None:
        """Deliver one message to message.queue."""

    async def enqueue(
        self,
        task: Task,
        record_id: int,
        queue: str,
        batch_id: Optional[str] = None,
    ) -> OperationMessage:
        """
        Build the message for a Pending record and send it.

        Args:
            task: Operation task (payload already loadable)
            record_id: Id of the Pending ExecutionRecord
            queue: Resolved queue name
            batch_id: Batch the record belongs to

        Returns:
            The message that was sent
        """
        message = self.build_message(task, record_id, queue, batch_id)
        await self.send(message)
        logger.info(f"Dispatched {task.identity} (record {record_id}) to queue '{queue}'")
        return message

    @staticmethod
    def build_message(
        task: Task,
        record_id: int,
        queue: str,
        batch_id: Optional[str] = None,
    ) -> OperationMessage:
        operation = task.load_operation()
        return OperationMessage(
            identity=task.identity,
            record_id=record_id,
            path=task.path,
            queue=queue,
            batch_id=batch_id,
            timeout=operation.timeout() if operation else None,
            tries=operation.tries() if operation else None,
        )

    async def close(self) -> None:
        return None


# ============================================================================
# SERVICE BUS
# ============================================================================

class ServiceBusDispatcher(OperationDispatcher):
    """Dispatcher backed by Azure Service Bus queues."""

    def __init__(self, config: MessagingConfig):
        self.config = config
        self._client: Optional[ServiceBusClient] = None
        self._senders: Dict[str, ServiceBusSender] = {}

    async def connect(self) -> None:
        """Establish connection to Service Bus."""
        if self._client is None:
            self._client = create_servicebus_client(self.config)

    async def _sender(self, queue: str) -> ServiceBusSender:
        if self._client is None:
            await self.connect()
        sender = self._senders.get(queue)
        if sender is None:
            sender = self._client.get_queue_sender(queue_name=queue)
            self._senders[queue] = sender
            logger.info(f"Opened Service Bus sender for queue: {queue}")
        return sender

    async def send(self, message: OperationMessage) -> None:
        sender = await self._sender(message.queue)

        sb_message = ServiceBusMessage(
            body=message.to_json(),
            message_id=message.message_id,
            correlation_id=message.batch_id,
            subject=message.identity,
            application_properties={
                "identity": message.identity,
                "record_id": message.record_id,
            },
        )
        # Outlive the worker's own timeout budget
        if message.timeout:
            sb_message.time_to_live = timedelta(seconds=message.timeout * 2)
        else:
            sb_message.time_to_live = timedelta(seconds=self.config.default_ttl_seconds)

        await sender.send_messages(sb_message, timeout=self.config.send_timeout_seconds)

    async def close(self) -> None:
        """Close senders and client."""
        for sender in self._senders.values():
            await sender.close()
        self._senders.clear()

        if self._client:
            await self._client.close()
            self._client = None

        logger.info("Service Bus connection closed")

    async def __aenter__(self) -> "ServiceBusDispatcher":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


# ============================================================================
# IN-MEMORY
# ============================================================================

class InMemoryDispatcher(OperationDispatcher):
    """Collects messages instead of sending them."""

    def __init__(self):
        self.messages: List[OperationMessage] = []

    async def send(self, message: OperationMessage) -> None:
        self.messages.append(message)

    def for_queue(self, queue: str) -> List[OperationMessage]:
        return [m for m in self.messages if m.queue == queue]


async def get_dispatcher() -> ServiceBusDispatcher:
    """Get the global ServiceBusDispatcher (connected)."""
    global _dispatcher

    if _dispatcher is None:
        _dispatcher = ServiceBusDispatcher(MessagingConfig.from_env())
        await _dispatcher.connect()

    return _dispatcher


async def close_dispatcher() -> None:
    """Close the global ServiceBusDispatcher."""
    global _dispatcher

    if _dispatcher is not None:
        await _dispatcher.close()
        _dispatcher = None


__all__ = [
    "OperationDispatcher",
    "ServiceBusDispatcher",
    "InMemoryDispatcher",
    "create_servicebus_client",
    "get_dispatcher",
    "close_dispatcher",
]
