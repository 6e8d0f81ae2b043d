# ============================================================================
# SERVICE BUS CONSUMER
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Service Bus message consumer
# PURPOSE: Receive dispatched operations and hand them to the executor
# CREATED: 15 OCT 2026
# ============================================================================
"""
Service Bus Consumer

Listens to one queue for OperationMessages, one message at a time.

Message settlement:
- finished (Completed / Skipped / Failed)  -> complete
- RetryLater                               -> abandon (redelivered, delivery_count + 1)
- not an OperationMessage                  -> dead letter
- unexpected error                         -> abandon
"""

import asyncio
import signal
from typing import Optional

from azure.servicebus.aio import ServiceBusClient, ServiceBusReceiver
from azure.servicebus import ServiceBusReceivedMessage
from pydantic import ValidationError

from core.logging import ComponentType, get_logger
from messaging.config import MessagingConfig
from messaging.publisher import create_servicebus_client
from worker.contracts import OperationMessage, WorkerConfig
from worker.executor import OperationExecutor, RetryLater

logger = get_logger(__name__, ComponentType.MESSAGING)


class ServiceBusConsumer:
    """Consumes OperationMessages from Azure Service Bus."""

    def __init__(
        self,
        config: WorkerConfig,
        messaging: MessagingConfig,
        executor: OperationExecutor,
    ):
        """
        Args:
            config: Worker configuration
            messaging: Service Bus connection settings
            executor: Runs each received operation
        """
        self.config = config
        self.messaging = messaging
        self._executor = executor
        self._client: Optional[ServiceBusClient] = None
        self._receiver: Optional[ServiceBusReceiver] = None

        # State
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Stats
        self._messages_received = 0
        self._tasks_completed = 0
        self._tasks_failed = 0
        self._tasks_retried = 0

    @property
    def stats(self) -> dict:
        return {
            "messages_received": self._messages_received,
            "tasks_completed": self._tasks_completed,
            "tasks_failed": self._tasks_failed,
            "tasks_retried": self._tasks_retried,
        }

    async def start(self) -> None:
        """Start the consumer."""
        if self._running:
            logger.warning("Consumer already running")
            return

        logger.info(
            f"Starting consumer: worker_id={self.config.worker_id}, "
            f"queue={self.config.queue_name}"
        )
        self._client = create_servicebus_client(self.messaging)
        self._receiver = self._client.get_queue_receiver(
            queue_name=self.config.queue_name,
            max_wait_time=self.config.max_wait_seconds,
        )
        self._running = True
        self._shutdown_event.clear()
        logger.info(f"Connected to queue: {self.config.queue_name}")

    async def stop(self) -> None:
        """Stop the consumer gracefully."""
        if not self._running:
            return

        logger.info("Stopping consumer...")
        self._running = False
        self._shutdown_event.set()

        if self._receiver:
            await self._receiver.close()
            self._receiver = None
        if self._client:
            await self._client.close()
            self._client = None

        logger.info(f"Consumer stopped. Stats: {self.stats}")

    async def run(self) -> None:
        """Receive messages until stopped or max_messages is reached."""
        await self.start()

        try:
            while self._running:
                try:
                    await self._receive_batch()
                except Exception as e:
                    logger.exception(f"Error in receive loop: {e}")
                    await asyncio.sleep(1)

                if self.config.max_messages and self._messages_received >= self.config.max_messages:
                    logger.info(f"Reached max_messages={self.config.max_messages}")
                    break
        finally:
            await self.stop()

    async def _receive_batch(self) -> None:
        if not self._receiver:
            return

        messages = await self._receiver.receive_messages(
            max_message_count=1,
            max_wait_time=self.config.max_wait_seconds,
        )
        for message in messages:
            self._messages_received += 1
            await self.process_message(message)

    async def process_message(self, message: ServiceBusReceivedMessage) -> None:
        """Run one received message and settle it."""
        try:
            operation_message = OperationMessage.from_json(str(message))
        except ValidationError as e:
            logger.error(f"Invalid operation message: {e}")
            await self._receiver.dead_letter_message(
                message,
                reason="invalid_message",
                error_description=str(e)[:1000],
            )
            return

        attempt = max(1, message.delivery_count or 1)
        try:
            record = await self._executor.execute(operation_message, attempt=attempt)
        except RetryLater as e:
            self._tasks_retried += 1
            logger.warning(str(e))
            await self._receiver.abandon_message(message)
            return
        except Exception as e:
            logger.exception(f"Error executing {operation_message.identity}: {e}")
            await self._receiver.abandon_message(message)
            return

        if record is not None and record.state.is_failed():
            self._tasks_failed += 1
        else:
            self._tasks_completed += 1
        await self._receiver.complete_message(message)


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

async def run_consumer(consumer: ServiceBusConsumer) -> None:
    """Run a consumer until SIGTERM/SIGINT."""
    loop = asyncio.get_running_loop()

    def shutdown_handler():
        logger.info("Shutdown signal received")
        asyncio.ensure_future(consumer.stop())

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, shutdown_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    await consumer.run()


__all__ = ["ServiceBusConsumer", "run_consumer"]
