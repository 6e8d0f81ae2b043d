# ============================================================================
# WORKER MAIN ENTRY POINT
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Worker process entry point
# PURPOSE: Start a queue worker for asynchronous operations
# CREATED: 15 OCT 2026
# ============================================================================
"""
Worker Main Entry Point

Starts a worker process that:
1. Opens the database pool
2. Connects to Service Bus
3. Runs dispatched operations until shutdown

Usage:
    python -m worker.main

Environment Variables:
    WORKER_ID: Unique worker identifier
    SEQUENCER_QUEUE: Queue name to listen on
    SEQUENCER_SERVICEBUS_CONNECTION_STRING: Service Bus connection
    SEQUENCER_SERVICEBUS_FQDN: Service Bus namespace (if using managed identity)
    USE_MANAGED_IDENTITY: "true" to use Azure managed identity
    DATABASE_URL / POSTGRES_*: Record store connection
    LOG_LEVEL, LOG_FORMAT: Logging
"""

import asyncio
import os

from __version__ import __version__
from core.config import get_config
from core.logging import configure_logging, get_logger
from messaging.config import MessagingConfig
from repositories.database import DatabasePool, PoolTransactionManager
from repositories.execution_repo import PostgresExecutionStore
from worker.consumer import ServiceBusConsumer, run_consumer
from worker.contracts import WorkerConfig
from worker.executor import OperationExecutor

logger = get_logger(__name__)


async def main() -> None:
    worker_config = WorkerConfig.from_env()
    messaging = MessagingConfig.from_env()
    config = get_config()

    logger.info(
        f"Starting sequencer worker v{__version__}: "
        f"id={worker_config.worker_id}, queue={worker_config.queue_name}"
    )

    async with DatabasePool() as pool:
        executor = OperationExecutor(
            store=PostgresExecutionStore(pool),
            worker_id=worker_config.worker_id,
            config=config,
            transactions=PoolTransactionManager(pool),
        )
        consumer = ServiceBusConsumer(worker_config, messaging, executor)
        await run_consumer(consumer)


if __name__ == "__main__":
    configure_logging(level=os.environ.get("LOG_LEVEL", "INFO"))
    asyncio.run(main())
