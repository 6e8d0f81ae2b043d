# ============================================================================
# MESSAGING MODULE
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Azure Service Bus integration
# PURPOSE: Dispatch asynchronous operations to workers
# CREATED: 14 OCT 2026
# ============================================================================
"""
Messaging Module

Provides Azure Service Bus integration for asynchronous operation dispatch.

Usage:
    from messaging import get_dispatcher

    dispatcher = await get_dispatcher()
    await dispatcher.enqueue(task, record_id=42, queue="default")
"""

from .config import MessagingConfig
from .publisher import (
    InMemoryDispatcher,
    OperationDispatcher,
    ServiceBusDispatcher,
    close_dispatcher,
    create_servicebus_client,
    get_dispatcher,
)

__all__ = [
    "MessagingConfig",
    "OperationDispatcher",
    "ServiceBusDispatcher",
    "InMemoryDispatcher",
    "create_servicebus_client",
    "get_dispatcher",
    "close_dispatcher",
]
