# ============================================================================
# WORKER MODULE
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Asynchronous operation execution
# PURPOSE: Consume dispatched operations and finish their records
# CREATED: 15 OCT 2026
# ============================================================================
"""
Worker Module

Components for running asynchronously dispatched operations:
- contracts: OperationMessage and worker configuration
- executor: Runs one operation and records its outcome
- consumer: Service Bus receive loop
- main: Worker entry point
"""

from worker.contracts import OperationMessage, WorkerConfig
from worker.executor import OperationExecutor, RetryLater

__all__ = [
    "OperationMessage",
    "WorkerConfig",
    "OperationExecutor",
    "RetryLater",
]
