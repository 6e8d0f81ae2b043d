# ============================================================================
# ORCHESTRATOR MODULE
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Batch orchestration
# PURPOSE: Discover, order and run schema changes and operations
# CREATED: 15 OCT 2026
# ============================================================================
"""
Orchestrator Module

Usage:
    from orchestrator import ProcessOptions, SequentialOrchestrator

    orchestrator = SequentialOrchestrator(store, migrator, config=config)
    await orchestrator.process(ProcessOptions(isolate=True))
"""

from .discovery import MigrationDiscovery, OperationDiscovery, merge_tasks
from .sequential import BatchSummary, ProcessOptions, SequentialOrchestrator

__all__ = [
    "SequentialOrchestrator",
    "ProcessOptions",
    "BatchSummary",
    "OperationDiscovery",
    "MigrationDiscovery",
    "merge_tasks",
]
