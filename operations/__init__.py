# ============================================================================
# OPERATIONS MODULE
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Operations - Authoring contract, registry and loader
# PURPOSE: Everything an operation author imports
# CREATED: 13 OCT 2026
# ============================================================================
"""
Operations Module

Exports:
    Operation: Base class for business-logic operations
    OperationContext: Context passed to handle()/rollback()
    SkipOperation: Raise to skip without failing the batch
    Rollbackable: Protocol for operations that can undo themselves
    register_operation: Decorator for in-process operations
    OperationHandle: Lazy loader used by discovery
"""

from operations.base import (
    HasLifecycleHooks,
    Operation,
    OperationContext,
    Rollbackable,
    SkipOperation,
    invoke,
    invoke_in_transaction,
)
from operations.registry import (
    DuplicateOperationError,
    clear_operations,
    get_operation,
    get_operation_or_raise,
    list_operations,
    register_operation,
    registered_identities,
)
from operations.loader import OperationHandle

__all__ = [
    # Base
    "Operation",
    "OperationContext",
    "SkipOperation",
    "Rollbackable",
    "HasLifecycleHooks",
    "invoke",
    "invoke_in_transaction",
    # Registry
    "register_operation",
    "get_operation",
    "get_operation_or_raise",
    "registered_identities",
    "list_operations",
    "clear_operations",
    "DuplicateOperationError",
    # Loader
    "OperationHandle",
]
