# ============================================================================
# OPERATION REGISTRY
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - In-process operation registration and lookup
# PURPOSE: Register operation classes by identity without a file on disk
# CREATED: 13 OCT 2026
# ============================================================================
"""
Operation Registry

Operations usually live in timestamped files. Packages that ship their
own operations can register classes instead:

    @register_operation("2024_03_01_000000_seed_roles")
    class SeedRoles(Operation):
        def handle(self, ctx): ...

Design:
- Registered at import time via decorator
- Registry is a simple dict (identity -> class)
- Fail-fast on duplicate registration and malformed identities
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Type

from core.contracts import utcnow
from core.errors import OperationLoadError
from core.models.task import parse_task_name
from operations.base import Operation

logger = logging.getLogger(__name__)


class DuplicateOperationError(ValueError):
    """Raised when an identity is already registered."""

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"Operation already registered: {identity}")


# Global registry
_operations: Dict[str, Type[Operation]] = {}
_operation_metadata: Dict[str, Dict[str, Any]] = {}


def register_operation(
    identity: str,
    *,
    description: str = "",
) -> Callable[[Type[Operation]], Type[Operation]]:
    """
    Decorator to register an operation class.

    Args:
        identity: Timestamped name, YYYY_MM_DD_HHMMSS_<suffix>
        description: Human-readable description

    Raises:
        ValueError: identity does not follow the naming convention
        DuplicateOperationError: identity already registered
    """
    if parse_task_name(identity) is None:
        raise ValueError(
            f"Operation identity '{identity}' must look like YYYY_MM_DD_HHMMSS_<name>"
        )

    def decorator(cls: Type[Operation]) -> Type[Operation]:
        if not (isinstance(cls, type) and issubclass(cls, Operation)):
            raise TypeError(f"{cls!r} is not an Operation subclass")
        if identity in _operations:
            raise DuplicateOperationError(identity)

        _operations[identity] = cls
        _operation_metadata[identity] = {
            "identity": identity,
            "description": description,
            "class": cls.__name__,
            "module": cls.__module__,
            "asynchronous": cls.asynchronous,
            "registered_at": utcnow().isoformat(),
        }

        logger.debug(f"Registered operation: {identity} ({cls.__module__}.{cls.__name__})")
        return cls

    return decorator


def get_operation(identity: str) -> Optional[Type[Operation]]:
    return _operations.get(identity)


def get_operation_or_raise(identity: str) -> Type[Operation]:
    """
    Raises:
        OperationLoadError: identity not registered
    """
    cls = _operations.get(identity)
    if cls is None:
        raise OperationLoadError(identity, "not registered")
    return cls


def registered_identities() -> List[str]:
    """Registered identities in name order."""
    return sorted(_operations)


def list_operations() -> List[Dict[str, Any]]:
    return [_operation_metadata[name] for name in registered_identities()]


def clear_operations() -> None:
    """
    Clear all registered operations.

    Primarily for testing.
    """
    _operations.clear()
    _operation_metadata.clear()
    logger.debug("Cleared all registered operations")


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "register_operation",
    "get_operation",
    "get_operation_or_raise",
    "registered_identities",
    "list_operations",
    "clear_operations",
    "DuplicateOperationError",
]
